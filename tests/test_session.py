import pytest

from sshconsole.errors import InvalidChannelType, InvalidDataType
from sshconsole.session import (
    Command,
    CommandSession,
    OutputSink,
    SessionState,
    UNKNOWN_USER,
)


def opened(handler, channel, user=UNKNOWN_USER):
    session = CommandSession(handler, user=user, channel=channel)
    session.open("session")
    return session


def test_status_scenario(handler, channel):
    session = opened(handler, channel)
    session.set_env("MODE", "debug")
    command = session.execute("status")
    assert command == Command("status", UNKNOWN_USER, {"MODE": "debug"})
    assert session.state is SessionState.EXECUTED

    session.run()
    assert handler.calls == [("status", UNKNOWN_USER, {"MODE": "debug"})]
    assert channel.sent == b"ok\n"
    assert channel.closed
    assert session.state is SessionState.CLOSED

    session.run()
    assert len(handler.calls) == 1


def test_state_progression(handler, channel):
    session = CommandSession(handler, channel=channel)
    assert session.state is SessionState.CREATED
    session.open("session")
    assert session.state is SessionState.TYPE_VALIDATED
    session.set_env("A", "1")
    assert session.state is SessionState.ENV_COLLECTING


def test_exec_without_environment(handler, channel):
    session = opened(handler, channel, user="alice")
    session.execute("uptime")
    session.run()
    assert handler.calls == [("uptime", "alice", {})]


def test_last_env_write_wins(handler, channel):
    session = opened(handler, channel)
    session.set_env("MODE", "quiet")
    session.set_env("LANG", "C")
    session.set_env("MODE", "debug")
    session.execute("status")
    session.run()
    assert handler.calls[0][2] == {"MODE": "debug", "LANG": "C"}


@pytest.mark.parametrize("env_count", [0, 1, 5, 20])
def test_handler_runs_once_for_any_env_sequence(channel, handler, env_count):
    session = opened(handler, channel)
    for i in range(env_count):
        session.set_env(f"VAR{i % 3}", str(i))
    session.execute("cmd")
    session.run()
    session.run()
    assert len(handler.calls) == 1


def test_environment_frozen_at_exec(handler, channel):
    session = opened(handler, channel)
    session.set_env("A", "1")
    command = session.execute("cmd")
    with pytest.raises(InvalidDataType):
        session.set_env("B", "2")
    assert command.environment == {"A": "1"}
    assert channel.closed


def test_command_environment_is_read_only(handler, channel):
    session = opened(handler, channel)
    session.set_env("A", "1")
    command = session.execute("cmd")
    with pytest.raises(TypeError):
        command.environment["B"] = "2"
    assert command.environment == {"A": "1"}


@pytest.mark.parametrize("kind", ["direct-tcpip", "x11", "forwarded-tcpip", "auth-agent@openssh.com"])
def test_non_session_channel_rejected(handler, kind):
    session = CommandSession(handler)
    with pytest.raises(InvalidChannelType):
        session.open(kind)
    assert session.state is SessionState.CLOSED
    with pytest.raises(InvalidDataType):
        session.set_env("A", "1")
    assert handler.calls == []


@pytest.mark.parametrize("kind", ["shell", "pty-req", "subsystem sftp"])
def test_interactive_request_rejected(handler, channel, kind):
    session = opened(handler, channel)
    with pytest.raises(InvalidChannelType):
        session.reject_request(kind)
    assert session.state is SessionState.CLOSED
    assert channel.closed
    with pytest.raises(InvalidDataType):
        session.execute("status")
    session.run()
    assert handler.calls == []


def test_shell_never_reaches_env_collecting(handler, channel):
    session = opened(handler, channel)
    seen = []
    with pytest.raises(InvalidChannelType):
        seen.append(session.state)
        session.reject_request("shell")
    seen.append(session.state)
    assert SessionState.ENV_COLLECTING not in seen


def test_second_exec_destroys_session(handler, channel):
    session = opened(handler, channel)
    session.execute("first")
    with pytest.raises(InvalidDataType):
        session.execute("second")
    assert session.state is SessionState.CLOSED
    assert channel.closed

    session.run()
    assert handler.calls == []


def test_data_after_exec_destroys_session(handler, channel):
    session = opened(handler, channel)
    session.execute("first")
    with pytest.raises(InvalidDataType):
        session.receive_data(b"typed input\n")
    assert channel.closed
    session.run()
    assert handler.calls == []


def test_request_after_exec_is_data_error(handler, channel):
    session = opened(handler, channel)
    session.execute("first")
    with pytest.raises(InvalidDataType):
        session.reject_request("shell")


def test_input_before_exec_destroys_session(handler, channel):
    session = opened(handler, channel)
    session.set_env("MODE", "debug")
    channel.pending = b"interactive input\n"
    with pytest.raises(InvalidDataType):
        session.check_input()
    assert channel.closed
    assert session.state is SessionState.CLOSED

    with pytest.raises(InvalidDataType):
        session.execute("status")
    session.run()
    assert handler.calls == []
    assert channel.sent == b""


def test_check_input_without_input_is_quiet(handler, channel):
    session = opened(handler, channel)
    session.check_input()
    assert session.state is SessionState.TYPE_VALIDATED
    assert not channel.closed


def test_input_during_handler_destroys_without_more_output(channel):
    def chatty(command, sink, user, environment):
        sink.write("partial\n")
        channel.pending = b"interactive input"

    session = opened(chatty, channel)
    session.execute("cmd")
    session.run()
    assert channel.sent == b"partial\n"
    assert channel.closed
    assert session.state is SessionState.CLOSED


def test_handler_exception_closes_channel(channel):
    calls = []

    def broken(command, sink, user, environment):
        calls.append(command)
        raise RuntimeError("boom")

    session = opened(broken, channel)
    session.execute("cmd")
    session.run()
    assert calls == ["cmd"]
    assert channel.closed
    assert session.state is SessionState.CLOSED


def test_bind_later(handler, channel):
    session = CommandSession(handler)
    session.open("session")
    session.bind(channel)
    session.execute("cmd")
    session.run()
    assert channel.sent == b"ok\n"


def test_close_is_idempotent(handler, channel):
    session = opened(handler, channel)
    session.close()
    session.close()
    assert channel.close_calls == 1


def test_output_sink_drops_after_close(channel):
    sink = OutputSink(channel)
    sink.write("one ")
    sink.write(b"two")
    sink.close()
    sink.write("three")
    assert channel.sent == b"one two"
    assert sink.closed


def test_output_sink_tolerates_write_failure(channel):
    sink = OutputSink(channel)
    channel.closed = True
    sink.write("lost")
    assert channel.sent == b""


def test_unknown_user_is_not_a_string():
    assert not isinstance(UNKNOWN_USER, str)
