import pytest

from sshconsole.keys import HostKey


class FakeChannel:
    """Just enough of paramiko.Channel for CommandSession."""

    def __init__(self, chanid: int = 0):
        self.chanid = chanid
        self.sent = b""
        self.pending = b""
        self.closed = False
        self.close_calls = 0

    def get_id(self):
        return self.chanid

    def sendall(self, data: bytes) -> None:
        if self.closed:
            raise OSError("Socket is closed")
        self.sent += data

    def recv_ready(self) -> bool:
        return bool(self.pending)

    def recv(self, nbytes: int) -> bytes:
        data, self.pending = self.pending[:nbytes], self.pending[nbytes:]
        return data

    def close(self) -> None:
        self.closed = True
        self.close_calls += 1


class RecordingHandler:
    def __init__(self, output: str = ""):
        self.calls = []
        self.output = output

    def __call__(self, command, sink, user, environment):
        self.calls.append((command, user, environment))
        if self.output:
            sink.write(self.output)


@pytest.fixture(scope="session")
def host_key():
    return HostKey.generate()


@pytest.fixture
def channel():
    return FakeChannel()


@pytest.fixture
def handler():
    return RecordingHandler(output="ok\n")
