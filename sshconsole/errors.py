"""
Error taxonomy for sshconsole.

Protocol errors are raised by the per-channel state machine and handled
by the transport bridge, which closes the offending channel. Lifecycle
errors (bind/close) propagate to whoever called listen() or stop().
"""


class ConsoleError(Exception):
    """Base class for all sshconsole errors."""
    pass


class ProtocolError(ConsoleError):
    """A peer did something a command channel does not allow."""
    pass


class InvalidChannelType(ProtocolError):
    """Channel asked for anything other than plain command execution."""

    def __init__(self, kind: str):
        self.kind = kind
        super().__init__(f"Channel type not allowed: {kind}")


class InvalidDataType(ProtocolError):
    """Data arrived outside the env-then-single-exec sequence."""

    def __init__(self, what: str):
        self.what = what
        super().__init__(f"Unexpected data on command channel: {what}")


class AuthenticationRejected(ConsoleError):
    """A credential offer was decided negatively."""

    def __init__(self, username: str, method: str):
        self.username = username
        self.method = method
        super().__init__(f"Authentication rejected for {username!r} ({method})")


class BindFailure(ConsoleError):
    """Listener could not acquire the requested address/port."""
    pass


class CloseFailure(ConsoleError):
    """Listener or a channel failed to close cleanly."""
    pass


class KeyFormatError(ConsoleError, ValueError):
    """Host key or OpenSSH public key text could not be parsed."""
    pass
