"""
sshconsole - A single-command SSH console for embedding in long-running servers.

A remote caller authenticates, sends one command (plus optional
environment variables) and gets text output back before the channel
closes. No shells, no ptys, no interactive input.

Pieces:
- SSHConsole: listener and lifecycle (listen/stop)
- AuthenticationDispatcher: password / public key policy bridge
- CommandSession: per-channel exec state machine
- HostKey / PublicKey: host identity and authorized_keys matching
"""

__version__ = "0.1.0"

from .auth import (
    AuthenticationDispatcher,
    AuthMethod,
    PasswordCredential,
    PublicKeyCredential,
    authorized_keys_file,
    password_table,
)
from .errors import (
    ConsoleError,
    ProtocolError,
    InvalidChannelType,
    InvalidDataType,
    AuthenticationRejected,
    BindFailure,
    CloseFailure,
    KeyFormatError,
)
from .keys import HostKey, PublicKey, KeyAlgorithm, register_algorithm
from .listener import SSHConsole
from .session import (
    Command,
    CommandSession,
    OutputSink,
    SessionState,
    UNKNOWN_USER,
)

__all__ = [
    # Listener
    "SSHConsole",
    # Authentication
    "AuthenticationDispatcher",
    "AuthMethod",
    "PasswordCredential",
    "PublicKeyCredential",
    "authorized_keys_file",
    "password_table",
    # Sessions
    "Command",
    "CommandSession",
    "OutputSink",
    "SessionState",
    "UNKNOWN_USER",
    # Keys
    "HostKey",
    "PublicKey",
    "KeyAlgorithm",
    "register_algorithm",
    # Errors
    "ConsoleError",
    "ProtocolError",
    "InvalidChannelType",
    "InvalidDataType",
    "AuthenticationRejected",
    "BindFailure",
    "CloseFailure",
    "KeyFormatError",
]
