"""
Per-channel command session.

A session channel may carry environment requests followed by exactly one
exec request. Shells, ptys, subsystems and any input after the command has
started are protocol violations and kill the channel.

    CREATED -> TYPE_VALIDATED -> ENV_COLLECTING -> EXECUTED -> CLOSED

The session is transport agnostic: it only needs a channel object with
sendall(), close() and recv_ready(), which is what paramiko.Channel offers.
"""

from __future__ import annotations
import logging
import threading
from dataclasses import dataclass, field
from enum import Enum, auto
from types import MappingProxyType
from typing import Any, Callable, Mapping, Optional, Union

import paramiko

from .errors import InvalidChannelType, InvalidDataType, ProtocolError

logger = logging.getLogger(__name__)

SESSION_CHANNEL = "session"


class Identity(Enum):
    """Placeholder identities for Command.user."""
    UNKNOWN = auto()


# Authenticated, but the transport could not tell us who.
UNKNOWN_USER = Identity.UNKNOWN

User = Union[str, Identity]


class SessionState(Enum):
    """Command session lifecycle states."""
    CREATED = auto()
    TYPE_VALIDATED = auto()
    ENV_COLLECTING = auto()
    EXECUTED = auto()
    CLOSED = auto()


@dataclass(frozen=True)
class Command:
    """The single command a session runs."""
    text: str
    user: User = UNKNOWN_USER
    environment: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self):
        # Read-only view over a private copy
        object.__setattr__(self, "environment", MappingProxyType(dict(self.environment)))


class OutputSink:
    """
    Writes command output back to one channel.

    Best effort: once the channel is gone writes are dropped.
    """

    def __init__(self, channel: Any):
        self._channel = channel
        self._closed = False
        self._lock = threading.Lock()

    @property
    def closed(self) -> bool:
        return self._closed or bool(getattr(self._channel, "closed", False))

    def write(self, data: Union[str, bytes]) -> None:
        if isinstance(data, str):
            data = data.encode("utf-8")
        with self._lock:
            if self.closed:
                logger.debug(f"Dropping {len(data)} bytes, channel closed")
                return
            try:
                self._channel.sendall(data)
            except (OSError, EOFError, paramiko.SSHException) as e:
                logger.debug(f"Channel write failed, dropping output: {e}")
                self._closed = True

    def close(self) -> None:
        with self._lock:
            self._closed = True


Handler = Callable[[str, OutputSink, User, dict], None]


class CommandSession:
    """
    State machine for one command channel.

    Args:
        handler: Called as handler(command, sink, user, environment), at most once.
        user: Authenticated username, or UNKNOWN_USER.
        channel: The channel to write to. May be bound later with bind().
    """

    def __init__(self, handler: Handler, user: User = UNKNOWN_USER, channel: Any = None):
        self.handler = handler
        self.user = user
        self.channel = channel
        self._sink: Optional[OutputSink] = OutputSink(channel) if channel is not None else None

        self._state = SessionState.CREATED
        self._state_lock = threading.Lock()
        self._environment: dict[str, str] = {}
        self._command: Optional[Command] = None
        self._handled = False

    @property
    def state(self) -> SessionState:
        with self._state_lock:
            return self._state

    @property
    def command(self) -> Optional[Command]:
        return self._command

    @property
    def environment(self) -> dict[str, str]:
        return dict(self._environment)

    def bind(self, channel: Any) -> None:
        """Attach the channel once the transport has created it."""
        if self.channel is None:
            self.channel = channel
            self._sink = OutputSink(channel)

    def open(self, kind: str) -> None:
        """Classify the channel. Only plain session channels are allowed."""
        with self._state_lock:
            if self._state is not SessionState.CREATED:
                raise InvalidDataType(f"channel open in state {self._state.name}")
            if kind != SESSION_CHANNEL:
                self._state = SessionState.CLOSED
                raise InvalidChannelType(kind)
            self._state = SessionState.TYPE_VALIDATED

    def reject_request(self, kind: str) -> None:
        """Handle an interactive request (shell, pty-req, subsystem, ...)."""
        with self._state_lock:
            state = self._state
        self.close()
        if state is SessionState.EXECUTED:
            raise InvalidDataType(f"{kind} request after exec")
        raise InvalidChannelType(kind)

    def set_env(self, name: str, value: str) -> None:
        """Record an environment variable. Last write per name wins."""
        with self._state_lock:
            if self._state in (SessionState.TYPE_VALIDATED, SessionState.ENV_COLLECTING):
                self._state = SessionState.ENV_COLLECTING
                self._environment[name] = value
                return
            state = self._state
        self.close()
        raise InvalidDataType(f"env request in state {state.name}")

    def execute(self, text: str) -> Command:
        """Accept the single exec request and freeze the environment."""
        with self._state_lock:
            if self._state in (SessionState.TYPE_VALIDATED, SessionState.ENV_COLLECTING):
                self._state = SessionState.EXECUTED
                self._command = Command(text, self.user, self._environment)
                return self._command
            state = self._state
        self.close()
        raise InvalidDataType(f"exec request in state {state.name}")

    def receive_data(self, data: bytes) -> None:
        """Any input on a command channel is a violation."""
        self.close()
        raise InvalidDataType(f"{len(data)} bytes of channel input")

    def run(self) -> None:
        """
        Invoke the handler for the accepted command, then close the channel.

        Runs on a worker thread. Only the first call does anything.
        """
        with self._state_lock:
            if self._state is not SessionState.EXECUTED or self._handled:
                logger.debug(f"Not running handler in state {self._state.name}")
                return
            self._handled = True
            command, sink = self._command, self._sink

        logger.info(f"Running command {command.text!r} for {command.user}")
        try:
            self.handler(command.text, sink, command.user, dict(command.environment))
        except Exception as e:
            logger.exception(f"Command handler failed for {command.text!r}: {e}")

        try:
            self.check_input()
        except ProtocolError as e:
            logger.warning(f"Destroyed command channel: {e}")
            return
        self.close()

    def check_input(self) -> None:
        """Raise InvalidDataType if the client has sent any channel input."""
        recv_ready = getattr(self.channel, "recv_ready", None)
        if recv_ready is not None and recv_ready():
            self.receive_data(self.channel.recv(65536))

    def close(self) -> None:
        """
        End the session and close the channel.

        Output already written stays delivered; nothing more is sent.
        """
        with self._state_lock:
            if self._state is SessionState.CLOSED and self._sink is None:
                return
            self._state = SessionState.CLOSED
            sink, self._sink = self._sink, None
        if sink is not None:
            sink.close()
        if self.channel is not None:
            self.channel.close()
