"""
Paramiko server interface for one connection.

Paramiko calls these methods on the transport thread. Authentication
offers go through the AuthenticationDispatcher and wait for its decision;
channel requests drive a CommandSession per channel. Accepted commands are
handed to the listener's worker pool so the transport thread keeps moving.
"""

from __future__ import annotations
import logging
import threading
from typing import Callable, Optional

import paramiko

from .auth import AuthenticationDispatcher, Credential, PasswordCredential, PublicKeyCredential
from .errors import AuthenticationRejected, ProtocolError
from .keys import PublicKey
from .session import CommandSession, Handler, SessionState, UNKNOWN_USER

logger = logging.getLogger(__name__)

Submit = Callable[[Callable[[], None]], None]


def _text(value) -> str:
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return value


class ConsoleServer(paramiko.ServerInterface):
    """
    Glue between paramiko and the console core, one per connection.

    Args:
        dispatcher: Fresh dispatcher for this connection.
        handler: The command handler.
        submit: Schedules a callable on the worker pool.
        peer: Remote address, for log messages.
    """

    def __init__(
        self,
        dispatcher: AuthenticationDispatcher,
        handler: Handler,
        submit: Submit,
        peer: str = "unknown",
    ):
        self.dispatcher = dispatcher
        self.handler = handler
        self.submit = submit
        self.peer = peer
        self.username: Optional[str] = None

        self._sessions: dict[int, CommandSession] = {}
        self._lock = threading.Lock()

    # -------------------------------------------------------------------------
    # Authentication
    # -------------------------------------------------------------------------

    def get_allowed_auths(self, username):
        return self.dispatcher.allowed_auths()

    def check_auth_none(self, username):
        return paramiko.AUTH_FAILED

    def check_auth_password(self, username, password):
        return self._authenticate(PasswordCredential(username, password), "password")

    def check_auth_publickey(self, username, key):
        return self._authenticate(PublicKeyCredential(username, PublicKey(key)), "publickey")

    def _authenticate(self, credential: Credential, method: str) -> int:
        try:
            self._await_decision(credential, method)
        except AuthenticationRejected as e:
            logger.info(f"{self.peer}: {e}")
            return paramiko.AUTH_FAILED

        self.username = credential.username
        logger.info(f"{self.peer}: authenticated {credential.username!r} via {method}")
        return paramiko.AUTH_SUCCESSFUL

    def _await_decision(self, credential: Credential, method: str) -> None:
        # Blocks this connection's transport thread only; no timeout.
        if not self.dispatcher.offer(credential).result():
            raise AuthenticationRejected(credential.username, method)

    # -------------------------------------------------------------------------
    # Channels
    # -------------------------------------------------------------------------

    def check_channel_request(self, kind, chanid):
        session = CommandSession(self.handler, user=self.username or UNKNOWN_USER)
        try:
            session.open(kind)
        except ProtocolError as e:
            logger.warning(f"{self.peer}: rejected channel {chanid}: {e}")
            return paramiko.OPEN_FAILED_ADMINISTRATIVELY_PROHIBITED

        with self._lock:
            for stale in [c for c, s in self._sessions.items() if s.state is SessionState.CLOSED]:
                del self._sessions[stale]
            self._sessions[chanid] = session
        logger.debug(f"{self.peer}: opened channel {chanid}")
        return paramiko.OPEN_SUCCEEDED

    def _session(self, channel) -> Optional[CommandSession]:
        with self._lock:
            session = self._sessions.get(channel.get_id())
        if session is None:
            logger.warning(f"{self.peer}: request on unknown channel {channel.get_id()}")
            channel.close()
            return None
        session.bind(channel)
        return session

    def check_channel_env_request(self, channel, name, value):
        session = self._session(channel)
        if session is None:
            return False
        try:
            session.set_env(_text(name), _text(value))
        except ProtocolError as e:
            return self._violation(channel, e)
        return True

    def check_channel_exec_request(self, channel, command):
        session = self._session(channel)
        if session is None:
            return False
        try:
            # Data sent ahead of exec is already buffered on the channel
            session.check_input()
            session.execute(_text(command))
        except ProtocolError as e:
            return self._violation(channel, e)
        self.submit(session.run)
        return True

    def _reject(self, channel, kind: str) -> bool:
        session = self._session(channel)
        if session is None:
            return False
        try:
            session.reject_request(kind)
        except ProtocolError as e:
            return self._violation(channel, e)
        return False

    def _violation(self, channel, error: ProtocolError) -> bool:
        logger.warning(f"{self.peer}: closed channel {channel.get_id()}: {error}")
        with self._lock:
            self._sessions.pop(channel.get_id(), None)
        return False

    def check_channel_shell_request(self, channel):
        return self._reject(channel, "shell")

    def check_channel_pty_request(self, channel, term, width, height, pixelwidth, pixelheight, modes):
        return self._reject(channel, "pty-req")

    def check_channel_subsystem_request(self, channel, name):
        return self._reject(channel, f"subsystem {_text(name)}")

    def check_channel_x11_request(self, channel, single_connection, auth_protocol, auth_cookie, screen_number):
        return self._reject(channel, "x11-req")

    def check_channel_forward_agent_request(self, channel):
        return self._reject(channel, "auth-agent-req")

    def check_channel_window_change_request(self, channel, width, height, pixelwidth, pixelheight):
        return self._reject(channel, "window-change")

    def check_port_forward_request(self, address, port):
        logger.warning(f"{self.peer}: refused port forward to {address}:{port}")
        return False

    def close_all(self) -> None:
        """Close every open command channel of this connection."""
        with self._lock:
            sessions = list(self._sessions.values())
            self._sessions.clear()
        for session in sessions:
            session.close()
