"""
SSHConsole listener.

Binds a port, accepts SSH connections and dispatches received commands to
a handler:

    console = SSHConsole(
        host_keys=[HostKey.parse(stored_key)],
        password_policy=password_table({"alice": "correct"}),
    )
    console.listen(my_handler)
    ...
    console.stop()

A fixed-size worker pool does transport negotiation for new connections
and runs command handlers. Paramiko adds one transport thread per
connection. The default of one worker keeps everything strictly ordered.
"""

from __future__ import annotations
import logging
import socket
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Optional, Sequence

import paramiko

from .auth import AuthenticationDispatcher, PasswordPolicy, PublicKeyPolicy
from .errors import BindFailure, CloseFailure
from .keys import HostKey
from .server import ConsoleServer
from .session import Handler

logger = logging.getLogger(__name__)

DEFAULT_HOST = "0.0.0.0"
DEFAULT_PORT = 2222


class SSHConsole:
    """
    Listener for the SSH command console.

    Recording the parameters is all the constructor does; call listen()
    to actually bind. More than one console may serve different ports.

    Args:
        host_keys: Host keys. Always pass the same keys to avoid annoying users.
        host: Address to bind. Default "0.0.0.0" for all interfaces.
        port: Port to bind. Default 2222, 0 picks a free port.
        password_policy: Password policy, None disables password auth.
        public_key_policy: Public key policy, None disables public key auth.
        workers: Worker pool size.

    Note: With neither policy no one will be able to authenticate.
    """

    ACCEPT_TIMEOUT = 1.0

    def __init__(
        self,
        host_keys: Sequence[HostKey],
        host: str = DEFAULT_HOST,
        port: int = DEFAULT_PORT,
        password_policy: Optional[PasswordPolicy] = None,
        public_key_policy: Optional[PublicKeyPolicy] = None,
        workers: int = 1,
        backlog: int = 100,
    ):
        if not host_keys:
            raise ValueError("At least one host key is required")
        if workers < 1:
            raise ValueError("workers must be at least 1")

        self.host = host
        self.port = port
        self.host_keys = tuple(host_keys)
        self.password_policy = password_policy
        self.public_key_policy = public_key_policy
        self.workers = workers
        self.backlog = backlog

        self._server_socket: Optional[socket.socket] = None
        self._address: Optional[tuple] = None
        self._thread: Optional[threading.Thread] = None
        self._executor: Optional[ThreadPoolExecutor] = None
        self._connections: list[tuple[paramiko.Transport, ConsoleServer]] = []
        self._lock = threading.Lock()
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    @property
    def address(self) -> Optional[tuple]:
        """Actually bound (host, port), None when not listening."""
        return self._address

    @property
    def active_connections(self) -> int:
        with self._lock:
            return sum(1 for t, _ in self._connections if t.is_active())

    def listen(self, handler: Handler) -> None:
        """
        Begin listening for SSH commands.

        Does not return until the port is bound. If it returns without
        raising, the console is listening; use stop() to stop.

        Args:
            handler: Called as handler(command, sink, user, environment)
                for each received command.

        Raises:
            BindFailure: If the address/port can't be bound.
        """
        if self._running:
            raise RuntimeError("SSH console already listening")

        family = socket.AF_INET6 if ":" in self.host else socket.AF_INET
        sock = None
        try:
            sock = socket.socket(family, socket.SOCK_STREAM)
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)
            sock.bind((self.host, self.port))
            sock.listen(self.backlog)
        except OSError as e:
            if sock is not None:
                sock.close()
            raise BindFailure(f"Cannot bind {self.host}:{self.port}: {e}") from e
        sock.settimeout(self.ACCEPT_TIMEOUT)  # Allow periodic check for shutdown

        self._server_socket = sock
        self._address = sock.getsockname()[:2]
        self._executor = ThreadPoolExecutor(
            max_workers=self.workers, thread_name_prefix="sshconsole-worker"
        )
        self._running = True
        self._thread = threading.Thread(
            target=self._accept_loop, args=(sock, handler), name="sshconsole-accept", daemon=True
        )
        self._thread.start()

        logger.info(f"SSH console listening on {self._address[0]}:{self._address[1]}")

    def stop(self) -> None:
        """
        Stop listening and close every open connection.

        Waits for running handlers to return; there is no timeout, so a
        hung or very slow peer can make this take a long time.

        Raises:
            CloseFailure: If the listening socket or a connection fails to close.
        """
        if not self._running:
            return
        self._running = False

        failure: Optional[Exception] = None

        sock, self._server_socket = self._server_socket, None
        try:
            sock.close()
        except OSError as e:
            failure = e

        if self._thread:
            self._thread.join()
            self._thread = None

        with self._lock:
            connections, self._connections = self._connections, []
        for transport, server in connections:
            try:
                server.close_all()
                transport.close()
            except (OSError, EOFError, paramiko.SSHException) as e:
                logger.error(f"{server.peer}: failed to close connection: {e}")
                failure = failure or e

        if self._executor:
            self._executor.shutdown(wait=True, cancel_futures=True)
            self._executor = None

        self._address = None
        if failure is not None:
            raise CloseFailure(f"SSH console did not close cleanly: {failure}") from failure
        logger.info("SSH console stopped")

    def _accept_loop(self, sock: socket.socket, handler: Handler) -> None:
        """Accept connections until stop() closes the socket."""
        while self._running:
            try:
                client, addr = sock.accept()
            except socket.timeout:
                continue
            except OSError:
                break

            logger.info(f"Connection from {addr[0]}:{addr[1]}")
            self._prune()
            try:
                self._executor.submit(self._serve_connection, client, addr, handler)
            except RuntimeError:
                client.close()
                break

    def _serve_connection(self, client: socket.socket, addr: tuple, handler: Handler) -> None:
        """Negotiate the transport for one connection. Runs on the worker pool."""
        peer = f"{addr[0]}:{addr[1]}"
        if not self._running:
            client.close()
            return

        transport = paramiko.Transport(client)
        for key in self.host_keys:
            transport.add_server_key(key.pkey)

        server = ConsoleServer(
            AuthenticationDispatcher(self.password_policy, self.public_key_policy),
            handler,
            self._submit,
            peer=peer,
        )
        try:
            transport.start_server(server=server)
        except (OSError, EOFError, paramiko.SSHException) as e:
            logger.warning(f"{peer}: SSH negotiation failed: {e}")
            transport.close()
            return

        with self._lock:
            if self._running:
                self._connections.append((transport, server))
                return
        transport.close()

    def _submit(self, fn: Callable[[], None]) -> None:
        executor = self._executor
        if executor is None or not self._running:
            logger.warning("SSH console stopping, command not run")
            return
        try:
            executor.submit(fn)
        except RuntimeError as e:
            logger.warning(f"Worker pool unavailable, command not run: {e}")

    def _prune(self) -> None:
        with self._lock:
            self._connections = [(t, s) for t, s in self._connections if t.is_active()]

    def __enter__(self) -> SSHConsole:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.stop()
