"""
Authentication dispatch.

Callers implement a security policy as a plain callable:

    def check_password(username, password, completion):
        completion(username == "alice" and password == "correct")

    def check_key(username, public_key, completion):
        completion(public_key.is_in(Path("~/.ssh/authorized_keys").expanduser().read_text()))

`completion` must be called exactly once. It may be called later, from
another thread, if the decision needs I/O. Don't hang the calling thread.

The dispatcher keeps paramiko out of the policy signature and turns each
offer into a single-fire Future.
"""

from __future__ import annotations
import hmac
import logging
import threading
from concurrent.futures import Future, InvalidStateError
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable, Mapping, Optional, Union

from .keys import PublicKey

logger = logging.getLogger(__name__)

Completion = Callable[[bool], None]
PasswordPolicy = Callable[[str, str, Completion], None]
PublicKeyPolicy = Callable[[str, PublicKey, Completion], None]


class AuthMethod(Enum):
    """Authentication methods advertised to the transport."""
    PASSWORD = "password"
    PUBLIC_KEY = "publickey"


@dataclass(frozen=True)
class PasswordCredential:
    """Username/password offer. Never persisted or logged."""
    username: str
    password: str

    def __repr__(self) -> str:
        return f"PasswordCredential(username={self.username!r}, password='***')"


@dataclass(frozen=True)
class PublicKeyCredential:
    """Public key offer."""
    username: str
    public_key: PublicKey


Credential = Union[PasswordCredential, PublicKeyCredential]


class _Completion:
    """Single-fire completion handed to a policy."""

    def __init__(self, future: Future, username: str, method: str):
        self._future = future
        self._username = username
        self._method = method
        self._lock = threading.Lock()

    def __call__(self, accepted: bool) -> None:
        with self._lock:
            try:
                self._future.set_result(bool(accepted))
            except InvalidStateError:
                logger.warning(
                    f"Ignoring repeated {self._method} decision for {self._username!r}"
                )
                return
        logger.debug(
            f"{self._method} decision for {self._username!r}: "
            f"{'accepted' if accepted else 'rejected'}"
        )

    @property
    def done(self) -> bool:
        return self._future.done()


class AuthenticationDispatcher:
    """
    Bridges credential offers to caller-supplied policies.

    Args:
        password_policy: Password policy, None disables password auth.
        public_key_policy: Public key policy, None disables public key auth.

    If neither policy is provided no one can authenticate.
    """

    def __init__(
        self,
        password_policy: Optional[PasswordPolicy] = None,
        public_key_policy: Optional[PublicKeyPolicy] = None,
    ):
        self.password_policy = password_policy
        self.public_key_policy = public_key_policy

    def supported_methods(self) -> frozenset[AuthMethod]:
        methods = set()
        if self.password_policy is not None:
            methods.add(AuthMethod.PASSWORD)
        if self.public_key_policy is not None:
            methods.add(AuthMethod.PUBLIC_KEY)
        return frozenset(methods)

    def allowed_auths(self) -> str:
        """Method list in the comma-separated form paramiko advertises."""
        return ",".join(m.value for m in AuthMethod if m in self.supported_methods())

    def offer(self, credential: Credential) -> Future:
        """
        Submit a credential offer.

        Returns:
            A Future resolving to True/False exactly once. No timeout is
            applied here.
        """
        future: Future = Future()

        if isinstance(credential, PasswordCredential):
            policy, secret, method = self.password_policy, credential.password, AuthMethod.PASSWORD
        elif isinstance(credential, PublicKeyCredential):
            policy, secret, method = self.public_key_policy, credential.public_key, AuthMethod.PUBLIC_KEY
        else:
            logger.debug(f"Unsupported credential type: {type(credential).__name__}")
            future.set_result(False)
            return future

        if policy is None:
            logger.debug(f"{method.value} offer for {credential.username!r} with no policy")
            future.set_result(False)
            return future

        completion = _Completion(future, credential.username, method.value)
        try:
            policy(credential.username, secret, completion)
        except Exception as e:
            logger.exception(f"{method.value} policy failed for {credential.username!r}: {e}")
            if not completion.done:
                completion(False)

        return future


def password_table(users: Mapping[str, str]) -> PasswordPolicy:
    """
    Password policy backed by a username -> password mapping.

    Comparison is constant time.
    """
    table = dict(users)

    def check(username: str, password: str, completion: Completion) -> None:
        expected = table.get(username)
        if expected is None:
            completion(False)
            return
        completion(hmac.compare_digest(expected.encode(), password.encode()))

    return check


def authorized_keys_file(path: Union[str, Path]) -> PublicKeyPolicy:
    """
    Public key policy backed by an OpenSSH authorized_keys file.

    The file is read on every offer so edits take effect immediately.
    A missing or unreadable file rejects everyone.
    """
    path = Path(path).expanduser()

    def check(username: str, public_key: PublicKey, completion: Completion) -> None:
        try:
            contents = path.read_text()
        except OSError as e:
            logger.warning(f"Cannot read authorized keys {path}: {e}")
            completion(False)
            return
        completion(public_key.is_in(contents))

    return check
