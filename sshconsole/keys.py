"""
Host key and public key handling.

Paramiko keeps private keys opaque enough that there is no simple way to
get a compact string back out of a freshly generated one, so host keys are
stored here as raw key material:

    ed25519 <base64 of the raw private key> optional comment

Algorithms live in a small registry keyed by tag. Adding one means
registering a KeyAlgorithm, nothing else.
"""

from __future__ import annotations
import base64
import binascii
import logging
from dataclasses import dataclass
from io import StringIO
from typing import Callable, Optional

import paramiko
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey

from .errors import KeyFormatError

logger = logging.getLogger(__name__)

DEFAULT_ALGORITHM = "ed25519"


@dataclass(frozen=True)
class KeyAlgorithm:
    """One supported host key algorithm."""
    tag: str
    generate: Callable[[], bytes]  # new raw private key material
    load: Callable[[bytes], paramiko.PKey]  # raw material -> paramiko private key


_ALGORITHMS: dict[str, KeyAlgorithm] = {}


def register_algorithm(algorithm: KeyAlgorithm) -> None:
    """Make a host key algorithm available to HostKey.parse/generate."""
    _ALGORITHMS[algorithm.tag] = algorithm
    logger.debug(f"Registered host key algorithm: {algorithm.tag}")


def get_algorithm(tag: str) -> KeyAlgorithm:
    try:
        return _ALGORITHMS[tag]
    except KeyError:
        raise KeyFormatError(f"Unsupported host key algorithm: {tag}") from None


def supported_algorithms() -> list[str]:
    return sorted(_ALGORITHMS)


def _ed25519_generate() -> bytes:
    return Ed25519PrivateKey.generate().private_bytes(
        serialization.Encoding.Raw,
        serialization.PrivateFormat.Raw,
        serialization.NoEncryption(),
    )


def _ed25519_load(raw: bytes) -> paramiko.PKey:
    private = Ed25519PrivateKey.from_private_bytes(raw)
    pem = private.private_bytes(
        serialization.Encoding.PEM,
        serialization.PrivateFormat.OpenSSH,
        serialization.NoEncryption(),
    ).decode()
    return paramiko.Ed25519Key.from_private_key(StringIO(pem))


register_algorithm(KeyAlgorithm(DEFAULT_ALGORITHM, _ed25519_generate, _ed25519_load))


class PublicKey:
    """
    A public key, usually one offered by a client during authentication.

    This doesn't verify signatures, paramiko does that. It only answers
    "is this the same key as that OpenSSH text?"
    """

    def __init__(self, key: paramiko.PKey):
        self.key = key

    @classmethod
    def from_openssh(cls, line: str) -> PublicKey:
        """
        Parse a single OpenSSH public key entry.

        Args:
            line: Looks like ``ssh-ed25519 AAAAC3NzaC1lZDI1NTE5AAAA... optional comment``

        Raises:
            KeyFormatError: If the line is not a usable key entry.
        """
        parts = line.strip().split(None, 2)
        if len(parts) < 2:
            raise KeyFormatError("OpenSSH key needs an algorithm and a base64 key")

        try:
            blob = base64.b64decode(parts[1], validate=True)
        except (binascii.Error, ValueError) as e:
            raise KeyFormatError(f"Key field is not valid base64: {e}") from e

        try:
            key = paramiko.PKey.from_type_string(parts[0], blob)
        except Exception as e:
            raise KeyFormatError(f"Cannot load {parts[0]} key: {e}") from e
        return cls(key)

    @property
    def algorithm(self) -> str:
        return self.key.get_name()

    @property
    def openssh(self) -> str:
        """OpenSSH text form, without comment."""
        return f"{self.key.get_name()} {self.key.get_base64()}"

    @property
    def fingerprint(self) -> str:
        """SHA256 fingerprint as printed by ssh-keygen -l."""
        return self.key.fingerprint

    def matches(self, openssh_public_key: str) -> bool:
        """
        Compare with an OpenSSH textually formatted key.

        Returns False for anything that doesn't parse; never raises.
        """
        try:
            other = PublicKey.from_openssh(openssh_public_key)
        except KeyFormatError:
            return False
        return other == self

    def is_in(self, file: str) -> bool:
        """
        Search the contents of an authorized_keys style file for this key.

        Args:
            file: The text of the file, one key per line.
        """
        for line in file.split("\n"):
            line = line.strip()
            if line and self.matches(line):
                return True
        return False

    def __eq__(self, other) -> bool:
        if not isinstance(other, PublicKey):
            return NotImplemented
        return self.key == other.key

    def __hash__(self) -> int:
        return hash(self.key.asbytes())

    def __repr__(self) -> str:
        return f"<PublicKey {self.algorithm} {self.fingerprint}>"


class HostKey:
    """
    A host private key and the methods to deal with it.

    Create one once for a server on a given host, save `serialize()`
    somewhere beyond prying eyes, and load it with `parse()` on every
    start so clients keep seeing the same host identity.
    """

    def __init__(self, algorithm: str, raw: bytes):
        self._algorithm = get_algorithm(algorithm)
        self._raw = bytes(raw)
        try:
            self._pkey = self._algorithm.load(self._raw)
        except (ValueError, paramiko.SSHException) as e:
            raise KeyFormatError(f"Invalid {algorithm} key material: {e}") from e
        self._public = PublicKey(
            paramiko.PKey.from_type_string(self._pkey.get_name(), self._pkey.asbytes())
        )

    @classmethod
    def generate(cls, algorithm: str = DEFAULT_ALGORITHM) -> HostKey:
        """Create a brand new host key."""
        return cls(algorithm, get_algorithm(algorithm).generate())

    @classmethod
    def parse(cls, string: str) -> HostKey:
        """
        Create a host key from its string representation.

        Args:
            string: Looks like ``"ed25519 asdjhskh2u8huf optional comment"``

        Raises:
            KeyFormatError: Fewer than two fields, bad base64, unknown algorithm
                or key material the algorithm rejects.
        """
        parts = string.strip().split(None, 2)
        if len(parts) < 2:
            raise KeyFormatError("Host key needs an algorithm and base64 key material")

        try:
            raw = base64.b64decode(parts[1], validate=True)
        except (binascii.Error, ValueError) as e:
            raise KeyFormatError(f"Host key material is not valid base64: {e}") from e

        return cls(parts[0], raw)

    @property
    def algorithm(self) -> str:
        return self._algorithm.tag

    @property
    def pkey(self) -> paramiko.PKey:
        """Paramiko key used as transport identity."""
        return self._pkey

    @property
    def public_key(self) -> PublicKey:
        return self._public

    def serialize(self, comment: Optional[str] = None) -> str:
        """String form for storing a host key for later use."""
        text = f"{self.algorithm} {base64.b64encode(self._raw).decode()}"
        if comment:
            text += f" {comment}"
        return text

    def __repr__(self) -> str:
        return f"<HostKey {self.algorithm} {self._public.fingerprint}>"
