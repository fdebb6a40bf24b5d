"""Secret values and their encryption at rest.

A ``Secret`` wraps a string that must never be written to state in clear
text. Serialization encrypts it with a key derived from the app password:

    {"@secret": {"version": "v1", "salt": "<base64>", "token": "<fernet token>"}}

Each value gets its own random salt, so two encryptions of one secret
differ. Keys are derived with PBKDF2-SHA256 and cached per (password, salt).
"""

import base64
import hashlib
import os
from functools import lru_cache
from typing import Any, Dict, Optional

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from ..errors import SecretDecryptionError, SecretPasswordError

VERSION = "v1"
SALT_LEN = 16
ITERATIONS = 100_000


class Secret:
    """A string that is masked in output and encrypted when persisted."""

    __slots__ = ("unencrypted",)

    def __init__(self, unencrypted: str):
        if not isinstance(unencrypted, str):
            raise TypeError(f"Secret value must be a string, got {type(unencrypted).__name__}")
        self.unencrypted = unencrypted

    @classmethod
    def env(cls, name: str, default: Optional[str] = None) -> "Secret":
        """Wrap an environment variable; fail if it is unset and has no default."""
        value = os.environ.get(name, default)
        if value is None:
            raise KeyError(f"Environment variable {name} is not set")
        return cls(value)

    def digest(self) -> str:
        return hashlib.sha256(self.unencrypted.encode("utf-8")).hexdigest()

    def __eq__(self, other: Any) -> bool:
        return isinstance(other, Secret) and other.unencrypted == self.unencrypted

    def __hash__(self) -> int:
        return hash(("Secret", self.unencrypted))

    def __repr__(self) -> str:
        return "Secret('******')"

    __str__ = __repr__


@lru_cache(maxsize=256)
def _fernet(password: str, salt: bytes) -> Fernet:
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=32,
        salt=salt,
        iterations=ITERATIONS,
    )
    return Fernet(base64.urlsafe_b64encode(kdf.derive(password.encode("utf-8"))))


def encrypt(value: str, password: Optional[str]) -> Dict[str, str]:
    """Encrypt ``value`` under ``password`` with a fresh salt."""
    if not password:
        raise SecretPasswordError()
    salt = os.urandom(SALT_LEN)
    token = _fernet(password, salt).encrypt(value.encode("utf-8"))
    return {
        "version": VERSION,
        "salt": base64.b64encode(salt).decode("ascii"),
        "token": token.decode("ascii"),
    }


def decrypt(payload: Dict[str, str], password: Optional[str]) -> str:
    """Reverse ``encrypt``; a wrong password or a tampered token is an error."""
    if not password:
        raise SecretPasswordError()
    if not isinstance(payload, dict) or payload.get("version") != VERSION:
        raise SecretDecryptionError(f"Unsupported secret format: {payload!r}")
    salt = base64.b64decode(payload["salt"])
    try:
        return _fernet(password, salt).decrypt(payload["token"].encode("ascii")).decode("utf-8")
    except InvalidToken as e:
        raise SecretDecryptionError("Secret could not be decrypted: wrong password or corrupted state") from e
