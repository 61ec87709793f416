"""
Password-based key derivation.

Two PBKDF2 derivations with different parameters and different output types,
kept apart by an explicit purpose so one can never be used in place of the
other:

* ``Purpose.ACCOUNT_AUTH`` - PBKDF2-HMAC-SHA256, 10 000 iterations, returns a
  64-char hex string that becomes the SRP password.
* ``Purpose.VAULT_KEY`` - PBKDF2-HMAC-SHA512, 100 000 iterations, returns 32
  raw bytes used directly as the AES-256 vault key.

Salts are hex strings and are fed to PBKDF2 as their UTF-8 text.
"""
import secrets
from enum import Enum
from typing import Union

from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from zkvault.core.exceptions import ValidationError

SALT_BYTES = 16
KEY_LENGTH = 32  # 256 bits


class Purpose(Enum):
    ACCOUNT_AUTH = "account-auth"
    VAULT_KEY = "vault-key"


_PARAMS = {
    Purpose.ACCOUNT_AUTH: (hashes.SHA256, 10_000),
    Purpose.VAULT_KEY: (hashes.SHA512, 100_000),
}


def generate_salt() -> str:
    """16 random bytes, hex encoded."""
    return secrets.token_hex(SALT_BYTES)


def derive(password: str, salt: str, purpose: Purpose) -> Union[str, bytes]:
    if not password:
        raise ValidationError("Password must not be empty")
    if not salt:
        raise ValidationError("Salt must not be empty")

    algorithm, iterations = _PARAMS[purpose]
    kdf = PBKDF2HMAC(
        algorithm=algorithm(),
        length=KEY_LENGTH,
        salt=salt.encode("utf-8"),
        iterations=iterations,
    )
    key = kdf.derive(password.encode("utf-8"))
    if purpose is Purpose.ACCOUNT_AUTH:
        return key.hex()
    return key


def derive_auth_key(password: str, salt: str) -> str:
    return derive(password, salt, Purpose.ACCOUNT_AUTH)


def derive_vault_key(password: str, salt: str) -> bytes:
    return derive(password, salt, Purpose.VAULT_KEY)
