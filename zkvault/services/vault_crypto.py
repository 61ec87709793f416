"""
Vault record encryption.

AES-256-CBC with PKCS#7 padding under the vault key. Every encryption draws a
fresh random 16-byte IV. Records are JSON objects; the canary is the owning
account id encrypted the same way and stored as ``"<iv hex>:<ciphertext hex>"``.

Any failure to decrypt (padding, UTF-8 or JSON) is reported as
``DecryptionFailed`` so the caller only ever learns "wrong key or bad data".
Never log plaintext, keys or ciphertext from this module.
"""
import json
import logging
import os
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping

from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from zkvault.core.exceptions import DecryptionFailed

logger = logging.getLogger(__name__)

IV_SIZE = 16
KEY_SIZE = 32
BLOCK_BITS = 128


@dataclass(frozen=True)
class EncryptedRecord:
    ciphertext: bytes
    iv: bytes

    @property
    def ciphertext_hex(self) -> str:
        return self.ciphertext.hex()

    @property
    def iv_hex(self) -> str:
        return self.iv.hex()


@dataclass(frozen=True)
class StoredRecord:
    """A record as held by storage: id plus its current ciphertext and IV."""
    id: int
    ciphertext: bytes
    iv: bytes


@dataclass(frozen=True)
class RotationResult:
    verification_token: str
    records: List[StoredRecord]


def _check_key(key: bytes) -> None:
    if len(key) != KEY_SIZE:
        raise ValueError(f"Vault key must be {KEY_SIZE} bytes")


def _encrypt(key: bytes, plaintext: bytes) -> EncryptedRecord:
    _check_key(key)
    iv = os.urandom(IV_SIZE)
    padder = padding.PKCS7(BLOCK_BITS).padder()
    padded = padder.update(plaintext) + padder.finalize()
    encryptor = Cipher(algorithms.AES(key), modes.CBC(iv)).encryptor()
    return EncryptedRecord(ciphertext=encryptor.update(padded) + encryptor.finalize(), iv=iv)


def _decrypt(key: bytes, ciphertext: bytes, iv: bytes) -> bytes:
    _check_key(key)
    if len(iv) != IV_SIZE or not ciphertext or len(ciphertext) % IV_SIZE:
        raise DecryptionFailed(internal_detail="Malformed ciphertext or IV")
    try:
        decryptor = Cipher(algorithms.AES(key), modes.CBC(iv)).decryptor()
        padded = decryptor.update(ciphertext) + decryptor.finalize()
        unpadder = padding.PKCS7(BLOCK_BITS).unpadder()
        return unpadder.update(padded) + unpadder.finalize()
    except ValueError:
        raise DecryptionFailed(internal_detail="Bad padding")


def encrypt_record(key: bytes, plaintext: Mapping[str, Any]) -> EncryptedRecord:
    """Encrypt one vault record (a JSON object) under ``key``."""
    return _encrypt(key, json.dumps(dict(plaintext), separators=(",", ":")).encode("utf-8"))


def decrypt_record(key: bytes, ciphertext: bytes, iv: bytes) -> Dict[str, Any]:
    """Decrypt one vault record, raising ``DecryptionFailed`` for anything but a JSON object."""
    raw = _decrypt(key, ciphertext, iv)
    try:
        value = json.loads(raw.decode("utf-8"))
    except (UnicodeDecodeError, ValueError):
        raise DecryptionFailed(internal_detail="Record plaintext is not JSON")
    if not isinstance(value, dict):
        raise DecryptionFailed(internal_detail="Record plaintext is not a JSON object")
    return value


def make_verification_token(key: bytes, account_id) -> str:
    record = _encrypt(key, str(account_id).encode("utf-8"))
    return f"{record.iv_hex}:{record.ciphertext_hex}"


def check_verification_token(key: bytes, token: str, account_id) -> bool:
    """True iff ``key`` decrypts the canary to ``account_id``.

    A decryption error and a mismatching plaintext both return False.
    """
    try:
        iv_hex, ciphertext_hex = token.split(":", 1)
        plaintext = _decrypt(key, bytes.fromhex(ciphertext_hex), bytes.fromhex(iv_hex))
    except (DecryptionFailed, ValueError):
        return False
    return plaintext == str(account_id).encode("utf-8")


def rotate_vault_key(
    old_key: bytes,
    new_key: bytes,
    records: Iterable[StoredRecord],
    account_id
) -> RotationResult:
    """Re-encrypt every record and the canary from ``old_key`` to ``new_key``.

    Nothing is written here. The whole result is computed before returning,
    so a record that fails to decrypt aborts the rotation with no partial
    output. The caller must persist the result in a single transaction.
    """
    rotated = []
    for record in records:
        plaintext = _decrypt(old_key, record.ciphertext, record.iv)
        fresh = _encrypt(new_key, plaintext)
        rotated.append(StoredRecord(id=record.id, ciphertext=fresh.ciphertext, iv=fresh.iv))
    return RotationResult(
        verification_token=make_verification_token(new_key, account_id),
        records=rotated,
    )
