"""
Client-side vault state: Locked or Unlocked(key, deadline).

The vault key only ever lives in an ``Unlocked`` state. Every use of the key
pushes the deadline out by ``idle_timeout``; once the clock passes the
deadline the session drops back to ``Locked`` and the key is gone.
"""
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, Mapping, Optional, Union

from zkvault.core.exceptions import DecryptionFailed
from zkvault.services.key_derivation import derive_vault_key, generate_salt
from zkvault.services.vault_crypto import (
    StoredRecord, check_verification_token, decrypt_record, encrypt_record,
    make_verification_token, rotate_vault_key,
)

logger = logging.getLogger(__name__)

DEFAULT_IDLE_TIMEOUT = 15 * 60


class VaultLocked(Exception):
    """The session is locked (never unlocked, locked by hand, or idle too long)."""


@dataclass(frozen=True)
class Locked:
    pass


@dataclass(frozen=True)
class Unlocked:
    key: bytes
    deadline: float


class VaultSession:
    def __init__(
        self,
        vault_id: int,
        account_id,
        salt: str,
        idle_timeout: float = DEFAULT_IDLE_TIMEOUT,
        clock: Callable[[], float] = time.monotonic
    ):
        self.vault_id = vault_id
        self.account_id = account_id
        self.salt = salt
        self.idle_timeout = idle_timeout
        self._clock = clock
        self.state: Union[Locked, Unlocked] = Locked()

    @property
    def is_unlocked(self) -> bool:
        self._expire()
        return isinstance(self.state, Unlocked)

    def _expire(self) -> None:
        if isinstance(self.state, Unlocked) and self._clock() >= self.state.deadline:
            logger.info(f"Vault {self.vault_id} auto-locked after inactivity")
            self.state = Locked()

    def _key(self) -> bytes:
        self._expire()
        if not isinstance(self.state, Unlocked):
            raise VaultLocked(f"Vault {self.vault_id} is locked")
        key = self.state.key
        self.state = Unlocked(key=key, deadline=self._clock() + self.idle_timeout)
        return key

    def unlock(self, master_password: str, verification_token: str) -> None:
        """Derive the vault key and prove it against the canary before accepting it."""
        key = derive_vault_key(master_password, self.salt)
        if not check_verification_token(key, verification_token, self.account_id):
            self.state = Locked()
            raise DecryptionFailed(internal_detail=f"Canary check failed for vault {self.vault_id}")
        self.state = Unlocked(key=key, deadline=self._clock() + self.idle_timeout)

    def lock(self) -> None:
        self.state = Locked()

    def touch(self) -> None:
        """Record activity without using the key."""
        self._key()

    def decrypt(self, record: Mapping[str, Any]) -> Dict[str, Any]:
        """Decrypt a record as returned by ``GET /vaults/{id}/passwords``."""
        return decrypt_record(self._key(), bytes.fromhex(record["encryptedData"]), bytes.fromhex(record["iv"]))

    def encrypt(self, plaintext: Mapping[str, Any]) -> Dict[str, str]:
        """Body for creating or replacing a record."""
        encrypted = encrypt_record(self._key(), plaintext)
        return {"encryptedData": encrypted.ciphertext_hex, "iv": encrypted.iv_hex}

    def rotate(self, new_master_password: str, records: Iterable[Mapping[str, Any]]) -> Dict[str, Any]:
        """Body for ``update-master-password``; the vault salt is kept.

        The session keeps the old key. Unlock with the new master password
        once the server has accepted the rotation.
        """
        old_key = self._key()
        new_key = derive_vault_key(new_master_password, self.salt)
        stored = [
            StoredRecord(id=r["id"], ciphertext=bytes.fromhex(r["encryptedData"]), iv=bytes.fromhex(r["iv"]))
            for r in records
        ]
        result = rotate_vault_key(old_key, new_key, stored, self.account_id)
        return {
            "encryptedUserId": result.verification_token,
            "passwords": [
                {"id": r.id, "encryptedData": r.ciphertext.hex(), "iv": r.iv.hex()}
                for r in result.records
            ],
        }


def new_vault_payload(master_password: str, account_id, name: Optional[str] = None) -> Dict[str, Any]:
    """Body for ``POST /vaults``: fresh salt plus the canary under the derived key."""
    salt = generate_salt()
    payload = {
        "salt": salt,
        "encryptedUserId": make_verification_token(derive_vault_key(master_password, salt), account_id),
    }
    if name is not None:
        payload["name"] = name
    return payload


def open_vault(vault: Mapping[str, Any], account_id, master_password: Optional[str] = None, **kwargs) -> VaultSession:
    """VaultSession for a vault as returned by the API, unlocked when a password is given."""
    session = VaultSession(vault["id"], account_id, vault["salt"], **kwargs)
    if master_password is not None:
        session.unlock(master_password, vault["encryptedUserId"])
    return session
