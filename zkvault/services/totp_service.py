import logging
import secrets
from typing import Final, Optional, Tuple

import pyotp
from cryptography.fernet import Fernet, InvalidToken
from sqlalchemy.orm import Session

from zkvault.core.config import PENDING_2FA_MAX_ATTEMPTS, PENDING_2FA_TTL, TOTP_ENCRYPTION_KEY, TOTP_ISSUER
from zkvault.core.exceptions import InvalidCode, InvalidOrExpiredToken, ValidationError
from zkvault.core.pending_store import PendingStore
from zkvault.db import crud
from zkvault.db.models import User

logger = logging.getLogger(__name__)

_STEP:   Final[int] = 30      # RFC default
_DIGITS: Final[int] = 6
_WINDOW: Final[int] = 1       # ±30 s drift

# TOTP secrets are stored encrypted in the database, never in plaintext.
fernet = Fernet(TOTP_ENCRYPTION_KEY)


def encrypt_totp_secret(secret: str) -> str:
    return fernet.encrypt(secret.encode()).decode()


def decrypt_totp_secret(token: str) -> str:
    return fernet.decrypt(token.encode()).decode()


def new_secret() -> str:
    return pyotp.random_base32()          # 160-bit seed


def provisioning_uri(secret: str, user: str, issuer: str = TOTP_ISSUER) -> str:
    return pyotp.TOTP(secret, interval=_STEP, digits=_DIGITS) \
               .provisioning_uri(name=user, issuer_name=issuer)


def verify_code(secret: str, code: str) -> bool:
    """True if code is valid for the current, previous or next step."""
    if not (isinstance(code, str) and code.isdigit() and len(code) == _DIGITS):
        return False
    try:
        totp = pyotp.TOTP(secret, interval=_STEP, digits=_DIGITS)
        return totp.verify(code, valid_window=_WINDOW)
    except ValueError as e:
        # malformed base32 from a client-supplied secret
        logger.warning(f"TOTP verification error: {type(e).__name__}")
        return False


class SecondFactor:
    """TOTP provisioning plus the pending-login gate between SRP and session issuance."""

    def __init__(self, store: PendingStore, ttl: int = PENDING_2FA_TTL, max_attempts: int = PENDING_2FA_MAX_ATTEMPTS):
        self.store = store
        self.ttl = ttl
        self.max_attempts = max_attempts

    @staticmethod
    def _key(temp_token: str) -> str:
        return f"2fa:{temp_token}"

    def _stored_secret(self, user: User) -> Optional[str]:
        if not user.totp_secret:
            return None
        try:
            return decrypt_totp_secret(user.totp_secret)
        except InvalidToken:
            logger.error(f"Stored TOTP secret for account {user.id} cannot be decrypted")
            raise

    def setup_secret(self, user: User) -> Tuple[str, str]:
        """A fresh secret and its otpauth URI. Nothing is persisted."""
        secret = new_secret()
        return secret, provisioning_uri(secret, user.username)

    def enable(self, db: Session, user: User, secret: str, code: str) -> User:
        # Replacing a secret goes through disable first, which needs a code for the old one
        if user.has_2fa:
            raise ValidationError("2FA is already enabled")
        if not verify_code(secret, code):
            raise InvalidCode(internal_detail=f"2FA enable rejected for account {user.id}")
        user = crud.set_totp_secret(db, user, encrypt_totp_secret(secret))
        logger.info(f"2FA enabled for account {user.id}")
        return user

    def disable(self, db: Session, user: User, code: str) -> User:
        secret = self._stored_secret(user)
        if secret is None:
            raise ValidationError("2FA is not enabled")
        if not verify_code(secret, code):
            raise InvalidCode(internal_detail=f"2FA disable rejected for account {user.id}")
        user = crud.set_totp_secret(db, user, None)
        logger.info(f"2FA disabled for account {user.id}")
        return user

    def gate(self, user: User) -> Optional[str]:
        """None when the account has no 2FA, else a temp token for /verify-2fa."""
        if not user.has_2fa:
            return None
        temp_token = secrets.token_hex(32)
        self.store.set(self._key(temp_token), {"user_id": user.id, "attempts": 0}, self.ttl)
        return temp_token

    def complete_login(self, db: Session, temp_token: str, code: str) -> User:
        """Consume the pending login if ``code`` is valid.

        A wrong code leaves the pending entry in place with its original expiry;
        after ``max_attempts`` wrong codes the entry is dropped.
        """
        pending = self.store.get(self._key(temp_token))
        if pending is None:
            raise InvalidOrExpiredToken()

        user = crud.get_user_by_id(db, pending["user_id"])
        secret = self._stored_secret(user) if user else None
        if secret is None:
            self.store.delete(self._key(temp_token))
            raise InvalidOrExpiredToken(internal_detail="Pending 2FA login for an account without 2FA")

        if not verify_code(secret, code):
            self._record_failure(temp_token, pending)
            raise InvalidCode(internal_detail=f"Wrong 2FA code for account {user.id}")

        # Two concurrent correct codes: only one pop wins
        if self.store.pop(self._key(temp_token)) is None:
            raise InvalidOrExpiredToken()
        return user

    def _record_failure(self, temp_token: str, pending: dict) -> None:
        attempts = pending.get("attempts", 0) + 1
        if attempts >= self.max_attempts:
            self.store.delete(self._key(temp_token))
            logger.warning(f"Pending 2FA login for account {pending['user_id']} dropped after {attempts} attempts")
            return
        # A concurrent success may have consumed the entry; never bring it back
        self.store.replace(self._key(temp_token), {**pending, "attempts": attempts})
