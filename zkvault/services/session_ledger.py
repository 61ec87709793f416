import hashlib
import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional, Tuple

from sqlalchemy.orm import Session

from zkvault.core.config import SESSION_EXPIRY, SESSION_TOKEN_BYTES
from zkvault.db import crud
from zkvault.db.models import UserSession

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    # Naive UTC, matching what the DateTime columns hand back
    return datetime.now(timezone.utc).replace(tzinfo=None)


def hash_token(token: str) -> str:
    """Only the SHA-256 of a bearer token is ever stored"""
    return hashlib.sha256(token.encode()).hexdigest()


def describe_device(user_agent: Optional[str]) -> str:
    """Coarse device label from a User-Agent header"""
    if not user_agent:
        return "Unknown Device"
    if "iPad" in user_agent:
        return "iPad"
    if "iPhone" in user_agent:
        return "iPhone"
    if "Android" in user_agent:
        if "Mobile" in user_agent:
            return "Android Phone"
        if "Tablet" in user_agent:
            return "Android Tablet"
        return "Android Device"
    if "Windows" in user_agent:
        return "Windows PC"
    if "Macintosh" in user_agent:
        return "Mac"
    if "Linux" in user_agent:
        return "Linux PC"
    return "Unknown Device"


class SessionLedger:
    """Opaque bearer sessions: issue, validate, revoke, sweep."""

    def __init__(self, expiry: timedelta = SESSION_EXPIRY, clock: Callable[[], datetime] = utcnow):
        self.expiry = expiry
        self.clock = clock

    def issue(
        self,
        db: Session,
        user_id: int,
        device_name: str = "Unknown Device",
        ip_address: str = "0.0.0.0"
    ) -> Tuple[str, UserSession]:
        """Create a session; the raw token is returned once and never stored."""
        token = secrets.token_hex(SESSION_TOKEN_BYTES)
        now = self.clock()
        session = crud.create_session(
            db,
            user_id=user_id,
            token_hash=hash_token(token),
            created_at=now,
            expires_at=now + self.expiry,
            device_name=device_name[:255],
            ip_address=ip_address[:255],
        )
        logger.info(f"Issued session {session.id} for account {user_id}")
        return token, session

    def validate(self, db: Session, token: str) -> Optional[UserSession]:
        """The live session for ``token``; expired sessions are deleted on sight."""
        if not token:
            return None
        session = crud.get_session_by_token_hash(db, hash_token(token))
        if session is None:
            return None
        if session.expires_at <= self.clock():
            crud.delete_session(db, session.id, session.user_id)
            return None
        return session

    def list_active(self, db: Session, user_id: int) -> List[UserSession]:
        return crud.get_user_sessions(db, user_id, self.clock())

    def revoke(self, db: Session, session: UserSession) -> bool:
        revoked = crud.delete_session(db, session.id, session.user_id)
        if revoked:
            logger.info(f"Revoked session {session.id} for account {session.user_id}")
        return revoked

    def revoke_by_id(self, db: Session, user_id: int, session_id: int) -> bool:
        return crud.delete_session(db, session_id, user_id)

    def revoke_others(self, db: Session, current: UserSession) -> int:
        count = crud.delete_other_sessions(db, current.id, current.user_id)
        if count:
            logger.info(f"Revoked {count} other sessions for account {current.user_id}")
        return count

    def sweep_expired(self, db: Session) -> int:
        count = crud.delete_expired_sessions(db, self.clock())
        if count:
            logger.info(f"Cleaned up {count} expired sessions")
        return count
