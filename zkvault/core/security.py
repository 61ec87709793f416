from fastapi import HTTPException, status, Depends, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.orm import Session
from typing import Optional

from zkvault.db.database import get_db
from zkvault.db.models import User, UserSession
from zkvault.services.session_ledger import SessionLedger

session_ledger = SessionLedger()

# Opaque bearer token scheme
security = HTTPBearer(auto_error=False)


def _unauthorized() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Unauthorized",
        headers={"WWW-Authenticate": "Bearer"},
    )


def get_current_session(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: Session = Depends(get_db)
) -> UserSession:
    """Resolve the bearer token to a live session"""
    if credentials is None or credentials.scheme.lower() != "bearer":
        raise _unauthorized()

    session = session_ledger.validate(db, credentials.credentials)
    if session is None or session.user is None:
        raise _unauthorized()
    return session


def get_current_user(session: UserSession = Depends(get_current_session)) -> User:
    """Get current authenticated user from the session token"""
    return session.user


def get_client_ip(request: Request) -> str:
    """Extract client IP address from request"""
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    real_ip = request.headers.get("X-Real-IP")
    if real_ip:
        return real_ip
    return request.client.host if request.client else "0.0.0.0"
