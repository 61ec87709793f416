import logging
from typing import List

from fastapi import APIRouter, Depends, Request
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from zkvault.schemas.users import (
    RegisterRequest, RegisterResponse, SrpChallengeRequest, SrpChallengeResponse,
    LoginRequest, LoginResponse, SessionLoginResponse, TwoFactorLoginResponse,
    Verify2FARequest, TokenResponse, MessageResponse, MeResponse,
    UpdateUsernameRequest, UpdatePasswordRequest,
    TwoFactorSetupResponse, TwoFactorEnableRequest, TwoFactorDisableRequest,
    SessionInfo, SessionsDeletedResponse,
)
from zkvault.db import crud
from zkvault.db.database import get_db
from zkvault.db.models import User, UserSession
from zkvault.core.exceptions import AlreadyExists, NotFound, ValidationError, handle_database_error
from zkvault.core.pending_store import pending_store
from zkvault.core.security import get_current_session, get_current_user, get_client_ip, session_ledger
from zkvault.services.session_ledger import describe_device
from zkvault.services.srp_exchange import SrpExchange
from zkvault.services.totp_service import SecondFactor

logger = logging.getLogger(__name__)

router = APIRouter()

srp_exchange = SrpExchange(pending_store)
second_factor = SecondFactor(pending_store)


def _issue_session(db: Session, request: Request, user: User) -> str:
    token, _ = session_ledger.issue(
        db,
        user.id,
        device_name=describe_device(request.headers.get("user-agent")),
        ip_address=get_client_ip(request),
    )
    return token


@router.post("/register", response_model=RegisterResponse)
def register_user(data: RegisterRequest, request: Request, db: Session = Depends(get_db)):
    if crud.get_user_by_username(db, data.username):
        raise AlreadyExists(internal_detail=f"Username {data.username!r} already exists")
    try:
        user = srp_exchange.register(db, data.username, data.srp_salt, data.srp_verifier)
        # No second factor can exist yet, so the session is issued directly
        token = _issue_session(db, request, user)
    except SQLAlchemyError as e:
        raise handle_database_error(e)
    return RegisterResponse(message="User registered successfully", token=token)


@router.post("/srp-challenge", response_model=SrpChallengeResponse)
def srp_challenge(data: SrpChallengeRequest, db: Session = Depends(get_db)):
    challenge = srp_exchange.begin_challenge(db, data.username)
    return SrpChallengeResponse(salt=challenge.salt, server_public_key=challenge.server_public_key)


@router.post("/login", response_model=LoginResponse)
def login(data: LoginRequest, request: Request, db: Session = Depends(get_db)):
    user, server_proof = srp_exchange.verify_proof(
        db, data.username, data.client_public_key, data.client_proof
    )

    temp_token = second_factor.gate(user)
    if temp_token is not None:
        logger.info(f"Account {user.id} passed SRP, awaiting second factor")
        return TwoFactorLoginResponse(server_proof=server_proof, temp_token=temp_token)

    token = _issue_session(db, request, user)
    return SessionLoginResponse(server_proof=server_proof, token=token)


@router.post("/verify-2fa", response_model=TokenResponse)
def verify_2fa(data: Verify2FARequest, request: Request, db: Session = Depends(get_db)):
    user = second_factor.complete_login(db, data.temp_token, data.totp_code)
    return TokenResponse(token=_issue_session(db, request, user))


@router.get("/me", response_model=MeResponse)
def me(current_user: User = Depends(get_current_user)):
    return MeResponse(id=current_user.id, username=current_user.username, has_2fa=current_user.has_2fa)


@router.put("/username", response_model=MessageResponse)
def update_username(
    data: UpdateUsernameRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    old_username = current_user.username
    crud.update_username(db, current_user, data.username, data.srp_salt, data.srp_verifier)
    srp_exchange.reset(old_username)
    logger.info(f"Account {current_user.id} renamed")
    return MessageResponse(message="Username updated successfully")


@router.put("/password", response_model=MessageResponse)
def update_password(
    data: UpdatePasswordRequest,
    current_session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db)
):
    user = current_session.user
    try:
        crud.update_srp_credentials(db, user, data.srp_salt, data.srp_verifier)
    except SQLAlchemyError as e:
        raise handle_database_error(e)
    srp_exchange.reset(user.username)
    session_ledger.revoke_others(db, current_session)
    logger.info(f"SRP credentials replaced for account {user.id}")
    return MessageResponse(message="Password updated successfully")


@router.post("/2fa/setup", response_model=TwoFactorSetupResponse)
def setup_2fa(current_user: User = Depends(get_current_user)):
    # Not saved until /2fa/enable proves the user recorded it
    secret, uri = second_factor.setup_secret(current_user)
    return TwoFactorSetupResponse(secret=secret, qr_code_url=uri)


@router.post("/2fa/enable", response_model=MessageResponse)
def enable_2fa(
    data: TwoFactorEnableRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    second_factor.enable(db, current_user, data.secret, data.token)
    return MessageResponse(message="2FA enabled successfully")


@router.post("/2fa/disable", response_model=MessageResponse)
def disable_2fa(
    data: TwoFactorDisableRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    second_factor.disable(db, current_user, data.token)
    return MessageResponse(message="2FA disabled successfully")


@router.get("/sessions", response_model=List[SessionInfo])
def list_sessions(
    current_session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db)
):
    return [
        SessionInfo(
            id=s.id,
            device_name=s.device_name,
            ip_address=s.ip_address,
            created_at=s.created_at,
            expires_at=s.expires_at,
            is_current=s.id == current_session.id,
        )
        for s in session_ledger.list_active(db, current_session.user_id)
    ]


@router.delete("/sessions/{session_id}", response_model=MessageResponse)
def delete_session(
    session_id: int,
    current_session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db)
):
    if session_id == current_session.id:
        raise ValidationError("Cannot delete current session")
    if not session_ledger.revoke_by_id(db, current_session.user_id, session_id):
        raise NotFound("Session not found")
    return MessageResponse(message="Session deleted successfully")


@router.delete("/sessions", response_model=SessionsDeletedResponse)
def delete_other_sessions(
    current_session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db)
):
    count = session_ledger.revoke_others(db, current_session)
    return SessionsDeletedResponse(message="Other sessions deleted successfully", count=count)


@router.post("/logout", response_model=MessageResponse)
def logout(
    current_session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db)
):
    session_ledger.revoke(db, current_session)
    return MessageResponse(message="Logged out successfully")
