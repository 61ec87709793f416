from sqlalchemy.orm import Session
from sqlalchemy.exc import IntegrityError
from sqlalchemy import and_
from datetime import datetime
from typing import List, Optional, Sequence, Tuple
import logging

from zkvault.db.models import User, UserSession, Vault, VaultAccess, PasswordEntry, ROLE_OWNER, ROLE_MEMBER
from zkvault.core.exceptions import AlreadyExists, NotFound, ValidationError, ZKVaultError

logger = logging.getLogger(__name__)

# User CRUD operations

def create_user(db: Session, username: str, srp_salt: str, srp_verifier: str) -> User:
    """Create a new account from client-computed SRP credentials"""
    user = User(username=username, srp_salt=srp_salt, srp_verifier=srp_verifier)
    db.add(user)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise AlreadyExists(internal_detail=f"Username {username!r} already exists")
    db.refresh(user)
    return user

def get_user_by_id(db: Session, user_id: int) -> Optional[User]:
    """Get user by ID"""
    return db.query(User).filter(User.id == user_id).first()

def get_user_by_username(db: Session, username: str) -> Optional[User]:
    """Get user by username (exact match)"""
    return db.query(User).filter(User.username == username).first()

def update_username(db: Session, user: User, username: str, srp_salt: str, srp_verifier: str) -> User:
    """Rename an account; the verifier is bound to the username so it is replaced too"""
    existing = get_user_by_username(db, username)
    if existing and existing.id != user.id:
        raise AlreadyExists(internal_detail=f"Username {username!r} already exists")
    user.username = username
    user.srp_salt = srp_salt
    user.srp_verifier = srp_verifier
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise AlreadyExists(internal_detail=f"Username {username!r} already exists")
    db.refresh(user)
    return user

def update_srp_credentials(db: Session, user: User, srp_salt: str, srp_verifier: str) -> User:
    """Replace salt and verifier together"""
    user.srp_salt = srp_salt
    user.srp_verifier = srp_verifier
    db.commit()
    db.refresh(user)
    return user

def set_totp_secret(db: Session, user: User, encrypted_secret: Optional[str]) -> User:
    user.totp_secret = encrypted_secret
    db.commit()
    db.refresh(user)
    return user

# Session CRUD operations

def create_session(
    db: Session,
    user_id: int,
    token_hash: str,
    created_at: datetime,
    expires_at: datetime,
    device_name: str = "Unknown Device",
    ip_address: str = "0.0.0.0"
) -> UserSession:
    session = UserSession(
        user_id=user_id,
        token_hash=token_hash,
        device_name=device_name,
        ip_address=ip_address,
        created_at=created_at,
        expires_at=expires_at,
    )
    db.add(session)
    db.commit()
    db.refresh(session)
    return session

def get_session_by_token_hash(db: Session, token_hash: str) -> Optional[UserSession]:
    return db.query(UserSession).filter(UserSession.token_hash == token_hash).first()

def get_user_sessions(db: Session, user_id: int, now: datetime) -> List[UserSession]:
    """Active sessions, newest first"""
    return db.query(UserSession).filter(
        and_(UserSession.user_id == user_id, UserSession.expires_at > now)
    ).order_by(UserSession.created_at.desc(), UserSession.id.desc()).all()

def delete_session(db: Session, session_id: int, user_id: int) -> bool:
    result = db.query(UserSession).filter(
        and_(UserSession.id == session_id, UserSession.user_id == user_id)
    ).delete()
    db.commit()
    return result > 0

def delete_other_sessions(db: Session, keep_session_id: int, user_id: int) -> int:
    result = db.query(UserSession).filter(
        and_(UserSession.user_id == user_id, UserSession.id != keep_session_id)
    ).delete()
    db.commit()
    return result

def delete_expired_sessions(db: Session, now: datetime) -> int:
    result = db.query(UserSession).filter(UserSession.expires_at <= now).delete()
    db.commit()
    return result

# Vault CRUD operations

def create_vault(db: Session, owner_id: int, name: str, salt: str, encrypted_user_id: str) -> Vault:
    """Create a vault and its OWNER access row in one commit"""
    vault = Vault(name=name, master_password_salt=salt, encrypted_user_id=encrypted_user_id)
    vault.access.append(VaultAccess(user_id=owner_id, role=ROLE_OWNER))
    db.add(vault)
    db.commit()
    db.refresh(vault)
    return vault

def get_vault(db: Session, vault_id: int) -> Optional[Vault]:
    return db.query(Vault).filter(Vault.id == vault_id).first()

def get_vault_access(db: Session, vault_id: int, user_id: int) -> Optional[VaultAccess]:
    return db.query(VaultAccess).filter(
        and_(VaultAccess.vault_id == vault_id, VaultAccess.user_id == user_id)
    ).first()

def get_user_vaults(db: Session, user_id: int) -> List[Tuple[Vault, VaultAccess]]:
    """Vaults the user owns or is a member of"""
    return db.query(Vault, VaultAccess).join(VaultAccess, Vault.id == VaultAccess.vault_id).filter(
        VaultAccess.user_id == user_id
    ).order_by(Vault.id).all()

def update_vault(db: Session, vault: Vault, name: Optional[str] = None, encrypted_user_id: Optional[str] = None) -> Vault:
    if name is None and encrypted_user_id is None:
        raise ValidationError("No fields to update")
    if name is not None:
        vault.name = name
    if encrypted_user_id is not None:
        vault.encrypted_user_id = encrypted_user_id
    db.commit()
    db.refresh(vault)
    return vault

def delete_vault(db: Session, vault: Vault) -> None:
    """Delete a vault; records and access rows go with it"""
    db.delete(vault)
    db.commit()

def get_vault_members(db: Session, vault_id: int) -> List[Tuple[User, VaultAccess]]:
    return db.query(User, VaultAccess).join(VaultAccess, User.id == VaultAccess.user_id).filter(
        VaultAccess.vault_id == vault_id
    ).order_by(User.id).all()

def add_vault_member(db: Session, vault_id: int, user_id: int, role: str = ROLE_MEMBER) -> VaultAccess:
    if get_vault_access(db, vault_id, user_id):
        raise ValidationError("User already has access to this vault")
    access = VaultAccess(vault_id=vault_id, user_id=user_id, role=role)
    db.add(access)
    db.commit()
    db.refresh(access)
    return access

def remove_vault_member(db: Session, vault_id: int, user_id: int) -> bool:
    result = db.query(VaultAccess).filter(
        and_(
            VaultAccess.vault_id == vault_id,
            VaultAccess.user_id == user_id,
            VaultAccess.role == ROLE_MEMBER,
        )
    ).delete()
    db.commit()
    return result > 0

# Password record CRUD operations
#
# Every write to a vault's records first locks the vault row, so record writes
# and a master password rotation of the same vault are serialised.

def lock_vault(db: Session, vault_id: int) -> Optional[Vault]:
    """SELECT ... FOR UPDATE on the vault row, held until the transaction ends"""
    return db.query(Vault).filter(Vault.id == vault_id).with_for_update().first()

def create_password(db: Session, vault_id: int, data: bytes, iv: str) -> PasswordEntry:
    lock_vault(db, vault_id)
    entry = PasswordEntry(vault_id=vault_id, data=data, iv=iv)
    db.add(entry)
    db.commit()
    db.refresh(entry)
    return entry

def get_vault_passwords(db: Session, vault_id: int) -> List[PasswordEntry]:
    return db.query(PasswordEntry).filter(PasswordEntry.vault_id == vault_id).order_by(PasswordEntry.id).all()

def get_password(db: Session, password_id: int, vault_id: int) -> Optional[PasswordEntry]:
    return db.query(PasswordEntry).filter(
        and_(PasswordEntry.id == password_id, PasswordEntry.vault_id == vault_id)
    ).first()

def update_password(db: Session, password_id: int, vault_id: int, data: bytes, iv: str) -> Optional[PasswordEntry]:
    lock_vault(db, vault_id)
    entry = get_password(db, password_id, vault_id)
    if entry is None:
        db.rollback()
        return None
    entry.data = data
    entry.iv = iv
    db.commit()
    db.refresh(entry)
    return entry

def delete_password(db: Session, password_id: int, vault_id: int) -> bool:
    lock_vault(db, vault_id)
    result = db.query(PasswordEntry).filter(
        and_(PasswordEntry.id == password_id, PasswordEntry.vault_id == vault_id)
    ).delete()
    db.commit()
    return result > 0

# Master password rotation

def _rewrite_password(db: Session, entry: PasswordEntry, data: bytes, iv: str) -> None:
    entry.data = data
    entry.iv = iv
    db.flush()

def apply_master_password_rotation(
    db: Session,
    vault_id: int,
    encrypted_user_id: str,
    passwords: Sequence[Tuple[int, bytes, str]]
) -> Vault:
    """Swap the canary and every record to the new vault key as one transaction.

    ``passwords`` must name every record currently in the vault exactly once.
    Either all rows and the canary are committed, or none are. The record id
    set is read under the vault row lock, so no record can be added or removed
    between the check and the commit.
    """
    try:
        vault = lock_vault(db, vault_id)
        if vault is None:
            raise NotFound("Vault not found")

        entries = {entry.id: entry for entry in get_vault_passwords(db, vault_id)}
        submitted = [password_id for password_id, _, _ in passwords]
        if len(submitted) != len(set(submitted)) or set(submitted) != set(entries):
            raise ValidationError(
                "Rotation must re-encrypt every record in the vault exactly once",
                internal_detail=f"vault {vault_id}: expected {sorted(entries)}, got {sorted(submitted)}"
            )

        vault.encrypted_user_id = encrypted_user_id
        for password_id, data, iv in passwords:
            _rewrite_password(db, entries[password_id], data, iv)
        db.commit()
    except ZKVaultError:
        db.rollback()
        raise
    except Exception:
        db.rollback()
        logger.error(f"Master password rotation for vault {vault_id} rolled back")
        raise

    logger.info(f"Rotated vault {vault_id} to a new key ({len(passwords)} records)")
    db.refresh(vault)
    return vault
