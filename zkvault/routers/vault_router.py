import logging
from typing import List

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from zkvault.schemas.vaults import (
    CreateVaultRequest, UpdateVaultRequest, VaultResponse, VaultSummary, VerifyResponse,
    PasswordPayload, PasswordRecord, UpdateMasterPasswordRequest,
    CreatedResponse, SuccessResponse, AddMemberRequest, MemberResponse,
)
from zkvault.db import crud
from zkvault.db.database import get_db
from zkvault.db.models import User, Vault, VaultAccess, PasswordEntry, ROLE_OWNER
from zkvault.core.exceptions import AccessDenied, NotFound, ZKVaultError, handle_database_error
from zkvault.core.security import get_current_user

logger = logging.getLogger(__name__)

router = APIRouter()


def require_access(db: Session, vault_id: int, user: User, owner: bool = False) -> VaultAccess:
    """The caller's ACL row for the vault; AccessDenied if absent or not owner when required"""
    access = crud.get_vault_access(db, vault_id, user.id)
    if access is None or (owner and access.role != ROLE_OWNER):
        raise AccessDenied(internal_detail=f"User {user.id} denied on vault {vault_id} (owner={owner})")
    return access


def _vault_response(vault: Vault) -> VaultResponse:
    return VaultResponse(
        id=vault.id,
        name=vault.name,
        salt=vault.master_password_salt,
        encrypted_user_id=vault.encrypted_user_id,
    )


def _password_record(entry: PasswordEntry) -> PasswordRecord:
    return PasswordRecord(id=entry.id, encrypted_data=entry.data.hex(), iv=entry.iv)


@router.post("", response_model=VaultResponse)
def create_vault(
    data: CreateVaultRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    try:
        vault = crud.create_vault(
            db,
            owner_id=current_user.id,
            name=data.name or f"{current_user.username}'s Vault",
            salt=data.salt,
            encrypted_user_id=data.encrypted_user_id,
        )
    except Exception as e:
        raise handle_database_error(e)
    logger.info(f"Account {current_user.id} created vault {vault.id}")
    return _vault_response(vault)


@router.get("", response_model=List[VaultSummary])
def list_vaults(current_user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return [
        VaultSummary(
            id=vault.id,
            name=vault.name,
            salt=vault.master_password_salt,
            encrypted_user_id=vault.encrypted_user_id,
            role=access.role,
        )
        for vault, access in crud.get_user_vaults(db, current_user.id)
    ]


@router.get("/{vault_id}", response_model=VaultResponse)
def get_vault(vault_id: int, current_user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    require_access(db, vault_id, current_user)
    vault = crud.get_vault(db, vault_id)
    if vault is None:
        raise NotFound("Vault not found")
    return _vault_response(vault)


@router.patch("/{vault_id}", response_model=VaultResponse)
def update_vault(
    vault_id: int,
    data: UpdateVaultRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    require_access(db, vault_id, current_user, owner=True)
    vault = crud.get_vault(db, vault_id)
    if vault is None:
        raise NotFound("Vault not found")
    vault = crud.update_vault(db, vault, name=data.name, encrypted_user_id=data.encrypted_user_id)
    return _vault_response(vault)


@router.delete("/{vault_id}", response_model=SuccessResponse)
def delete_vault(vault_id: int, current_user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    require_access(db, vault_id, current_user, owner=True)
    vault = crud.get_vault(db, vault_id)
    if vault is None:
        raise NotFound("Vault not found")
    crud.delete_vault(db, vault)
    logger.info(f"Account {current_user.id} deleted vault {vault_id}")
    return SuccessResponse(success=True)


@router.get("/{vault_id}/verify", response_model=VerifyResponse)
def get_verification_token(
    vault_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Only the canary, so a client can check a master password before fetching records"""
    require_access(db, vault_id, current_user)
    vault = crud.get_vault(db, vault_id)
    if vault is None:
        raise NotFound("Vault not found")
    return VerifyResponse(encrypted_user_id=vault.encrypted_user_id)


@router.get("/{vault_id}/passwords", response_model=List[PasswordRecord])
def list_passwords(vault_id: int, current_user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    require_access(db, vault_id, current_user)
    return [_password_record(entry) for entry in crud.get_vault_passwords(db, vault_id)]


@router.post("/{vault_id}/passwords", response_model=CreatedResponse)
def store_password(
    vault_id: int,
    data: PasswordPayload,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    require_access(db, vault_id, current_user)
    entry = crud.create_password(db, vault_id, bytes.fromhex(data.encrypted_data), data.iv)
    return CreatedResponse(id=entry.id)


@router.get("/{vault_id}/passwords/{password_id}", response_model=PasswordRecord)
def get_password(
    vault_id: int,
    password_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    require_access(db, vault_id, current_user)
    entry = crud.get_password(db, password_id, vault_id)
    if entry is None:
        raise NotFound("Password not found")
    return _password_record(entry)


@router.put("/{vault_id}/passwords/{password_id}", response_model=PasswordRecord)
def update_password(
    vault_id: int,
    password_id: int,
    data: PasswordPayload,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    require_access(db, vault_id, current_user)
    entry = crud.update_password(db, password_id, vault_id, bytes.fromhex(data.encrypted_data), data.iv)
    if entry is None:
        raise NotFound("Password not found")
    return _password_record(entry)


@router.delete("/{vault_id}/passwords/{password_id}", response_model=SuccessResponse)
def delete_password(
    vault_id: int,
    password_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    require_access(db, vault_id, current_user)
    if not crud.delete_password(db, password_id, vault_id):
        raise NotFound("Password not found")
    return SuccessResponse(success=True)


@router.post("/{vault_id}/update-master-password", response_model=SuccessResponse)
def update_master_password(
    vault_id: int,
    data: UpdateMasterPasswordRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Apply a client-computed key rotation: new canary and every record, all or nothing"""
    require_access(db, vault_id, current_user, owner=True)
    try:
        crud.apply_master_password_rotation(
            db,
            vault_id,
            data.encrypted_user_id,
            [(p.id, bytes.fromhex(p.encrypted_data), p.iv) for p in data.passwords],
        )
    except (HTTPException, ZKVaultError):
        raise
    except Exception as e:
        raise handle_database_error(e)
    return SuccessResponse(success=True)


@router.get("/{vault_id}/members", response_model=List[MemberResponse])
def list_members(vault_id: int, current_user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    require_access(db, vault_id, current_user)
    return [
        MemberResponse(user_id=user.id, username=user.username, role=access.role)
        for user, access in crud.get_vault_members(db, vault_id)
    ]


@router.post("/{vault_id}/members", response_model=MemberResponse)
def add_member(
    vault_id: int,
    data: AddMemberRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    require_access(db, vault_id, current_user, owner=True)
    member = crud.get_user_by_username(db, data.username)
    if member is None:
        raise NotFound("User not found")
    access = crud.add_vault_member(db, vault_id, member.id)
    logger.info(f"Account {current_user.id} shared vault {vault_id} with account {member.id}")
    return MemberResponse(user_id=member.id, username=member.username, role=access.role)


@router.delete("/{vault_id}/members/{user_id}", response_model=SuccessResponse)
def remove_member(
    vault_id: int,
    user_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    require_access(db, vault_id, current_user, owner=True)
    if not crud.remove_vault_member(db, vault_id, user_id):
        raise NotFound("Member not found")
    return SuccessResponse(success=True)
