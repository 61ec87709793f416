from pydantic import BaseModel, ConfigDict, Field, field_validator
from typing import List, Literal, Optional

from zkvault.core.config import MAX_ENCRYPTED_DATA_BYTES, MAX_SALT_BYTES, MAX_USERNAME_BYTES, MAX_VAULT_NAME_BYTES
from zkvault.schemas.users import check_max_bytes

HEX_PATTERN = r"^[0-9a-fA-F]+$"
IV_PATTERN = r"^[0-9a-fA-F]{32}$"
# Canary: "<iv hex>:<ciphertext hex>"
CANARY_PATTERN = r"^[0-9a-fA-F]{32}:[0-9a-fA-F]+$"


class CamelModel(BaseModel):
    # Wire names are camelCase; Python attributes stay snake_case
    model_config = ConfigDict(populate_by_name=True)


class CreateVaultRequest(CamelModel):
    name: Optional[str] = None
    salt: str = Field(..., min_length=1)
    encrypted_user_id: str = Field(..., alias="encryptedUserId", max_length=1000, pattern=CANARY_PATTERN)

    @field_validator("name")
    @classmethod
    def name_length(cls, v: Optional[str]) -> Optional[str]:
        return check_max_bytes(v, MAX_VAULT_NAME_BYTES, "Name") if v is not None else v

    @field_validator("salt")
    @classmethod
    def salt_length(cls, v: str) -> str:
        return check_max_bytes(v, MAX_SALT_BYTES, "Salt")


class UpdateVaultRequest(CamelModel):
    name: Optional[str] = None
    encrypted_user_id: Optional[str] = Field(None, alias="encryptedUserId", max_length=1000, pattern=CANARY_PATTERN)

    @field_validator("name")
    @classmethod
    def name_length(cls, v: Optional[str]) -> Optional[str]:
        return check_max_bytes(v, MAX_VAULT_NAME_BYTES, "Name") if v is not None else v


class VaultResponse(CamelModel):
    id: int
    name: str
    salt: str
    encrypted_user_id: str = Field(..., alias="encryptedUserId")


class VaultSummary(VaultResponse):
    role: Literal["OWNER", "MEMBER"]


class VerifyResponse(CamelModel):
    encrypted_user_id: str = Field(..., alias="encryptedUserId")


class PasswordPayload(CamelModel):
    # Hex doubles the size, so the cap on the hex text is twice the byte cap
    encrypted_data: str = Field(
        ..., alias="encryptedData", max_length=2 * MAX_ENCRYPTED_DATA_BYTES, pattern=HEX_PATTERN
    )
    iv: str = Field(..., pattern=IV_PATTERN)

    @field_validator("encrypted_data")
    @classmethod
    def whole_bytes(cls, v: str) -> str:
        if len(v) % 2:
            raise ValueError("encryptedData must be an even number of hex digits")
        return v.lower()

    @field_validator("iv")
    @classmethod
    def lower_iv(cls, v: str) -> str:
        return v.lower()


class PasswordRecord(PasswordPayload):
    id: int


class RotatedPassword(PasswordRecord):
    pass


class UpdateMasterPasswordRequest(CamelModel):
    encrypted_user_id: str = Field(..., alias="encryptedUserId", max_length=1000, pattern=CANARY_PATTERN)
    passwords: List[RotatedPassword]


class CreatedResponse(BaseModel):
    id: int


class SuccessResponse(BaseModel):
    success: bool


class AddMemberRequest(BaseModel):
    username: str

    @field_validator("username")
    @classmethod
    def username_length(cls, v: str) -> str:
        return check_max_bytes(v, MAX_USERNAME_BYTES, "Username")


class MemberResponse(BaseModel):
    user_id: int
    username: str
    role: Literal["OWNER", "MEMBER"]
