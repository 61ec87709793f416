from .users import (
    RegisterRequest,
    RegisterResponse,
    SrpChallengeRequest,
    SrpChallengeResponse,
    LoginRequest,
    LoginResponse,
    SessionLoginResponse,
    TwoFactorLoginResponse,
    Verify2FARequest,
    TokenResponse,
    MessageResponse,
    MeResponse,
    UpdateUsernameRequest,
    UpdatePasswordRequest,
    TwoFactorSetupResponse,
    TwoFactorEnableRequest,
    TwoFactorDisableRequest,
    SessionInfo,
    SessionsDeletedResponse,
)
from .vaults import (
    CreateVaultRequest,
    UpdateVaultRequest,
    VaultResponse,
    VaultSummary,
    VerifyResponse,
    PasswordPayload,
    PasswordRecord,
    RotatedPassword,
    UpdateMasterPasswordRequest,
    CreatedResponse,
    SuccessResponse,
    AddMemberRequest,
    MemberResponse,
)
