import logging
from typing import Optional

from fastapi import HTTPException, Request
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


# Custom HTTPException class to handle secure errors, so we don't expose internal details to the client
class SecureHTTPException(HTTPException):
    def __init__(self, status_code: int, detail: str, internal_detail: str = None):
        super().__init__(status_code=status_code, detail=detail)
        if internal_detail:
            logger.error(f"Internal error: {internal_detail}")


class ZKVaultError(Exception):
    """Base class for protocol and vault errors surfaced to clients.

    ``detail`` is the only text a client ever sees. ``internal_detail`` is
    logged server-side and must not contain key material.
    """

    status_code: int = 400
    default_detail: str = "Bad request"

    def __init__(self, detail: Optional[str] = None, internal_detail: Optional[str] = None):
        self.detail = detail or self.default_detail
        self.internal_detail = internal_detail
        super().__init__(self.detail)


class InvalidCredentials(ZKVaultError):
    # Same shape for unknown username and wrong proof
    status_code = 401
    default_detail = "Invalid credentials"


class InvalidOrExpiredToken(ZKVaultError):
    status_code = 401
    default_detail = "Invalid or expired token"


class InvalidCode(ZKVaultError):
    status_code = 400
    default_detail = "Invalid verification code"


class DecryptionFailed(ZKVaultError):
    status_code = 400
    default_detail = "Could not unlock vault, check your master password"


class AlreadyExists(ZKVaultError):
    status_code = 400
    default_detail = "Username already exists"


class AccessDenied(ZKVaultError):
    status_code = 403
    default_detail = "Access denied"


class ValidationError(ZKVaultError):
    status_code = 400
    default_detail = "Invalid input"


class NotFound(ZKVaultError):
    status_code = 404
    default_detail = "Not found"


async def zkvault_error_handler(request: Request, exc: ZKVaultError) -> JSONResponse:
    if exc.internal_detail:
        logger.warning(f"{type(exc).__name__} on {request.method} {request.url.path}: {exc.internal_detail}")
    headers = {"WWW-Authenticate": "Bearer"} if exc.status_code == 401 else None
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail}, headers=headers)


def handle_database_error(e: Exception) -> HTTPException:
    logger.error(f"Database error: {str(e)}")
    return SecureHTTPException(
        status_code=500,
        detail="Internal server error",
        internal_detail=str(e)
    )
