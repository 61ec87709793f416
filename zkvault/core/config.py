import base64
import hashlib
import os
from datetime import timedelta
from typing import List

from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

# Server settings
PROJECT_NAME: str = "ZK Vault Server"
PORT: int = int(os.getenv("PORT", 3000))
ENVIRONMENT: str = os.getenv("ENVIRONMENT", "development")
LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").upper()

# Validate required production settings
if ENVIRONMENT == "production":
    required_vars = ["DATABASE_URL", "TOTP_ENCRYPTION_KEY"]
    missing_vars = [var for var in required_vars if not os.getenv(var)]
    if missing_vars:
        raise ValueError(f"Missing required environment variables for production: {missing_vars}")

# Database URL
DATABASE_URL: str = os.getenv("DATABASE_URL", "sqlite:///./zkvault.db")

# CORS settings
ALLOW_ORIGINS: List[str] = [
    origin.strip()
    for origin in os.getenv("CORS_ORIGIN", "http://localhost:3000").split(",")
    if origin.strip()
]

# Session settings
SESSION_EXPIRY: timedelta = timedelta(days=14)
SESSION_TOKEN_BYTES: int = 48  # 384 bits

# Pending login state (SRP handshakes and 2FA temp tokens)
PENDING_STORE_BACKEND: str = os.getenv("PENDING_STORE_BACKEND", "memory").lower()
REDIS_URL: str = os.getenv("REDIS_URL", "redis://localhost:6379/0")
SRP_HANDSHAKE_TTL: int = int(os.getenv("SRP_HANDSHAKE_TTL", 300))
PENDING_2FA_TTL: int = int(os.getenv("PENDING_2FA_TTL", 300))
PENDING_2FA_MAX_ATTEMPTS: int = int(os.getenv("PENDING_2FA_MAX_ATTEMPTS", 5))

# Expired sessions and pending entries are swept on this interval
SWEEP_INTERVAL_SECONDS: int = int(os.getenv("SWEEP_INTERVAL_SECONDS", 3600))

# TOTP settings
TOTP_ISSUER: str = os.getenv("TOTP_ISSUER", "Password Manager")


def _development_totp_key() -> str:
    # Stable across restarts so stored secrets stay readable in development
    digest = hashlib.sha256(f"{PROJECT_NAME}:totp-at-rest".encode()).digest()
    return base64.urlsafe_b64encode(digest).decode()


# Fernet key used to encrypt TOTP secrets at rest
TOTP_ENCRYPTION_KEY: str = os.getenv("TOTP_ENCRYPTION_KEY") or _development_totp_key()

# Input limits (bytes, measured on the UTF-8 encoding)
MIN_USERNAME_LENGTH: int = 3
MAX_USERNAME_BYTES: int = 255
MAX_SALT_BYTES: int = 1000
MAX_VERIFIER_BYTES: int = 1000
MAX_VAULT_NAME_BYTES: int = 255
MAX_ENCRYPTED_DATA_BYTES: int = 10 * 1024 * 1024
