from sqlalchemy import Column, Integer, String, LargeBinary, DateTime, ForeignKey, Index
from sqlalchemy.orm import declarative_base, relationship
from sqlalchemy.sql import func

Base = declarative_base()

ROLE_OWNER = "OWNER"
ROLE_MEMBER = "MEMBER"


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    username = Column(String(255), unique=True, nullable=False)
    srp_salt = Column(String(1000), nullable=False)      # hex, also the PBKDF2 salt
    srp_verifier = Column(String(1000), nullable=False)  # hex SRP-6a verifier
    totp_secret = Column(String(255), nullable=True)     # Fernet token, NULL when 2FA is off
    created_at = Column(DateTime, default=func.now())

    # Relationships
    sessions = relationship("UserSession", back_populates="user", cascade="all, delete-orphan")
    vault_access = relationship("VaultAccess", back_populates="user", cascade="all, delete-orphan")

    @property
    def has_2fa(self) -> bool:
        return bool(self.totp_secret)


class UserSession(Base):
    __tablename__ = "user_sessions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    token_hash = Column(String(64), unique=True, nullable=False)  # SHA-256 of the bearer token
    device_name = Column(String(255), nullable=False, default="Unknown Device")
    ip_address = Column(String(255), nullable=False, default="0.0.0.0")
    created_at = Column(DateTime, nullable=False)
    expires_at = Column(DateTime, nullable=False)

    # Relationships
    user = relationship("User", back_populates="sessions")

    __table_args__ = (
        Index("idx_session_user_id", "user_id"),
        Index("idx_session_expires_at", "expires_at"),
    )


class Vault(Base):
    __tablename__ = "vaults"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(255), nullable=False)
    master_password_salt = Column(String(1000), nullable=False)
    encrypted_user_id = Column(String(1000), nullable=False)  # canary: "<iv hex>:<ciphertext hex>"
    created_at = Column(DateTime, default=func.now())

    # Relationships
    access = relationship("VaultAccess", back_populates="vault", cascade="all, delete-orphan")
    passwords = relationship(
        "PasswordEntry",
        back_populates="vault",
        cascade="all, delete-orphan",
        order_by="PasswordEntry.id",
    )


class VaultAccess(Base):
    __tablename__ = "vault_access"

    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True)
    vault_id = Column(Integer, ForeignKey("vaults.id", ondelete="CASCADE"), primary_key=True)
    role = Column(String(16), nullable=False)

    # Relationships
    user = relationship("User", back_populates="vault_access")
    vault = relationship("Vault", back_populates="access")


class PasswordEntry(Base):
    __tablename__ = "passwords"

    id = Column(Integer, primary_key=True, autoincrement=True)
    vault_id = Column(Integer, ForeignKey("vaults.id", ondelete="CASCADE"), nullable=False)
    data = Column(LargeBinary, nullable=False)  # AES-256-CBC ciphertext
    iv = Column(String(32), nullable=False)     # 16-byte IV, lowercase hex
    created_at = Column(DateTime, default=func.now())
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())

    # Relationships
    vault = relationship("Vault", back_populates="passwords")

    __table_args__ = (
        Index("idx_password_vault_id", "vault_id"),
    )
