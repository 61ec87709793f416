from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool
import os

from zkvault.core.config import DATABASE_URL

# Check if we should echo the SQL queries - never in production
def should_echo_sql():
    if os.getenv("ENVIRONMENT") == "production":
        return False
    return os.getenv("SQL_DEBUG", "false").lower() == "true"

echo = should_echo_sql()


def is_in_memory_sqlite(url: str) -> bool:
    return url in ("sqlite://", "sqlite:///") or ":memory:" in url or "mode=memory" in url


# Database configuration
def get_database_engine(url: str = DATABASE_URL):
    if url.startswith("sqlite"):
        # SQLite specific configuration
        if is_in_memory_sqlite(url):
            # One shared connection, otherwise every connection sees its own empty database
            return create_engine(
                url,
                poolclass=StaticPool,
                connect_args={"check_same_thread": False},
                echo=echo
            )
        # File-backed: a connection per session so transactions stay isolated
        return create_engine(
            url,
            connect_args={"check_same_thread": False},
            echo=echo
        )
    # PostgreSQL configuration
    return create_engine(
        url,
        pool_pre_ping=True,
        pool_recycle=300,
        echo=echo
    )

engine = get_database_engine()

# Session factory
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def init_db(bind=None):
    """Create missing tables."""
    from zkvault.db.models import Base
    Base.metadata.create_all(bind=bind or engine)


# Dependency for FastAPI
def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
