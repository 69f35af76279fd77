"""Database configuration and connection"""
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, declarative_base

from sitebot.config import DATABASE

DATABASE_URL = DATABASE["url"]

# Fix PostgreSQL URL for hosted providers (postgres:// -> postgresql://)
if DATABASE_URL.startswith("postgres://"):
    DATABASE_URL = DATABASE_URL.replace("postgres://", "postgresql://", 1)

connect_args = {}
if "sqlite" in DATABASE_URL:
    connect_args = {"check_same_thread": False, "timeout": 30}

engine = create_engine(
    DATABASE_URL,
    connect_args=connect_args,
    pool_pre_ping=True,
    pool_recycle=3600,
    echo=False,
)

SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False)
Base = declarative_base()


def init_db(bind=None) -> None:
    """Create all tables."""
    from sitebot.db import models  # noqa: F401

    Base.metadata.create_all(bind=bind or engine)
