"""Database setup and models for business data records and sessions."""

import uuid
from datetime import datetime, timezone

from sqlalchemy import JSON, Column, DateTime, Float, String, Text, create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

Base = declarative_base()


def utcnow() -> datetime:
    """Current UTC time as a naive datetime, matching what the store persists."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def new_id() -> str:
    return str(uuid.uuid4())


def create_db_engine(database_url: str) -> Engine:
    """Create an engine, sharing one connection for in-memory SQLite."""
    kwargs = {}
    if database_url.startswith("sqlite"):
        kwargs["connect_args"] = {"check_same_thread": False}
        if database_url in ("sqlite://", "sqlite:///:memory:"):
            kwargs["poolclass"] = StaticPool
    return create_engine(database_url, future=True, **kwargs)


def create_session_factory(engine: Engine) -> sessionmaker:
    # expire_on_commit=False keeps returned rows readable after the session closes
    return sessionmaker(
        bind=engine,
        autoflush=False,
        autocommit=False,
        expire_on_commit=False,
        future=True,
    )


class BusinessData(Base):
    """A business data record owned by exactly one user."""

    __tablename__ = "business_data"

    id = Column(String(36), primary_key=True, default=new_id)
    owner_id = Column(String(36), index=True, nullable=False)
    title = Column(String, nullable=False)
    category = Column(String, nullable=False)
    description = Column(Text, nullable=False)
    value = Column(Float, default=0.0, nullable=False)
    status = Column(String, default="active", nullable=False)
    meta = Column("metadata", JSON, default=dict, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, nullable=False)


class AuthSession(Base):
    """Server-side session binding a bearer token to a user."""

    __tablename__ = "sessions"

    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(String(36), index=True, nullable=False)
    token = Column(Text, unique=True, index=True, nullable=False)
    expires_at = Column(DateTime, index=True, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)


def init_db(engine: Engine) -> None:
    """Create database tables if they do not exist."""
    # registers the users table on Base.metadata
    from .models import user  # noqa: F401

    Base.metadata.create_all(bind=engine)
