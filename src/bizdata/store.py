"""Record store for users, business data records and sessions.

``RecordStore`` is the storage interface the auth service and request
handlers depend on; ``SqlAlchemyStore`` implements it on any SQLAlchemy
engine. Every call opens and closes its own ORM session, so nothing is
cached between operations and concurrent writers simply race (last write
wins).
"""

import logging
from abc import ABC, abstractmethod
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Dict, Iterator, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from .database import AuthSession, BusinessData, utcnow
from .exceptions import StoreError
from .models.user import ROLE_USER, User

logger = logging.getLogger(__name__)

USER_MUTABLE_FIELDS = frozenset({"email", "password_hash", "name", "role", "is_active"})
RECORD_MUTABLE_FIELDS = frozenset(
    {"title", "category", "description", "value", "status", "meta"}
)


class RecordStore(ABC):
    """CRUD and secondary-key lookups for every entity type."""

    # users

    @abstractmethod
    def list_users(self) -> List[User]: ...

    @abstractmethod
    def get_user(self, user_id: str) -> Optional[User]: ...

    @abstractmethod
    def get_user_by_email(self, email: str) -> Optional[User]: ...

    @abstractmethod
    def create_user(
        self,
        email: str,
        password_hash: str,
        name: str,
        role: str = ROLE_USER,
        is_active: bool = True,
    ) -> User: ...

    @abstractmethod
    def update_user(self, user_id: str, **changes: Any) -> Optional[User]: ...

    @abstractmethod
    def delete_user(self, user_id: str) -> bool: ...

    # business data

    @abstractmethod
    def list_records(self, owner_id: Optional[str] = None) -> List[BusinessData]: ...

    @abstractmethod
    def get_record(self, record_id: str) -> Optional[BusinessData]: ...

    @abstractmethod
    def create_record(
        self,
        owner_id: str,
        title: str,
        category: str,
        description: str,
        value: float = 0.0,
        status: str = "active",
        meta: Optional[Dict[str, Any]] = None,
    ) -> BusinessData: ...

    @abstractmethod
    def update_record(self, record_id: str, **changes: Any) -> Optional[BusinessData]: ...

    @abstractmethod
    def delete_record(self, record_id: str) -> bool: ...

    # sessions

    @abstractmethod
    def create_session(self, user_id: str, token: str, expires_at: datetime) -> AuthSession: ...

    @abstractmethod
    def get_session_by_token(
        self, token: str, now: Optional[datetime] = None
    ) -> Optional[AuthSession]: ...

    @abstractmethod
    def delete_session(self, token: str) -> bool: ...

    @abstractmethod
    def delete_user_sessions(self, user_id: str) -> int: ...

    @abstractmethod
    def delete_expired_sessions(self, now: Optional[datetime] = None) -> int: ...


def _apply_changes(row: Any, changes: Dict[str, Any], allowed: frozenset) -> None:
    unknown = set(changes) - allowed
    if unknown:
        raise ValueError(f"cannot update fields: {', '.join(sorted(unknown))}")
    for field, value in changes.items():
        if value is not None:
            setattr(row, field, value)
    row.updated_at = utcnow()


class SqlAlchemyStore(RecordStore):
    """``RecordStore`` backed by SQLAlchemy ORM sessions."""

    def __init__(self, session_factory: sessionmaker) -> None:
        self._session_factory = session_factory

    @contextmanager
    def _session(self) -> Iterator[Session]:
        session: Session = self._session_factory()
        try:
            yield session
            session.commit()
        except SQLAlchemyError as exc:
            session.rollback()
            logger.exception("record store error")
            raise StoreError() from exc
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    # users

    def list_users(self) -> List[User]:
        with self._session() as session:
            return session.query(User).order_by(User.created_at).all()

    def get_user(self, user_id: str) -> Optional[User]:
        with self._session() as session:
            return session.get(User, user_id)

    def get_user_by_email(self, email: str) -> Optional[User]:
        with self._session() as session:
            return session.query(User).filter(User.email == email).first()

    def create_user(
        self,
        email: str,
        password_hash: str,
        name: str,
        role: str = ROLE_USER,
        is_active: bool = True,
    ) -> User:
        now = utcnow()
        user = User(
            email=email,
            password_hash=password_hash,
            name=name,
            role=role,
            is_active=is_active,
            created_at=now,
            updated_at=now,
        )
        with self._session() as session:
            session.add(user)
        logger.info("created user id=%s role=%s", user.id, role)
        return user

    def update_user(self, user_id: str, **changes: Any) -> Optional[User]:
        with self._session() as session:
            user = session.get(User, user_id)
            if user is None:
                return None
            _apply_changes(user, changes, USER_MUTABLE_FIELDS)
        return user

    def delete_user(self, user_id: str) -> bool:
        with self._session() as session:
            deleted = session.query(User).filter(User.id == user_id).delete()
        return deleted > 0

    # business data

    def list_records(self, owner_id: Optional[str] = None) -> List[BusinessData]:
        with self._session() as session:
            query = session.query(BusinessData)
            if owner_id is not None:
                query = query.filter(BusinessData.owner_id == owner_id)
            return query.order_by(BusinessData.created_at).all()

    def get_record(self, record_id: str) -> Optional[BusinessData]:
        with self._session() as session:
            return session.get(BusinessData, record_id)

    def create_record(
        self,
        owner_id: str,
        title: str,
        category: str,
        description: str,
        value: float = 0.0,
        status: str = "active",
        meta: Optional[Dict[str, Any]] = None,
    ) -> BusinessData:
        now = utcnow()
        record = BusinessData(
            owner_id=owner_id,
            title=title,
            category=category,
            description=description,
            value=value,
            status=status,
            meta=dict(meta or {}),
            created_at=now,
            updated_at=now,
        )
        with self._session() as session:
            session.add(record)
        logger.info("created record id=%s owner=%s", record.id, owner_id)
        return record

    def update_record(self, record_id: str, **changes: Any) -> Optional[BusinessData]:
        with self._session() as session:
            record = session.get(BusinessData, record_id)
            if record is None:
                return None
            _apply_changes(record, changes, RECORD_MUTABLE_FIELDS)
        return record

    def delete_record(self, record_id: str) -> bool:
        with self._session() as session:
            deleted = (
                session.query(BusinessData).filter(BusinessData.id == record_id).delete()
            )
        return deleted > 0

    # sessions

    def create_session(self, user_id: str, token: str, expires_at: datetime) -> AuthSession:
        auth_session = AuthSession(
            user_id=user_id, token=token, expires_at=expires_at, created_at=utcnow()
        )
        with self._session() as session:
            session.add(auth_session)
        return auth_session

    def get_session_by_token(
        self, token: str, now: Optional[datetime] = None
    ) -> Optional[AuthSession]:
        now = now or utcnow()
        with self._session() as session:
            return (
                session.query(AuthSession)
                .filter(AuthSession.token == token, AuthSession.expires_at > now)
                .first()
            )

    def delete_session(self, token: str) -> bool:
        with self._session() as session:
            deleted = session.query(AuthSession).filter(AuthSession.token == token).delete()
        return deleted > 0

    def delete_user_sessions(self, user_id: str) -> int:
        with self._session() as session:
            return (
                session.query(AuthSession).filter(AuthSession.user_id == user_id).delete()
            )

    def delete_expired_sessions(self, now: Optional[datetime] = None) -> int:
        now = now or utcnow()
        with self._session() as session:
            removed = (
                session.query(AuthSession).filter(AuthSession.expires_at <= now).delete()
            )
        logger.info("removed %d expired sessions", removed)
        return removed
