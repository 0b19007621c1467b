from __future__ import annotations

import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Iterator, Optional

from sqlalchemy import Boolean, DateTime, String, create_engine, select, text
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import DeclarativeBase, Mapped, Session, mapped_column, sessionmaker
from sqlalchemy.pool import StaticPool

from pixelist.logging import get_logger
from pixelist.storage.crypto import SecretCipher
from pixelist.storage.errors import ConstraintViolation
from pixelist.storage.models import User


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime) -> datetime:
    # SQLite drops tzinfo on the way back out
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class Base(DeclarativeBase):
    pass


class UserRow(Base):
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    username: Mapped[str] = mapped_column(String(150), unique=True, index=True)
    password_hash: Mapped[str] = mapped_column(String(255))
    name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    profile_pic: Mapped[Optional[str]] = mapped_column(String(2048), nullable=True)
    # Fernet token, never the plaintext base32 secret
    two_factor_secret: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)
    two_factor_enabled: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow
    )


class SqliteStore:
    """SQLAlchemy-backed credential store for the dashboard's SQLite database."""

    def __init__(self, database_url: str, *, mfa_encryption_key: str) -> None:
        self.logger = get_logger(__name__)
        self.database_url = database_url
        engine_kwargs: dict = {"connect_args": {"check_same_thread": False}}
        if database_url in {"sqlite://", "sqlite:///:memory:"}:
            # A private in-memory database only exists on a single connection
            engine_kwargs["poolclass"] = StaticPool
        self.engine = create_engine(database_url, **engine_kwargs)
        self._session_factory = sessionmaker(bind=self.engine, expire_on_commit=False)
        self._cipher = SecretCipher(mfa_encryption_key)
        Base.metadata.create_all(self.engine)
        self.logger.info("sqlite_store_ready", database_url=database_url)

    @contextmanager
    def _session(self) -> Iterator[Session]:
        session = self._session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def _export(self, row: UserRow) -> User:
        return User(
            id=row.id,
            username=row.username,
            password_hash=row.password_hash,
            name=row.name,
            profile_pic=row.profile_pic,
            two_factor_secret=self._cipher.decrypt(row.two_factor_secret),
            two_factor_enabled=bool(row.two_factor_enabled),
            created_at=_as_utc(row.created_at),
            updated_at=_as_utc(row.updated_at),
        )

    @staticmethod
    def _require(session: Session, user_id: str) -> UserRow:
        row = session.get(UserRow, user_id)
        if row is None:
            raise ConstraintViolation("user not found", {"user_id": user_id})
        return row

    def ping(self) -> bool:
        with self.engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return True

    def create_user(
        self,
        username: str,
        password_hash: str,
        *,
        name: Optional[str] = None,
        profile_pic: Optional[str] = None,
    ) -> User:
        row = UserRow(
            id=str(uuid.uuid4()),
            username=username,
            password_hash=password_hash,
            name=name,
            profile_pic=profile_pic,
            two_factor_enabled=False,
        )
        try:
            with self._session() as session:
                session.add(row)
        except IntegrityError as exc:
            raise ConstraintViolation(
                "username already exists", {"field": "username"}
            ) from exc
        self.logger.info("user_created", user_id=row.id, backend="sqlite")
        return self._export(row)

    def get_user(self, user_id: str) -> Optional[User]:
        with self._session() as session:
            row = session.get(UserRow, user_id)
            return self._export(row) if row else None

    def get_user_by_username(self, username: str) -> Optional[User]:
        with self._session() as session:
            row = session.scalars(
                select(UserRow).where(UserRow.username == username)
            ).first()
            return self._export(row) if row else None

    def update_password(self, user_id: str, password_hash: str) -> None:
        with self._session() as session:
            row = self._require(session, user_id)
            row.password_hash = password_hash

    def set_two_factor(
        self, user_id: str, secret: Optional[str], enabled: bool
    ) -> User:
        with self._session() as session:
            row = self._require(session, user_id)
            row.two_factor_secret = self._cipher.encrypt(secret)
            row.two_factor_enabled = enabled
            session.flush()
            return self._export(row)

    def update_profile(
        self, user_id: str, *, name: Optional[str], profile_pic: Optional[str]
    ) -> User:
        with self._session() as session:
            row = self._require(session, user_id)
            row.name = name
            row.profile_pic = profile_pic
            session.flush()
            return self._export(row)

    def close(self) -> None:
        self.engine.dispose()
