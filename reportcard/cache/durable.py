"""
Durable client-side key/value storage.

Every call returns a StorageResult. An unavailable store (disabled, locked,
unwritable, over quota) is an explicit value, never an exception, so callers
degrade to "no persistence this session".
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Generic, Optional, Protocol, TypeVar, Union

from sqlalchemy import Column, DateTime, String, Text, create_engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import declarative_base, sessionmaker

logger = logging.getLogger("cache.durable")

T = TypeVar("T")

Base = declarative_base()


class StoredValue(Base):
    """One key/value pair in client storage."""
    __tablename__ = "client_storage"

    key = Column(String, primary_key=True)
    value = Column(Text, nullable=False)
    updated_at = Column(
        DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    def __repr__(self):
        return f"<StoredValue(key='{self.key}')>"


@dataclass(frozen=True)
class StorageUnavailable:
    """Why a durable-storage call could not be served."""
    operation: str
    reason: str


@dataclass(frozen=True)
class StorageResult(Generic[T]):
    """Either a value or a StorageUnavailable."""
    value: Optional[T] = None
    error: Optional[StorageUnavailable] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, value: Optional[T] = None) -> "StorageResult[T]":
        return cls(value=value)

    @classmethod
    def unavailable(cls, operation: str, reason: str) -> "StorageResult[T]":
        return cls(error=StorageUnavailable(operation=operation, reason=reason))


class DurableStore(Protocol):
    """
    Interface for durable key/value stores.

    Implementations:
    - SQLAlchemyDurableStore: SQLite file via SQLAlchemy
    - UnavailableDurableStore: persistence disabled
    """

    def get(self, key: str) -> StorageResult[str]:
        """Raw stored string, or value=None when the key is absent."""
        ...

    def set(self, key: str, value: str) -> StorageResult[None]:
        ...

    def remove(self, key: str) -> StorageResult[None]:
        ...

    def remove_prefix(self, prefix: str) -> StorageResult[int]:
        """Remove every key starting with prefix; value is the count."""
        ...


class SQLAlchemyDurableStore:
    """
    Durable store backed by a single SQLite table.

    The engine is created lazily; if the database cannot be opened the store
    reports itself unavailable for the rest of the session.
    """

    def __init__(
        self,
        path: Union[Path, str, None] = None,
        url: Optional[str] = None,
        max_value_bytes: int = 5 * 1024 * 1024,
    ):
        """
        Args:
            path: SQLite file path (parent directory is created)
            url: Full database URL; takes precedence over path
            max_value_bytes: Per-value quota, like a browser storage quota
        """
        if url is None and path is None:
            raise ValueError("path or url is required")
        self._path = Path(path) if path is not None else None
        self._url = url or f"sqlite:///{self._path}"
        self.max_value_bytes = max_value_bytes
        self._session_factory = None
        self._init_error: Optional[str] = None

    def _ensure_ready(self, operation: str) -> Optional[StorageUnavailable]:
        if self._session_factory is not None:
            return None
        if self._init_error is not None:
            return StorageUnavailable(operation=operation, reason=self._init_error)
        try:
            if self._path is not None:
                self._path.parent.mkdir(parents=True, exist_ok=True)
            engine = create_engine(
                self._url,
                connect_args={"check_same_thread": False},
                echo=False,
            )
            Base.metadata.create_all(bind=engine)
            self._session_factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)
            logger.info(f"Durable store ready at {self._url}")
            return None
        except (SQLAlchemyError, OSError) as e:
            self._init_error = f"init failed: {e}"
            logger.warning(f"Durable store unavailable: {e}")
            return StorageUnavailable(operation=operation, reason=self._init_error)

    def get(self, key: str) -> StorageResult[str]:
        error = self._ensure_ready("get")
        if error:
            return StorageResult(error=error)
        try:
            with self._session_factory() as session:
                row = session.get(StoredValue, key)
                return StorageResult.success(row.value if row else None)
        except SQLAlchemyError as e:
            return StorageResult.unavailable("get", str(e))

    def set(self, key: str, value: str) -> StorageResult[None]:
        error = self._ensure_ready("set")
        if error:
            return StorageResult(error=error)
        size = len(value.encode("utf-8"))
        if size > self.max_value_bytes:
            return StorageResult.unavailable(
                "set", f"quota exceeded ({size} > {self.max_value_bytes} bytes)"
            )
        try:
            with self._session_factory() as session:
                session.merge(StoredValue(key=key, value=value))
                session.commit()
            return StorageResult.success()
        except SQLAlchemyError as e:
            return StorageResult.unavailable("set", str(e))

    def remove(self, key: str) -> StorageResult[None]:
        error = self._ensure_ready("remove")
        if error:
            return StorageResult(error=error)
        try:
            with self._session_factory() as session:
                session.query(StoredValue).filter(StoredValue.key == key).delete()
                session.commit()
            return StorageResult.success()
        except SQLAlchemyError as e:
            return StorageResult.unavailable("remove", str(e))

    def remove_prefix(self, prefix: str) -> StorageResult[int]:
        error = self._ensure_ready("remove_prefix")
        if error:
            return StorageResult(error=error)
        try:
            with self._session_factory() as session:
                count = (
                    session.query(StoredValue)
                    .filter(StoredValue.key.startswith(prefix, autoescape=True))
                    .delete(synchronize_session=False)
                )
                session.commit()
            return StorageResult.success(count)
        except SQLAlchemyError as e:
            return StorageResult.unavailable("remove_prefix", str(e))


class UnavailableDurableStore:
    """Persistence disabled: every call reports unavailable."""

    def __init__(self, reason: str = "durable storage disabled"):
        self.reason = reason

    def get(self, key: str) -> StorageResult[str]:
        return StorageResult.unavailable("get", self.reason)

    def set(self, key: str, value: str) -> StorageResult[None]:
        return StorageResult.unavailable("set", self.reason)

    def remove(self, key: str) -> StorageResult[None]:
        return StorageResult.unavailable("remove", self.reason)

    def remove_prefix(self, prefix: str) -> StorageResult[int]:
        return StorageResult.unavailable("remove_prefix", self.reason)
