"""Key-value storage backend.

Two layers live here:

* ``KeyValueStore`` - a synchronous string-to-string store with a size
  quota, the contract of a browser's localStorage. ``SqlKeyValueStore``
  persists it in a SQLite table through SQLAlchemy; ``MemoryKeyValueStore``
  keeps it in a dict for tests and throwaway sessions.
* ``BucketStorage`` - reads and writes the three named buckets (profiles,
  provider configs, metadata) as whole JSON documents on top of a store.
"""

import json
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from config import METADATA_KEY, PROFILES_KEY, PROVIDERS_KEY, STORAGE_QUOTA_BYTES
from core.database import create_db_engine, init_db, make_session_factory
from core.exceptions import (
    StorageError,
    StorageQuotaExceededError,
    StorageUnavailableError,
)
from models.kv_entry import KeyValueEntry
from schemas.storage import QuotaInfo

logger = logging.getLogger(__name__)

PROBE_KEY = "__storage_test__"

# Bucket name -> store key
BUCKET_KEYS: Dict[str, str] = {
    "profiles": PROFILES_KEY,
    "providers": PROVIDERS_KEY,
    "metadata": METADATA_KEY,
}


def entry_size(key: str, value: str) -> int:
    """Size an entry counts against the quota (characters of key + value)."""
    return len(key) + len(value)


class KeyValueStore(ABC):
    """Synchronous persistent string store with an optional size quota."""

    def __init__(self, quota_bytes: int = STORAGE_QUOTA_BYTES):
        self.quota_bytes = quota_bytes

    @abstractmethod
    def get_item(self, key: str) -> Optional[str]:
        ...

    @abstractmethod
    def _write_item(self, key: str, value: str) -> None:
        ...

    @abstractmethod
    def remove_item(self, key: str) -> None:
        ...

    @abstractmethod
    def keys(self) -> List[str]:
        ...

    @abstractmethod
    def usage_bytes(self) -> int:
        ...

    def set_item(self, key: str, value: str) -> None:
        """Write a value.

        Raises:
            StorageQuotaExceededError: If the write would exceed the quota.
            StorageError: If the underlying store rejects the write.
        """
        self._check_quota(key, value)
        self._write_item(key, value)

    def _check_quota(self, key: str, value: str) -> None:
        if self.quota_bytes <= 0:
            return
        usage = self.usage_bytes()
        previous = self.get_item(key)
        if previous is not None:
            usage -= entry_size(key, previous)
        if usage + entry_size(key, value) > self.quota_bytes:
            raise StorageQuotaExceededError()

    def is_available(self) -> bool:
        """Probe whether the store accepts writes.

        A full store still counts as available so that data can be read and
        cleared.
        """
        try:
            self.set_item(PROBE_KEY, PROBE_KEY)
            self.remove_item(PROBE_KEY)
            return True
        except StorageQuotaExceededError:
            logger.warning("Key-value store is full")
            return True
        except StorageError as e:
            logger.warning("Key-value store is not available: %s", e)
            return False

    def close(self) -> None:
        pass


class MemoryKeyValueStore(KeyValueStore):
    """Dict-backed store. ``available=False`` simulates a store that refuses
    every operation, as in some private-browsing modes."""

    def __init__(self, quota_bytes: int = STORAGE_QUOTA_BYTES, available: bool = True):
        super().__init__(quota_bytes)
        self.available = available
        self._items: Dict[str, str] = {}

    def _ensure_available(self) -> None:
        if not self.available:
            raise StorageUnavailableError("Key-value store is not available")

    def get_item(self, key: str) -> Optional[str]:
        self._ensure_available()
        return self._items.get(key)

    def _write_item(self, key: str, value: str) -> None:
        self._ensure_available()
        self._items[key] = value

    def remove_item(self, key: str) -> None:
        self._ensure_available()
        self._items.pop(key, None)

    def keys(self) -> List[str]:
        self._ensure_available()
        return list(self._items)

    def usage_bytes(self) -> int:
        self._ensure_available()
        return sum(entry_size(k, v) for k, v in self._items.items())


class SqlKeyValueStore(KeyValueStore):
    """Store persisted in the ``kv_store`` table.

    The table (and the SQLite file) is created on first use; if that fails
    the store reports itself unavailable instead of raising at construction.
    """

    def __init__(self, session_factory: sessionmaker, quota_bytes: int = STORAGE_QUOTA_BYTES):
        """Initialize SqlKeyValueStore.

        Args:
            session_factory: SQLAlchemy sessionmaker bound to an engine.
            quota_bytes: Maximum stored size; 0 disables the check.
        """
        super().__init__(quota_bytes)
        self._session_factory = session_factory
        self._schema_ready = False

    @classmethod
    def from_url(cls, database_url: str, quota_bytes: int = STORAGE_QUOTA_BYTES) -> "SqlKeyValueStore":
        return cls(make_session_factory(create_db_engine(database_url)), quota_bytes)

    @property
    def engine(self) -> Engine:
        return self._session_factory.kw["bind"]

    def _session(self) -> Session:
        if not self._schema_ready:
            try:
                init_db(self.engine)
            except (OSError, SQLAlchemyError) as e:
                raise StorageUnavailableError(f"Key-value store is not available: {e}") from e
            self._schema_ready = True
        return self._session_factory()

    def _translate(self, error: SQLAlchemyError) -> StorageError:
        message = str(error).lower()
        if isinstance(error, OperationalError):
            if "full" in message:
                return StorageQuotaExceededError()
            if "unable to open" in message or "readonly" in message:
                return StorageUnavailableError(f"Key-value store is not available: {error}")
        return StorageError(f"Key-value store operation failed: {error}")

    def get_item(self, key: str) -> Optional[str]:
        try:
            with self._session() as db:
                entry = db.get(KeyValueEntry, key)
                return entry.value if entry else None
        except SQLAlchemyError as e:
            raise self._translate(e) from e

    def _write_item(self, key: str, value: str) -> None:
        try:
            with self._session() as db:
                db.merge(KeyValueEntry(key=key, value=value))
                db.commit()
        except SQLAlchemyError as e:
            raise self._translate(e) from e

    def remove_item(self, key: str) -> None:
        try:
            with self._session() as db:
                db.query(KeyValueEntry).filter(KeyValueEntry.key == key).delete()
                db.commit()
        except SQLAlchemyError as e:
            raise self._translate(e) from e

    def keys(self) -> List[str]:
        try:
            with self._session() as db:
                return [row.key for row in db.query(KeyValueEntry.key).all()]
        except SQLAlchemyError as e:
            raise self._translate(e) from e

    def usage_bytes(self) -> int:
        try:
            with self._session() as db:
                total = db.query(
                    func.coalesce(
                        func.sum(func.length(KeyValueEntry.key) + func.length(KeyValueEntry.value)),
                        0,
                    )
                ).scalar()
                return int(total or 0)
        except SQLAlchemyError as e:
            raise self._translate(e) from e

    def close(self) -> None:
        self.engine.dispose()


class BucketStorage:
    """Whole-document access to the profiles, providers and metadata buckets.

    Every read parses one bucket as a single JSON object; every write
    replaces one bucket. There are no partial reads or writes.
    """

    def __init__(self, store: KeyValueStore):
        self.store = store

    @staticmethod
    def _key(bucket: str) -> str:
        try:
            return BUCKET_KEYS[bucket]
        except KeyError:
            raise ValueError(f"Unknown bucket: {bucket}") from None

    def is_available(self) -> bool:
        return self.store.is_available()

    def get_quota_info(self) -> QuotaInfo:
        """Return usage against the quota. Best-effort: zeros on failure."""
        try:
            usage = self.store.usage_bytes()
        except StorageError as e:
            logger.warning("Could not measure storage usage: %s", e)
            return QuotaInfo()
        quota = self.store.quota_bytes if self.store.quota_bytes > 0 else 0
        percent_used = (usage / quota) * 100 if quota > 0 else 0.0
        return QuotaInfo(usage=usage, quota=quota, percent_used=percent_used)

    def read_bucket(self, bucket: str) -> Dict[str, Any]:
        """Read and parse one bucket.

        Returns:
            The bucket map, empty if the bucket has never been written.

        Raises:
            StorageError: If the stored document is not a JSON object.
        """
        raw = self.store.get_item(self._key(bucket))
        if raw is None:
            return {}
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            raise StorageError(f"Bucket '{bucket}' is corrupted: {e}") from e
        if not isinstance(data, dict):
            raise StorageError(f"Bucket '{bucket}' is corrupted: expected a JSON object")
        return data

    def write_bucket(self, bucket: str, data: Dict[str, Any]) -> None:
        self.store.set_item(self._key(bucket), json.dumps(data, ensure_ascii=False))

    def remove_bucket(self, bucket: str) -> None:
        self.store.remove_item(self._key(bucket))

    def read_all(self) -> Dict[str, Dict[str, Any]]:
        return {bucket: self.read_bucket(bucket) for bucket in BUCKET_KEYS}
