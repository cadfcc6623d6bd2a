"""Readers for settings written by earlier releases.

Two generations predate the bucket layout:

* flat settings under the ``ai-settings`` key of the same key-value store,
  a single implied profile with providers keyed directly by provider id;
* a separate SQLite database with ``profiles``, ``provider_configs`` and
  ``app_metadata`` tables.

Both are read-only inputs to migration, apart from the cleanup after a
successful migration.
"""

import json
import logging
from typing import Any, List, Optional

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from config import LEGACY_SETTINGS_KEY, SCHEMA_VERSION_KEY
from core.database import create_db_engine, make_session_factory, sqlite_file_path
from core.exceptions import MigrationError, StorageError
from models.legacy_settings import (
    LegacyMetadataModel,
    LegacyProfileModel,
    LegacyProviderConfigModel,
)
from schemas.storage import LegacySettings, ProfileRecord, ProviderConfigRecord
from utils.storage_backend import KeyValueStore

logger = logging.getLogger(__name__)


class FlatSettingsSource:
    """First-generation flat settings stored under ``ai-settings``."""

    def __init__(self, store: KeyValueStore, key: str = LEGACY_SETTINGS_KEY):
        self.store = store
        self.key = key

    def has_data(self) -> bool:
        try:
            return self.store.get_item(self.key) is not None
        except StorageError:
            return False

    def load(self) -> Optional[LegacySettings]:
        """Parse the flat settings object.

        Returns:
            The settings, or None if nothing was ever stored.

        Raises:
            MigrationError: If the stored value cannot be parsed.
        """
        raw = self.store.get_item(self.key)
        if raw is None:
            return None
        try:
            return LegacySettings.model_validate(json.loads(raw))
        except (json.JSONDecodeError, PydanticValidationError) as e:
            raise MigrationError(f"Legacy settings are corrupted: {e}") from e

    def count_items(self) -> int:
        settings = self.load() if self.has_data() else None
        return len(settings.providers) if settings else 0

    def clear(self) -> None:
        self.store.remove_item(self.key)
        logger.info("Removed legacy flat settings")


class LegacyDatabaseSource:
    """Prior-generation SQLite settings database."""

    def __init__(self, session_factory: sessionmaker):
        """Initialize LegacyDatabaseSource.

        Args:
            session_factory: sessionmaker bound to the legacy database.
        """
        self._session_factory = session_factory

    @classmethod
    def from_url(cls, database_url: str) -> Optional["LegacyDatabaseSource"]:
        """Open the legacy database if its file exists.

        Opening a missing SQLite file would create it, so a missing file
        means there is no legacy database.
        """
        path = sqlite_file_path(database_url)
        if path is not None and not path.exists():
            return None
        return cls(make_session_factory(create_db_engine(database_url)))

    def _session(self) -> Session:
        return self._session_factory()

    def has_data(self) -> bool:
        try:
            with self._session() as db:
                return db.query(LegacyProfileModel.id).first() is not None
        except SQLAlchemyError as e:
            logger.warning("Legacy database is not readable: %s", e)
            return False

    def get_all_profiles(self) -> List[ProfileRecord]:
        with self._session() as db:
            rows = db.query(LegacyProfileModel).order_by(LegacyProfileModel.created_at).all()
            return [
                ProfileRecord(
                    id=row.id,
                    name=row.name,
                    description=row.description,
                    created_at=row.created_at,
                    updated_at=row.updated_at,
                    is_default=bool(row.is_default),
                )
                for row in rows
            ]

    def get_provider_configs_by_profile(self, profile_id: str) -> List[ProviderConfigRecord]:
        with self._session() as db:
            rows = (
                db.query(LegacyProviderConfigModel)
                .filter(LegacyProviderConfigModel.profile_id == profile_id)
                .all()
            )
            return [
                ProviderConfigRecord(
                    id=row.id,
                    profile_id=row.profile_id,
                    provider_id=row.provider_id,
                    provider_type=row.provider_type,
                    api_key=row.api_key,
                    model=row.model or "",
                    base_url=row.base_url,
                    enabled=bool(row.enabled),
                    custom_name=row.custom_name,
                    custom_models=row.custom_models,
                    created_at=row.created_at,
                    updated_at=row.updated_at,
                )
                for row in rows
            ]

    def get_metadata(self, key: str) -> Any:
        with self._session() as db:
            row = db.get(LegacyMetadataModel, key)
            return row.value if row else None

    def get_schema_version(self) -> int:
        version = self.get_metadata(SCHEMA_VERSION_KEY)
        if isinstance(version, int) and not isinstance(version, bool):
            return version
        return 0

    def count_items(self) -> int:
        """Number of profiles plus provider configs."""
        try:
            with self._session() as db:
                return (
                    db.query(LegacyProfileModel).count()
                    + db.query(LegacyProviderConfigModel).count()
                )
        except SQLAlchemyError as e:
            logger.warning("Legacy database is not readable: %s", e)
            return 0

    def delete_provider_config(self, config_id: str) -> None:
        with self._session() as db:
            db.query(LegacyProviderConfigModel).filter(
                LegacyProviderConfigModel.id == config_id
            ).delete()
            db.commit()

    def delete_profile(self, profile_id: str) -> None:
        """Delete a profile and its provider configs, default or not."""
        with self._session() as db:
            db.query(LegacyProviderConfigModel).filter(
                LegacyProviderConfigModel.profile_id == profile_id
            ).delete()
            db.query(LegacyProfileModel).filter(LegacyProfileModel.id == profile_id).delete()
            db.commit()

    def close(self) -> None:
        self._session_factory.kw["bind"].dispose()
