"""Dependency injection module for FastAPI.

This module wires the storage stack together and provides dependency
injection functions for FastAPI routes.
"""

import logging
from typing import Annotated, Optional

from fastapi import Depends, Request

from config import LEGACY_DATABASE_URL, STORAGE_DATABASE_URL, STORAGE_QUOTA_BYTES
from core.encryption import ApiKeyCipher
from utils.backup_manager import BackupManager
from utils.legacy_sources import FlatSettingsSource, LegacyDatabaseSource
from utils.migration_manager import MigrationManager
from utils.settings_manager import AISettingsManager
from utils.storage_backend import BucketStorage, SqlKeyValueStore
from utils.storage_provider import BucketStorageProvider

logger = logging.getLogger(__name__)


def build_settings_manager(
    storage_url: str = STORAGE_DATABASE_URL,
    legacy_url: Optional[str] = LEGACY_DATABASE_URL,
    quota_bytes: int = STORAGE_QUOTA_BYTES,
) -> AISettingsManager:
    """Build an uninitialized AISettingsManager over SQLite storage.

    Args:
        storage_url: Database URL of the key-value store.
        legacy_url: Database URL of the prior-generation store, if any.
        quota_bytes: Storage quota; 0 disables the check.

    Returns:
        AISettingsManager instance. Call ``initialize()`` before use.
    """
    store = SqlKeyValueStore.from_url(storage_url, quota_bytes)
    storage = BucketStorageProvider(BucketStorage(store))
    legacy_db = LegacyDatabaseSource.from_url(legacy_url) if legacy_url else None
    if legacy_db is not None:
        logger.info("Found legacy settings database at %s", legacy_url)
    migration = MigrationManager(storage, FlatSettingsSource(store), legacy_db)
    return AISettingsManager(storage, ApiKeyCipher(), migration)


def get_settings_manager(request: Request) -> AISettingsManager:
    """Get the application-wide AISettingsManager.

    Args:
        request: Current request.

    Returns:
        AISettingsManager instance stored on the application state.
    """
    return request.app.state.settings_manager


def get_backup_manager(
    settings_manager: AISettingsManager = Depends(get_settings_manager),
) -> BackupManager:
    """Get the settings manager's BackupManager, which shares its lock."""
    return settings_manager.backup


# Type aliases for dependency injection
SettingsManagerDep = Annotated[AISettingsManager, Depends(get_settings_manager)]
BackupManagerDep = Annotated[BackupManager, Depends(get_backup_manager)]
