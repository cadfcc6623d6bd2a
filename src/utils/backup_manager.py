"""Backup and restore of the AI settings store."""

import logging
import threading
from datetime import datetime
from typing import Optional

import pytz

from core.exceptions import AISettingsError, StorageUnavailableError
from schemas.settings import BackupExport, DataInfo, ImportResult
from utils.storage_provider import StorageProvider

logger = logging.getLogger(__name__)

_SIZE_UNITS = ["Bytes", "KB", "MB", "GB"]


def format_bytes(size: int) -> str:
    """Format a byte count, e.g. ``1536`` -> ``"1.5 KB"``."""
    if size <= 0:
        return "0 Bytes"
    exponent = 0
    while size >= 1024 ** (exponent + 1) and exponent < len(_SIZE_UNITS) - 1:
        exponent += 1
    value = round(size / (1024 ** exponent), 2)
    return f"{value:g} {_SIZE_UNITS[exponent]}"


class BackupManager:
    """Exports, imports and clears the whole settings store."""

    def __init__(self, storage: StorageProvider, lock: Optional[threading.RLock] = None):
        """Initialize BackupManager.

        Args:
            storage: Storage provider to back up.
            lock: Lock shared with the other writers of ``storage``.
        """
        self.storage = storage
        self.lock = lock or threading.RLock()

    def _ensure_available(self) -> None:
        if not self.storage.is_available():
            raise StorageUnavailableError("Key-value store is not available")

    def export_data(self) -> BackupExport:
        """Export all buckets with a timestamped file name.

        Returns:
            BackupExport with the JSON document and a file name of the form
            ``ai-settings-backup-<timestamp>.json``.
        """
        with self.lock:
            self._ensure_available()
            data = self.storage.export_data()
        timestamp = datetime.now(pytz.utc).strftime("%Y-%m-%dT%H-%M-%S-%fZ")
        filename = f"ai-settings-backup-{timestamp}.json"
        logger.info("Exported settings backup %s", filename)
        return BackupExport(data=data, filename=filename)

    def import_data(self, json_data: str) -> ImportResult:
        """Replace the store with a backup.

        Failures are reported in the result rather than raised, apart from
        an unavailable store.
        """
        with self.lock:
            self._ensure_available()
            try:
                self.storage.import_data(json_data)
                # Counts come from what was actually written
                profiles = self.storage.get_all_profiles()
                provider_count = self._count_providers(profiles)
            except AISettingsError as e:
                logger.warning("Import failed: %s", e)
                return ImportResult(success=False, message=f"Import failed: {e}")

        return ImportResult(
            success=True,
            message=(
                f"Successfully imported {len(profiles)} profiles and "
                f"{provider_count} provider configurations."
            ),
        )

    def clear_all_data(self) -> None:
        with self.lock:
            self._ensure_available()
            self.storage.clear_all()

    def get_data_info(self) -> DataInfo:
        """Report record counts, export size and quota usage."""
        with self.lock:
            self._ensure_available()
            profiles = self.storage.get_all_profiles()
            provider_count = self._count_providers(profiles)
            data_size = len(self.storage.export_data().encode("utf-8"))
            quota_info = self.storage.get_quota_info()
        return DataInfo(
            profile_count=len(profiles),
            provider_count=provider_count,
            data_size=format_bytes(data_size),
            quota_info=quota_info,
        )

    def _count_providers(self, profiles) -> int:
        return sum(len(self.storage.get_provider_configs_by_profile(p.id)) for p in profiles)
