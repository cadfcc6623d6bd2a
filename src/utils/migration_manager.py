"""One-time migration of earlier settings into the bucket layout.

Migration runs when the stored schema version is below
``CURRENT_SCHEMA_VERSION`` and a legacy source still holds data. Encrypted
API keys are copied as-is; the ciphertext format has not changed between
generations. The schema version is written only after the copied data has
been read back and counted, so an aborted run is retried from scratch on
the next start.
"""

import json
import logging
from typing import Dict, List, Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError

from config import (
    ACTIVE_PROFILE_KEY,
    BUILTIN_PROVIDERS,
    CLEANUP_LEGACY_AFTER_MIGRATION,
    CURRENT_SCHEMA_VERSION,
    SCHEMA_VERSION_KEY,
)
from core.exceptions import AISettingsError, MigrationError
from schemas.providers import ProviderKey, is_builtin_provider_id, provider_ref_for
from schemas.settings import MigrationResult, MigrationStatus
from schemas.storage import ProfileRecord, ProviderConfigInput
from utils.legacy_sources import FlatSettingsSource, LegacyDatabaseSource
from utils.storage_provider import StorageProvider

logger = logging.getLogger(__name__)


class MigrationManager:
    """Imports flat settings and the prior-generation database."""

    def __init__(
        self,
        storage: StorageProvider,
        flat_source: Optional[FlatSettingsSource] = None,
        legacy_db: Optional[LegacyDatabaseSource] = None,
        cleanup: bool = CLEANUP_LEGACY_AFTER_MIGRATION,
    ):
        """Initialize MigrationManager.

        Args:
            storage: Destination storage provider.
            flat_source: Flat first-generation settings, if any.
            legacy_db: Prior-generation database, if one exists.
            cleanup: Delete legacy data after a verified migration.
        """
        self.storage = storage
        self.flat_source = flat_source
        self.legacy_db = legacy_db
        self.cleanup = cleanup

    def _has_legacy_data(self) -> bool:
        flat = self.flat_source is not None and self.flat_source.has_data()
        legacy = self.legacy_db is not None and self.legacy_db.has_data()
        return flat or legacy

    def _is_outdated(self) -> bool:
        return self.storage.get_schema_version() < CURRENT_SCHEMA_VERSION

    def is_migration_needed(self) -> bool:
        """Check the schema version and the legacy sources.

        When the version is outdated but there is nothing to import, the
        current version is recorded right away.
        """
        if not self._is_outdated():
            return False
        if not self._has_legacy_data():
            self.storage.set_schema_version(CURRENT_SCHEMA_VERSION)
            logger.info("No legacy data found, schema version set to %d", CURRENT_SCHEMA_VERSION)
            return False
        return True

    def run_if_needed(self) -> Optional[MigrationResult]:
        """Migrate (and clean up) if needed. Returns None when nothing ran."""
        if not self.is_migration_needed():
            return None
        if self.cleanup:
            return self.migrate_and_cleanup()
        return self.migrate()

    def migrate(self) -> MigrationResult:
        """Copy all legacy data into the storage provider.

        Returns:
            MigrationResult with the number of copied items.

        Raises:
            MigrationError: If reading, writing or verification fails. The
                schema version is not updated and legacy data is untouched.
        """
        logger.info("Starting settings migration to schema version %d", CURRENT_SCHEMA_VERSION)
        try:
            # Expected provider configs per profile, checked after the copy
            expected: Dict[str, int] = {}
            profile_count = 0
            migrated_items = 0

            if self.legacy_db is not None and self.legacy_db.has_data():
                profiles, configs = self._migrate_legacy_db(expected)
                profile_count += profiles
                migrated_items += profiles + configs

            if self.flat_source is not None and self.flat_source.has_data():
                configs = self._migrate_flat_settings(expected)
                migrated_items += configs

            self._verify(expected)
            self.storage.set_schema_version(CURRENT_SCHEMA_VERSION)
        except MigrationError:
            logger.error("Migration failed", exc_info=True)
            raise
        except (AISettingsError, SQLAlchemyError, ValueError) as e:
            logger.error("Migration failed: %s", e, exc_info=True)
            raise MigrationError(f"Migration failed: {e}") from e

        provider_count = sum(expected.values())
        logger.info("Migration completed. Migrated %d items.", migrated_items)
        return MigrationResult(
            success=True,
            message=(
                f"Successfully migrated {profile_count} profiles and "
                f"{provider_count} provider configurations"
            ),
            migrated_items=migrated_items,
        )

    def _migrate_flat_settings(self, expected: Dict[str, int]) -> int:
        settings = self.flat_source.load()
        if settings is None:
            return 0

        profile = self.storage.get_default_profile()
        migrated = 0
        for provider_id, legacy in settings.providers.items():
            if not is_builtin_provider_id(provider_id):
                logger.warning("Skipping unknown legacy provider: %s", provider_id)
                continue
            registry = BUILTIN_PROVIDERS[provider_id]
            self.storage.save_provider_config(
                ProviderConfigInput(
                    profile_id=profile.id,
                    provider_id=provider_id,
                    provider_type="builtin",
                    api_key=legacy.api_key,
                    model=legacy.model or str(registry["default_model"]),
                    base_url=legacy.base_url or registry["fixed_base_url"],
                    enabled=legacy.enabled,
                )
            )
            migrated += 1

        expected[profile.id] = expected.get(profile.id, 0) + migrated
        if self.storage.get_active_profile_id() is None:
            self.storage.set_metadata(ACTIVE_PROFILE_KEY, profile.id)
        logger.info("Migrated %d providers from flat settings", migrated)
        return migrated

    def _migrate_legacy_db(self, expected: Dict[str, int]) -> Tuple[int, int]:
        profiles = self.legacy_db.get_all_profiles()
        logger.info("Found %d legacy profiles to migrate", len(profiles))

        current_defaults = {p.id for p in self.storage.get_all_profiles() if p.is_default}
        config_count = 0
        for profile in profiles:
            if profile.is_default:
                if current_defaults - {profile.id}:
                    # Keep the existing default; at most one profile may hold the flag
                    profile = profile.model_copy(update={"is_default": False})
                else:
                    current_defaults.add(profile.id)
            self.storage.save_profile(profile)

            configs = self.legacy_db.get_provider_configs_by_profile(profile.id)
            migrated = 0
            for config in configs:
                if provider_ref_for(config) is None:
                    logger.warning(
                        "Skipping invalid legacy provider config %s (%s)",
                        config.id,
                        config.provider_id,
                    )
                    continue
                self.storage.save_provider_config(
                    ProviderConfigInput(
                        profile_id=config.profile_id,
                        provider_id=config.provider_id,
                        provider_type=config.provider_type,
                        api_key=config.api_key,
                        model=config.model,
                        base_url=config.base_url,
                        enabled=config.enabled,
                        custom_name=config.custom_name,
                        custom_models=config.custom_models,
                    )
                )
                migrated += 1
            logger.info("Migrated %d provider configs for profile %s", migrated, profile.name)
            expected[profile.id] = expected.get(profile.id, 0) + migrated
            config_count += migrated

        active_profile_id = self.legacy_db.get_metadata(ACTIVE_PROFILE_KEY)
        if active_profile_id and any(p.id == active_profile_id for p in profiles):
            self.storage.set_metadata(ACTIVE_PROFILE_KEY, active_profile_id)

        return len(profiles), config_count

    def _verify(self, expected: Dict[str, int]) -> None:
        """Read back migrated data and compare counts."""
        stored_ids = {p.id for p in self.storage.get_all_profiles()}
        for profile_id, count in expected.items():
            if profile_id not in stored_ids:
                raise MigrationError(f"Verification failed: profile {profile_id} is missing")
            stored = len(self.storage.get_provider_configs_by_profile(profile_id))
            if stored < count:
                raise MigrationError(
                    f"Verification failed: profile {profile_id} has {stored} provider "
                    f"configs, expected at least {count}"
                )

    def cleanup_legacy_data(self) -> None:
        """Delete legacy data. Only called after a verified migration."""
        if self.legacy_db is not None:
            for profile in self.legacy_db.get_all_profiles():
                for config in self.legacy_db.get_provider_configs_by_profile(profile.id):
                    self.legacy_db.delete_provider_config(config.id)
                self.legacy_db.delete_profile(profile.id)
            logger.info("Legacy database cleanup completed")
        if self.flat_source is not None and self.flat_source.has_data():
            self.flat_source.clear()

    def migrate_and_cleanup(self) -> MigrationResult:
        """Migrate, then delete legacy data.

        A failed cleanup does not undo the migration; it is reported in the
        result message and logged as a warning.
        """
        result = self.migrate()
        try:
            self.cleanup_legacy_data()
        except (AISettingsError, SQLAlchemyError) as e:
            logger.warning("Could not clean up legacy data: %s", e)
            return result.model_copy(
                update={"message": f"{result.message} Warning: Could not clear legacy data: {e}"}
            )
        return result.model_copy(
            update={"message": f"{result.message} Legacy data has been cleaned up."}
        )

    def get_migration_status(self) -> MigrationStatus:
        """Summarize both sides of the migration without writing anything."""
        storage_available = self.storage.is_available()
        legacy_available = self._has_legacy_data()
        needs_migration = storage_available and legacy_available and self._is_outdated()

        storage_items = 0
        if storage_available:
            try:
                for profile in self.storage.get_all_profiles():
                    storage_items += 1 + len(self.storage.get_provider_configs_by_profile(profile.id))
            except AISettingsError as e:
                logger.warning("Error counting stored items: %s", e)

        legacy_items = 0
        if self.legacy_db is not None:
            legacy_items += self.legacy_db.count_items()
        if self.flat_source is not None:
            try:
                legacy_items += self.flat_source.count_items()
            except MigrationError as e:
                logger.warning("Error counting legacy flat settings: %s", e)

        return MigrationStatus(
            needs_migration=needs_migration,
            storage_available=storage_available,
            storage_items=storage_items,
            legacy_available=legacy_available,
            legacy_items=legacy_items,
        )

    def export_legacy_data(self) -> str:
        """Dump the legacy data as JSON in the three-bucket shape.

        Raises:
            MigrationError: If there is no legacy data to export.
        """
        if not self._has_legacy_data():
            raise MigrationError("No legacy data available")

        profiles: Dict[str, dict] = {}
        providers: Dict[str, dict] = {}
        metadata: Dict[str, object] = {}

        if self.legacy_db is not None and self.legacy_db.has_data():
            records: List[ProfileRecord] = self.legacy_db.get_all_profiles()
            for profile in records:
                profiles[profile.id] = profile.to_storage()
                for config in self.legacy_db.get_provider_configs_by_profile(profile.id):
                    key = ProviderKey(profile.id, config.provider_id).serialize()
                    providers[key] = config.to_storage()
            metadata[ACTIVE_PROFILE_KEY] = self.legacy_db.get_metadata(ACTIVE_PROFILE_KEY)
            metadata[SCHEMA_VERSION_KEY] = self.legacy_db.get_schema_version()

        document = {"profiles": profiles, "providers": providers, "metadata": metadata}
        if self.flat_source is not None and self.flat_source.has_data():
            settings = self.flat_source.load()
            document["legacySettings"] = settings.to_storage() if settings else None

        return json.dumps(document, indent=2, ensure_ascii=False)
