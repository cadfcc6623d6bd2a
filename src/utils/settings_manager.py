"""AI settings orchestration.

``AISettingsManager`` keeps an in-memory mirror of the profiles and of the
current profile's provider configs, and is the only writer to the storage
provider. Every mutating call returns after the storage write has
completed, and the mirror is updated only after the write succeeded.

API keys stay encrypted in memory and are decrypted on demand.
"""

import logging
import threading
from typing import Dict, List, Optional, Union
from urllib.parse import urlparse

from config import ACTIVE_PROFILE_KEY, BUILTIN_PROVIDERS
from core.encryption import ApiKeyCipher
from core.exceptions import (
    AISettingsError,
    DecryptionError,
    InvalidOperationError,
    MigrationError,
    NotFoundError,
    ProviderAlreadyExistsError,
    StorageUnavailableError,
    ValidationError,
)
from schemas.providers import (
    CustomProvider,
    ProviderKey,
    is_builtin_provider_id,
    new_custom_provider_id,
    provider_display_name,
    provider_ref_for,
)
from schemas.settings import (
    ConfiguredProviderSummary,
    ImportResult,
    MigrationStatus,
    ProfileProviderSettings,
    ProfileWithProviders,
    ProviderSettings,
    ProviderSettingsUpdate,
    SettingsState,
)
from schemas.storage import (
    CreateProfileInput,
    CustomProviderInput,
    EncryptedBlob,
    ProfileRecord,
    ProviderConfigInput,
    ProviderConfigRecord,
)
from utils.backup_manager import BackupManager
from utils.migration_manager import MigrationManager
from utils.storage_provider import StorageProvider

logger = logging.getLogger(__name__)


def validate_custom_provider(data: CustomProviderInput) -> List[str]:
    """Validate a custom provider definition.

    Returns:
        The cleaned model list.

    Raises:
        ValidationError: If the name is empty, the base URL is not an HTTPS
            URL, or no model is given.
    """
    if not data.name.strip():
        raise ValidationError("Custom provider name must not be empty")
    url = urlparse(data.base_url.strip())
    if url.scheme != "https" or not url.netloc:
        raise ValidationError("Base URL must be a valid HTTPS URL")
    models = [m.strip() for m in data.models if m.strip()]
    if not models:
        raise ValidationError("At least one model is required")
    return models


def _to_provider_settings(record: ProviderConfigRecord) -> Optional[ProviderSettings]:
    ref = provider_ref_for(record)
    if ref is None:
        return None
    model = record.model
    if not model and not isinstance(ref, CustomProvider):
        model = str(BUILTIN_PROVIDERS[ref.id]["default_model"])
    return ProviderSettings(
        provider_id=record.provider_id,
        ref=ref,
        provider_type=record.provider_type,
        name=provider_display_name(ref),
        model=model,
        base_url=record.base_url,
        enabled=record.enabled,
        has_api_key=record.api_key is not None,
        custom_name=record.custom_name,
        custom_models=record.custom_models,
    )


class AISettingsManager:
    """State machine over profiles and the current profile's providers.

    States: UNINITIALIZED -> LOADING -> READY, or FALLBACK when storage is
    unusable. FALLBACK is terminal for the lifetime of the manager.
    """

    def __init__(
        self,
        storage: StorageProvider,
        cipher: ApiKeyCipher,
        migration: Optional[MigrationManager] = None,
    ):
        """Initialize AISettingsManager.

        Args:
            storage: Storage provider all reads and writes go through.
            cipher: Cipher for API keys.
            migration: Runs before the first load, if given.
        """
        self.storage = storage
        self.cipher = cipher
        self.migration = migration

        self._state = SettingsState.UNINITIALIZED
        self._lock = threading.RLock()
        self.backup = BackupManager(storage, self._lock)
        self._current_profile: Optional[ProfileRecord] = None
        self._profiles: List[ProfileRecord] = []
        self._profiles_with_providers: List[ProfileWithProviders] = []
        self._providers: Dict[str, ProviderSettings] = {}
        self._enabled: List[str] = []
        self._encrypted_keys: Dict[str, EncryptedBlob] = {}

    # ---------- read-only state ----------

    @property
    def state(self) -> SettingsState:
        return self._state

    @property
    def is_fallback_mode(self) -> bool:
        return self._state == SettingsState.FALLBACK

    @property
    def is_loading(self) -> bool:
        return self._state in (SettingsState.UNINITIALIZED, SettingsState.LOADING)

    @property
    def current_profile(self) -> Optional[ProfileRecord]:
        return self._current_profile

    @property
    def profiles(self) -> List[ProfileRecord]:
        return list(self._profiles)

    @property
    def profiles_with_providers(self) -> List[ProfileWithProviders]:
        return list(self._profiles_with_providers)

    @property
    def settings(self) -> ProfileProviderSettings:
        return ProfileProviderSettings(
            profile_id=self._current_profile.id if self._current_profile else "",
            providers=dict(self._providers),
            enabled_providers=list(self._enabled),
        )

    # ---------- lifecycle ----------

    def initialize(self) -> SettingsState:
        """Probe storage, migrate if needed and load the active profile.

        Storage failures never propagate from here; they put the manager in
        fallback mode.

        Returns:
            The resulting state.
        """
        with self._lock:
            if self._state != SettingsState.UNINITIALIZED:
                return self._state
            self._state = SettingsState.LOADING

            if not self.storage.is_available():
                logger.warning("Storage not available, using fallback mode")
                self._state = SettingsState.FALLBACK
                return self._state

            try:
                self._run_migration()
                self._load()
            except AISettingsError as e:
                logger.error("Failed to initialize AI settings: %s", e, exc_info=True)
                self._state = SettingsState.FALLBACK
                return self._state

            self._state = SettingsState.READY
            logger.info(
                "AI settings ready: %d profiles, active profile %s",
                len(self._profiles),
                self._current_profile.id,
            )
            return self._state

    def reload(self) -> None:
        """Reload everything from storage, e.g. after a backup import."""
        with self._lock:
            self._require_ready()
            self._load()

    # ---------- store-wide operations ----------

    def import_backup(self, json_data: str) -> ImportResult:
        """Replace the store with a backup and reload from it.

        A rejected backup leaves the store and the mirror unchanged.
        """
        with self._lock:
            self._require_ready()
            result = self.backup.import_data(json_data)
            if result.success:
                self._load()
            return result

    def clear_all_data(self) -> None:
        """Delete everything; reloading creates a fresh default profile."""
        with self._lock:
            self._require_ready()
            self.backup.clear_all_data()
            self._load()

    def get_migration_status(self) -> MigrationStatus:
        """Report the migration status.

        Raises:
            InvalidOperationError: If no migration is configured.
        """
        with self._lock:
            if self.migration is None:
                raise InvalidOperationError("Migration is not configured")
            return self.migration.get_migration_status()

    def _run_migration(self) -> None:
        if self.migration is None:
            return
        try:
            result = self.migration.run_if_needed()
        except MigrationError as e:
            # Legacy data is intact; the next start retries
            logger.error("Migration failed: %s", e)
            return
        if result is not None:
            logger.info(result.message)

    def _load(self) -> None:
        active_id = self.storage.get_active_profile_id()
        profile = self.storage.get_profile(active_id) if active_id else None
        if profile is None:
            profile = self.storage.get_default_profile()
        self._load_provider_configs(profile)
        self._refresh_profiles()

    def _require_ready(self) -> None:
        if self._state == SettingsState.FALLBACK:
            raise StorageUnavailableError("Storage is unavailable; settings cannot be changed")
        if self._state != SettingsState.READY:
            raise InvalidOperationError("AI settings are not initialized")

    def _require_current_profile(self) -> ProfileRecord:
        self._require_ready()
        if self._current_profile is None:
            raise InvalidOperationError("No current profile")
        return self._current_profile

    def _load_provider_configs(self, profile: ProfileRecord) -> None:
        """Replace the provider mirror with the profile's stored configs."""
        providers: Dict[str, ProviderSettings] = {}
        enabled: List[str] = []
        keys: Dict[str, EncryptedBlob] = {}

        for record in self.storage.get_provider_configs_by_profile(profile.id):
            settings = _to_provider_settings(record)
            if settings is None:
                logger.warning(
                    "Skipping unknown provider %s in profile %s", record.provider_id, profile.id
                )
                continue
            providers[record.provider_id] = settings
            if record.enabled:
                enabled.append(record.provider_id)
            if record.api_key is not None:
                keys[record.provider_id] = record.api_key

        self.storage.set_metadata(ACTIVE_PROFILE_KEY, profile.id)
        self._current_profile = profile
        self._providers = providers
        self._enabled = enabled
        self._encrypted_keys = keys

    def _refresh_profiles(self) -> None:
        profiles = self.storage.get_all_profiles()
        summaries = []
        for profile in profiles:
            configured = []
            for record in self.storage.get_provider_configs_by_profile(profile.id):
                ref = provider_ref_for(record)
                configured.append(
                    ConfiguredProviderSummary(
                        id=record.provider_id,
                        name=provider_display_name(ref) if ref else record.provider_id,
                        model=record.model,
                        enabled=record.enabled,
                        is_custom=record.provider_type == "custom",
                        has_api_key=record.api_key is not None,
                    )
                )
            enabled_count = sum(1 for p in configured if p.enabled)
            summaries.append(
                ProfileWithProviders(
                    profile=profile,
                    configured_providers=configured,
                    has_any_enabled_provider=enabled_count > 0,
                    provider_count=len(configured),
                    enabled_provider_count=enabled_count,
                )
            )
        self._profiles = profiles
        self._profiles_with_providers = summaries

    # ---------- profile operations ----------

    def create_profile(self, name: str, description: Optional[str] = None) -> ProfileRecord:
        with self._lock:
            self._require_ready()
            profile = self.storage.create_profile(
                CreateProfileInput(name=name, description=description)
            )
            self._refresh_profiles()
            return profile

    def update_profile(
        self, profile_id: str, name: Optional[str] = None, description: Optional[str] = None
    ) -> ProfileRecord:
        """Rename a profile or change its description.

        Raises:
            NotFoundError: If the profile does not exist.
        """
        with self._lock:
            self._require_ready()
            changes = {}
            if name is not None:
                changes["name"] = name
            if description is not None:
                changes["description"] = description.strip() or None
            profile = self.storage.update_profile(profile_id, changes)
            self._refresh_profiles()
            if self._current_profile is not None and self._current_profile.id == profile_id:
                self._current_profile = profile
            return profile

    def delete_profile(self, profile_id: str) -> None:
        """Delete a profile and its providers.

        Deleting the current profile switches to the default profile.

        Raises:
            NotFoundError: If the profile does not exist.
            InvalidOperationError: If it is the default profile.
        """
        with self._lock:
            self._require_ready()
            self.storage.delete_profile(profile_id)
            if self._current_profile is not None and self._current_profile.id == profile_id:
                self._load_provider_configs(self.storage.get_default_profile())
            self._refresh_profiles()

    def switch_profile(self, profile_id: str) -> ProfileRecord:
        """Make another profile current.

        The new profile's providers are read fresh from storage; nothing of
        the previous profile is carried over.

        Raises:
            NotFoundError: If the profile does not exist.
        """
        with self._lock:
            self._require_ready()
            profile = self.storage.get_profile(profile_id)
            if profile is None:
                raise NotFoundError("Profile", profile_id)
            self._load_provider_configs(profile)
            logger.info("Switched to profile %s", profile_id)
            return profile

    # ---------- provider operations ----------

    def add_provider(self, provider_id: str) -> ProviderSettings:
        """Add a builtin provider to the current profile, disabled and keyless.

        Raises:
            ProviderAlreadyExistsError: If the profile already has it.
            ValidationError: If ``provider_id`` is not a builtin provider.
        """
        with self._lock:
            profile = self._require_current_profile()
            if provider_id in self._providers or self.storage.get_provider_config(
                profile.id, provider_id
            ):
                raise ProviderAlreadyExistsError(provider_id)
            if not is_builtin_provider_id(provider_id):
                raise ValidationError(f"Unknown provider: {provider_id}")

            registry = BUILTIN_PROVIDERS[provider_id]
            self.storage.save_provider_config(
                ProviderConfigInput(
                    profile_id=profile.id,
                    provider_id=provider_id,
                    provider_type="builtin",
                    api_key=None,
                    model=str(registry["default_model"]),
                    base_url=registry["fixed_base_url"],
                    enabled=False,
                )
            )
            self._load_provider_configs(profile)
            self._refresh_profiles()
            logger.info("Added provider %s to profile %s", provider_id, profile.id)
            return self._providers[provider_id]

    def update_provider(
        self, provider_id: str, update: Union[ProviderSettingsUpdate, dict]
    ) -> ProviderSettings:
        """Apply a partial update to a provider of the current profile.

        A non-empty ``api_key`` is encrypted before it is persisted or
        cached. An empty or missing key keeps the stored one; empty model
        and base URL values keep the stored ones as well.

        Raises:
            NotFoundError: If the current profile has no such provider.
        """
        if isinstance(update, dict):
            update = ProviderSettingsUpdate.model_validate(update)

        with self._lock:
            profile = self._require_current_profile()
            existing = self._providers.get(provider_id)
            if existing is None:
                raise NotFoundError("Provider", provider_id)

            encrypted = self._encrypted_keys.get(provider_id)
            if update.api_key:
                encrypted = self.cipher.encrypt(update.api_key)

            record = self.storage.save_provider_config(
                ProviderConfigInput(
                    profile_id=profile.id,
                    provider_id=provider_id,
                    provider_type=existing.provider_type,
                    api_key=encrypted,
                    model=update.model or existing.model,
                    base_url=update.base_url or existing.base_url,
                    enabled=existing.enabled if update.enabled is None else update.enabled,
                    custom_name=existing.custom_name,
                    custom_models=existing.custom_models,
                )
            )

            settings = _to_provider_settings(record)
            self._providers[provider_id] = settings
            if encrypted is not None:
                self._encrypted_keys[provider_id] = encrypted
            if settings.enabled and provider_id not in self._enabled:
                self._enabled.append(provider_id)
            elif not settings.enabled and provider_id in self._enabled:
                self._enabled.remove(provider_id)
            self._refresh_profiles()
            return settings

    def toggle_provider(self, provider_id: str) -> ProviderSettings:
        with self._lock:
            existing = self._providers.get(provider_id)
            if existing is None:
                self._require_current_profile()
                raise NotFoundError("Provider", provider_id)
            return self.update_provider(provider_id, ProviderSettingsUpdate(enabled=not existing.enabled))

    def rotate_api_key(self, provider_id: str, api_key: str) -> ProviderSettings:
        """Replace a provider's API key.

        Raises:
            ValidationError: If the new key is empty.
        """
        if not api_key or not api_key.strip():
            raise ValidationError("API key must not be empty")
        return self.update_provider(provider_id, ProviderSettingsUpdate(api_key=api_key.strip()))

    def delete_provider(self, provider_id: str) -> None:
        """Remove a provider from storage, the mirror and the key cache.

        Raises:
            NotFoundError: If the current profile has no such provider.
        """
        with self._lock:
            profile = self._require_current_profile()
            self.storage.delete_provider_config(ProviderKey(profile.id, provider_id))
            self._providers.pop(provider_id, None)
            self._encrypted_keys.pop(provider_id, None)
            if provider_id in self._enabled:
                self._enabled.remove(provider_id)
            self._refresh_profiles()
            logger.info("Deleted provider %s from profile %s", provider_id, profile.id)

    def get_decrypted_api_key(self, provider_id: str) -> str:
        """Decrypt a provider's API key.

        Returns:
            The plaintext key, or an empty string if none is set or it
            cannot be decrypted. An empty string means no usable key.
        """
        blob = self._encrypted_keys.get(provider_id)
        if blob is None:
            return ""
        try:
            return self.cipher.decrypt(blob)
        except DecryptionError as e:
            logger.error("Failed to decrypt API key for %s: %s", provider_id, e)
            return ""

    def create_custom_provider(self, data: CustomProviderInput) -> ProviderSettings:
        """Add an OpenAI-compatible custom endpoint to the current profile.

        Raises:
            ValidationError: If the definition is invalid.
        """
        models = validate_custom_provider(data)
        with self._lock:
            profile = self._require_current_profile()
            provider_id = new_custom_provider_id()
            self.storage.save_provider_config(
                ProviderConfigInput(
                    profile_id=profile.id,
                    provider_id=provider_id,
                    provider_type="custom",
                    api_key=None,
                    model=models[0],
                    base_url=data.base_url.strip(),
                    enabled=False,
                    custom_name=data.name.strip(),
                    custom_models=models,
                )
            )
            self._load_provider_configs(profile)
            self._refresh_profiles()
            logger.info("Created custom provider %s in profile %s", provider_id, profile.id)
            return self._providers[provider_id]
