"""Profile-scoped storage provider.

``StorageProvider`` is the CRUD contract for profiles, provider configs and
metadata. ``BucketStorageProvider`` implements it over ``BucketStorage``.

All writes are whole-bucket writes. A profile delete writes the providers
bucket and then the profiles bucket; an interruption between the two can
leave configs pointing at a profile that still exists, never the other way
around. There is at most one writer per store.
"""

import json
import logging
import uuid
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Union

from pydantic import ValidationError as PydanticValidationError

from config import (
    ACTIVE_PROFILE_KEY,
    CUSTOM_PROVIDER_PREFIX,
    DEFAULT_PROFILE_NAME,
    PROFILE_NAME_MAX_LENGTH,
    SCHEMA_VERSION_KEY,
)
from core.exceptions import (
    InvalidOperationError,
    NotFoundError,
    StorageUnavailableError,
    ValidationError,
)
from schemas.providers import ProviderKey, is_builtin_provider_id
from schemas.storage import (
    AppMetadata,
    CreateProfileInput,
    ProfileRecord,
    ProviderConfigInput,
    ProviderConfigRecord,
    QuotaInfo,
    StorageSnapshot,
    now_ms,
)
from utils.storage_backend import BucketStorage

logger = logging.getLogger(__name__)

# Fields callers may never overwrite through an update
_PROTECTED_FIELDS = ("id", "created_at")


def normalize_profile_name(name: str) -> str:
    """Trim a profile name and cap it at PROFILE_NAME_MAX_LENGTH characters."""
    return name.strip()[:PROFILE_NAME_MAX_LENGTH]


def validate_provider_identity(record: ProviderConfigRecord) -> None:
    """Check the builtin/custom invariants of a provider config.

    Raises:
        ValidationError: If a builtin config names an unknown provider, or a
            custom config lacks its generated id, name or model list.
    """
    if record.provider_type == "builtin":
        if not is_builtin_provider_id(record.provider_id):
            raise ValidationError(f"Unknown provider: {record.provider_id}")
        return
    if not record.provider_id.startswith(CUSTOM_PROVIDER_PREFIX):
        raise ValidationError(
            f"Custom provider id must start with '{CUSTOM_PROVIDER_PREFIX}': {record.provider_id}"
        )
    if not record.custom_name:
        raise ValidationError(f"Custom provider {record.provider_id} has no name")
    if not record.custom_models:
        raise ValidationError(f"Custom provider {record.provider_id} has no models")


class StorageProvider(ABC):
    """CRUD contract for the AI settings store."""

    @abstractmethod
    def is_available(self) -> bool:
        ...

    @abstractmethod
    def get_quota_info(self) -> QuotaInfo:
        ...

    # Profile operations
    @abstractmethod
    def create_profile(self, data: CreateProfileInput) -> ProfileRecord:
        ...

    @abstractmethod
    def update_profile(self, profile_id: str, changes: Dict[str, Any]) -> ProfileRecord:
        ...

    @abstractmethod
    def delete_profile(self, profile_id: str) -> None:
        ...

    @abstractmethod
    def get_profile(self, profile_id: str) -> Optional[ProfileRecord]:
        ...

    @abstractmethod
    def get_all_profiles(self) -> List[ProfileRecord]:
        ...

    @abstractmethod
    def save_profile(self, profile: ProfileRecord) -> ProfileRecord:
        ...

    @abstractmethod
    def get_default_profile(self) -> ProfileRecord:
        ...

    # Provider config operations
    @abstractmethod
    def save_provider_config(self, config: ProviderConfigInput) -> ProviderConfigRecord:
        ...

    @abstractmethod
    def update_provider_config(
        self, key: Union[ProviderKey, str], changes: Dict[str, Any]
    ) -> ProviderConfigRecord:
        ...

    @abstractmethod
    def delete_provider_config(self, key: Union[ProviderKey, str]) -> None:
        ...

    @abstractmethod
    def get_provider_configs_by_profile(self, profile_id: str) -> List[ProviderConfigRecord]:
        ...

    @abstractmethod
    def get_provider_config(self, profile_id: str, provider_id: str) -> Optional[ProviderConfigRecord]:
        ...

    # Metadata operations
    @abstractmethod
    def set_metadata(self, key: str, value: Any) -> None:
        ...

    @abstractmethod
    def get_metadata(self, key: str) -> Any:
        ...

    def get_schema_version(self) -> int:
        version = self.get_metadata(SCHEMA_VERSION_KEY)
        # bool is an int subclass; a stray true/false is not a version
        if isinstance(version, int) and not isinstance(version, bool):
            return version
        return 0

    def set_schema_version(self, version: int) -> None:
        self.set_metadata(SCHEMA_VERSION_KEY, version)

    def get_active_profile_id(self) -> Optional[str]:
        value = self.get_metadata(ACTIVE_PROFILE_KEY)
        return value if isinstance(value, str) and value else None

    # Bulk operations
    @abstractmethod
    def clear_all(self) -> None:
        ...

    @abstractmethod
    def export_data(self) -> str:
        ...

    @abstractmethod
    def import_data(self, json_data: str) -> None:
        ...

    @abstractmethod
    def close(self) -> None:
        ...


class BucketStorageProvider(StorageProvider):
    """StorageProvider over the three JSON buckets of a key-value store."""

    def __init__(self, backend: BucketStorage):
        """Initialize BucketStorageProvider.

        Args:
            backend: Bucket access to the key-value store.
        """
        self.backend = backend

    def _ensure_available(self) -> None:
        if not self.backend.is_available():
            raise StorageUnavailableError("Key-value store is not available")

    def is_available(self) -> bool:
        return self.backend.is_available()

    def get_quota_info(self) -> QuotaInfo:
        return self.backend.get_quota_info()

    # ---------- bucket helpers ----------

    def _load_profiles(self) -> Dict[str, ProfileRecord]:
        raw = self.backend.read_bucket("profiles")
        return {pid: ProfileRecord.model_validate(data) for pid, data in raw.items()}

    def _save_profiles(self, profiles: Dict[str, ProfileRecord]) -> None:
        self.backend.write_bucket(
            "profiles", {pid: profile.to_storage() for pid, profile in profiles.items()}
        )

    def _load_providers(self) -> Dict[str, ProviderConfigRecord]:
        raw = self.backend.read_bucket("providers")
        return {key: ProviderConfigRecord.model_validate(data) for key, data in raw.items()}

    def _save_providers(self, providers: Dict[str, ProviderConfigRecord]) -> None:
        self.backend.write_bucket(
            "providers", {key: config.to_storage() for key, config in providers.items()}
        )

    @staticmethod
    def _resolve_provider_key(
        providers: Dict[str, ProviderConfigRecord], key: Union[ProviderKey, str]
    ) -> Optional[str]:
        """Map a ProviderKey, its string form, or a record id to a bucket key."""
        if isinstance(key, ProviderKey):
            key = key.serialize()
        if key in providers:
            return key
        for bucket_key, config in providers.items():
            if config.id == key:
                return bucket_key
        return None

    # ---------- profile operations ----------

    def create_profile(self, data: CreateProfileInput) -> ProfileRecord:
        """Create a non-default profile.

        Args:
            data: Name (trimmed, capped at 50 characters) and description.

        Returns:
            The stored ProfileRecord.
        """
        self._ensure_available()
        name = normalize_profile_name(data.name)
        if not name:
            raise ValidationError("Profile name must not be empty")
        timestamp = now_ms()
        profile = ProfileRecord(
            id=str(uuid.uuid4()),
            name=name,
            description=data.description.strip() if data.description else None,
            created_at=timestamp,
            updated_at=timestamp,
            is_default=False,
        )
        profiles = self._load_profiles()
        profiles[profile.id] = profile
        self._save_profiles(profiles)
        logger.info("Created profile: %s", profile.id)
        return profile

    def update_profile(self, profile_id: str, changes: Dict[str, Any]) -> ProfileRecord:
        """Merge changes into a profile and bump updated_at.

        Setting ``is_default`` to True moves the default flag to this
        profile. Clearing it on the default profile is rejected, since one
        profile must always be the default.

        Raises:
            NotFoundError: If the profile does not exist.
            InvalidOperationError: If the change would leave no default.
        """
        self._ensure_available()
        profiles = self._load_profiles()
        existing = profiles.get(profile_id)
        if existing is None:
            raise NotFoundError("Profile", profile_id)

        changes = {k: v for k, v in changes.items() if k not in _PROTECTED_FIELDS}
        if "name" in changes:
            changes["name"] = normalize_profile_name(changes["name"] or "")
            if not changes["name"]:
                raise ValidationError("Profile name must not be empty")
        if changes.get("is_default") is False and existing.is_default:
            raise InvalidOperationError("Cannot unset the default profile")

        updated = ProfileRecord.model_validate(
            {**existing.model_dump(), **changes, "updated_at": now_ms()}
        )
        if updated.is_default and not existing.is_default:
            for other_id, other in profiles.items():
                if other.is_default:
                    profiles[other_id] = other.model_copy(
                        update={"is_default": False, "updated_at": now_ms()}
                    )
        profiles[profile_id] = updated
        self._save_profiles(profiles)
        logger.info("Updated profile: %s", profile_id)
        return updated

    def delete_profile(self, profile_id: str) -> None:
        """Delete a profile and every provider config it owns.

        Raises:
            NotFoundError: If the profile does not exist.
            InvalidOperationError: If the profile is the default profile.
        """
        self._ensure_available()
        profiles = self._load_profiles()
        profile = profiles.get(profile_id)
        if profile is None:
            raise NotFoundError("Profile", profile_id)
        if profile.is_default:
            raise InvalidOperationError("Cannot delete default profile")

        # Children first, then the parent
        providers = self._load_providers()
        remaining = {k: c for k, c in providers.items() if c.profile_id != profile_id}
        if len(remaining) != len(providers):
            self._save_providers(remaining)

        del profiles[profile_id]
        self._save_profiles(profiles)
        logger.info(
            "Deleted profile %s and %d provider configs",
            profile_id,
            len(providers) - len(remaining),
        )

    def get_profile(self, profile_id: str) -> Optional[ProfileRecord]:
        self._ensure_available()
        return self._load_profiles().get(profile_id)

    def get_all_profiles(self) -> List[ProfileRecord]:
        self._ensure_available()
        return sorted(self._load_profiles().values(), key=lambda p: p.created_at)

    def save_profile(self, profile: ProfileRecord) -> ProfileRecord:
        """Write a profile record verbatim (used by migration and restore)."""
        self._ensure_available()
        profiles = self._load_profiles()
        profiles[profile.id] = profile
        self._save_profiles(profiles)
        return profile

    def get_default_profile(self) -> ProfileRecord:
        """Return the default profile, creating "Default" if none exists."""
        self._ensure_available()
        profiles = self._load_profiles()
        for profile in profiles.values():
            if profile.is_default:
                return profile

        timestamp = now_ms()
        profile = ProfileRecord(
            id=str(uuid.uuid4()),
            name=DEFAULT_PROFILE_NAME,
            created_at=timestamp,
            updated_at=timestamp,
            is_default=True,
        )
        profiles[profile.id] = profile
        self._save_profiles(profiles)
        logger.info("Created default profile: %s", profile.id)
        return profile

    # ---------- provider config operations ----------

    def save_provider_config(self, config: ProviderConfigInput) -> ProviderConfigRecord:
        """Upsert a provider config by its (profile, provider) key.

        Fields the caller set on ``config`` replace the stored ones; unset
        fields keep their stored values. A new record gets a fresh id and
        timestamps.

        Raises:
            ValidationError: If the merged record breaks the builtin/custom
                invariants.
        """
        self._ensure_available()
        key = ProviderKey(config.profile_id, config.provider_id).serialize()
        providers = self._load_providers()
        existing = providers.get(key)
        timestamp = now_ms()

        if existing is not None:
            changes = config.model_dump(exclude_unset=True)
            record = ProviderConfigRecord.model_validate(
                {**existing.model_dump(), **changes, "updated_at": timestamp}
            )
        else:
            record = ProviderConfigRecord.model_validate(
                {
                    **config.model_dump(),
                    "id": str(uuid.uuid4()),
                    "created_at": timestamp,
                    "updated_at": timestamp,
                }
            )
        validate_provider_identity(record)

        providers[key] = record
        self._save_providers(providers)
        logger.debug("Saved provider config %s", key)
        return record

    def update_provider_config(
        self, key: Union[ProviderKey, str], changes: Dict[str, Any]
    ) -> ProviderConfigRecord:
        """Merge changes into an existing provider config.

        The owning profile and provider id are part of the key and cannot be
        changed here.

        Raises:
            NotFoundError: If no config matches the key or id.
        """
        self._ensure_available()
        providers = self._load_providers()
        bucket_key = self._resolve_provider_key(providers, key)
        if bucket_key is None:
            raise NotFoundError("Provider config", str(key))

        existing = providers[bucket_key]
        changes = {
            k: v
            for k, v in changes.items()
            if k not in _PROTECTED_FIELDS and k not in ("profile_id", "provider_id")
        }
        updated = ProviderConfigRecord.model_validate(
            {**existing.model_dump(), **changes, "updated_at": now_ms()}
        )
        validate_provider_identity(updated)
        providers[bucket_key] = updated
        self._save_providers(providers)
        return updated

    def delete_provider_config(self, key: Union[ProviderKey, str]) -> None:
        """Delete one provider config by composite key or record id.

        Raises:
            NotFoundError: If no config matches.
        """
        self._ensure_available()
        providers = self._load_providers()
        bucket_key = self._resolve_provider_key(providers, key)
        if bucket_key is None:
            raise NotFoundError("Provider config", str(key))
        del providers[bucket_key]
        self._save_providers(providers)
        logger.info("Deleted provider config %s", bucket_key)

    def get_provider_configs_by_profile(self, profile_id: str) -> List[ProviderConfigRecord]:
        self._ensure_available()
        return [c for c in self._load_providers().values() if c.profile_id == profile_id]

    def get_provider_config(self, profile_id: str, provider_id: str) -> Optional[ProviderConfigRecord]:
        self._ensure_available()
        return self._load_providers().get(ProviderKey(profile_id, provider_id).serialize())

    # ---------- metadata operations ----------

    def set_metadata(self, key: str, value: Any) -> None:
        self._ensure_available()
        metadata = self.backend.read_bucket("metadata")
        metadata[key] = AppMetadata(key=key, value=value, updated_at=now_ms()).to_storage()
        self.backend.write_bucket("metadata", metadata)

    def get_metadata(self, key: str) -> Any:
        self._ensure_available()
        entry = self.backend.read_bucket("metadata").get(key)
        if not isinstance(entry, dict):
            return None
        return entry.get("value")

    # ---------- bulk operations ----------

    def clear_all(self) -> None:
        """Remove all three buckets."""
        self._ensure_available()
        for bucket in ("profiles", "providers", "metadata"):
            self.backend.remove_bucket(bucket)
        logger.info("Cleared all AI settings data")

    def export_data(self) -> str:
        """Dump the three buckets as one JSON document."""
        self._ensure_available()
        return json.dumps(self.backend.read_all(), indent=2, ensure_ascii=False)

    def import_data(self, json_data: str) -> None:
        """Replace the three buckets with an exported document.

        Every record is validated before anything is written.

        Raises:
            ValidationError: If the document is not valid JSON, does not
                have the profiles/providers/metadata shape, or does not hold
                exactly one default profile.
        """
        self._ensure_available()
        try:
            snapshot = StorageSnapshot.model_validate_json(json_data)
            default_count = 0
            for key, data in snapshot.profiles.items():
                profile = ProfileRecord.model_validate(data)
                if key != profile.id:
                    raise ValueError(f"Profile key {key} does not match its record")
                if profile.is_default:
                    default_count += 1
            if default_count != 1:
                raise ValueError(f"Expected exactly one default profile, found {default_count}")
            for key, data in snapshot.providers.items():
                record = ProviderConfigRecord.model_validate(data)
                if ProviderKey.parse(key) != (record.profile_id, record.provider_id):
                    raise ValueError(f"Provider key {key} does not match its record")
            for data in snapshot.metadata.values():
                AppMetadata.model_validate(data)
        except (PydanticValidationError, ValueError) as e:
            raise ValidationError(f"Invalid data format: {e}") from e

        self.backend.write_bucket("profiles", snapshot.profiles)
        self.backend.write_bucket("providers", snapshot.providers)
        self.backend.write_bucket("metadata", snapshot.metadata)
        logger.info(
            "Imported %d profiles and %d provider configs",
            len(snapshot.profiles),
            len(snapshot.providers),
        )

    def close(self) -> None:
        self.backend.store.close()
