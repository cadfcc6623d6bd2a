"""Read models and results exposed by the settings managers."""

from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from schemas.providers import ProviderRef
from schemas.storage import ProfileRecord, ProviderType, QuotaInfo


class SettingsState(str, Enum):
    """Lifecycle of the settings manager."""

    UNINITIALIZED = "uninitialized"
    LOADING = "loading"
    READY = "ready"
    FALLBACK = "fallback"


class ProviderSettings(BaseModel):
    """One provider of the current profile. Never carries a plaintext key."""

    provider_id: str
    ref: ProviderRef
    provider_type: ProviderType
    name: str
    model: str
    base_url: Optional[str] = None
    enabled: bool = False
    has_api_key: bool = False
    custom_name: Optional[str] = None
    custom_models: Optional[List[str]] = None


class ProfileProviderSettings(BaseModel):
    """Provider settings of the current profile."""

    profile_id: str = ""
    providers: Dict[str, ProviderSettings] = Field(default_factory=dict)
    enabled_providers: List[str] = Field(default_factory=list)


class ProviderSettingsUpdate(BaseModel):
    """Partial update for one provider. ``api_key`` is plaintext input."""

    api_key: Optional[str] = None
    model: Optional[str] = None
    base_url: Optional[str] = None
    enabled: Optional[bool] = None


class ConfiguredProviderSummary(BaseModel):
    id: str
    name: str
    model: str
    enabled: bool
    is_custom: bool
    has_api_key: bool


class ProfileWithProviders(BaseModel):
    """A profile with a summary of its configured providers."""

    profile: ProfileRecord
    configured_providers: List[ConfiguredProviderSummary] = Field(default_factory=list)
    has_any_enabled_provider: bool = False
    provider_count: int = 0
    enabled_provider_count: int = 0


class MigrationResult(BaseModel):
    success: bool
    message: str
    migrated_items: int = 0


class MigrationStatus(BaseModel):
    needs_migration: bool
    storage_available: bool
    storage_items: int = 0
    legacy_available: bool = False
    legacy_items: int = 0


class BackupExport(BaseModel):
    data: str
    filename: str


class ImportResult(BaseModel):
    success: bool
    message: str


class DataInfo(BaseModel):
    profile_count: int
    provider_count: int
    data_size: str
    quota_info: QuotaInfo
