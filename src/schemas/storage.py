"""Storage record schemas.

This module defines the records persisted in the three key-value buckets.
Field names are snake_case in Python and camelCase on disk, and timestamps
are milliseconds since the epoch, so exported backups keep the same shape
the browser version wrote.
"""

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

import pytz
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

ProviderType = Literal["builtin", "custom"]


def now_ms() -> int:
    """Return the current UTC time in epoch milliseconds."""
    return int(datetime.now(pytz.utc).timestamp() * 1000)


class StorageModel(BaseModel):
    """Base for records stored as camelCase JSON."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_storage(self) -> Dict[str, Any]:
        """Dump to the on-disk JSON shape, omitting unset optional fields."""
        return self.model_dump(by_alias=True, exclude_none=True)


class EncryptedBlob(StorageModel):
    """An API key at rest: base64 IV plus base64 ciphertext."""

    iv: str = Field(description="Base64 encoded initialization vector.")
    data: str = Field(description="Base64 encoded ciphertext with auth tag.")


class ProfileRecord(StorageModel):
    """A named container isolating a set of provider configurations."""

    id: str
    name: str
    description: Optional[str] = None
    created_at: int
    updated_at: int
    is_default: bool = False


class ProviderConfigRecord(StorageModel):
    """One provider's configuration within one profile."""

    id: str
    profile_id: str
    provider_id: str
    provider_type: ProviderType
    api_key: Optional[EncryptedBlob] = None
    model: str = ""
    base_url: Optional[str] = None
    enabled: bool = False
    custom_name: Optional[str] = None
    custom_models: Optional[List[str]] = None
    created_at: int
    updated_at: int

    def to_storage(self) -> Dict[str, Any]:
        data = super().to_storage()
        # apiKey is always present on disk, null when unset
        data["apiKey"] = self.api_key.to_storage() if self.api_key else None
        return data


class ProviderConfigInput(StorageModel):
    """A provider config without id and timestamps, as passed to an upsert.

    Only fields explicitly set by the caller are merged into an existing
    record, so omitting a field keeps its stored value.
    """

    profile_id: str
    provider_id: str
    provider_type: ProviderType
    api_key: Optional[EncryptedBlob] = None
    model: str = ""
    base_url: Optional[str] = None
    enabled: bool = False
    custom_name: Optional[str] = None
    custom_models: Optional[List[str]] = None


class AppMetadata(StorageModel):
    """One bookkeeping entry in the metadata bucket."""

    key: str
    value: Any = None
    updated_at: int

    def to_storage(self) -> Dict[str, Any]:
        # value may legitimately be null
        return {"key": self.key, "value": self.value, "updatedAt": self.updated_at}


class CreateProfileInput(BaseModel):
    """Input for creating a new profile."""

    name: str
    description: Optional[str] = None


class CustomProviderInput(BaseModel):
    """Input for creating a custom OpenAI-compatible provider."""

    name: str
    base_url: str
    models: List[str]
    api_key_placeholder: Optional[str] = None


class QuotaInfo(StorageModel):
    """Best-effort store usage report."""

    usage: int = 0
    quota: int = 0
    percent_used: float = 0.0


class LegacyProviderSettings(StorageModel):
    """A provider entry in the flat first-generation settings object."""

    id: Optional[str] = None
    api_key: Optional[EncryptedBlob] = None
    base_url: Optional[str] = None
    model: str = ""
    enabled: bool = False

    @field_validator("api_key", mode="before")
    @classmethod
    def empty_key_is_none(cls, value: Any) -> Any:
        if value == "":
            return None
        return value


class LegacySettings(StorageModel):
    """Flat single-profile settings keyed directly by provider id."""

    providers: Dict[str, LegacyProviderSettings] = Field(default_factory=dict)
    active_provider: Optional[str] = None


class StorageSnapshot(BaseModel):
    """The export/import document: the three buckets verbatim."""

    profiles: Dict[str, Dict[str, Any]]
    providers: Dict[str, Dict[str, Any]]
    metadata: Dict[str, Dict[str, Any]]
