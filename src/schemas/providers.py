"""Provider identity schemas.

A provider is either one of the builtin providers or a user-defined custom
endpoint. ``ProviderRef`` models that as a tagged union so callers dispatch
on the variant instead of inspecting id prefixes.
"""

import uuid
from enum import Enum
from typing import Annotated, List, Literal, NamedTuple, Optional, Union

from pydantic import BaseModel, Field

from config import BUILTIN_PROVIDERS, CUSTOM_PROVIDER_PREFIX
from schemas.storage import ProviderConfigRecord


class BuiltinProviderId(str, Enum):
    """Identifiers of the builtin providers."""

    OPENAI = "openai"
    ANTHROPIC = "anthropic"
    GOOGLE = "google"
    ANTHROPIC_CUSTOM = "anthropic-custom"
    CEREBRAS = "cerebras"


class ProviderKey(NamedTuple):
    """Composite key addressing one provider config inside one profile."""

    profile_id: str
    provider_id: str

    def serialize(self) -> str:
        """Return the colon-joined form used as the bucket key on disk."""
        return f"{self.profile_id}:{self.provider_id}"

    @classmethod
    def parse(cls, value: str) -> "ProviderKey":
        """Parse ``"<profileId>:<providerId>"``.

        Profile ids never contain a colon, so the first colon splits.

        Raises:
            ValueError: If the string has no colon or an empty part.
        """
        profile_id, sep, provider_id = value.partition(":")
        if not sep or not profile_id or not provider_id:
            raise ValueError(f"Invalid provider key: {value!r}")
        return cls(profile_id, provider_id)


class BuiltinProvider(BaseModel):
    kind: Literal["builtin"] = "builtin"
    provider_id: BuiltinProviderId

    @property
    def id(self) -> str:
        return self.provider_id.value


class CustomProvider(BaseModel):
    kind: Literal["custom"] = "custom"
    custom_id: str = Field(description="The uuid part of the provider id.")
    name: str
    models: List[str]

    @property
    def id(self) -> str:
        return f"{CUSTOM_PROVIDER_PREFIX}{self.custom_id}"


ProviderRef = Annotated[Union[BuiltinProvider, CustomProvider], Field(discriminator="kind")]


def is_builtin_provider_id(provider_id: str) -> bool:
    return provider_id in BuiltinProviderId._value2member_map_


def new_custom_provider_id() -> str:
    """Generate a fresh ``custom-<uuid>`` provider id."""
    return f"{CUSTOM_PROVIDER_PREFIX}{uuid.uuid4()}"


def provider_ref_for(record: ProviderConfigRecord) -> Optional[ProviderRef]:
    """Build the tagged provider reference for a stored config.

    Returns:
        The reference, or None if the record names an unknown builtin
        provider or a malformed custom one.
    """
    if record.provider_type == "builtin":
        if not is_builtin_provider_id(record.provider_id):
            return None
        return BuiltinProvider(provider_id=BuiltinProviderId(record.provider_id))
    if not record.provider_id.startswith(CUSTOM_PROVIDER_PREFIX):
        return None
    return CustomProvider(
        custom_id=record.provider_id[len(CUSTOM_PROVIDER_PREFIX):],
        name=record.custom_name or record.provider_id,
        models=list(record.custom_models or []),
    )


def provider_display_name(ref: ProviderRef) -> str:
    if isinstance(ref, CustomProvider):
        return ref.name
    return str(BUILTIN_PROVIDERS[ref.id]["display_name"])
