"""Prior-generation settings database models.

The previous release kept profiles, provider configs and metadata in three
separate tables. They are only read (and optionally emptied) by migration.
"""

from sqlalchemy import JSON, BigInteger, Boolean, Column, ForeignKey, String

from .base import LegacyBase


class LegacyProfileModel(LegacyBase):
    __tablename__ = "profiles"

    id = Column(String, primary_key=True)
    name = Column(String, nullable=False)
    description = Column(String, nullable=True)
    created_at = Column(BigInteger, nullable=False)  # epoch ms
    updated_at = Column(BigInteger, nullable=False)
    is_default = Column(Boolean, nullable=False, default=False, index=True)


class LegacyProviderConfigModel(LegacyBase):
    __tablename__ = "provider_configs"

    id = Column(String, primary_key=True)
    profile_id = Column(String, ForeignKey("profiles.id"), nullable=False, index=True)
    provider_id = Column(String, nullable=False, index=True)
    provider_type = Column(String, nullable=False)
    api_key = Column(JSON, nullable=True)  # {"iv": ..., "data": ...}
    model = Column(String, nullable=False, default="")
    base_url = Column(String, nullable=True)
    enabled = Column(Boolean, nullable=False, default=False)
    custom_name = Column(String, nullable=True)
    custom_models = Column(JSON, nullable=True)
    created_at = Column(BigInteger, nullable=False)
    updated_at = Column(BigInteger, nullable=False)


class LegacyMetadataModel(LegacyBase):
    __tablename__ = "app_metadata"

    key = Column(String, primary_key=True)
    value = Column(JSON, nullable=True)
    updated_at = Column(BigInteger, nullable=False)
