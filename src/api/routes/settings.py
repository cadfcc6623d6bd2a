"""AI settings state routes.

This module exposes the settings manager's state, the builtin provider
registry and the migration status.
"""

import logging
from typing import Dict, List, Optional

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, Field

from api.errors import to_http_exception
from config import BUILTIN_PROVIDERS
from core.dependencies import SettingsManagerDep
from core.exceptions import AISettingsError
from schemas.settings import MigrationStatus, ProfileProviderSettings, SettingsState
from schemas.storage import ProfileRecord

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/settings", tags=["Settings"])


class SettingsStateResponse(BaseModel):
    """Response schema for the settings state."""

    state: SettingsState
    is_fallback_mode: bool = Field(
        description="True when storage is unavailable and nothing can be saved.",
    )
    current_profile: Optional[ProfileRecord] = None
    settings: ProfileProviderSettings


class BuiltinProviderInfo(BaseModel):
    """Registry entry of a builtin provider."""

    id: str
    display_name: str
    description: str
    models: List[str]
    supports_custom_endpoint: bool
    fixed_base_url: Optional[str] = None
    default_model: str
    placeholder: str


@router.get("", response_model=SettingsStateResponse, summary="Get the AI settings state")
def get_settings(settings_manager: SettingsManagerDep) -> SettingsStateResponse:
    """Return the lifecycle state and the current profile's providers."""
    return SettingsStateResponse(
        state=settings_manager.state,
        is_fallback_mode=settings_manager.is_fallback_mode,
        current_profile=settings_manager.current_profile,
        settings=settings_manager.settings,
    )


@router.get(
    "/registry",
    response_model=Dict[str, BuiltinProviderInfo],
    summary="List the builtin providers",
)
def get_registry() -> Dict[str, BuiltinProviderInfo]:
    return {
        provider_id: BuiltinProviderInfo(id=provider_id, **entry)
        for provider_id, entry in BUILTIN_PROVIDERS.items()
    }


@router.get("/migration", response_model=MigrationStatus, summary="Get the migration status")
def get_migration_status(settings_manager: SettingsManagerDep) -> MigrationStatus:
    """Report item counts of the current store and the legacy sources.

    Raises:
        HTTPException: 404 if this instance has no migration configured.
    """
    if settings_manager.migration is None:
        raise HTTPException(status_code=404, detail="Migration is not configured")
    try:
        return settings_manager.get_migration_status()
    except AISettingsError as e:
        raise to_http_exception(e)
