"""Profile management routes.

This module handles HTTP endpoints for AI settings profiles.
"""

import logging
from typing import List, Optional

from fastapi import APIRouter, status
from pydantic import BaseModel, Field

from api.errors import to_http_exception
from config import PROFILE_NAME_MAX_LENGTH
from core.dependencies import SettingsManagerDep
from core.exceptions import AISettingsError
from schemas.settings import ProfileProviderSettings, ProfileWithProviders
from schemas.storage import ProfileRecord

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/profiles", tags=["Profiles"])


class CreateProfileRequest(BaseModel):
    """Request schema for creating a profile."""

    name: str = Field(
        description=f"Profile name. Trimmed and capped at {PROFILE_NAME_MAX_LENGTH} characters.",
        min_length=1,
    )
    description: Optional[str] = Field(default=None, description="Optional description.")


class UpdateProfileRequest(BaseModel):
    """Request schema for renaming or describing a profile."""

    name: Optional[str] = Field(default=None, description="New profile name.")
    description: Optional[str] = Field(default=None, description="New description.")


@router.get("", response_model=List[ProfileWithProviders], summary="List profiles")
def list_profiles(settings_manager: SettingsManagerDep) -> List[ProfileWithProviders]:
    """List all profiles with a summary of their providers."""
    return settings_manager.profiles_with_providers


@router.post(
    "",
    response_model=ProfileRecord,
    status_code=status.HTTP_201_CREATED,
    summary="Create a profile",
)
def create_profile(
    request: CreateProfileRequest, settings_manager: SettingsManagerDep
) -> ProfileRecord:
    try:
        return settings_manager.create_profile(request.name, request.description)
    except AISettingsError as e:
        raise to_http_exception(e)


@router.patch("/{profile_id}", response_model=ProfileRecord, summary="Update a profile")
def update_profile(
    profile_id: str, request: UpdateProfileRequest, settings_manager: SettingsManagerDep
) -> ProfileRecord:
    """Rename a profile or change its description.

    Raises:
        HTTPException: 404 if the profile does not exist.
    """
    try:
        return settings_manager.update_profile(profile_id, request.name, request.description)
    except AISettingsError as e:
        raise to_http_exception(e)


@router.delete(
    "/{profile_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete a profile and its providers",
)
def delete_profile(profile_id: str, settings_manager: SettingsManagerDep) -> None:
    """Delete a profile.

    Raises:
        HTTPException: 404 if the profile does not exist, 409 if it is the
            default profile.
    """
    try:
        settings_manager.delete_profile(profile_id)
    except AISettingsError as e:
        raise to_http_exception(e)


@router.post(
    "/{profile_id}/switch",
    response_model=ProfileProviderSettings,
    summary="Make a profile current",
)
def switch_profile(profile_id: str, settings_manager: SettingsManagerDep) -> ProfileProviderSettings:
    try:
        settings_manager.switch_profile(profile_id)
    except AISettingsError as e:
        raise to_http_exception(e)
    logger.info("Switched active profile to %s", profile_id)
    return settings_manager.settings
