"""Provider routes.

This module handles HTTP endpoints for the providers of the current
profile. API keys are accepted in plaintext and stored encrypted.
"""

import logging

from fastapi import APIRouter, status
from pydantic import BaseModel, Field

from api.errors import to_http_exception
from core.dependencies import SettingsManagerDep
from core.exceptions import AISettingsError
from schemas.settings import ProfileProviderSettings, ProviderSettings, ProviderSettingsUpdate
from schemas.storage import CustomProviderInput

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/providers", tags=["Providers"])


class AddProviderRequest(BaseModel):
    """Request schema for adding a builtin provider."""

    provider_id: str = Field(description="Builtin provider id, e.g. 'openai'.")


class ApiKeyRequest(BaseModel):
    """Request schema for replacing an API key."""

    api_key: str = Field(description="New plaintext API key.", min_length=1)


class ApiKeyResponse(BaseModel):
    """Decrypted API key. Empty when no usable key is stored."""

    provider_id: str
    api_key: str


@router.get("", response_model=ProfileProviderSettings, summary="List providers of the current profile")
def list_providers(settings_manager: SettingsManagerDep) -> ProfileProviderSettings:
    return settings_manager.settings


@router.post(
    "",
    response_model=ProviderSettings,
    status_code=status.HTTP_201_CREATED,
    summary="Add a builtin provider",
)
def add_provider(request: AddProviderRequest, settings_manager: SettingsManagerDep) -> ProviderSettings:
    """Add a builtin provider, disabled and without a key.

    Raises:
        HTTPException: 409 if the profile already has the provider, 422 if
            the id is not a builtin provider.
    """
    try:
        return settings_manager.add_provider(request.provider_id)
    except AISettingsError as e:
        raise to_http_exception(e)


@router.post(
    "/custom",
    response_model=ProviderSettings,
    status_code=status.HTTP_201_CREATED,
    summary="Add a custom OpenAI-compatible provider",
)
def create_custom_provider(
    request: CustomProviderInput, settings_manager: SettingsManagerDep
) -> ProviderSettings:
    try:
        return settings_manager.create_custom_provider(request)
    except AISettingsError as e:
        raise to_http_exception(e)


@router.patch("/{provider_id}", response_model=ProviderSettings, summary="Update a provider")
def update_provider(
    provider_id: str, request: ProviderSettingsUpdate, settings_manager: SettingsManagerDep
) -> ProviderSettings:
    try:
        return settings_manager.update_provider(provider_id, request)
    except AISettingsError as e:
        raise to_http_exception(e)


@router.post("/{provider_id}/toggle", response_model=ProviderSettings, summary="Enable or disable a provider")
def toggle_provider(provider_id: str, settings_manager: SettingsManagerDep) -> ProviderSettings:
    try:
        return settings_manager.toggle_provider(provider_id)
    except AISettingsError as e:
        raise to_http_exception(e)


@router.put("/{provider_id}/api-key", response_model=ProviderSettings, summary="Replace an API key")
def rotate_api_key(
    provider_id: str, request: ApiKeyRequest, settings_manager: SettingsManagerDep
) -> ProviderSettings:
    try:
        return settings_manager.rotate_api_key(provider_id, request.api_key)
    except AISettingsError as e:
        raise to_http_exception(e)


@router.get("/{provider_id}/api-key", response_model=ApiKeyResponse, summary="Get a decrypted API key")
def get_api_key(provider_id: str, settings_manager: SettingsManagerDep) -> ApiKeyResponse:
    """Return the decrypted key for outbound AI calls.

    An undecryptable key is returned as an empty string, not as an error.
    """
    return ApiKeyResponse(
        provider_id=provider_id,
        api_key=settings_manager.get_decrypted_api_key(provider_id),
    )


@router.delete("/{provider_id}", status_code=status.HTTP_204_NO_CONTENT, summary="Delete a provider")
def delete_provider(provider_id: str, settings_manager: SettingsManagerDep) -> None:
    try:
        settings_manager.delete_provider(provider_id)
    except AISettingsError as e:
        raise to_http_exception(e)
