"""Backup and restore routes."""

import logging

from fastapi import APIRouter, status
from fastapi.responses import Response
from pydantic import BaseModel, Field

from api.errors import to_http_exception
from core.dependencies import BackupManagerDep, SettingsManagerDep
from core.exceptions import AISettingsError
from schemas.settings import DataInfo, ImportResult

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/backup", tags=["Backup"])


class ImportRequest(BaseModel):
    """Request schema for restoring a backup."""

    data: str = Field(description="Exported JSON document.")


@router.get("/export", summary="Download a backup of all AI settings")
def export_backup(backup_manager: BackupManagerDep) -> Response:
    """Return the backup as a JSON file attachment."""
    try:
        backup = backup_manager.export_data()
    except AISettingsError as e:
        raise to_http_exception(e)
    return Response(
        content=backup.data,
        media_type="application/json",
        headers={"Content-Disposition": f'attachment; filename="{backup.filename}"'},
    )


@router.post("/import", response_model=ImportResult, summary="Restore a backup")
def import_backup(request: ImportRequest, settings_manager: SettingsManagerDep) -> ImportResult:
    """Replace all AI settings with a backup.

    A malformed backup is reported with ``success=false`` and leaves the
    store unchanged.
    """
    try:
        return settings_manager.import_backup(request.data)
    except AISettingsError as e:
        raise to_http_exception(e)


@router.get("/info", response_model=DataInfo, summary="Get stored data size")
def get_data_info(backup_manager: BackupManagerDep) -> DataInfo:
    try:
        return backup_manager.get_data_info()
    except AISettingsError as e:
        raise to_http_exception(e)


@router.delete("", status_code=status.HTTP_204_NO_CONTENT, summary="Delete all AI settings")
def clear_all_data(settings_manager: SettingsManagerDep) -> None:
    """Delete everything. A fresh default profile is created on reload."""
    try:
        settings_manager.clear_all_data()
    except AISettingsError as e:
        raise to_http_exception(e)
    logger.info("All AI settings data cleared")
