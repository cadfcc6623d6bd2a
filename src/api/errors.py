"""Mapping of AI settings errors to HTTP responses."""

import logging

from fastapi import HTTPException, status

from core.exceptions import (
    AISettingsError,
    InvalidOperationError,
    MigrationError,
    NotFoundError,
    StorageQuotaExceededError,
    StorageUnavailableError,
    ValidationError,
)

logger = logging.getLogger(__name__)

# Checked in order; subclasses before their bases
_STATUS_BY_ERROR = (
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (InvalidOperationError, status.HTTP_409_CONFLICT),
    (ValidationError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (StorageUnavailableError, status.HTTP_503_SERVICE_UNAVAILABLE),
    (StorageQuotaExceededError, status.HTTP_507_INSUFFICIENT_STORAGE),
    (MigrationError, status.HTTP_500_INTERNAL_SERVER_ERROR),
)


def to_http_exception(error: AISettingsError) -> HTTPException:
    """Convert a domain error into an HTTPException with a matching status."""
    for error_type, status_code in _STATUS_BY_ERROR:
        if isinstance(error, error_type):
            return HTTPException(status_code=status_code, detail=str(error))
    logger.error("Unhandled AI settings error: %s", error, exc_info=error)
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail=str(error),
    )
