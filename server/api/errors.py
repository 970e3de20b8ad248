"""Translate engine errors into HTTP responses."""
from fastapi import HTTPException, status

from core.errors import (
    BridgeNotRunning,
    NoEffect,
    NotFound,
    PreconditionFailure,
    Rejected,
    SyncError,
    TransportFailure,
    ValidationFailure,
)

_STATUS_BY_ERROR = (
    (ValidationFailure, status.HTTP_400_BAD_REQUEST),
    (NotFound, status.HTTP_404_NOT_FOUND),
    (PreconditionFailure, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (NoEffect, status.HTTP_409_CONFLICT),
    (Rejected, status.HTTP_502_BAD_GATEWAY),
    (BridgeNotRunning, status.HTTP_503_SERVICE_UNAVAILABLE),
    (TransportFailure, status.HTTP_503_SERVICE_UNAVAILABLE),
)


def status_for(error: SyncError) -> int:
    for error_type, code in _STATUS_BY_ERROR:
        if isinstance(error, error_type):
            return code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


def http_error(error: SyncError) -> HTTPException:
    return HTTPException(
        status_code=status_for(error),
        detail={"error": str(error), "retryable": error.retryable},
    )
