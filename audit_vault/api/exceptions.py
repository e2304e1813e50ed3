"""Mapping of backup engine errors to HTTP responses."""

from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.status import (
    HTTP_400_BAD_REQUEST,
    HTTP_401_UNAUTHORIZED,
    HTTP_404_NOT_FOUND,
    HTTP_409_CONFLICT,
    HTTP_500_INTERNAL_SERVER_ERROR,
)

from audit_vault._utils import logger
from audit_vault.backup.errors import BackupError, BadParameters, Conflict, NotFound, Unauthorized

# Checked in order; CorruptArchive is covered by BadParameters
STATUS_CODES = (
    (Unauthorized, HTTP_401_UNAUTHORIZED),
    (NotFound, HTTP_404_NOT_FOUND),
    (Conflict, HTTP_409_CONFLICT),
    (BadParameters, HTTP_400_BAD_REQUEST),
)


def status_code_for(exc: BackupError) -> int:
    for error_type, status_code in STATUS_CODES:
        if isinstance(exc, error_type):
            return status_code
    return HTTP_500_INTERNAL_SERVER_ERROR


async def backup_error_handler(request: Request, exc: BackupError) -> JSONResponse:
    status_code = status_code_for(exc)
    if status_code >= HTTP_500_INTERNAL_SERVER_ERROR:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse(status_code=status_code, content={"detail": exc.message})
