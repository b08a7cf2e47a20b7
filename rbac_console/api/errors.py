from __future__ import annotations

from fastapi import HTTPException, Request, status

from rbac_console.infra.audit import set_audit_context
from rbac_console.services.errors import (
    AuthError,
    BulkDeleteResult,
    ConflictError,
    InvalidQueryError,
    NotFoundError,
)


def handle_service_error(exc: Exception) -> None:
    if isinstance(exc, NotFoundError):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    if isinstance(exc, ConflictError):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    if isinstance(exc, AuthError):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=str(exc)) from exc
    if isinstance(exc, InvalidQueryError):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    raise exc


def check_bulk_delete(request: Request, result: BulkDeleteResult, entity: str, plural: str) -> None:
    set_audit_context(
        request,
        detail={"requested_count": result.requested_count, "affected_count": result.affected_count},
    )
    try:
        result.raise_for_missing(entity, plural)
    except NotFoundError as exc:
        handle_service_error(exc)
