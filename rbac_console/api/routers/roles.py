from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Body, Depends, Request, Response, status

from rbac_console.api.deps import Listing, require_admin
from rbac_console.api.errors import check_bulk_delete, handle_service_error
from rbac_console.domain.models import (
    IdListRequest,
    PermissionRead,
    PermissionRef,
    RoleCreate,
    RoleRead,
    RoleSyncPermissionsRequest,
    RoleUpdate,
    RoleWithPermissionsRead,
)
from rbac_console.infra.audit import set_audit_context
from rbac_console.services.errors import ConflictError, InvalidQueryError, NotFoundError
from rbac_console.services.role_service import RoleService, RoleWithPermissions

router = APIRouter(dependencies=[Depends(require_admin)])


def get_role_service() -> RoleService:
    return RoleService()


Service = Annotated[RoleService, Depends(get_role_service)]


def _read(item: RoleWithPermissions) -> RoleWithPermissionsRead:
    return RoleWithPermissionsRead.build(item.role, item.permissions)


@router.post("", response_model=RoleWithPermissionsRead, status_code=status.HTTP_201_CREATED)
def create_role(payload: RoleCreate, service: Service) -> RoleWithPermissionsRead:
    try:
        return _read(service.create_role(payload))
    except (NotFoundError, ConflictError) as exc:
        handle_service_error(exc)
        raise


@router.get("", response_model=list[RoleWithPermissionsRead])
def list_roles(service: Service, query: Listing) -> list[RoleWithPermissionsRead]:
    try:
        return [_read(item) for item in service.list_roles(sort=query.sort, filter_text=query.filter_text)]
    except InvalidQueryError as exc:
        handle_service_error(exc)
        raise


@router.get("/all", response_model=list[RoleRead])
def list_all_roles(service: Service) -> list[RoleRead]:
    return [RoleRead.model_validate(item.role) for item in service.list_roles()]


@router.delete("/bulk-delete", status_code=status.HTTP_204_NO_CONTENT)
def bulk_delete_roles(payload: IdListRequest, request: Request, service: Service) -> Response:
    result = service.bulk_delete_roles(payload.ids)
    check_bulk_delete(request, result, "role", "roles")
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/{role_id}", response_model=RoleWithPermissionsRead)
def get_role(role_id: int, service: Service) -> RoleWithPermissionsRead:
    try:
        return _read(service.get_role(role_id))
    except NotFoundError as exc:
        handle_service_error(exc)
        raise


@router.patch("/{role_id}", response_model=RoleWithPermissionsRead)
def update_role(role_id: int, payload: RoleUpdate, service: Service) -> RoleWithPermissionsRead:
    try:
        return _read(service.update_role(role_id, payload))
    except (NotFoundError, ConflictError) as exc:
        handle_service_error(exc)
        raise


@router.delete("/{role_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_role(role_id: int, service: Service) -> Response:
    try:
        service.delete_role(role_id)
    except NotFoundError as exc:
        handle_service_error(exc)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/{role_id}/permissions", response_model=list[PermissionRead])
def list_role_permissions(role_id: int, service: Service) -> list[PermissionRead]:
    try:
        return [PermissionRead.model_validate(item) for item in service.get_role(role_id).permissions]
    except NotFoundError as exc:
        handle_service_error(exc)
        raise


@router.post("/{role_id}/permissions", response_model=RoleWithPermissionsRead)
def sync_role_permissions(
    role_id: int,
    payload: RoleSyncPermissionsRequest,
    request: Request,
    service: Service,
) -> RoleWithPermissionsRead:
    set_audit_context(request, action="role.permissions.sync", detail={"permission_ids": payload.permission_ids})
    try:
        return _read(service.sync_permissions(role_id, payload.permission_ids))
    except NotFoundError as exc:
        handle_service_error(exc)
        raise


@router.post(
    "/{role_id}/permissions/grant",
    response_model=RoleWithPermissionsRead,
    status_code=status.HTTP_201_CREATED,
)
def grant_role_permission(
    role_id: int,
    payload: Annotated[PermissionRef, Body()],
    service: Service,
) -> RoleWithPermissionsRead:
    try:
        return _read(service.grant_permission(role_id, payload))
    except (NotFoundError, ConflictError) as exc:
        handle_service_error(exc)
        raise


@router.post(
    "/{role_id}/permissions/{permission_id}",
    response_model=RoleWithPermissionsRead,
    status_code=status.HTTP_201_CREATED,
)
def attach_role_permission(role_id: int, permission_id: int, service: Service) -> RoleWithPermissionsRead:
    try:
        return _read(service.attach_permission(role_id, permission_id))
    except (NotFoundError, ConflictError) as exc:
        handle_service_error(exc)
        raise


@router.delete("/{role_id}/permissions/{permission_id}", status_code=status.HTTP_204_NO_CONTENT)
def detach_role_permission(role_id: int, permission_id: int, service: Service) -> Response:
    try:
        service.detach_permission(role_id, permission_id)
    except NotFoundError as exc:
        handle_service_error(exc)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
