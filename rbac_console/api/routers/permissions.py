from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, Request, Response, status

from rbac_console.api.deps import Listing, require_admin
from rbac_console.api.errors import check_bulk_delete, handle_service_error
from rbac_console.domain.models import (
    IdListRequest,
    PermissionCreate,
    PermissionRead,
    PermissionSyncRolesRequest,
    PermissionUpdate,
    RoleRead,
    RoleWithPermissionsRead,
)
from rbac_console.services.errors import ConflictError, InvalidQueryError, NotFoundError
from rbac_console.services.permission_service import PermissionService
from rbac_console.services.role_service import RoleService, RoleWithPermissions

router = APIRouter(dependencies=[Depends(require_admin)])


def get_permission_service() -> PermissionService:
    return PermissionService()


def get_role_service() -> RoleService:
    return RoleService()


Service = Annotated[PermissionService, Depends(get_permission_service)]
Roles = Annotated[RoleService, Depends(get_role_service)]


def _role_read(item: RoleWithPermissions) -> RoleWithPermissionsRead:
    return RoleWithPermissionsRead.build(item.role, item.permissions)


@router.post("", response_model=PermissionRead, status_code=status.HTTP_201_CREATED)
def create_permission(payload: PermissionCreate, service: Service) -> PermissionRead:
    try:
        return PermissionRead.model_validate(service.create_permission(payload))
    except ConflictError as exc:
        handle_service_error(exc)
        raise


@router.get("", response_model=list[PermissionRead])
def list_permissions(service: Service, query: Listing) -> list[PermissionRead]:
    try:
        items = service.list_permissions(sort=query.sort, filter_text=query.filter_text)
    except InvalidQueryError as exc:
        handle_service_error(exc)
        raise
    return [PermissionRead.model_validate(item) for item in items]


@router.delete("/bulk-delete", status_code=status.HTTP_204_NO_CONTENT)
def bulk_delete_permissions(payload: IdListRequest, request: Request, service: Service) -> Response:
    result = service.bulk_delete_permissions(payload.ids)
    check_bulk_delete(request, result, "permission", "permissions")
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/{permission_id}", response_model=PermissionRead)
def get_permission(permission_id: int, service: Service) -> PermissionRead:
    try:
        return PermissionRead.model_validate(service.get_permission(permission_id))
    except NotFoundError as exc:
        handle_service_error(exc)
        raise


@router.patch("/{permission_id}", response_model=PermissionRead)
def update_permission(permission_id: int, payload: PermissionUpdate, service: Service) -> PermissionRead:
    try:
        return PermissionRead.model_validate(service.update_permission(permission_id, payload))
    except (NotFoundError, ConflictError) as exc:
        handle_service_error(exc)
        raise


@router.delete("/{permission_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_permission(permission_id: int, service: Service) -> Response:
    try:
        service.delete_permission(permission_id)
    except NotFoundError as exc:
        handle_service_error(exc)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/{permission_id}/roles", response_model=list[RoleRead])
def list_permission_roles(permission_id: int, service: Service) -> list[RoleRead]:
    try:
        return [RoleRead.model_validate(item) for item in service.list_roles(permission_id)]
    except NotFoundError as exc:
        handle_service_error(exc)
        raise


@router.post("/{permission_id}/roles", response_model=list[RoleRead])
def sync_permission_roles(
    permission_id: int,
    payload: PermissionSyncRolesRequest,
    service: Service,
) -> list[RoleRead]:
    try:
        return [RoleRead.model_validate(item) for item in service.sync_roles(permission_id, payload.role_ids)]
    except NotFoundError as exc:
        handle_service_error(exc)
        raise


@router.post(
    "/{permission_id}/roles/{role_id}",
    response_model=RoleWithPermissionsRead,
    status_code=status.HTTP_201_CREATED,
)
def assign_permission_to_role(permission_id: int, role_id: int, roles: Roles) -> RoleWithPermissionsRead:
    try:
        return _role_read(roles.attach_permission(role_id, permission_id))
    except (NotFoundError, ConflictError) as exc:
        handle_service_error(exc)
        raise


@router.delete("/{permission_id}/roles/{role_id}", status_code=status.HTTP_204_NO_CONTENT)
def remove_permission_from_role(permission_id: int, role_id: int, roles: Roles) -> Response:
    try:
        roles.detach_permission(role_id, permission_id)
    except NotFoundError as exc:
        handle_service_error(exc)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
