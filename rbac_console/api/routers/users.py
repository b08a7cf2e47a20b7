from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, Request, Response, status

from rbac_console.api.deps import Listing, require_admin
from rbac_console.api.errors import check_bulk_delete, handle_service_error
from rbac_console.domain.models import (
    IdListRequest,
    UserCreate,
    UserRolesRequest,
    UserUpdate,
    UserWithRolesRead,
)
from rbac_console.infra.audit import set_audit_context
from rbac_console.services.errors import ConflictError, InvalidQueryError, NotFoundError
from rbac_console.services.user_service import UserService, UserWithRoles

router = APIRouter(dependencies=[Depends(require_admin)])


def get_user_service() -> UserService:
    return UserService()


Service = Annotated[UserService, Depends(get_user_service)]


def _read(item: UserWithRoles) -> UserWithRolesRead:
    return UserWithRolesRead.build(item.user, item.roles)


@router.post("", response_model=UserWithRolesRead, status_code=status.HTTP_201_CREATED)
def create_user(payload: UserCreate, service: Service) -> UserWithRolesRead:
    try:
        return _read(service.create_user(payload))
    except (NotFoundError, ConflictError) as exc:
        handle_service_error(exc)
        raise


@router.get("", response_model=list[UserWithRolesRead])
def list_users(service: Service, query: Listing) -> list[UserWithRolesRead]:
    try:
        return [_read(item) for item in service.list_users(sort=query.sort, filter_text=query.filter_text)]
    except InvalidQueryError as exc:
        handle_service_error(exc)
        raise


@router.delete("/bulk-delete", status_code=status.HTTP_204_NO_CONTENT)
def bulk_delete_users(payload: IdListRequest, request: Request, service: Service) -> Response:
    result = service.bulk_delete_users(payload.ids)
    check_bulk_delete(request, result, "user", "users")
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/{user_id}", response_model=UserWithRolesRead)
def get_user(user_id: int, service: Service) -> UserWithRolesRead:
    try:
        return _read(service.get_user(user_id))
    except NotFoundError as exc:
        handle_service_error(exc)
        raise


@router.patch("/{user_id}", response_model=UserWithRolesRead)
def update_user(user_id: int, payload: UserUpdate, service: Service) -> UserWithRolesRead:
    try:
        return _read(service.update_user(user_id, payload))
    except (NotFoundError, ConflictError) as exc:
        handle_service_error(exc)
        raise


@router.delete("/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_user(user_id: int, service: Service) -> Response:
    try:
        service.delete_user(user_id)
    except NotFoundError as exc:
        handle_service_error(exc)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/{user_id}/roles", response_model=UserWithRolesRead)
def list_user_roles(user_id: int, service: Service) -> UserWithRolesRead:
    try:
        return _read(service.get_user(user_id))
    except NotFoundError as exc:
        handle_service_error(exc)
        raise


@router.post("/{user_id}/roles", response_model=UserWithRolesRead)
def assign_user_roles(user_id: int, payload: UserRolesRequest, service: Service) -> UserWithRolesRead:
    try:
        return _read(service.assign_roles(user_id, payload.role_ids))
    except (NotFoundError, ConflictError) as exc:
        handle_service_error(exc)
        raise


@router.delete("/{user_id}/roles", response_model=UserWithRolesRead)
def remove_user_roles(user_id: int, payload: UserRolesRequest, service: Service) -> UserWithRolesRead:
    try:
        return _read(service.remove_roles(user_id, payload.role_ids))
    except NotFoundError as exc:
        handle_service_error(exc)
        raise


@router.post("/{user_id}/roles/sync", response_model=UserWithRolesRead)
def sync_user_roles(
    user_id: int,
    payload: UserRolesRequest,
    request: Request,
    service: Service,
) -> UserWithRolesRead:
    set_audit_context(request, action="user.roles.sync", detail={"role_ids": payload.role_ids})
    try:
        return _read(service.sync_roles(user_id, payload.role_ids))
    except NotFoundError as exc:
        handle_service_error(exc)
        raise
