from __future__ import annotations

from typing import Annotated, Any

from fastapi import APIRouter, Depends, status

from rbac_console.api.deps import get_current_claims
from rbac_console.api.errors import handle_service_error
from rbac_console.domain.models import (
    BootstrapAdminRequest,
    LoginRequest,
    TokenResponse,
    UserWithRolesRead,
)
from rbac_console.infra.auth import claims_user_id, create_access_token
from rbac_console.services.errors import AuthError, ConflictError, NotFoundError
from rbac_console.services.user_service import UserService, UserWithRoles

router = APIRouter()


def get_user_service() -> UserService:
    return UserService()


Claims = Annotated[dict[str, Any], Depends(get_current_claims)]
Service = Annotated[UserService, Depends(get_user_service)]


def _read(item: UserWithRoles) -> UserWithRolesRead:
    return UserWithRolesRead.build(item.user, item.roles)


@router.post("/bootstrap-admin", response_model=UserWithRolesRead, status_code=status.HTTP_201_CREATED)
def bootstrap_admin(payload: BootstrapAdminRequest, service: Service) -> UserWithRolesRead:
    try:
        return _read(service.bootstrap_admin(payload))
    except ConflictError as exc:
        handle_service_error(exc)
        raise


@router.post("/login", response_model=TokenResponse)
def login(payload: LoginRequest, service: Service) -> TokenResponse:
    try:
        result = service.authenticate(payload.username, payload.password)
    except AuthError as exc:
        handle_service_error(exc)
        raise
    roles = [role.name for role in result.roles]
    token = create_access_token(user_id=result.user.id, username=result.user.username, roles=roles)
    return TokenResponse(access_token=token, roles=roles)


@router.get("/me", response_model=UserWithRolesRead)
def me(claims: Claims, service: Service) -> UserWithRolesRead:
    try:
        return _read(service.get_user(claims_user_id(claims)))
    except NotFoundError as exc:
        handle_service_error(exc)
        raise
