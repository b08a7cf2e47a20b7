from __future__ import annotations

from typing import Annotated, Any

from fastapi import APIRouter, Depends, Request, Response, status

from rbac_console.api.deps import Listing, get_current_claims, require_admin
from rbac_console.api.errors import check_bulk_delete, handle_service_error
from rbac_console.domain.models import (
    IdListRequest,
    MenuCreate,
    MenuRead,
    MenuUpdate,
    MenuWithPermissionsRead,
)
from rbac_console.infra.auth import claims_user_id
from rbac_console.services.errors import ConflictError, InvalidQueryError, NotFoundError
from rbac_console.services.menu_service import MenuService, MenuWithPermissions
from rbac_console.services.navigation_service import NavigationService

router = APIRouter(dependencies=[Depends(require_admin)])
navigation_router = APIRouter(dependencies=[Depends(get_current_claims)])


def get_menu_service() -> MenuService:
    return MenuService()


def get_navigation_service() -> NavigationService:
    return NavigationService()


Claims = Annotated[dict[str, Any], Depends(get_current_claims)]
Service = Annotated[MenuService, Depends(get_menu_service)]
Navigation = Annotated[NavigationService, Depends(get_navigation_service)]


def _read(item: MenuWithPermissions) -> MenuWithPermissionsRead:
    return MenuWithPermissionsRead.build(item.menu, item.permissions, item.parent)


@router.post("", response_model=MenuWithPermissionsRead, status_code=status.HTTP_201_CREATED)
def create_menu(payload: MenuCreate, service: Service) -> MenuWithPermissionsRead:
    try:
        return _read(service.create_menu(payload))
    except (NotFoundError, ConflictError) as exc:
        handle_service_error(exc)
        raise


@router.get("", response_model=list[MenuWithPermissionsRead])
def list_menus(service: Service, query: Listing) -> list[MenuWithPermissionsRead]:
    try:
        return [_read(item) for item in service.list_menus(sort=query.sort, filter_text=query.filter_text)]
    except InvalidQueryError as exc:
        handle_service_error(exc)
        raise


@router.get("/all", response_model=list[MenuWithPermissionsRead])
def list_all_menus(service: Service) -> list[MenuWithPermissionsRead]:
    return [_read(item) for item in service.list_all()]


@router.get("/parent", response_model=list[MenuRead])
def list_root_menus(service: Service) -> list[MenuRead]:
    return [MenuRead.model_validate(item) for item in service.list_root_menus()]


@navigation_router.get("/tree")
def navigation_tree(claims: Claims, navigation: Navigation) -> list[dict[str, Any]]:
    try:
        return navigation.resolve_navigation(claims_user_id(claims))
    except NotFoundError as exc:
        handle_service_error(exc)
        raise


@router.delete("/bulk-delete", status_code=status.HTTP_204_NO_CONTENT)
def bulk_delete_menus(payload: IdListRequest, request: Request, service: Service) -> Response:
    try:
        result = service.bulk_delete_menus(payload.ids)
    except ConflictError as exc:
        handle_service_error(exc)
        raise
    check_bulk_delete(request, result, "menu", "menus")
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/{menu_id}", response_model=MenuWithPermissionsRead)
def get_menu(menu_id: int, service: Service) -> MenuWithPermissionsRead:
    try:
        return _read(service.get_menu(menu_id))
    except NotFoundError as exc:
        handle_service_error(exc)
        raise


@router.get("/{menu_id}/children", response_model=list[MenuRead])
def list_menu_children(menu_id: int, service: Service) -> list[MenuRead]:
    try:
        return [MenuRead.model_validate(item) for item in service.list_children(menu_id)]
    except NotFoundError as exc:
        handle_service_error(exc)
        raise


@router.patch("/{menu_id}", response_model=MenuWithPermissionsRead)
def update_menu(menu_id: int, payload: MenuUpdate, service: Service) -> MenuWithPermissionsRead:
    try:
        return _read(service.update_menu(menu_id, payload))
    except (NotFoundError, ConflictError) as exc:
        handle_service_error(exc)
        raise


@router.delete("/{menu_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_menu(menu_id: int, service: Service) -> Response:
    try:
        service.delete_menu(menu_id)
    except (NotFoundError, ConflictError) as exc:
        handle_service_error(exc)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
