from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field

import sqlalchemy as sa
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, col, select

from rbac_console.domain.models import (
    Menu,
    MenuCreate,
    MenuPermission,
    MenuUpdate,
    Permission,
    now_utc,
)
from rbac_console.domain.navigation import MenuEntry, link_menu_tree
from rbac_console.infra.db import get_engine
from rbac_console.services.errors import BulkDeleteResult, ConflictError, NotFoundError
from rbac_console.services.permission_service import PermissionService
from rbac_console.services.store import apply_list_options, delete_by_ids, unique_ids

logger = logging.getLogger(__name__)

MENU_SORT_FIELDS = {"id", "name", "icon", "path", "sort", "created_at", "updated_at"}
MENU_FILTER_FIELDS = ("name", "path", "icon")


@dataclass
class MenuWithPermissions:
    menu: Menu
    parent: Menu | None = None
    permissions: list[Permission] = field(default_factory=list)


class MenuService:
    def __init__(self, permission_service: PermissionService | None = None) -> None:
        self.permissions = permission_service or PermissionService()

    def _session(self) -> Session:
        return Session(get_engine(), expire_on_commit=False)

    def _get(self, session: Session, menu_id: int) -> Menu:
        menu = session.get(Menu, menu_id)
        if menu is None:
            raise NotFoundError(f"menu with id {menu_id} not found")
        return menu

    def _menu_permissions(self, session: Session, menu_ids: list[int]) -> dict[int, list[Permission]]:
        by_menu: dict[int, list[Permission]] = {menu_id: [] for menu_id in menu_ids}
        if not menu_ids:
            return by_menu
        statement = (
            select(MenuPermission.menu_id, Permission)
            .join(Permission, col(Permission.id) == col(MenuPermission.permission_id))
            .where(col(MenuPermission.menu_id).in_(menu_ids))
            .order_by(col(Permission.id))
        )
        for menu_id, permission in session.exec(statement).all():
            by_menu[menu_id].append(permission)
        return by_menu

    def _detailed(self, session: Session, menus: list[Menu]) -> list[MenuWithPermissions]:
        by_menu = self._menu_permissions(session, [menu.id for menu in menus if menu.id is not None])
        parent_ids = {menu.parent_id for menu in menus if menu.parent_id is not None}
        parents: dict[int, Menu] = {}
        if parent_ids:
            rows = session.exec(select(Menu).where(col(Menu.id).in_(parent_ids))).all()
            parents = {row.id: row for row in rows if row.id is not None}
        return [
            MenuWithPermissions(
                menu=menu,
                parent=parents.get(menu.parent_id) if menu.parent_id is not None else None,
                permissions=by_menu.get(menu.id, []) if menu.id is not None else [],
            )
            for menu in menus
        ]

    def _resolve_parent(self, session: Session, menu_id: int | None, parent_id: int) -> Menu:
        if menu_id is not None and parent_id == menu_id:
            raise ConflictError("menu cannot be parent of itself")
        parent = self._get(session, parent_id)
        ancestor: Menu | None = parent
        seen: set[int] = set()
        while ancestor is not None and ancestor.parent_id is not None and ancestor.id not in seen:
            if ancestor.id is not None:
                seen.add(ancestor.id)
            if menu_id is not None and ancestor.parent_id == menu_id:
                raise ConflictError("menu cannot move under its descendant")
            ancestor = session.get(Menu, ancestor.parent_id)
        return parent

    def _name_taken(self, session: Session, name: str, exclude_id: int | None = None) -> bool:
        statement = select(Menu.id).where(Menu.name == name)
        if exclude_id is not None:
            statement = statement.where(Menu.id != exclude_id)
        return session.exec(statement).first() is not None

    def create_menu(self, payload: MenuCreate) -> MenuWithPermissions:
        logger.info("creating menu: %s", payload.model_dump())
        with self._session() as session:
            if self._name_taken(session, payload.name):
                raise ConflictError("menu name already been taken")

            parent: Menu | None = None
            if payload.parent_id is not None:
                parent = self._resolve_parent(session, None, payload.parent_id)

            permissions: list[Permission] = []
            if payload.permission_ids:
                permissions = self.permissions.resolve_ids(session, payload.permission_ids)

            menu = Menu(
                name=payload.name,
                icon=payload.icon,
                path=payload.path,
                sort=payload.sort,
                parent_id=parent.id if parent is not None else None,
            )
            session.add(menu)
            try:
                session.flush()
                session.add_all([MenuPermission(menu_id=menu.id, permission_id=item.id) for item in permissions])
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise ConflictError("menu name already been taken") from exc
            session.refresh(menu)
            return MenuWithPermissions(menu=menu, parent=parent, permissions=permissions)

    def list_menus(self, *, sort: str | None = None, filter_text: str | None = None) -> list[MenuWithPermissions]:
        statement = apply_list_options(
            select(Menu),
            Menu,
            sort=sort,
            filter_text=filter_text,
            filter_fields=MENU_FILTER_FIELDS,
            sortable=MENU_SORT_FIELDS,
            default_order=("sort", "id"),
        )
        with self._session() as session:
            menus = list(session.exec(statement).all())
            return self._detailed(session, menus)

    def list_all(self) -> list[MenuWithPermissions]:
        """Every menu with its permissions ordered by ascending permission id."""
        with self._session() as session:
            menus = list(session.exec(select(Menu).order_by(col(Menu.id))).all())
            by_menu = self._menu_permissions(session, [menu.id for menu in menus if menu.id is not None])
            return [MenuWithPermissions(menu=menu, permissions=by_menu.get(menu.id, [])) for menu in menus]

    def list_root_menus(self) -> list[Menu]:
        with self._session() as session:
            statement = select(Menu).where(col(Menu.parent_id).is_(None)).order_by(col(Menu.sort), col(Menu.id))
            return list(session.exec(statement).all())

    def list_children(self, menu_id: int) -> list[Menu]:
        with self._session() as session:
            self._get(session, menu_id)
            statement = select(Menu).where(Menu.parent_id == menu_id).order_by(col(Menu.sort), col(Menu.id))
            return list(session.exec(statement).all())

    def get_menu(self, menu_id: int) -> MenuWithPermissions:
        with self._session() as session:
            return self._detailed(session, [self._get(session, menu_id)])[0]

    def update_menu(self, menu_id: int, payload: MenuUpdate) -> MenuWithPermissions:
        fields = payload.model_fields_set
        with self._session() as session:
            menu = self._get(session, menu_id)

            if payload.name is not None and payload.name != menu.name:
                if self._name_taken(session, payload.name, exclude_id=menu_id):
                    raise ConflictError("menu name already been taken")
                menu.name = payload.name
            if payload.icon is not None:
                menu.icon = payload.icon
            if payload.sort is not None:
                menu.sort = payload.sort
            if "path" in fields:
                menu.path = payload.path
            if "parent_id" in fields:
                if payload.parent_id is None:
                    menu.parent_id = None
                else:
                    menu.parent_id = self._resolve_parent(session, menu_id, payload.parent_id).id
            if menu.parent_id is not None and menu.path is None:
                raise ConflictError("path is required when parent_id is set")

            if "permission_ids" in fields and payload.permission_ids is not None:
                permissions = (
                    self.permissions.resolve_ids(session, payload.permission_ids) if payload.permission_ids else []
                )
                session.execute(sa.delete(MenuPermission).where(col(MenuPermission.menu_id) == menu_id))
                session.add_all([MenuPermission(menu_id=menu_id, permission_id=item.id) for item in permissions])

            menu.updated_at = now_utc()
            session.add(menu)
            try:
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise ConflictError("menu name already been taken") from exc
            session.refresh(menu)
            return self._detailed(session, [menu])[0]

    def _ensure_no_orphans(self, session: Session, menu_ids: list[int]) -> None:
        statement = (
            select(Menu.id)
            .where(col(Menu.parent_id).in_(menu_ids))
            .where(col(Menu.id).not_in(menu_ids))
        )
        if session.exec(statement).first() is not None:
            raise ConflictError("menu has child menus")

    def delete_menu(self, menu_id: int) -> None:
        with self._session() as session:
            self._get(session, menu_id)
            self._ensure_no_orphans(session, [menu_id])
            session.execute(sa.delete(Menu).where(col(Menu.id) == menu_id))
            session.commit()

    def bulk_delete_menus(self, menu_ids: Iterable[int]) -> BulkDeleteResult:
        requested = unique_ids(menu_ids)
        with self._session() as session:
            if requested:
                self._ensure_no_orphans(session, requested)
            return delete_by_ids(session, Menu, requested)

    def menu_tree_entries(self) -> list[MenuEntry]:
        """All menus ordered by ``sort`` and linked into a parent/children tree."""
        with self._session() as session:
            menus = list(session.exec(select(Menu).order_by(col(Menu.sort), col(Menu.id))).all())
            by_menu = self._menu_permissions(session, [menu.id for menu in menus if menu.id is not None])
        entries = [
            MenuEntry(
                id=menu.id,
                name=menu.name,
                icon=menu.icon,
                path=menu.path,
                sort=menu.sort,
                parent_id=menu.parent_id,
                permission_ids=frozenset(item.id for item in by_menu.get(menu.id, []) if item.id is not None),
            )
            for menu in menus
            if menu.id is not None
        ]
        return link_menu_tree(entries)
