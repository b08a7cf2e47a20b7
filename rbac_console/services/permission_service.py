from __future__ import annotations

import logging
from collections.abc import Iterable

import sqlalchemy as sa
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, col, select

from rbac_console.domain.models import (
    Permission,
    PermissionCreate,
    PermissionUpdate,
    Role,
    RolePermission,
    now_utc,
)
from rbac_console.infra.db import get_engine
from rbac_console.services.errors import BulkDeleteResult, ConflictError, NotFoundError
from rbac_console.services.store import apply_list_options, delete_by_ids, replace_links, resolve_id_set

logger = logging.getLogger(__name__)

PERMISSION_SORT_FIELDS = {"id", "name", "created_at", "updated_at"}


class PermissionService:
    def _session(self) -> Session:
        return Session(get_engine(), expire_on_commit=False)

    def fetch(self, session: Session, permission_id: int) -> Permission:
        permission = session.get(Permission, permission_id)
        if permission is None:
            raise NotFoundError(f"permission with id {permission_id} not found")
        return permission

    def fetch_by_name(self, session: Session, name: str) -> Permission:
        permission = session.exec(select(Permission).where(Permission.name == name)).first()
        if permission is None:
            raise NotFoundError(f"permission with name {name} not found")
        return permission

    def resolve_ids(self, session: Session, permission_ids: Iterable[int]) -> list[Permission]:
        return resolve_id_set(session, Permission, permission_ids, plural="permissions")

    def create_permission(self, payload: PermissionCreate) -> Permission:
        logger.info("creating permission: %s", payload.model_dump())
        with self._session() as session:
            permission = Permission(name=payload.name)
            session.add(permission)
            try:
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise ConflictError("permission name already been taken") from exc
            session.refresh(permission)
            return permission

    def list_permissions(self, *, sort: str | None = None, filter_text: str | None = None) -> list[Permission]:
        statement = apply_list_options(
            select(Permission),
            Permission,
            sort=sort,
            filter_text=filter_text,
            filter_fields=("name",),
            sortable=PERMISSION_SORT_FIELDS,
            default_order=("id",),
        )
        with self._session() as session:
            return list(session.exec(statement).all())

    def get_permission(self, permission_id: int) -> Permission:
        with self._session() as session:
            return self.fetch(session, permission_id)

    def get_permission_by_name(self, name: str) -> Permission:
        with self._session() as session:
            return self.fetch_by_name(session, name)

    def find_by_ids(self, permission_ids: Iterable[int]) -> list[Permission]:
        with self._session() as session:
            return self.resolve_ids(session, permission_ids)

    def update_permission(self, permission_id: int, payload: PermissionUpdate) -> Permission:
        with self._session() as session:
            permission = self.fetch(session, permission_id)
            if payload.name is not None:
                permission.name = payload.name
            permission.updated_at = now_utc()
            session.add(permission)
            try:
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise ConflictError("permission name already been taken") from exc
            session.refresh(permission)
            return permission

    def delete_permission(self, permission_id: int) -> None:
        with self._session() as session:
            result = session.execute(sa.delete(Permission).where(col(Permission.id) == permission_id))
            if not result.rowcount:
                raise NotFoundError(f"permission with id {permission_id} not found")
            session.commit()

    def bulk_delete_permissions(self, permission_ids: Iterable[int]) -> BulkDeleteResult:
        with self._session() as session:
            return delete_by_ids(session, Permission, permission_ids)

    def list_roles(self, permission_id: int) -> list[Role]:
        with self._session() as session:
            self.fetch(session, permission_id)
            statement = (
                select(Role)
                .join(RolePermission, col(RolePermission.role_id) == col(Role.id))
                .where(RolePermission.permission_id == permission_id)
                .order_by(col(Role.id))
            )
            return list(session.exec(statement).all())

    def sync_roles(self, permission_id: int, role_ids: Iterable[int]) -> list[Role]:
        with self._session() as session:
            permission = self.fetch(session, permission_id)
            roles = resolve_id_set(session, Role, role_ids, plural="roles")
            logger.info("syncing roles %s on permission %s", [role.id for role in roles], permission.name)
            replace_links(
                session,
                RolePermission,
                owner_column=RolePermission.permission_id,
                owner_id=permission_id,
                links=[RolePermission(role_id=role.id, permission_id=permission_id) for role in roles],
            )
            return roles
