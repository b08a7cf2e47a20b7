from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field

import sqlalchemy as sa
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, col, select

from rbac_console.domain.models import (
    Permission,
    PermissionById,
    PermissionRef,
    Role,
    RoleCreate,
    RolePermission,
    RoleUpdate,
    now_utc,
)
from rbac_console.infra.db import get_engine
from rbac_console.services.errors import BulkDeleteResult, ConflictError, NotFoundError
from rbac_console.services.permission_service import PermissionService
from rbac_console.services.store import (
    apply_list_options,
    attach_links,
    delete_by_ids,
    detach_links,
    replace_links,
    resolve_id_set,
)

logger = logging.getLogger(__name__)

ROLE_SORT_FIELDS = {"id", "name", "created_at", "updated_at"}
ROLE_FILTER_FIELDS = ("name",)


@dataclass
class RoleWithPermissions:
    role: Role
    permissions: list[Permission] = field(default_factory=list)


class RoleService:
    def __init__(self, permission_service: PermissionService | None = None) -> None:
        self.permissions = permission_service or PermissionService()

    def _session(self) -> Session:
        return Session(get_engine(), expire_on_commit=False)

    def _get(self, session: Session, role_id: int) -> Role:
        role = session.get(Role, role_id)
        if role is None:
            raise NotFoundError(f"role with id {role_id} not found")
        return role

    def _role_permissions(self, session: Session, role_ids: list[int]) -> dict[int, list[Permission]]:
        by_role: dict[int, list[Permission]] = {role_id: [] for role_id in role_ids}
        if not role_ids:
            return by_role
        statement = (
            select(RolePermission.role_id, Permission)
            .join(Permission, col(Permission.id) == col(RolePermission.permission_id))
            .where(col(RolePermission.role_id).in_(role_ids))
            .order_by(col(Permission.id))
        )
        for role_id, permission in session.exec(statement).all():
            by_role[role_id].append(permission)
        return by_role

    def _with_permissions(self, session: Session, role: Role) -> RoleWithPermissions:
        statement = (
            select(Permission)
            .join(RolePermission, col(RolePermission.permission_id) == col(Permission.id))
            .where(RolePermission.role_id == role.id)
            .order_by(col(Permission.id))
        )
        return RoleWithPermissions(role=role, permissions=list(session.exec(statement).all()))

    def resolve_ids(self, session: Session, role_ids: Iterable[int]) -> list[Role]:
        return resolve_id_set(session, Role, role_ids, plural="roles")

    def permissions_by_role(self, session: Session, role_ids: list[int]) -> dict[int, list[Permission]]:
        return self._role_permissions(session, role_ids)

    def create_role(self, payload: RoleCreate) -> RoleWithPermissions:
        logger.info("creating role: %s", payload.model_dump())
        with self._session() as session:
            permissions: list[Permission] = []
            if payload.permission_ids:
                permissions = self.permissions.resolve_ids(session, payload.permission_ids)
            role = Role(name=payload.name)
            session.add(role)
            try:
                session.flush()
                session.add_all([RolePermission(role_id=role.id, permission_id=item.id) for item in permissions])
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise ConflictError("role name already been taken") from exc
            session.refresh(role)
            return RoleWithPermissions(role=role, permissions=permissions)

    def list_roles(self, *, sort: str | None = None, filter_text: str | None = None) -> list[RoleWithPermissions]:
        statement = apply_list_options(
            select(Role),
            Role,
            sort=sort,
            filter_text=filter_text,
            filter_fields=ROLE_FILTER_FIELDS,
            sortable=ROLE_SORT_FIELDS,
            default_order=("id",),
        )
        with self._session() as session:
            roles = list(session.exec(statement).all())
            by_role = self._role_permissions(session, [role.id for role in roles if role.id is not None])
            return [RoleWithPermissions(role=role, permissions=by_role[role.id]) for role in roles if role.id is not None]

    def get_role(self, role_id: int) -> RoleWithPermissions:
        with self._session() as session:
            return self._with_permissions(session, self._get(session, role_id))

    def find_by_ids(self, role_ids: Iterable[int]) -> list[Role]:
        with self._session() as session:
            return self.resolve_ids(session, role_ids)

    def update_role(self, role_id: int, payload: RoleUpdate) -> RoleWithPermissions:
        with self._session() as session:
            role = self._get(session, role_id)
            if payload.permission_ids is not None:
                permissions = (
                    self.permissions.resolve_ids(session, payload.permission_ids) if payload.permission_ids else []
                )
                session.execute(sa.delete(RolePermission).where(col(RolePermission.role_id) == role_id))
                session.add_all([RolePermission(role_id=role_id, permission_id=item.id) for item in permissions])
            if payload.name is not None:
                role.name = payload.name
            role.updated_at = now_utc()
            session.add(role)
            try:
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise ConflictError("role name already been taken") from exc
            session.refresh(role)
            return self._with_permissions(session, role)

    def delete_role(self, role_id: int) -> None:
        with self._session() as session:
            result = session.execute(sa.delete(Role).where(col(Role.id) == role_id))
            if not result.rowcount:
                raise NotFoundError(f"role with id {role_id} not found")
            session.commit()

    def bulk_delete_roles(self, role_ids: Iterable[int]) -> BulkDeleteResult:
        with self._session() as session:
            return delete_by_ids(session, Role, role_ids)

    def attach_permission(self, role_id: int, permission_id: int) -> RoleWithPermissions:
        with self._session() as session:
            role = self._get(session, role_id)
            permission = self.permissions.fetch(session, permission_id)
            return self._attach(session, role, permission)

    def grant_permission(self, role_id: int, ref: PermissionRef) -> RoleWithPermissions:
        with self._session() as session:
            role = self._get(session, role_id)
            if isinstance(ref, PermissionById):
                permission = self.permissions.fetch(session, ref.by_id)
            else:
                permission = self.permissions.fetch_by_name(session, ref.by_name)
            return self._attach(session, role, permission)

    def _attach(self, session: Session, role: Role, permission: Permission) -> RoleWithPermissions:
        logger.info("attaching permission %s to role %s", permission.name, role.name)
        attach_links(
            session,
            [RolePermission(role_id=role.id, permission_id=permission.id)],
            conflict_message=f"role already has permission {permission.name}",
        )
        return self._with_permissions(session, role)

    def detach_permission(self, role_id: int, permission_id: int) -> None:
        with self._session() as session:
            role = self._get(session, role_id)
            permission = self.permissions.fetch(session, permission_id)
            logger.info("detaching permission %s from role %s", permission.name, role.name)
            detach_links(
                session,
                RolePermission,
                owner_column=RolePermission.role_id,
                owner_id=role_id,
                target_column=RolePermission.permission_id,
                target_ids=[permission_id],
                missing_message=f"role does not have permission {permission.name}",
            )

    def sync_permissions(self, role_id: int, permission_ids: Iterable[int]) -> RoleWithPermissions:
        with self._session() as session:
            role = self._get(session, role_id)
            permissions = self.permissions.resolve_ids(session, permission_ids)
            logger.info("syncing permissions %s on role %s", [item.name for item in permissions], role.name)
            role.updated_at = now_utc()
            session.add(role)
            replace_links(
                session,
                RolePermission,
                owner_column=RolePermission.role_id,
                owner_id=role_id,
                links=[RolePermission(role_id=role_id, permission_id=item.id) for item in permissions],
            )
            return RoleWithPermissions(role=role, permissions=permissions)
