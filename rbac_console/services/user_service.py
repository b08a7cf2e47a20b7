from __future__ import annotations

import hashlib
import hmac
import logging
import os
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any

import sqlalchemy as sa
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, col, select

from rbac_console.domain.models import (
    BootstrapAdminRequest,
    Permission,
    Role,
    User,
    UserCreate,
    UserRole,
    UserUpdate,
    now_utc,
)
from rbac_console.domain.permissions import DEFAULT_PASSWORD, SUPER_ADMIN_ROLE, effective_permissions
from rbac_console.infra.db import get_engine
from rbac_console.services.errors import AuthError, BulkDeleteResult, ConflictError, NotFoundError
from rbac_console.services.role_service import RoleService
from rbac_console.services.store import (
    apply_list_options,
    attach_links,
    delete_by_ids,
    detach_links,
    replace_links,
    unique_ids,
)

logger = logging.getLogger(__name__)

USER_SORT_FIELDS = {"id", "username", "email", "created_at", "updated_at"}
USER_FILTER_FIELDS = ("username", "email")


@dataclass
class UserWithRoles:
    user: User
    roles: list[Role] = field(default_factory=list)


@dataclass
class UserAccess:
    """A user with every role and each role's permissions, loaded together."""

    user: User
    roles: list[Role]
    role_permissions: dict[int, list[Permission]]

    @property
    def role_names(self) -> list[str]:
        return [role.name for role in self.roles]

    def effective_permissions(self) -> list[Permission]:
        return effective_permissions(self.role_permissions.values())

    def effective_permission_ids(self) -> set[int]:
        return {permission.id for permission in self.effective_permissions() if permission.id is not None}


class UserService:
    def __init__(self, role_service: RoleService | None = None) -> None:
        self.roles = role_service or RoleService()

    def _session(self) -> Session:
        return Session(get_engine(), expire_on_commit=False)

    def _hash_password(self, raw_password: str) -> str:
        salt = os.getenv("PASSWORD_SALT", "rbac-dev-salt")
        return hashlib.sha256(f"{salt}:{raw_password}".encode()).hexdigest()

    def _get(self, session: Session, user_id: int) -> User:
        user = session.get(User, user_id)
        if user is None:
            raise NotFoundError("user not found")
        return user

    def _user_roles(self, session: Session, user: User) -> list[Role]:
        statement = (
            select(Role)
            .join(UserRole, col(UserRole.role_id) == col(Role.id))
            .where(UserRole.user_id == user.id)
            .order_by(col(Role.id))
        )
        return list(session.exec(statement).all())

    def _with_roles(self, session: Session, user: User) -> UserWithRoles:
        return UserWithRoles(user=user, roles=self._user_roles(session, user))

    def _exists(self, session: Session, column: Any, value: str) -> bool:
        return session.exec(select(User.id).where(column == value)).first() is not None

    def create_user(self, payload: UserCreate) -> UserWithRoles:
        logger.info("creating user: %s", payload.model_dump(exclude={"password"}))
        with self._session() as session:
            if self._exists(session, User.username, payload.username):
                raise ConflictError("username already been taken")
            if self._exists(session, User.email, str(payload.email)):
                raise ConflictError("email already been taken")

            roles: list[Role] = []
            if payload.role_ids:
                roles = self.roles.resolve_ids(session, payload.role_ids)

            user = User(
                email=str(payload.email),
                username=payload.username,
                password_hash=self._hash_password(payload.password or DEFAULT_PASSWORD),
            )
            session.add(user)
            try:
                session.flush()
                session.add_all([UserRole(user_id=user.id, role_id=role.id) for role in roles])
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise ConflictError("username or email already been taken") from exc
            session.refresh(user)
            return UserWithRoles(user=user, roles=roles)

    def bootstrap_admin(self, payload: BootstrapAdminRequest) -> UserWithRoles:
        with self._session() as session:
            if session.exec(select(User.id)).first() is not None:
                raise ConflictError("console already initialized")
            role = session.exec(select(Role).where(Role.name == SUPER_ADMIN_ROLE)).first()
            if role is None:
                role = Role(name=SUPER_ADMIN_ROLE)
                session.add(role)
            user = User(
                email=str(payload.email),
                username=payload.username,
                password_hash=self._hash_password(payload.password),
            )
            session.add(user)
            session.flush()
            session.add(UserRole(user_id=user.id, role_id=role.id))
            session.commit()
            session.refresh(user)
            logger.info("bootstrapped admin user %s", user.username)
            return UserWithRoles(user=user, roles=[role])

    def authenticate(self, username: str, password: str) -> UserWithRoles:
        with self._session() as session:
            user = session.exec(select(User).where(User.username == username)).first()
            if user is None:
                raise AuthError("username is incorrect")
            if not hmac.compare_digest(user.password_hash, self._hash_password(password)):
                raise AuthError("password is incorrect")
            return self._with_roles(session, user)

    def list_users(self, *, sort: str | None = None, filter_text: str | None = None) -> list[UserWithRoles]:
        statement = apply_list_options(
            select(User),
            User,
            sort=sort,
            filter_text=filter_text,
            filter_fields=USER_FILTER_FIELDS,
            sortable=USER_SORT_FIELDS,
            default_order=("id",),
        )
        with self._session() as session:
            users = list(session.exec(statement).all())
            return [self._with_roles(session, user) for user in users]

    def get_user(self, user_id: int) -> UserWithRoles:
        with self._session() as session:
            return self._with_roles(session, self._get(session, user_id))

    def get_user_access(self, user_id: int) -> UserAccess:
        with self._session() as session:
            user = self._get(session, user_id)
            roles = self._user_roles(session, user)
            role_permissions = self.roles.permissions_by_role(
                session,
                [role.id for role in roles if role.id is not None],
            )
            return UserAccess(user=user, roles=roles, role_permissions=role_permissions)

    def update_user(self, user_id: int, payload: UserUpdate) -> UserWithRoles:
        with self._session() as session:
            user = self._get(session, user_id)
            if payload.role_ids:
                held = {role.id for role in self._user_roles(session, user)}
                new_roles = self.roles.resolve_ids(session, payload.role_ids)
                session.add_all(
                    [UserRole(user_id=user_id, role_id=role.id) for role in new_roles if role.id not in held]
                )
            if payload.username is not None:
                user.username = payload.username
            if payload.email is not None:
                user.email = str(payload.email)
            if payload.password is not None:
                user.password_hash = self._hash_password(payload.password)
            user.updated_at = now_utc()
            session.add(user)
            try:
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise ConflictError("username or email already been taken") from exc
            session.refresh(user)
            return self._with_roles(session, user)

    def delete_user(self, user_id: int) -> None:
        with self._session() as session:
            result = session.execute(sa.delete(User).where(col(User.id) == user_id))
            if not result.rowcount:
                raise NotFoundError("user not found")
            session.commit()

    def bulk_delete_users(self, user_ids: Iterable[int]) -> BulkDeleteResult:
        with self._session() as session:
            return delete_by_ids(session, User, user_ids)

    def assign_roles(self, user_id: int, role_ids: Iterable[int]) -> UserWithRoles:
        with self._session() as session:
            user = self._get(session, user_id)
            roles = self.roles.resolve_ids(session, role_ids)
            logger.info("assigning roles %s to user %s", [role.name for role in roles], user.username)
            attach_links(
                session,
                [UserRole(user_id=user_id, role_id=role.id) for role in roles],
                conflict_message="user already has some roles",
            )
            return self._with_roles(session, user)

    def remove_roles(self, user_id: int, role_ids: Iterable[int]) -> UserWithRoles:
        with self._session() as session:
            user = self._get(session, user_id)
            roles = self.roles.resolve_ids(session, role_ids)
            logger.info("removing roles %s from user %s", [role.name for role in roles], user.username)
            detach_links(
                session,
                UserRole,
                owner_column=UserRole.user_id,
                owner_id=user_id,
                target_column=UserRole.role_id,
                target_ids=unique_ids(role.id for role in roles if role.id is not None),
                missing_message="user does not have some roles",
            )
            return self._with_roles(session, user)

    def sync_roles(self, user_id: int, role_ids: Iterable[int]) -> UserWithRoles:
        with self._session() as session:
            user = self._get(session, user_id)
            roles = self.roles.resolve_ids(session, role_ids)
            logger.info("syncing roles %s on user %s", [role.name for role in roles], user.username)
            replace_links(
                session,
                UserRole,
                owner_column=UserRole.user_id,
                owner_id=user_id,
                links=[UserRole(user_id=user_id, role_id=role.id) for role in roles],
            )
            return UserWithRoles(user=user, roles=roles)
