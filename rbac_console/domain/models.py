from __future__ import annotations

from collections.abc import Sequence
from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, EmailStr, model_validator
from pydantic import Field as PydanticField
from sqlalchemy import JSON, Column, ForeignKeyConstraint, SmallInteger
from sqlmodel import Field, SQLModel

SMALLINT_MIN = -32768
SMALLINT_MAX = 32767


def now_utc() -> datetime:
    return datetime.now(UTC)


class AuditLog(SQLModel, table=True):
    __tablename__ = "audit_logs"

    id: int | None = Field(default=None, primary_key=True)
    actor_id: int | None = Field(default=None, index=True)
    action: str
    resource: str
    method: str
    status_code: int
    ts: datetime = Field(default_factory=now_utc, index=True)
    detail: dict[str, Any] = Field(
        default_factory=dict,
        sa_column=Column(JSON, nullable=False),
    )


class Permission(SQLModel, table=True):
    __tablename__ = "permissions"

    id: int | None = Field(default=None, primary_key=True)
    name: str = Field(index=True, unique=True, max_length=100)
    created_at: datetime = Field(default_factory=now_utc, index=True)
    updated_at: datetime = Field(default_factory=now_utc)


class Role(SQLModel, table=True):
    __tablename__ = "roles"

    id: int | None = Field(default=None, primary_key=True)
    name: str = Field(index=True, unique=True, max_length=20)
    created_at: datetime = Field(default_factory=now_utc, index=True)
    updated_at: datetime = Field(default_factory=now_utc)


class User(SQLModel, table=True):
    __tablename__ = "users"

    id: int | None = Field(default=None, primary_key=True)
    email: str = Field(index=True, unique=True, max_length=100)
    username: str = Field(index=True, unique=True, max_length=70)
    password_hash: str
    refresh_token_hash: str | None = None
    created_at: datetime = Field(default_factory=now_utc, index=True)
    updated_at: datetime = Field(default_factory=now_utc)


class Menu(SQLModel, table=True):
    __tablename__ = "menus"

    id: int | None = Field(default=None, primary_key=True)
    name: str = Field(index=True, unique=True, max_length=50)
    icon: str = Field(max_length=50)
    path: str | None = Field(default=None, max_length=50)
    sort: int = Field(sa_column=Column(SmallInteger, nullable=False))
    parent_id: int | None = Field(default=None, foreign_key="menus.id", index=True)
    created_at: datetime = Field(default_factory=now_utc, index=True)
    updated_at: datetime = Field(default_factory=now_utc)


class RolePermission(SQLModel, table=True):
    __tablename__ = "role_permissions"
    __table_args__ = (
        ForeignKeyConstraint(["role_id"], ["roles.id"], ondelete="CASCADE"),
        ForeignKeyConstraint(["permission_id"], ["permissions.id"], ondelete="CASCADE"),
    )

    role_id: int = Field(primary_key=True)
    permission_id: int = Field(primary_key=True, index=True)
    created_at: datetime = Field(default_factory=now_utc)


class UserRole(SQLModel, table=True):
    __tablename__ = "user_roles"
    __table_args__ = (
        ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        ForeignKeyConstraint(["role_id"], ["roles.id"], ondelete="CASCADE"),
    )

    user_id: int = Field(primary_key=True)
    role_id: int = Field(primary_key=True, index=True)
    created_at: datetime = Field(default_factory=now_utc)


class UserPermission(SQLModel, table=True):
    """Direct user grants; navigation resolves through roles only."""

    __tablename__ = "user_permissions"
    __table_args__ = (
        ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        ForeignKeyConstraint(["permission_id"], ["permissions.id"], ondelete="CASCADE"),
    )

    user_id: int = Field(primary_key=True)
    permission_id: int = Field(primary_key=True, index=True)
    created_at: datetime = Field(default_factory=now_utc)


class MenuPermission(SQLModel, table=True):
    __tablename__ = "menu_permissions"
    __table_args__ = (
        ForeignKeyConstraint(["menu_id"], ["menus.id"], ondelete="CASCADE"),
        ForeignKeyConstraint(["permission_id"], ["permissions.id"], ondelete="CASCADE"),
    )

    menu_id: int = Field(primary_key=True)
    permission_id: int = Field(primary_key=True, index=True)
    created_at: datetime = Field(default_factory=now_utc)


class ORMReadModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)


class IdListRequest(BaseModel):
    ids: list[int] = PydanticField(min_length=1)


class PermissionCreate(BaseModel):
    name: str = PydanticField(min_length=1, max_length=100)


class PermissionUpdate(BaseModel):
    name: str | None = PydanticField(default=None, min_length=1, max_length=100)


class PermissionRead(ORMReadModel):
    id: int
    name: str
    created_at: datetime
    updated_at: datetime


class PermissionSyncRolesRequest(BaseModel):
    role_ids: list[int]


class PermissionById(BaseModel):
    by_id: int


class PermissionByName(BaseModel):
    by_name: str = PydanticField(min_length=1)


PermissionRef = PermissionById | PermissionByName


class RoleCreate(BaseModel):
    name: str = PydanticField(min_length=1, max_length=20)
    permission_ids: list[int] | None = None


class RoleUpdate(BaseModel):
    name: str | None = PydanticField(default=None, min_length=1, max_length=20)
    permission_ids: list[int] | None = None


class RoleRead(ORMReadModel):
    id: int
    name: str
    created_at: datetime
    updated_at: datetime


class RoleWithPermissionsRead(RoleRead):
    permissions: list[PermissionRead] = PydanticField(default_factory=list)

    @classmethod
    def build(cls, role: Role, permissions: Sequence[Permission]) -> RoleWithPermissionsRead:
        return cls(
            **RoleRead.model_validate(role).model_dump(),
            permissions=[PermissionRead.model_validate(item) for item in permissions],
        )


class RoleSyncPermissionsRequest(BaseModel):
    permission_ids: list[int]


class UserCreate(BaseModel):
    email: EmailStr
    username: str = PydanticField(min_length=1, max_length=70)
    password: str | None = None
    role_ids: list[int] | None = None


class UserUpdate(BaseModel):
    email: EmailStr | None = None
    username: str | None = PydanticField(default=None, min_length=1, max_length=70)
    password: str | None = None
    role_ids: list[int] | None = None


class UserRead(ORMReadModel):
    id: int
    email: str
    username: str
    created_at: datetime
    updated_at: datetime


class UserWithRolesRead(UserRead):
    roles: list[RoleRead] = PydanticField(default_factory=list)

    @classmethod
    def build(cls, user: User, roles: Sequence[Role]) -> UserWithRolesRead:
        return cls(
            **UserRead.model_validate(user).model_dump(),
            roles=[RoleRead.model_validate(item) for item in roles],
        )


class UserRolesRequest(BaseModel):
    role_ids: list[int]


class MenuCreate(BaseModel):
    name: str = PydanticField(min_length=1, max_length=50)
    icon: str = PydanticField(min_length=1, max_length=50)
    sort: int = PydanticField(ge=SMALLINT_MIN, le=SMALLINT_MAX)
    path: str | None = PydanticField(default=None, min_length=1, max_length=50)
    parent_id: int | None = None
    permission_ids: list[int] | None = None

    @model_validator(mode="after")
    def _child_requires_path(self) -> MenuCreate:
        if self.parent_id is not None and self.path is None:
            raise ValueError("path is required when parent_id is set")
        return self


class MenuUpdate(BaseModel):
    name: str | None = PydanticField(default=None, min_length=1, max_length=50)
    icon: str | None = PydanticField(default=None, min_length=1, max_length=50)
    sort: int | None = PydanticField(default=None, ge=SMALLINT_MIN, le=SMALLINT_MAX)
    path: str | None = PydanticField(default=None, min_length=1, max_length=50)
    parent_id: int | None = None
    permission_ids: list[int] | None = None


class MenuRead(ORMReadModel):
    id: int
    name: str
    icon: str
    path: str | None = None
    sort: int
    parent_id: int | None = None
    created_at: datetime
    updated_at: datetime


class MenuWithPermissionsRead(MenuRead):
    parent: MenuRead | None = None
    permissions: list[PermissionRead] = PydanticField(default_factory=list)

    @classmethod
    def build(
        cls,
        menu: Menu,
        permissions: Sequence[Permission],
        parent: Menu | None = None,
    ) -> MenuWithPermissionsRead:
        return cls(
            **MenuRead.model_validate(menu).model_dump(),
            parent=MenuRead.model_validate(parent) if parent is not None else None,
            permissions=[PermissionRead.model_validate(item) for item in permissions],
        )


class BootstrapAdminRequest(BaseModel):
    username: str = PydanticField(min_length=1, max_length=70)
    email: EmailStr
    password: str = PydanticField(min_length=1)


class LoginRequest(BaseModel):
    username: str
    password: str


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    roles: list[str]
