from __future__ import annotations

from datetime import UTC, datetime
from enum import IntEnum, StrEnum

from pydantic import BaseModel, ConfigDict
from pydantic import Field as PydanticField
from sqlalchemy import Index, UniqueConstraint
from sqlmodel import Field, SQLModel

ROOT_NODE_ID = 0
ROOT_TREE_PATH = str(ROOT_NODE_ID)


def now_utc() -> datetime:
    return datetime.now(UTC)


class DataScope(IntEnum):
    """Row-visibility tier of a role. Lower value means broader visibility."""

    ALL = 1
    DEPT_AND_SUB = 2
    DEPT = 3
    SELF = 4


class Status(IntEnum):
    DISABLED = 0
    ENABLED = 1


class MenuType(StrEnum):
    CATALOG = "CATALOG"
    MENU = "MENU"
    BUTTON = "BUTTON"
    EXTLINK = "EXTLINK"


class Department(SQLModel, table=True):
    __tablename__ = "sys_dept"
    __table_args__ = (
        UniqueConstraint("code", name="uq_sys_dept_code"),
        Index("ix_sys_dept_parent_id", "parent_id"),
    )

    id: int | None = Field(default=None, primary_key=True)
    parent_id: int | None = Field(default=None)
    tree_path: str = Field(default=ROOT_TREE_PATH, index=True)
    name: str = Field(index=True)
    code: str
    status: int = Field(default=Status.ENABLED)
    sort: int = Field(default=0)
    created_by: int | None = Field(default=None, index=True)
    created_at: datetime = Field(default_factory=now_utc)
    updated_at: datetime = Field(default_factory=now_utc)


class Role(SQLModel, table=True):
    __tablename__ = "sys_role"
    __table_args__ = (UniqueConstraint("code", name="uq_sys_role_code"),)

    id: int | None = Field(default=None, primary_key=True)
    code: str = Field(index=True)
    name: str
    data_scope: int = Field(default=DataScope.SELF)
    status: int = Field(default=Status.ENABLED)
    sort: int = Field(default=0)
    created_at: datetime = Field(default_factory=now_utc)
    updated_at: datetime = Field(default_factory=now_utc)


class Menu(SQLModel, table=True):
    __tablename__ = "sys_menu"

    id: int | None = Field(default=None, primary_key=True)
    parent_id: int = Field(default=ROOT_NODE_ID, index=True)
    tree_path: str = Field(default=ROOT_TREE_PATH)
    name: str
    type: MenuType = Field(default=MenuType.MENU)
    perm: str | None = Field(default=None)
    sort: int = Field(default=0)


class RoleMenu(SQLModel, table=True):
    __tablename__ = "sys_role_menu"

    role_id: int = Field(foreign_key="sys_role.id", primary_key=True)
    menu_id: int = Field(foreign_key="sys_menu.id", primary_key=True)


class User(SQLModel, table=True):
    __tablename__ = "sys_user"
    __table_args__ = (UniqueConstraint("username", name="uq_sys_user_username"),)

    id: int | None = Field(default=None, primary_key=True)
    username: str = Field(index=True)
    nickname: str | None = None
    password_hash: str
    dept_id: int | None = Field(default=None, index=True)
    status: int = Field(default=Status.ENABLED)
    created_by: int | None = Field(default=None, index=True)
    created_at: datetime = Field(default_factory=now_utc)


class UserRole(SQLModel, table=True):
    __tablename__ = "sys_user_role"

    user_id: int = Field(foreign_key="sys_user.id", primary_key=True)
    role_id: int = Field(foreign_key="sys_role.id", primary_key=True)


class ORMReadModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)


class DepartmentForm(BaseModel):
    name: str
    code: str
    parent_id: int | None = None
    status: int = Status.ENABLED
    sort: int = 0


class DepartmentRead(ORMReadModel):
    id: int
    parent_id: int | None
    tree_path: str
    name: str
    code: str
    status: int
    sort: int
    children: list[DepartmentRead] = PydanticField(default_factory=list)


class Option(BaseModel):
    value: int
    label: str
    children: list[Option] = PydanticField(default_factory=list)


class RoleCreate(BaseModel):
    code: str
    name: str
    data_scope: DataScope = DataScope.SELF
    status: int = Status.ENABLED
    sort: int = 0


class RoleUpdate(BaseModel):
    code: str | None = None
    name: str | None = None
    data_scope: DataScope | None = None
    status: int | None = None
    sort: int | None = None


class RoleRead(ORMReadModel):
    id: int
    code: str
    name: str
    data_scope: int
    status: int
    sort: int


class RoleMenuAssign(BaseModel):
    menu_ids: list[int] = PydanticField(default_factory=list)


class UserRead(ORMReadModel):
    id: int
    username: str
    nickname: str | None = None
    dept_id: int | None = None
    status: int
    created_by: int | None = None


class PasswordChangeRequest(BaseModel):
    old_password: str | None = None
    new_password: str


class LoginRequest(BaseModel):
    username: str
    password: str


class RefreshTokenRequest(BaseModel):
    refresh_token: str


class TokenResponse(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str = "Bearer"
    expires_in: int


class CaptchaResponse(BaseModel):
    captcha_key: str
    prompt: str
    expires_in: int


class CurrentUserResponse(BaseModel):
    user_id: int
    username: str
    dept_id: int | None = None
    roles: list[str]
    permissions: list[str]
    data_scope: DataScope


class OnlineUserRead(BaseModel):
    username: str
    session_id: str
    login_time: datetime
