from __future__ import annotations

import logging

from redis.exceptions import RedisError
from sqlalchemy import delete
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlmodel import Session, col, select

from orgauth.domain.models import Menu, Role, RoleCreate, RoleMenu, RoleMenuAssign, RoleUpdate, UserRole, now_utc
from orgauth.infra.db import new_session
from orgauth.services.permission_index_service import PermissionIndex, permission_index

logger = logging.getLogger(__name__)


class RoleError(Exception):
    pass


class NotFoundError(RoleError):
    pass


class ConflictError(RoleError):
    pass


class RoleService:
    """Role mutations. Every committed change refreshes the permission cache."""

    def __init__(self, index: PermissionIndex | None = None) -> None:
        self._index = index or permission_index

    def _session(self) -> Session:
        return new_session()

    def _refresh_cache(self, role_code: str, new_code: str | None = None) -> None:
        try:
            self._index.refresh(role_code, new_code)
        except (RedisError, SQLAlchemyError):
            logger.error("permission cache refresh failed for role %s", new_code or role_code, exc_info=True)

    def _ensure_code_unique(self, session: Session, code: str, role_id: int | None) -> None:
        statement = select(Role.id).where(Role.code == code)
        if role_id is not None:
            statement = statement.where(Role.id != role_id)
        if session.exec(statement).first() is not None:
            raise ConflictError("role code already exists")

    def _commit(self, session: Session) -> None:
        try:
            session.commit()
        except IntegrityError as exc:
            session.rollback()
            raise ConflictError("role code already exists") from exc

    def list_roles(self) -> list[Role]:
        with self._session() as session:
            return list(session.exec(select(Role).order_by(col(Role.sort), col(Role.id))).all())

    def get_role(self, role_id: int) -> Role:
        with self._session() as session:
            role = session.get(Role, role_id)
            if role is None:
                raise NotFoundError("role not found")
            return role

    def create_role(self, payload: RoleCreate) -> Role:
        with self._session() as session:
            self._ensure_code_unique(session, payload.code, None)
            role = Role(
                code=payload.code,
                name=payload.name,
                data_scope=payload.data_scope,
                status=payload.status,
                sort=payload.sort,
            )
            session.add(role)
            self._commit(session)
            session.refresh(role)
        self._refresh_cache(role.code)
        return role

    def update_role(self, role_id: int, payload: RoleUpdate) -> Role:
        with self._session() as session:
            role = session.get(Role, role_id)
            if role is None:
                raise NotFoundError("role not found")
            old_code = role.code
            old_status = role.status
            if payload.code is not None and payload.code != role.code:
                self._ensure_code_unique(session, payload.code, role_id)
                role.code = payload.code
            if payload.name is not None:
                role.name = payload.name
            if payload.data_scope is not None:
                role.data_scope = payload.data_scope
            if payload.status is not None:
                role.status = payload.status
            if payload.sort is not None:
                role.sort = payload.sort
            role.updated_at = now_utc()
            session.add(role)
            self._commit(session)
            session.refresh(role)

        if role.code != old_code or role.status != old_status:
            self._refresh_cache(old_code, role.code)
        return role

    def assign_menus(self, role_id: int, payload: RoleMenuAssign) -> list[int]:
        menu_ids = sorted(set(payload.menu_ids))
        with self._session() as session:
            role = session.get(Role, role_id)
            if role is None:
                raise NotFoundError("role not found")
            if menu_ids:
                found = set(session.exec(select(Menu.id).where(col(Menu.id).in_(menu_ids))).all())
                missing = [item for item in menu_ids if item not in found]
                if missing:
                    raise NotFoundError(f"menus not found: {missing}")
            session.execute(delete(RoleMenu).where(col(RoleMenu.role_id) == role_id))
            for menu_id in menu_ids:
                session.add(RoleMenu(role_id=role_id, menu_id=menu_id))
            session.commit()
            role_code = role.code
        self._refresh_cache(role_code)
        return menu_ids

    def list_menu_ids(self, role_id: int) -> list[int]:
        with self._session() as session:
            if session.get(Role, role_id) is None:
                raise NotFoundError("role not found")
            rows = session.exec(select(RoleMenu.menu_id).where(RoleMenu.role_id == role_id)).all()
            return sorted(rows)

    def delete_role(self, role_id: int) -> None:
        with self._session() as session:
            role = session.get(Role, role_id)
            if role is None:
                raise NotFoundError("role not found")
            assigned = session.exec(select(UserRole.user_id).where(UserRole.role_id == role_id)).first()
            if assigned is not None:
                raise ConflictError(f"role {role.name} is assigned to users and cannot be deleted")
            role_code = role.code
            session.execute(delete(RoleMenu).where(col(RoleMenu.role_id) == role_id))
            session.delete(role)
            session.commit()
        self._refresh_cache(role_code)
