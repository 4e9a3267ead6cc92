from __future__ import annotations

import logging
from collections.abc import Iterable

from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, col, select
from sqlmodel.sql.expression import SelectOfScalar

from orgauth.domain.models import (
    ROOT_NODE_ID,
    ROOT_TREE_PATH,
    Department,
    DepartmentForm,
    DepartmentRead,
    Option,
    Status,
    now_utc,
)
from orgauth.domain.predicates import Predicate, in_, or_ as pred_or
from orgauth.infra.context import get_user_id
from orgauth.infra.db import new_session
from orgauth.infra.query import to_clause

logger = logging.getLogger(__name__)


class DepartmentError(Exception):
    pass


class NotFoundError(DepartmentError):
    pass


class ConflictError(DepartmentError):
    pass


class HasSubDepartmentsError(ConflictError):
    pass


def parse_tree_path(tree_path: str | None) -> list[int]:
    """Ancestor ids of a tree path, root first, without the root sentinel."""
    ids: list[int] = []
    for segment in (tree_path or "").split(","):
        segment = segment.strip()
        if not segment:
            continue
        try:
            value = int(segment)
        except ValueError:
            continue
        if value != ROOT_NODE_ID:
            ids.append(value)
    return ids


class DepartmentService:
    def _session(self) -> Session:
        return new_session()

    @staticmethod
    def _is_root(parent_id: int | None) -> bool:
        return parent_id is None or parent_id == ROOT_NODE_ID

    @staticmethod
    def _subtree_prefix(department: Department) -> str:
        return f"{department.tree_path},{department.id}"

    def _subtree_statement(self, prefix: str) -> SelectOfScalar[Department]:
        return select(Department).where(
            or_(
                col(Department.tree_path) == prefix,
                col(Department.tree_path).like(f"{prefix},%"),
            )
        )

    def compute_tree_path(self, parent_id: int | None, *, session: Session | None = None) -> str:
        if self._is_root(parent_id):
            return ROOT_TREE_PATH
        if session is None:
            with self._session() as own_session:
                return self.compute_tree_path(parent_id, session=own_session)
        parent = session.get(Department, parent_id)
        if parent is None:
            return ROOT_TREE_PATH
        return f"{parent.tree_path},{parent_id}"

    def descendants_of(self, dept_id: int, *, session: Session | None = None) -> set[int]:
        if session is None:
            with self._session() as own_session:
                return self.descendants_of(dept_id, session=own_session)
        department = session.get(Department, dept_id)
        if department is None:
            return {dept_id}
        rows = session.exec(self._subtree_statement(self._subtree_prefix(department))).all()
        return {dept_id, *(item.id for item in rows if item.id is not None)}

    def ancestors_of(self, dept_id: int, *, session: Session | None = None) -> list[int]:
        if session is None:
            with self._session() as own_session:
                return self.ancestors_of(dept_id, session=own_session)
        department = session.get(Department, dept_id)
        if department is None:
            return []
        return parse_tree_path(department.tree_path)

    def get_department(self, dept_id: int) -> Department:
        with self._session() as session:
            department = session.get(Department, dept_id)
            if department is None:
                raise NotFoundError("department not found")
            return department

    def _ensure_code_unique(self, session: Session, code: str, dept_id: int | None) -> None:
        statement = select(Department.id).where(Department.code == code)
        if dept_id is not None:
            statement = statement.where(Department.id != dept_id)
        if session.exec(statement).first() is not None:
            raise ConflictError("department code already exists")

    def _resolve_parent(self, session: Session, dept_id: int | None, parent_id: int | None) -> int | None:
        if self._is_root(parent_id):
            return None
        if dept_id is not None and parent_id == dept_id:
            raise ConflictError("department cannot be parent of itself")
        parent = session.get(Department, parent_id)
        if parent is None:
            raise NotFoundError("parent department not found")
        if dept_id is not None and dept_id in parse_tree_path(parent.tree_path):
            raise ConflictError("department cannot move under its descendant")
        return parent_id

    def save_department(self, payload: DepartmentForm, dept_id: int | None = None) -> Department:
        with self._session() as session:
            if dept_id is None:
                department = Department(name=payload.name, code=payload.code, created_by=get_user_id())
            else:
                existing = session.get(Department, dept_id)
                if existing is None:
                    raise NotFoundError("department not found")
                department = existing
            self._ensure_code_unique(session, payload.code, dept_id)

            parent_id = self._resolve_parent(session, dept_id, payload.parent_id)
            old_prefix = self._subtree_prefix(department) if dept_id is not None else None

            department.name = payload.name
            department.code = payload.code
            department.status = payload.status
            department.sort = payload.sort
            department.parent_id = parent_id
            department.tree_path = self.compute_tree_path(parent_id, session=session)
            department.updated_at = now_utc()
            session.add(department)

            if old_prefix is not None:
                new_prefix = self._subtree_prefix(department)
                if new_prefix != old_prefix:
                    descendants = session.exec(self._subtree_statement(old_prefix)).all()
                    for child in descendants:
                        child.tree_path = f"{new_prefix}{child.tree_path[len(old_prefix):]}"
                        child.updated_at = now_utc()
                        session.add(child)
                    logger.info("department %s moved, rewrote %d descendant paths", dept_id, len(descendants))

            try:
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise ConflictError("department code already exists") from exc
            session.refresh(department)
            return department

    def delete_departments(self, dept_ids: Iterable[int]) -> None:
        ids = list(dept_ids)
        if not ids:
            raise DepartmentError("department ids must not be empty")
        with self._session() as session:
            for dept_id in ids:
                child = session.exec(select(Department.id).where(Department.parent_id == dept_id)).first()
                if child is not None:
                    raise HasSubDepartmentsError("department has sub-departments and cannot be deleted")
                department = session.get(Department, dept_id)
                if department is None:
                    raise NotFoundError("department not found")
                session.delete(department)
                session.flush()
            session.commit()

    def list_departments(
        self,
        scope: Predicate,
        *,
        keywords: str | None = None,
        status: int | None = None,
    ) -> list[DepartmentRead]:
        with self._session() as session:
            statement = select(Department).where(to_clause(scope, Department))
            if keywords:
                statement = statement.where(col(Department.name).contains(keywords))
            if status is not None:
                statement = statement.where(Department.status == status)
            statement = statement.order_by(col(Department.sort), col(Department.id))
            rows = list(session.exec(statement).all())
        return self._build_tree(rows)

    def list_options(self, scope: Predicate, *, dept_id: int | None = None) -> list[Option]:
        """Enabled departments visible under ``scope`` as an option tree.

        Ancestors of ``dept_id`` are always included so that a principal who
        sees only a subtree still gets the path leading to it.
        """
        with self._session() as session:
            visible = scope
            if dept_id is not None:
                visible = pred_or(scope, in_("id", [dept_id, *self.ancestors_of(dept_id, session=session)]))
            statement = (
                select(Department)
                .where(Department.status == Status.ENABLED)
                .where(to_clause(visible, Department))
                .order_by(col(Department.sort), col(Department.id))
            )
            rows = list(session.exec(statement).all())
        return [self._to_option(item) for item in self._build_tree(rows)]

    def _build_tree(self, rows: list[Department]) -> list[DepartmentRead]:
        nodes = {item.id: DepartmentRead.model_validate(item) for item in rows}
        roots: list[DepartmentRead] = []
        for node in nodes.values():
            parent = nodes.get(node.parent_id) if node.parent_id is not None else None
            if parent is None:
                roots.append(node)
            else:
                parent.children.append(node)
        return roots

    def _to_option(self, node: DepartmentRead) -> Option:
        return Option(value=node.id, label=node.name, children=[self._to_option(item) for item in node.children])
