from __future__ import annotations

import logging
from collections.abc import Callable, Iterable

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, col, select

from orgauth.domain.errors import ScopeUnresolvable
from orgauth.domain.models import DataScope, Role, Status
from orgauth.domain.permissions import is_root
from orgauth.domain.predicates import ALWAYS, NEVER, Predicate, eq, in_
from orgauth.infra.db import new_session

logger = logging.getLogger(__name__)


class DataScopeResolver:
    """Collapses a role set into the broadest data scope any enabled role grants."""

    def _session(self) -> Session:
        return new_session()

    def resolve(self, role_codes: Iterable[str]) -> DataScope:
        codes = sorted(set(role_codes))
        if not codes:
            return DataScope.SELF
        if is_root(codes):
            return DataScope.ALL
        try:
            with self._session() as session:
                statement = (
                    select(func.min(Role.data_scope))
                    .where(col(Role.code).in_(codes))
                    .where(Role.status == Status.ENABLED)
                )
                value = session.exec(statement).one()
        except SQLAlchemyError:
            logger.warning("role data unavailable, falling back to SELF scope", exc_info=True)
            return DataScope.SELF
        if value is None:
            return DataScope.SELF
        try:
            return DataScope(value)
        except ValueError:
            logger.warning("unknown data scope %r for roles %s, using SELF", value, codes)
            return DataScope.SELF


def _scope_predicate(
    scope: DataScope,
    *,
    dept_id: int | None,
    user_id: int | None,
    dept_column: str,
    owner_column: str,
    descendants_of: Callable[[int], set[int]],
) -> Predicate:
    if scope == DataScope.ALL:
        return ALWAYS
    if scope in (DataScope.DEPT_AND_SUB, DataScope.DEPT):
        if dept_id is None:
            raise ScopeUnresolvable(f"{scope.name} scope requires a department")
        if scope == DataScope.DEPT:
            return eq(dept_column, dept_id)
        return in_(dept_column, descendants_of(dept_id))
    if user_id is None:
        raise ScopeUnresolvable("SELF scope requires a user")
    return eq(owner_column, user_id)


def build_scope_filter(
    scope: DataScope,
    *,
    dept_id: int | None,
    user_id: int | None,
    descendants_of: Callable[[int], set[int]],
    dept_column: str = "dept_id",
    owner_column: str = "created_by",
) -> Predicate:
    """Row predicate limiting a query to what ``scope`` lets the principal see.

    ALL is unrestricted, DEPT_AND_SUB matches the principal's department and
    everything below it, DEPT matches the department alone and SELF matches
    rows the user owns. A principal lacking the department or user id the
    scope needs sees nothing.
    """
    try:
        return _scope_predicate(
            scope,
            dept_id=dept_id,
            user_id=user_id,
            dept_column=dept_column,
            owner_column=owner_column,
            descendants_of=descendants_of,
        )
    except ScopeUnresolvable as exc:
        logger.info("scope filter yields no rows: %s", exc)
        return NEVER


data_scope_resolver = DataScopeResolver()
