from __future__ import annotations

from sqlmodel import Session, col, or_, select

from orgauth.domain.models import User
from orgauth.domain.predicates import Predicate
from orgauth.infra.db import new_session
from orgauth.infra.query import to_clause


class UserService:
    def _session(self) -> Session:
        return new_session()

    def list_users(
        self,
        scope: Predicate,
        *,
        keywords: str | None = None,
        dept_id: int | None = None,
        status: int | None = None,
    ) -> list[User]:
        with self._session() as session:
            statement = select(User).where(to_clause(scope, User))
            if keywords:
                statement = statement.where(
                    or_(col(User.username).contains(keywords), col(User.nickname).contains(keywords))
                )
            if dept_id is not None:
                statement = statement.where(User.dept_id == dept_id)
            if status is not None:
                statement = statement.where(User.status == status)
            return list(session.exec(statement.order_by(col(User.id))).all())
