from __future__ import annotations

import pytest
from sqlalchemy.exc import OperationalError
from sqlmodel import Session, col, select

from conftest import FakeRedis, Seeder
from orgauth.domain.errors import AuthorizationDenied
from orgauth.domain.models import DataScope, Status, User
from orgauth.domain.predicates import ALWAYS, NEVER, Eq, In, eq
from orgauth.domain.principal import Principal
from orgauth.infra import db
from orgauth.infra.query import to_clause
from orgauth.services.authorization_service import AuthorizationContext
from orgauth.services.data_scope_service import DataScopeResolver, build_scope_filter


def _no_descendants(dept_id: int) -> set[int]:
    raise AssertionError("descendants should not be looked up")


def test_empty_role_set_resolves_to_self(seed: Seeder) -> None:
    assert DataScopeResolver().resolve(set()) == DataScope.SELF


def test_numeric_minimum_wins(seed: Seeder) -> None:
    seed.role("R1", data_scope=DataScope.DEPT)
    seed.role("R2", data_scope=DataScope.ALL)
    seed.role("R3", data_scope=DataScope.DEPT_AND_SUB)

    resolver = DataScopeResolver()
    assert resolver.resolve({"R1", "R2"}) == DataScope.ALL
    assert resolver.resolve({"R1", "R3"}) == DataScope.DEPT_AND_SUB


def test_disabled_and_unknown_roles_are_ignored(seed: Seeder) -> None:
    seed.role("WIDE", data_scope=DataScope.ALL, status=Status.DISABLED)
    seed.role("NARROW", data_scope=DataScope.DEPT)

    resolver = DataScopeResolver()
    assert resolver.resolve({"WIDE", "NARROW"}) == DataScope.DEPT
    assert resolver.resolve({"WIDE"}) == DataScope.SELF
    assert resolver.resolve({"MISSING"}) == DataScope.SELF


def test_root_role_resolves_to_all_without_database(seed: Seeder) -> None:
    assert DataScopeResolver().resolve({"ROOT"}) == DataScope.ALL


def test_database_failure_fails_closed(seed: Seeder, monkeypatch: pytest.MonkeyPatch) -> None:
    seed.role("WIDE", data_scope=DataScope.ALL)
    resolver = DataScopeResolver()

    def broken_session() -> Session:
        raise OperationalError("SELECT 1", {}, Exception("database down"))

    monkeypatch.setattr(resolver, "_session", broken_session)
    assert resolver.resolve({"WIDE"}) == DataScope.SELF


def test_scope_filter_table() -> None:
    assert build_scope_filter(DataScope.ALL, dept_id=None, user_id=None, descendants_of=_no_descendants) is ALWAYS
    assert build_scope_filter(
        DataScope.DEPT_AND_SUB, dept_id=1, user_id=7, descendants_of=lambda dept_id: {1, 2, 3}
    ) == In("dept_id", frozenset({1, 2, 3}))
    assert build_scope_filter(DataScope.DEPT, dept_id=1, user_id=7, descendants_of=_no_descendants) == Eq(
        "dept_id", 1
    )
    assert build_scope_filter(
        DataScope.SELF, dept_id=1, user_id=7, descendants_of=_no_descendants, owner_column="owner_id"
    ) == Eq("owner_id", 7)


def test_missing_identity_yields_no_rows() -> None:
    assert build_scope_filter(DataScope.DEPT, dept_id=None, user_id=7, descendants_of=_no_descendants) is NEVER
    assert build_scope_filter(DataScope.DEPT_AND_SUB, dept_id=None, user_id=7, descendants_of=_no_descendants) is NEVER
    assert build_scope_filter(DataScope.SELF, dept_id=1, user_id=None, descendants_of=_no_descendants) is NEVER


def test_mixed_roles_give_unrestricted_filter(seed: Seeder, fake_redis: FakeRedis) -> None:
    seed.role("R1", data_scope=DataScope.DEPT)
    seed.role("R2", data_scope=DataScope.ALL)
    ctx = AuthorizationContext(Principal(user_id=1, username="u1", dept_id=5, role_codes=frozenset({"R1", "R2"})))

    assert ctx.data_scope == DataScope.ALL
    assert ctx.scope_filter() is ALWAYS
    assert ctx.scope_filter(dept_column="id", owner_column="anything") is ALWAYS


def test_department_and_sub_scope_filters_rows(seed: Seeder, fake_redis: FakeRedis) -> None:
    role = seed.role("MANAGER", data_scope=DataScope.DEPT_AND_SUB)
    head = seed.dept("Head")
    branch = seed.dept("Branch", parent=head)
    other = seed.dept("Other")
    manager = seed.user("manager", dept=head, roles=[role])
    seed.user("alice", dept=branch)
    seed.user("bob", dept=other)

    ctx = AuthorizationContext(
        Principal(user_id=manager.id, username="manager", dept_id=head.id, role_codes=frozenset({"MANAGER"}))
    )
    predicate = ctx.scope_filter()

    with Session(db.engine) as session:
        users = session.exec(select(User).where(to_clause(predicate, User)).order_by(col(User.id))).all()
    assert [item.username for item in users] == ["manager", "alice"]
    assert predicate.matches({"dept_id": branch.id})
    assert not predicate.matches({"dept_id": other.id})


def test_unknown_column_rejected_at_translation() -> None:
    with pytest.raises(ValueError):
        to_clause(eq("no_such_column", 1), User)


def test_permission_checks_use_wildcards_and_root_bypass(seed: Seeder, fake_redis: FakeRedis) -> None:
    seed.role("OPS", perms=["sys:user:*"])
    ctx = AuthorizationContext(Principal(user_id=1, username="ops", role_codes=frozenset({"OPS"})))

    assert ctx.has_permission("sys:user:query")
    assert not ctx.has_permission("sys:dept:add")
    with pytest.raises(AuthorizationDenied):
        ctx.require("sys:dept:add")

    root = AuthorizationContext(Principal(user_id=2, username="root", role_codes=frozenset({"ROOT"})))
    assert root.is_root
    root.require("sys:dept:add")
