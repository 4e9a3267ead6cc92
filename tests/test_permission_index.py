from __future__ import annotations

import json

import pytest
from sqlmodel import Session, select

from conftest import DownRedis, FakeRedis, Seeder
from orgauth.domain.models import DataScope, Role, RoleMenu, Status
from orgauth.infra import db, redis_state
from orgauth.services.permission_index_service import (
    ROLE_PERMS_CURRENT_KEY,
    PermissionIndex,
)


def _generation_hash(store: FakeRedis) -> dict[str, str]:
    generation = store.get(ROLE_PERMS_CURRENT_KEY)
    assert generation is not None
    return store.hgetall(f"system:role:perms:{generation}")


def test_refresh_all_writes_snapshot_and_swaps_generation(seed: Seeder, fake_redis: FakeRedis) -> None:
    seed.role("ADMIN", data_scope=DataScope.ALL, perms=["sys:user:query", "sys:dept:add"])
    seed.role("GUEST", status=Status.DISABLED, perms=["sys:user:query"])
    index = PermissionIndex()

    assert index.refresh_all() == 2
    first_generation = fake_redis.get(ROLE_PERMS_CURRENT_KEY)
    cached = _generation_hash(fake_redis)
    assert json.loads(cached["ADMIN"]) == ["sys:dept:add", "sys:user:query"]
    assert json.loads(cached["GUEST"]) == []

    index.refresh_all()
    second_generation = fake_redis.get(ROLE_PERMS_CURRENT_KEY)
    assert second_generation != first_generation
    assert fake_redis.ttl(f"system:role:perms:{first_generation}") > 0
    assert index.permissions_for({"ADMIN"}) == {"sys:user:query", "sys:dept:add"}


def test_permissions_for_unions_roles_and_handles_empty_input(seed: Seeder, fake_redis: FakeRedis) -> None:
    seed.role("A", perms=["sys:dept:query"])
    seed.role("B", perms=["sys:user:query"])
    index = PermissionIndex()
    index.refresh_all()

    assert index.permissions_for(set()) == frozenset()
    assert index.permissions_for({"A", "B"}) == {"sys:dept:query", "sys:user:query"}
    assert index.permissions_for({"UNKNOWN"}) == frozenset()


def test_refresh_role_overwrites_entry_without_exposing_empty_set(
    seed: Seeder,
    fake_redis: FakeRedis,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    role = seed.role("EDITOR", perms=["sys:dept:query"])
    extra = seed.menu("sys:dept:edit")
    index = PermissionIndex()
    index.refresh_all()

    with Session(db.engine) as session:
        session.add(RoleMenu(role_id=role.id, menu_id=extra.id))
        session.commit()

    observed: list[frozenset[str]] = []
    real_compute = index.compute

    def compute_with_concurrent_reader(role_codes=None):
        result = real_compute(role_codes)
        observed.append(index.permissions_for({"EDITOR"}))
        return result

    monkeypatch.setattr(index, "compute", compute_with_concurrent_reader)
    index.refresh("EDITOR")

    assert observed == [frozenset({"sys:dept:query"})]
    assert index.permissions_for({"EDITOR"}) == {"sys:dept:query", "sys:dept:edit"}


def test_refresh_removes_deleted_role_and_blanks_disabled_role(seed: Seeder, fake_redis: FakeRedis) -> None:
    gone = seed.role("GONE", perms=["sys:user:query"])
    seed.role("OFF", perms=["sys:user:query"])
    index = PermissionIndex()
    index.refresh_all()

    with Session(db.engine) as session:
        for link in session.exec(select(RoleMenu).where(RoleMenu.role_id == gone.id)).all():
            session.delete(link)
        session.delete(session.get(Role, gone.id))
        off = session.exec(select(Role).where(Role.code == "OFF")).one()
        off.status = Status.DISABLED
        session.add(off)
        session.commit()

    index.refresh("GONE")
    index.refresh("OFF")

    cached = _generation_hash(fake_redis)
    assert "GONE" not in cached
    assert json.loads(cached["OFF"]) == []
    assert index.permissions_for({"GONE", "OFF"}) == frozenset()


def test_rename_populates_new_code_then_evicts_old(seed: Seeder, fake_redis: FakeRedis) -> None:
    role = seed.role("OLD", perms=["sys:role:edit"])
    index = PermissionIndex()
    index.refresh_all()

    with Session(db.engine) as session:
        stored = session.get(Role, role.id)
        stored.code = "NEW"
        session.add(stored)
        session.commit()

    index.refresh("OLD", "NEW")

    cached = _generation_hash(fake_redis)
    assert "OLD" not in cached
    assert json.loads(cached["NEW"]) == ["sys:role:edit"]


def test_refresh_follows_generation_swapped_during_write(
    seed: Seeder,
    fake_redis: FakeRedis,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    role = seed.role("EDITOR", perms=["sys:dept:query"])
    extra = seed.menu("sys:dept:edit")
    index = PermissionIndex()
    index.refresh_all()
    stale_snapshot = index.compute()

    with Session(db.engine) as session:
        session.add(RoleMenu(role_id=role.id, menu_id=extra.id))
        session.commit()

    real_hset = fake_redis.hset
    swapped: list[str] = []

    def hset_then_rebuild(key, field=None, value=None, mapping=None):
        added = real_hset(key, field, value, mapping)
        if not swapped:
            swapped.append(key)
            real_hset(
                "system:role:perms:rebuilt",
                mapping={code: json.dumps(sorted(perms)) for code, perms in stale_snapshot.items()},
            )
            fake_redis.set(ROLE_PERMS_CURRENT_KEY, "rebuilt")
        return added

    monkeypatch.setattr(fake_redis, "hset", hset_then_rebuild)
    index.refresh("EDITOR")

    assert fake_redis.get(ROLE_PERMS_CURRENT_KEY) == "rebuilt"
    assert json.loads(_generation_hash(fake_redis)["EDITOR"]) == ["sys:dept:edit", "sys:dept:query"]


def test_cache_miss_reads_through_and_backfills(seed: Seeder, fake_redis: FakeRedis) -> None:
    index = PermissionIndex()
    index.refresh_all()
    seed.role("LATE", perms=["sys:user:online"])

    assert index.permissions_for({"LATE"}) == {"sys:user:online"}
    assert json.loads(_generation_hash(fake_redis)["LATE"]) == ["sys:user:online"]


def test_store_down_falls_back_to_database(seed: Seeder, monkeypatch: pytest.MonkeyPatch) -> None:
    seed.role("A", perms=["sys:dept:query"])
    seed.role("OFF", status=Status.DISABLED, perms=["sys:dept:delete"])
    monkeypatch.setattr(redis_state, "get_redis", lambda: DownRedis())
    index = PermissionIndex()

    index.warm()

    assert index.permissions_for({"A", "OFF"}) == {"sys:dept:query"}
