from __future__ import annotations

from collections.abc import Generator, Iterable
from pathlib import Path
from typing import Any

import pytest
from fastapi.testclient import TestClient
from redis.exceptions import ConnectionError as RedisConnectionError
from sqlalchemy.engine import Engine
from sqlmodel import Session, SQLModel, create_engine

from orgauth.domain.models import (
    DataScope,
    Department,
    Menu,
    MenuType,
    Role,
    RoleMenu,
    Status,
    User,
    UserRole,
)
from orgauth.infra import db, redis_state
from orgauth.services.auth_service import hash_password


class FakeRedis:
    """In-memory stand-in for the handful of Redis commands the service uses.

    Expiry follows a manual clock; call ``advance`` to move time forward.
    """

    def __init__(self) -> None:
        self._store: dict[str, Any] = {}
        self._expires: dict[str, float] = {}
        self.now = 0.0

    def advance(self, seconds: float) -> None:
        self.now += seconds

    def _purge(self, key: str) -> None:
        deadline = self._expires.get(key)
        if deadline is not None and deadline <= self.now:
            self._store.pop(key, None)
            self._expires.pop(key, None)

    def _live(self, key: str) -> Any:
        self._purge(key)
        return self._store.get(key)

    def ping(self) -> bool:
        return True

    def get(self, key: str) -> str | None:
        return self._live(key)

    def set(
        self,
        key: str,
        value: Any,
        ex: int | None = None,
        nx: bool = False,
        get: bool = False,
    ) -> Any:
        previous = self._live(key)
        if nx and previous is not None:
            return previous if get else None
        self._store[key] = str(value)
        self._expires.pop(key, None)
        if ex is not None:
            self._expires[key] = self.now + ex
        return previous if get else True

    def getdel(self, key: str) -> str | None:
        value = self._live(key)
        self._store.pop(key, None)
        self._expires.pop(key, None)
        return value

    def delete(self, *keys: str) -> int:
        removed = 0
        for key in keys:
            if self._live(key) is not None:
                removed += 1
            self._store.pop(key, None)
            self._expires.pop(key, None)
        return removed

    def exists(self, *keys: str) -> int:
        return sum(1 for key in keys if self._live(key) is not None)

    def incr(self, key: str) -> int:
        value = int(self._live(key) or 0) + 1
        self._store[key] = str(value)
        return value

    def expire(self, key: str, seconds: int) -> bool:
        if self._live(key) is None:
            return False
        self._expires[key] = self.now + seconds
        return True

    def ttl(self, key: str) -> int:
        if self._live(key) is None:
            return -2
        deadline = self._expires.get(key)
        if deadline is None:
            return -1
        return int(deadline - self.now)

    def _hash(self, key: str, create: bool = False) -> dict[str, str] | None:
        value = self._live(key)
        if value is None and create:
            value = {}
            self._store[key] = value
        return value

    def hset(
        self,
        key: str,
        field: str | None = None,
        value: Any = None,
        mapping: dict[str, Any] | None = None,
    ) -> int:
        items = dict(mapping or {})
        if field is not None:
            items[field] = value
        target = self._hash(key, create=True)
        assert target is not None
        added = sum(1 for name in items if name not in target)
        target.update({name: str(item) for name, item in items.items()})
        return added

    def hsetnx(self, key: str, field: str, value: Any) -> bool:
        target = self._hash(key, create=True)
        assert target is not None
        if field in target:
            return False
        target[field] = str(value)
        return True

    def hget(self, key: str, field: str) -> str | None:
        target = self._hash(key)
        return None if target is None else target.get(field)

    def hmget(self, key: str, fields: Iterable[str]) -> list[str | None]:
        target = self._hash(key) or {}
        return [target.get(field) for field in fields]

    def hgetall(self, key: str) -> dict[str, str]:
        return dict(self._hash(key) or {})

    def hdel(self, key: str, *fields: str) -> int:
        target = self._hash(key)
        if target is None:
            return 0
        return sum(1 for field in fields if target.pop(field, None) is not None)


class DownRedis:
    """Every command fails as if the server were unreachable."""

    def __getattr__(self, name: str) -> Any:
        def _fail(*args: Any, **kwargs: Any) -> Any:
            raise RedisConnectionError("redis unavailable")

        return _fail


class Seeder:
    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    def _save(self, item: Any) -> Any:
        with Session(self.engine, expire_on_commit=False) as session:
            session.add(item)
            session.commit()
            session.refresh(item)
            return item

    def dept(self, name: str, *, parent: Department | None = None, code: str | None = None) -> Department:
        tree_path = "0" if parent is None else f"{parent.tree_path},{parent.id}"
        return self._save(
            Department(
                name=name,
                code=code or name.lower(),
                parent_id=None if parent is None else parent.id,
                tree_path=tree_path,
            )
        )

    def menu(self, perm: str, *, name: str | None = None) -> Menu:
        return self._save(Menu(name=name or perm, type=MenuType.BUTTON, perm=perm))

    def role(
        self,
        code: str,
        *,
        data_scope: DataScope = DataScope.SELF,
        status: Status = Status.ENABLED,
        perms: Iterable[str] = (),
    ) -> Role:
        role = self._save(Role(code=code, name=code.title(), data_scope=data_scope, status=status))
        for perm in perms:
            menu = self.menu(perm)
            self._save(RoleMenu(role_id=role.id, menu_id=menu.id))
        return role

    def user(
        self,
        username: str,
        *,
        password: str = "secret",
        dept: Department | None = None,
        roles: Iterable[Role] = (),
        created_by: int | None = None,
    ) -> User:
        user = self._save(
            User(
                username=username,
                password_hash=hash_password(password),
                dept_id=None if dept is None else dept.id,
                created_by=created_by,
            )
        )
        for role in roles:
            self._save(UserRole(user_id=user.id, role_id=role.id))
        return user


@pytest.fixture()
def engine(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Engine:
    db_path = tmp_path / "orgauth_test.db"
    test_engine = create_engine(
        f"sqlite:///{db_path}",
        connect_args={"check_same_thread": False},
    )
    SQLModel.metadata.create_all(test_engine)
    monkeypatch.setattr(db, "engine", test_engine)
    return test_engine


@pytest.fixture()
def fake_redis(monkeypatch: pytest.MonkeyPatch) -> FakeRedis:
    store = FakeRedis()
    monkeypatch.setattr(redis_state, "get_redis", lambda: store)
    return store


@pytest.fixture()
def seed(engine: Engine) -> Seeder:
    return Seeder(engine)


@pytest.fixture()
def client(engine: Engine, fake_redis: FakeRedis) -> Generator[TestClient, None, None]:
    from orgauth import main as app_main

    with TestClient(app_main.app) as test_client:
        yield test_client


def login(client: TestClient, store: FakeRedis, username: str, password: str = "secret") -> dict[str, Any]:
    captcha = client.get("/api/v1/auth/captcha")
    assert captcha.status_code == 200
    captcha_key = captcha.json()["captcha_key"]
    answer = store.get(f"captcha:image:{captcha_key}")
    response = client.post(
        "/api/v1/auth/login",
        json={"username": username, "password": password},
        headers={"X-Captcha-Key": captcha_key, "X-Captcha-Code": str(answer)},
    )
    assert response.status_code == 200, response.text
    return response.json()


def auth_header(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}
