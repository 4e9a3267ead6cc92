from __future__ import annotations

import threading

from fastapi.testclient import TestClient

from conftest import FakeRedis, Seeder, auth_header, login
from orgauth.services.online_user_registry import OnlineUserRegistry


def test_registry_connect_disconnect_and_close() -> None:
    registry = OnlineUserRegistry()

    registry.connect("alice", "s1")
    registry.connect("bob", "s2")
    registry.connect("alice", "s3")

    assert registry.count() == 2
    assert registry.is_online("alice")
    assert {item.session_id for item in registry.list()} == {"s2", "s3"}
    assert registry.disconnect("alice") is True
    assert registry.disconnect("alice") is False

    registry.close()
    assert registry.count() == 0
    assert registry.connect("carol", "s4") is None
    assert not registry.is_online("carol")


def test_registry_is_safe_under_concurrent_connects() -> None:
    registry = OnlineUserRegistry()

    def worker(offset: int) -> None:
        for index in range(200):
            registry.connect(f"user-{offset}-{index}", "sid")

    threads = [threading.Thread(target=worker, args=(offset,)) for offset in range(4)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert registry.count() == 800


def test_login_and_logout_track_online_users(client: TestClient, seed: Seeder, fake_redis: FakeRedis) -> None:
    admin_role = seed.role("SUPPORT", perms=["sys:user:online"])
    seed.user("admin", roles=[admin_role])
    seed.user("alice")

    admin_tokens = login(client, fake_redis, "admin")
    alice_tokens = login(client, fake_redis, "alice")
    admin_headers = auth_header(admin_tokens["access_token"])

    online = client.get("/api/v1/auth/online-users", headers=admin_headers)
    assert online.status_code == 200
    assert sorted(item["username"] for item in online.json()) == ["admin", "alice"]

    forbidden = client.get("/api/v1/auth/online-users", headers=auth_header(alice_tokens["access_token"]))
    assert forbidden.status_code == 403

    assert client.delete("/api/v1/auth/logout", headers=auth_header(alice_tokens["access_token"])).status_code == 204
    online = client.get("/api/v1/auth/online-users", headers=admin_headers)
    assert [item["username"] for item in online.json()] == ["admin"]
