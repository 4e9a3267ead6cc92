from __future__ import annotations

import json
import logging
import os
from collections.abc import Iterable
from uuid import uuid4

from redis import Redis
from redis.exceptions import RedisError
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, col, select

from orgauth.domain.models import Menu, Role, RoleMenu, Status
from orgauth.infra import redis_state
from orgauth.infra.db import new_session

logger = logging.getLogger(__name__)

PERMISSION_CACHE_GRACE_SECONDS = int(os.getenv("PERMISSION_CACHE_GRACE_SECONDS", "60"))
REFRESH_GENERATION_ATTEMPTS = 3

ROLE_PERMS_CURRENT_KEY = "system:role:perms:current"
ROLE_PERMS_GENERATION_KEY = "system:role:perms:{generation}"


def _dump(perms: Iterable[str]) -> str:
    return json.dumps(sorted(perms))


def _load(raw: str | bytes | None) -> frozenset[str] | None:
    if raw is None:
        return None
    if isinstance(raw, bytes):
        raw = raw.decode()
    try:
        value = json.loads(raw)
    except ValueError:
        return None
    if not isinstance(value, list):
        return None
    return frozenset(str(item) for item in value)


class PermissionIndex:
    """Role code -> permission strings, cached in Redis by generation.

    ``refresh_all`` writes a complete snapshot under a new generation hash and
    then swaps the current-generation pointer, so readers always see either
    the old or the new snapshot. Single-role refreshes compute first and
    overwrite the field in place, then re-check the pointer and write again
    if a full rebuild swapped generations meanwhile.
    """

    def _session(self) -> Session:
        return new_session()

    @staticmethod
    def _generation_key(generation: str) -> str:
        return ROLE_PERMS_GENERATION_KEY.format(generation=generation)

    def compute(self, role_codes: Iterable[str] | None = None) -> dict[str, frozenset[str]]:
        """Permission sets straight from the database.

        Only existing roles appear in the result; disabled roles map to an
        empty set.
        """
        codes = None if role_codes is None else sorted(set(role_codes))
        with self._session() as session:
            role_statement = select(Role.code, Role.status)
            perm_statement = (
                select(Role.code, Menu.perm)
                .join(RoleMenu, col(RoleMenu.role_id) == col(Role.id))
                .join(Menu, col(Menu.id) == col(RoleMenu.menu_id))
                .where(Role.status == Status.ENABLED)
            )
            if codes is not None:
                role_statement = role_statement.where(col(Role.code).in_(codes))
                perm_statement = perm_statement.where(col(Role.code).in_(codes))
            roles = list(session.exec(role_statement).all())
            perm_rows = list(session.exec(perm_statement).all())

        perms_by_role: dict[str, set[str]] = {}
        for code, perm in perm_rows:
            if perm and perm.strip():
                perms_by_role.setdefault(code, set()).add(perm.strip())
        return {
            code: frozenset(perms_by_role.get(code, ())) if status == Status.ENABLED else frozenset()
            for code, status in roles
        }

    def _current_generation(self, redis: Redis) -> str | None:
        generation = redis.get(ROLE_PERMS_CURRENT_KEY)
        if isinstance(generation, bytes):
            generation = generation.decode()
        return generation

    def _ensure_generation(self, redis: Redis) -> str:
        generation = self._current_generation(redis)
        if generation is not None:
            return generation
        redis.set(ROLE_PERMS_CURRENT_KEY, uuid4().hex, nx=True)
        generation = self._current_generation(redis)
        if generation is None:
            raise RedisError("permission cache generation pointer missing")
        return generation

    def refresh_all(self) -> int:
        snapshot = self.compute()
        redis = redis_state.get_redis()
        generation = uuid4().hex
        if snapshot:
            redis.hset(
                self._generation_key(generation),
                mapping={code: _dump(perms) for code, perms in snapshot.items()},
            )
        previous = redis.set(ROLE_PERMS_CURRENT_KEY, generation, get=True)
        if isinstance(previous, bytes):
            previous = previous.decode()
        if previous and previous != generation:
            redis.expire(self._generation_key(previous), PERMISSION_CACHE_GRACE_SECONDS)
        logger.info("permission cache rebuilt for %d roles (generation %s)", len(snapshot), generation)
        return len(snapshot)

    def _write_role(
        self,
        redis: Redis,
        generation: str,
        target: str,
        snapshot: dict[str, frozenset[str]],
        stale_code: str | None,
    ) -> None:
        key = self._generation_key(generation)
        if target in snapshot:
            redis.hset(key, target, _dump(snapshot[target]))
        else:
            redis.hdel(key, target)
        if stale_code is not None:
            redis.hdel(key, stale_code)

    def refresh(self, role_code: str, new_code: str | None = None) -> None:
        target = new_code or role_code
        stale_code = role_code if new_code is not None and new_code != role_code else None
        snapshot = self.compute([target])
        redis = redis_state.get_redis()
        generation = self._ensure_generation(redis)
        for _ in range(REFRESH_GENERATION_ATTEMPTS):
            self._write_role(redis, generation, target, snapshot, stale_code)
            current = self._current_generation(redis)
            if current is None or current == generation:
                break
            generation = current
        else:
            logger.warning("permission cache generation kept changing while refreshing role %s", target)
        logger.info("permission cache refreshed for role %s", target)

    def warm(self) -> None:
        try:
            self.refresh_all()
        except (RedisError, SQLAlchemyError):
            logger.warning("permission cache warm-up skipped", exc_info=True)

    def permissions_for(self, role_codes: Iterable[str]) -> frozenset[str]:
        codes = sorted(set(role_codes))
        if not codes:
            return frozenset()

        perms: set[str] = set()
        missing: list[str] = []
        generation: str | None = None
        raw_values: list[str | bytes | None] = [None] * len(codes)
        try:
            redis = redis_state.get_redis()
            generation = self._current_generation(redis)
            if generation is not None:
                raw_values = list(redis.hmget(self._generation_key(generation), codes))
        except RedisError:
            logger.warning("permission cache unavailable, reading roles from database", exc_info=True)
            raw_values = [None] * len(codes)
            generation = None

        for code, raw in zip(codes, raw_values, strict=True):
            cached = _load(raw)
            if cached is None:
                missing.append(code)
            else:
                perms.update(cached)

        if missing:
            computed = self.compute(missing)
            for code_perms in computed.values():
                perms.update(code_perms)
            if generation is not None:
                self._backfill(generation, computed)
        return frozenset(perms)

    def _backfill(self, generation: str, computed: dict[str, frozenset[str]]) -> None:
        key = self._generation_key(generation)
        try:
            redis = redis_state.get_redis()
            for code, code_perms in computed.items():
                redis.hsetnx(key, code, _dump(code_perms))
        except RedisError:
            logger.warning("permission cache backfill failed", exc_info=True)


permission_index = PermissionIndex()
