from __future__ import annotations

import logging
import os
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any
from uuid import uuid4

import jwt
from redis.exceptions import RedisError

from orgauth.domain.errors import TokenExpired, TokenInvalid, TokenRevoked
from orgauth.domain.models import now_utc
from orgauth.domain.principal import Principal
from orgauth.infra import redis_state

logger = logging.getLogger(__name__)

JWT_SECRET = os.getenv("JWT_SECRET", "dev-secret-change-me")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
ACCESS_TOKEN_TTL_SECONDS = int(os.getenv("ACCESS_TOKEN_TTL_SECONDS", "3600"))
REFRESH_TOKEN_TTL_SECONDS = int(os.getenv("REFRESH_TOKEN_TTL_SECONDS", "604800"))

BEARER_PREFIX = "Bearer "
BLACKLIST_TOKEN_KEY = "auth:token:blacklist:{jti}"
REVOKED_SESSION_KEY = "auth:token:session:revoked:{sid}"

CLAIM_USER_ID = "userId"
CLAIM_DEPT_ID = "deptId"
CLAIM_ROLES = "roles"
CLAIM_TOKEN_TYPE = "tokenType"
CLAIM_SESSION_ID = "sid"
TOKEN_TYPE_ACCESS = "access"
TOKEN_TYPE_REFRESH = "refresh"


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str
    expires_in: int
    token_type: str = "Bearer"


def strip_bearer(token: str) -> str:
    if token.startswith(BEARER_PREFIX):
        return token[len(BEARER_PREFIX) :]
    return token


class TokenManager:
    """Issues, validates and revokes signed bearer tokens.

    Revocation records live in Redis under ``auth:token:blacklist:{jti}`` and
    expire together with the token they revoke. Both tokens of a pair share a
    ``sid`` claim; invalidating either one also revokes the session, which
    stops its refresh token from minting new access tokens.
    """

    def __init__(
        self,
        *,
        secret: str | None = None,
        algorithm: str | None = None,
        access_ttl_seconds: int | None = None,
        refresh_ttl_seconds: int | None = None,
        clock: Callable[[], datetime] = now_utc,
    ) -> None:
        self._secret = secret or JWT_SECRET
        self._algorithm = algorithm or JWT_ALGORITHM
        self._access_ttl = access_ttl_seconds or ACCESS_TOKEN_TTL_SECONDS
        self._refresh_ttl = refresh_ttl_seconds or REFRESH_TOKEN_TTL_SECONDS
        self._clock = clock

    @staticmethod
    def _blacklist_key(jti: str) -> str:
        return BLACKLIST_TOKEN_KEY.format(jti=jti)

    @staticmethod
    def _session_key(session_id: str) -> str:
        return REVOKED_SESSION_KEY.format(sid=session_id)

    def _encode(self, principal: Principal, *, ttl_seconds: int, token_type: str, session_id: str) -> str:
        now = self._clock()
        payload: dict[str, Any] = {
            "sub": principal.username,
            CLAIM_USER_ID: principal.user_id,
            CLAIM_DEPT_ID: principal.dept_id,
            CLAIM_ROLES: sorted(principal.role_codes),
            CLAIM_TOKEN_TYPE: token_type,
            CLAIM_SESSION_ID: session_id,
            "jti": uuid4().hex,
            "iat": int(now.timestamp()),
            "exp": int((now + timedelta(seconds=ttl_seconds)).timestamp()),
        }
        return jwt.encode(payload, self._secret, algorithm=self._algorithm)

    def _decode(self, token: str, *, verify_exp: bool = True) -> dict[str, Any]:
        try:
            decoded = jwt.decode(
                token,
                self._secret,
                algorithms=[self._algorithm],
                options={"require": ["exp", "jti", "sub", CLAIM_SESSION_ID], "verify_exp": verify_exp},
            )
        except jwt.ExpiredSignatureError as exc:
            raise TokenExpired("token expired") from exc
        except jwt.InvalidTokenError as exc:
            raise TokenInvalid("token invalid") from exc
        if not isinstance(decoded, dict):
            raise TokenInvalid("token payload invalid")
        return decoded

    def _principal_from_claims(self, claims: dict[str, Any]) -> Principal:
        user_id = claims.get(CLAIM_USER_ID)
        dept_id = claims.get(CLAIM_DEPT_ID)
        roles = claims.get(CLAIM_ROLES, [])
        if not isinstance(user_id, int) or not isinstance(roles, list):
            raise TokenInvalid("token claims invalid")
        if dept_id is not None and not isinstance(dept_id, int):
            raise TokenInvalid("token claims invalid")
        return Principal(
            user_id=user_id,
            username=str(claims["sub"]),
            dept_id=dept_id,
            role_codes=frozenset(str(item) for item in roles),
            token_id=str(claims["jti"]),
            session_id=str(claims[CLAIM_SESSION_ID]),
            expires_at=datetime.fromtimestamp(int(claims["exp"]), UTC),
        )

    def _is_revoked(self, jti: str, session_id: str) -> bool:
        try:
            return bool(redis_state.get_redis().exists(self._blacklist_key(jti), self._session_key(session_id)))
        except RedisError as exc:
            logger.warning("revocation store unavailable, rejecting token", exc_info=True)
            raise TokenInvalid("token state unavailable") from exc

    def issue(self, principal: Principal) -> TokenPair:
        session_id = uuid4().hex
        return TokenPair(
            access_token=self._encode(
                principal, ttl_seconds=self._access_ttl, token_type=TOKEN_TYPE_ACCESS, session_id=session_id
            ),
            refresh_token=self._encode(
                principal, ttl_seconds=self._refresh_ttl, token_type=TOKEN_TYPE_REFRESH, session_id=session_id
            ),
            expires_in=self._access_ttl,
        )

    def parse(self, token: str, *, token_type: str = TOKEN_TYPE_ACCESS) -> Principal:
        claims = self._decode(token)
        if claims.get(CLAIM_TOKEN_TYPE) != token_type:
            raise TokenInvalid("unexpected token type")
        principal = self._principal_from_claims(claims)
        if self._is_revoked(str(claims["jti"]), str(claims[CLAIM_SESSION_ID])):
            raise TokenRevoked("token revoked")
        return principal

    def invalidate(self, token: str) -> None:
        claims = self._decode(strip_bearer(token), verify_exp=False)
        redis = redis_state.get_redis()
        # no token of the session outlives the refresh ttl
        redis.set(self._session_key(str(claims[CLAIM_SESSION_ID])), "1", ex=self._refresh_ttl)
        remaining = int(claims["exp"]) - int(self._clock().timestamp())
        if remaining > 0:
            redis.set(self._blacklist_key(str(claims["jti"])), "1", ex=remaining)
        logger.info("token revoked for user %s", claims["sub"])

    def refresh(self, refresh_token: str) -> TokenPair:
        principal = self.parse(refresh_token, token_type=TOKEN_TYPE_REFRESH)
        assert principal.session_id is not None
        access_token = self._encode(
            principal, ttl_seconds=self._access_ttl, token_type=TOKEN_TYPE_ACCESS, session_id=principal.session_id
        )
        return TokenPair(access_token=access_token, refresh_token=refresh_token, expires_in=self._access_ttl)


token_manager = TokenManager()
