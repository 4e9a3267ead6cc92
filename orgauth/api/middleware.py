from __future__ import annotations

import logging

from redis.exceptions import RedisError
from starlette.concurrency import run_in_threadpool
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.types import ASGIApp

from orgauth.domain.errors import (
    ChallengeInvalid,
    MalformedCredentials,
    MissingCredentials,
    RateLimitExceeded,
    SecurityError,
)
from orgauth.domain.principal import Principal
from orgauth.infra.auth import BEARER_PREFIX, TokenManager, token_manager
from orgauth.infra.context import set_principal
from orgauth.services.captcha_service import CaptchaService, captcha_service
from orgauth.services.rate_limit_service import LOGIN_PATH, RateLimiter

logger = logging.getLogger(__name__)

UNSECURED_PATHS = frozenset({"/healthz", "/readyz", "/docs", "/docs/oauth2-redirect", "/openapi.json", "/redoc"})
PUBLIC_PATHS = frozenset({LOGIN_PATH, "/api/v1/auth/captcha", "/api/v1/auth/refresh-token"})
CHALLENGE_ENDPOINTS = frozenset({("POST", LOGIN_PATH)})

CAPTCHA_KEY_HEADER = "X-Captcha-Key"
CAPTCHA_CODE_HEADER = "X-Captcha-Code"
CAPTCHA_KEY_PARAM = "captchaKey"
CAPTCHA_CODE_PARAM = "captchaCode"


def security_error_response(exc: SecurityError) -> JSONResponse:
    headers = {"Retry-After": str(exc.retry_after)} if isinstance(exc, RateLimitExceeded) else None
    return JSONResponse(
        status_code=exc.status_code,
        content={"code": exc.code, "detail": exc.detail},
        headers=headers,
    )


def bearer_token(request: Request) -> str:
    header = request.headers.get("Authorization")
    if not header:
        raise MissingCredentials("Authorization header missing")
    if not header.startswith(BEARER_PREFIX):
        raise MalformedCredentials("Authorization header must use the Bearer scheme")
    token = header[len(BEARER_PREFIX) :].strip()
    if not token:
        raise MalformedCredentials("bearer token empty")
    return token


class AuthFilterChainMiddleware(BaseHTTPMiddleware):
    """Rate limiting, then challenge validation, then token authentication."""

    def __init__(
        self,
        app: ASGIApp,
        *,
        rate_limiter: RateLimiter | None = None,
        captcha: CaptchaService | None = None,
        tokens: TokenManager | None = None,
    ) -> None:
        super().__init__(app)
        self.rate_limiter = rate_limiter or RateLimiter()
        self.captcha = captcha or captcha_service
        self.tokens = tokens or token_manager

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        path = request.url.path
        if path in UNSECURED_PATHS:
            return await call_next(request)
        try:
            await run_in_threadpool(self._limit, request)
            if (request.method, path) in CHALLENGE_ENDPOINTS:
                await run_in_threadpool(self._challenge, request)
            principal = None
            if path not in PUBLIC_PATHS:
                principal = await run_in_threadpool(self._authenticate, request)
        except SecurityError as exc:
            return security_error_response(exc)

        request.state.principal = principal
        set_principal(principal)
        return await call_next(request)

    def _identity(self, request: Request) -> str:
        # runs before the token stage, so only the peer address is trusted
        return request.client.host if request.client is not None else "unknown"

    def _limit(self, request: Request) -> None:
        self.rate_limiter.hit(self._identity(request), request.url.path)

    def _challenge(self, request: Request) -> None:
        captcha_key = request.headers.get(CAPTCHA_KEY_HEADER) or request.query_params.get(CAPTCHA_KEY_PARAM)
        captcha_code = request.headers.get(CAPTCHA_CODE_HEADER) or request.query_params.get(CAPTCHA_CODE_PARAM)
        try:
            self.captcha.verify(captcha_key, captcha_code)
        except RedisError as exc:
            logger.warning("captcha store unavailable, rejecting request", exc_info=True)
            raise ChallengeInvalid("captcha unavailable") from exc

    def _authenticate(self, request: Request) -> Principal:
        return self.tokens.parse(bearer_token(request))
