from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status
from redis.exceptions import RedisError

from orgauth.api.deps import AuthContext, CurrentPrincipal, require_perm
from orgauth.api.middleware import bearer_token
from orgauth.domain.models import (
    CaptchaResponse,
    CurrentUserResponse,
    LoginRequest,
    OnlineUserRead,
    RefreshTokenRequest,
    TokenResponse,
)
from orgauth.domain.permissions import PERM_USER_ONLINE
from orgauth.infra.auth import TokenPair
from orgauth.services.auth_service import AuthError, AuthService
from orgauth.services.captcha_service import CaptchaService, captcha_service
from orgauth.services.online_user_registry import OnlineUserRegistry

router = APIRouter()


def get_online_registry(request: Request) -> OnlineUserRegistry:
    return request.app.state.online_users


def get_auth_service(
    registry: Annotated[OnlineUserRegistry, Depends(get_online_registry)],
) -> AuthService:
    return AuthService(registry)


def get_captcha_service() -> CaptchaService:
    return captcha_service


Service = Annotated[AuthService, Depends(get_auth_service)]
Registry = Annotated[OnlineUserRegistry, Depends(get_online_registry)]


def _token_response(tokens: TokenPair) -> TokenResponse:
    return TokenResponse(
        access_token=tokens.access_token,
        refresh_token=tokens.refresh_token,
        token_type=tokens.token_type,
        expires_in=tokens.expires_in,
    )


def _store_unavailable(exc: RedisError) -> None:
    raise HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail="token store unavailable",
    ) from exc


@router.get("/captcha", response_model=CaptchaResponse)
def issue_captcha(captcha: Annotated[CaptchaService, Depends(get_captcha_service)]) -> CaptchaResponse:
    try:
        return captcha.issue()
    except RedisError as exc:
        _store_unavailable(exc)
        raise


@router.post("/login", response_model=TokenResponse)
def login(payload: LoginRequest, service: Service) -> TokenResponse:
    try:
        _, tokens = service.login(payload.username, payload.password)
    except AuthError as exc:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=str(exc)) from exc
    return _token_response(tokens)


@router.post("/refresh-token", response_model=TokenResponse)
def refresh_token(payload: RefreshTokenRequest, service: Service) -> TokenResponse:
    return _token_response(service.refresh(payload.refresh_token))


@router.delete("/logout", status_code=status.HTTP_204_NO_CONTENT)
def logout(request: Request, principal: CurrentPrincipal, service: Service) -> Response:
    try:
        service.logout(principal, bearer_token(request))
    except RedisError as exc:
        _store_unavailable(exc)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/me", response_model=CurrentUserResponse)
def current_user(ctx: AuthContext) -> CurrentUserResponse:
    principal = ctx.principal
    return CurrentUserResponse(
        user_id=principal.user_id,
        username=principal.username,
        dept_id=principal.dept_id,
        roles=sorted(principal.role_codes),
        permissions=sorted(ctx.permissions),
        data_scope=ctx.data_scope,
    )


@router.get(
    "/online-users",
    response_model=list[OnlineUserRead],
    dependencies=[Depends(require_perm(PERM_USER_ONLINE))],
)
def list_online_users(registry: Registry) -> list[OnlineUserRead]:
    return [
        OnlineUserRead(username=item.username, session_id=item.session_id, login_time=item.login_time)
        for item in registry.list()
    ]
