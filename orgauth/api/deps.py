from __future__ import annotations

from collections.abc import Callable
from typing import Annotated

from fastapi import Depends, Request

from orgauth.domain.errors import MissingCredentials
from orgauth.domain.principal import Principal
from orgauth.services.authorization_service import AuthorizationContext


def get_principal(request: Request) -> Principal:
    principal = getattr(request.state, "principal", None)
    if not isinstance(principal, Principal):
        raise MissingCredentials("authentication required")
    return principal


def get_authorization_context(
    principal: Annotated[Principal, Depends(get_principal)],
) -> AuthorizationContext:
    return AuthorizationContext(principal)


def require_perm(permission: str) -> Callable[[AuthorizationContext], AuthorizationContext]:
    def _checker(
        ctx: Annotated[AuthorizationContext, Depends(get_authorization_context)],
    ) -> AuthorizationContext:
        ctx.require(permission)
        return ctx

    return _checker


CurrentPrincipal = Annotated[Principal, Depends(get_principal)]
AuthContext = Annotated[AuthorizationContext, Depends(get_authorization_context)]
