from __future__ import annotations

from contextvars import ContextVar

from orgauth.domain.principal import Principal

principal_ctx: ContextVar[Principal | None] = ContextVar("principal", default=None)


def set_principal(principal: Principal | None) -> None:
    principal_ctx.set(principal)


def get_user_id() -> int | None:
    principal = principal_ctx.get()
    return principal.user_id if principal is not None else None
