from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response, status
from redis.exceptions import RedisError

from orgauth.api.deps import AuthContext, require_perm
from orgauth.api.middleware import bearer_token
from orgauth.api.routers.auth import get_auth_service
from orgauth.domain.models import PasswordChangeRequest, UserRead
from orgauth.domain.permissions import PERM_USER_PASSWORD, PERM_USER_QUERY
from orgauth.services.auth_service import AuthError, AuthService, NotFoundError
from orgauth.services.user_service import UserService

router = APIRouter()


def get_user_service() -> UserService:
    return UserService()


Service = Annotated[UserService, Depends(get_user_service)]


@router.get(
    "",
    response_model=list[UserRead],
    dependencies=[Depends(require_perm(PERM_USER_QUERY))],
)
def list_users(
    ctx: AuthContext,
    service: Service,
    keywords: Annotated[str | None, Query()] = None,
    dept_id: Annotated[int | None, Query(alias="deptId")] = None,
    status_filter: Annotated[int | None, Query(alias="status")] = None,
) -> list[UserRead]:
    rows = service.list_users(ctx.scope_filter(), keywords=keywords, dept_id=dept_id, status=status_filter)
    return [UserRead.model_validate(item) for item in rows]


@router.post("/{user_id}/password", status_code=status.HTTP_204_NO_CONTENT)
def change_password(
    user_id: int,
    payload: PasswordChangeRequest,
    request: Request,
    ctx: AuthContext,
    auth: Annotated[AuthService, Depends(get_auth_service)],
) -> Response:
    if user_id != ctx.principal.user_id:
        ctx.require(PERM_USER_PASSWORD)
    try:
        auth.change_password(ctx.principal, user_id, payload, bearer_token(request))
    except NotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except AuthError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except RedisError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="token store unavailable",
        ) from exc
    return Response(status_code=status.HTTP_204_NO_CONTENT)
