from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status

from orgauth.api.deps import AuthContext, require_perm
from orgauth.domain.models import DepartmentForm, DepartmentRead, Option
from orgauth.domain.permissions import PERM_DEPT_ADD, PERM_DEPT_DELETE, PERM_DEPT_EDIT, PERM_DEPT_QUERY
from orgauth.services.department_service import (
    ConflictError,
    DepartmentError,
    DepartmentService,
    NotFoundError,
)

router = APIRouter()


def get_department_service() -> DepartmentService:
    return DepartmentService()


Service = Annotated[DepartmentService, Depends(get_department_service)]


def _handle_department_error(exc: Exception) -> None:
    if isinstance(exc, NotFoundError):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    if isinstance(exc, ConflictError):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    if isinstance(exc, DepartmentError):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    raise exc


def _parse_ids(raw: str) -> list[int]:
    try:
        return [int(item) for item in raw.split(",") if item.strip()]
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="invalid department ids") from exc


@router.get(
    "",
    response_model=list[DepartmentRead],
    dependencies=[Depends(require_perm(PERM_DEPT_QUERY))],
)
def list_departments(
    ctx: AuthContext,
    service: Service,
    keywords: Annotated[str | None, Query()] = None,
    status_filter: Annotated[int | None, Query(alias="status")] = None,
) -> list[DepartmentRead]:
    scope = ctx.scope_filter(dept_column="id")
    return service.list_departments(scope, keywords=keywords, status=status_filter)


@router.get("/options", response_model=list[Option])
def list_department_options(ctx: AuthContext, service: Service) -> list[Option]:
    return service.list_options(ctx.scope_filter(dept_column="id"), dept_id=ctx.principal.dept_id)


@router.post(
    "",
    response_model=DepartmentRead,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_perm(PERM_DEPT_ADD))],
)
def create_department(payload: DepartmentForm, service: Service) -> DepartmentRead:
    try:
        department = service.save_department(payload)
        return DepartmentRead.model_validate(department)
    except DepartmentError as exc:
        _handle_department_error(exc)
        raise


@router.put(
    "/{dept_id}",
    response_model=DepartmentRead,
    dependencies=[Depends(require_perm(PERM_DEPT_EDIT))],
)
def update_department(dept_id: int, payload: DepartmentForm, service: Service) -> DepartmentRead:
    try:
        department = service.save_department(payload, dept_id)
        return DepartmentRead.model_validate(department)
    except DepartmentError as exc:
        _handle_department_error(exc)
        raise


@router.delete(
    "/{ids}",
    status_code=status.HTTP_204_NO_CONTENT,
    dependencies=[Depends(require_perm(PERM_DEPT_DELETE))],
)
def delete_departments(ids: str, service: Service) -> Response:
    try:
        service.delete_departments(_parse_ids(ids))
    except DepartmentError as exc:
        _handle_department_error(exc)
        raise
    return Response(status_code=status.HTTP_204_NO_CONTENT)
