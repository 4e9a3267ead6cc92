from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Response, status

from orgauth.api.deps import require_perm
from orgauth.domain.models import RoleCreate, RoleMenuAssign, RoleRead, RoleUpdate
from orgauth.domain.permissions import PERM_ROLE_ADD, PERM_ROLE_DELETE, PERM_ROLE_EDIT, PERM_ROLE_QUERY
from orgauth.services.role_service import ConflictError, NotFoundError, RoleError, RoleService

router = APIRouter()


def get_role_service() -> RoleService:
    return RoleService()


Service = Annotated[RoleService, Depends(get_role_service)]


def _handle_role_error(exc: Exception) -> None:
    if isinstance(exc, NotFoundError):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    if isinstance(exc, ConflictError):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    raise exc


@router.get(
    "",
    response_model=list[RoleRead],
    dependencies=[Depends(require_perm(PERM_ROLE_QUERY))],
)
def list_roles(service: Service) -> list[RoleRead]:
    return [RoleRead.model_validate(item) for item in service.list_roles()]


@router.post(
    "",
    response_model=RoleRead,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_perm(PERM_ROLE_ADD))],
)
def create_role(payload: RoleCreate, service: Service) -> RoleRead:
    try:
        return RoleRead.model_validate(service.create_role(payload))
    except RoleError as exc:
        _handle_role_error(exc)
        raise


@router.get(
    "/{role_id}",
    response_model=RoleRead,
    dependencies=[Depends(require_perm(PERM_ROLE_QUERY))],
)
def get_role(role_id: int, service: Service) -> RoleRead:
    try:
        return RoleRead.model_validate(service.get_role(role_id))
    except RoleError as exc:
        _handle_role_error(exc)
        raise


@router.put(
    "/{role_id}",
    response_model=RoleRead,
    dependencies=[Depends(require_perm(PERM_ROLE_EDIT))],
)
def update_role(role_id: int, payload: RoleUpdate, service: Service) -> RoleRead:
    try:
        return RoleRead.model_validate(service.update_role(role_id, payload))
    except RoleError as exc:
        _handle_role_error(exc)
        raise


@router.get(
    "/{role_id}/menus",
    response_model=list[int],
    dependencies=[Depends(require_perm(PERM_ROLE_EDIT))],
)
def list_role_menus(role_id: int, service: Service) -> list[int]:
    try:
        return service.list_menu_ids(role_id)
    except RoleError as exc:
        _handle_role_error(exc)
        raise


@router.put(
    "/{role_id}/menus",
    response_model=list[int],
    dependencies=[Depends(require_perm(PERM_ROLE_EDIT))],
)
def assign_role_menus(role_id: int, payload: RoleMenuAssign, service: Service) -> list[int]:
    try:
        return service.assign_menus(role_id, payload)
    except RoleError as exc:
        _handle_role_error(exc)
        raise


@router.delete(
    "/{role_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    dependencies=[Depends(require_perm(PERM_ROLE_DELETE))],
)
def delete_role(role_id: int, service: Service) -> Response:
    try:
        service.delete_role(role_id)
    except RoleError as exc:
        _handle_role_error(exc)
        raise
    return Response(status_code=status.HTTP_204_NO_CONTENT)
