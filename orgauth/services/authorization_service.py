from __future__ import annotations

import logging

from orgauth.domain.errors import AuthorizationDenied
from orgauth.domain.models import DataScope
from orgauth.domain.permissions import has_permission, is_root
from orgauth.domain.predicates import Predicate
from orgauth.domain.principal import Principal
from orgauth.services.data_scope_service import DataScopeResolver, build_scope_filter, data_scope_resolver
from orgauth.services.department_service import DepartmentService
from orgauth.services.permission_index_service import PermissionIndex, permission_index

logger = logging.getLogger(__name__)


class AuthorizationContext:
    """Per-request view of what a principal may do and see.

    Permissions and data scope are looked up on first use and kept for the
    lifetime of the context.
    """

    def __init__(
        self,
        principal: Principal,
        *,
        index: PermissionIndex | None = None,
        resolver: DataScopeResolver | None = None,
        hierarchy: DepartmentService | None = None,
    ) -> None:
        self.principal = principal
        self._index = index or permission_index
        self._resolver = resolver or data_scope_resolver
        self._hierarchy = hierarchy or DepartmentService()
        self._permissions: frozenset[str] | None = None
        self._data_scope: DataScope | None = None

    @property
    def is_root(self) -> bool:
        return is_root(self.principal.role_codes)

    @property
    def permissions(self) -> frozenset[str]:
        if self._permissions is None:
            self._permissions = self._index.permissions_for(self.principal.role_codes)
        return self._permissions

    @property
    def data_scope(self) -> DataScope:
        if self._data_scope is None:
            self._data_scope = self._resolver.resolve(self.principal.role_codes)
        return self._data_scope

    def has_permission(self, permission: str) -> bool:
        if self.is_root:
            return True
        return has_permission(self.permissions, permission)

    def require(self, permission: str) -> None:
        if not self.has_permission(permission):
            logger.warning("permission %s denied for user %s", permission, self.principal.username)
            raise AuthorizationDenied(f"Missing permission: {permission}")

    def scope_filter(self, dept_column: str = "dept_id", owner_column: str = "created_by") -> Predicate:
        return build_scope_filter(
            self.data_scope,
            dept_id=self.principal.dept_id,
            user_id=self.principal.user_id,
            descendants_of=self._hierarchy.descendants_of,
            dept_column=dept_column,
            owner_column=owner_column,
        )
