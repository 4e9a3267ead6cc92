from __future__ import annotations

from collections.abc import Iterable
from fnmatch import fnmatchcase

ROOT_ROLE_CODE = "ROOT"

PERM_DEPT_QUERY = "sys:dept:query"
PERM_DEPT_ADD = "sys:dept:add"
PERM_DEPT_EDIT = "sys:dept:edit"
PERM_DEPT_DELETE = "sys:dept:delete"
PERM_ROLE_QUERY = "sys:role:query"
PERM_ROLE_ADD = "sys:role:add"
PERM_ROLE_EDIT = "sys:role:edit"
PERM_ROLE_DELETE = "sys:role:delete"
PERM_USER_QUERY = "sys:user:query"
PERM_USER_ONLINE = "sys:user:online"
PERM_USER_PASSWORD = "sys:user:password"


def is_root(role_codes: Iterable[str]) -> bool:
    return ROOT_ROLE_CODE in set(role_codes)


def has_permission(held: Iterable[str], required: str) -> bool:
    """True when any held permission pattern matches ``required``.

    Held permissions may carry shell-style wildcards (``sys:user:*``).
    """
    if not required:
        return False
    return any(fnmatchcase(required, pattern) for pattern in held if pattern)
