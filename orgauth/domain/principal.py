from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime


@dataclass(frozen=True)
class Principal:
    """Identity carried by a validated access token for one request."""

    user_id: int
    username: str
    dept_id: int | None = None
    role_codes: frozenset[str] = field(default_factory=frozenset)
    token_id: str | None = None
    session_id: str | None = None
    expires_at: datetime | None = None
