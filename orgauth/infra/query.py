from __future__ import annotations

from typing import Any

from sqlalchemy import and_, false, or_, true
from sqlalchemy.sql.elements import ColumnElement

from orgauth.domain.predicates import Always, And, Eq, In, Never, Or, Predicate


def _column(model: Any, name: str) -> Any:
    column = getattr(model, name, None)
    if column is None or not hasattr(column, "in_"):
        raise ValueError(f"{getattr(model, '__name__', model)!s} has no column {name!r}")
    return column


def to_clause(predicate: Predicate, model: Any) -> ColumnElement[bool]:
    """Translate a predicate tree into a SQLAlchemy clause against ``model``."""
    if isinstance(predicate, Always):
        return true()
    if isinstance(predicate, Never):
        return false()
    if isinstance(predicate, Eq):
        return _column(model, predicate.column) == predicate.value
    if isinstance(predicate, In):
        return _column(model, predicate.column).in_(sorted(predicate.values))
    if isinstance(predicate, And):
        return and_(*(to_clause(item, model) for item in predicate.items))
    if isinstance(predicate, Or):
        return or_(*(to_clause(item, model) for item in predicate.items))
    raise TypeError(f"unsupported predicate: {type(predicate).__name__}")
