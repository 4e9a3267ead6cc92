"""Backend-agnostic row predicates.

A predicate is a small immutable expression tree. Services build it without
touching the persistence layer; ``orgauth.infra.query`` turns it into a
SQLAlchemy clause, and ``matches`` evaluates it against plain objects or
mappings.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import Any


class Predicate:
    def __and__(self, other: Predicate) -> Predicate:
        return and_(self, other)

    def __or__(self, other: Predicate) -> Predicate:
        return or_(self, other)

    def matches(self, row: Any) -> bool:
        raise NotImplementedError


def _value_of(row: Any, column: str) -> Any:
    if isinstance(row, Mapping):
        return row.get(column)
    return getattr(row, column, None)


@dataclass(frozen=True)
class Always(Predicate):
    def matches(self, row: Any) -> bool:
        return True


@dataclass(frozen=True)
class Never(Predicate):
    def matches(self, row: Any) -> bool:
        return False


@dataclass(frozen=True)
class Eq(Predicate):
    column: str
    value: Any

    def matches(self, row: Any) -> bool:
        return _value_of(row, self.column) == self.value


@dataclass(frozen=True)
class In(Predicate):
    column: str
    values: frozenset[Any]

    def matches(self, row: Any) -> bool:
        return _value_of(row, self.column) in self.values


@dataclass(frozen=True)
class And(Predicate):
    items: tuple[Predicate, ...]

    def matches(self, row: Any) -> bool:
        return all(item.matches(row) for item in self.items)


@dataclass(frozen=True)
class Or(Predicate):
    items: tuple[Predicate, ...]

    def matches(self, row: Any) -> bool:
        return any(item.matches(row) for item in self.items)


ALWAYS = Always()
NEVER = Never()


def eq(column: str, value: Any) -> Predicate:
    return Eq(column, value)


def in_(column: str, values: Iterable[Any]) -> Predicate:
    normalized = frozenset(values)
    if not normalized:
        return NEVER
    return In(column, normalized)


def and_(*items: Predicate) -> Predicate:
    flattened: list[Predicate] = []
    for item in items:
        if isinstance(item, Never):
            return NEVER
        if isinstance(item, Always):
            continue
        if isinstance(item, And):
            flattened.extend(item.items)
            continue
        flattened.append(item)
    if not flattened:
        return ALWAYS
    if len(flattened) == 1:
        return flattened[0]
    return And(tuple(flattened))


def or_(*items: Predicate) -> Predicate:
    flattened: list[Predicate] = []
    for item in items:
        if isinstance(item, Always):
            return ALWAYS
        if isinstance(item, Never):
            continue
        if isinstance(item, Or):
            flattened.extend(item.items)
            continue
        flattened.append(item)
    if not flattened:
        return NEVER
    if len(flattened) == 1:
        return flattened[0]
    return Or(tuple(flattened))
