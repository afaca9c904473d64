"""Typed SQLAlchemy expression helpers for notification queries."""

from __future__ import annotations

from collections.abc import Iterable
from typing import Any, cast

from sqlalchemy.sql import ColumnElement


def eq(column: Any, value: Any) -> ColumnElement[bool]:
    return cast(ColumnElement[bool], column == value)


def is_in(column: Any, values: Iterable[Any]) -> ColumnElement[bool]:
    return cast(ColumnElement[bool], column.in_(list(values)))


def desc(column: Any) -> Any:
    return cast(Any, column).desc()
