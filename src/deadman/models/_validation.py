"""Checks run by the model constructors.

Every helper raises ``TypeError`` for a value of the wrong Python type and
``ValueError`` for a value of the right type that is out of range, so a
model instance that exists is always valid.
"""

from __future__ import annotations

import re
from typing import Any


_LOWER_HEX = re.compile(r"[0-9a-f]+")


def _type_error(name: str, expected: str, value: Any) -> TypeError:
    return TypeError(f"{name}: expected {expected}, got {type(value).__name__}")


def require_type(value: Any, expected: type, name: str) -> None:
    if not isinstance(value, expected):
        raise _type_error(name, expected.__name__, value)


def _require_int(value: Any, name: str) -> int:
    # bool is an int subclass but never a valid count or timestamp
    if type(value) is bool or not isinstance(value, int):
        raise _type_error(name, "int", value)
    return value


def require_count(value: Any, name: str) -> None:
    """Non-negative ``int``: timestamps, counters, kinds."""
    if _require_int(value, name) < 0:
        raise ValueError(f"{name} must be non-negative, got {value}")


def require_positive(value: Any, name: str) -> None:
    if _require_int(value, name) < 1:
        raise ValueError(f"{name} must be at least 1, got {value}")


def require_text(value: Any, name: str) -> None:
    if not isinstance(value, str):
        raise _type_error(name, "str", value)
    if not value:
        raise ValueError(f"{name} must not be empty")
    if "\x00" in value:
        raise ValueError(f"{name} contains a NUL byte")


def require_hex(value: Any, name: str, length: int) -> None:
    require_text(value, name)
    if len(value) != length or not _LOWER_HEX.fullmatch(value):
        raise ValueError(f"{name} must be {length} lowercase hex characters")


def require_tags(value: Any, name: str) -> None:
    """A tuple of non-empty tuples of NUL-free strings."""
    require_type(value, tuple, name)
    for tag in value:
        if not isinstance(tag, tuple) or not tag:
            raise ValueError(f"{name}: every tag must be a non-empty tuple")
        if any(not isinstance(item, str) or "\x00" in item for item in tag):
            raise ValueError(f"{name}: tag items must be NUL-free strings")


def require_unique_strings(value: Any, name: str) -> None:
    """A tuple of distinct non-empty strings, such as a relay set."""
    require_type(value, tuple, name)
    for item in value:
        require_text(item, name)
    if len(frozenset(value)) < len(value):
        raise ValueError(f"{name} contains duplicates")
