"""Change records passed to observe() listeners."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True)
class ValueChange:
    """A single value was replaced."""

    object: Any
    old_value: Any
    new_value: Any
    type: str = "update"


@dataclass(frozen=True)
class ListChange:
    """An ObservableList changed.

    type is "update" (one slot replaced: old_value/new_value) or "splice"
    (removed items taken out and added items put in at index).
    """

    object: Any
    type: str
    index: int
    old_value: Any = None
    new_value: Any = None
    removed: list = field(default_factory=list)
    added: list = field(default_factory=list)


@dataclass(frozen=True)
class DictChange:
    """A key of an ObservableDict was added, updated or deleted."""

    object: Any
    type: str
    key: Any
    old_value: Any = None
    new_value: Any = None
