"""Observable values — state that tracks its readers.

When an Observable is read inside a Computed or Reaction evaluation, the
dependency is registered through the Atom it is built on. Every mutation
first passes the mutation guard, then changes the stored data, then marks
observers stale and finally notifies observe() listeners with a change
record.

All state lives in _anchor — instances are thin handles holding an _id.
"""

from __future__ import annotations

from typing import Callable, Generic, Iterator, TypeVar

from trackfx import _anchor
from trackfx._tracking import end_batch, start_batch
from trackfx.atom import Atom, default_equals
from trackfx.changes import DictChange, ListChange, ValueChange
from trackfx.derivation import check_if_state_modifications_are_allowed

T = TypeVar("T")
KT = TypeVar("KT")
VT = TypeVar("VT")

Disposer = Callable[[], None]

_MISSING = object()


def _add_listener(atom_id: int, listener: Callable) -> Disposer:
    """Register a change listener. Returns a function that removes it."""
    _anchor.listeners[atom_id].append(listener)

    def _unsubscribe() -> None:
        try:
            _anchor.listeners[atom_id].remove(listener)
        except ValueError:
            pass  # already removed

    return _unsubscribe


def _notify_listeners(atom_id: int, change: object) -> None:
    for listener in list(_anchor.listeners[atom_id]):
        listener(change)


class Observable(Atom, Generic[T]):
    """A single observable value with automatic dependency tracking."""

    __slots__ = ()

    def __init__(self, value: T, name: str | None = None) -> None:
        super().__init__(name)
        _anchor.values[self._id] = value
        _anchor.listeners[self._id] = []

    def get(self) -> T:
        """Read the value. If inside a derivation, registers the dependency."""
        self.report_observed()
        return _anchor.values[self._id]

    def set(self, value: T) -> None:
        """Write a new value. Observers are only notified if it differs."""
        check_if_state_modifications_are_allowed(self)
        old = _anchor.values[self._id]
        if default_equals(old, value):
            return
        _anchor.values[self._id] = value
        self.report_changed()
        _notify_listeners(self._id, ValueChange(self, old, value))

    def observe(self, listener: Callable[[ValueChange], None], fire_immediately: bool = False) -> Disposer:
        """Call listener with a ValueChange after every change. Returns a disposer."""
        if fire_immediately:
            listener(ValueChange(self, None, _anchor.values[self._id]))
        return _add_listener(self._id, listener)

    def __repr__(self) -> str:
        return f"Observable({_anchor.values[self._id]!r})"


class ObservableList(Atom, Generic[T]):
    """An observable list that tracks reads and notifies on mutation.

    Any read operation (iteration, indexing, len) registers a dependency.
    Any mutation (append, extend, __setitem__, etc.) notifies observers.
    """

    __slots__ = ()

    def __init__(self, items: list[T] | None = None, name: str | None = None) -> None:
        super().__init__(name)
        _anchor.values[self._id] = list(items) if items else []
        _anchor.listeners[self._id] = []

    @property
    def _items(self) -> list[T]:
        return _anchor.values[self._id]

    def _splice(self, index: int, removed: list, added: list) -> None:
        self.report_changed()
        _notify_listeners(
            self._id, ListChange(self, "splice", index, removed=removed, added=added)
        )

    def _normalize(self, index: int) -> int:
        return index + len(self._items) if index < 0 else index

    def observe(self, listener: Callable[[ListChange], None], fire_immediately: bool = False) -> Disposer:
        """Call listener with a ListChange after every mutation. Returns a disposer."""
        if fire_immediately:
            listener(ListChange(self, "splice", 0, added=list(self._items)))
        return _add_listener(self._id, listener)

    # --- Read operations (track) ---

    def __getitem__(self, index: int) -> T:
        self.report_observed()
        return self._items[index]

    def __len__(self) -> int:
        self.report_observed()
        return len(self._items)

    def __iter__(self) -> Iterator[T]:
        self.report_observed()
        return iter(list(self._items))

    def __contains__(self, item: T) -> bool:
        self.report_observed()
        return item in self._items

    def __bool__(self) -> bool:
        self.report_observed()
        return bool(self._items)

    # --- Write operations (notify) ---

    def append(self, item: T) -> None:
        check_if_state_modifications_are_allowed(self)
        index = len(self._items)
        self._items.append(item)
        self._splice(index, [], [item])

    def extend(self, items) -> None:
        check_if_state_modifications_are_allowed(self)
        added = list(items)
        if not added:
            return
        index = len(self._items)
        self._items.extend(added)
        self._splice(index, [], added)

    def insert(self, index: int, item: T) -> None:
        check_if_state_modifications_are_allowed(self)
        index = min(max(self._normalize(index), 0), len(self._items))
        self._items.insert(index, item)
        self._splice(index, [], [item])

    def pop(self, index: int = -1) -> T:
        check_if_state_modifications_are_allowed(self)
        index = self._normalize(index)
        result = self._items.pop(index)
        self._splice(index, [result], [])
        return result

    def remove(self, item: T) -> None:
        check_if_state_modifications_are_allowed(self)
        index = self._items.index(item)
        del self._items[index]
        self._splice(index, [item], [])

    def clear(self) -> None:
        check_if_state_modifications_are_allowed(self)
        if not self._items:
            return
        removed = list(self._items)
        self._items.clear()
        self._splice(0, removed, [])

    def __setitem__(self, index: int, value: T) -> None:
        check_if_state_modifications_are_allowed(self)
        index = self._normalize(index)
        old = self._items[index]
        if default_equals(old, value):
            return
        self._items[index] = value
        self.report_changed()
        _notify_listeners(
            self._id, ListChange(self, "update", index, old_value=old, new_value=value)
        )

    def __delitem__(self, index: int) -> None:
        check_if_state_modifications_are_allowed(self)
        index = self._normalize(index)
        removed = self._items[index]
        del self._items[index]
        self._splice(index, [removed], [])

    def __repr__(self) -> str:
        return f"ObservableList({self._items!r})"


class ObservableDict(Atom, Generic[KT, VT]):
    """An observable dict that tracks reads and notifies on mutation."""

    __slots__ = ()

    def __init__(self, data: dict[KT, VT] | None = None, name: str | None = None) -> None:
        super().__init__(name)
        _anchor.values[self._id] = dict(data) if data else {}
        _anchor.listeners[self._id] = []

    @property
    def _data(self) -> dict[KT, VT]:
        return _anchor.values[self._id]

    def observe(self, listener: Callable[[DictChange], None], fire_immediately: bool = False) -> Disposer:
        """Call listener with a DictChange for every added, updated or deleted key."""
        if fire_immediately:
            for key, value in list(self._data.items()):
                listener(DictChange(self, "add", key, new_value=value))
        return _add_listener(self._id, listener)

    def observe_key(
        self, key: KT, listener: Callable[[ValueChange], None], fire_immediately: bool = False
    ) -> Disposer:
        """Call listener with a ValueChange whenever the value under key changes."""
        if fire_immediately:
            listener(ValueChange(self, None, self._data.get(key)))

        def _on_change(change: DictChange) -> None:
            if change.key == key:
                listener(ValueChange(self, change.old_value, change.new_value, change.type))

        return _add_listener(self._id, _on_change)

    # --- Read operations (track) ---

    def __getitem__(self, key: KT) -> VT:
        self.report_observed()
        return self._data[key]

    def get(self, key: KT, default: VT | None = None) -> VT | None:
        self.report_observed()
        return self._data.get(key, default)

    def __contains__(self, key: KT) -> bool:
        self.report_observed()
        return key in self._data

    def __len__(self) -> int:
        self.report_observed()
        return len(self._data)

    def __iter__(self) -> Iterator[KT]:
        self.report_observed()
        return iter(list(self._data))

    def keys(self):
        self.report_observed()
        return self._data.keys()

    def values(self):
        self.report_observed()
        return self._data.values()

    def items(self):
        self.report_observed()
        return self._data.items()

    def __bool__(self) -> bool:
        self.report_observed()
        return bool(self._data)

    # --- Write operations (notify) ---

    def __setitem__(self, key: KT, value: VT) -> None:
        check_if_state_modifications_are_allowed(self)
        old = self._data.get(key, _MISSING)
        if old is _MISSING:
            self._data[key] = value
            self.report_changed()
            _notify_listeners(self._id, DictChange(self, "add", key, new_value=value))
        elif not default_equals(old, value):
            self._data[key] = value
            self.report_changed()
            _notify_listeners(
                self._id, DictChange(self, "update", key, old_value=old, new_value=value)
            )

    def __delitem__(self, key: KT) -> None:
        check_if_state_modifications_are_allowed(self)
        old = self._data.pop(key)
        self.report_changed()
        _notify_listeners(self._id, DictChange(self, "delete", key, old_value=old))

    def pop(self, key: KT, *args) -> VT:
        check_if_state_modifications_are_allowed(self)
        if key not in self._data:
            return self._data.pop(key, *args)
        result = self._data[key]
        del self[key]
        return result

    def update(self, other=None, **kwargs) -> None:
        """Set several keys; observers run once, after all of them."""
        check_if_state_modifications_are_allowed(self)
        start_batch()
        try:
            for key, value in dict(other or (), **kwargs).items():
                self[key] = value
        finally:
            end_batch()

    def clear(self) -> None:
        check_if_state_modifications_are_allowed(self)
        start_batch()
        try:
            for key in list(self._data):
                del self[key]
        finally:
            end_batch()

    def setdefault(self, key: KT, default: VT | None = None) -> VT:
        if key not in self._data:
            self[key] = default
        return self.get(key)

    def __repr__(self) -> str:
        return f"ObservableDict({self._data!r})"
