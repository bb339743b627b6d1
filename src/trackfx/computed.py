"""Computed values — derived state with automatic dependency tracking.

A Computed wraps a function. While observed, it tracks which atoms the
function reads and caches the result. When a dependency changes, the
computed becomes stale; on the next read it checks whether it really has to
recompute and, if its value changed, tells its own observers.

Computed values are lazy — they only recompute when read. A computed read
outside any reaction or batch has nothing that could invalidate a cache, so
it simply evaluates its function.

All bookkeeping lives in _anchor — instances are thin handles holding an _id.
"""

from __future__ import annotations

import logging
from typing import Callable, Generic, TypeVar

from trackfx import _anchor
from trackfx._tracking import (
    current_derivation,
    end_batch,
    global_state,
    start_batch,
    untracked_scope,
)
from trackfx.atom import (
    Atom,
    default_equals,
    propagate_change_confirmed,
    propagate_maybe_changed,
    report_observed,
)
from trackfx.changes import ValueChange
from trackfx.derivation import (
    Derivation,
    Outcome,
    clear_observing,
    should_compute,
    track_derived_function,
)
from trackfx.errors import CycleError
from trackfx.states import DerivationState
from trackfx.reaction import autorun

T = TypeVar("T")

logger = logging.getLogger("trackfx.computed")

_UNSET = object()


class Computed(Atom, Derivation, Generic[T]):
    """A derived value that auto-tracks dependencies and caches the result."""

    __slots__ = ("_equals", "_is_computing")

    def __init__(
        self,
        fn: Callable[[], T],
        name: str | None = None,
        equals: Callable[[T, T], bool] | None = None,
    ) -> None:
        super().__init__(name or getattr(fn, "__name__", None))
        _anchor.kinds[self._id] = _anchor.Kind.COMPUTED
        # Nothing observes it yet, so nothing can be stale through it.
        _anchor.lowest_observer_states[self._id] = DerivationState.UP_TO_DATE
        self._init_derivation()
        _anchor.derivation_fns[self._id] = fn
        _anchor.disposed[self._id] = False
        _anchor.values[self._id] = _UNSET
        self._equals = equals or default_equals
        self._is_computing = False

    @property
    def _fn(self) -> Callable[[], T]:
        return _anchor.derivation_fns[self._id]

    @property
    def is_disposed(self) -> bool:
        return _anchor.disposed[self._id]

    def get(self) -> T:
        """Read the computed value. Recomputes only if a dependency changed."""
        if self._is_computing:
            raise CycleError(f"Cycle detected in computation {self.name}")
        if _anchor.disposed[self._id]:
            # Out of the graph: a plain call, its reads go to whoever is tracking.
            return self._compute_value(track=False).unwrap()
        # Read from plain code with no observers: nothing could invalidate a
        # cache, so evaluate without subscribing to anything.
        untracked_read = (
            global_state.in_batch == 0
            and current_derivation.get() is None
            and not _anchor.observers[self._id]
        )
        start_batch()
        try:
            if untracked_read:
                if should_compute(self):
                    _anchor.values[self._id] = self._compute_value(track=False)
            else:
                report_observed(self._id)
                if should_compute(self) and self._track_and_compute():
                    propagate_change_confirmed(self._id)
            result = _anchor.values[self._id]
        finally:
            end_batch()
        return result.unwrap()

    def _compute_value(self, track: bool) -> Outcome[T]:
        self._is_computing = True
        global_state.computation_depth += 1
        try:
            if track:
                return track_derived_function(self, self._fn)
            try:
                return Outcome(self._fn())
            except Exception as e:
                return Outcome(error=e)
        finally:
            global_state.computation_depth -= 1
            self._is_computing = False

    def _track_and_compute(self) -> bool:
        """Recompute with tracking. Returns True if the value changed."""
        old = _anchor.values[self._id]
        new = self._compute_value(track=True)
        _anchor.values[self._id] = new
        if old is _UNSET or old.failed or new.failed:
            return True
        return not self._equals(old.value, new.value)

    def on_become_stale(self) -> None:
        propagate_maybe_changed(self._id)

    def on_become_unobserved(self) -> None:
        logger.debug("%s became unobserved, releasing dependencies", self.name)
        clear_observing(self)
        _anchor.values[self._id] = _UNSET

    def dispose(self) -> None:
        """Disconnect from all dependencies and drop the cached value.

        A disposed computed never caches or subscribes again: get() just
        calls its function.
        """
        _anchor.disposed[self._id] = True
        start_batch()
        try:
            clear_observing(self)
            _anchor.values[self._id] = _UNSET
        finally:
            end_batch()

    def observe(self, listener: Callable[[ValueChange], None], fire_immediately: bool = False):
        """Call listener with a ValueChange whenever the computed value changes.

        Returns a disposer.
        """
        first_time = True
        prev_value = None

        def _watch() -> None:
            nonlocal first_time, prev_value
            new_value = self.get()
            if not first_time or fire_immediately:
                with untracked_scope():
                    listener(ValueChange(self, prev_value, new_value))
            first_time = False
            prev_value = new_value

        return autorun(_watch, name=f"{self.name}.observe").dispose

    def __repr__(self) -> str:
        val = _anchor.values[self._id]
        state = "unset" if val is _UNSET else f"cached={val!r}"
        return f"Computed({self.name}, {self.dependencies_state.name}, {state})"


def computed(fn: Callable[[], T]) -> Computed[T]:
    """Decorator/factory to create a Computed from a function.

    Usage:
        counter = Observable(0)

        @computed
        def doubled():
            return counter.get() * 2

        doubled.get()  # 0
        counter.set(5)
        doubled.get()  # 10
    """
    return Computed(fn)
