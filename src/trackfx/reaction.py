"""Reactions — side effects triggered by observable state changes.

Unlike Computed (which is lazy and only evaluates on read), a Reaction
eagerly re-runs its side effect whenever its tracked dependencies change.
Before running, it asks should_compute(): a reaction that only depends on
computeds whose values came out the same is skipped.

Two flavors:
- autorun(fn): runs fn immediately, re-runs when any observable it read changes.
- reaction(data_fn, effect_fn): tracks data_fn, calls effect_fn with the new value
  only when data_fn's result changes.

All bookkeeping lives in _anchor — instances are thin handles holding an _id.
"""

from __future__ import annotations

import logging
from typing import Callable, TypeVar

from trackfx import _anchor
from trackfx._tracking import end_batch, global_state, run_reactions, start_batch
from trackfx.action import action
from trackfx.atom import default_equals
from trackfx.derivation import Derivation, clear_observing, should_compute, track_derived_function

T = TypeVar("T")

logger = logging.getLogger("trackfx.reaction")

ErrorHandler = Callable[[Exception, "Reaction"], None]


class Reaction(Derivation):
    """A reactive side effect that re-runs when its dependencies change.

    on_invalidate is called (inside a batch) whenever the reaction has to
    run; it is expected to call track() with the function whose reads should
    be tracked.
    """

    __slots__ = (
        "_id",
        "_on_invalidate",
        "_is_scheduled",
        "_is_running",
        "_error_handlers",
        "__weakref__",
    )

    def __init__(self, on_invalidate: Callable[[], None], name: str | None = None) -> None:
        self._id = _anchor.register(self, _anchor.Kind.REACTION)
        # Alive until disposed, even with no outside reference.
        _anchor.retained[self._id] = self
        _anchor.names[self._id] = name or f"Reaction@{self._id}"
        _anchor.disposed[self._id] = False
        self._init_derivation()
        self._on_invalidate = on_invalidate
        self._is_scheduled = False
        self._is_running = False
        self._error_handlers: list[ErrorHandler] = []

    @property
    def is_disposed(self) -> bool:
        return _anchor.disposed[self._id]

    @property
    def is_scheduled(self) -> bool:
        return self._is_scheduled

    def on_become_stale(self) -> None:
        self.schedule()

    def schedule(self) -> None:
        """Queue this reaction. Runs now unless a batch is in progress."""
        if not self._is_scheduled:
            self._is_scheduled = True
            global_state.pending_reactions.append(self)
            run_reactions()

    def run_reaction(self) -> None:
        """Called by the scheduler. Skips the run if no dependency really changed."""
        if self.is_disposed:
            return
        start_batch()
        try:
            self._is_scheduled = False
            if should_compute(self):
                try:
                    self._on_invalidate()
                except Exception as e:
                    self._report_exception(e)
        finally:
            end_batch()

    def track(self, fn: Callable[[], object]) -> None:
        """Run fn, re-tracking this reaction's dependencies."""
        start_batch()
        try:
            self._is_running = True
            try:
                outcome = track_derived_function(self, fn)
            finally:
                self._is_running = False
                if self.is_disposed:
                    # Disposed from inside its own run; release what was just bound.
                    self._release()
            if outcome.failed:
                self._report_exception(outcome.error)
        finally:
            end_batch()

    def on_error(self, handler: ErrorHandler) -> Callable[[], None]:
        """Handle exceptions raised by this reaction. Returns a disposer."""
        self._error_handlers.append(handler)

        def _remove() -> None:
            try:
                self._error_handlers.remove(handler)
            except ValueError:
                pass  # already removed

        return _remove

    def _report_exception(self, error: Exception) -> None:
        if self._error_handlers:
            for handler in list(self._error_handlers):
                handler(error, self)
            return
        logger.error(
            "Encountered an uncaught exception that was thrown by a reaction, in: %r",
            self,
            exc_info=error,
        )
        for handler in list(global_state.reaction_error_handlers):
            handler(error, self)

    def dispose(self) -> None:
        """Stop this reaction. Disconnects from all dependencies."""
        if self.is_disposed:
            return
        _anchor.disposed[self._id] = True
        if not self._is_running:
            start_batch()
            try:
                self._release()
            finally:
                end_batch()

    def _release(self) -> None:
        clear_observing(self)
        _anchor.retained.pop(self._id, None)

    def __repr__(self) -> str:
        state = "disposed" if self.is_disposed else "active"
        return f"Reaction({self.name}, {state})"


def on_reaction_error(handler: ErrorHandler) -> Callable[[], None]:
    """Register a handler for exceptions of reactions without their own handler.

    Returns a disposer.
    """
    global_state.reaction_error_handlers.append(handler)

    def _remove() -> None:
        try:
            global_state.reaction_error_handlers.remove(handler)
        except ValueError:
            pass

    return _remove


def autorun(fn: Callable[[], None], name: str | None = None) -> Reaction:
    """Run fn immediately, then re-run whenever any observable it reads changes.

    Returns the Reaction (call .dispose() to stop).

    Usage:
        counter = Observable(0)
        log = []

        r = autorun(lambda: log.append(counter.get()))
        # log == [0] — ran immediately

        counter.set(1)
        # log == [0, 1] — re-ran because counter changed

        r.dispose()
        counter.set(2)
        # log == [0, 1] — stopped
    """
    r = Reaction(lambda: r.track(fn), name=name or f"Autorun@{getattr(fn, '__name__', 'fn')}")
    r.schedule()  # Initial run to establish dependencies
    return r


def reaction(
    data_fn: Callable[[], T],
    effect_fn: Callable[[T], None],
    *,
    fire_immediately: bool = False,
    name: str | None = None,
) -> Reaction:
    """Track data_fn's observables; call effect_fn when the result changes.

    Unlike autorun, effect_fn only fires when data_fn's *return value* changes,
    not on every dependency notification. effect_fn runs as an action: it is
    not tracked and may change state in strict mode.

    Returns the reaction (call .dispose() to stop).

    Usage:
        first = Observable("Alice")
        last = Observable("Smith")

        effects = []
        r = reaction(
            lambda: f"{first.get()} {last.get()}",
            lambda name: effects.append(name),
        )
        # effects == [] — data_fn ran to establish deps, but effect doesn't fire yet

        first.set("Bob")
        # effects == ["Bob Smith"]

        r.dispose()
    """
    effect = action(effect_fn)
    first_time = True
    value: T | None = None
    changed = False

    def _track_data() -> None:
        nonlocal value, changed
        new_value = data_fn()
        changed = first_time or not default_equals(value, new_value)
        value = new_value

    def _runner() -> None:
        nonlocal first_time, changed
        if r.is_disposed:
            return
        changed = False
        r.track(_track_data)
        if first_time:
            first_time = False
            if fire_immediately and changed:
                effect(value)
        elif changed:
            effect(value)

    r = Reaction(_runner, name=name or f"Reaction@{getattr(data_fn, '__name__', 'fn')}")
    r.schedule()
    return r
