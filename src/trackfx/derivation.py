"""Dependency tracking engine — the heart of trackfx.

A derivation is anything whose inputs are discovered by running it: the
eager Reaction and the lazy Computed. Both are driven purely through the
functions in this module:

- track_derived_function() runs a body while collecting every atom it reads,
  then bind_dependencies() diffs that read-set against the previous one and
  updates subscriptions.
- should_compute() decides, without a full recompute, whether a possibly
  stale derivation really has to run again.
- clear_observing() drops every subscription of a derivation.
"""

from __future__ import annotations

from typing import Callable, Generic, TypeVar

from trackfx import _anchor
from trackfx._tracking import current_derivation, global_state, untracked_scope
from trackfx.atom import add_observer, remove_observer
from trackfx.errors import ComputedSideEffectError, StrictModeError
from trackfx.states import DerivationState

T = TypeVar("T")

# Room for variation in the number of reads between two runs.
_BUFFER_SLACK = 100


class Outcome(Generic[T]):
    """Result of a tracked evaluation: a value or the exception it raised."""

    __slots__ = ("value", "error")

    def __init__(self, value: T | None = None, error: Exception | None = None) -> None:
        self.value = value
        self.error = error

    @property
    def failed(self) -> bool:
        return self.error is not None

    def unwrap(self) -> T:
        """Return the value, or re-raise the captured exception."""
        if self.error is not None:
            raise self.error
        return self.value

    def __repr__(self) -> str:
        if self.error is not None:
            return f"Outcome(error={self.error!r})"
        return f"Outcome({self.value!r})"


class Derivation:
    """Shared bookkeeping for Computed and Reaction.

    Subclasses provide the _id slot and on_become_stale().
    """

    __slots__ = ()

    def _init_derivation(self) -> None:
        _anchor.observing[self._id] = []
        _anchor.new_observing[self._id] = None
        _anchor.unbound_deps_count[self._id] = 0
        _anchor.dependencies_state[self._id] = DerivationState.NOT_TRACKING
        _anchor.run_ids[self._id] = 0

    @property
    def name(self) -> str:
        return _anchor.names[self._id]

    @property
    def observing(self) -> list:
        """Atoms read during the last completed run, in first-read order."""
        return [_anchor.entities[a] for a in _anchor.observing[self._id]]

    @property
    def dependencies_state(self) -> DerivationState:
        return DerivationState(_anchor.dependencies_state[self._id])

    @property
    def run_id(self) -> int:
        return _anchor.run_ids[self._id]

    @property
    def unbound_deps_count(self) -> int:
        return _anchor.unbound_deps_count[self._id]

    def on_become_stale(self) -> None:
        """Called when a dependency may have changed. Subclasses must override."""
        raise NotImplementedError


def should_compute(derivation: Derivation) -> bool:
    """Find out whether any dependency of the derivation actually changed.

    For POSSIBLY_STALE derivations every computed dependency is brought up to
    date, in the order the dependencies were read on the last run. A computed
    whose value changed propagates STALE to this derivation, at which point
    the scan stops: later dependencies might not even be read by the rerun.
    """
    state = _anchor.dependencies_state[derivation._id]
    if state == DerivationState.UP_TO_DATE:
        return False
    if state != DerivationState.POSSIBLY_STALE:
        return True

    # Reads here must not be reported to whoever is asking; the rerun picks
    # them up again.
    with untracked_scope():
        for dep_id in _anchor.observing[derivation._id]:
            if _anchor.kinds[dep_id] is not _anchor.Kind.COMPUTED:
                continue
            try:
                _anchor.entities[dep_id].get()
            except Exception:
                # We are not interested in the value or the error here, only
                # that the dependency did not stay the same.
                return True
            if _anchor.dependencies_state[derivation._id] == DerivationState.STALE:
                return True
        change_dependencies_state_to_0(derivation)
        return False


def check_if_state_modifications_are_allowed(atom) -> None:
    """Validate that an atom may be mutated right now. Changes nothing."""
    has_observers = bool(_anchor.observers[atom._id])
    if not has_observers:
        return
    if global_state.computation_depth > 0:
        raise ComputedSideEffectError(
            "Computed values are not allowed to cause side effects by changing "
            f"observables that are already being observed: {atom.name}"
        )
    if not global_state.allow_state_changes:
        if global_state.strict_mode:
            raise StrictModeError(
                "Since strict-mode is enabled, changing observed observable values "
                "outside actions is not allowed. Please wrap the code in an `action` "
                f"if this change is intended. Tried to modify: {atom.name}"
            )
        raise StrictModeError(
            "Side effects like changing state are not allowed at this point. "
            f"Tried to modify: {atom.name}"
        )


def track_derived_function(derivation: Derivation, fn: Callable[[], T]) -> Outcome[T]:
    """Run fn and record which atoms it reads as the derivation's dependencies.

    Exceptions raised by fn are returned inside the Outcome: the reads made
    before the failure are still bound.
    """
    derivation_id = derivation._id
    change_dependencies_state_to_0(derivation)
    # Pre-allocate; bind_dependencies trims to the number of reads.
    _anchor.new_observing[derivation_id] = [None] * (
        len(_anchor.observing[derivation_id]) + _BUFFER_SLACK
    )
    _anchor.unbound_deps_count[derivation_id] = 0
    global_state.run_id += 1
    _anchor.run_ids[derivation_id] = global_state.run_id

    token = current_derivation.set(derivation)
    try:
        outcome = Outcome(fn())
    except Exception as e:
        outcome = Outcome(error=e)
    finally:
        current_derivation.reset(token)

    bind_dependencies(derivation)
    return outcome


def run_tracked(derivation: Derivation, fn: Callable[[], T]) -> T:
    """track_derived_function(), re-raising a failure once binding is done."""
    return track_derived_function(derivation, fn).unwrap()


def bind_dependencies(derivation: Derivation) -> None:
    """Diff the pending reads against the previous dependencies.

    Diff markers on atoms:
      after pass 1 — 1: read this run, 0: not read this run
      after pass 2 — 0 everywhere on previous deps; still 1 on new deps
      after pass 3 — 0 everywhere
    """
    derivation_id = derivation._id
    prev_observing = _anchor.observing[derivation_id]
    observing = _anchor.new_observing[derivation_id]
    _anchor.observing[derivation_id] = observing
    _anchor.new_observing[derivation_id] = None

    diff_values = _anchor.diff_values
    lowest_new_observing_state = DerivationState.UP_TO_DATE

    # Pass 1: dedupe the new reads (may contain duplicates), keeping first
    # occurrences in order.
    i0 = 0
    for i in range(_anchor.unbound_deps_count[derivation_id]):
        dep_id = observing[i]
        if diff_values[dep_id] == 0:
            diff_values[dep_id] = 1
            if i0 != i:
                observing[i0] = dep_id
            i0 += 1
        if _anchor.kinds[dep_id] is _anchor.Kind.COMPUTED:
            dep_state = _anchor.dependencies_state[dep_id]
            if dep_state > lowest_new_observing_state:
                lowest_new_observing_state = dep_state
    del observing[i0:]

    # Pass 2: previous deps (unique) not read this run lose their observer.
    for dep_id in reversed(prev_observing):
        if diff_values[dep_id] == 0:
            remove_observer(dep_id, derivation_id)
        diff_values[dep_id] = 0

    # Pass 3: deps still marked 1 were not observed before.
    for dep_id in reversed(observing):
        if diff_values[dep_id] == 1:
            diff_values[dep_id] = 0
            add_observer(dep_id, derivation_id)

    # A computed read during this run may have gone stale before we were
    # subscribed to it, so it could not notify us.
    if lowest_new_observing_state != DerivationState.UP_TO_DATE:
        _anchor.dependencies_state[derivation_id] = lowest_new_observing_state
        derivation.on_become_stale()


def clear_observing(derivation: Derivation) -> None:
    """Unsubscribe from every dependency and stop tracking."""
    derivation_id = derivation._id
    observing = _anchor.observing[derivation_id]
    _anchor.observing[derivation_id] = []
    for dep_id in reversed(observing):
        remove_observer(dep_id, derivation_id)
    _anchor.dependencies_state[derivation_id] = DerivationState.NOT_TRACKING


def change_dependencies_state_to_0(derivation: Derivation) -> None:
    """Force UP_TO_DATE, keeping each dependency's lowest_observer_state correct."""
    derivation_id = derivation._id
    if _anchor.dependencies_state[derivation_id] == DerivationState.UP_TO_DATE:
        return
    _anchor.dependencies_state[derivation_id] = DerivationState.UP_TO_DATE
    for dep_id in _anchor.observing[derivation_id]:
        _anchor.lowest_observer_states[dep_id] = DerivationState.UP_TO_DATE
