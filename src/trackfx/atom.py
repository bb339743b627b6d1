"""Atoms — the smallest unit of observable state.

An Atom knows who observes it and tells them when it changes. Concrete
containers (Observable, ObservableList, ObservableDict) and Computed build
on it: they call report_observed() on every read and report_changed() after
every write.

The propagation functions below are the only code that flips the staleness
state of observers.
"""

from __future__ import annotations

from trackfx import _anchor
from trackfx._tracking import current_derivation, end_batch, queue_for_unobservation, start_batch
from trackfx.states import DerivationState


def default_equals(a: object, b: object) -> bool:
    """Whether a cell holding a would be unchanged by storing b."""
    return a is b or a == b


class Atom:
    """A reactive cell with an observer set and diagnostic name."""

    __slots__ = ("_id", "__weakref__")

    def __init__(self, name: str | None = None) -> None:
        self._id = _anchor.register(self, _anchor.Kind.ATOM)
        _anchor.names[self._id] = name or f"{type(self).__name__}@{self._id}"
        _anchor.observers[self._id] = set()
        _anchor.diff_values[self._id] = 0
        _anchor.lowest_observer_states[self._id] = DerivationState.NOT_TRACKING
        _anchor.last_accessed_by[self._id] = 0
        _anchor.pending_unobservation[self._id] = False

    @property
    def name(self) -> str:
        return _anchor.names[self._id]

    @property
    def observers(self) -> set:
        """Derivations currently observing this atom."""
        found = (_anchor.entities.get(d) for d in _anchor.observers[self._id])
        return {d for d in found if d is not None}

    @property
    def diff_value(self) -> int:
        return _anchor.diff_values[self._id]

    @property
    def lowest_observer_state(self) -> DerivationState:
        return DerivationState(_anchor.lowest_observer_states[self._id])

    def report_observed(self) -> bool:
        """Register a read. Returns True if a derivation is tracking."""
        report_observed(self._id)
        return current_derivation.get() is not None

    def report_changed(self) -> None:
        """Mark every observer stale. Reactions run when the batch ends."""
        start_batch()
        try:
            propagate_changed(self._id)
        finally:
            end_batch()

    def on_become_unobserved(self) -> None:
        """Called once the last observer is gone, at the end of a batch."""

    def __repr__(self) -> str:
        return f"Atom({self.name!r})"


def add_observer(atom_id: int, derivation_id: int) -> None:
    _anchor.observers[atom_id].add(derivation_id)
    state = _anchor.dependencies_state[derivation_id]
    if _anchor.lowest_observer_states[atom_id] > state:
        _anchor.lowest_observer_states[atom_id] = state


def remove_observer(atom_id: int, derivation_id: int) -> None:
    observers = _anchor.observers[atom_id]
    observers.discard(derivation_id)
    if not observers:
        queue_for_unobservation(atom_id)


def report_observed(atom_id: int) -> None:
    """Append atom_id to the tracking derivation's pending-read buffer.

    A second read within the same run is skipped by comparing run ids, so
    no set lookup is needed. Reads from nested derivations can still leave
    duplicates in the buffer; bind_dependencies removes those.
    """
    derivation = current_derivation.get()
    if derivation is not None:
        derivation_id = derivation._id
        run_id = _anchor.run_ids[derivation_id]
        if _anchor.last_accessed_by[atom_id] != run_id:
            _anchor.last_accessed_by[atom_id] = run_id
            if atom_id not in _anchor.retained:
                # Kept alive until it loses its last observer.
                _anchor.retained[atom_id] = _anchor.entities[atom_id]
            buffer = _anchor.new_observing[derivation_id]
            count = _anchor.unbound_deps_count[derivation_id]
            if count < len(buffer):
                buffer[count] = atom_id
            else:
                buffer.append(atom_id)
            _anchor.unbound_deps_count[derivation_id] = count + 1
    elif not _anchor.observers[atom_id]:
        queue_for_unobservation(atom_id)


def propagate_changed(atom_id: int) -> None:
    """A plain atom changed: every direct observer is definitely stale."""
    if _anchor.lowest_observer_states[atom_id] == DerivationState.STALE:
        return
    _anchor.lowest_observer_states[atom_id] = DerivationState.STALE

    states = _anchor.dependencies_state
    for derivation_id in _anchor.observers[atom_id]:
        if states[derivation_id] == DerivationState.UP_TO_DATE:
            _notify_stale(derivation_id)
        states[derivation_id] = DerivationState.STALE


def propagate_change_confirmed(atom_id: int) -> None:
    """A computed recomputed to a different value: possibly-stale observers become stale."""
    if _anchor.lowest_observer_states[atom_id] == DerivationState.STALE:
        return
    _anchor.lowest_observer_states[atom_id] = DerivationState.STALE

    states = _anchor.dependencies_state
    for derivation_id in _anchor.observers[atom_id]:
        if states[derivation_id] == DerivationState.POSSIBLY_STALE:
            states[derivation_id] = DerivationState.STALE
        elif states[derivation_id] == DerivationState.UP_TO_DATE:
            # The observer is mid-computation and already read the new value.
            _anchor.lowest_observer_states[atom_id] = DerivationState.UP_TO_DATE


def propagate_maybe_changed(atom_id: int) -> None:
    """A computed went stale: its up-to-date observers become possibly stale."""
    if _anchor.lowest_observer_states[atom_id] != DerivationState.UP_TO_DATE:
        return
    _anchor.lowest_observer_states[atom_id] = DerivationState.POSSIBLY_STALE

    states = _anchor.dependencies_state
    for derivation_id in _anchor.observers[atom_id]:
        if states[derivation_id] == DerivationState.UP_TO_DATE:
            states[derivation_id] = DerivationState.POSSIBLY_STALE
            _notify_stale(derivation_id)


def _notify_stale(derivation_id: int) -> None:
    derivation = _anchor.entities.get(derivation_id)
    if derivation is not None:  # collected, not yet purged
        derivation.on_become_stale()
