"""Tracking context — process-wide state the engine reads and writes.

The currently-evaluating derivation lives in a contextvar. Every place that
changes it keeps the token of the previous value on its own call stack and
resets it on exit, so nested tracking and untracked scopes always restore
the exact previous derivation.

Batching: mutations inside a batch accumulate scheduled reactions and
unobserved atoms, and flush them once when the outermost batch ends.
"""

from __future__ import annotations

import contextvars
import logging
from contextlib import contextmanager
from typing import TYPE_CHECKING, Callable, Iterator, TypeVar

from trackfx import _anchor

if TYPE_CHECKING:
    from trackfx.computed import Computed
    from trackfx.reaction import Reaction

    Derivation = Computed | Reaction

T = TypeVar("T")

logger = logging.getLogger("trackfx.tracking")

MAX_REACTION_ITERATIONS = 100

# The currently-evaluating derivation (computed or reaction).
# When set, any atom read registers itself as a dependency.
current_derivation: contextvars.ContextVar[Derivation | None] = contextvars.ContextVar(
    "current_derivation", default=None
)


class TrackingContext:
    """Counters and queues shared by every derivation in the process."""

    __slots__ = (
        "run_id",
        "computation_depth",
        "allow_state_changes",
        "strict_mode",
        "in_batch",
        "pending_reactions",
        "pending_unobservations",
        "is_running_reactions",
        "reaction_error_handlers",
    )

    def __init__(self) -> None:
        # Strictly increasing; each tracking pass takes the next value.
        self.run_id = 0
        # Number of computed values currently evaluating.
        self.computation_depth = 0
        self.allow_state_changes = True
        self.strict_mode = False
        self.in_batch = 0
        self.pending_reactions: list[Reaction] = []
        self.pending_unobservations: list[int] = []
        self.is_running_reactions = False
        self.reaction_error_handlers: list[Callable] = []


global_state = TrackingContext()


def is_computing_derivation() -> bool:
    """True while some derivation is collecting reads."""
    return current_derivation.get() is not None


# ─── Untracked scope ─────────────────────────────────────────────────────────


def untracked_start() -> contextvars.Token:
    """Suspend read tracking. Returns the token restoring the previous derivation."""
    return current_derivation.set(None)


def untracked_end(prev: contextvars.Token) -> None:
    current_derivation.reset(prev)


@contextmanager
def untracked_scope() -> Iterator[None]:
    """Reads inside this block are not attributed to any derivation."""
    token = untracked_start()
    try:
        yield
    finally:
        untracked_end(token)


def untracked(fn: Callable[[], T]) -> T:
    """Run fn without tracking and return its result.

    Usage:
        @computed
        def label():
            # depends on name, not on the debug flag
            return name.get() + untracked(lambda: debug_suffix.get())
    """
    with untracked_scope():
        return fn()


# ─── State-change window ─────────────────────────────────────────────────────


def allow_state_changes_start(allow: bool) -> bool:
    prev = global_state.allow_state_changes
    global_state.allow_state_changes = allow
    return prev


def allow_state_changes_end(prev: bool) -> None:
    global_state.allow_state_changes = prev


# ─── Batching ────────────────────────────────────────────────────────────────


def start_batch() -> None:
    """Enter a batching scope. Nested batches are supported."""
    global_state.in_batch += 1


def end_batch() -> None:
    """Exit a batching scope.

    When the outermost scope exits, run pending reactions, purge the rows
    of collected instances, then let every atom that lost its last observer
    release its resources.
    """
    global_state.in_batch -= 1
    if global_state.in_batch == 0:
        run_reactions()
        while _anchor.collected:
            for atom_id in _anchor.purge(_anchor.collected.pop()):
                queue_for_unobservation(atom_id)
        pending = global_state.pending_unobservations
        # Releasing a computed can queue its own dependencies; keep draining.
        i = 0
        while i < len(pending):
            atom_id = pending[i]
            i += 1
            atom = _anchor.entities.get(atom_id)
            if atom is None:
                continue  # collected; purged at a later batch end
            _anchor.pending_unobservation[atom_id] = False
            if not _anchor.observers[atom_id]:
                atom.on_become_unobserved()
                _anchor.retained.pop(atom_id, None)
        global_state.pending_unobservations = []


def queue_for_unobservation(atom_id: int) -> None:
    if not _anchor.pending_unobservation[atom_id]:
        _anchor.pending_unobservation[atom_id] = True
        global_state.pending_unobservations.append(atom_id)


def run_reactions() -> None:
    """Run all scheduled reactions. Handles reactions scheduled during the run."""
    if global_state.in_batch > 0 or global_state.is_running_reactions:
        return
    global_state.is_running_reactions = True
    try:
        pending = global_state.pending_reactions
        iterations = 0
        while pending:
            iterations += 1
            if iterations == MAX_REACTION_ITERATIONS:
                logger.error(
                    "Reaction doesn't converge to a stable state after %d iterations. "
                    "Probably there is a cycle in the reactive function: %r",
                    MAX_REACTION_ITERATIONS,
                    pending[0],
                )
                pending.clear()
                break
            # Snapshot and clear — reactions may schedule new ones during run.
            batch = list(pending)
            pending.clear()
            for reaction in batch:
                reaction.run_reaction()
    finally:
        global_state.is_running_reactions = False


def get_pending_count() -> int:
    """Number of reactions waiting to run. Useful for testing."""
    return len(global_state.pending_reactions)
