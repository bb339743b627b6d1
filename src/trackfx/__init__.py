"""trackfx: reactive dependency tracking for Python."""

from importlib.metadata import version as _version

__version__ = _version("trackfx")

from trackfx._tracking import get_pending_count, is_computing_derivation, untracked, untracked_scope
from trackfx.states import DerivationState
from trackfx.atom import Atom
from trackfx.derivation import (
    Derivation,
    Outcome,
    change_dependencies_state_to_0,
    check_if_state_modifications_are_allowed,
    clear_observing,
    run_tracked,
    should_compute,
    track_derived_function,
)
from trackfx.observable import Observable, ObservableList, ObservableDict
from trackfx.computed import Computed, computed
from trackfx.reaction import Reaction, autorun, reaction, on_reaction_error
from trackfx.action import action, transaction, allow_state_changes, use_strict, is_strict_mode
from trackfx.observe import observe
from trackfx.changes import ValueChange, ListChange, DictChange
from trackfx.errors import (
    TrackfxError,
    ComputedSideEffectError,
    StrictModeError,
    CycleError,
    InvariantError,
)

__all__ = [
    "Atom",
    "DerivationState",
    "Derivation",
    "Outcome",
    "track_derived_function",
    "run_tracked",
    "should_compute",
    "clear_observing",
    "change_dependencies_state_to_0",
    "check_if_state_modifications_are_allowed",
    "untracked",
    "untracked_scope",
    "is_computing_derivation",
    "get_pending_count",
    "Observable",
    "ObservableList",
    "ObservableDict",
    "Computed",
    "computed",
    "Reaction",
    "autorun",
    "reaction",
    "on_reaction_error",
    "action",
    "transaction",
    "allow_state_changes",
    "use_strict",
    "is_strict_mode",
    "observe",
    "ValueChange",
    "ListChange",
    "DictChange",
    "TrackfxError",
    "ComputedSideEffectError",
    "StrictModeError",
    "CycleError",
    "InvariantError",
]
