"""Data anchor — plain Python structures that hold all reactive bookkeeping.

Atoms, computeds and reactions are entries in one arena keyed by integer
handles. Observer sets and dependency lists store handles, never objects,
so the cyclic observer/observed graph has no ownership cycles between
instances. Instances are thin handles holding an _id.

Handles come from a monotonic counter and are never reused. The arena only
holds instances weakly; `retained` keeps alive what the graph still needs
(undisposed reactions, atoms with observers). Once an instance is
collected its handle lands in `collected`, and the rows are purged at the
end of the next outermost batch.
"""

import enum
import itertools
import weakref


class Kind(enum.Enum):
    """What an arena entry is. Fixed at registration."""

    ATOM = "atom"
    COMPUTED = "computed"  # both an atom and a derivation
    REACTION = "reaction"


kinds: dict[int, Kind] = {}
names: dict[int, str] = {}
entities: weakref.WeakValueDictionary = weakref.WeakValueDictionary()  # handle -> instance
retained: dict[int, object] = {}
collected: list[int] = []  # handles whose instance is gone, rows not yet purged

# Atom side
observers: dict[int, set[int]] = {}  # atom_id -> set of derivation handles
diff_values: dict[int, int] = {}
lowest_observer_states: dict[int, int] = {}
last_accessed_by: dict[int, int] = {}  # atom_id -> run id of last reader
pending_unobservation: dict[int, bool] = {}
values: dict[int, object] = {}
listeners: dict[int, list] = {}

# Derivation side
observing: dict[int, list[int]] = {}
new_observing: dict[int, list | None] = {}
unbound_deps_count: dict[int, int] = {}
dependencies_state: dict[int, int] = {}
run_ids: dict[int, int] = {}
derivation_fns: dict[int, object] = {}
disposed: dict[int, bool] = {}

_rows = (
    kinds,
    names,
    retained,
    observers,
    diff_values,
    lowest_observer_states,
    last_accessed_by,
    pending_unobservation,
    values,
    listeners,
    observing,
    new_observing,
    unbound_deps_count,
    dependencies_state,
    run_ids,
    derivation_fns,
    disposed,
)

_id_counter = itertools.count(1)


def new_id() -> int:
    return next(_id_counter)


def register(instance, kind: Kind) -> int:
    """Give instance a fresh handle in the arena."""
    handle = new_id()
    kinds[handle] = kind
    entities[handle] = instance
    # Runs from the garbage collector: only record the handle here.
    weakref.finalize(instance, collected.append, handle)
    return handle


def purge(handle: int) -> list[int]:
    """Drop every row of a collected handle.

    Returns the atoms that lost their last observer with it.
    """
    orphaned = []
    for atom_id in observing.get(handle, ()):
        atom_observers = observers.get(atom_id)
        if atom_observers and handle in atom_observers:
            atom_observers.discard(handle)
            if not atom_observers:
                orphaned.append(atom_id)
    for table in _rows:
        table.pop(handle, None)
    return orphaned
