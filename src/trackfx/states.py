"""Staleness states of a derivation."""

import enum


class DerivationState(enum.IntEnum):
    """How much recomputation is known to be needed, in increasing order."""

    # Before the first run, or after disposal / becoming unobserved.
    # No dependency bookkeeping exists.
    NOT_TRACKING = -1
    # No shallow dependency changed since the last computation.
    UP_TO_DATE = 0
    # Some deep dependency changed, but it is unknown whether a shallow one
    # did. Only computeds propagate this state.
    POSSIBLY_STALE = 1
    # A shallow dependency changed; recompute on next demand.
    STALE = 2
