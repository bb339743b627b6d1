"""Exceptions raised by trackfx."""


class TrackfxError(Exception):
    """Base class for all trackfx errors."""


class ComputedSideEffectError(TrackfxError):
    """An observed atom was mutated while a computed value was evaluating."""


class StrictModeError(TrackfxError):
    """Observed state was mutated outside a permitted mutation window."""


class CycleError(TrackfxError):
    """A computed value was read while it was already computing."""


class InvariantError(TrackfxError):
    """The runtime was used in a way its bookkeeping cannot support."""
