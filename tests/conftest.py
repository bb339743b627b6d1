import pytest

from trackfx import _anchor, use_strict
from trackfx.derivation import Derivation


@pytest.fixture(autouse=True)
def _non_strict():
    yield
    use_strict(False)


class Tracker(Derivation):
    """A bare derivation: counts stale notifications, never reruns itself."""

    __slots__ = ("_id", "stale_calls", "__weakref__")

    def __init__(self, name: str = "tracker") -> None:
        self._id = _anchor.register(self, _anchor.Kind.REACTION)
        _anchor.names[self._id] = name
        self._init_derivation()
        self.stale_calls = 0

    def on_become_stale(self) -> None:
        self.stale_calls += 1


@pytest.fixture
def tracker():
    return Tracker()


@pytest.fixture
def make_tracker():
    return Tracker
