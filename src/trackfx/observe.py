"""observe() — listen to the changes of any observable container.

Pure routing: the container itself builds the change records. Unlike a
reaction, a listener is called for every change and does not track reads.
"""

from __future__ import annotations

from typing import Any, Callable

Disposer = Callable[[], None]


def observe(thing: Any, key_or_listener: Any, listener_or_fire: Any = None, fire_immediately: bool = False) -> Disposer:
    """Subscribe a listener to thing, or to one key of thing.

    Usage:
        observe(counter, lambda change: print(change.new_value))
        observe(settings, "theme", lambda change: print(change.new_value), True)

    Returns a disposer that removes the listener.
    """
    if callable(listener_or_fire):
        return _observe_key(thing, key_or_listener, listener_or_fire, fire_immediately)
    return _observe_whole(thing, key_or_listener, bool(listener_or_fire) or fire_immediately)


def _observe_whole(thing: Any, listener: Callable, fire_immediately: bool) -> Disposer:
    observe_fn = getattr(thing, "observe", None)
    if observe_fn is None:
        raise TypeError(f"Cannot observe {thing!r}: not an observable")
    return observe_fn(listener, fire_immediately)


def _observe_key(thing: Any, key: Any, listener: Callable, fire_immediately: bool) -> Disposer:
    observe_fn = getattr(thing, "observe_key", None)
    if observe_fn is None:
        raise TypeError(f"Cannot observe key {key!r} of {thing!r}: not a keyed observable")
    return observe_fn(key, listener, fire_immediately)
