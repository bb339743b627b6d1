"""Actions and transactions — batched state mutations.

Wrapping mutations in an @action or `with transaction()` defers all
reaction runs until the outermost scope exits. This prevents glitchy
intermediate states where some dependents have updated but others haven't
yet.

An action additionally reads untracked and opens a mutation window, which
is what strict mode asks for: with use_strict(True), observed state may only
change inside actions.
"""

from __future__ import annotations

import functools
from contextlib import contextmanager
from typing import Callable, Iterator, ParamSpec, TypeVar

from trackfx._tracking import (
    allow_state_changes_end,
    allow_state_changes_start,
    end_batch,
    global_state,
    is_computing_derivation,
    start_batch,
    untracked_end,
    untracked_start,
)
from trackfx.errors import InvariantError

P = ParamSpec("P")
R = TypeVar("R")


def action(fn: Callable[P, R]) -> Callable[P, R]:
    """Decorator: batch all observable mutations inside fn.

    Reactions only fire after fn returns, not during. Reads inside fn are
    not tracked by a surrounding derivation.

    Usage:
        counter_a = Observable(0)
        counter_b = Observable(0)

        @action
        def swap():
            a, b = counter_a.get(), counter_b.get()
            counter_a.set(b)
            counter_b.set(a)
            # reactions see both changes at once, not one at a time
    """

    @functools.wraps(fn)
    def wrapper(*args: P.args, **kwargs: P.kwargs) -> R:
        token = untracked_start()
        start_batch()
        prev_allow = allow_state_changes_start(True)
        try:
            return fn(*args, **kwargs)
        finally:
            allow_state_changes_end(prev_allow)
            end_batch()
            untracked_end(token)

    return wrapper


@contextmanager
def transaction() -> Iterator[None]:
    """Context manager for batching mutations.

    Usage:
        with transaction():
            counter_a.set(1)
            counter_b.set(2)
            # reactions fire here, after both are set
    """
    start_batch()
    try:
        yield
    finally:
        end_batch()


@contextmanager
def allow_state_changes(allow: bool = True) -> Iterator[None]:
    """Open (or close) a window in which observed state may be mutated."""
    prev = allow_state_changes_start(allow)
    try:
        yield
    finally:
        allow_state_changes_end(prev)


def use_strict(strict: bool) -> None:
    """Enable or disable strict mode.

    In strict mode, changing observed state outside an action raises
    StrictModeError.
    """
    if is_computing_derivation():
        raise InvariantError("Cannot use 'use_strict' while a derivation is running")
    global_state.strict_mode = strict
    global_state.allow_state_changes = not strict


def is_strict_mode() -> bool:
    return global_state.strict_mode
