"""Tests for the dependency tracking engine."""

import pytest

from trackfx import (
    Computed,
    Derivation,
    DerivationState,
    Observable,
    autorun,
    change_dependencies_state_to_0,
    clear_observing,
    run_tracked,
    should_compute,
    track_derived_function,
    transaction,
    untracked,
    untracked_scope,
)
from trackfx._tracking import current_derivation, global_state


class TestTrackDerivedFunction:
    def test_base_class_requires_on_become_stale(self):
        with pytest.raises(NotImplementedError):
            Derivation().on_become_stale()

    def test_new_derivation_is_not_tracking(self, tracker):
        assert tracker.dependencies_state is DerivationState.NOT_TRACKING
        assert tracker.observing == []

    def test_returns_body_result(self, tracker):
        a = Observable(2)
        outcome = track_derived_function(tracker, lambda: a.get() * 10)
        assert not outcome.failed
        assert outcome.unwrap() == 20
        assert tracker.dependencies_state is DerivationState.UP_TO_DATE

    def test_dependency_set_exactness(self, tracker):
        a, b, c = Observable(1), Observable(2), Observable(3)
        track_derived_function(tracker, lambda: (a.get(), b.get(), a.get(), c.get()))
        assert tracker.observing == [a, b, c]
        for atom in (a, b, c):
            assert atom.observers == {tracker}
            assert atom.diff_value == 0

    def test_duplicates_across_nested_runs_are_dropped(self, make_tracker):
        outer, inner = make_tracker("outer"), make_tracker("inner")
        a, b = Observable(1), Observable(2)

        def body():
            a.get()
            # The nested run re-stamps a, so the outer buffer gets a twice.
            track_derived_function(inner, lambda: a.get())
            b.get()
            a.get()

        track_derived_function(outer, body)
        assert outer.observing == [a, b]
        assert inner.observing == [a]
        assert a.observers == {outer, inner}

    def test_unsubscribe_on_drop(self, tracker):
        a, b = Observable(1), Observable(2)
        track_derived_function(tracker, lambda: (a.get(), b.get()))
        track_derived_function(tracker, lambda: a.get())
        assert tracker.observing == [a]
        assert tracker in a.observers
        assert tracker not in b.observers

    def test_zero_dependencies(self, tracker):
        a = Observable(1)
        track_derived_function(tracker, lambda: a.get())
        outcome = track_derived_function(tracker, lambda: 42)
        assert outcome.unwrap() == 42
        assert tracker.observing == []
        assert a.observers == set()
        assert tracker.dependencies_state is DerivationState.UP_TO_DATE

    def test_order_follows_first_read(self, tracker):
        a, b, c = Observable(1), Observable(2), Observable(3)
        track_derived_function(tracker, lambda: (a.get(), b.get()))
        track_derived_function(tracker, lambda: (c.get(), b.get(), a.get()))
        assert tracker.observing == [c, b, a]

    def test_run_id_strictly_increasing(self, make_tracker):
        p1, p2 = make_tracker(), make_tracker()
        track_derived_function(p1, lambda: None)
        first = p1.run_id
        track_derived_function(p2, lambda: None)
        track_derived_function(p1, lambda: None)
        assert first < p2.run_id < p1.run_id
        assert p1.run_id == global_state.run_id

    def test_failure_during_tracking_still_binds(self, tracker):
        a = Observable(1)

        def body():
            a.get()
            raise ValueError("boom")

        outcome = track_derived_function(tracker, body)
        assert outcome.failed
        assert isinstance(outcome.error, ValueError)
        assert tracker in a.observers

    def test_run_tracked_reraises_after_binding(self, tracker):
        a = Observable(1)

        def body():
            a.get()
            raise KeyError("missing")

        with pytest.raises(KeyError):
            run_tracked(tracker, body)
        assert tracker.observing == [a]
        assert current_derivation.get() is None

    def test_restores_previous_derivation(self, make_tracker):
        outer, inner = make_tracker(), make_tracker()
        seen = []

        def body():
            track_derived_function(inner, lambda: None)
            seen.append(current_derivation.get())

        track_derived_function(outer, body)
        assert seen == [outer]
        assert current_derivation.get() is None

    def test_dependency_stale_during_run_marks_derivation(self, tracker):
        """A computed read mid-run that goes stale before we subscribe still reaches us."""
        a = Observable(1)
        c = Computed(lambda: a.get() + 1)

        def body():
            c.get()
            a.set(5)  # c is stale now, but tracker is not yet its observer

        track_derived_function(tracker, body)
        assert tracker.dependencies_state is DerivationState.STALE
        assert tracker.stale_calls == 1


class TestShouldCompute:
    def test_not_tracking_and_stale_need_compute(self, tracker):
        assert should_compute(tracker) is True
        a = Observable(1)
        track_derived_function(tracker, lambda: a.get())
        a.set(2)
        assert tracker.dependencies_state is DerivationState.STALE
        assert should_compute(tracker) is True

    def test_idempotent_up_to_date(self, tracker):
        calls = 0
        a = Observable(1)

        def fn():
            nonlocal calls
            calls += 1
            return a.get()

        c = Computed(fn)
        track_derived_function(tracker, lambda: c.get())
        assert calls == 1
        for _ in range(3):
            assert should_compute(tracker) is False
        assert calls == 1

    def test_no_op_when_nothing_changed(self):
        a = Observable(1)
        c1_runs = 0
        d_runs = 0

        def positive():
            nonlocal c1_runs
            c1_runs += 1
            return a.get() > 0

        c1 = Computed(positive)

        def body():
            nonlocal d_runs
            d_runs += 1
            c1.get()

        d = autorun(body)
        assert (c1_runs, d_runs) == (1, 1)

        a.set(2)  # c1 recomputes to the same True
        assert c1_runs == 2
        assert d_runs == 1
        assert d.dependencies_state is DerivationState.UP_TO_DATE

    def test_order_sensitive_short_circuit(self, tracker):
        a = Observable(1)
        c2_runs = 0

        def second():
            nonlocal c2_runs
            c2_runs += 1
            return a.get() >= 0

        c1 = Computed(lambda: a.get() * 2)
        c2 = Computed(second)
        track_derived_function(tracker, lambda: (c1.get(), c2.get()))
        assert c2_runs == 1

        a.set(5)
        assert tracker.dependencies_state is DerivationState.POSSIBLY_STALE
        assert c1.dependencies_state is DerivationState.STALE
        assert c2.dependencies_state is DerivationState.STALE

        with transaction():
            assert should_compute(tracker) is True
        assert c2_runs == 1  # never forced
        assert tracker.dependencies_state is DerivationState.STALE

    def test_resolves_possibly_stale_to_up_to_date(self, tracker):
        a = Observable(3)
        c = Computed(lambda: a.get() % 2)
        track_derived_function(tracker, lambda: c.get())

        a.set(5)
        assert tracker.dependencies_state is DerivationState.POSSIBLY_STALE
        assert should_compute(tracker) is False
        assert tracker.dependencies_state is DerivationState.UP_TO_DATE
        assert c.lowest_observer_state is DerivationState.UP_TO_DATE

    def test_failing_dependency_counts_as_changed(self, tracker):
        a = Observable(1)

        def checked():
            if a.get() > 3:
                raise ValueError("too big")
            return "ok"

        c = Computed(checked)
        track_derived_function(tracker, lambda: c.get())
        a.set(10)
        assert should_compute(tracker) is True

    def test_scan_reads_are_not_tracked(self, make_tracker):
        outer, inner = make_tracker("outer"), make_tracker("inner")
        a = Observable(1)
        c = Computed(lambda: a.get() % 2)
        track_derived_function(inner, lambda: c.get())
        a.set(3)

        track_derived_function(outer, lambda: should_compute(inner))
        assert outer.observing == []


class TestClearAndReset:
    def test_clear_observing(self, tracker):
        a, b = Observable(1), Observable(2)
        track_derived_function(tracker, lambda: (a.get(), b.get()))
        clear_observing(tracker)
        assert tracker.observing == []
        assert tracker.dependencies_state is DerivationState.NOT_TRACKING
        assert a.observers == set()
        assert b.observers == set()

    def test_clear_is_idempotent(self, tracker):
        clear_observing(tracker)
        clear_observing(tracker)
        assert tracker.dependencies_state is DerivationState.NOT_TRACKING

    def test_cleared_computed_dependency_is_released(self, tracker):
        a = Observable(1)
        c = Computed(lambda: a.get() * 2)
        track_derived_function(tracker, lambda: c.get())
        assert tracker in c.observers
        assert c in a.observers

        clear_observing(tracker)
        with transaction():
            pass  # flush pending unobservations
        assert c.observers == set()
        assert a.observers == set()
        assert c.dependencies_state is DerivationState.NOT_TRACKING

    def test_change_dependencies_state_to_0(self, tracker):
        a = Observable(1)
        track_derived_function(tracker, lambda: a.get())
        a.set(2)
        assert a.lowest_observer_state is DerivationState.STALE
        change_dependencies_state_to_0(tracker)
        assert tracker.dependencies_state is DerivationState.UP_TO_DATE
        assert a.lowest_observer_state is DerivationState.UP_TO_DATE


class TestUntracked:
    def test_untracked_reads_are_not_dependencies(self, tracker):
        a, b = Observable(1), Observable(2)
        result = track_derived_function(tracker, lambda: a.get() + untracked(lambda: b.get()))
        assert result.unwrap() == 3
        assert tracker.observing == [a]
        assert b.observers == set()

    def test_nested_untracked_restores_tracking(self, tracker):
        a, b, c = Observable(1), Observable(2), Observable(3)
        seen = []

        def body():
            with untracked_scope():
                with untracked_scope():
                    a.get()
                    seen.append(current_derivation.get())
                b.get()
                seen.append(current_derivation.get())
            seen.append(current_derivation.get())
            c.get()

        track_derived_function(tracker, body)
        assert seen == [None, None, tracker]
        assert tracker.observing == [c]

    def test_untracked_restores_on_failure(self, tracker):
        a = Observable(1)

        def failing():
            raise RuntimeError("inner")

        def body():
            with pytest.raises(RuntimeError):
                untracked(failing)
            a.get()

        track_derived_function(tracker, body)
        assert tracker.observing == [a]
