"""
Tests for the reactive runtime.

Tests cover:
- Signal delivery order, re-entrant sets and subscriber isolation
- Memo recomputation and change-only notification
- Effects: initial run, reruns, stop
- Tracking vs explicit dependency collection
- ManualScheduler virtual clock and AsyncioScheduler timers
- Runtime disposal and create_runtime selection
"""

import asyncio

import pytest

from formstate.config import RuntimeConfig
from formstate.handle import FormHandle
from formstate.reactive import (
    AsyncioScheduler,
    ExplicitRuntime,
    ManualScheduler,
    ReactiveRuntime,
    Signal,
    TrackingRuntime,
    create_runtime,
)

from tests.sample_forms import LoginForm


class TestSignal:
    """Tests for Signal."""

    def test_set_notifies_in_registration_order(self):
        """Should call subscribers in the order they subscribed."""
        signal = Signal(0)
        order = []
        signal.subscribe(lambda v: order.append(("a", v)))
        signal.subscribe(lambda v: order.append(("b", v)))
        signal.set(1)
        assert order == [("a", 1), ("b", 1)]

    def test_reentrant_set_is_queued(self):
        """Should deliver a value set by a subscriber after the current round."""
        signal = Signal(0)
        seen_a, seen_b = [], []

        def first(value):
            seen_a.append(value)
            if value == 1:
                signal.set(2)
                # stored at once, delivered later
                assert signal.get() == 2

        signal.subscribe(first)
        signal.subscribe(seen_b.append)
        signal.set(1)
        assert seen_a == [1, 2]
        assert seen_b == [1, 2]
        assert signal.get() == 2

    def test_failing_subscriber_is_isolated(self):
        """Should keep notifying other subscribers."""
        signal = Signal(0)
        seen = []

        def broken(value):
            raise RuntimeError("boom")

        signal.subscribe(broken)
        signal.subscribe(seen.append)
        signal.set(1)
        assert seen == [1]

    def test_unsubscribe(self):
        """Should stop notifications and report unknown ids."""
        signal = Signal(0)
        seen = []
        sid = signal.subscribe(seen.append)
        assert signal.unsubscribe(sid)
        assert not signal.unsubscribe(sid)
        signal.set(1)
        assert seen == []
        assert signal.subscriber_count == 0

    def test_update(self):
        """Should set the result of a function of the current value."""
        signal = Signal(2)
        signal.update(lambda v: v * 10)
        assert signal.get_untracked() == 20


class TestMemo:
    """Tests for Memo."""

    def test_recomputes_on_change(self):
        """Should follow its input."""
        runtime = ExplicitRuntime()
        count = runtime.create_signal(1)
        double = runtime.create_memo(lambda: count.get() * 2, deps=[count])
        count.set(4)
        assert double.get() == 8

    def test_notifies_only_on_value_change(self):
        """Should not notify when the derived value stays the same."""
        runtime = ExplicitRuntime()
        count = runtime.create_signal(1)
        is_even = runtime.create_memo(lambda: count.get() % 2 == 0, deps=[count])
        changes = []
        is_even.signal.subscribe(changes.append)
        count.set(3)
        count.set(4)
        count.set(6)
        assert changes == [True]

    def test_failing_recompute_keeps_previous_value(self):
        """Should keep the last good value when the function raises."""
        runtime = ExplicitRuntime()
        divisor = runtime.create_signal(2)
        half = runtime.create_memo(lambda: 10 / divisor.get(), deps=[divisor])
        divisor.set(0)
        assert half.get() == 5

    def test_dispose_stops_following(self):
        """Should stop recomputing once disposed."""
        runtime = ExplicitRuntime()
        count = runtime.create_signal(1)
        double = runtime.create_memo(lambda: count.get() * 2, deps=[count])
        double.dispose()
        count.set(5)
        assert double.get() == 2
        assert count.subscriber_count == 0


class TestEffect:
    """Tests for Effect."""

    def test_runs_on_creation_and_change(self):
        """Should run once immediately and once per change."""
        runtime = ExplicitRuntime()
        count = runtime.create_signal(1)
        runs = []
        effect = runtime.create_effect(lambda: runs.append(count.get()), deps=[count])
        count.set(2)
        assert runs == [1, 2]
        assert effect.run_count == 2

    def test_stop(self):
        """Should not run after stop()."""
        runtime = ExplicitRuntime()
        count = runtime.create_signal(1)
        runs = []
        effect = runtime.create_effect(lambda: runs.append(count.get()), deps=[count])
        effect.stop()
        count.set(2)
        assert runs == [1]
        assert not effect.is_active

    def test_effect_can_follow_a_memo(self):
        """Should rerun when a memo it depends on changes."""
        runtime = ExplicitRuntime()
        count = runtime.create_signal(1)
        parity = runtime.create_memo(lambda: count.get() % 2, deps=[count])
        runs = []
        runtime.create_effect(lambda: runs.append(parity.get()), deps=[parity])
        count.set(3)
        count.set(4)
        assert runs == [1, 0]


class TestDependencyTracking:
    """Tests for the two runtime generations."""

    def test_tracking_runtime_records_reads(self):
        """Should follow signals read during computation."""
        runtime = TrackingRuntime()
        count = runtime.create_signal(1)
        plus_one = runtime.create_memo(lambda: count.get() + 1)
        count.set(5)
        assert plus_one.get() == 6
        assert plus_one.source_count == 1

    def test_explicit_runtime_ignores_reads(self):
        """Should only follow dependencies passed in."""
        runtime = ExplicitRuntime()
        count = runtime.create_signal(1)
        plus_one = runtime.create_memo(lambda: count.get() + 1)
        count.set(5)
        assert plus_one.get() == 2
        assert plus_one.source_count == 0

    def test_tracking_follows_branches(self):
        """Should resubscribe when the set of signals read changes."""
        runtime = TrackingRuntime()
        use_a = runtime.create_signal(True)
        a = runtime.create_signal("a")
        b = runtime.create_signal("b")
        pick = runtime.create_memo(lambda: a.get() if use_a.get() else b.get())
        use_a.set(False)
        assert pick.get() == "b"
        a.set("A")
        assert pick.get() == "b"
        b.set("B")
        assert pick.get() == "B"
        assert a.subscriber_count == 0

    def test_both_satisfy_the_contract(self):
        """Should implement the ReactiveRuntime protocol."""
        assert isinstance(TrackingRuntime(), ReactiveRuntime)
        assert isinstance(ExplicitRuntime(), ReactiveRuntime)


class TestManualScheduler:
    """Tests for the virtual clock."""

    def test_fires_in_due_order(self):
        """Should fire timers as the clock passes their due time."""
        scheduler = ManualScheduler()
        fired = []
        scheduler.call_later(100, lambda: fired.append("late"))
        scheduler.call_later(50, lambda: fired.append("early"))
        assert scheduler.advance(60) == 1
        assert fired == ["early"]
        assert scheduler.now == 60
        assert scheduler.advance(40) == 1
        assert fired == ["early", "late"]

    def test_cancel(self):
        """Should not fire cancelled timers and report cancel once."""
        scheduler = ManualScheduler()
        fired = []
        handle = scheduler.call_later(10, lambda: fired.append(1))
        assert handle.cancel()
        assert not handle.cancel()
        assert scheduler.pending_count() == 0
        assert scheduler.advance(10) == 0
        assert fired == []

    def test_cancel_releases_queue_entries(self):
        """Should not keep superseded timers queued until the clock moves."""
        scheduler = ManualScheduler()
        handles = [scheduler.call_later(100, lambda: None) for _ in range(10)]
        for handle in handles[:9]:
            handle.cancel()
        assert scheduler.pending_count() == 1
        assert scheduler.queued_count() <= 2
        assert scheduler.advance(100) == 1
        assert scheduler.queued_count() == 0

    def test_repeated_debounce_keeps_one_entry(self):
        """Should hold a single queue entry however often a field is rescheduled."""
        handle = FormHandle(LoginForm)
        for _ in range(1000):
            handle.schedule_validation("email")
        scheduler = handle.runtime.scheduler
        assert scheduler.pending_count() == 1
        assert scheduler.queued_count() == 1

    def test_fired_timer_cannot_be_cancelled(self):
        """Should return False when cancelling a fired timer."""
        scheduler = ManualScheduler()
        handle = scheduler.call_later(0, lambda: None)
        scheduler.advance(0)
        assert handle.fired
        assert not handle.cancel()

    def test_timers_scheduled_by_callbacks(self):
        """Should fire nested timers falling inside the window."""
        scheduler = ManualScheduler()
        fired = []
        scheduler.call_later(10, lambda: scheduler.call_later(10, lambda: fired.append("nested")))
        assert scheduler.advance(25) == 2
        assert fired == ["nested"]

    def test_run_all(self):
        """Should fire everything pending."""
        scheduler = ManualScheduler()
        fired = []
        scheduler.call_later(1000, lambda: fired.append(1))
        scheduler.call_later(5, lambda: fired.append(2))
        assert scheduler.run_all() == 2
        assert fired == [2, 1]
        assert scheduler.now == 1000

    def test_failing_callback_is_logged(self):
        """Should keep running later timers when a callback raises."""
        scheduler = ManualScheduler()
        fired = []

        def broken():
            raise RuntimeError("boom")

        scheduler.call_later(1, broken)
        scheduler.call_later(2, lambda: fired.append(1))
        scheduler.advance(5)
        assert fired == [1]

    def test_negative_delays(self):
        """Should reject negative delays and moving backwards."""
        scheduler = ManualScheduler()
        with pytest.raises(ValueError):
            scheduler.call_later(-1, lambda: None)
        with pytest.raises(ValueError):
            scheduler.advance(-1)


class TestAsyncioScheduler:
    """Tests for timers on the event loop."""

    def test_fires_and_cancels(self):
        """Should fire live timers and skip cancelled ones."""

        async def scenario():
            scheduler = AsyncioScheduler()
            fired = []
            scheduler.call_later(5, lambda: fired.append("kept"))
            cancelled = scheduler.call_later(5, lambda: fired.append("cancelled"))
            assert cancelled.cancel()
            await asyncio.sleep(0.05)
            return fired

        assert asyncio.run(scenario()) == ["kept"]


class TestRuntime:
    """Tests for runtime selection and disposal."""

    def test_create_runtime_selects_generation(self):
        """Should build the runtime named by the config."""
        assert isinstance(create_runtime(), TrackingRuntime)
        runtime = create_runtime(RuntimeConfig(generation="explicit"))
        assert isinstance(runtime, ExplicitRuntime)
        assert isinstance(runtime.scheduler, ManualScheduler)

    def test_create_runtime_selects_scheduler(self):
        """Should use asyncio timers when configured, or an explicit scheduler."""
        assert isinstance(create_runtime(RuntimeConfig(scheduler="asyncio")).scheduler, AsyncioScheduler)
        scheduler = ManualScheduler()
        assert create_runtime(scheduler=scheduler).scheduler is scheduler

    def test_dispose_cancels_timers_and_computations(self):
        """Should cancel pending timers and stop memos and effects."""
        runtime = TrackingRuntime()
        count = runtime.create_signal(1)
        runs = []
        runtime.create_effect(lambda: runs.append(count.get()))
        handle = runtime.set_timeout(10, lambda: runs.append("timer"))
        runtime.dispose()
        runtime.dispose()
        count.set(2)
        runtime.scheduler.advance(10)
        assert runs == [1]
        assert handle.cancelled
        assert runtime.is_disposed
