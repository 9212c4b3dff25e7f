"""Tests for the stepped and threaded schedulers."""

import threading

import pytest

from tubeloop.player.scheduler import SteppedScheduler, ThreadedScheduler


class TestSteppedScheduler:
    def test_call_soon_runs_immediately(self, scheduler):
        ran = []
        scheduler.call_soon(lambda: ran.append(1))
        assert ran == [1]

    def test_nested_call_soon_is_queued(self, scheduler):
        order = []

        def outer():
            scheduler.call_soon(lambda: order.append("inner"))
            order.append("outer")

        scheduler.call_soon(outer)
        assert order == ["outer", "inner"]

    def test_call_later_fires_at_deadline(self, scheduler):
        fired = []
        scheduler.call_later(5, lambda: fired.append(scheduler.now()))
        scheduler.advance(4)
        assert fired == []
        scheduler.advance(1)
        assert fired == [5]

    def test_timers_fire_in_order(self, scheduler):
        order = []
        scheduler.call_later(3, lambda: order.append("b"))
        scheduler.call_later(1, lambda: order.append("a"))
        scheduler.call_later(3, lambda: order.append("c"))
        scheduler.advance(10)
        assert order == ["a", "b", "c"]

    def test_cancelled_timer_never_fires(self, scheduler):
        fired = []
        handle = scheduler.call_later(1, lambda: fired.append(1))
        handle.cancel()
        scheduler.advance(2)
        assert fired == []
        assert scheduler.pending_timers == 0

    def test_call_every(self, scheduler):
        ticks = []
        handle = scheduler.call_every(2, lambda: ticks.append(scheduler.now()))
        scheduler.advance(7)
        assert ticks == [2, 4, 6]
        handle.cancel()
        scheduler.advance(10)
        assert len(ticks) == 3

    def test_call_every_rejects_zero(self, scheduler):
        with pytest.raises(ValueError):
            scheduler.call_every(0, lambda: None)

    def test_advance_rejects_negative(self, scheduler):
        with pytest.raises(ValueError):
            scheduler.advance(-1)

    def test_failing_callback_does_not_stop_loop(self, scheduler):
        fired = []

        def boom():
            raise RuntimeError("boom")

        scheduler.call_later(1, boom)
        scheduler.call_later(2, lambda: fired.append(1))
        scheduler.advance(3)
        assert fired == [1]

    def test_timer_armed_by_timer(self, scheduler):
        fired = []
        scheduler.call_later(1, lambda: scheduler.call_later(1, lambda: fired.append(scheduler.now())))
        scheduler.advance(5)
        assert fired == [2]

    def test_start_offset(self):
        scheduler = SteppedScheduler(start=100.0)
        assert scheduler.now() == 100.0


class TestThreadedScheduler:
    def test_runs_callbacks_on_loop_thread(self):
        scheduler = ThreadedScheduler(name="test-loop")
        scheduler.start()
        try:
            done = threading.Event()
            seen = {}

            def cb():
                seen["in_loop"] = scheduler.in_loop_thread()
                done.set()

            scheduler.call_soon(cb)
            assert done.wait(timeout=2)
            assert seen["in_loop"] is True
            assert not scheduler.in_loop_thread()
        finally:
            scheduler.stop()

    def test_call_later(self):
        scheduler = ThreadedScheduler(name="test-loop")
        scheduler.start()
        try:
            done = threading.Event()
            scheduler.call_later(0.05, done.set)
            assert done.wait(timeout=2)
        finally:
            scheduler.stop()

    def test_stop(self):
        scheduler = ThreadedScheduler(name="test-loop")
        scheduler.start()
        assert scheduler.is_running
        scheduler.stop()
        assert not scheduler.is_running
