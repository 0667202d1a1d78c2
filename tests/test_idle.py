"""Tests for the auto-lock idle tracker (fake clock, no sleeping)."""

import threading

from otphaven.vault.idle import IdleTracker


class FakeClock:
    def __init__(self, start=1000.0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


class TestIdleTracker:
    def test_fires_after_timeout(self):
        clock = FakeClock()
        fired = []
        tracker = IdleTracker(60, lambda: fired.append(True), clock=clock)

        clock.advance(60)
        assert tracker.check() is False  # must strictly exceed
        clock.advance(1)
        assert tracker.check() is True
        assert fired == [True]

    def test_fires_once(self):
        clock = FakeClock()
        fired = []
        tracker = IdleTracker(10, lambda: fired.append(1), clock=clock)
        clock.advance(11)
        tracker.check()
        tracker.check()
        assert fired == [1]

    def test_touch_resets(self):
        clock = FakeClock()
        fired = []
        tracker = IdleTracker(10, lambda: fired.append(1), clock=clock)
        clock.advance(9)
        tracker.touch()
        clock.advance(9)
        assert tracker.check() is False
        assert tracker.idle_seconds() == 9

    def test_touch_rearms_after_firing(self):
        clock = FakeClock()
        fired = []
        tracker = IdleTracker(10, lambda: fired.append(1), clock=clock)
        clock.advance(11)
        tracker.check()
        tracker.touch()
        clock.advance(11)
        tracker.check()
        assert fired == [1, 1]

    def test_zero_disables(self):
        clock = FakeClock()
        fired = []
        tracker = IdleTracker(0, lambda: fired.append(1), clock=clock)
        clock.advance(10_000)
        assert tracker.check() is False
        assert fired == []

    def test_set_timeout(self):
        clock = FakeClock()
        fired = []
        tracker = IdleTracker(0, lambda: fired.append(1), clock=clock)
        tracker.set_timeout(5)
        clock.advance(6)
        assert tracker.check() is True
        assert tracker.timeout_seconds == 5

    def test_background_thread(self):
        locked = threading.Event()
        clock = FakeClock()
        tracker = IdleTracker(1, locked.set, clock=clock)
        clock.advance(5)
        tracker.start(interval=0.01)
        try:
            assert tracker.is_running is True
            assert locked.wait(2.0) is True
        finally:
            tracker.stop()
        assert tracker.is_running is False

    def test_callback_error_does_not_kill_loop(self):
        calls = []

        def boom():
            calls.append(1)
            raise RuntimeError("lock failed")

        clock = FakeClock()
        tracker = IdleTracker(1, boom, clock=clock)
        clock.advance(5)
        tracker.start(interval=0.01)
        try:
            for _ in range(200):
                if calls:
                    break
                threading.Event().wait(0.01)
            assert tracker.is_running is True
        finally:
            tracker.stop()
        assert calls == [1]
