"""Idle tracking for auto-lock.

The tracker only measures inactivity; what "lock" means is up to the
``on_idle`` callback (normally ``VaultManager.lock``). Clock is injectable
so tests never wait on the wall clock.
"""

import logging
import threading
import time
from typing import Callable, Optional

logger = logging.getLogger(__name__)

DEFAULT_CHECK_INTERVAL = 1.0  # seconds


class IdleTracker:
    """Fires ``on_idle`` once after ``timeout_seconds`` without activity.

    A timeout of 0 disables auto-lock. After firing, the tracker stays
    quiet until ``touch()`` records new activity.
    """

    def __init__(
        self,
        timeout_seconds: int,
        on_idle: Callable[[], None],
        clock: Callable[[], float] = time.monotonic,
    ):
        self._timeout = timeout_seconds
        self._on_idle = on_idle
        self._clock = clock
        self._last_activity = clock()
        self._fired = False
        self._lock = threading.Lock()

        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def timeout_seconds(self) -> int:
        return self._timeout

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def set_timeout(self, timeout_seconds: int) -> None:
        with self._lock:
            self._timeout = max(0, timeout_seconds)

    def touch(self) -> None:
        """Record user activity."""
        with self._lock:
            self._last_activity = self._clock()
            self._fired = False

    def idle_seconds(self) -> float:
        with self._lock:
            return self._clock() - self._last_activity

    def check(self) -> bool:
        """Fire the idle callback if the timeout has passed. Returns True if fired."""
        with self._lock:
            if self._timeout <= 0 or self._fired:
                return False
            if self._clock() - self._last_activity <= self._timeout:
                return False
            self._fired = True

        logger.info("Auto-locking after %ss of inactivity", self._timeout)
        self._on_idle()
        return True

    # ── Background loop ──────────────────────────────────────────────

    def start(self, interval: float = DEFAULT_CHECK_INTERVAL) -> None:
        if self.is_running:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run, args=(interval,), name="otphaven-idle", daemon=True
        )
        self._thread.start()

    def stop(self) -> None:
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout=5)
            self._thread = None

    def _run(self, interval: float) -> None:
        while not self._stop_event.wait(interval):
            try:
                self.check()
            except Exception:
                logger.exception("Idle callback failed")
