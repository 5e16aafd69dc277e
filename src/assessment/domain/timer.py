import time
from collections.abc import Callable

from src.config import QuizConfig


class QuizTimer:
    """
    Whole-second countdown owned by a quiz session.

    The timer has no thread of its own: `tick()` is the one-second step and
    `sync()` converts elapsed clock time into ticks, so rerun-driven UIs can
    drive it. `on_expire` fires exactly once per start/reset cycle.
    """

    def __init__(
        self,
        on_expire: Callable[[], None] | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.remaining_seconds = 0
        self.running = False
        self._on_expire = on_expire
        self._clock = clock
        self._expired = False
        self._cancelled = False
        self._last_sync: float | None = None

    @staticmethod
    def _to_seconds(duration_minutes: int | float) -> int:
        minutes = duration_minutes if duration_minutes and duration_minutes > 0 else 0
        minutes = max(QuizConfig.MIN_TIMER_MINUTES, minutes)
        return int(minutes * 60)

    @property
    def expired(self) -> bool:
        return self._expired

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def start(self, duration_minutes: int | float) -> None:
        if self._cancelled:
            return
        self.remaining_seconds = self._to_seconds(duration_minutes)
        self.running = True
        self._expired = False
        self._last_sync = self._clock()

    def reset(self, duration_minutes: int | float) -> None:
        """Re-seeds the countdown; a running timer keeps running."""
        if self._cancelled:
            return
        self.remaining_seconds = self._to_seconds(duration_minutes)
        self._expired = False
        self._last_sync = self._clock()

    def pause(self) -> None:
        self.running = False

    def resume(self) -> None:
        if self._cancelled or self._expired or self.remaining_seconds <= 0:
            return
        self.running = True
        self._last_sync = self._clock()

    def cancel(self) -> None:
        """Teardown: no tick may fire afterwards."""
        self._cancelled = True
        self.running = False

    def tick(self) -> None:
        if self._cancelled or not self.running or self._expired:
            return
        self.remaining_seconds = max(0, self.remaining_seconds - 1)
        if self.remaining_seconds == 0:
            self.running = False
            self._expired = True
            if self._on_expire:
                self._on_expire()

    def sync(self, now: float | None = None) -> int:
        """Applies the whole seconds elapsed since the last sync. Returns ticks."""
        now = self._clock() if now is None else now
        if self._cancelled or not self.running or self._last_sync is None:
            self._last_sync = now
            return 0

        whole = int(now - self._last_sync)
        if whole <= 0:
            return 0
        self._last_sync += whole

        ticks = min(whole, self.remaining_seconds)
        for _ in range(ticks):
            self.tick()
        return ticks
