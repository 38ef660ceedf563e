"""Recurring timer that drives the dispatcher at a fixed interval."""

from __future__ import annotations

import logging
import signal
import threading
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager

logger = logging.getLogger(__name__)


class JobTicker:
    """Calls `tick` on a fixed schedule without piling up missed ticks.

    Ticks run one at a time on the calling (or background) thread. When a
    tick overruns the interval, every tick that fell due while it was still
    running is skipped and counted in `ticks_skipped`.
    """

    def __init__(
        self,
        *,
        tick: Callable[[], object],
        interval_seconds: float,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be > 0.")
        self._tick = tick
        self.interval_seconds = interval_seconds
        self._clock = clock
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None
        self.ticks_run = 0
        self.ticks_skipped = 0
        self.tick_errors = 0

    def start(self) -> None:
        """Run the schedule on a daemon thread."""

        if self._thread is not None:
            raise RuntimeError("Ticker already started.")
        self._stop.clear()
        self._thread = threading.Thread(target=self.run, name="job-ticker", daemon=True)
        self._thread.start()

    def stop(self, timeout: float | None = None) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            self._thread = None

    @property
    def stopped(self) -> bool:
        return self._stop.is_set()

    def run(self, *, max_ticks: int | None = None) -> None:
        """Block and tick until stopped or `max_ticks` ran."""

        next_due = self._clock()
        while not self._stop.is_set():
            wait_seconds = next_due - self._clock()
            if wait_seconds > 0 and self._stop.wait(wait_seconds):
                return

            try:
                self._tick()
            except Exception:  # noqa: BLE001
                self.tick_errors += 1
                logger.exception("Ticker callback raised; continuing schedule.")
            self.ticks_run += 1
            if max_ticks is not None and self.ticks_run >= max_ticks:
                return

            next_due += self.interval_seconds
            now = self._clock()
            if now > next_due:
                missed = int((now - next_due) // self.interval_seconds) + 1
                self.ticks_skipped += missed
                next_due += missed * self.interval_seconds
                logger.info("Tick overran; skipped %s scheduled tick(s).", missed)

    def run_until_signal(self, *, max_ticks: int | None = None) -> None:
        """Run in the foreground, stopping cleanly on SIGINT/SIGTERM."""

        with self._signal_handlers():
            self.run(max_ticks=max_ticks)

    @contextmanager
    def _signal_handlers(self) -> Iterator[None]:
        if not hasattr(signal, "SIGINT"):
            yield
            return

        original_sigint = signal.getsignal(signal.SIGINT)
        original_sigterm = signal.getsignal(signal.SIGTERM)

        def _handler(signum: int, _: object | None) -> None:
            try:
                name = signal.Signals(signum).name
            except ValueError:
                name = str(signum)
            logger.info("Received %s; stopping ticker after the current tick.", name)
            self._stop.set()

        try:
            signal.signal(signal.SIGINT, _handler)
            signal.signal(signal.SIGTERM, _handler)
        except ValueError:
            # Signal handlers can only be installed in main thread.
            yield
            return
        try:
            yield
        finally:
            signal.signal(signal.SIGINT, original_sigint)
            signal.signal(signal.SIGTERM, original_sigterm)
