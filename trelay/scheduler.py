from __future__ import annotations

import time
from threading import Event, Thread
from typing import Any, Callable

from . import db


class Scheduler:
    """Runs a job once immediately, then every ``interval_s`` seconds.

    Runs never overlap: a run that overruns the interval pushes the next one
    back instead of queueing extra runs. :meth:`stop` is cooperative; the job
    receives the stop event and may check it between units of work.
    """

    def __init__(self, job: Callable[[Event], Any], interval_s: float, name: str = "reconciler") -> None:
        self.job = job
        self.interval_s = max(0.01, float(interval_s))
        self.name = name
        self.runs = 0
        self._stop = Event()
        self._thr: Thread | None = None

    @property
    def running(self) -> bool:
        return self._thr is not None and self._thr.is_alive()

    def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        self._thr = Thread(target=self.run_forever, name=f"trelay-{self.name}", daemon=True)
        self._thr.start()

    def stop(self, timeout: float | None = None) -> None:
        self._stop.set()
        if self._thr and self._thr.is_alive():
            self._thr.join(timeout)

    def run_forever(self) -> None:
        db.log_event("INFO", f"{self.name.capitalize()} scheduler started (every {self.interval_s:g}s)")
        next_run = time.monotonic()
        while not self._stop.is_set():
            try:
                self.job(self._stop)
            except Exception as e:
                db.log_event("ERROR", f"{self.name.capitalize()} run failed: {type(e).__name__}: {e}")
            self.runs += 1

            next_run += self.interval_s
            delay = next_run - time.monotonic()
            if delay < 0:
                # Overran: start the next run now and measure from here.
                next_run = time.monotonic()
                delay = 0
            if self._stop.wait(delay):
                break
        db.log_event("INFO", f"{self.name.capitalize()} scheduler stopped")
