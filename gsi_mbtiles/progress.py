"""
Operator-facing progress output.
Lines are prefixed with the tileset id and the seconds since the run started.
"""

import sys
import threading
import time
from contextlib import contextmanager
from typing import Callable, Iterator, Optional, TextIO


class Reporter:
    """Prints timestamped progress lines for one run."""

    def __init__(self, label: str, stream: Optional[TextIO] = None):
        self.label = label
        self.stream = stream
        self.started = time.monotonic()

    @property
    def elapsed(self) -> float:
        return time.monotonic() - self.started

    def log(self, message: str):
        print(f"{self.label}: {self.elapsed:.3f}s {message}",
              file=self.stream or sys.stdout, flush=True)

    @contextmanager
    def every(self, interval: float, report: Callable[[], str]) -> Iterator["PeriodicReport"]:
        """
        Log report() every interval seconds while the block runs.

        The timer thread is stopped and joined when the block exits, so no
        line is printed after the phase has finished.
        """
        periodic = PeriodicReport(self, interval, report)
        periodic.start()
        try:
            yield periodic
        finally:
            periodic.stop()


class PeriodicReport:
    """Background thread calling a report function on a fixed interval."""

    def __init__(self, reporter: Reporter, interval: float, report: Callable[[], str]):
        self.reporter = reporter
        self.interval = interval
        self.report = report
        self._stopped = threading.Event()
        self._thread = threading.Thread(target=self._run, name="progress", daemon=True)

    def start(self):
        self._thread.start()

    def stop(self):
        self._stopped.set()
        self._thread.join()

    def _run(self):
        while not self._stopped.wait(self.interval):
            self.reporter.log(self.report())
