"""
Background scheduler that runs the statistics calculation periodically.
"""

from __future__ import annotations

import logging
import threading
import time


class StatsScheduler:
    """
    Background thread that recalculates statistics on an interval.

    Stopping the scheduler also signals the in-flight run, so a long
    episode count lookup ends early without persisting anything.
    """

    def __init__(self, stats_service, interval_seconds: int = 86400):
        self.stats_service = stats_service
        self.interval_seconds = int(interval_seconds)
        self._thread = None
        self._running = False
        self._cancel = threading.Event()

    def start(self) -> None:
        """Start the background thread."""
        if self._running:
            return

        self._running = True
        self._cancel.clear()
        self._thread = threading.Thread(
            target=self._run_loop,
            daemon=True
        )
        self._thread.start()

    def stop(self) -> None:
        """Stop the background thread and cancel the current run."""
        self._running = False
        self._cancel.set()
        if self._thread:
            self._thread.join(timeout=5)
        logging.info("[INFO] StatsScheduler stopped")

    def _run_loop(self) -> None:
        logging.info("[INFO] StatsScheduler loop starting (interval=%s)", self.interval_seconds)

        while self._running:
            try:
                self.stats_service.run(cancel=self._cancel, execution_type="scheduled")
            except Exception:
                logging.exception("[ERROR] Scheduled statistics run failed")

            total = float(self.interval_seconds or 0)
            slept = 0.0
            while self._running and slept < total:
                to_sleep = min(1.0, total - slept)
                time.sleep(to_sleep)
                slept += to_sleep
