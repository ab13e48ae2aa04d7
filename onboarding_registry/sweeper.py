"""
CacheSweeper -- periodic eager eviction of expired cache entries.

Runs on its own daemon thread and never blocks request handling: a sweep
only takes each cache's bookkeeping lock for the duration of one pass
over its entries.
"""

from __future__ import annotations

import threading
from typing import Sequence

from onboarding_kernel.logging_config import get_logger
from onboarding_registry.cache import ValidationCache

logger = get_logger("registry.sweeper")


class CacheSweeper:
    """In-process sweeper for one or more ValidationCache instances.

    Contract:
        - ``tick()`` sweeps every cache once (public for testing).
        - ``start()`` / ``stop()`` for background thread operation.
    """

    def __init__(
        self,
        caches: Sequence[ValidationCache],
        interval_seconds: float = 300,
    ):
        self._caches = tuple(caches)
        self._interval = interval_seconds
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    def tick(self) -> int:
        """Sweep every cache. Returns the number of entries evicted."""
        evicted = 0
        for cache in self._caches:
            evicted += cache.sweep()
        if evicted:
            logger.info("cache_sweep_completed", extra={"evicted": evicted})
        return evicted

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return

        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run_loop,
            name="validation-cache-sweeper",
            daemon=True,
        )
        self._thread.start()
        logger.info("cache_sweeper_started", extra={"interval_seconds": self._interval})

    def stop(self, timeout: float = 30.0) -> None:
        """Signal stop and wait for the sweeper thread to finish."""
        self._stop_event.set()
        if self._thread is not None and self._thread.is_alive():
            self._thread.join(timeout=timeout)
        logger.info("cache_sweeper_stopped")

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    # -------------------------------------------------------------------------
    # Internal
    # -------------------------------------------------------------------------

    def _run_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                self.tick()
            except Exception:
                logger.exception("cache_sweep_failed")
            self._stop_event.wait(timeout=self._interval)
