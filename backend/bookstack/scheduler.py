"""Background scheduler for the entitlement expiry sweep."""
from __future__ import annotations

import atexit
import logging
from threading import Event, Lock, Thread
from typing import Optional

from flask import Flask

logger = logging.getLogger(__name__)

_scheduler_lock = Lock()
_worker: Optional["_SweepWorker"] = None
_atexit_registered = False


def run_sweep_job(app: Flask) -> dict:
    from .services.expiry_service import sweep_expired_entitlements

    with app.app_context():
        try:
            summary = sweep_expired_entitlements()
        except Exception:
            logger.exception("Expiry sweep job failed")
            raise
        logger.info("Expiry sweep job completed", extra={"expired_count": summary["expired_count"]})
        return summary


class _SweepWorker(Thread):
    def __init__(self, app: Flask, *, initial_delay: float, interval: float):
        super().__init__(daemon=True, name="expiry-sweeper")
        self.app = app
        self._initial_delay = max(0.0, initial_delay)
        self._interval = max(1.0, interval)
        self._stop_event = Event()

    def stop(self) -> None:
        self._stop_event.set()

    def run(self) -> None:  # pragma: no cover - thread execution
        if self._stop_event.wait(self._initial_delay):
            return
        while not self._stop_event.is_set():
            try:
                run_sweep_job(self.app)
            except Exception:
                # Logged inside run_sweep_job; the next tick retries.
                pass
            if self._stop_event.wait(self._interval):
                break


def start_expiry_scheduler(app: Flask, *, initial_delay: float = 5.0) -> None:
    global _worker, _atexit_registered
    with _scheduler_lock:
        if _worker is not None:
            return
        interval = float(app.config["EXPIRY_SWEEP_INTERVAL_SECONDS"])
        _worker = _SweepWorker(app, initial_delay=initial_delay, interval=interval)
        _worker.start()
        if not _atexit_registered:
            atexit.register(shutdown_expiry_scheduler)
            _atexit_registered = True
        logger.info(
            "Expiry sweep scheduler started",
            extra={"interval_seconds": interval, "initial_delay_seconds": initial_delay},
        )


def shutdown_expiry_scheduler() -> None:
    global _worker
    with _scheduler_lock:
        if _worker is None:
            return
        _worker.stop()
        _worker.join(timeout=1.0)
        _worker = None
        logger.info("Expiry sweep scheduler stopped")
