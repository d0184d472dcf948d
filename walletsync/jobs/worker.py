"""Optional in-process worker that runs a scheduler tick on an interval."""
from __future__ import annotations

import threading
from typing import Optional

from walletsync.config import WALLET_WORKER_INTERVAL_SECONDS
from walletsync.jobs.scheduler import WalletJobScheduler
from walletsync.utils import get_logger

logger = get_logger(__name__)


class WalletSyncWorker:
    def __init__(self, scheduler: WalletJobScheduler, *, interval_seconds: Optional[float] = None):
        self.scheduler = scheduler
        self.interval_seconds = float(interval_seconds if interval_seconds is not None else WALLET_WORKER_INTERVAL_SECONDS)
        self._thread: threading.Thread | None = None
        self._stop_event = threading.Event()

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.running:  # pragma: no cover
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._loop, name="wallet-sync-worker", daemon=True)
        self._thread.start()
        logger.info("Wallet sync worker started", interval_seconds=self.interval_seconds)

    def stop(self, timeout: Optional[float] = 5.0) -> None:
        self._stop_event.set()
        logger.info("Wallet sync worker stop requested")
        if self._thread is not None:
            self._thread.join(timeout=timeout)

    def run_once(self):
        return self.scheduler.tick()

    def _loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                self.run_once()
            except Exception as e:  # pragma: no cover
                logger.error("Wallet sync worker tick failed", error=str(e), exc_info=True)
            self._stop_event.wait(self.interval_seconds)


__all__ = ["WalletSyncWorker"]
