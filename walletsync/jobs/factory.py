"""Builds the wallet pipeline once per process (API lifespan or CLI run)."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, Optional

from sqlalchemy.orm import Session

from walletsync.database import SessionLocal
from walletsync.integrations.apns import ApnsClient
from walletsync.integrations.apple_wallet import AppleWalletDriver
from walletsync.integrations.google_wallet import GoogleWalletClient, GoogleWalletDriver
from walletsync.integrations.pass_bundle import PassBundleBuilder, PassSigner
from walletsync.integrations.pass_storage import FilesystemPassPublisher
from walletsync.jobs.queue import WalletJobQueue
from walletsync.jobs.scheduler import WalletJobScheduler
from walletsync.utils import get_logger
from walletsync.utils.circuit_breaker import CircuitBreaker
from walletsync.utils.time import Clock, utc_now

logger = get_logger(__name__)


@dataclass
class WalletServices:
    queue: WalletJobQueue
    scheduler: WalletJobScheduler
    publisher: FilesystemPassPublisher
    breaker: CircuitBreaker
    google_driver: Optional[GoogleWalletDriver] = None
    apple_driver: Optional[AppleWalletDriver] = None
    _closers: list[Callable[[], None]] = field(default_factory=list, repr=False)

    def close(self) -> None:
        for closer in self._closers:
            try:
                closer()
            except Exception as e:  # pragma: no cover
                logger.warning("Error closing wallet client", error=str(e))
        self._closers.clear()


def create_wallet_services(
    session_factory: Callable[[], Session] = SessionLocal,
    *,
    clock: Clock = utc_now,
    worker_id: Optional[str] = None,
) -> WalletServices:
    breaker = CircuitBreaker(clock=clock)
    queue = WalletJobQueue(session_factory, clock=clock)
    publisher = FilesystemPassPublisher()

    google_client = GoogleWalletClient()
    google_driver = GoogleWalletDriver(google_client, breaker=breaker)

    apns = ApnsClient()
    apple_driver = AppleWalletDriver(
        builder=PassBundleBuilder(PassSigner()),
        publisher=publisher,
        apns=apns,
        breaker=breaker,
        session_factory=session_factory,
        clock=clock,
    )
    scheduler = WalletJobScheduler(queue, google_driver=google_driver, apple_driver=apple_driver, worker_id=worker_id)
    logger.info("Wallet services initialised", worker_id=scheduler.worker_id, apns_configured=apns.configured)
    return WalletServices(
        queue=queue,
        scheduler=scheduler,
        publisher=publisher,
        breaker=breaker,
        google_driver=google_driver,
        apple_driver=apple_driver,
        _closers=[google_driver.close, apple_driver.close],
    )


__all__ = ["WalletServices", "create_wallet_services"]
