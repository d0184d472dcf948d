"""Apple Wallet driver: regenerate the signed pass, then push the update.

Apple passes are static signed files, so a points change means rebuilding the
bundle from current data, publishing it and nudging the device over APNs.
The device then pulls the new bundle through the PassKit web service.

A failed regeneration never pushes; a push failure after a good regeneration
is raised as ``PushError`` with ``serial_number`` set.
"""
from __future__ import annotations

from typing import Callable, Optional

from sqlalchemy.orm import Session

from walletsync.database import SessionLocal
from walletsync.errors import NotFoundError, PushError, RegenerateError
from walletsync.integrations.apns import ApnsClient
from walletsync.integrations.base import APNS_VENDOR, PushOutcome, RegenerateOutcome, guarded_call
from walletsync.integrations.pass_bundle import PassBundleBuilder, build_pass_json
from walletsync.integrations.pass_storage import FilesystemPassPublisher
from walletsync.models.db.passes import CustomerProgram, Pass
from walletsync.models.db.registrations import WalletRegistration
from walletsync.services import registration_ledger
from walletsync.utils import get_logger
from walletsync.utils.circuit_breaker import CircuitBreaker
from walletsync.utils.time import Clock, utc_now

logger = get_logger(__name__)

APPLE_WALLET_VENDOR = "apple_wallet"


class AppleWalletDriver:
    def __init__(
        self,
        *,
        builder: PassBundleBuilder,
        publisher: FilesystemPassPublisher,
        apns: ApnsClient,
        breaker: Optional[CircuitBreaker] = None,
        session_factory: Callable[[], Session] = SessionLocal,
        clock: Clock = utc_now,
    ) -> None:
        self.builder = builder
        self.publisher = publisher
        self.apns = apns
        self.breaker = breaker
        self._session_factory = session_factory
        self._clock = clock

    def apply(self, pass_id: str, device_token: Optional[str] = None, registration_id: Optional[int] = None) -> RegenerateOutcome:
        outcome = self.regenerate(pass_id, registration_id=registration_id)
        if not device_token:
            return outcome
        try:
            outcome.push = self.push(outcome.serial_number, device_token)
        except PushError as e:
            e.serial_number = outcome.serial_number
            raise
        return outcome

    def regenerate(self, pass_id: str, *, registration_id: Optional[int] = None) -> RegenerateOutcome:
        with self._session_factory() as session:
            wallet_pass = session.get(Pass, pass_id)
            if wallet_pass is None:
                raise NotFoundError(f"pass {pass_id} not found", vendor=APPLE_WALLET_VENDOR)
            program = self._membership(session, wallet_pass, registration_id)
            pass_data = dict(wallet_pass.pass_data or {})
            points = program.points if program is not None else int(pass_data.get("points", 0) or 0)
            tier = program.tier if program is not None else pass_data.get("tier")

            try:
                document = build_pass_json(
                    serial_number=wallet_pass.serial_number,
                    authentication_token=wallet_pass.authentication_token,
                    pass_style=wallet_pass.pass_type,
                    pass_data=pass_data,
                    points=points,
                    tier=tier,
                    customer_name=program.customer_name if program is not None else None,
                )
                bundle = self.builder.build(document)
                url = self.publisher.publish(wallet_pass.id, wallet_pass.serial_number, bundle)
            except RegenerateError:
                raise
            except Exception as e:
                raise RegenerateError(f"could not regenerate pass {pass_id}: {e}") from e

            now = self._clock()
            # Epoch seconds, but strictly increasing so two regenerations within one
            # second still show up for passesUpdatedSince.
            update_tag = max(int(now.timestamp()), int(wallet_pass.update_tag or 0) + 1)
            wallet_pass.apple_pass_url = url
            wallet_pass.update_tag = update_tag
            wallet_pass.updated_at = now
            session.commit()
            logger.info("Apple pass regenerated", pass_id=pass_id, serial_number=wallet_pass.serial_number, points=points)
            return RegenerateOutcome(
                pass_id=wallet_pass.id,
                serial_number=wallet_pass.serial_number,
                pass_url=url,
                update_tag=update_tag,
            )

    def push(self, serial_number: str, device_token: str) -> PushOutcome:
        outcome = guarded_call(self.breaker, APNS_VENDOR, lambda: self.apns.send_update_push(device_token))
        if outcome.token_unregistered:
            with self._session_factory() as session:
                registration_ledger.clear_device_token(session, device_token)
                session.commit()
            logger.info("Dropped stale Apple device token", serial_number=serial_number)
        return outcome

    @staticmethod
    def _membership(session: Session, wallet_pass: Pass, registration_id: Optional[int]) -> Optional[CustomerProgram]:
        registration: Optional[WalletRegistration] = None
        if registration_id is not None:
            registration = session.get(WalletRegistration, registration_id)
        if registration is None:
            registration = next(iter(sorted(wallet_pass.registrations, key=lambda r: r.id)), None)
        return registration.customer_program if registration is not None else None

    def close(self) -> None:
        self.apns.close()


__all__ = ["AppleWalletDriver", "APPLE_WALLET_VENDOR"]
