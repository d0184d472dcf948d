"""Fan a membership change out to one wallet job per registered wallet.

Best effort: a failed enqueue is logged and skipped, it never fails the
business transaction that triggered it.
"""
from __future__ import annotations

from typing import Any, Optional

from sqlalchemy.orm import Session

from walletsync.jobs.queue import WalletJobQueue
from walletsync.models.db.enums import WalletJobType, WalletPlatform
from walletsync.models.db.registrations import WalletRegistration
from walletsync.services.registration_ledger import registrations_for_program
from walletsync.utils import get_logger, log_business_event

logger = get_logger(__name__)


def job_for_registration(registration: WalletRegistration, balance: int) -> Optional[tuple[str, dict[str, Any]]]:
    """(job_type, payload) for one registration, or None when it has no vendor id yet."""
    if registration.wallet_type == WalletPlatform.GOOGLE.value and registration.google_object_id:
        return WalletJobType.GOOGLE_PATCH.value, {"objectId": registration.google_object_id, "balance": int(balance)}
    if registration.wallet_type == WalletPlatform.APPLE.value and registration.apple_serial_number and registration.pass_id:
        payload: dict[str, Any] = {"passId": registration.pass_id, "registrationId": registration.id}
        if registration.apple_device_token:
            payload["deviceToken"] = registration.apple_device_token
        return WalletJobType.REGENERATE_PKPASS.value, payload
    return None


def enqueue_wallet_updates(
    session: Session,
    queue: WalletJobQueue,
    customer_program_id: int,
    balance: int,
    *,
    request_id: Optional[str] = None,
) -> list[str]:
    """Enqueue a sync job for every wallet holding this membership. Returns job ids."""
    job_ids: list[str] = []
    try:
        registrations = registrations_for_program(session, customer_program_id)
    except Exception as e:
        logger.error("Could not read wallet registrations", customer_program_id=customer_program_id, error=str(e), exc_info=True)
        return job_ids

    for registration in registrations:
        job = job_for_registration(registration, balance)
        if job is None:
            logger.debug("Registration has no vendor id yet, skipping", registration_id=registration.id)
            continue
        job_type, payload = job
        try:
            job_ids.append(queue.enqueue(job_type, payload))
        except Exception as e:
            logger.error(
                "Failed to enqueue wallet job",
                customer_program_id=customer_program_id,
                registration_id=registration.id,
                job_type=job_type,
                error=str(e),
            )

    if job_ids:
        log_business_event(
            "wallet_jobs_enqueued",
            {"customer_program_id": customer_program_id, "balance": balance, "jobs": len(job_ids)},
            request_id=request_id,
        )
    return job_ids


__all__ = ["enqueue_wallet_updates", "job_for_registration"]
