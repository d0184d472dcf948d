"""Registration ledger: which wallets hold which pass.

Rows are written by the registration endpoint and by the PassKit device
handshake (the push token usually arrives after the pass was added), and read
by the points fan-out. Helpers add/flush but leave the commit to the caller.
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional, Tuple

from sqlalchemy import select
from sqlalchemy.orm import Session

from walletsync.models.db.enums import WalletPlatform
from walletsync.models.db.passes import CustomerProgram, Pass
from walletsync.models.db.registrations import WalletRegistration
from walletsync.utils import get_logger

logger = get_logger(__name__)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def find_pass_by_serial(session: Session, serial_number: str) -> Optional[Pass]:
    return session.scalar(select(Pass).where(Pass.serial_number == serial_number))


def registrations_for_program(session: Session, customer_program_id: int) -> list[WalletRegistration]:
    stmt = (
        select(WalletRegistration)
        .where(WalletRegistration.customer_program_id == customer_program_id)
        .order_by(WalletRegistration.id)
    )
    return list(session.scalars(stmt).all())


def upsert_registration(
    session: Session,
    *,
    pass_id: str,
    customer_program_id: int,
    wallet: str,
    device_token: Optional[str] = None,
) -> Tuple[WalletRegistration, bool]:
    """Create or refresh the registration for (pass, membership, wallet).

    The vendor identifiers are copied from the pass. Raises LookupError when
    the pass or membership does not exist.
    """
    wallet_type = WalletPlatform(wallet).value
    wallet_pass = session.get(Pass, pass_id)
    if wallet_pass is None:
        raise LookupError(f"pass {pass_id} not found")
    if session.get(CustomerProgram, customer_program_id) is None:
        raise LookupError(f"customer program {customer_program_id} not found")

    registration = session.scalar(
        select(WalletRegistration).where(
            WalletRegistration.pass_id == pass_id,
            WalletRegistration.customer_program_id == customer_program_id,
            WalletRegistration.wallet_type == wallet_type,
        )
    )
    created = registration is None
    if registration is None:
        registration = WalletRegistration(
            pass_id=pass_id,
            customer_program_id=customer_program_id,
            wallet_type=wallet_type,
        )
        session.add(registration)

    if wallet_type == WalletPlatform.GOOGLE.value:
        registration.google_object_id = wallet_pass.google_object_id
    else:
        registration.apple_serial_number = wallet_pass.serial_number
        if device_token:
            registration.apple_device_token = device_token
    registration.updated_at = _now()
    session.flush()
    logger.info(
        "Wallet registration saved",
        registration_id=registration.id,
        pass_id=pass_id,
        wallet=wallet_type,
        created=created,
    )
    return registration, created


def stamp_push_token(
    session: Session,
    *,
    wallet_pass: Pass,
    device_library_id: str,
    push_token: str,
) -> Tuple[WalletRegistration, bool]:
    """Record a device's push token for an Apple pass.

    Prefers the row already tied to this device, then an Apple row for the
    serial with no device yet, and otherwise adds a registration for the
    device alongside the pass's existing membership.
    """
    serial = wallet_pass.serial_number
    base = select(WalletRegistration).where(
        WalletRegistration.wallet_type == WalletPlatform.APPLE.value,
        WalletRegistration.apple_serial_number == serial,
    )
    registration = session.scalar(base.where(WalletRegistration.device_library_id == device_library_id))
    if registration is None:
        registration = session.scalar(base.where(WalletRegistration.device_library_id.is_(None)).order_by(WalletRegistration.id))

    created = False
    if registration is None:
        template = session.scalar(
            select(WalletRegistration).where(WalletRegistration.pass_id == wallet_pass.id).order_by(WalletRegistration.id)
        )
        if template is None:
            raise LookupError(f"pass {wallet_pass.id} has no membership to attach a device to")
        registration = WalletRegistration(
            pass_id=wallet_pass.id,
            customer_program_id=template.customer_program_id,
            wallet_type=WalletPlatform.APPLE.value,
            apple_serial_number=serial,
        )
        session.add(registration)
        created = True
    elif registration.device_library_id is None:
        # First device for this registration
        created = True

    registration.device_library_id = device_library_id
    registration.apple_device_token = push_token
    registration.updated_at = _now()
    session.flush()
    logger.info("Apple device registered", serial_number=serial, registration_id=registration.id, created=created)
    return registration, created


def remove_device_registration(session: Session, *, serial_number: str, device_library_id: str) -> bool:
    registration = session.scalar(
        select(WalletRegistration).where(
            WalletRegistration.apple_serial_number == serial_number,
            WalletRegistration.device_library_id == device_library_id,
        )
    )
    if registration is None:
        return False
    session.delete(registration)
    session.flush()
    logger.info("Apple device unregistered", serial_number=serial_number, registration_id=registration.id)
    return True


def serials_for_device(
    session: Session,
    device_library_id: str,
    updated_since: Optional[int] = None,
) -> Tuple[list[str], int]:
    """Serial numbers on a device whose pass changed after ``updated_since``.

    Returns the serials and the newest update tag among the device's passes.
    """
    stmt = (
        select(Pass.serial_number, Pass.update_tag)
        .join(WalletRegistration, WalletRegistration.pass_id == Pass.id)
        .where(WalletRegistration.device_library_id == device_library_id)
        .distinct()
    )
    rows = session.execute(stmt).all()
    last_updated = max((int(tag or 0) for _, tag in rows), default=0)
    serials = sorted(
        serial for serial, tag in rows if updated_since is None or int(tag or 0) > updated_since
    )
    return serials, last_updated


def clear_device_token(session: Session, device_token: str) -> int:
    """Forget a push token APNs reported as unregistered. Returns rows touched."""
    rows = list(
        session.scalars(select(WalletRegistration).where(WalletRegistration.apple_device_token == device_token)).all()
    )
    for registration in rows:
        registration.apple_device_token = None
        registration.updated_at = _now()
    session.flush()
    if rows:
        logger.info("Cleared unregistered device token", registrations=len(rows))
    return len(rows)


__all__ = [
    "find_pass_by_serial",
    "registrations_for_program",
    "upsert_registration",
    "stamp_push_token",
    "remove_device_registration",
    "serials_for_device",
    "clear_device_token",
]
