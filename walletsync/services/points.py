"""Points changes on a membership, followed by the wallet fan-out."""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional, Tuple

from sqlalchemy.orm import Session

from walletsync.jobs.queue import WalletJobQueue
from walletsync.models.db.passes import CustomerProgram
from walletsync.services.wallet_fanout import enqueue_wallet_updates
from walletsync.utils import get_logger

logger = get_logger(__name__)


def compute_new_balance(current: int, points: int, update_type: str) -> int:
    if update_type == "set":
        return max(points, 0)
    if update_type == "add":
        return current + points
    if update_type == "subtract":
        return max(current - points, 0)
    raise ValueError(f"unsupported update type {update_type!r}")


def update_points(
    session: Session,
    queue: WalletJobQueue,
    customer_program_id: int,
    *,
    points: int,
    update_type: str = "set",
    tier: Optional[str] = None,
    request_id: Optional[str] = None,
) -> Tuple[CustomerProgram, list[str]]:
    """Apply the change, commit it, then enqueue wallet jobs.

    The membership update is committed before fan-out so a failed enqueue can
    never roll it back. Raises LookupError for an unknown membership.
    """
    program = session.get(CustomerProgram, customer_program_id)
    if program is None:
        raise LookupError(f"customer program {customer_program_id} not found")

    previous = program.points
    program.points = compute_new_balance(program.points, points, update_type)
    if tier is not None:
        program.tier = tier
    program.updated_at = datetime.now(timezone.utc)
    session.commit()
    logger.info(
        "Points updated",
        customer_program_id=customer_program_id,
        update_type=update_type,
        previous=previous,
        points=program.points,
    )

    job_ids = enqueue_wallet_updates(session, queue, customer_program_id, program.points, request_id=request_id)
    return program, job_ids


__all__ = ["compute_new_balance", "update_points"]
