"""Durable wallet job queue backed by the ``wallet_push_jobs`` table.

Delivery is at-least-once: a job is handed out by ``fetch_due`` until it is
marked done, and a worker must ``claim`` it before dispatching.

Status machine::

    pending ──claim──▶ in_flight ──mark_done──▶ done (terminal)
       ▲                   │
       │                   └─mark_attempt_failed──▶ failed_retryable ──claim──▶ in_flight ...
       └── enqueue

A claim is an atomic conditional UPDATE; it only succeeds while the row is
still claimable (due, not done, not held under a live lease). A worker that
dies mid-job leaves an expired lease behind and the job becomes due again;
reclaiming it counts the lost attempt against ``max_attempts``.

Result writes (``mark_done`` / ``mark_attempt_failed``) accept the claiming
``worker_id``. With it, the write only lands while that worker still holds
the claim, so a worker whose lease was taken over cannot overwrite the new
owner's state.

Every mutation runs in its own short session/transaction.
"""
from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any, Callable, Optional

from sqlalchemy import and_, case, func, or_, select, update
from sqlalchemy.orm import Session

from walletsync.config import WALLET_QUEUE_SETTINGS
from walletsync.database import SessionLocal
from walletsync.errors import ValidationError
from walletsync.models.db.enums import CLAIMABLE_STATUSES, WalletJobOutcome, WalletJobStatus
from walletsync.models.db.wallet_jobs import WalletJob
from walletsync.models.schemas.jobs import QueueSnapshot, dump_payload, parse_payload
from walletsync.utils import get_logger
from walletsync.utils.time import Clock, ensure_utc, utc_now

logger = get_logger(__name__)

_CLAIMABLE = [s.value for s in CLAIMABLE_STATUSES]
_DONE = WalletJobStatus.DONE.value
_IN_FLIGHT = WalletJobStatus.IN_FLIGHT.value

LEASE_EXPIRED = "lease_expired"


def _due_clause(now: datetime):
    """Rows a worker may pick up at ``now``."""
    lease_lapsed = and_(
        WalletJob.status == _IN_FLIGHT,
        or_(WalletJob.lease_expires_at.is_(None), WalletJob.lease_expires_at <= now),
    )
    return and_(
        WalletJob.next_attempt_at <= now,
        or_(WalletJob.status.in_(_CLAIMABLE), lease_lapsed),
    )


def _held_by(worker_id: Optional[str]) -> tuple:
    """Extra filters for a result write made on behalf of ``worker_id``."""
    if worker_id is None:
        return ()
    return (WalletJob.status == _IN_FLIGHT, WalletJob.claimed_by == worker_id)


class WalletJobQueue:
    def __init__(
        self,
        session_factory: Callable[[], Session] = SessionLocal,
        *,
        clock: Clock = utc_now,
        default_max_attempts: Optional[int] = None,
        batch_size: Optional[int] = None,
    ) -> None:
        self._session_factory = session_factory
        self._clock = clock
        self.default_max_attempts = int(default_max_attempts or WALLET_QUEUE_SETTINGS["default_max_attempts"])
        self.batch_size = int(batch_size or WALLET_QUEUE_SETTINGS["batch_size"])

    def now(self) -> datetime:
        return ensure_utc(self._clock())

    # --------------------------------- producers -------------------------------- #
    def enqueue(self, job_type: str, payload: Any, *, max_attempts: Optional[int] = None, delay_seconds: float = 0.0) -> str:
        """Validate and persist a new pending job; returns its id.

        Raises :class:`ValidationError` for an unknown type or a malformed
        payload. Never deduplicates: two calls create two jobs.
        """
        model = parse_payload(job_type, payload)
        budget = int(max_attempts if max_attempts is not None else self.default_max_attempts)
        if budget < 1:
            raise ValidationError("max_attempts must be at least 1")
        if delay_seconds < 0:
            raise ValidationError("delay_seconds cannot be negative")
        now = self.now()
        job = WalletJob(
            job_type=job_type,
            payload=dump_payload(model),
            status=WalletJobStatus.PENDING.value,
            attempts=0,
            max_attempts=budget,
            next_attempt_at=now + timedelta(seconds=delay_seconds),
            created_at=now,
            updated_at=now,
        )
        with self._session_factory() as session:
            session.add(job)
            session.commit()
            job_id = job.id
        logger.info("Wallet job enqueued", job_id=job_id, job_type=job_type, max_attempts=budget)
        return job_id

    # --------------------------------- consumers -------------------------------- #
    def fetch_due(self, limit: Optional[int] = None) -> list[WalletJob]:
        """Due, not-done jobs, oldest ``next_attempt_at`` first. Read-only."""
        now = self.now()
        stmt = (
            select(WalletJob)
            .where(_due_clause(now))
            .order_by(WalletJob.next_attempt_at.asc(), WalletJob.created_at.asc())
            .limit(limit or self.batch_size)
        )
        with self._session_factory() as session:
            return list(session.scalars(stmt).all())

    def claim(self, job_id: str, *, worker_id: str, lease_seconds: Optional[float] = None) -> bool:
        """Atomically move a due job to ``in_flight`` under a lease. False when lost.

        Taking over a lapsed lease means the previous holder never recorded
        its attempt, so that attempt is counted here (capped at
        ``max_attempts``) and noted as ``lease_expired``.
        """
        now = self.now()
        lease = float(lease_seconds if lease_seconds is not None else WALLET_QUEUE_SETTINGS["lease_seconds"])
        # SET expressions read the pre-update row, so this sees the old status.
        taken_over = WalletJob.status == _IN_FLIGHT
        stmt = (
            update(WalletJob)
            .where(WalletJob.id == job_id, _due_clause(now))
            .values(
                status=_IN_FLIGHT,
                attempts=case(
                    (and_(taken_over, WalletJob.attempts < WalletJob.max_attempts), WalletJob.attempts + 1),
                    else_=WalletJob.attempts,
                ),
                last_error=case(
                    (taken_over, "lease expired before the attempt was recorded"),
                    else_=WalletJob.last_error,
                ),
                last_error_kind=case((taken_over, LEASE_EXPIRED), else_=WalletJob.last_error_kind),
                claimed_by=worker_id,
                lease_expires_at=now + timedelta(seconds=lease),
                last_attempt_at=now,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        with self._session_factory() as session:
            result = session.execute(stmt)
            session.commit()
            claimed = result.rowcount == 1
        if not claimed:
            logger.debug("Wallet job claim lost", job_id=job_id, worker_id=worker_id)
        return claimed

    def mark_done(
        self,
        job_id: str,
        *,
        outcome: WalletJobOutcome | str = WalletJobOutcome.SUCCEEDED,
        attempts: Optional[int] = None,
        error: Optional[str] = None,
        error_kind: Optional[str] = None,
        worker_id: Optional[str] = None,
    ) -> bool:
        """Move a job to the terminal ``done`` state.

        Idempotent: returns False (and changes nothing) when the job is
        already done or does not exist, or when ``worker_id`` is given and
        that worker no longer holds the claim.
        """
        outcome_value = WalletJobOutcome(outcome).value
        now = self.now()
        values: dict[str, Any] = {
            "status": _DONE,
            "outcome": outcome_value,
            "claimed_by": None,
            "lease_expires_at": None,
            "completed_at": now,
            "updated_at": now,
        }
        if attempts is not None:
            values["attempts"] = attempts
        if error is not None:
            values["last_error"] = error
            values["last_error_kind"] = error_kind
        stmt = (
            update(WalletJob)
            .where(WalletJob.id == job_id, WalletJob.status != _DONE, *_held_by(worker_id))
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        with self._session_factory() as session:
            result = session.execute(stmt)
            session.commit()
            changed = result.rowcount == 1
        if changed:
            logger.debug("Wallet job done", job_id=job_id, outcome=outcome_value)
        elif worker_id is not None:
            logger.debug("Wallet job result not recorded, claim no longer held", job_id=job_id, worker_id=worker_id)
        return changed

    def mark_attempt_failed(
        self,
        job_id: str,
        new_attempt_count: int,
        backoff_seconds: float,
        *,
        error: Optional[str] = None,
        error_kind: Optional[str] = None,
        worker_id: Optional[str] = None,
    ) -> bool:
        """Record a failed attempt and reschedule ``backoff_seconds`` from now.

        Does not decide whether to give up; callers compare against
        ``max_attempts`` first. Counts beyond ``max_attempts`` are rejected.
        Returns False when the job is already done, or when ``worker_id`` is
        given and that worker no longer holds the claim.
        """
        if new_attempt_count < 0:
            raise ValueError("attempt count cannot be negative")
        if backoff_seconds < 0:
            raise ValueError("backoff cannot be negative")
        now = self.now()
        with self._session_factory() as session:
            job = session.get(WalletJob, job_id)
            if job is None:
                raise LookupError(f"wallet job {job_id} not found")
            if job.status == _DONE:
                return False
            if new_attempt_count > job.max_attempts:
                raise ValueError(
                    f"attempt count {new_attempt_count} exceeds max_attempts {job.max_attempts} for job {job_id}"
                )
            stmt = (
                update(WalletJob)
                .where(WalletJob.id == job_id, WalletJob.status != _DONE, *_held_by(worker_id))
                .values(
                    attempts=new_attempt_count,
                    status=WalletJobStatus.FAILED_RETRYABLE.value,
                    next_attempt_at=now + timedelta(seconds=backoff_seconds),
                    claimed_by=None,
                    lease_expires_at=None,
                    last_error=error,
                    last_error_kind=error_kind,
                    updated_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            result = session.execute(stmt)
            session.commit()
            changed = result.rowcount == 1
        if not changed:
            logger.debug("Wallet job failure not recorded, claim no longer held", job_id=job_id, worker_id=worker_id)
        return changed

    # -------------------------------- inspection -------------------------------- #
    def get(self, job_id: str) -> Optional[WalletJob]:
        with self._session_factory() as session:
            return session.get(WalletJob, job_id)

    def list_jobs(self, status: Optional[str] = None, limit: int = 50) -> list[WalletJob]:
        stmt = select(WalletJob).order_by(WalletJob.created_at.desc()).limit(limit)
        if status:
            stmt = stmt.where(WalletJob.status == WalletJobStatus(status).value)
        with self._session_factory() as session:
            return list(session.scalars(stmt).all())

    def snapshot(self) -> QueueSnapshot:
        now = self.now()
        with self._session_factory() as session:
            counts = {
                status: count
                for status, count in session.execute(
                    select(WalletJob.status, func.count()).group_by(WalletJob.status)
                ).all()
            }
            outcomes = {
                outcome: count
                for outcome, count in session.execute(
                    select(WalletJob.outcome, func.count())
                    .where(WalletJob.status == _DONE)
                    .group_by(WalletJob.outcome)
                ).all()
                if outcome is not None
            }
            due, oldest = session.execute(
                select(func.count(), func.min(WalletJob.next_attempt_at)).where(_due_clause(now))
            ).one()
        for status in WalletJobStatus:
            counts.setdefault(status.value, 0)
        return QueueSnapshot(
            counts=counts,
            outcomes=outcomes,
            due=int(due or 0),
            oldest_due_at=ensure_utc(oldest) if oldest is not None else None,
        )


__all__ = ["WalletJobQueue"]
