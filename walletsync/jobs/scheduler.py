"""Scheduler tick: drain due wallet jobs and dispatch them to the vendor drivers.

One tick fetches a bounded batch of due jobs (oldest first), claims each one,
validates its payload, dispatches by ``job_type`` and records the result:

- success              -> done / succeeded
- unknown job type     -> done / abandoned_unknown_type (never retried)
- missing pass/object  -> done / abandoned_not_found (unless retry_not_found)
- any other failure    -> attempts + 1, then either done / given_up once the
                          budget is spent, or failed_retryable with backoff
- expired lease taken over -> the lost attempt is counted; a job whose budget
                          it spent is given up without dispatching

Results are written on behalf of this worker, so a worker whose lease was
taken over by another discards its result instead of overwriting.

A failing job never aborts the rest of the batch.
"""
from __future__ import annotations

import os
import socket
import time
import uuid
from typing import Any, Callable, Optional, Protocol

from walletsync.config import WALLET_QUEUE_SETTINGS
from walletsync.errors import NotFoundError, PushError, error_kind
from walletsync.jobs.queue import LEASE_EXPIRED, WalletJobQueue
from walletsync.models.db.enums import WalletJobOutcome, WalletJobType
from walletsync.models.db.wallet_jobs import WalletJob
from walletsync.models.schemas.jobs import (
    ApplePassRegeneratePayload,
    ApplePushPayload,
    GooglePatchPayload,
    TickSummary,
    is_known_job_type,
    parse_payload,
)
from walletsync.utils import get_logger, log_business_event, log_performance
from walletsync.utils.backoff import compute_backoff_seconds

logger = get_logger(__name__)

SUCCEEDED = "succeeded"
RETRIED = "retried"
GIVEN_UP = "given_up"
ABANDONED_UNKNOWN_TYPE = "abandoned_unknown_type"
ABANDONED_NOT_FOUND = "abandoned_not_found"
SKIPPED = "skipped"


class GoogleDriverProtocol(Protocol):
    def apply(self, object_id: str, new_balance: int) -> object: ...


class AppleDriverProtocol(Protocol):
    def apply(self, pass_id: str, device_token: Optional[str] = None, registration_id: Optional[int] = None) -> object: ...
    def push(self, serial_number: str, device_token: str) -> object: ...


def default_worker_id() -> str:
    return f"{socket.gethostname()}:{os.getpid()}:{uuid.uuid4().hex[:8]}"


class WalletJobScheduler:
    def __init__(
        self,
        queue: WalletJobQueue,
        *,
        google_driver: GoogleDriverProtocol,
        apple_driver: AppleDriverProtocol,
        worker_id: Optional[str] = None,
        lease_seconds: Optional[float] = None,
        retry_not_found: Optional[bool] = None,
        split_apple_push: Optional[bool] = None,
    ) -> None:
        self.queue = queue
        self.google_driver = google_driver
        self.apple_driver = apple_driver
        self.worker_id = worker_id or default_worker_id()
        self.lease_seconds = float(lease_seconds if lease_seconds is not None else WALLET_QUEUE_SETTINGS["lease_seconds"])
        self.retry_not_found = bool(WALLET_QUEUE_SETTINGS["retry_not_found"] if retry_not_found is None else retry_not_found)
        self.split_apple_push = bool(WALLET_QUEUE_SETTINGS["split_apple_push"] if split_apple_push is None else split_apple_push)
        self._handlers: dict[str, Callable[[WalletJob, Any], None]] = {
            WalletJobType.GOOGLE_PATCH.value: self._dispatch_google_patch,
            WalletJobType.REGENERATE_PKPASS.value: self._dispatch_regenerate,
            WalletJobType.APPLE_PUSH.value: self._dispatch_apple_push,
        }

    def tick(self, limit: Optional[int] = None) -> TickSummary:
        started = time.perf_counter()
        jobs = self.queue.fetch_due(limit)
        summary = TickSummary(total=len(jobs))
        if not jobs:
            return summary

        logger.info("Processing wallet jobs", count=len(jobs), worker_id=self.worker_id)
        for job in jobs:
            try:
                result = self.process_job(job)
            except Exception as e:
                # Queue bookkeeping itself failed; the lease will expire and the job comes back.
                logger.error("Wallet job bookkeeping failed", job_id=job.id, job_type=job.job_type, error=str(e), exc_info=True)
                result = RETRIED
            _count(summary, result)

        summary.duration_ms = round((time.perf_counter() - started) * 1000, 2)
        logger.info(
            "Wallet job batch complete",
            processed=summary.processed,
            failed=summary.failed,
            total=summary.total,
            given_up=summary.given_up,
            skipped=summary.skipped,
        )
        log_performance("wallet_jobs_tick", summary.duration_ms, {"total": summary.total, "worker_id": self.worker_id})
        return summary

    def process_job(self, job: WalletJob) -> str:
        """Claim, dispatch and record one job. Returns the result label."""
        if not self.queue.claim(job.id, worker_id=self.worker_id, lease_seconds=self.lease_seconds):
            return SKIPPED
        # Re-read: taking over an expired lease may have spent an attempt.
        claimed = self.queue.get(job.id)
        if claimed is None:
            return SKIPPED
        job = claimed

        if not is_known_job_type(job.job_type):
            logger.warning("Unknown wallet job type, abandoning", job_id=job.id, job_type=job.job_type)
            if not self.queue.mark_done(job.id, outcome=WalletJobOutcome.ABANDONED_UNKNOWN_TYPE, worker_id=self.worker_id):
                return self._claim_lost(job)
            return ABANDONED_UNKNOWN_TYPE

        if job.attempts >= job.max_attempts:
            return self._give_up(job, job.attempts, job.last_error or "attempt budget spent", job.last_error_kind or LEASE_EXPIRED)

        try:
            payload = parse_payload(job.job_type, job.payload)
            self._handlers[job.job_type](job, payload)
        except Exception as e:
            return self._handle_failure(job, e)

        if not self.queue.mark_done(
            job.id, outcome=WalletJobOutcome.SUCCEEDED, attempts=job.attempts + 1, worker_id=self.worker_id
        ):
            return self._claim_lost(job)
        logger.info("Wallet job succeeded", job_id=job.id, job_type=job.job_type, attempt=job.attempts + 1)
        return SUCCEEDED

    # ------------------------------- dispatching ------------------------------- #
    def _dispatch_google_patch(self, job: WalletJob, payload: GooglePatchPayload) -> None:
        self.google_driver.apply(payload.object_id, payload.balance)

    def _dispatch_apple_push(self, job: WalletJob, payload: ApplePushPayload) -> None:
        self.apple_driver.push(payload.serial_number, payload.device_token)

    def _dispatch_regenerate(self, job: WalletJob, payload: ApplePassRegeneratePayload) -> None:
        try:
            self.apple_driver.apply(
                payload.pass_id,
                device_token=payload.device_token,
                registration_id=payload.registration_id,
            )
        except PushError as e:
            if e.kind == "not_configured" and e.serial_number is not None:
                # A stand-alone push job could never succeed either.
                logger.warning(
                    "Pass regenerated but APNs is not configured, push skipped",
                    job_id=job.id,
                    serial_number=e.serial_number,
                )
                return
            if not self.split_apple_push or e.serial_number is None or not payload.device_token:
                raise
            # Bundle is already published; only the push is retried.
            follow_up = self.queue.enqueue(
                WalletJobType.APPLE_PUSH.value,
                {"serialNumber": e.serial_number, "deviceToken": payload.device_token, "passId": payload.pass_id},
            )
            logger.warning(
                "Push failed after regeneration, scheduled stand-alone push",
                job_id=job.id,
                follow_up_job_id=follow_up,
                error=str(e),
            )

    # -------------------------------- failures --------------------------------- #
    def _handle_failure(self, job: WalletJob, exc: Exception) -> str:
        attempts = min(job.attempts + 1, job.max_attempts)
        kind = error_kind(exc)
        message = str(exc)[:2000]

        if isinstance(exc, NotFoundError) and not self.retry_not_found:
            if not self.queue.mark_done(
                job.id,
                outcome=WalletJobOutcome.ABANDONED_NOT_FOUND,
                attempts=attempts,
                error=message,
                error_kind=kind,
                worker_id=self.worker_id,
            ):
                return self._claim_lost(job)
            logger.warning("Wallet job target not found, abandoning", job_id=job.id, job_type=job.job_type, error=message)
            return ABANDONED_NOT_FOUND

        if attempts >= job.max_attempts:
            return self._give_up(job, attempts, message, kind)

        backoff = compute_backoff_seconds(attempts)
        if not self.queue.mark_attempt_failed(
            job.id, attempts, backoff, error=message, error_kind=kind, worker_id=self.worker_id
        ):
            return self._claim_lost(job)
        log = logger.warning if kind != "unexpected" else logger.error
        log(
            "Wallet job attempt failed, rescheduled",
            job_id=job.id,
            job_type=job.job_type,
            attempt=attempts,
            max_attempts=job.max_attempts,
            backoff_seconds=backoff,
            error=message,
            error_kind=kind,
            exc_info=kind == "unexpected",
        )
        return RETRIED

    def _give_up(self, job: WalletJob, attempts: int, message: str, kind: str) -> str:
        if not self.queue.mark_done(
            job.id,
            outcome=WalletJobOutcome.GIVEN_UP,
            attempts=attempts,
            error=message,
            error_kind=kind,
            worker_id=self.worker_id,
        ):
            return self._claim_lost(job)
        logger.error(
            "Wallet job gave up after max attempts",
            job_id=job.id,
            job_type=job.job_type,
            attempts=attempts,
            error=message,
            error_kind=kind,
        )
        log_business_event("wallet_job_given_up", {
            "job_id": job.id,
            "job_type": job.job_type,
            "attempts": attempts,
            "error_kind": kind,
        })
        return GIVEN_UP

    def _claim_lost(self, job: WalletJob) -> str:
        logger.warning(
            "Wallet job lease lost before the result was recorded, result discarded",
            job_id=job.id,
            job_type=job.job_type,
            worker_id=self.worker_id,
        )
        return SKIPPED


def _count(summary: TickSummary, result: str) -> None:
    if result == SUCCEEDED:
        summary.succeeded += 1
        summary.processed += 1
    elif result == ABANDONED_UNKNOWN_TYPE:
        summary.abandoned += 1
        summary.processed += 1
    elif result == ABANDONED_NOT_FOUND:
        summary.abandoned += 1
        summary.failed += 1
    elif result == GIVEN_UP:
        summary.given_up += 1
        summary.failed += 1
    elif result == RETRIED:
        summary.retried += 1
        summary.failed += 1
    elif result == SKIPPED:
        summary.skipped += 1


__all__ = ["WalletJobScheduler", "default_worker_id"]
