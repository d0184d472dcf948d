"""Central Enum definitions for wallet sync states.

These replace scattered string literals to ensure consistency across
DB models, schemas, and the scheduler.
"""
from __future__ import annotations
import enum


class WalletJobType(str, enum.Enum):
    GOOGLE_PATCH = "google_patch"
    REGENERATE_PKPASS = "regenerate_pkpass"
    APPLE_PUSH = "apple_push"


class WalletJobStatus(str, enum.Enum):
    PENDING = "pending"
    FAILED_RETRYABLE = "failed_retryable"
    IN_FLIGHT = "in_flight"
    DONE = "done"


class WalletJobOutcome(str, enum.Enum):
    SUCCEEDED = "succeeded"
    GIVEN_UP = "given_up"
    ABANDONED_UNKNOWN_TYPE = "abandoned_unknown_type"
    ABANDONED_NOT_FOUND = "abandoned_not_found"


class WalletPlatform(str, enum.Enum):
    APPLE = "apple"
    GOOGLE = "google"


# Statuses a job can be picked up from (in_flight only once its lease lapses)
CLAIMABLE_STATUSES = (WalletJobStatus.PENDING, WalletJobStatus.FAILED_RETRYABLE)

__all__ = [
    "WalletJobType",
    "WalletJobStatus",
    "WalletJobOutcome",
    "WalletPlatform",
    "CLAIMABLE_STATUSES",
]
