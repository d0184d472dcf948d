"""Exception hierarchy for the wallet sync pipeline.

Drivers raise these; the scheduler turns them into queue transitions so none of
them ever reach the cron caller.
"""
from __future__ import annotations

from typing import Optional


class WalletSyncError(Exception):
    code = "wallet_sync_error"
    retryable = True

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(WalletSyncError):
    """Payload missing or malformed for its job type. Raised before any vendor call."""

    code = "validation_error"


class VendorError(WalletSyncError):
    """A vendor (Google Wallet, APNs) call failed.

    ``kind`` is one of auth, rate_limited, server_error, network, vendor_error,
    not_found, not_configured, circuit_open, regenerate_failed, push_failed.
    ``not_configured`` means the call was never attempted and says nothing
    about vendor health.
    """

    code = "vendor_error"

    def __init__(self, message: str, *, vendor: str, kind: str = "vendor_error", status_code: Optional[int] = None):
        super().__init__(message)
        self.vendor = vendor
        self.kind = kind
        self.status_code = status_code

    def __str__(self) -> str:
        status = f" {self.status_code}" if self.status_code is not None else ""
        return f"{self.vendor} {self.kind}{status}: {self.message}"


class NotFoundError(VendorError):
    code = "not_found"
    retryable = False

    def __init__(self, message: str, *, vendor: str, status_code: Optional[int] = 404):
        super().__init__(message, vendor=vendor, kind="not_found", status_code=status_code)


class RegenerateError(VendorError):
    code = "regenerate_failed"

    def __init__(self, message: str, *, vendor: str = "apple_wallet"):
        super().__init__(message, vendor=vendor, kind="regenerate_failed")


class PushError(VendorError):
    """APNs rejected or never received the push.

    ``serial_number`` is set when the pass was regenerated successfully before
    the push failed, so only the push needs retrying.
    """

    code = "push_failed"

    def __init__(
        self,
        message: str,
        *,
        vendor: str = "apns",
        status_code: Optional[int] = None,
        reason: Optional[str] = None,
        serial_number: Optional[str] = None,
        kind: str = "push_failed",
    ):
        super().__init__(message, vendor=vendor, kind=kind, status_code=status_code)
        self.reason = reason
        self.serial_number = serial_number


def error_kind(exc: BaseException) -> str:
    """Short classification stored in ``last_error_kind``."""
    if isinstance(exc, VendorError):
        return exc.kind
    if isinstance(exc, WalletSyncError):
        return exc.code
    return "unexpected"


__all__ = [
    "WalletSyncError",
    "ValidationError",
    "VendorError",
    "NotFoundError",
    "RegenerateError",
    "PushError",
    "error_kind",
]
