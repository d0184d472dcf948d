"""Shared driver types: call outcomes, status classification and the breaker guard."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Optional, TypeVar

import httpx

from walletsync.errors import NotFoundError, VendorError
from walletsync.utils import get_logger
from walletsync.utils.circuit_breaker import CircuitBreaker

logger = get_logger(__name__)

T = TypeVar("T")

GOOGLE_WALLET_VENDOR = "google_wallet"
APNS_VENDOR = "apns"


@dataclass
class PatchOutcome:
    object_id: str
    object_type: str
    balance: int
    status_code: int


@dataclass
class PushOutcome:
    device_token: str
    delivered: bool
    status_code: int | None = None
    apns_id: str | None = None
    # APNs said the token is gone (410); the ledger entry was cleared
    token_unregistered: bool = False


@dataclass
class RegenerateOutcome:
    pass_id: str
    serial_number: str
    pass_url: str
    update_tag: int
    push: PushOutcome | None = None


def classify_status(status_code: int) -> str:
    if status_code in (401, 403):
        return "auth"
    if status_code == 429:
        return "rate_limited"
    if status_code >= 500:
        return "server_error"
    return "vendor_error"


def vendor_error_from_response(vendor: str, response: httpx.Response) -> VendorError:
    """Build a VendorError keeping the vendor's own message."""
    detail = _response_message(response)
    return VendorError(detail, vendor=vendor, kind=classify_status(response.status_code), status_code=response.status_code)


def _response_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        text = response.text.strip()
        return text[:500] or response.reason_phrase or f"HTTP {response.status_code}"
    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
        if isinstance(error, str):
            return body.get("error_description") or error
        if body.get("reason"):
            return str(body["reason"])
    return str(body)[:500]


def guarded_call(breaker: Optional[CircuitBreaker], vendor: str, call: Callable[[], T]) -> T:
    """Run ``call`` through the vendor's circuit breaker.

    A denied call raises ``VendorError(kind="circuit_open")`` without touching
    the network. Not-found answers count as a healthy vendor.
    """
    if breaker is None:
        return call()
    allow, reason = breaker.allow_call(vendor)
    if not allow:
        logger.warning("Vendor call skipped due to circuit breaker", vendor=vendor, reason=reason)
        raise VendorError(f"circuit breaker denies call: {reason}", vendor=vendor, kind="circuit_open")
    try:
        result = call()
    except NotFoundError:
        breaker.record_success(vendor)
        raise
    except VendorError as e:
        if e.kind != "not_configured":
            breaker.record_failure(vendor)
        raise
    breaker.record_success(vendor)
    return result


__all__ = [
    "GOOGLE_WALLET_VENDOR",
    "APNS_VENDOR",
    "PatchOutcome",
    "PushOutcome",
    "RegenerateOutcome",
    "classify_status",
    "vendor_error_from_response",
    "guarded_call",
]
