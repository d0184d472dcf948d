"""Google Wallet driver: patch the points balance of an issued object.

Google passes are live server-side objects, so a points change is a single
PATCH of ``loyaltyPoints.balance``. The object type is not stored with the
registration, so the configured types are tried in order and only a 404 moves
on to the next one.
"""
from __future__ import annotations

from typing import Any, Mapping, Optional, Sequence
from urllib.parse import quote

import httpx
from google.auth import exceptions as google_auth_exceptions
from google.auth import transport as google_auth_transport
from google.oauth2 import service_account

from walletsync.config import GOOGLE_WALLET_SETTINGS, VENDOR_HTTP_TIMEOUT_SECONDS
from walletsync.errors import NotFoundError, ValidationError, VendorError
from walletsync.integrations.base import (
    GOOGLE_WALLET_VENDOR,
    PatchOutcome,
    guarded_call,
    vendor_error_from_response,
)
from walletsync.integrations.credentials import load_service_account
from walletsync.utils import get_logger
from walletsync.utils.circuit_breaker import CircuitBreaker

logger = get_logger(__name__)

DEFAULT_TOKEN_URI = "https://oauth2.googleapis.com/token"


def build_balance_patch(balance: int) -> dict[str, Any]:
    return {"loyaltyPoints": {"balance": {"int": int(balance)}}}


class _AuthResponse(google_auth_transport.Response):
    def __init__(self, response: httpx.Response) -> None:
        self._response = response

    @property
    def status(self) -> int:
        return self._response.status_code

    @property
    def headers(self) -> Mapping[str, str]:
        return self._response.headers

    @property
    def data(self) -> bytes:
        return self._response.content


class HttpxAuthRequest(google_auth_transport.Request):
    """google-auth transport over the client's httpx session."""

    def __init__(self, http: httpx.Client) -> None:
        self._http = http

    def __call__(self, url, method="GET", body=None, headers=None, timeout=None, **kwargs):
        try:
            response = self._http.request(method, url, content=body, headers=headers, timeout=timeout or httpx.USE_CLIENT_DEFAULT)
        except httpx.RequestError as e:
            raise google_auth_exceptions.TransportError(e) from e
        return _AuthResponse(response)


class GoogleWalletClient:
    """Authorised HTTP client for the Wallet Objects REST API.

    Access tokens come from google-auth service-account credentials and are
    reused until google-auth considers them close to expiry.
    """

    def __init__(
        self,
        service_account_key: Optional[str] = None,
        *,
        http_client: Optional[httpx.Client] = None,
        base_url: Optional[str] = None,
        scope: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> None:
        self._service_account_key = service_account_key if service_account_key is not None else GOOGLE_WALLET_SETTINGS["service_account_key"]
        self._credentials: service_account.Credentials | None = None
        self.base_url = str(base_url or GOOGLE_WALLET_SETTINGS["api_base_url"]).rstrip("/")
        self.scope = str(scope or GOOGLE_WALLET_SETTINGS["scope"])
        self._owns_client = http_client is None
        self._http = http_client or httpx.Client(timeout=timeout or VENDOR_HTTP_TIMEOUT_SECONDS)
        self._auth_request = HttpxAuthRequest(self._http)

    @property
    def credentials(self) -> service_account.Credentials:
        if self._credentials is None:
            info = load_service_account(self._service_account_key, vendor=GOOGLE_WALLET_VENDOR)  # type: ignore[arg-type]
            info.setdefault("token_uri", DEFAULT_TOKEN_URI)
            try:
                self._credentials = service_account.Credentials.from_service_account_info(info, scopes=[self.scope])
            except ValueError as e:
                raise VendorError(f"service account key is unusable: {e}", vendor=GOOGLE_WALLET_VENDOR, kind="auth") from e
        return self._credentials

    def access_token(self) -> str:
        credentials = self.credentials
        if credentials.valid:
            return credentials.token
        try:
            credentials.refresh(self._auth_request)
        except google_auth_exceptions.TransportError as e:
            raise VendorError(f"token request failed: {e}", vendor=GOOGLE_WALLET_VENDOR, kind="network") from e
        except google_auth_exceptions.RefreshError as e:
            raise VendorError(f"token refresh rejected: {e}", vendor=GOOGLE_WALLET_VENDOR, kind="auth") from e
        logger.debug("Google Wallet access token refreshed", expiry=str(credentials.expiry))
        return credentials.token

    def patch_object(self, object_type: str, object_id: str, body: dict[str, Any]) -> httpx.Response:
        url = f"{self.base_url}/{object_type}/{quote(object_id, safe='')}"
        headers = {"Authorization": f"Bearer {self.access_token()}"}
        return self._send("PATCH", url, json=body, headers=headers)

    def _send(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        try:
            return self._http.request(method, url, **kwargs)
        except httpx.TimeoutException as e:
            raise VendorError(f"timeout calling {url}", vendor=GOOGLE_WALLET_VENDOR, kind="network") from e
        except httpx.RequestError as e:
            raise VendorError(f"request to {url} failed: {e}", vendor=GOOGLE_WALLET_VENDOR, kind="network") from e

    def close(self) -> None:
        if self._owns_client:
            self._http.close()


class GoogleWalletDriver:
    def __init__(
        self,
        client: GoogleWalletClient,
        *,
        breaker: Optional[CircuitBreaker] = None,
        object_types: Optional[Sequence[str]] = None,
    ) -> None:
        self.client = client
        self.breaker = breaker
        self.object_types = list(object_types or GOOGLE_WALLET_SETTINGS["object_types"])  # type: ignore[arg-type]

    def apply(self, object_id: str, new_balance: int) -> PatchOutcome:
        """Set the object's points balance to ``new_balance``.

        Writing an absolute value makes a repeated patch harmless.
        """
        if not object_id:
            raise ValidationError("google_patch requires an object id")
        return guarded_call(self.breaker, GOOGLE_WALLET_VENDOR, lambda: self._patch(object_id, int(new_balance)))

    def _patch(self, object_id: str, balance: int) -> PatchOutcome:
        body = build_balance_patch(balance)
        for object_type in self.object_types:
            response = self.client.patch_object(object_type, object_id, body)
            if response.status_code == 404:
                continue
            if response.is_success:
                logger.info("Google Wallet object updated", object_id=object_id, object_type=object_type, balance=balance)
                return PatchOutcome(object_id=object_id, object_type=object_type, balance=balance, status_code=response.status_code)
            raise vendor_error_from_response(GOOGLE_WALLET_VENDOR, response)
        raise NotFoundError(
            f"object {object_id} not found as any of {', '.join(self.object_types)}",
            vendor=GOOGLE_WALLET_VENDOR,
        )

    def close(self) -> None:
        self.client.close()


__all__ = ["GoogleWalletClient", "GoogleWalletDriver", "HttpxAuthRequest", "build_balance_patch"]
