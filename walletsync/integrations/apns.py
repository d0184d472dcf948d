"""APNs client for PassKit update pushes.

PassKit pushes carry an empty JSON body; the device then calls back into the
web service to fetch the updated pass. Requests go over HTTP/2 with a token
(ES256 JWT) built from the team's .p8 key.
"""
from __future__ import annotations

import time
from typing import Optional

import httpx
import jwt

from walletsync.config import APPLE_WALLET_SETTINGS, VENDOR_HTTP_TIMEOUT_SECONDS
from walletsync.errors import PushError
from walletsync.integrations.base import APNS_VENDOR, PushOutcome
from walletsync.integrations.credentials import load_pem_material
from walletsync.utils import get_logger

logger = get_logger(__name__)

PRODUCTION_HOST = "https://api.push.apple.com"
SANDBOX_HOST = "https://api.sandbox.push.apple.com"


class ApnsClient:
    def __init__(
        self,
        *,
        team_id: Optional[str] = None,
        key_id: Optional[str] = None,
        private_key: Optional[str] = None,
        topic: Optional[str] = None,
        use_sandbox: Optional[bool] = None,
        http_client: Optional[httpx.Client] = None,
        timeout: Optional[float] = None,
    ) -> None:
        cfg = APPLE_WALLET_SETTINGS
        self.team_id = team_id or cfg["team_id"]
        self.key_id = key_id or cfg["apns_key_id"]
        self._private_key_value = private_key or cfg["apns_key"]
        self.topic = topic or cfg["apns_topic"] or cfg["pass_type_id"]
        sandbox = cfg["apns_use_sandbox"] if use_sandbox is None else use_sandbox
        self.host = SANDBOX_HOST if sandbox else PRODUCTION_HOST
        self._token_ttl = int(cfg["apns_token_ttl_seconds"])  # type: ignore[arg-type]
        self._owns_client = http_client is None
        self._http_client = http_client
        self._timeout = timeout or VENDOR_HTTP_TIMEOUT_SECONDS
        self._token: str | None = None
        self._token_issued_at: float = 0.0

    @property
    def configured(self) -> bool:
        return bool(self.team_id and self.key_id and self._private_key_value and self.topic)

    @property
    def http(self) -> httpx.Client:
        # Built on first use so processes without Apple credentials never need h2
        if self._http_client is None:
            self._http_client = httpx.Client(http2=True, timeout=self._timeout)
        return self._http_client

    def provider_token(self) -> str:
        now = time.time()
        if self._token and now - self._token_issued_at < self._token_ttl:
            return self._token
        try:
            key = load_pem_material(self._private_key_value)  # type: ignore[arg-type]
            self._token = jwt.encode(
                {"iss": self.team_id, "iat": int(now)},
                key,
                algorithm="ES256",
                headers={"kid": self.key_id},
            )
        except (ValueError, TypeError, jwt.PyJWTError) as e:
            raise PushError(f"cannot sign APNs provider token: {e}", reason="invalid_key") from e
        self._token_issued_at = now
        return self._token

    def send_update_push(self, device_token: str) -> PushOutcome:
        """Tell the device its pass changed. 410 means the token is dead."""
        if not self.configured:
            raise PushError(
                "APNs is not configured (team id, key id, key, topic)",
                reason="not_configured",
                kind="not_configured",
            )

        url = f"{self.host}/3/device/{device_token}"
        headers = {
            "authorization": f"bearer {self.provider_token()}",
            "apns-topic": str(self.topic),
            "apns-push-type": "background",
            "apns-priority": "5",
        }
        try:
            response = self.http.post(url, content=b"{}", headers=headers)
        except httpx.TimeoutException as e:
            raise PushError(f"timeout pushing to {_short(device_token)}", reason="timeout") from e
        except httpx.RequestError as e:
            raise PushError(f"push to {_short(device_token)} failed: {e}", reason="network") from e

        apns_id = response.headers.get("apns-id")
        if response.status_code == 200:
            logger.debug("APNs push delivered", device_token=_short(device_token), apns_id=apns_id)
            return PushOutcome(device_token=device_token, delivered=True, status_code=200, apns_id=apns_id)
        reason = _reason(response)
        if response.status_code == 410:
            logger.info("APNs reports device token unregistered", device_token=_short(device_token), reason=reason)
            return PushOutcome(device_token=device_token, delivered=False, status_code=410, apns_id=apns_id, token_unregistered=True)
        if response.status_code == 403 and reason == "ExpiredProviderToken":
            self._token = None
        raise PushError(
            f"APNs rejected push: {reason or response.status_code}",
            vendor=APNS_VENDOR,
            status_code=response.status_code,
            reason=reason,
        )

    def close(self) -> None:
        if self._owns_client and self._http_client is not None:
            self._http_client.close()


def _reason(response: httpx.Response) -> str | None:
    try:
        body = response.json()
    except ValueError:
        return None
    return body.get("reason") if isinstance(body, dict) else None


def _short(device_token: str) -> str:
    return f"{device_token[:8]}..." if len(device_token) > 8 else device_token


__all__ = ["ApnsClient", "PRODUCTION_HOST", "SANDBOX_HOST"]
