"""Core application configuration & tunable queue/vendor rules.

All settings that may evolve (retry budget, backoff curve, lease length,
circuit thresholds, vendor endpoints and credentials) are centralized here so
they can be adjusted without diving into the scheduler or the drivers. Values
are read from environment variables once at import; tests monkeypatch the
module attributes (mutable dicts allowed).
"""
from __future__ import annotations

import os


def _env_bool(name: str, default: bool) -> bool:
	raw = os.getenv(name)
	if raw is None or not raw.strip():
		return default
	return raw.strip().lower() in {"1", "true", "yes", "on"}


# Shared secret the external cron uses to trigger a scheduler tick.
CRON_SECRET: str | None = os.getenv("CRON_SECRET") or None

# Deadline applied to every outbound vendor request (seconds).
VENDOR_HTTP_TIMEOUT_SECONDS: float = float(os.getenv("VENDOR_HTTP_TIMEOUT_SECONDS", "10"))

# ------------------------------- Wallet Queue ------------------------------ #
WALLET_QUEUE_SETTINGS: dict[str, int | bool] = {
	"default_max_attempts": int(os.getenv("WALLET_MAX_ATTEMPTS", "5")),
	"batch_size": int(os.getenv("WALLET_BATCH_SIZE", "50")),
	# A claimed job whose lease expires becomes due again (crashed worker).
	"lease_seconds": int(os.getenv("WALLET_LEASE_SECONDS", "300")),
	# Missing pass/object rows cannot be fixed by retrying.
	"retry_not_found": _env_bool("WALLET_RETRY_NOT_FOUND", False),
	# Push failure after a successful regeneration spawns a separate push job
	# instead of failing (and later re-regenerating) the whole Apple job.
	"split_apple_push": _env_bool("WALLET_SPLIT_APPLE_PUSH", True),
}

# Optional in-process periodic worker (the cron endpoint is the primary trigger).
WALLET_WORKER_ENABLED: bool = _env_bool("WALLET_WORKER_ENABLED", False)
WALLET_WORKER_INTERVAL_SECONDS: float = float(os.getenv("WALLET_WORKER_INTERVAL_SECONDS", "60"))

# --------------------------------- Backoff -------------------------------- #
# delay = base_seconds * factor ** attempts  ->  120, 240, 480, 960, 1920
BACKOFF_POLICY: dict[str, int | float] = {
	"base_seconds": 60,
	"factor": 2,
	"max_seconds": 3600,
	"jitter_pct": 0.0,
}

# ----------------------------- Circuit Breaker ---------------------------- #
CIRCUIT_BREAKER: dict[str, int | float] = {
	"failure_threshold": 5,          # Consecutive failures before OPEN
	"open_cooldown_seconds": 120,    # Stay OPEN for 2 minutes
	"half_open_probe_count": 1,      # Probes allowed in HALF_OPEN
}

# ------------------------------ Google Wallet ----------------------------- #
GOOGLE_WALLET_SETTINGS: dict[str, object] = {
	"service_account_key": os.getenv("GOOGLE_SERVICE_ACCOUNT_KEY") or None,
	"api_base_url": os.getenv("GOOGLE_WALLET_API_BASE_URL", "https://walletobjects.googleapis.com/walletobjects/v1"),
	"scope": "https://www.googleapis.com/auth/wallet_object.issuer",
	# Tried in order; a 404 moves on to the next object type.
	"object_types": ["loyaltyObject", "giftCardObject", "offerObject", "genericObject"],
}

# ------------------------------- Apple Wallet ----------------------------- #
APPLE_WALLET_SETTINGS: dict[str, object] = {
	"team_id": os.getenv("APPLE_TEAM_ID") or None,
	"pass_type_id": os.getenv("APPLE_PASS_TYPE_ID") or None,
	"organization_name": os.getenv("APPLE_ORGANIZATION_NAME", "Loyalty"),
	# PEM text, base64 of PEM, or a file path.
	"pass_certificate": os.getenv("APPLE_PASS_CERTIFICATE") or None,
	"pass_private_key": os.getenv("APPLE_PASS_PRIVATE_KEY") or None,
	"pass_key_password": os.getenv("APPLE_PASS_KEY_PASSWORD") or None,
	"wwdr_certificate": os.getenv("APPLE_WWDR_CERTIFICATE") or None,
	"assets_dir": os.getenv("APPLE_PASS_ASSETS_DIR") or None,
	"web_service_url": os.getenv("APPLE_WEB_SERVICE_URL") or None,
	# Published bundles
	"storage_dir": os.getenv("PASS_STORAGE_DIR", "./var/passes"),
	"public_base_url": os.getenv("PASS_PUBLIC_BASE_URL", "http://localhost:8000/passes"),
	# APNs token auth (.p8 key)
	"apns_key_id": os.getenv("APPLE_APNS_KEY_ID") or None,
	"apns_key": os.getenv("APPLE_APNS_KEY") or None,
	"apns_topic": os.getenv("APPLE_BUNDLE_ID") or os.getenv("APPLE_PASS_TYPE_ID") or None,
	"apns_use_sandbox": _env_bool("APPLE_APNS_SANDBOX", False),
	"apns_token_ttl_seconds": 3000,  # Apple rejects provider tokens older than 1h
}

__all__ = [
	"CRON_SECRET",
	"VENDOR_HTTP_TIMEOUT_SECONDS",
	"WALLET_QUEUE_SETTINGS",
	"WALLET_WORKER_ENABLED",
	"WALLET_WORKER_INTERVAL_SECONDS",
	"BACKOFF_POLICY",
	"CIRCUIT_BREAKER",
	"GOOGLE_WALLET_SETTINGS",
	"APPLE_WALLET_SETTINGS",
]
