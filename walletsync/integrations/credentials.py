"""Loading of vendor credentials from configuration values.

Secrets arrive through environment variables in one of three shapes: inline
PEM/JSON text, a path to a file, or base64 of either.
"""
from __future__ import annotations

import base64
import binascii
import json
import os
from typing import Any, Optional

from walletsync.errors import VendorError


def load_pem_material(value: Optional[str]) -> Optional[bytes]:
    """Return PEM bytes for ``value`` or None when unset."""
    if not value:
        return None
    text = value.strip()
    if "-----BEGIN" in text:
        # Env vars frequently carry literal "\n" sequences instead of newlines
        return text.replace("\\n", "\n").encode()
    if os.path.isfile(text):
        with open(text, "rb") as fh:
            return fh.read()
    try:
        decoded = base64.b64decode(text, validate=True)
    except (binascii.Error, ValueError) as e:
        raise ValueError("credential is neither PEM text, a file path nor base64") from e
    if b"-----BEGIN" not in decoded:
        raise ValueError("base64 credential does not contain PEM data")
    return decoded


def load_service_account(value: Optional[str], *, vendor: str = "google_wallet") -> dict[str, Any]:
    """Parse the Google service-account key (JSON text or a file path)."""
    if not value:
        raise VendorError("GOOGLE_SERVICE_ACCOUNT_KEY is not configured", vendor=vendor, kind="not_configured")
    raw = value.strip()
    if not raw.startswith("{") and os.path.isfile(raw):
        with open(raw, "r", encoding="utf-8") as fh:
            raw = fh.read()
    try:
        info = json.loads(raw)
    except json.JSONDecodeError as e:
        raise VendorError(f"service account key is not valid JSON: {e.msg}", vendor=vendor, kind="not_configured") from e
    missing = [k for k in ("client_email", "private_key") if not info.get(k)]
    if missing:
        raise VendorError(f"service account key missing {', '.join(missing)}", vendor=vendor, kind="not_configured")
    info["private_key"] = info["private_key"].replace("\\n", "\n")
    return info


__all__ = ["load_pem_material", "load_service_account"]
