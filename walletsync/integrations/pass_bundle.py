"""Build and sign ``.pkpass`` bundles.

A bundle is a zip of ``pass.json``, image assets, ``manifest.json`` (SHA-1 of
every other file) and ``signature``: a detached PKCS#7 signature of the
manifest made with the pass type certificate, carrying Apple's WWDR
intermediate.
"""
from __future__ import annotations

import hashlib
import io
import json
import os
import zipfile
from typing import Any, Mapping, Optional

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.serialization import pkcs7

from walletsync.config import APPLE_WALLET_SETTINGS
from walletsync.errors import RegenerateError
from walletsync.integrations.credentials import load_pem_material

# Pass design keys copied straight from Pass.pass_data into pass.json
_DESIGN_KEYS = (
    "description",
    "logoText",
    "backgroundColor",
    "foregroundColor",
    "labelColor",
    "barcodes",
    "locations",
    "expirationDate",
)
_PASS_STYLES = {"storeCard", "coupon", "generic", "eventTicket", "boardingPass"}


class PassSigner:
    """Signs manifests with the pass type certificate. Material is loaded lazily."""

    def __init__(
        self,
        certificate: Optional[str] = None,
        private_key: Optional[str] = None,
        key_password: Optional[str] = None,
        wwdr_certificate: Optional[str] = None,
    ) -> None:
        cfg = APPLE_WALLET_SETTINGS
        self._certificate_value = certificate or cfg["pass_certificate"]
        self._private_key_value = private_key or cfg["pass_private_key"]
        self._key_password = key_password or cfg["pass_key_password"]
        self._wwdr_value = wwdr_certificate or cfg["wwdr_certificate"]
        self._loaded: tuple[Any, Any, Any] | None = None

    def _load(self) -> tuple[Any, Any, Any]:
        if self._loaded is not None:
            return self._loaded
        missing = [
            name
            for name, value in (
                ("APPLE_PASS_CERTIFICATE", self._certificate_value),
                ("APPLE_PASS_PRIVATE_KEY", self._private_key_value),
                ("APPLE_WWDR_CERTIFICATE", self._wwdr_value),
            )
            if not value
        ]
        if missing:
            raise RegenerateError(f"pass signing not configured: {', '.join(missing)}")
        try:
            certificate = x509.load_pem_x509_certificate(load_pem_material(self._certificate_value))  # type: ignore[arg-type]
            wwdr = x509.load_pem_x509_certificate(load_pem_material(self._wwdr_value))  # type: ignore[arg-type]
            password = str(self._key_password).encode() if self._key_password else None
            key = serialization.load_pem_private_key(load_pem_material(self._private_key_value), password=password)  # type: ignore[arg-type]
        except (ValueError, TypeError) as e:
            raise RegenerateError(f"cannot load pass signing material: {e}") from e
        self._loaded = (certificate, key, wwdr)
        return self._loaded

    def sign(self, manifest: bytes) -> bytes:
        certificate, key, wwdr = self._load()
        return (
            pkcs7.PKCS7SignatureBuilder()
            .set_data(manifest)
            .add_signer(certificate, key, hashes.SHA256())
            .add_certificate(wwdr)
            .sign(serialization.Encoding.DER, [pkcs7.PKCS7Options.DetachedSignature, pkcs7.PKCS7Options.Binary])
        )


def build_pass_json(
    *,
    serial_number: str,
    authentication_token: str,
    pass_style: str,
    pass_data: Mapping[str, Any],
    points: int,
    tier: Optional[str],
    customer_name: Optional[str] = None,
) -> dict[str, Any]:
    cfg = APPLE_WALLET_SETTINGS
    style = pass_style if pass_style in _PASS_STYLES else "storeCard"
    document: dict[str, Any] = {
        "formatVersion": 1,
        "passTypeIdentifier": cfg["pass_type_id"],
        "teamIdentifier": cfg["team_id"],
        "organizationName": pass_data.get("organizationName") or cfg["organization_name"],
        "serialNumber": serial_number,
        "authenticationToken": authentication_token,
        "description": pass_data.get("description") or "Loyalty card",
    }
    if cfg["web_service_url"]:
        document["webServiceURL"] = cfg["web_service_url"]
    for key in _DESIGN_KEYS:
        if key in pass_data and key != "description":
            document[key] = pass_data[key]

    fields: dict[str, list[dict[str, Any]]] = {
        "primaryFields": [{"key": "points", "label": pass_data.get("pointsLabel", "Points"), "value": points}],
    }
    if tier:
        fields["secondaryFields"] = [{"key": "tier", "label": pass_data.get("tierLabel", "Tier"), "value": tier}]
    if customer_name:
        fields["auxiliaryFields"] = [{"key": "member", "label": "Member", "value": customer_name}]
    document[style] = fields
    return document


class PassBundleBuilder:
    def __init__(self, signer: PassSigner, *, assets_dir: Optional[str] = None) -> None:
        self.signer = signer
        self.assets_dir = assets_dir if assets_dir is not None else APPLE_WALLET_SETTINGS["assets_dir"]

    def _asset_files(self) -> dict[str, bytes]:
        files: dict[str, bytes] = {}
        if not self.assets_dir or not os.path.isdir(self.assets_dir):  # type: ignore[arg-type]
            return files
        for name in sorted(os.listdir(self.assets_dir)):  # type: ignore[arg-type]
            path = os.path.join(self.assets_dir, name)  # type: ignore[arg-type]
            if os.path.isfile(path) and name.lower().endswith(".png"):
                with open(path, "rb") as fh:
                    files[name] = fh.read()
        return files

    def build(self, pass_json: Mapping[str, Any]) -> bytes:
        files = {"pass.json": json.dumps(pass_json, ensure_ascii=False, separators=(",", ":")).encode()}
        files.update(self._asset_files())
        if "icon.png" not in files:
            raise RegenerateError("pass assets must include icon.png")

        manifest = json.dumps(
            {name: hashlib.sha1(data).hexdigest() for name, data in files.items()},
            sort_keys=True,
        ).encode()
        signature = self.signer.sign(manifest)

        buffer = io.BytesIO()
        with zipfile.ZipFile(buffer, "w", compression=zipfile.ZIP_DEFLATED) as archive:
            for name, data in files.items():
                archive.writestr(name, data)
            archive.writestr("manifest.json", manifest)
            archive.writestr("signature", signature)
        return buffer.getvalue()


__all__ = ["PassSigner", "PassBundleBuilder", "build_pass_json"]
