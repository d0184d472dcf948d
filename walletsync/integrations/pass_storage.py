"""Publishing of regenerated pass bundles to the file store."""
from __future__ import annotations

import os
import tempfile
from typing import Optional

from walletsync.config import APPLE_WALLET_SETTINGS
from walletsync.utils import get_logger

logger = get_logger(__name__)

PKPASS_CONTENT_TYPE = "application/vnd.apple.pkpass"


def _segment(value: str) -> str:
    if not value or "/" in value or "\\" in value or value in {".", ".."}:
        raise ValueError(f"invalid path segment {value!r}")
    return value


class FilesystemPassPublisher:
    """Stores bundles at ``<storage_dir>/<pass_id>/pass-<serial>.pkpass``.

    The public URL mirrors the same relative path under ``public_base_url``.
    Writes go through a temp file and ``os.replace`` so readers never see a
    partial bundle.
    """

    def __init__(self, storage_dir: Optional[str] = None, public_base_url: Optional[str] = None) -> None:
        self.storage_dir = str(storage_dir or APPLE_WALLET_SETTINGS["storage_dir"])
        self.public_base_url = str(public_base_url or APPLE_WALLET_SETTINGS["public_base_url"]).rstrip("/")

    def _relative(self, pass_id: str, serial_number: str) -> str:
        return f"{_segment(pass_id)}/pass-{_segment(serial_number)}.pkpass"

    def publish(self, pass_id: str, serial_number: str, data: bytes) -> str:
        relative = self._relative(pass_id, serial_number)
        target = os.path.join(self.storage_dir, *relative.split("/"))
        os.makedirs(os.path.dirname(target), exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=os.path.dirname(target), suffix=".tmp")
        try:
            with os.fdopen(fd, "wb") as fh:
                fh.write(data)
            os.replace(tmp_path, target)
        except OSError:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise
        url = f"{self.public_base_url}/{relative}"
        logger.info("Pass bundle published", pass_id=pass_id, serial_number=serial_number, size=len(data))
        return url

    def load(self, pass_id: str, serial_number: str) -> Optional[bytes]:
        path = os.path.join(self.storage_dir, *self._relative(pass_id, serial_number).split("/"))
        if not os.path.isfile(path):
            return None
        with open(path, "rb") as fh:
            return fh.read()


__all__ = ["FilesystemPassPublisher", "PKPASS_CONTENT_TYPE"]
