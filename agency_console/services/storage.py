"""Binary asset storage for photos and brochures.

Files are validated before anything is written (images up to 5 MB,
PDFs up to 10 MB), stored under a random key in a per-kind bucket
directory, and exposed through a public URL. Deleting takes that URL
back and derives the storage key from its last two path segments.
"""
from __future__ import annotations

import logging
import os
import secrets
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping

from werkzeug.utils import secure_filename

from ..errors import ValidationError

logger = logging.getLogger(__name__)

MEGABYTE = 1024 * 1024


@dataclass(frozen=True)
class UploadConstraints:
    bucket: str
    content_type_prefix: str
    max_bytes: int
    description: str


PHOTO_CONSTRAINTS = UploadConstraints("agency-photos", "image/", 5 * MEGABYTE, "an image file")
BROCHURE_CONSTRAINTS = UploadConstraints("agency-brochures", "application/pdf", 10 * MEGABYTE, "a PDF file")


def validate_upload(data: bytes, content_type: str, constraints: UploadConstraints) -> None:
    if not (content_type or "").startswith(constraints.content_type_prefix):
        raise ValidationError(f"Please upload {constraints.description}.", {"file": ["Invalid file type."]})
    if len(data) > constraints.max_bytes:
        limit = constraints.max_bytes // MEGABYTE
        raise ValidationError(f"File size must be less than {limit}MB.", {"file": ["File too large."]})
    if not data:
        raise ValidationError("The uploaded file is empty.", {"file": ["Empty file."]})


class AssetStorage:
    """Stores uploads on local disk and hands out public URLs."""

    def __init__(self, root: str | os.PathLike, url_prefix: str = "/uploads") -> None:
        self.root = Path(root)
        self.url_prefix = url_prefix.rstrip("/")

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> "AssetStorage":
        return cls(config["UPLOAD_FOLDER"], config.get("UPLOAD_URL_PREFIX", "/uploads"))

    def upload(self, data: bytes, filename: str, content_type: str, constraints: UploadConstraints) -> str:
        validate_upload(data, content_type, constraints)
        extension = Path(secure_filename(filename or "")).suffix.lower()
        key = f"{secrets.token_hex(12)}{extension}"
        bucket = self.root / constraints.bucket
        bucket.mkdir(parents=True, exist_ok=True)
        (bucket / key).write_bytes(data)
        logger.info("Stored %d bytes in %s/%s", len(data), constraints.bucket, key)
        return f"{self.url_prefix}/{constraints.bucket}/{key}"

    def path_for(self, bucket: str, key: str) -> Path:
        return self.root / secure_filename(bucket) / secure_filename(key)

    def delete(self, url: str) -> None:
        """Remove the asset behind ``url``; a missing file is not an error."""
        parts = [part for part in (url or "").split("?")[0].split("/") if part]
        if len(parts) < 2:
            raise ValidationError("Invalid asset URL.")
        bucket, key = parts[-2], parts[-1]
        path = self.path_for(bucket, key)
        try:
            path.unlink()
        except FileNotFoundError:
            logger.debug("Asset %s/%s already removed", bucket, key)
