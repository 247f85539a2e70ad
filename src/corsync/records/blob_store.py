"""
Filesystem blob store for record attachments.

Objects live at {root}/{bucket}/{path}. Attachment references that are
already absolute HTTPS URLs (for example pre-signed storage links) are
fetched with requests instead.
"""

from __future__ import annotations

import logging
from pathlib import Path

import requests

from corsync.records.source import BlobNotFoundError, BlobStore, RecordSourceError

logger = logging.getLogger(__name__)

# Buckets the exporters read from
DOCUMENTS_BUCKET = "documents"
CERTIFICATIONS_BUCKET = "certifications"
MAINTENANCE_BUCKET = "maintenance"
FORM_ATTACHMENTS_BUCKET = "form-attachments"


class FileSystemBlobStore(BlobStore):
    """
    Blob store rooted at a local directory.

    Attributes:
        root: Directory containing one subdirectory per bucket.
        timeout: Bounded wait for URL downloads, in seconds.
    """

    def __init__(self, root: Path | str, timeout: float = 30.0) -> None:
        self.root = Path(root)
        self.timeout = timeout

    def download(self, bucket: str, path: str) -> bytes:
        if path.startswith(("https://", "http://")):
            return self._download_url(path)

        bucket_dir = (self.root / bucket).resolve()
        target = (bucket_dir / path.lstrip("/")).resolve()
        if not target.is_relative_to(bucket_dir):
            raise RecordSourceError(f"Attachment path escapes bucket {bucket}: {path}")
        if not target.is_file():
            raise BlobNotFoundError(f"Attachment not found: {bucket}/{path}")

        try:
            return target.read_bytes()
        except OSError as e:
            raise RecordSourceError(f"Cannot read attachment {bucket}/{path}: {e}") from e

    def _download_url(self, url: str) -> bytes:
        if not url.startswith("https://"):
            raise RecordSourceError("Attachment URLs must use HTTPS")
        try:
            with requests.get(url, timeout=self.timeout) as response:
                if response.status_code == 404:
                    raise BlobNotFoundError(f"Attachment not found: {url}")
                response.raise_for_status()
                return response.content
        except requests.exceptions.RequestException as e:
            raise RecordSourceError(f"Cannot download attachment: {e}") from e
