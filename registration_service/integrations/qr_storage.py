"""
QR rasterization and image storage for attendee credentials.

The token text is the source of truth; the PNG is only its visual carrier.
"""

import io
import os
from abc import ABC, abstractmethod

import requests
import segno
import structlog

from registration_service.errors import CollaboratorFailure

logger = structlog.get_logger(__name__)


class QRCodeRenderer:
    """Render text as a high error-correction PNG."""

    def __init__(self, scale=10, border=2):
        self.scale = scale
        self.border = border

    def render(self, text):
        try:
            qr = segno.make(text, error="h", micro=False)
        except ValueError as e:
            # segno.DataOverflowError is a ValueError
            raise CollaboratorFailure(f"Could not rasterize credential: {e}")
        buffer = io.BytesIO()
        qr.save(buffer, kind="png", scale=self.scale, border=self.border,
                dark="#000000", light="#FFFFFF")
        return buffer.getvalue()


class CredentialStorage(ABC):

    @abstractmethod
    def save(self, path, data, content_type="image/png"):
        """Store the bytes under path and return a URL for them."""


class FileSystemCredentialStorage(CredentialStorage):
    """Writes images below a local directory served by the credentials route."""

    def __init__(self, directory, base_url="/credentials"):
        self.directory = directory
        self.base_url = base_url.rstrip("/")

    def save(self, path, data, content_type="image/png"):
        target = os.path.join(self.directory, *path.split("/"))
        try:
            os.makedirs(os.path.dirname(target), exist_ok=True)
            with open(target, "wb") as handle:
                handle.write(data)
        except OSError as e:
            logger.error("credential_image_write_failed", path=path, error=str(e))
            raise CollaboratorFailure(f"Could not store credential image: {e}")
        return f"{self.base_url}/{path}"


class HttpCredentialStorage(CredentialStorage):
    """
    Uploads to an object storage bucket over HTTP.

    Expects the storage API shape: POST {storage_url}/object/{bucket}/{path}
    with upsert, and public objects under {storage_url}/object/public/...
    """

    def __init__(self, storage_url, bucket, api_key, timeout=10.0):
        self.storage_url = storage_url.rstrip("/")
        self.bucket = bucket
        self.api_key = api_key
        self.timeout = timeout

    def save(self, path, data, content_type="image/png"):
        try:
            response = requests.post(
                f"{self.storage_url}/object/{self.bucket}/{path}",
                data=data,
                headers={
                    "Authorization": f"Bearer {self.api_key}",
                    "Content-Type": content_type,
                    "x-upsert": "true",
                },
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            logger.error("credential_upload_error", path=path, error=str(e))
            raise CollaboratorFailure(f"Credential upload failed: {e}")

        if response.status_code not in (200, 201):
            logger.error(
                "credential_upload_rejected",
                path=path,
                status_code=response.status_code,
                body=response.text[:500],
            )
            raise CollaboratorFailure(f"Credential upload returned {response.status_code}")

        return f"{self.storage_url}/object/public/{self.bucket}/{path}"
