"""Blob storage for product images.

The domain store only keeps the public URL returned by :meth:`upload`; it never
looks at the file contents.
"""

from __future__ import annotations

import mimetypes
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path, PurePosixPath
from typing import Optional

import httpx

from . import log
from .constants import DEFAULT_IMAGE_BUCKET, DEFAULT_REQUEST_TIMEOUT
from .errors import RemoteError


@dataclass(frozen=True)
class ImageUpload:
    """An image file selected by the user, ready to be uploaded."""

    filename: str
    content: bytes
    content_type: str = "application/octet-stream"

    @classmethod
    def from_path(cls, path: Path) -> "ImageUpload":
        path = Path(path).expanduser()
        content_type = mimetypes.guess_type(path.name)[0] or "application/octet-stream"
        return cls(filename=path.name, content=path.read_bytes(), content_type=content_type)


class ImageStorage(ABC):
    @abstractmethod
    def upload(self, image: ImageUpload) -> str:
        """Store ``image`` and return its public URL."""

    @abstractmethod
    def delete(self, url: str) -> None:
        """Remove the object behind ``url``."""


class SupabaseImageStorage(ImageStorage):
    """Image storage backed by a Supabase Storage bucket.

    Objects are stored as ``<owner>/<epoch-ms>.<ext>`` inside ``bucket`` and
    exposed through the bucket's public URL. Deleting a URL that does not
    belong to the bucket is a no-op.
    """

    def __init__(
        self,
        url: str,
        key: str,
        *,
        bucket: str = DEFAULT_IMAGE_BUCKET,
        owner: str = "public",
        timeout: float = DEFAULT_REQUEST_TIMEOUT,
        access_token: Optional[str] = None,
        client: Optional[httpx.Client] = None,
    ) -> None:
        self.base_url = f"{url.rstrip('/')}/storage/v1"
        self.bucket = bucket
        self.owner = owner
        self.timeout = timeout
        self._headers = {"apikey": key, "Authorization": f"Bearer {access_token or key}"}
        self._client = client or httpx.Client(timeout=timeout)

    @property
    def public_prefix(self) -> str:
        return f"{self.base_url}/object/public/{self.bucket}/"

    def _object_path(self, image: ImageUpload) -> str:
        suffix = PurePosixPath(image.filename).suffix.lstrip(".").lower() or "bin"
        millis = int(datetime.now(UTC).timestamp() * 1000)
        return f"{self.owner}/{millis}.{suffix}"

    def _send(self, method: str, url: str, *, headers: Optional[dict] = None, **kwargs) -> httpx.Response:
        try:
            response = self._client.request(
                method,
                url,
                headers={**self._headers, **(headers or {})},
                timeout=self.timeout,
                **kwargs,
            )
        except httpx.TimeoutException as exc:
            log.error("Image storage %s timed out after %ss", method, self.timeout)
            raise RemoteError(f"Image storage request timed out after {self.timeout}s") from exc
        except httpx.HTTPError as exc:
            log.error("Image storage %s failed: %s", method, exc)
            raise RemoteError(f"Image storage request failed: {exc}") from exc
        if response.is_error:
            log.error("Image storage %s rejected with status %s", method, response.status_code)
            raise RemoteError(f"Image storage rejected the request: {response.status_code} {response.reason_phrase}")
        return response

    def upload(self, image: ImageUpload) -> str:
        path = self._object_path(image)
        self._send(
            "POST",
            f"{self.base_url}/object/{self.bucket}/{path}",
            headers={"Content-Type": image.content_type},
            content=image.content,
        )
        log.info("Uploaded image '%s' to bucket '%s'", image.filename, self.bucket)
        return self.public_prefix + path

    def delete(self, url: str) -> None:
        if not url.startswith(self.public_prefix):
            log.debug("Skipping delete of image outside bucket '%s': %s", self.bucket, url)
            return
        path = url[len(self.public_prefix):]
        self._send("DELETE", f"{self.base_url}/object/{self.bucket}", json={"prefixes": [path]})
        log.info("Deleted image '%s' from bucket '%s'", path, self.bucket)
