"""
media/uploader.py -- Signed uploads to Cloudinary through the official SDK.

Only the calls the document routes need are wrapped: a signed upload and two
delivery URL builders. Credentials are passed per call from settings rather
than through cloudinary.config(), so tests and multiple accounts never share
global state.

The SDK signs the request and encodes tags and context, including escaping
"|" and "=" inside context values.

Any SDK error (HTTP status, socket failure, bad response) raises
MediaUploadError. The API layer maps that to 502 so a media host outage
never looks like a client error.
"""

import io
import logging
from dataclasses import dataclass
from typing import Optional

import cloudinary
import cloudinary.exceptions
import cloudinary.uploader

from core.config import get_settings

logger = logging.getLogger("migranthealth.media")

ALLOWED_FILE_TYPES = (
    "application/pdf",
    "image/jpeg",
    "image/jpg",
    "image/png",
    "image/webp",
)


class MediaUploadError(Exception):
    """The media host could not be reached or rejected the upload."""


class InvalidUploadError(ValueError):
    """The file is not acceptable: wrong type or too large."""


@dataclass
class UploadResult:
    public_id: str
    secure_url: str
    url: str
    bytes: int = 0
    format: str = ""
    resource_type: str = ""
    folder: str = ""
    created_at: str = ""


def validate_upload(content_type: str, size: int, max_bytes: Optional[int] = None) -> None:
    """Raise InvalidUploadError unless the file type and size are allowed."""
    limit = max_bytes if max_bytes is not None else get_settings().max_upload_bytes
    if size > limit:
        raise InvalidUploadError(f"File size exceeds {limit // (1024 * 1024)}MB limit")
    if content_type not in ALLOWED_FILE_TYPES:
        raise InvalidUploadError("Invalid file type. Only PDF, JPG, PNG, and WebP files are allowed")


class MediaUploader:
    """Uploads files to one Cloudinary account.

    Usage:
        uploader = MediaUploader()
        result = uploader.upload(data, folder="medical-documents/MW_1",
                                 public_id="DOC_1", tags=["lab_report"])
        thumb = uploader.thumbnail_url(result.public_id)
    """

    def __init__(
        self,
        cloud_name: Optional[str] = None,
        api_key: Optional[str] = None,
        api_secret: Optional[str] = None,
        timeout: Optional[int] = None,
    ) -> None:
        settings = get_settings()
        self.cloud_name = cloud_name if cloud_name is not None else settings.media_cloud_name
        self.api_key = api_key if api_key is not None else settings.media_api_key
        self.api_secret = api_secret if api_secret is not None else settings.media_api_secret
        self.timeout = timeout or settings.media_upload_timeout

    @property
    def enabled(self) -> bool:
        return bool(self.cloud_name and self.api_key and self.api_secret)

    def upload(
        self,
        data: bytes,
        folder: str,
        public_id: str,
        tags: Optional[list[str]] = None,
        context: Optional[dict] = None,
        filename: str = "upload",
        resource_type: str = "auto",
    ) -> UploadResult:
        """Upload raw bytes and return the stored asset's identifiers.

        Raises MediaUploadError if the uploader is not configured or the SDK
        reports any failure.
        """
        if not self.enabled:
            raise MediaUploadError("Media host is not configured")

        options: dict = {
            "cloud_name": self.cloud_name,
            "api_key": self.api_key,
            "api_secret": self.api_secret,
            "timeout": self.timeout,
            "folder": folder,
            "public_id": public_id,
            "resource_type": resource_type,
            "overwrite": False,
            "filename": filename,
        }
        if tags:
            options["tags"] = [str(t) for t in tags]
        if context:
            options["context"] = {k: str(v) for k, v in context.items()}

        try:
            body = cloudinary.uploader.upload(io.BytesIO(data), **options)
        except cloudinary.exceptions.Error as e:
            logger.warning("Media upload failed for %s/%s: %s", folder, public_id, e)
            raise MediaUploadError(f"Upload failed: {e}") from e

        logger.info("Uploaded %s (%s bytes) to %s", body.get("public_id"), body.get("bytes"), folder)
        return UploadResult(
            public_id=body.get("public_id", f"{folder}/{public_id}"),
            secure_url=body.get("secure_url", ""),
            url=body.get("url", ""),
            bytes=body.get("bytes", len(data)),
            format=body.get("format", ""),
            resource_type=body.get("resource_type", ""),
            folder=body.get("folder", folder),
            created_at=body.get("created_at", ""),
        )

    def _delivery_url(self, public_id: str, transformation: list[dict]) -> str:
        return cloudinary.CloudinaryImage(public_id).build_url(
            cloud_name=self.cloud_name,
            secure=True,
            transformation=transformation,
        )

    def thumbnail_url(self, public_id: str, width: int = 150, height: int = 150) -> str:
        return self._delivery_url(
            public_id,
            [{"crop": "fill", "width": width, "height": height}, {"quality": "auto:low"}, {"fetch_format": "auto"}],
        )

    def optimized_url(self, public_id: str) -> str:
        return self._delivery_url(public_id, [{"quality": "auto"}, {"fetch_format": "auto"}])
