"""
R2 storage helpers and the media upload gateway.

All user media is stored under:
  users/{user_id}/{category}/{folder?}/{timestamp_ms}_{uuid}.{ext}

Uploads never fail the caller: when R2 is unreachable or misconfigured the
gateway hands back the embedded payload and the record is persisted inline.
"""

import asyncio
import logging
import re
import time
from dataclasses import dataclass
from typing import Optional, Union
from uuid import uuid4

import boto3
import httpx
from botocore.config import Config as BotoConfig

from . import config
from .errors import UploadError
from .models import EmbeddedImage

logger = logging.getLogger(__name__)

_FOLDER_UNSAFE = re.compile(r"[^a-zA-Z0-9]")


# ── Result types ─────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class DurableUrl:
    url: str
    key: str

    degraded = False


@dataclass(frozen=True)
class EmbeddedFallback:
    url: str
    reason: str

    degraded = True


UploadResult = Union[DurableUrl, EmbeddedFallback]


# ── Helpers ──────────────────────────────────────────────────────────────────

def parse_data_uri(value: str) -> tuple[bytes, str]:
    """Decode `data:<mime>;base64,<payload>` into (bytes, mime)."""
    if not value.startswith("data:"):
        raise UploadError("Not an embedded payload")
    try:
        image = EmbeddedImage.from_data_uri(value)
    except ValueError as e:
        raise UploadError(str(e)) from e
    return image.to_bytes(), image.mime_type


def extension_for(mime_type: str) -> str:
    subtype = mime_type.split("/")[-1] if "/" in mime_type else ""
    subtype = subtype.split("+")[0]
    return {"jpeg": "jpg", "quicktime": "mov"}.get(subtype, subtype or "png")


def folder_from_name(name: Optional[str]) -> Optional[str]:
    if not name:
        return None
    return _FOLDER_UNSAFE.sub("_", name)


def build_storage_key(
    user_id: str,
    category: str,
    ext: str,
    folder: Optional[str] = None,
    timestamp_ms: Optional[int] = None,
    unique_id: Optional[str] = None,
) -> str:
    """Collision-resistant key for one user upload."""
    timestamp_ms = timestamp_ms if timestamp_ms is not None else int(time.time() * 1000)
    unique_id = unique_id or str(uuid4())
    path = f"users/{user_id}/{category}"
    if folder:
        path += f"/{folder}"
    return f"{path}/{timestamp_ms}_{unique_id}.{ext}"


async def fetch_embedded(url: str, http: Optional[httpx.AsyncClient] = None) -> EmbeddedImage:
    """Return any asset URL (data URI or public http URL) as inline binary."""
    if url.startswith("data:"):
        return EmbeddedImage.from_data_uri(url)

    if http is not None:
        resp = await http.get(url, follow_redirects=True)
    else:
        async with httpx.AsyncClient(timeout=30) as client:
            resp = await client.get(url, follow_redirects=True)
    resp.raise_for_status()
    mime = resp.headers.get("Content-Type", "image/png").split(";")[0]
    return EmbeddedImage.from_bytes(resp.content, mime)


# ── R2 client ────────────────────────────────────────────────────────────────

class R2Storage:
    """Thin S3-compatible client for the Cloudflare R2 bucket."""

    def __init__(
        self,
        account_id: str = config.R2_ACCOUNT_ID,
        access_key_id: str = config.R2_ACCESS_KEY_ID,
        secret_access_key: str = config.R2_SECRET_ACCESS_KEY,
        bucket: str = config.R2_BUCKET_NAME,
        public_url: str = config.R2_PUBLIC_URL,
    ):
        self.account_id = account_id
        self.access_key_id = access_key_id
        self.secret_access_key = secret_access_key
        self.bucket = bucket
        self.public_url = public_url.rstrip("/")
        self._client = None

    @property
    def configured(self) -> bool:
        return all([self.account_id, self.access_key_id, self.secret_access_key, self.bucket])

    def _s3(self):
        if not self.configured:
            raise UploadError("R2 credentials missing. Check your environment variables.")
        if self._client is None:
            self._client = boto3.client(
                "s3",
                endpoint_url=f"https://{self.account_id}.r2.cloudflarestorage.com",
                aws_access_key_id=self.access_key_id,
                aws_secret_access_key=self.secret_access_key,
                config=BotoConfig(
                    signature_version="s3v4",
                    connect_timeout=10,
                    read_timeout=30,
                    retries={"max_attempts": 2},
                ),
                region_name="auto",
            )
        return self._client

    def url_for_key(self, key: str) -> str:
        if self.public_url:
            return f"{self.public_url}/{key}"
        return f"https://{self.account_id}.r2.cloudflarestorage.com/{self.bucket}/{key}"

    def key_for_url(self, url: str) -> Optional[str]:
        """Inverse of url_for_key; None for URLs this bucket did not issue."""
        for prefix in (
            f"{self.public_url}/" if self.public_url else None,
            f"https://{self.account_id}.r2.cloudflarestorage.com/{self.bucket}/",
        ):
            if prefix and url.startswith(prefix):
                return url[len(prefix):]
        return None

    def put(self, key: str, data: bytes, content_type: str) -> str:
        try:
            self._s3().put_object(
                Bucket=self.bucket,
                Key=key,
                Body=data,
                ContentType=content_type,
            )
        except UploadError:
            raise
        except Exception as e:
            raise UploadError(f"R2 upload failed for key={key}: {e}") from e

        url = self.url_for_key(key)
        logger.info(f"Uploaded to R2: {url}")
        return url

    def delete(self, key: str) -> None:
        try:
            self._s3().delete_object(Bucket=self.bucket, Key=key)
        except UploadError:
            raise
        except Exception as e:
            raise UploadError(f"R2 delete failed for key={key}: {e}") from e
        logger.info(f"Deleted from R2: {key}")


# ── Upload gateway ───────────────────────────────────────────────────────────

class UploadGateway:
    """Turns embedded payloads into durable storage URLs, or degrades quietly."""

    def __init__(self, storage: R2Storage, timeout: float = config.UPLOAD_TIMEOUT):
        self.storage = storage
        self.timeout = timeout

    async def upload_asset(
        self,
        data_uri: str,
        user_id: str,
        category: str,
        metadata: Optional[dict] = None,
    ) -> UploadResult:
        """
        Upload an embedded payload for a user.

        Args:
            data_uri: `data:<mime>;base64,<payload>`.
            user_id:  Owner; first path segment under users/.
            category: images, videos, characters, tiktok or comics.
            metadata: Optional {"name": ...}; the name becomes a sub-folder.

        Returns:
            DurableUrl on success, EmbeddedFallback carrying `data_uri` otherwise.
        """
        try:
            data, mime = parse_data_uri(data_uri)
            key = build_storage_key(
                user_id,
                category,
                extension_for(mime),
                folder=folder_from_name((metadata or {}).get("name")),
            )
            url = await asyncio.wait_for(
                asyncio.to_thread(self.storage.put, key, data, mime),
                timeout=self.timeout,
            )
            return DurableUrl(url=url, key=key)
        except asyncio.TimeoutError:
            reason = f"Upload timeout after {self.timeout:g} seconds"
        except UploadError as e:
            reason = str(e)
        except Exception as e:
            reason = f"Unexpected upload failure: {e}"

        logger.warning(f"Falling back to embedded storage for user {user_id}: {reason}")
        return EmbeddedFallback(url=data_uri, reason=reason)
