import base64
import logging
from datetime import datetime, timezone
from typing import Optional, Union
from urllib.parse import quote

import aioboto3
import httpx
from botocore.exceptions import BotoCoreError, ClientError

import constants
from exceptions import DownloadError, StorageError
from schemas import PublishResult

logger = logging.getLogger(__name__)


async def download_bytes(http: httpx.AsyncClient, url: str, timeout: float, max_bytes: int) -> bytes:
    """Stream a remote file into memory, refusing anything above `max_bytes`."""
    chunks = []
    received = 0
    try:
        async with http.stream("GET", url, timeout=timeout, follow_redirects=True) as response:
            if response.status_code >= 400:
                raise DownloadError(f"Failed to download {url}: HTTP {response.status_code}")
            declared = response.headers.get("content-length")
            if declared and declared.isdigit() and int(declared) > max_bytes:
                raise DownloadError(f"{url} is too large ({declared} bytes > {max_bytes})")
            async for chunk in response.aiter_bytes(constants.DOWNLOAD_CHUNK_SIZE):
                received += len(chunk)
                if received > max_bytes:
                    raise DownloadError(f"{url} exceeded the {max_bytes} byte limit")
                chunks.append(chunk)
    except httpx.HTTPError as e:
        raise DownloadError(f"Failed to download {url}: {e}") from e

    return b"".join(chunks)


class ObjectStorage:
    """Public-read S3 bucket holding the finished videos."""

    def __init__(self, bucket: str, region: str = "us-east-1", public_base_url: str = None,
                 session: aioboto3.Session = None):
        if not bucket:
            raise StorageError("Results bucket is not configured")
        self.bucket = bucket
        self.region = region
        self.public_base_url = public_base_url.rstrip("/") if public_base_url else None
        self.session = session or aioboto3.Session()

    @classmethod
    def from_config(cls, config, session: aioboto3.Session = None) -> "ObjectStorage":
        return cls(
            bucket=config.results_bucket,
            region=config.aws_region,
            public_base_url=config.results_public_base_url,
            session=session,
        )

    def get_public_url(self, key: str) -> str:
        if self.public_base_url:
            return f"{self.public_base_url}/{quote(key)}"
        return f"https://{self.bucket}.s3.{self.region}.amazonaws.com/{quote(key)}"

    async def head(self, key: str) -> Optional[int]:
        """Size of the stored object, or None when it does not exist."""
        try:
            async with self.session.client("s3", region_name=self.region) as s3:
                response = await s3.head_object(Bucket=self.bucket, Key=key)
                return int(response.get("ContentLength", 0))
        except ClientError as e:
            if e.response.get("Error", {}).get("Code") in ("404", "NoSuchKey", "NotFound"):
                return None
            raise StorageError(f"Could not inspect s3://{self.bucket}/{key}: {e}") from e
        except BotoCoreError as e:
            raise StorageError(f"Could not inspect s3://{self.bucket}/{key}: {e}") from e

    async def upload(self, data: bytes, content_type: str, key: str) -> str:
        try:
            async with self.session.client("s3", region_name=self.region) as s3:
                await s3.put_object(
                    Bucket=self.bucket,
                    Key=key,
                    Body=data,
                    ContentType=content_type,
                    CacheControl="public, max-age=31536000",
                )
        except (ClientError, BotoCoreError) as e:
            raise StorageError(f"Upload to s3://{self.bucket}/{key} failed: {e}") from e

        logger.info(f"Uploaded {len(data)} bytes to s3://{self.bucket}/{key}")
        return self.get_public_url(key)


def build_result_filename(job_id: str, platform: str, clip_count: int, created_at: str) -> str:
    """Deterministic per job: the same job always maps to the same object."""
    try:
        stamp = datetime.fromisoformat(created_at.replace("Z", "+00:00"))
    except (AttributeError, TypeError, ValueError):
        raise StorageError(f"Job {job_id} has an invalid creation timestamp: {created_at!r}")
    if stamp.tzinfo is None:
        stamp = stamp.replace(tzinfo=timezone.utc)
    stamp = stamp.astimezone(timezone.utc).strftime("%Y%m%dT%H%M%SZ")
    return f"{platform}_{clip_count}clips_{stamp}_{job_id}.mp4"


class ResultPublisher:
    """
    Exposes the final video. Small results are handed back inline as a data
    URI; anything above the threshold is written once to object storage.
    """

    def __init__(self, storage: ObjectStorage, http_client: httpx.AsyncClient = None,
                 inline_max_bytes: int = constants.DEFAULT_INLINE_PUBLISH_MAX_BYTES,
                 download_timeout: float = constants.DEFAULT_DOWNLOAD_TIMEOUT_SECONDS,
                 max_download_bytes: int = constants.DEFAULT_MAX_DOWNLOAD_BYTES):
        if inline_max_bytes > constants.MAX_INLINE_PUBLISH_BYTES:
            raise StorageError(
                f"Inline results are limited to {constants.MAX_INLINE_PUBLISH_BYTES} bytes, "
                f"got a threshold of {inline_max_bytes}"
            )
        self.storage = storage
        self.http = http_client
        self.inline_max_bytes = inline_max_bytes
        self.download_timeout = download_timeout
        self.max_download_bytes = max_download_bytes

    async def _fetch(self, url: str) -> bytes:
        if self.http is None:
            async with httpx.AsyncClient() as http:
                return await download_bytes(http, url, self.download_timeout, self.max_download_bytes)
        return await download_bytes(self.http, url, self.download_timeout, self.max_download_bytes)

    async def publish(self, final_asset: Union[bytes, str], platform: str, clip_count: int,
                      job_id: str, created_at: str) -> PublishResult:
        filename = build_result_filename(job_id, platform, clip_count, created_at)
        key = f"{constants.RESULTS_KEY_PREFIX}/{filename}"

        if isinstance(final_asset, (bytes, bytearray)):
            payload = bytes(final_asset)
        else:
            try:
                payload = await self._fetch(final_asset)
            except DownloadError as e:
                raise StorageError(f"Could not retrieve the final video for publishing: {e}") from e

        if not payload:
            raise StorageError(f"Final video for job {job_id} is empty")

        if len(payload) <= self.inline_max_bytes:
            logger.info(f"Publishing {filename} inline ({len(payload)} bytes)")
            encoded = base64.b64encode(payload).decode("ascii")
            return PublishResult(
                public_url=f"data:{constants.RESULT_CONTENT_TYPE};base64,{encoded}",
                filename=filename,
                mode="inline",
                size_bytes=len(payload),
            )

        existing_size = await self.storage.head(key)
        if existing_size is not None:
            logger.info(f"{key} already published for job {job_id}. Reusing it.")
            return PublishResult(
                public_url=self.storage.get_public_url(key),
                filename=filename,
                mode="storage",
                size_bytes=existing_size,
            )

        public_url = await self.storage.upload(payload, constants.RESULT_CONTENT_TYPE, key)
        return PublishResult(public_url=public_url, filename=filename, mode="storage", size_bytes=len(payload))
