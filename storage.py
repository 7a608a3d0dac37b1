"""
TubeIngest - Object Storage

S3/MinIO client, bucket reachability check, and public uploads.
"""

import asyncio
import logging
import mimetypes
from pathlib import Path
from urllib.parse import quote

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from constants import STORAGE_CACHE_CONTROL, STORAGE_KEY_PREFIX, TIMEOUT_S3_CONNECT
from errors import StorageUnavailable, UploadFailure
from settings import get_setting

logger = logging.getLogger(__name__)


def get_bucket_name() -> str:
    return get_setting("s3_bucket", "").strip()


def s3_client():
    endpoint = get_setting("s3_endpoint", "").strip() or None
    return boto3.client(
        "s3",
        endpoint_url=endpoint,
        region_name=get_setting("s3_region", "us-east-1") or None,
        aws_access_key_id=get_setting("s3_access_key", "") or None,
        aws_secret_access_key=get_setting("s3_secret_key", "") or None,
        config=Config(connect_timeout=TIMEOUT_S3_CONNECT, retries={"max_attempts": 1}),
    )


def storage_key_for(local_path: Path) -> str:
    return f"{STORAGE_KEY_PREFIX}/{Path(local_path).name}"


def public_url_for(bucket: str, key: str) -> str:
    """Public URL for an uploaded object.

    S3_PUBLIC_URL (e.g. a CDN or https://minio.example.com) wins; otherwise
    fall back to the endpoint, then to virtual-hosted AWS style. The key is
    percent-encoded; titles routinely carry spaces, "#" and "?".
    """
    key = quote(key)
    base = get_setting("s3_public_url", "").strip().rstrip("/")
    if not base:
        base = get_setting("s3_endpoint", "").strip().rstrip("/")
    if base:
        return f"{base}/{bucket}/{key}"
    return f"https://{bucket}.s3.amazonaws.com/{key}"


def _check_bucket(bucket: str) -> None:
    if not bucket:
        raise StorageUnavailable("No storage bucket configured (set S3_BUCKET)")
    try:
        s3_client().head_bucket(Bucket=bucket)
    except ClientError as e:
        code = e.response.get("Error", {}).get("Code", "")
        if code in ("404", "NoSuchBucket", "NotFound"):
            raise StorageUnavailable(f"Bucket {bucket} not found")
        raise StorageUnavailable(f"Bucket {bucket} is not accessible: {e}")
    except BotoCoreError as e:
        raise StorageUnavailable(f"Storage unreachable: {e}")


async def check_bucket_access() -> None:
    """Raise StorageUnavailable unless the configured bucket exists and answers."""
    bucket = get_bucket_name()
    await asyncio.to_thread(_check_bucket, bucket)
    logger.info("Bucket %s found and accessible", bucket)


def _upload(local_path: Path, bucket: str, key: str) -> None:
    content_type = mimetypes.guess_type(local_path.name)[0] or "application/octet-stream"
    try:
        s3_client().upload_file(
            str(local_path), bucket, key,
            ExtraArgs={"CacheControl": STORAGE_CACHE_CONTROL, "ContentType": content_type},
        )
    except (BotoCoreError, ClientError, OSError) as e:
        raise UploadFailure(f"Upload of {local_path.name} failed: {e}")


async def upload_to_storage(local_path: Path) -> str:
    """Upload a local file under videos/<basename> and return its public URL. Not retried."""
    local_path = Path(local_path)
    bucket = get_bucket_name()
    key = storage_key_for(local_path)
    logger.info("Uploading %s to %s/%s", local_path, bucket, key)
    await asyncio.to_thread(_upload, local_path, bucket, key)
    url = public_url_for(bucket, key)
    logger.info("Upload complete: %s", url)
    return url
