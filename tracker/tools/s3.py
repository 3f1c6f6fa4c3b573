"""
S3 Tools

Attachment storage for notes created from email replies.
Objects live under {prefix}{project_id}/{secret}/{filename}; the secret
keeps upload URLs unguessable.
"""

import os
from dataclasses import dataclass
from urllib.parse import quote
from uuid import uuid4

import boto3
from botocore.exceptions import BotoCoreError, ClientError
import structlog

from tracker.config import get_settings
from tracker.exceptions import S3Error

log = structlog.get_logger()

MAX_FILENAME_LENGTH = 200


@dataclass(frozen=True)
class StoredUpload:
    """An attachment stored in S3 and the URL notes link to."""

    filename: str  # Original filename (for display/markdown)
    key: str       # S3 key with sanitized filename
    url: str
    content_type: str
    size_bytes: int

    @property
    def is_image(self) -> bool:
        return self.content_type.startswith("image/")

    @property
    def markdown(self) -> str:
        """Markdown link (or image embed) pointing at the stored copy."""
        prefix = "!" if self.is_image else ""
        return f"{prefix}[{self.filename}]({self.url})"


def _get_client():
    """Get S3 client."""
    settings = get_settings()
    return boto3.client("s3", **settings.s3_config)


def _sanitize_filename(filename: str) -> str:
    """
    Sanitize filename for S3 storage.

    - Removes path components (Unix and Windows)
    - Replaces problematic characters
    - Limits length
    """
    # Normalize Windows backslashes to forward slashes for cross-platform support
    normalized = filename.replace("\\", "/")
    safe_name = os.path.basename(normalized)

    safe_name = safe_name.replace(" ", "_")

    if len(safe_name) > MAX_FILENAME_LENGTH:
        name_part = safe_name[:150]
        suffix = os.path.splitext(safe_name)[1]
        safe_name = f"{name_part}{suffix}"

    return safe_name or "attachment"


def _build_upload_key(project_id: str, filename: str, *, prefix: str | None = None) -> str:
    """
    Build S3 key for an upload.

    Format: {prefix}{project_id}/{secret}/{filename}
    """
    settings = get_settings()
    key_prefix = prefix or settings.s3_uploads_prefix
    return f"{key_prefix}{project_id}/{uuid4().hex}/{_sanitize_filename(filename)}"


def _ascii_metadata(metadata: dict[str, str]) -> dict[str, str]:
    """S3 only accepts ASCII metadata; escape anything else."""
    return {
        key: value.encode("ascii", "backslashreplace").decode("ascii")
        for key, value in metadata.items()
    }


def _public_url(key: str) -> str:
    """Map an S3 key onto the configured public uploads URL."""
    settings = get_settings()
    relative = key[len(settings.s3_uploads_prefix):] if key.startswith(settings.s3_uploads_prefix) else key
    return f"{settings.uploads_base_url.rstrip('/')}/{quote(relative)}"


def store_upload(
    content: bytes,
    project_id: str,
    filename: str,
    *,
    content_type: str = "application/octet-stream",
    metadata: dict[str, str] | None = None,
) -> StoredUpload:
    """
    Store an attachment in S3.

    Args:
        content: File content
        project_id: Project the note belongs to
        filename: Original filename
        content_type: MIME type
        metadata: Optional object metadata

    Returns:
        StoredUpload with the key and public URL

    Raises:
        S3Error: If upload fails
    """
    settings = get_settings()
    client = _get_client()
    key = _build_upload_key(project_id, filename)

    log.info(
        "storing_upload",
        project_id=project_id,
        filename=filename,
        key=key,
        content_type=content_type,
        size_bytes=len(content),
    )

    put_params = {
        "Bucket": settings.s3_bucket_name,
        "Key": key,
        "Body": content,
        "ContentType": content_type,
    }
    if metadata:
        put_params["Metadata"] = _ascii_metadata(metadata)

    try:
        client.put_object(**put_params)
    except (ClientError, BotoCoreError) as e:
        log.error(
            "s3_upload_failed",
            bucket=settings.s3_bucket_name,
            key=key,
            error=str(e),
        )
        raise S3Error(
            operation="upload",
            bucket=settings.s3_bucket_name,
            key=key,
            error_message=str(e),
        ) from e

    upload = StoredUpload(
        filename=filename,
        key=key,
        url=_public_url(key),
        content_type=content_type,
        size_bytes=len(content),
    )
    log.info("upload_stored", key=key, url=upload.url)
    return upload


def delete_upload(key: str) -> None:
    """
    Delete a stored upload.

    Raises:
        S3Error: If delete fails
    """
    settings = get_settings()
    client = _get_client()

    try:
        client.delete_object(Bucket=settings.s3_bucket_name, Key=key)
    except (ClientError, BotoCoreError) as e:
        log.error("s3_delete_failed", key=key, error=str(e))
        raise S3Error(
            operation="delete",
            bucket=settings.s3_bucket_name,
            key=key,
            error_message=str(e),
        ) from e

    log.info("upload_deleted", key=key)


def fetch_object(bucket: str, key: str) -> bytes:
    """
    Fetch raw object content from S3.

    Used when SES stores inbound emails in S3 rather than embedding in SNS.

    Raises:
        S3Error: If S3 get fails
    """
    log.info("fetching_object_from_s3", bucket=bucket, key=key)
    client = _get_client()

    try:
        response = client.get_object(Bucket=bucket, Key=key)
        content = response["Body"].read()
    except (ClientError, BotoCoreError) as e:
        log.error("s3_fetch_failed", bucket=bucket, key=key, error=str(e))
        raise S3Error(
            operation="download",
            bucket=bucket,
            key=key,
            error_message=str(e),
        ) from e

    log.debug("object_fetched_from_s3", bucket=bucket, key=key, size_bytes=len(content))
    return content
