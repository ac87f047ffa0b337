"""S3-backed file store for validated uploads."""

import os
import uuid
from typing import Any, Optional

import boto3
from botocore.exceptions import ClientError

from upload_guard.core import StorageError, get_logger
from upload_guard.upload.models import StoredFile, UploadedFile

logger = get_logger(__name__)


class S3FileStore:
    """Persists uploaded files to S3.

    Object keys are partitioned by visibility and by the first characters
    of the generated id, e.g. ``uploads/public/3f2/a91/3f2a91....jpg``.
    Public files get a plain URL; protected files get a presigned GET URL.

    Objects are written without an ACL so buckets with ACLs disabled
    (bucket-owner-enforced ownership) accept them. Reading under the
    ``public/`` prefix must be granted by a bucket policy or the CDN.
    """

    def __init__(
        self,
        bucket_name: Optional[str] = None,
        public_url_base: Optional[str] = None,
        prefix: str = "uploads",
        presigned_url_ttl: Optional[int] = None,
        s3_client: Optional[Any] = None,
    ):
        """Initialize the file store.

        Args:
            bucket_name: S3 bucket name
            public_url_base: Base URL for public objects (CDN); S3 URL if omitted
            prefix: Key prefix for all uploads
            presigned_url_ttl: Lifetime of protected file URLs in seconds
            s3_client: Optional S3 client (for testing)
        """
        self.bucket_name = bucket_name or os.environ.get(
            "UPLOAD_BUCKET", "upload-guard-files"
        )
        self.public_url_base = (
            public_url_base or os.environ.get("UPLOAD_PUBLIC_URL_BASE", "")
        ).rstrip("/")
        self.prefix = prefix.strip("/")
        self.presigned_url_ttl = presigned_url_ttl or int(
            os.environ.get("UPLOAD_PRESIGNED_URL_TTL", "3600")
        )
        self._s3_client = s3_client

    @property
    def s3_client(self):
        """Get S3 client."""
        if self._s3_client is None:
            self._s3_client = boto3.client("s3")
        return self._s3_client

    def create(self, uploaded_file: UploadedFile, is_public: bool) -> StoredFile:
        """Store ``uploaded_file`` and return its persisted representation.

        Raises:
            StorageError: If S3 rejects the write or URL signing fails
        """
        file_id = uuid.uuid4().hex
        disk_name = self._disk_name(file_id, uploaded_file.extension, is_public)

        try:
            self.s3_client.put_object(
                Bucket=self.bucket_name,
                Key=disk_name,
                Body=uploaded_file.content,
                ContentType=uploaded_file.mime_type,
                Metadata={"original_filename": uploaded_file.file_name},
            )
            path = self._url(disk_name, is_public)
        except ClientError as e:
            logger.error("s3_upload_failed", key=disk_name, error=str(e))
            raise StorageError(
                f"Failed to store file: {e}",
                operation="put_object",
                key=disk_name,
            ) from e

        stored = StoredFile(
            id=file_id,
            file_name=uploaded_file.file_name,
            disk_name=disk_name,
            content_type=uploaded_file.mime_type,
            file_size=uploaded_file.size or 0,
            is_public=is_public,
            path=path,
            thumb=path if uploaded_file.mime_type.startswith("image/") else None,
        )
        logger.info(
            "upload_stored",
            file_id=file_id,
            key=disk_name,
            file_size=stored.file_size,
            is_public=is_public,
        )
        return stored

    def delete(self, stored: StoredFile) -> None:
        """Remove a stored object (orphans left by a failed association)."""
        try:
            self.s3_client.delete_object(Bucket=self.bucket_name, Key=stored.disk_name)
        except ClientError as e:
            logger.error("s3_delete_failed", key=stored.disk_name, error=str(e))
            raise StorageError(
                f"Failed to delete file: {e}",
                operation="delete_object",
                key=stored.disk_name,
            ) from e

    def _disk_name(self, file_id: str, extension: str, is_public: bool) -> str:
        visibility = "public" if is_public else "protected"
        name = f"{file_id}.{extension}" if extension else file_id
        return f"{self.prefix}/{visibility}/{file_id[:3]}/{file_id[3:6]}/{name}"

    def _url(self, key: str, is_public: bool) -> str:
        if not is_public:
            return self.s3_client.generate_presigned_url(
                "get_object",
                Params={"Bucket": self.bucket_name, "Key": key},
                ExpiresIn=self.presigned_url_ttl,
            )
        if self.public_url_base:
            return f"{self.public_url_base}/{key}"
        return f"https://{self.bucket_name}.s3.amazonaws.com/{key}"
