"""
Object storage for uploaded media (avatars, listing photos, KYC documents).

Supports the local filesystem (development) and S3/MinIO (production). Files
are addressed by (bucket, path); every upload returns the storage path and a
public URL.
"""
from __future__ import annotations

import logging
import os
import secrets
import time
from abc import ABC, abstractmethod
from pathlib import Path
from typing import BinaryIO, Optional, Tuple

import boto3
from botocore.exceptions import BotoCoreError, ClientError
from fastapi import HTTPException, UploadFile, status

logger = logging.getLogger("vendra.storage")

BUCKETS = (
    "avatars",
    "banners",
    "property-images",
    "project-images",
    "project-plans",
    "kyc-docs",
    "legal-docs",
)

IMAGE_TYPES = {"image/jpeg", "image/png", "image/webp", "image/gif", "image/heic"}
DOCUMENT_TYPES = IMAGE_TYPES | {"application/pdf"}

MAX_UPLOAD_BYTES = int(os.getenv("MAX_UPLOAD_BYTES", str(10 * 1024 * 1024)))


class StorageError(Exception):
    """Raised when a backend fails to persist an object."""


def build_object_path(user_id: int, filename: Optional[str]) -> str:
    """
    {user_id}/{timestamp}-{random}.{ext}

    The original filename only contributes its extension.
    """
    ext = ""
    if filename and "." in filename:
        ext = filename.rsplit(".", 1)[-1].lower()[:10]
    stem = f"{int(time.time() * 1000)}-{secrets.token_hex(4)}"
    return f"{user_id}/{stem}.{ext}" if ext else f"{user_id}/{stem}"


class StorageBackend(ABC):
    @abstractmethod
    def save(self, bucket: str, path: str, file_data: BinaryIO, content_type: str) -> str:
        """Store the object and return its public URL."""

    @abstractmethod
    def delete(self, bucket: str, path: str) -> bool:
        """Remove the object; False when it was missing or removal failed."""

    @abstractmethod
    def get_url(self, bucket: str, path: str) -> str:
        ...

    def path_from_url(self, bucket: str, url: str) -> Optional[str]:
        """Recover the storage path from a URL previously returned by get_url."""
        prefix = self.get_url(bucket, "")
        if url.startswith(prefix):
            return url[len(prefix):]
        return None


class LocalFileStorage(StorageBackend):
    """Local filesystem storage: {base_dir}/{bucket}/{path}, served under /uploads."""

    def __init__(self, base_dir: str = "uploads", base_url: str = "http://localhost:8000"):
        self.base_dir = Path(base_dir)
        self.base_url = base_url.rstrip("/")
        self.base_dir.mkdir(parents=True, exist_ok=True)

    def save(self, bucket: str, path: str, file_data: BinaryIO, content_type: str) -> str:
        file_path = self.base_dir / bucket / path
        try:
            file_path.parent.mkdir(parents=True, exist_ok=True)
            with open(file_path, "wb") as f:
                f.write(file_data.read())
        except OSError as exc:
            raise StorageError(f"Failed to write {bucket}/{path}: {exc}") from exc
        logger.info("storage.saved", extra={"bucket": bucket, "path": path, "backend": "local"})
        return self.get_url(bucket, path)

    def delete(self, bucket: str, path: str) -> bool:
        file_path = self.base_dir / bucket / path
        try:
            if file_path.exists():
                file_path.unlink()
                return True
            logger.warning("storage.delete.missing", extra={"bucket": bucket, "path": path})
            return False
        except OSError as exc:
            logger.warning("storage.delete.failed", extra={"bucket": bucket, "path": path, "error": str(exc)})
            return False

    def get_url(self, bucket: str, path: str) -> str:
        return f"{self.base_url}/uploads/{bucket}/{path}"


class S3Storage(StorageBackend):
    """S3/MinIO storage. One S3 bucket per logical bucket, optionally prefixed."""

    def __init__(
        self,
        bucket_prefix: str = "",
        aws_access_key: Optional[str] = None,
        aws_secret_key: Optional[str] = None,
        region: str = "us-east-1",
        endpoint_url: Optional[str] = None,  # For MinIO compatibility
        public_base_url: Optional[str] = None,
    ):
        self.bucket_prefix = bucket_prefix
        self.region = region
        self.endpoint_url = endpoint_url
        self.public_base_url = public_base_url.rstrip("/") if public_base_url else None

        session = boto3.session.Session()
        self.s3_client = session.client(
            "s3",
            region_name=region,
            endpoint_url=endpoint_url,
            aws_access_key_id=aws_access_key,
            aws_secret_access_key=aws_secret_key,
        )

    def _bucket(self, bucket: str) -> str:
        return f"{self.bucket_prefix}{bucket}"

    def save(self, bucket: str, path: str, file_data: BinaryIO, content_type: str) -> str:
        try:
            self.s3_client.upload_fileobj(
                file_data,
                self._bucket(bucket),
                path,
                ExtraArgs={"ContentType": content_type, "ACL": "public-read"},
            )
        except (ClientError, BotoCoreError) as exc:
            raise StorageError(f"Failed to upload {bucket}/{path}: {exc}") from exc
        logger.info("storage.saved", extra={"bucket": bucket, "path": path, "backend": "s3"})
        return self.get_url(bucket, path)

    def delete(self, bucket: str, path: str) -> bool:
        try:
            self.s3_client.delete_object(Bucket=self._bucket(bucket), Key=path)
            return True
        except (ClientError, BotoCoreError) as exc:
            logger.warning("storage.delete.failed", extra={"bucket": bucket, "path": path, "error": str(exc)})
            return False

    def get_url(self, bucket: str, path: str) -> str:
        if self.public_base_url:
            return f"{self.public_base_url}/{self._bucket(bucket)}/{path}"
        if self.endpoint_url:
            return f"{self.endpoint_url}/{self._bucket(bucket)}/{path}"
        return f"https://{self._bucket(bucket)}.s3.{self.region}.amazonaws.com/{path}"


_backend: Optional[StorageBackend] = None


def get_storage() -> StorageBackend:
    """Process-wide backend chosen by STORAGE_TYPE ("local" or "s3")."""
    global _backend
    if _backend is None:
        if os.getenv("STORAGE_TYPE", "local") == "s3":
            _backend = S3Storage(
                bucket_prefix=os.getenv("S3_BUCKET_PREFIX", ""),
                aws_access_key=os.getenv("AWS_ACCESS_KEY_ID"),
                aws_secret_key=os.getenv("AWS_SECRET_ACCESS_KEY"),
                region=os.getenv("AWS_REGION", "us-east-1"),
                endpoint_url=os.getenv("S3_ENDPOINT_URL"),
                public_base_url=os.getenv("S3_PUBLIC_BASE_URL"),
            )
        else:
            _backend = LocalFileStorage(
                base_dir=os.getenv("UPLOAD_DIR", "uploads"),
                base_url=os.getenv("BASE_URL", "http://localhost:8000"),
            )
    return _backend


def upload(bucket: str, user_id: int, file: UploadFile, allowed_types: set = IMAGE_TYPES) -> Tuple[str, str]:
    """
    Validate and store an uploaded file; returns (storage_path, public_url).

    Only the client-declared content type is checked; content sniffing is out of scope.
    """
    if bucket not in BUCKETS:
        raise ValueError(f"Unknown bucket: {bucket}")
    content_type = file.content_type or "application/octet-stream"
    if content_type not in allowed_types:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Unsupported content type: {content_type}",
        )
    # SpooledTemporaryFile: seek to the end to measure, then rewind for the backend
    file.file.seek(0, os.SEEK_END)
    size = file.file.tell()
    file.file.seek(0)
    if size == 0:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Empty file")
    if size > MAX_UPLOAD_BYTES:
        raise HTTPException(status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE, detail="File too large")

    path = build_object_path(user_id, file.filename)
    try:
        url = get_storage().save(bucket, path, file.file, content_type)
    except StorageError as exc:
        logger.error("storage.upload.failed", extra={"bucket": bucket, "user_id": user_id, "error": str(exc)})
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail="Upload failed") from exc
    return path, url


def remove_by_url(bucket: str, url: str) -> bool:
    """Best-effort delete of an object given its public URL; never raises."""
    backend = get_storage()
    path = backend.path_from_url(bucket, url)
    if not path:
        logger.warning("storage.delete.foreign_url", extra={"bucket": bucket, "url": url})
        return False
    return backend.delete(bucket, path)
