"""
Blob storage for staged uploads, archive members and part images.

Two backends share one interface: the local filesystem (development,
single host) and Amazon S3.
"""
import shutil
import tempfile
import uuid
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from pathlib import Path
from typing import BinaryIO

import boto3
from botocore.exceptions import ClientError

from catalog_ingest.core.exceptions import BlobNotFoundError


def generate_key(filename: str, prefix: str = "uploads") -> str:
    """
    Generate a unique key for a staged file.

    Format: {prefix}/YYYY/MM/DD/{uuid}_{filename}
    """
    now = datetime.now(timezone.utc)
    unique_id = uuid.uuid4().hex[:8]
    safe_name = Path(filename).name or "file"
    return f"{prefix}/{now.year}/{now.month:02d}/{now.day:02d}/{unique_id}_{safe_name}"


class BlobStore(ABC):
    """Key/value byte store with move, delete and exists."""

    @abstractmethod
    def put(self, data: bytes, key: str) -> str:
        """Store bytes under ``key`` and return the key."""

    @abstractmethod
    def put_stream(self, stream: BinaryIO, key: str) -> str:
        """Store a readable stream under ``key`` and return the key."""

    @abstractmethod
    def read(self, key: str) -> BinaryIO:
        """
        Open a blob as a seekable binary stream.

        Raises:
            BlobNotFoundError: If the key does not exist
        """

    @abstractmethod
    def size(self, key: str) -> int:
        """Size in bytes; raises BlobNotFoundError if missing."""

    @abstractmethod
    def move(self, key: str, new_key: str) -> str: ...

    @abstractmethod
    def delete(self, key: str) -> None:
        """Delete a blob; deleting a missing key is a no-op."""

    @abstractmethod
    def exists(self, key: str) -> bool: ...

    def stage(self, stream: BinaryIO, filename: str, prefix: str = "uploads") -> str:
        """Store a submitted file under a freshly generated key."""
        return self.put_stream(stream, generate_key(filename, prefix))


class LocalBlobStore(BlobStore):
    """
    Stores blobs as files below a root directory.
    """

    def __init__(self, root: str | Path):
        self.root = Path(root).resolve()
        self.root.mkdir(parents=True, exist_ok=True)

    def _path(self, key: str) -> Path:
        path = (self.root / key).resolve()
        if path != self.root and self.root not in path.parents:
            raise ValueError(f"Blob key escapes the store root: {key}")
        return path

    def put(self, data: bytes, key: str) -> str:
        path = self._path(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)
        return key

    def put_stream(self, stream: BinaryIO, key: str) -> str:
        path = self._path(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "wb") as f:
            shutil.copyfileobj(stream, f)
        return key

    def read(self, key: str) -> BinaryIO:
        path = self._path(key)
        if not path.is_file():
            raise BlobNotFoundError(key)
        return open(path, "rb")

    def size(self, key: str) -> int:
        path = self._path(key)
        if not path.is_file():
            raise BlobNotFoundError(key)
        return path.stat().st_size

    def move(self, key: str, new_key: str) -> str:
        source = self._path(key)
        if not source.is_file():
            raise BlobNotFoundError(key)
        target = self._path(new_key)
        target.parent.mkdir(parents=True, exist_ok=True)
        shutil.move(str(source), str(target))
        return new_key

    def delete(self, key: str) -> None:
        self._path(key).unlink(missing_ok=True)

    def exists(self, key: str) -> bool:
        return self._path(key).is_file()


class S3BlobStore(BlobStore):
    """
    Stores blobs as objects in one S3 bucket.
    """

    def __init__(self, bucket: str, region: str = "us-east-1", client=None):
        """
        Initialize S3 store.

        Args:
            bucket: Bucket name
            region: AWS region used when creating the client
            client: Pre-built boto3 S3 client (optional)
        """
        self.bucket = bucket
        self.s3_client = client or boto3.client("s3", region_name=region)

    @staticmethod
    def _is_missing(error: ClientError) -> bool:
        code = error.response.get("Error", {}).get("Code")
        return code in ("404", "NoSuchKey", "NotFound")

    def put(self, data: bytes, key: str) -> str:
        self.s3_client.put_object(Bucket=self.bucket, Key=key, Body=data)
        return key

    def put_stream(self, stream: BinaryIO, key: str) -> str:
        self.s3_client.upload_fileobj(stream, self.bucket, key)
        return key

    def read(self, key: str) -> BinaryIO:
        # Spreadsheet readers seek, S3 bodies cannot
        buffer = tempfile.SpooledTemporaryFile(max_size=16 * 1024 * 1024)
        try:
            self.s3_client.download_fileobj(self.bucket, key, buffer)
        except ClientError as e:
            buffer.close()
            if self._is_missing(e):
                raise BlobNotFoundError(key) from e
            raise
        buffer.seek(0)
        return buffer

    def size(self, key: str) -> int:
        try:
            response = self.s3_client.head_object(Bucket=self.bucket, Key=key)
        except ClientError as e:
            if self._is_missing(e):
                raise BlobNotFoundError(key) from e
            raise
        return response["ContentLength"]

    def move(self, key: str, new_key: str) -> str:
        try:
            self.s3_client.copy_object(
                Bucket=self.bucket,
                Key=new_key,
                CopySource={"Bucket": self.bucket, "Key": key},
            )
        except ClientError as e:
            if self._is_missing(e):
                raise BlobNotFoundError(key) from e
            raise
        self.s3_client.delete_object(Bucket=self.bucket, Key=key)
        return new_key

    def delete(self, key: str) -> None:
        self.s3_client.delete_object(Bucket=self.bucket, Key=key)

    def exists(self, key: str) -> bool:
        try:
            self.s3_client.head_object(Bucket=self.bucket, Key=key)
        except ClientError as e:
            if self._is_missing(e):
                return False
            raise
        return True


def create_blob_store(settings) -> BlobStore:
    """Build the backend selected by ``settings.blob_backend``."""
    if settings.blob_backend == "s3":
        return S3BlobStore(settings.s3_bucket, region=settings.aws_region)
    return LocalBlobStore(settings.blob_root)
