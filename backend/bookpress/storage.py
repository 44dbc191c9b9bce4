"""
BookPress V1.0 — Artifact Storage
=================================
Where compiled artifacts end up: an S3 bucket when credentials are
configured, a local directory otherwise. Both expose the same two calls.

Usage:
    from bookpress.storage import storage_from_env
    storage = storage_from_env()
    loc = storage.put(Path("book.pdf"), "books/p1/v1/book.pdf", "application/pdf")
    url = storage.url_for(loc.key, loc.local_path)
"""

from __future__ import annotations

import os
import shutil
from pathlib import Path
from typing import Optional

from bookpress.config import AWS_REGION, PRESIGNED_URL_TTL, STORAGE_DIR, s3_enabled
from bookpress.errors import StorageError
from bookpress.models import ArtifactLocation

CONTENT_TYPES = {
    "pdf": "application/pdf",
    "epub": "application/epub+zip",
    "tex": "application/x-tex",
}


class StorageBackend:
    """Interface shared by the local and S3 backends."""

    def put(self, local_file: Path, key: str, content_type: str) -> ArtifactLocation:
        raise NotImplementedError

    def url_for(self, key: Optional[str], local_path: Optional[str] = None) -> Optional[str]:
        raise NotImplementedError


class LocalStorage(StorageBackend):
    """Copies artifacts under ``root/<key>``."""

    def __init__(self, root: Path = STORAGE_DIR):
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)

    def put(self, local_file: Path, key: str, content_type: str) -> ArtifactLocation:
        dest = self.root / key
        try:
            dest.parent.mkdir(parents=True, exist_ok=True)
            shutil.copyfile(local_file, dest)
        except OSError as e:
            raise StorageError(f"Could not store {key}: {e}") from e
        return ArtifactLocation(key=key, local_path=str(dest), size=dest.stat().st_size)

    def url_for(self, key: Optional[str], local_path: Optional[str] = None) -> Optional[str]:
        if local_path and Path(local_path).exists():
            return local_path
        if key and (self.root / key).exists():
            return str(self.root / key)
        return None


class S3Storage(StorageBackend):
    """boto3-backed storage with presigned download URLs."""

    def __init__(self, bucket: str, region: str = AWS_REGION, client=None):
        if client is None:
            import boto3

            client = boto3.client("s3", region_name=region)
        self.bucket = bucket
        self.client = client

    def put(self, local_file: Path, key: str, content_type: str) -> ArtifactLocation:
        body = Path(local_file).read_bytes()
        try:
            self.client.put_object(
                Bucket=self.bucket, Key=key, Body=body, ContentType=content_type
            )
        except Exception as e:
            raise StorageError(f"S3 upload failed for {key}: {e}") from e
        print(f"[Storage] ☁️  Uploaded s3://{self.bucket}/{key} ({len(body)} bytes)")
        return ArtifactLocation(key=key, local_path=None, size=len(body))

    def url_for(self, key: Optional[str], local_path: Optional[str] = None) -> Optional[str]:
        if not key:
            return None
        return self.client.generate_presigned_url(
            "get_object",
            Params={"Bucket": self.bucket, "Key": key},
            ExpiresIn=PRESIGNED_URL_TTL,
        )


def storage_from_env() -> StorageBackend:
    """S3 when AWS credentials and a bucket are set, local disk otherwise."""
    if s3_enabled():
        bucket = os.environ["S3_BUCKET"]
        print(f"[Storage] ✅ Using S3 bucket {bucket}")
        return S3Storage(bucket)
    print(f"[Storage] 📁 Using local storage at {STORAGE_DIR}")
    return LocalStorage(STORAGE_DIR)
