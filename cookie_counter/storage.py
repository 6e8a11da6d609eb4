"""
Photo storage backends: local disk, S3 (or any S3-compatible store) and an
in-memory double for tests.
"""

from __future__ import annotations

import os
import shutil
from dataclasses import dataclass, field
from typing import Optional, Protocol

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from cookie_counter.errors import DependencyError

UPLOAD_PREFIX = "uploads/"


class PhotoStorage(Protocol):
    """Defines the operations the API needs from photo storage."""

    def upload_file(self, src_path: str, dest_path: str, content_type: str) -> str:
        """Store the file and return the URL or path it can be fetched from."""
        ...


@dataclass
class InMemoryPhotoStorage:
    """Test double for storage interactions."""

    base_url: str = "https://example.test/storage"
    stored_objects: dict = field(default_factory=dict)

    def upload_file(self, src_path: str, dest_path: str, content_type: str) -> str:
        with open(src_path, "rb") as f:
            self.stored_objects[dest_path] = (f.read(), content_type)
        return f"{self.base_url}/{dest_path}"


@dataclass
class LocalPhotoStorage:
    """Copies photos into a directory served by the app at ``url_prefix``."""

    upload_dir: str
    url_prefix: str = "/uploads"

    def upload_file(self, src_path: str, dest_path: str, content_type: str) -> str:
        relative = dest_path
        if relative.startswith(UPLOAD_PREFIX):
            relative = relative[len(UPLOAD_PREFIX):]
        destination = os.path.join(self.upload_dir, relative)
        try:
            os.makedirs(os.path.dirname(destination) or ".", exist_ok=True)
            shutil.copyfile(src_path, destination)
        except OSError as exc:
            raise DependencyError(f"Could not write {destination}: {exc}") from exc
        return f"{self.url_prefix}/{relative}"


@dataclass
class S3PhotoStorage:
    """
    S3 storage client. Objects are uploaded publicly readable by default so
    the returned URL can be embedded directly by the frontend.
    """

    bucket: str
    region: Optional[str] = None
    endpoint: Optional[str] = None
    access_key_id: Optional[str] = None
    secret_access_key: Optional[str] = None
    public_read: bool = True

    def __post_init__(self):
        config = Config(signature_version="s3v4")
        self._client = boto3.client(
            "s3",
            endpoint_url=self.endpoint,
            region_name=self.region,
            aws_access_key_id=self.access_key_id,
            aws_secret_access_key=self.secret_access_key,
            config=config,
        )

    def upload_file(self, src_path: str, dest_path: str, content_type: str) -> str:
        extra_args = {"ContentType": content_type}
        if self.public_read:
            extra_args["ACL"] = "public-read"
        try:
            self._client.upload_file(
                src_path, self.bucket, dest_path, ExtraArgs=extra_args
            )
        except (BotoCoreError, ClientError) as exc:
            raise DependencyError(f"S3 upload of {dest_path} failed: {exc}") from exc
        return self.object_url(dest_path)

    def object_url(self, path: str) -> str:
        if self.endpoint:
            return f"{self.endpoint.rstrip('/')}/{self.bucket}/{path}"
        if self.region:
            return f"https://{self.bucket}.s3.{self.region}.amazonaws.com/{path}"
        return f"https://{self.bucket}.s3.amazonaws.com/{path}"
