"""S3-compatible object storage used for transferred videos."""

from __future__ import annotations

from pathlib import Path
from typing import Mapping, Optional

import boto3
from botocore.config import Config
from botocore.exceptions import ClientError


class S3ObjectStorage:
    """Writes objects into one bucket and builds their public URLs."""

    def __init__(
        self,
        bucket: str,
        *,
        endpoint_url: Optional[str] = None,
        region_name: Optional[str] = None,
        access_key_id: Optional[str] = None,
        secret_access_key: Optional[str] = None,
        public_url_base: Optional[str] = None,
        client=None,
    ) -> None:
        if not bucket:
            raise ValueError("S3_BUCKET_NAME is required for object storage")
        self.bucket = bucket
        self.endpoint_url = endpoint_url.rstrip("/") if endpoint_url else None
        self.region_name = region_name
        self._client = client or boto3.client(
            "s3",
            endpoint_url=self.endpoint_url,
            region_name=region_name,
            aws_access_key_id=access_key_id,
            aws_secret_access_key=secret_access_key,
            config=Config(s3={"addressing_style": "path"}),
        )
        self.public_url_base = (public_url_base or self._default_public_base()).rstrip("/")

    def _default_public_base(self) -> str:
        if self.endpoint_url:
            return f"{self.endpoint_url}/{self.bucket}"
        return f"https://{self.bucket}.s3.amazonaws.com"

    def upload_file(
        self,
        key: str,
        path: Path,
        content_type: str,
        metadata: Optional[Mapping[str, str]] = None,
    ) -> None:
        """Stream a local file into ``key``; an existing object is overwritten."""
        with open(path, "rb") as body:
            self._client.put_object(
                Bucket=self.bucket,
                Key=key,
                Body=body,
                ContentType=content_type,
                Metadata=dict(metadata or {}),
            )

    def public_url(self, key: str) -> str:
        return f"{self.public_url_base}/{key}"

    def exists(self, key: str) -> bool:
        try:
            self._client.head_object(Bucket=self.bucket, Key=key)
            return True
        except ClientError as e:
            if e.response["Error"]["Code"] in ("404", "NoSuchKey"):
                return False
            raise
