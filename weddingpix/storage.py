"""
Storage abstraction for gallery files: S3-compatible buckets, Firebase
Storage, and an in-memory implementation for testing.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import timedelta
from typing import Protocol
import json

import boto3
from botocore.config import Config
from botocore.exceptions import ClientError


class StorageClient(Protocol):
    """Defines the operations the API and migration need from object storage."""

    def upload_bytes(
        self, path: str, data: bytes, content_type: str = "application/octet-stream"
    ) -> str:
        ...

    def upload_json(self, path: str, payload) -> None:
        ...

    def get_bytes(self, path: str) -> bytes:
        ...

    def delete(self, path: str) -> None:
        ...

    def copy(self, src_path: str, dest_path: str) -> None:
        ...

    def list_paths(self, prefix: str) -> list[str]:
        ...

    def public_url(self, path: str) -> str:
        ...

    def presign_get(self, path: str, expires_in: int = 3600) -> str:
        ...


@dataclass
class InMemoryStorageClient:
    """Objects kept in process; also records content types for assertions."""

    base_url: str = "https://example.test/storage"
    stored_objects: dict = field(default_factory=dict)
    content_types: dict = field(default_factory=dict)

    def reset(self) -> None:
        self.stored_objects.clear()
        self.content_types.clear()

    def upload_bytes(
        self, path: str, data: bytes, content_type: str = "application/octet-stream"
    ) -> str:
        self.stored_objects[path] = bytes(data)
        self.content_types[path] = content_type
        return self.public_url(path)

    def upload_json(self, path: str, payload) -> None:
        self.upload_bytes(
            path, json.dumps(payload, default=str).encode("utf-8"), "application/json"
        )

    def get_bytes(self, path: str) -> bytes:
        stored = self.stored_objects.get(path)
        if stored is None:
            raise FileNotFoundError(path)
        return stored

    def delete(self, path: str) -> None:
        if path not in self.stored_objects:
            raise FileNotFoundError(path)
        del self.stored_objects[path]
        self.content_types.pop(path, None)

    def copy(self, src_path: str, dest_path: str) -> None:
        self.stored_objects[dest_path] = self.get_bytes(src_path)
        self.content_types[dest_path] = self.content_types.get(
            src_path, "application/octet-stream"
        )

    def list_paths(self, prefix: str) -> list[str]:
        return sorted(path for path in self.stored_objects if path.startswith(prefix))

    def public_url(self, path: str) -> str:
        return f"{self.base_url}/{path}"

    def presign_get(self, path: str, expires_in: int = 3600) -> str:
        return f"{self.base_url}/{path}?op=get&expires={expires_in}"


@dataclass
class S3StorageClient:
    """
    S3-compatible storage client (AWS, Tencent COS, MinIO).
    """

    bucket: str
    region: str
    endpoint: str
    access_key_id: str
    secret_access_key: str

    def __post_init__(self):
        config = Config(
            s3={"addressing_style": "virtual"},
            signature_version="s3v4",
        )
        self._client = boto3.client(
            "s3",
            endpoint_url=self.endpoint or None,
            region_name=self.region or None,
            aws_access_key_id=self.access_key_id,
            aws_secret_access_key=self.secret_access_key,
            config=config,
        )

    def upload_bytes(
        self, path: str, data: bytes, content_type: str = "application/octet-stream"
    ) -> str:
        self._client.put_object(
            Bucket=self.bucket, Key=path, Body=data, ContentType=content_type
        )
        return self.public_url(path)

    def upload_json(self, path: str, payload) -> None:
        body = json.dumps(payload, default=str).encode("utf-8")
        self.upload_bytes(path, body, "application/json")

    def get_bytes(self, path: str) -> bytes:
        try:
            response = self._client.get_object(Bucket=self.bucket, Key=path)
        except ClientError as exc:
            if exc.response.get("Error", {}).get("Code") in ("NoSuchKey", "404"):
                raise FileNotFoundError(path) from exc
            raise
        return response["Body"].read()

    def delete(self, path: str) -> None:
        self._client.delete_object(Bucket=self.bucket, Key=path)

    def copy(self, src_path: str, dest_path: str) -> None:
        self._client.copy_object(
            Bucket=self.bucket,
            Key=dest_path,
            CopySource={"Bucket": self.bucket, "Key": src_path},
        )

    def list_paths(self, prefix: str) -> list[str]:
        paginator = self._client.get_paginator("list_objects_v2")
        paths: list[str] = []
        for page in paginator.paginate(Bucket=self.bucket, Prefix=prefix):
            paths.extend(item["Key"] for item in page.get("Contents", []))
        return paths

    def public_url(self, path: str) -> str:
        base = (self.endpoint or f"https://s3.{self.region}.amazonaws.com").rstrip("/")
        return f"{base}/{self.bucket}/{path}"

    def presign_get(self, path: str, expires_in: int = 3600) -> str:
        return self._client.generate_presigned_url(
            ClientMethod="get_object",
            Params={"Bucket": self.bucket, "Key": path},
            ExpiresIn=expires_in,
        )


class FirebaseStorageClient:
    """Firebase Storage bucket accessed through ``firebase_admin.storage``."""

    def __init__(self, bucket):
        self._bucket = bucket

    def upload_bytes(
        self, path: str, data: bytes, content_type: str = "application/octet-stream"
    ) -> str:
        self._bucket.blob(path).upload_from_string(data, content_type=content_type)
        return self.public_url(path)

    def upload_json(self, path: str, payload) -> None:
        body = json.dumps(payload, default=str).encode("utf-8")
        self.upload_bytes(path, body, "application/json")

    def get_bytes(self, path: str) -> bytes:
        blob = self._bucket.get_blob(path)
        if blob is None:
            raise FileNotFoundError(path)
        return blob.download_as_bytes()

    def delete(self, path: str) -> None:
        self._bucket.blob(path).delete()

    def copy(self, src_path: str, dest_path: str) -> None:
        blob = self._bucket.get_blob(src_path)
        if blob is None:
            raise FileNotFoundError(src_path)
        self._bucket.copy_blob(blob, self._bucket, dest_path)

    def list_paths(self, prefix: str) -> list[str]:
        return [blob.name for blob in self._bucket.list_blobs(prefix=prefix)]

    def public_url(self, path: str) -> str:
        return self._bucket.blob(path).public_url

    def presign_get(self, path: str, expires_in: int = 3600) -> str:
        return self._bucket.blob(path).generate_signed_url(
            expiration=timedelta(seconds=expires_in), method="GET"
        )
