# tests/conftest.py
"""
Pytest configuration and fixtures for the static-sync test suite.

This module provides:
- An in-memory stand-in for the aiobotocore S3 client, recording every
  request so tests can assert on uploads, deletes and concurrency.
- Factories for deploy options and build output directories.
"""

import asyncio
import hashlib
from dataclasses import dataclass, field
from pathlib import Path
from typing import (
    Any,
    AsyncIterator,
    BinaryIO,
    Callable,
    Dict,
    List,
    Mapping,
    Optional,
    Set,
    Union,
)

import pytest
from botocore.exceptions import ClientError

from static_sync.changes import bytes_fingerprint
from static_sync.config import DeployOptions


def client_error(code: str, operation: str) -> ClientError:
    """Build a botocore `ClientError` like the ones S3 returns."""
    return ClientError({"Error": {"Code": code, "Message": code}}, operation)


@dataclass
class StoredObject:
    """An object held by `FakeS3Client`."""

    body: bytes
    etag: str
    params: Dict[str, Any] = field(default_factory=dict)


class FakePaginator:
    """Serves `list_objects_v2` pages from the fake bucket."""

    def __init__(self, client: "FakeS3Client") -> None:
        self._client: "FakeS3Client" = client

    def paginate(self, Bucket: str, Prefix: str = "") -> AsyncIterator[Dict[str, Any]]:
        client: "FakeS3Client" = self._client

        async def pages() -> AsyncIterator[Dict[str, Any]]:
            client.list_calls.append(Prefix)
            keys: List[str] = sorted(k for k in client.objects if k.startswith(Prefix))
            for page_number, start in enumerate(range(0, max(len(keys), 1), client.page_size)):
                if client.list_error_on_page == page_number:
                    raise client_error("InternalError", "ListObjectsV2")
                chunk: List[str] = keys[start : start + client.page_size]
                page: Dict[str, Any] = {"KeyCount": len(chunk)}
                if chunk:
                    page["Contents"] = [
                        {"Key": k, "ETag": client.objects[k].etag} for k in chunk
                    ]
                yield page

        return pages()


class FakeS3Client:
    """
    A minimal in-memory S3 client with the async methods static-sync calls.

    Attributes:
        objects (Dict[str, StoredObject]): The bucket contents.
        put_keys (List[str]): Keys written, in request order.
        streamed_keys (List[str]): Keys whose body was sent as a file object.
        delete_batches (List[List[str]]): Keys of every delete request.
        fail_keys (Set[str]): Keys whose upload raises a `ClientError`.
        latency (float): Seconds each upload request takes.
        max_in_flight (int): Highest number of concurrent upload requests.
    """

    def __init__(self, page_size: int = 1000) -> None:
        self.page_size: int = page_size
        self.objects: Dict[str, StoredObject] = {}
        self.put_keys: List[str] = []
        self.delete_batches: List[List[str]] = []
        self.list_calls: List[str] = []
        self.website: Optional[Dict[str, Any]] = None
        self.fail_keys: Set[str] = set()
        self.delete_errors: Set[str] = set()
        self.list_error_on_page: Optional[int] = None
        self.latency: float = 0.0
        self.in_flight: int = 0
        self.max_in_flight: int = 0
        self.aborted_uploads: List[str] = []
        self.streamed_keys: List[str] = []
        self.location: Optional[str] = None
        self.bucket_exists: bool = True
        self._uploads: Dict[str, Dict[str, Any]] = {}

    def seed(self, key: str, body: bytes) -> None:
        """Store an object as if a previous deploy had uploaded it."""
        self.objects[key] = StoredObject(body=body, etag=bytes_fingerprint(body))

    def get_paginator(self, name: str) -> FakePaginator:
        assert name == "list_objects_v2"
        return FakePaginator(self)

    async def _request(self, key: str, operation: str) -> None:
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(self.latency)
            if key in self.fail_keys:
                raise client_error("AccessDenied", operation)
        finally:
            self.in_flight -= 1

    async def put_object(
        self,
        Bucket: str,
        Key: str,
        Body: Union[bytes, BinaryIO],
        ContentLength: Optional[int] = None,
        **params: Any,
    ) -> Dict[str, str]:
        await self._request(Key, "PutObject")
        data: bytes = Body if isinstance(Body, bytes) else Body.read()
        if not isinstance(Body, bytes):
            self.streamed_keys.append(Key)
        assert ContentLength == len(data)
        self.objects[Key] = StoredObject(data, bytes_fingerprint(data), params)
        self.put_keys.append(Key)
        return {"ETag": self.objects[Key].etag}

    async def create_multipart_upload(
        self, Bucket: str, Key: str, **params: Any
    ) -> Dict[str, str]:
        upload_id: str = f"upload-{len(self._uploads)}"
        self._uploads[upload_id] = {"key": Key, "params": params, "parts": {}}
        return {"UploadId": upload_id}

    async def upload_part(
        self,
        Bucket: str,
        Key: str,
        UploadId: str,
        PartNumber: int,
        Body: bytes,
        ContentLength: Optional[int] = None,
    ) -> Dict[str, str]:
        await self._request(Key, "UploadPart")
        self._uploads[UploadId]["parts"][PartNumber] = Body
        return {"ETag": bytes_fingerprint(Body)}

    async def complete_multipart_upload(
        self, Bucket: str, Key: str, UploadId: str, MultipartUpload: Mapping[str, Any]
    ) -> Dict[str, str]:
        upload: Dict[str, Any] = self._uploads.pop(UploadId)
        numbers: List[int] = [p["PartNumber"] for p in MultipartUpload["Parts"]]
        bodies: List[bytes] = [upload["parts"][n] for n in numbers]
        combined: str = hashlib.md5(
            b"".join(hashlib.md5(body).digest() for body in bodies)
        ).hexdigest()
        etag: str = f'"{combined}-{len(bodies)}"'
        self.objects[Key] = StoredObject(b"".join(bodies), etag, upload["params"])
        self.put_keys.append(Key)
        return {"ETag": etag}

    async def abort_multipart_upload(
        self, Bucket: str, Key: str, UploadId: str
    ) -> Dict[str, Any]:
        self._uploads.pop(UploadId, None)
        self.aborted_uploads.append(Key)
        return {}

    async def delete_objects(
        self, Bucket: str, Delete: Mapping[str, Any]
    ) -> Dict[str, Any]:
        keys: List[str] = [obj["Key"] for obj in Delete["Objects"]]
        assert len(keys) <= 1000
        self.delete_batches.append(keys)
        errors: List[Dict[str, str]] = []
        for key in keys:
            if key in self.delete_errors:
                errors.append({"Key": key, "Code": "AccessDenied", "Message": "denied"})
            else:
                self.objects.pop(key, None)
        return {"Errors": errors} if errors else {}

    async def get_bucket_location(self, Bucket: str) -> Dict[str, Any]:
        if not self.bucket_exists:
            raise client_error("NoSuchBucket", "GetBucketLocation")
        return {"LocationConstraint": self.location}

    async def put_bucket_website(
        self, Bucket: str, WebsiteConfiguration: Mapping[str, Any]
    ) -> Dict[str, Any]:
        self.website = dict(WebsiteConfiguration)
        return {}


@pytest.fixture(scope="function")
def fake_s3() -> FakeS3Client:
    """Provide an empty in-memory bucket."""
    return FakeS3Client()


@pytest.fixture(scope="function")
def public_dir(tmp_path: Path) -> Path:
    """
    Provide a small build output directory.

    Returns:
        Path: A directory holding an index page, a nested page, a script
            and a stylesheet.
    """
    root: Path = tmp_path / "public"
    files: Dict[str, str] = {
        "index.html": "<h1>home</h1>",
        "about/index.html": "<h1>about</h1>",
        "app.js": "console.log('hi')",
        "static/style.css": "body {}",
    }
    for name, content in files.items():
        path: Path = root / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content)
    return root


@pytest.fixture(scope="function")
def make_options(public_dir: Path) -> Callable[..., DeployOptions]:
    """
    Provide a factory for deploy options pointing at `public_dir`.

    Website hosting is disabled by default so tests only see object traffic.
    """

    def _make(**overrides: Any) -> DeployOptions:
        values: Dict[str, Any] = {
            "bucket_name": "test-bucket",
            "public_dir": public_dir,
            "enable_s3_static_website_hosting": False,
            "parallel_limit": 4,
        }
        values.update(overrides)
        return DeployOptions(**values)

    return _make
