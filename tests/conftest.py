"""
Pytest Configuration and Test Fixtures for infra-common

This module provides shared fixtures:
- Configuration sections for Cassandra, MinIO and Redis in the PascalCase
  shape used by service configuration files
- An in-memory fake S3 client raising real botocore ClientErrors, so object
  store behaviour can be exercised without a MinIO server
- A fresh ServiceRegistry per test
- A mocked redis.asyncio client
"""

import io
from typing import Any
from unittest.mock import AsyncMock, MagicMock
from urllib.parse import parse_qsl

import pytest
from botocore.exceptions import ClientError
from botocore.response import StreamingBody

from infra_common.core.storage import S3MinioContext
from infra_common.registry import ServiceRegistry


def pytest_configure(config: pytest.Config) -> None:
    config.addinivalue_line("markers", "unit: mark test as unit test")
    config.addinivalue_line("markers", "integration: mark test as integration test")


# ==============================================================================
# Fake S3 client
# ==============================================================================


def make_client_error(code: str, operation: str, status_code: int = 404) -> ClientError:
    return ClientError(
        {
            "Error": {"Code": code, "Message": f"{code} raised by fake S3"},
            "ResponseMetadata": {"HTTPStatusCode": status_code},
        },
        operation,
    )


class FakeS3Client:
    """
    In-memory stand-in for the subset of the boto3 S3 client used by S3MinioContext.

    Error codes follow S3: HEAD requests report a bare "404", other requests
    report NoSuchBucket / NoSuchKey.
    """

    def __init__(self) -> None:
        self.buckets: dict[str, dict[str, dict[str, Any]]] = {}
        self.create_bucket_error: str | None = None
        self.head_bucket_error: str | None = None
        self.calls: list[str] = []
        self.closed = False

    def _bucket(self, bucket: str, operation: str, code: str = "NoSuchBucket") -> dict:
        if bucket not in self.buckets:
            raise make_client_error(code, operation)
        return self.buckets[bucket]

    def _object(self, bucket: str, key: str, operation: str, head: bool = False) -> dict:
        objects = self._bucket(bucket, operation, "404" if head else "NoSuchBucket")
        if key not in objects:
            raise make_client_error("404" if head else "NoSuchKey", operation)
        return objects[key]

    def head_bucket(self, Bucket: str) -> dict:
        self.calls.append("head_bucket")
        if self.head_bucket_error:
            raise make_client_error(self.head_bucket_error, "HeadBucket", 403)
        self._bucket(Bucket, "HeadBucket", "404")
        return {}

    def create_bucket(self, Bucket: str, **kwargs: Any) -> dict:
        self.calls.append("create_bucket")
        if self.create_bucket_error:
            raise make_client_error(self.create_bucket_error, "CreateBucket", 409)
        self.buckets.setdefault(Bucket, {})
        return {"Location": f"/{Bucket}"}

    def put_object(
        self,
        Bucket: str,
        Key: str,
        Body: Any,
        ContentLength: int,
        ContentType: str,
        Tagging: str | None = None,
    ) -> dict:
        self.calls.append("put_object")
        objects = self._bucket(Bucket, "PutObject")
        # botocore sends the whole body it is given, whatever ContentLength says
        data = bytes(Body) if isinstance(Body, (bytes, bytearray)) else Body.read()
        if len(data) != ContentLength:
            raise make_client_error("IncompleteBody", "PutObject", 400)
        objects[Key] = {
            "data": data,
            "content_type": ContentType,
            "tags": dict(parse_qsl(Tagging)) if Tagging else {},
        }
        return {"ETag": '"fake-etag"'}

    def get_object_tagging(self, Bucket: str, Key: str) -> dict:
        self.calls.append("get_object_tagging")
        stored = self._object(Bucket, Key, "GetObjectTagging")
        return {"TagSet": [{"Key": k, "Value": v} for k, v in stored["tags"].items()]}

    def head_object(self, Bucket: str, Key: str) -> dict:
        self.calls.append("head_object")
        stored = self._object(Bucket, Key, "HeadObject", head=True)
        return {"ContentType": stored["content_type"], "ContentLength": len(stored["data"])}

    def get_object(self, Bucket: str, Key: str) -> dict:
        self.calls.append("get_object")
        stored = self._object(Bucket, Key, "GetObject")
        data = stored["data"]
        return {"Body": StreamingBody(io.BytesIO(data), len(data))}

    def list_buckets(self) -> dict:
        self.calls.append("list_buckets")
        return {"Buckets": [{"Name": name} for name in self.buckets]}

    def close(self) -> None:
        self.closed = True


class RecordingStream(io.BytesIO):
    """BytesIO that remembers the size of every write."""

    def __init__(self) -> None:
        super().__init__()
        self.write_sizes: list[int] = []

    def write(self, data: Any) -> int:
        self.write_sizes.append(len(data))
        return super().write(data)


# ==============================================================================
# Fixtures
# ==============================================================================


@pytest.fixture
def fake_s3() -> FakeS3Client:
    return FakeS3Client()


@pytest.fixture
def minio_context(fake_s3: FakeS3Client) -> S3MinioContext:
    return S3MinioContext(fake_s3)  # type: ignore[arg-type]


@pytest.fixture
def registry() -> ServiceRegistry:
    return ServiceRegistry()


@pytest.fixture
def minio_section() -> dict[str, Any]:
    return {
        "Endpoint": "localhost:9000",
        "AccessKey": "minioadmin",
        "Secret": "minioadmin",
    }


@pytest.fixture
def redis_section() -> dict[str, Any]:
    return {"Url": "redis://localhost:6379/1", "ConnectRetries": 2, "RetryBaseDelay": 0}


@pytest.fixture
def cassandra_section() -> dict[str, Any]:
    return {
        "ContactPoints": ["10.0.0.1", "10.0.0.2"],
        "LocalDc": "dc1",
        "SocketConnectTimeout": "00:00:05",
        "ExponentialReconnectPolicy": True,
        "ExponentialReconnectPolicyBaseDelay": "00:00:01",
        "ExponentialReconnectPolicyMaxDelay": "00:01:00",
        "HealthTimeout": "00:00:02",
    }


@pytest.fixture
def mock_redis() -> MagicMock:
    """Mocked redis.asyncio client with async commands."""
    mock = MagicMock()
    mock.ping = AsyncMock(return_value=True)
    mock.aclose = AsyncMock()
    mock.set = AsyncMock(return_value=True)
    mock.get = AsyncMock(return_value=None)
    return mock
