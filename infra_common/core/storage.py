"""
MinIO / S3-Compatible Object Store Context

This module wraps a boto3 S3 client configured for a MinIO endpoint and exposes a
small async interface used by application code:

- ensure_bucket_exists: existence check with on-demand creation
- get_object_tags / get_object_metadata / write_object_to_stream: read paths that
  degrade bucket-not-found and object-not-found into an ``is_found=False`` result
- upload_object: streamed PUT with optional tagging; provider errors propagate

boto3 is synchronous, so every call runs in a worker thread via ``asyncio.to_thread``
to keep the event loop free during S3 round trips.
"""

import asyncio
import logging

from collections.abc import Callable, Mapping
from functools import wraps
from typing import Any, BinaryIO, Protocol, TypeVar, runtime_checkable
from urllib.parse import urlencode

import boto3

from botocore.client import BaseClient, Config
from botocore.exceptions import BotoCoreError, ClientError
from pydantic import BaseModel, ConfigDict, Field

from infra_common.config import MinioOptions, ServiceOptions, bind_options
from infra_common.registry import ServiceRegistry


logger = logging.getLogger(__name__)

T = TypeVar("T")

# Copy buffer used when streaming an object into a caller-supplied sink
DOWNLOAD_CHUNK_SIZE = 128 * 1024  # 128 KB

# S3 error codes meaning "bucket or object does not exist"
NOT_FOUND_ERROR_CODES = frozenset({"404", "NotFound", "NoSuchBucket", "NoSuchKey"})

# Creation raced with another caller; the bucket exists and belongs to us
BUCKET_OWNED_ERROR_CODE = "BucketAlreadyOwnedByYou"

DEFAULT_REGION = "us-east-1"


def async_wrap(func: Callable[..., T]) -> Callable[..., "asyncio.Future[T]"]:
    """Run a blocking boto3 call in a worker thread."""

    @wraps(func)
    async def wrapper(*args: Any, **kwargs: Any) -> T:
        return await asyncio.to_thread(func, *args, **kwargs)

    return wrapper


def _error_code(error: ClientError) -> str:
    return str(error.response.get("Error", {}).get("Code", ""))


def is_not_found(error: ClientError) -> bool:
    """Return True when a ClientError reports a missing bucket or object."""
    return _error_code(error) in NOT_FOUND_ERROR_CODES


def _read_exactly(data: BinaryIO, length: int) -> bytes:
    chunks: list[bytes] = []
    remaining = length
    while remaining > 0:
        chunk = data.read(remaining)
        if not chunk:
            raise ValueError(
                f"Stream ended after {length - remaining} of {length} bytes"
            )
        chunks.append(chunk)
        remaining -= len(chunk)
    return b"".join(chunks)


# =============================================================================
# Result values
# =============================================================================


class ObjectTagsResult(BaseModel):
    """Tags of an object, or ``is_found=False`` when the bucket or object is missing."""

    model_config = ConfigDict(frozen=True)

    is_found: bool
    tags: dict[str, str] = Field(default_factory=dict)


class ObjectMetadataResult(BaseModel):
    """Content type and size of an object, or ``is_found=False`` when missing."""

    model_config = ConfigDict(frozen=True)

    is_found: bool
    content_type: str | None = None
    size: int = 0


class DownloadFileResult(BaseModel):
    """Outcome of streaming an object into a sink."""

    model_config = ConfigDict(frozen=True)

    is_found: bool


# =============================================================================
# Interface
# =============================================================================


@runtime_checkable
class MinioContext(Protocol):
    """Object store operations consumed by application code."""

    async def ensure_bucket_exists(self, bucket_name: str) -> bool: ...

    async def get_object_tags(self, bucket_name: str, object_name: str) -> ObjectTagsResult: ...

    async def upload_object(
        self,
        bucket_name: str,
        object_name: str,
        content_type: str,
        tags: Mapping[str, str] | None,
        data: BinaryIO,
        length: int,
    ) -> str: ...

    async def get_object_metadata(
        self, bucket_name: str, object_name: str
    ) -> ObjectMetadataResult: ...

    async def write_object_to_stream(
        self, bucket_name: str, object_name: str, target: BinaryIO
    ) -> DownloadFileResult: ...


# =============================================================================
# boto3 adapter
# =============================================================================


class S3MinioContext:
    """
    ``MinioContext`` implementation over a boto3 S3 client.

    The wrapped client is thread-safe for concurrent calls; this class holds no
    mutable state of its own.

    Example usage:
        ```python
        context = registry.get_required(MinioContext)

        if await context.ensure_bucket_exists("documents"):
            with open("report.pdf", "rb") as fh:
                key = await context.upload_object(
                    "documents", "reports/q1.pdf", "application/pdf",
                    {"owner": "finance"}, fh, os.path.getsize("report.pdf"),
                )

        result = await context.get_object_tags("documents", key)
        if result.is_found:
            print(result.tags)
        ```
    """

    def __init__(self, client: BaseClient, region: str = DEFAULT_REGION) -> None:
        self._client = client
        self._region = region

    async def ensure_bucket_exists(self, bucket_name: str) -> bool:
        """
        Make sure a bucket exists, creating it when absent.

        Returns:
            bool: True if the bucket already existed or was created, False if
                  creation failed. Creation failures, including transport
                  errors, are logged, not raised.

        Raises:
            ClientError: If the existence check itself fails for a reason other
                         than the bucket being missing (e.g. access denied).
        """
        if await self._bucket_exists(bucket_name):
            logger.info(
                "Bucket already exists, skip creating",
                extra={"bucket": bucket_name},
            )
            return True

        try:
            await async_wrap(self._client.create_bucket)(**self._create_bucket_args(bucket_name))
        except (ClientError, BotoCoreError) as e:
            if isinstance(e, ClientError) and _error_code(e) == BUCKET_OWNED_ERROR_CODE:
                logger.info("Bucket created concurrently", extra={"bucket": bucket_name})
                return True
            logger.exception("Failed to create bucket", extra={"bucket": bucket_name})
            return False

        logger.info("Bucket created successfully", extra={"bucket": bucket_name})
        return True

    async def _bucket_exists(self, bucket_name: str) -> bool:
        try:
            await async_wrap(self._client.head_bucket)(Bucket=bucket_name)
        except ClientError as e:
            if is_not_found(e):
                return False
            raise
        return True

    def _create_bucket_args(self, bucket_name: str) -> dict[str, Any]:
        args: dict[str, Any] = {"Bucket": bucket_name}
        if self._region and self._region != DEFAULT_REGION:
            args["CreateBucketConfiguration"] = {"LocationConstraint": self._region}
        return args

    async def get_object_tags(self, bucket_name: str, object_name: str) -> ObjectTagsResult:
        """
        Get the tag mapping of an object.

        A missing bucket and a missing object both produce ``is_found=False``.
        """
        try:
            response = await async_wrap(self._client.get_object_tagging)(
                Bucket=bucket_name, Key=object_name
            )
        except ClientError as e:
            if not is_not_found(e):
                raise
            logger.exception(
                "Error when getting tags for object",
                extra={"bucket": bucket_name, "object": object_name},
            )
            return ObjectTagsResult(is_found=False)

        tags = {tag["Key"]: tag["Value"] for tag in response.get("TagSet", [])}
        return ObjectTagsResult(is_found=True, tags=tags)

    async def upload_object(
        self,
        bucket_name: str,
        object_name: str,
        content_type: str,
        tags: Mapping[str, str] | None,
        data: BinaryIO,
        length: int,
    ) -> str:
        """
        Upload ``length`` bytes read from ``data`` as a single object.

        Exactly ``length`` bytes are read from ``data`` and buffered before the
        request is signed; anything after them is left unread in the stream.

        Args:
            bucket_name: Target bucket; it must already exist.
            object_name: Key of the stored object.
            content_type: MIME type stored with the object.
            tags: Optional tag mapping; empty mappings are not sent.
            data: Readable binary stream positioned at the first byte to upload.
            length: Number of bytes to upload.

        Returns:
            str: Key of the stored object.

        Raises:
            ValueError: If ``data`` ends before ``length`` bytes were read.
            ClientError: Any provider error; uploads are not degraded to a result.
            BotoCoreError: Transport level failures.
        """
        try:
            payload = await async_wrap(_read_exactly)(data, length)

            put_args: dict[str, Any] = {
                "Bucket": bucket_name,
                "Key": object_name,
                "Body": payload,
                "ContentLength": length,
                "ContentType": content_type,
            }
            if tags:
                put_args["Tagging"] = urlencode(dict(tags))

            await async_wrap(self._client.put_object)(**put_args)
        except (ClientError, BotoCoreError, ValueError):
            logger.exception(
                "Failed to upload object",
                extra={"bucket": bucket_name, "object": object_name, "length": length},
            )
            raise

        logger.info(
            "Uploaded object",
            extra={"bucket": bucket_name, "object": object_name, "length": length},
        )
        return object_name

    async def get_object_metadata(
        self, bucket_name: str, object_name: str
    ) -> ObjectMetadataResult:
        """Get content type and size; not-found collapses to ``is_found=False``."""
        try:
            response = await async_wrap(self._client.head_object)(
                Bucket=bucket_name, Key=object_name
            )
        except ClientError as e:
            if not is_not_found(e):
                raise
            logger.exception(
                "Error when getting metadata for object",
                extra={"bucket": bucket_name, "object": object_name},
            )
            return ObjectMetadataResult(is_found=False)

        return ObjectMetadataResult(
            is_found=True,
            content_type=response.get("ContentType"),
            size=int(response.get("ContentLength", 0)),
        )

    async def write_object_to_stream(
        self, bucket_name: str, object_name: str, target: BinaryIO
    ) -> DownloadFileResult:
        """
        Copy an object's content into ``target`` in 128 KB chunks.

        The target stream is not closed or rewound.
        """
        try:
            await async_wrap(self._copy_object)(bucket_name, object_name, target)
        except ClientError as e:
            if not is_not_found(e):
                raise
            logger.exception(
                "Error when writing object to stream",
                extra={"bucket": bucket_name, "object": object_name},
            )
            return DownloadFileResult(is_found=False)

        return DownloadFileResult(is_found=True)

    def _copy_object(self, bucket_name: str, object_name: str, target: BinaryIO) -> None:
        response = self._client.get_object(Bucket=bucket_name, Key=object_name)
        body = response["Body"]
        try:
            for chunk in body.iter_chunks(chunk_size=DOWNLOAD_CHUNK_SIZE):
                target.write(chunk)
        finally:
            body.close()

    async def check_health(self) -> bool:
        """Return True if the endpoint answers an authenticated bucket listing."""
        try:
            await async_wrap(self._client.list_buckets)()
            return True
        except (ClientError, BotoCoreError) as e:
            logger.warning("MinIO health check failed: %s", str(e))
            return False


# =============================================================================
# Client construction and registration
# =============================================================================


def create_minio_client(options: MinioOptions) -> BaseClient:
    """
    Build a boto3 S3 client for a MinIO endpoint.

    Path-style addressing is required by MinIO; SigV4 is used for signing.
    """
    client_config = Config(
        signature_version="s3v4",
        s3={"addressing_style": "path"},
    )

    client = boto3.client(
        "s3",
        endpoint_url=options.endpoint_url,
        aws_access_key_id=options.access_key,
        aws_secret_access_key=options.secret,
        region_name=options.region,
        config=client_config,
    )

    logger.info(
        "MinIO client initialized",
        extra={"endpoint": options.endpoint_url, "region": options.region},
    )
    return client


def add_minio(
    registry: ServiceRegistry,
    minio_configuration: Mapping[str, Any] | ServiceOptions | None,
) -> ServiceRegistry:
    """
    Register MinIO options, the S3 client and the ``MinioContext`` singleton.

    Args:
        registry: Composition root to register into.
        minio_configuration: The ``Minio`` configuration section
            (``Endpoint``, ``AccessKey``, ``Secret``).

    Returns:
        ServiceRegistry: The same registry, for chaining.

    Raises:
        ConfigurationError: If the section is missing or invalid. Nothing is
                            registered in that case.
    """
    options = bind_options(minio_configuration, MinioOptions, "Minio")

    registry.add_singleton(MinioOptions, options)
    registry.add_factory(
        BaseClient,
        lambda r: create_minio_client(r.get_required(MinioOptions)),
    )
    # The client is closed through its own BaseClient registration
    registry.add_factory(
        MinioContext,
        lambda r: S3MinioContext(
            r.get_required(BaseClient),  # type: ignore[type-abstract]
            region=r.get_required(MinioOptions).region,
        ),
        owned=False,
    )
    return registry


__all__ = [
    "DOWNLOAD_CHUNK_SIZE",
    "DownloadFileResult",
    "MinioContext",
    "ObjectMetadataResult",
    "ObjectTagsResult",
    "S3MinioContext",
    "add_minio",
    "create_minio_client",
    "is_not_found",
]
