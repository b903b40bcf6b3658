"""
Storage Base Classes and Configuration

Async storage abstraction for mirrored assets. S3-compatible services
(QingStor, AWS S3, MinIO) go through a persistent aioboto3 client; the local
filesystem backend goes through fsspec.
"""

import asyncio
import logging
import os
import shutil
import tempfile
import time
import uuid
from contextlib import AsyncExitStack
from pathlib import Path
from typing import Any

import aiofiles
import fsspec
from botocore.exceptions import BotoCoreError, ClientError

from ..constants import DEFAULT_S3_MAX_POOL_CONNECTIONS, MULTIPART_THRESHOLD_BYTES
from ..errors import ConfigurationError, ObjectNotFoundError, StorageError
from ..models import StorageLocation

logger = logging.getLogger(__name__)

NOT_FOUND_CODES = {"404", "NoSuchKey", "NotFound", "object_not_exists"}


def is_not_found(error: ClientError) -> bool:
    """Whether an S3 ClientError is an explicit "object does not exist" answer."""
    return str(error.response.get("Error", {}).get("Code")) in NOT_FOUND_CODES


class BackendConfig:
    """Configuration for different storage backends."""

    def __init__(
        self,
        protocol: str = "file",
        bucket: str = "",
        location: str | None = None,
        endpoint_url: str | None = None,
        **kwargs: Any,
    ) -> None:
        self.protocol = protocol
        self.bucket = bucket
        self.location = location
        self.endpoint_url = endpoint_url
        self.options = kwargs

    @classmethod
    def s3(
        cls,
        bucket: str,
        location: str | None = None,
        endpoint_url: str | None = None,
        access_key: str | None = None,
        secret_key: str | None = None,
    ) -> "BackendConfig":
        """Configure for AWS S3 or another S3-compatible service."""
        return cls(
            protocol="s3", bucket=bucket, location=location, endpoint_url=endpoint_url, key=access_key, secret=secret_key
        )

    @classmethod
    def local(cls, base_path: str, bucket: str, location: str | None = None) -> "BackendConfig":
        """Configure for local filesystem (base_path required)."""
        if not base_path:
            raise ConfigurationError("Local storage requires explicit base_path")
        return cls(protocol="file", bucket=bucket, location=location, base_path=base_path)


class Storage:
    """
    Async storage abstraction layer.

    Exposes the three operations mirroring needs: bucket metadata, stat and write.
    """

    def __init__(self, config: BackendConfig, multipart_threshold: int = MULTIPART_THRESHOLD_BYTES):
        if not config.bucket:
            raise ConfigurationError("Storage requires a bucket name")

        self.config = config
        self.multipart_threshold = multipart_threshold
        self._fs = None
        self._s3_client: Any = None  # Persistent S3 client for S3-compatible storage
        self._exit_stack: AsyncExitStack | None = None
        self._client_lock = asyncio.Lock()

        # Instance identification for logging
        self._instance_id = str(uuid.uuid4())[:8]

        logger.debug(f"Storage instance created (id={self._instance_id}, protocol={config.protocol})")

    @property
    def bucket(self) -> str:
        return self.config.bucket

    def _client_kwargs(self) -> dict[str, Any]:
        kwargs: dict[str, Any] = {}
        if self.config.options.get("key") and self.config.options.get("secret"):
            kwargs["aws_access_key_id"] = self.config.options["key"]
            kwargs["aws_secret_access_key"] = self.config.options["secret"]
        if self.config.endpoint_url:
            kwargs["endpoint_url"] = self.config.endpoint_url
        if self.config.location:
            kwargs["region_name"] = self.config.location
        return kwargs

    async def _get_s3_client(self) -> Any:
        """Get or create persistent S3 client for S3-compatible storage."""
        if self._s3_client is None:
            async with self._client_lock:
                # Double-check pattern to prevent race condition
                if self._s3_client is None:
                    import aioboto3
                    import aiobotocore.config

                    config = aiobotocore.config.AioConfig(
                        max_pool_connections=DEFAULT_S3_MAX_POOL_CONNECTIONS,
                        read_timeout=300,
                        connect_timeout=60,
                    )

                    session = aioboto3.Session()
                    exit_stack = AsyncExitStack()
                    self._s3_client = await exit_stack.enter_async_context(
                        session.client("s3", config=config, **self._client_kwargs())
                    )
                    self._exit_stack = exit_stack

                    logger.debug(f"S3 client created (storage_id={self._instance_id})")

        return self._s3_client

    def _get_fs(self) -> Any:
        """Get filesystem instance (lazy initialization)."""
        if self._fs is None:
            self._fs = fsspec.filesystem("file")
        return self._fs

    def _local_path(self, path: str) -> Path:
        return Path(self.config.options["base_path"]) / self.bucket / path.lstrip("/")

    def _key(self, path: str) -> str:
        return path.lstrip("/")

    async def _fetch_bucket_location(self) -> str | None:
        """Ask the service where the bucket lives."""
        s3_client = await self._get_s3_client()
        response = await s3_client.get_bucket_location(Bucket=self.bucket)
        location = response.get("LocationConstraint")
        if location is None and not self.config.endpoint_url:
            # AWS reports buckets in us-east-1 with a null constraint
            return "us-east-1"
        return location or None

    async def metadata(self) -> StorageLocation:
        """
        Resolve bucket name and location.

        Raises:
            ConfigurationError: If the location cannot be determined
            StorageError: If the service cannot be queried
        """
        location = self.config.location
        if not location and self.config.protocol == "file":
            location = str(Path(self.config.options["base_path"]).resolve())
        if not location:
            try:
                location = await self._fetch_bucket_location()
            except (ClientError, BotoCoreError) as e:
                raise StorageError(f"Failed to fetch metadata of bucket {self.bucket}: {e}") from e

        if not location:
            raise ConfigurationError(f"Storage doesn't know the location of bucket {self.bucket}")

        logger.info(f"Storage bucket {self.bucket} is in {location}")
        return StorageLocation(bucket_name=self.bucket, location=location)

    async def stat(self, path: str) -> dict[str, Any]:
        """
        Return metadata of an object.

        Raises:
            ObjectNotFoundError: If the object does not exist
            StorageError: For any other failure (permissions, network, service fault)
        """
        if self.config.protocol == "file":
            loop = asyncio.get_running_loop()
            try:
                info = await loop.run_in_executor(None, self._get_fs().info, str(self._local_path(path)))
            except FileNotFoundError:
                raise ObjectNotFoundError(f"Object not found: {path}") from None
            except OSError as e:
                raise StorageError(f"Failed to stat {path}: {e}") from e
            return {"size": info.get("size"), "path": path}

        s3_client = await self._get_s3_client()
        try:
            response = await s3_client.head_object(Bucket=self.bucket, Key=self._key(path))
        except ClientError as e:
            if is_not_found(e):
                raise ObjectNotFoundError(f"Object not found: {path}") from None
            raise StorageError(f"Failed to stat {path}: {e}") from e
        except BotoCoreError as e:
            raise StorageError(f"Failed to stat {path}: {e}") from e
        return {"size": response.get("ContentLength"), "path": path, "etag": response.get("ETag")}

    async def write_file(self, path: str, file_path: str | Path, size: int) -> None:
        """
        Upload a local file to path.

        The object only becomes visible once the whole file is stored.

        Raises:
            StorageError: If the upload fails
        """
        start_time = time.time()
        try:
            if self.config.protocol == "file":
                await self._copy_to_local(path, Path(file_path))
            else:
                s3_client = await self._get_s3_client()
                if size >= self.multipart_threshold:
                    await self._multipart_upload_from_file(s3_client, self._key(path), str(file_path), size)
                else:
                    async with aiofiles.open(file_path, "rb") as f:
                        body = await f.read()
                    await s3_client.put_object(Bucket=self.bucket, Key=self._key(path), Body=body, ContentLength=size)
        except (ClientError, BotoCoreError, OSError) as e:
            duration = time.time() - start_time
            raise StorageError(f"Failed to upload {path} after {duration:.1f}s: {e}") from e

        duration = time.time() - start_time
        if duration > 60.0 * 3:
            logger.warning(f"SLOW upload of {path} took {duration:.1f}s (storage_id={self._instance_id})")

    async def _copy_to_local(self, path: str, source: Path) -> None:
        """Copy into the local bucket through a hidden temp file and rename."""
        destination = self._local_path(path)

        def _copy() -> None:
            destination.parent.mkdir(parents=True, exist_ok=True)
            fd, temp_name = tempfile.mkstemp(dir=destination.parent, prefix=f".{destination.name}.", suffix=".part")
            os.close(fd)
            try:
                shutil.copyfile(source, temp_name)
                os.replace(temp_name, destination)
            except BaseException:
                Path(temp_name).unlink(missing_ok=True)
                raise

        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, _copy)

    def _calculate_part_size(self, file_size: int) -> int:
        """Part size that keeps large uploads under the 10,000 part limit."""
        if file_size < 1024 * 1024 * 1024:  # < 1GB
            return 16 * 1024 * 1024
        return max(32 * 1024 * 1024, -(-file_size // 9000))

    async def _multipart_upload_from_file(self, s3_client: Any, key: str, file_path: str, size: int) -> None:
        """Upload a large file in parts; the upload is aborted if any part fails."""
        chunk_size = self._calculate_part_size(size)
        max_concurrent_parts = 4

        response = await s3_client.create_multipart_upload(Bucket=self.bucket, Key=key)
        upload_id = response["UploadId"]
        logger.debug(
            f"Starting multipart upload for {key} (upload_id={upload_id}, size={size}, "
            f"chunk_size={chunk_size}, storage_id={self._instance_id})"
        )

        try:
            # Bounded queue limits how many chunks sit in memory at once
            chunk_queue: asyncio.Queue[tuple[int, bytes] | None] = asyncio.Queue(maxsize=max_concurrent_parts * 2)
            results: list[tuple[int, str]] = []

            async def producer() -> None:
                part_number = 1
                async with aiofiles.open(file_path, "rb") as f:
                    while chunk := await f.read(chunk_size):
                        await chunk_queue.put((part_number, chunk))
                        part_number += 1
                # One end-of-file marker per consumer
                for _ in range(max_concurrent_parts):
                    await chunk_queue.put(None)

            async def consumer() -> None:
                while (item := await chunk_queue.get()) is not None:
                    part_number, chunk = item
                    part = await s3_client.upload_part(
                        Bucket=self.bucket, Key=key, PartNumber=part_number, UploadId=upload_id, Body=chunk
                    )
                    results.append((part_number, part["ETag"]))

            tasks = [asyncio.create_task(producer())]
            tasks += [asyncio.create_task(consumer()) for _ in range(max_concurrent_parts)]
            try:
                await asyncio.gather(*tasks)
            except BaseException:
                for task in tasks:
                    task.cancel()
                await asyncio.gather(*tasks, return_exceptions=True)
                raise

            parts = [{"ETag": etag, "PartNumber": number} for number, etag in sorted(results)]
            await s3_client.complete_multipart_upload(
                Bucket=self.bucket, Key=key, UploadId=upload_id, MultipartUpload={"Parts": parts}
            )
            logger.debug(f"Multipart upload completed ({key}, {len(parts)} parts)")

        except BaseException:
            try:
                await s3_client.abort_multipart_upload(Bucket=self.bucket, Key=key, UploadId=upload_id)
                logger.error(f"Aborted multipart upload ({key}, upload_id={upload_id})")
            except (ClientError, BotoCoreError) as abort_error:
                logger.error(f"Failed to abort multipart upload ({key}, upload_id={upload_id}): {abort_error}")
            raise

    async def close(self) -> None:
        """Clean up resources, especially S3 client connections."""
        if self._exit_stack is not None:
            try:
                await self._exit_stack.aclose()
                logger.debug(f"Storage resources closed (storage_id={self._instance_id})")
            finally:
                self._exit_stack = None
                self._s3_client = None
