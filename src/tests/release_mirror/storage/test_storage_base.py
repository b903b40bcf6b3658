"""Tests for the storage abstraction: local backend, S3 calls and bucket metadata."""

import asyncio
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import pytest
from botocore.exceptions import ClientError

from release_mirror.errors import ConfigurationError, ObjectNotFoundError, StorageError
from release_mirror.storage.base import BackendConfig, Storage, is_not_found


def client_error(code: str, operation: str = "HeadObject") -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": code}}, operation)


@dataclass
class FakeS3Client:
    """Lightweight stub that mimics the async S3 API used by Storage."""

    objects: dict[str, bytes] = field(default_factory=dict)
    head_errors: dict[str, Exception] = field(default_factory=dict)
    part_failures: dict[int, Exception] = field(default_factory=dict)
    upload_id: str = "fake-upload-id"
    parts: dict[int, bytes] = field(default_factory=dict)
    put_calls: list[dict[str, Any]] = field(default_factory=list)
    completed_parts: list[dict[str, Any]] | None = None
    abort_called: bool = False
    location_constraint: str | None = None
    location_error: Exception | None = None

    async def get_bucket_location(self, *, Bucket: str) -> dict[str, Any]:
        if self.location_error is not None:
            raise self.location_error
        return {"LocationConstraint": self.location_constraint}

    async def head_object(self, *, Bucket: str, Key: str) -> dict[str, Any]:
        if Key in self.head_errors:
            raise self.head_errors[Key]
        if Key not in self.objects:
            raise client_error("404")
        return {"ContentLength": len(self.objects[Key]), "ETag": '"etag"'}

    async def put_object(self, **kwargs: Any) -> None:
        self.put_calls.append(kwargs)
        self.objects[kwargs["Key"]] = kwargs["Body"]

    async def create_multipart_upload(self, **kwargs: Any) -> dict[str, str]:
        return {"UploadId": self.upload_id}

    async def upload_part(self, *, Bucket: str, Key: str, PartNumber: int, UploadId: str, Body: bytes) -> dict:
        # Later parts finish first to exercise ordering
        await asyncio.sleep(0.001 * (5 - PartNumber if PartNumber < 5 else 0))
        if PartNumber in self.part_failures:
            raise self.part_failures[PartNumber]
        self.parts[PartNumber] = Body
        return {"ETag": f"etag-{PartNumber}"}

    async def complete_multipart_upload(self, **kwargs: Any) -> None:
        self.completed_parts = kwargs["MultipartUpload"]["Parts"]
        self.objects[kwargs["Key"]] = b"".join(self.parts[p["PartNumber"]] for p in self.completed_parts)

    async def abort_multipart_upload(self, **kwargs: Any) -> None:
        self.abort_called = True


def s3_storage(client: FakeS3Client, config: BackendConfig | None = None, **kwargs: Any) -> Storage:
    storage = Storage(config or BackendConfig.s3("releases", "pek3b", "https://s3.pek3b.qingstor.com"), **kwargs)
    storage._s3_client = client
    return storage


def test_storage_requires_bucket():
    with pytest.raises(ConfigurationError):
        Storage(BackendConfig(protocol="s3"))


def test_local_backend_requires_base_path():
    with pytest.raises(ConfigurationError):
        BackendConfig.local("", "releases")


@pytest.mark.parametrize("code,expected", [("404", True), ("NoSuchKey", True), ("403", False), ("500", False)])
def test_is_not_found(code, expected):
    assert is_not_found(client_error(code)) is expected


class TestLocalStorage:
    @pytest.mark.asyncio
    async def test_write_then_stat(self, tmp_path):
        storage = Storage(BackendConfig.local(str(tmp_path / "root"), "releases"))
        source = tmp_path / "download.bin"
        source.write_bytes(b"release bytes")

        await storage.write_file("demo/v1.0.0/demo.zip", source, 13)

        stored = tmp_path / "root" / "releases" / "demo" / "v1.0.0" / "demo.zip"
        assert stored.read_bytes() == b"release bytes"
        assert (await storage.stat("demo/v1.0.0/demo.zip"))["size"] == 13
        # No temp files left next to the object
        assert [p.name for p in stored.parent.iterdir()] == ["demo.zip"]

    @pytest.mark.asyncio
    async def test_stat_missing_object(self, tmp_path):
        storage = Storage(BackendConfig.local(str(tmp_path), "releases"))

        with pytest.raises(ObjectNotFoundError):
            await storage.stat("demo/v1.0.0/missing.zip")

    @pytest.mark.asyncio
    async def test_failed_copy_leaves_nothing_behind(self, tmp_path):
        storage = Storage(BackendConfig.local(str(tmp_path / "root"), "releases"))

        with pytest.raises(StorageError):
            await storage.write_file("demo/v1/a.zip", tmp_path / "does-not-exist", 10)

        directory = tmp_path / "root" / "releases" / "demo" / "v1"
        assert list(directory.iterdir()) == []

    @pytest.mark.asyncio
    async def test_metadata_defaults_to_base_path(self, tmp_path):
        storage = Storage(BackendConfig.local(str(tmp_path), "releases"))

        location = await storage.metadata()

        assert location.bucket_name == "releases"
        assert location.location == str(Path(tmp_path).resolve())


class TestS3Storage:
    @pytest.mark.asyncio
    async def test_stat_existing_object(self):
        storage = s3_storage(FakeS3Client(objects={"demo/v1/a.zip": b"abc"}))

        info = await storage.stat("demo/v1/a.zip")

        assert info["size"] == 3

    @pytest.mark.asyncio
    async def test_stat_not_found(self):
        storage = s3_storage(FakeS3Client())

        with pytest.raises(ObjectNotFoundError):
            await storage.stat("demo/v1/a.zip")

    @pytest.mark.asyncio
    async def test_stat_permission_denied_is_not_missing(self):
        client = FakeS3Client(head_errors={"demo/v1/a.zip": client_error("403")})
        storage = s3_storage(client)

        with pytest.raises(StorageError) as exc_info:
            await storage.stat("demo/v1/a.zip")

        assert not isinstance(exc_info.value, ObjectNotFoundError)

    @pytest.mark.asyncio
    async def test_small_file_single_put(self, tmp_path):
        client = FakeS3Client()
        storage = s3_storage(client)
        source = tmp_path / "a.zip"
        source.write_bytes(b"0123456789")

        await storage.write_file("/demo/v1/a.zip", source, 10)

        assert client.put_calls == [
            {"Bucket": "releases", "Key": "demo/v1/a.zip", "Body": b"0123456789", "ContentLength": 10}
        ]

    @pytest.mark.asyncio
    async def test_put_failure_raises_storage_error(self, tmp_path):
        client = FakeS3Client()

        async def failing_put(**kwargs):
            raise client_error("AccessDenied", "PutObject")

        client.put_object = failing_put
        storage = s3_storage(client)
        source = tmp_path / "a.zip"
        source.write_bytes(b"x")

        with pytest.raises(StorageError, match="AccessDenied"):
            await storage.write_file("demo/v1/a.zip", source, 1)

    @pytest.mark.asyncio
    async def test_large_file_multipart_in_order(self, tmp_path, monkeypatch):
        client = FakeS3Client()
        storage = s3_storage(client, multipart_threshold=8)
        monkeypatch.setattr(Storage, "_calculate_part_size", lambda self, _: 4)
        source = tmp_path / "big.bin"
        source.write_bytes(b"abcdefghij")

        await storage.write_file("demo/v1/big.bin", source, 10)

        assert client.put_calls == []
        assert client.completed_parts == [
            {"ETag": "etag-1", "PartNumber": 1},
            {"ETag": "etag-2", "PartNumber": 2},
            {"ETag": "etag-3", "PartNumber": 3},
        ]
        assert client.objects["demo/v1/big.bin"] == b"abcdefghij"
        assert client.abort_called is False

    @pytest.mark.asyncio
    async def test_multipart_part_failure_aborts(self, tmp_path, monkeypatch):
        client = FakeS3Client(part_failures={2: client_error("InternalError", "UploadPart")})
        storage = s3_storage(client, multipart_threshold=8)
        monkeypatch.setattr(Storage, "_calculate_part_size", lambda self, _: 4)
        source = tmp_path / "big.bin"
        source.write_bytes(b"abcdefghij")

        with pytest.raises(StorageError):
            await storage.write_file("demo/v1/big.bin", source, 10)

        assert client.abort_called is True
        assert client.completed_parts is None
        assert "demo/v1/big.bin" not in client.objects

    @pytest.mark.asyncio
    async def test_metadata_uses_configured_location(self):
        storage = s3_storage(FakeS3Client())

        location = await storage.metadata()

        assert (location.bucket_name, location.location) == ("releases", "pek3b")


class TestBucketLocationLookup:
    @pytest.mark.asyncio
    async def test_lookup_reports_bucket_region(self):
        client = FakeS3Client(location_constraint="eu-west-1")
        storage = s3_storage(client, BackendConfig.s3("releases"))

        location = await storage.metadata()

        assert location.location == "eu-west-1"

    @pytest.mark.asyncio
    async def test_lookup_null_constraint_means_us_east_1(self):
        storage = s3_storage(FakeS3Client(), BackendConfig.s3("releases"))

        location = await storage.metadata()

        assert location.location == "us-east-1"

    @pytest.mark.asyncio
    async def test_null_constraint_on_custom_endpoint_is_unknown(self):
        storage = s3_storage(FakeS3Client(), BackendConfig.s3("releases", endpoint_url="https://minio.local"))

        with pytest.raises(ConfigurationError, match="location"):
            await storage.metadata()

    @pytest.mark.asyncio
    async def test_lookup_missing_bucket_is_storage_error(self):
        client = FakeS3Client(location_error=client_error("NoSuchBucket", "GetBucketLocation"))
        storage = s3_storage(client, BackendConfig.s3("no-such-bucket"))

        with pytest.raises(StorageError, match="no-such-bucket"):
            await storage.metadata()

    @pytest.mark.asyncio
    async def test_lookup_uses_the_persistent_client(self, monkeypatch):
        client = FakeS3Client(location_constraint="ap-southeast-1")
        storage = Storage(BackendConfig.s3("releases"))

        async def get_client(self):
            return client

        monkeypatch.setattr(Storage, "_get_s3_client", get_client)

        location = await storage.metadata()

        assert location.location == "ap-southeast-1"
