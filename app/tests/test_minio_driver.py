"""
MinIOドライバのテストコード（minio クライアントはモック）
"""
import io
import json
import time
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock, patch

import pytest
from minio.error import S3Error
from urllib3.exceptions import ProtocolError

from objectstore import (
    ByteRange,
    DeleteFailedError,
    DownloadFailedError,
    DownloadOptions,
    ListOptions,
    MinIOConfig,
    MinIOStorageDriver,
    PresignedUrlOptions,
    StorageAccessError,
    StorageConnectionError,
    StorageMetadata,
    StorageNotFoundError,
    UploadItem,
    UploadOptions,
    Visibility,
)
from objectstore.drivers.minio import STREAM_PART_SIZE

OBJECT_ARN = "arn:aws:s3:::lab-bucket/{}"


def s3_error(code: str) -> S3Error:
    return S3Error(
        code=code,
        message=code,
        resource="/lab-bucket",
        request_id="request-id",
        host_id="host-id",
        response=MagicMock()
    )


def public_policy(*resources: str) -> str:
    return json.dumps({
        "Version": "2012-10-17",
        "Statement": [{
            "Sid": "PublicReadObjects",
            "Effect": "Allow",
            "Principal": {"AWS": ["*"]},
            "Action": ["s3:GetObject"],
            "Resource": list(resources),
        }],
    })


def object_stat(size=3, content_type="text/plain", metadata=None):
    stat = MagicMock()
    stat.size = size
    stat.content_type = content_type
    stat.etag = "etag"
    stat.last_modified = datetime(2024, 4, 1, tzinfo=timezone.utc)
    stat.metadata = metadata or {}
    return stat


def listed_object(name, size=1, is_dir=False):
    obj = MagicMock()
    obj.object_name = name
    obj.size = size
    obj.is_dir = is_dir
    obj.content_type = None
    obj.etag = "etag"
    obj.last_modified = datetime(2024, 4, 1, tzinfo=timezone.utc)
    return obj


@pytest.fixture
def minio_client():
    client = MagicMock()
    client.bucket_exists.return_value = True
    client.stat_object.return_value = object_stat()
    client.get_bucket_policy.side_effect = s3_error("NoSuchBucketPolicy")
    return client


@pytest.fixture
def minio_driver(minio_client):
    with patch("objectstore.drivers.minio.Minio", return_value=minio_client) as minio_class:
        driver = MinIOStorageDriver(MinIOConfig(bucket="lab-bucket"))
        driver.minio_class = minio_class
        yield driver


# ==================== 接続管理 ====================

@pytest.mark.asyncio
async def test_connect(minio_driver, minio_client):
    await minio_driver.connect()

    assert minio_driver.is_connected()
    args, kwargs = minio_driver.minio_class.call_args
    assert args == ("localhost:9000",)
    assert kwargs["secure"] is False
    assert kwargs["access_key"] == "minioadmin"
    minio_client.make_bucket.assert_not_called()


@pytest.mark.asyncio
async def test_connect_creates_bucket(minio_driver, minio_client):
    minio_client.bucket_exists.return_value = False

    await minio_driver.connect()

    minio_client.make_bucket.assert_called_once_with(bucket_name="lab-bucket")


@pytest.mark.asyncio
async def test_connect_fails_without_bucket_creation(minio_client):
    minio_client.bucket_exists.return_value = False
    with patch("objectstore.drivers.minio.Minio", return_value=minio_client):
        driver = MinIOStorageDriver(MinIOConfig(bucket="lab-bucket", create_bucket=False))
        with pytest.raises(StorageConnectionError) as exc_info:
            await driver.connect()

    assert exc_info.value.driver == "MinIO"
    assert not driver.is_connected()


@pytest.mark.asyncio
async def test_connect_unreachable(minio_driver, minio_client):
    minio_client.bucket_exists.side_effect = s3_error("AccessDenied")

    with pytest.raises(StorageConnectionError):
        await minio_driver.connect()


# ==================== アップロード ====================

@pytest.mark.asyncio
async def test_upload_bytes(minio_driver, minio_client):
    minio_client.put_object.return_value = MagicMock(etag="etag-1")
    await minio_driver.connect()

    options = UploadOptions(
        content_type="application/json",
        metadata=StorageMetadata(cache_control="no-cache", custom_metadata={"run": "1"})
    )
    result = await minio_driver.upload("runs/1/result.json", b'{"a": 1}', options)

    kwargs = minio_client.put_object.call_args.kwargs
    assert kwargs["bucket_name"] == "lab-bucket"
    assert kwargs["object_name"] == "runs/1/result.json"
    assert kwargs["length"] == 8
    assert kwargs["content_type"] == "application/json"
    assert kwargs["metadata"] == {"Cache-Control": "no-cache", "run": "1"}
    assert result.etag == "etag-1"
    assert result.size == 8
    assert result.url == "http://localhost:9000/lab-bucket/runs/1/result.json"


@pytest.mark.asyncio
async def test_upload_public_adds_policy_statement(minio_driver, minio_client):
    await minio_driver.connect()

    await minio_driver.upload("public/a.txt", b"x", UploadOptions(visibility=Visibility.PUBLIC))

    policy = json.loads(minio_client.set_bucket_policy.call_args.kwargs["policy"])
    assert policy["Statement"][0]["Resource"] == [OBJECT_ARN.format("public/a.txt")]
    assert policy["Statement"][0]["Action"] == ["s3:GetObject"]


@pytest.mark.asyncio
async def test_upload_private_leaves_policy_untouched(minio_driver, minio_client):
    await minio_driver.connect()

    await minio_driver.upload("private/a.txt", b"x", UploadOptions(visibility=Visibility.PRIVATE))

    minio_client.set_bucket_policy.assert_not_called()
    minio_client.delete_bucket_policy.assert_not_called()


class UnsizedReader:
    """シークできずサイズ不明のストリーム"""

    def __init__(self, data: bytes):
        self._buffer = io.BytesIO(data)

    def read(self, size=-1):
        return self._buffer.read(size)


@pytest.mark.asyncio
async def test_upload_unsized_stream_uses_multipart(minio_driver, minio_client):
    minio_client.stat_object.return_value = object_stat(size=5)
    await minio_driver.connect()

    reader = UnsizedReader(b"12345")
    result = await minio_driver.upload("stream.bin", reader)

    kwargs = minio_client.put_object.call_args.kwargs
    assert kwargs["data"] is reader
    assert kwargs["length"] == -1
    assert kwargs["part_size"] == STREAM_PART_SIZE
    assert result.size == 5


@pytest.mark.asyncio
async def test_upload_multiple_public_keeps_every_object(minio_driver, minio_client):
    store = {"policy": None}

    def get_bucket_policy(bucket_name):
        time.sleep(0.05)
        if store["policy"] is None:
            raise s3_error("NoSuchBucketPolicy")
        return store["policy"]

    def set_bucket_policy(bucket_name, policy):
        time.sleep(0.05)
        store["policy"] = policy

    minio_client.get_bucket_policy.side_effect = get_bucket_policy
    minio_client.set_bucket_policy.side_effect = set_bucket_policy
    await minio_driver.connect()

    items = [UploadItem(f"f{i}.txt", b"x") for i in range(4)]
    await minio_driver.upload_multiple(items, UploadOptions(visibility=Visibility.PUBLIC))

    resources = json.loads(store["policy"])["Statement"][0]["Resource"]
    assert sorted(resources) == [OBJECT_ARN.format(f"f{i}.txt") for i in range(4)]
    for item in items:
        assert await minio_driver.get_visibility(item.path) == Visibility.PUBLIC


# ==================== 公開設定 ====================

@pytest.mark.asyncio
async def test_get_visibility(minio_driver, minio_client):
    await minio_driver.connect()
    assert await minio_driver.get_visibility("a.txt") == Visibility.PRIVATE

    minio_client.get_bucket_policy.side_effect = None
    minio_client.get_bucket_policy.return_value = public_policy(OBJECT_ARN.format("a.txt"))
    assert await minio_driver.get_visibility("a.txt") == Visibility.PUBLIC
    assert await minio_driver.get_visibility("b.txt") == Visibility.PRIVATE


@pytest.mark.asyncio
async def test_bucket_wide_policy_is_public(minio_driver, minio_client):
    minio_client.get_bucket_policy.side_effect = None
    minio_client.get_bucket_policy.return_value = public_policy("arn:aws:s3:::lab-bucket/*")
    await minio_driver.connect()

    assert await minio_driver.get_visibility("any/object.txt") == Visibility.PUBLIC


@pytest.mark.asyncio
async def test_set_private_removes_last_resource(minio_driver, minio_client):
    minio_client.get_bucket_policy.side_effect = None
    minio_client.get_bucket_policy.return_value = public_policy(OBJECT_ARN.format("a.txt"))
    await minio_driver.connect()

    await minio_driver.set_visibility("a.txt", Visibility.PRIVATE)

    minio_client.delete_bucket_policy.assert_called_once_with(bucket_name="lab-bucket")


@pytest.mark.asyncio
async def test_set_private_keeps_other_resources(minio_driver, minio_client):
    minio_client.get_bucket_policy.side_effect = None
    minio_client.get_bucket_policy.return_value = public_policy(
        OBJECT_ARN.format("a.txt"), OBJECT_ARN.format("b.txt")
    )
    await minio_driver.connect()

    await minio_driver.set_visibility("a.txt", "private")

    policy = json.loads(minio_client.set_bucket_policy.call_args.kwargs["policy"])
    assert policy["Statement"][0]["Resource"] == [OBJECT_ARN.format("b.txt")]


@pytest.mark.asyncio
async def test_visibility_missing_object(minio_driver, minio_client):
    minio_client.stat_object.side_effect = s3_error("NoSuchKey")
    await minio_driver.connect()

    with pytest.raises(StorageNotFoundError):
        await minio_driver.get_visibility("missing.txt")
    with pytest.raises(StorageNotFoundError):
        await minio_driver.set_visibility("missing.txt", Visibility.PUBLIC)


# ==================== ダウンロード ====================

@pytest.mark.asyncio
async def test_download_releases_connection(minio_driver, minio_client):
    response = MagicMock()
    response.read.side_effect = [b"abc", b""]
    minio_client.get_object.return_value = response
    await minio_driver.connect()

    assert await minio_driver.download("a.txt") == b"abc"
    response.close.assert_called_once()
    response.release_conn.assert_called_once()


@pytest.mark.asyncio
async def test_download_range(minio_driver, minio_client):
    response = MagicMock()
    response.read.side_effect = [b"2345", b""]
    minio_client.get_object.return_value = response
    await minio_driver.connect()

    await minio_driver.download("a.txt", DownloadOptions(range=ByteRange(2, 5)))

    minio_client.get_object.assert_called_once_with(
        bucket_name="lab-bucket", object_name="a.txt", offset=2, length=4
    )


@pytest.mark.asyncio
async def test_download_missing(minio_driver, minio_client):
    minio_client.get_object.side_effect = s3_error("NoSuchKey")
    await minio_driver.connect()

    with pytest.raises(StorageNotFoundError):
        await minio_driver.download("missing.txt")
    with pytest.raises(StorageNotFoundError):
        await minio_driver.download_stream("missing.txt")


@pytest.mark.asyncio
async def test_network_errors_are_wrapped(minio_driver, minio_client):
    aborted = ProtocolError("Connection aborted.")
    minio_client.get_object.side_effect = aborted
    minio_client.remove_object.side_effect = aborted
    minio_client.list_objects.side_effect = aborted
    await minio_driver.connect()

    with pytest.raises(DownloadFailedError) as exc_info:
        await minio_driver.download("a.txt")
    assert exc_info.value.cause is aborted
    with pytest.raises(DeleteFailedError):
        await minio_driver.delete("a.txt")
    with pytest.raises(StorageAccessError):
        await minio_driver.list("runs/")

    minio_client.stat_object.side_effect = aborted
    with pytest.raises(StorageAccessError):
        await minio_driver.exists("a.txt")


# ==================== 存在確認・削除・コピー ====================

@pytest.mark.asyncio
async def test_exists(minio_driver, minio_client):
    await minio_driver.connect()
    assert await minio_driver.exists("a.txt") is True

    minio_client.stat_object.side_effect = s3_error("NoSuchKey")
    assert await minio_driver.exists("missing.txt") is False


@pytest.mark.asyncio
async def test_delete_multiple_partial_failure(minio_driver, minio_client):
    def stat_object(bucket_name, object_name):
        if object_name == "missing.txt":
            raise s3_error("NoSuchKey")
        return object_stat()

    minio_client.stat_object.side_effect = stat_object
    await minio_driver.connect()

    with pytest.raises(StorageNotFoundError):
        await minio_driver.delete_multiple(["a.txt", "missing.txt"])

    minio_client.remove_object.assert_called_once_with(bucket_name="lab-bucket", object_name="a.txt")


@pytest.mark.asyncio
async def test_copy(minio_driver, minio_client):
    await minio_driver.connect()

    await minio_driver.copy("src.txt", "dst.txt")

    kwargs = minio_client.copy_object.call_args.kwargs
    assert kwargs["object_name"] == "dst.txt"
    assert kwargs["source"].object_name == "src.txt"


@pytest.mark.asyncio
async def test_copy_missing_source(minio_driver, minio_client):
    minio_client.copy_object.side_effect = s3_error("NoSuchKey")
    await minio_driver.connect()

    with pytest.raises(StorageNotFoundError):
        await minio_driver.copy("missing.txt", "dst.txt")


# ==================== メタデータ ====================

@pytest.mark.asyncio
async def test_get_metadata(minio_driver, minio_client):
    minio_client.stat_object.return_value = object_stat(
        size=10,
        content_type="text/csv",
        metadata={"Cache-Control": "no-cache", "X-Amz-Meta-Owner": "lab"}
    )
    await minio_driver.connect()

    metadata = await minio_driver.get_metadata("data.csv")

    assert metadata.size == 10
    assert metadata.content_type == "text/csv"
    assert metadata.cache_control == "no-cache"
    assert metadata.custom_metadata == {"owner": "lab"}


@pytest.mark.asyncio
async def test_set_metadata_replaces(minio_driver, minio_client):
    await minio_driver.connect()

    await minio_driver.set_metadata("a.txt", StorageMetadata(custom_metadata={"owner": "lab"}))

    kwargs = minio_client.copy_object.call_args.kwargs
    assert kwargs["metadata"] == {"owner": "lab", "Content-Type": "text/plain"}
    assert kwargs["metadata_directive"] == "REPLACE"


# ==================== 一覧取得・URL ====================

@pytest.mark.asyncio
async def test_list_skips_directories(minio_driver, minio_client):
    minio_client.list_objects.return_value = iter([
        listed_object("reports/summary.txt"),
        listed_object("reports/2024/", is_dir=True),
    ])
    await minio_driver.connect()

    objects = await minio_driver.list("reports/")

    assert [o.path for o in objects] == ["reports/summary.txt"]
    kwargs = minio_client.list_objects.call_args.kwargs
    assert kwargs["prefix"] == "reports/"
    assert kwargs["recursive"] is False


@pytest.mark.asyncio
async def test_list_max_results(minio_driver, minio_client):
    minio_client.list_objects.return_value = iter([listed_object(f"k{i}") for i in range(5)])
    await minio_driver.connect()

    objects = await minio_driver.list("", ListOptions(recursive=True, max_results=2))

    assert [o.path for o in objects] == ["k0", "k1"]


@pytest.mark.asyncio
async def test_presigned_url(minio_driver, minio_client):
    minio_client.presigned_get_object.return_value = "http://signed"
    await minio_driver.connect()

    url = await minio_driver.get_presigned_url("a.txt", PresignedUrlOptions(expires_in=120))

    assert url == "http://signed"
    kwargs = minio_client.presigned_get_object.call_args.kwargs
    assert kwargs["expires"] == timedelta(seconds=120)
    assert kwargs["response_headers"] is None


def test_get_url_with_ssl():
    driver = MinIOStorageDriver(MinIOConfig(endpoint="minio.example.com", port=443, use_ssl=True, bucket="lab"))
    assert driver.get_url("a/b.txt") == "https://minio.example.com/lab/a/b.txt"
