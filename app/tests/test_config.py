"""
ストレージ設定・例外のテストコード
"""
import pytest

from objectstore import (
    DownloadFailedError,
    DriverNotFoundError,
    LocalConfig,
    MinIOConfig,
    S3Config,
    StorageConfig,
    StorageConfigError,
    StorageError,
    StorageNotFoundError,
    UploadFailedError,
    Visibility,
)


# ==================== 設定 ====================

def test_defaults():
    config = StorageConfig()

    assert config.driver == "local"
    assert config.auto_connect is True
    assert config.default_visibility == Visibility.PRIVATE
    assert config.max_file_size == 104857600
    assert config.presigned_url_expiration == 3600
    assert config.max_retries == 3
    assert config.retry_delay == 1.0
    assert config.get_driver_config() is config.local


def test_from_env(monkeypatch):
    monkeypatch.setenv("STORAGE_DRIVER", "MinIO")
    monkeypatch.setenv("STORAGE_AUTO_CONNECT", "false")
    monkeypatch.setenv("STORAGE_DEFAULT_VISIBILITY", "PUBLIC")
    monkeypatch.setenv("STORAGE_PRESIGNED_URL_EXPIRATION", "600")
    monkeypatch.setenv("STORAGE_RETRY_DELAY", "0.25")
    monkeypatch.setenv("MINIO_ENDPOINT", "minio.local")
    monkeypatch.setenv("MINIO_PORT", "9100")
    monkeypatch.setenv("MINIO_USE_SSL", "true")
    monkeypatch.setenv("MINIO_BUCKET", "lab")

    config = StorageConfig.from_env()

    assert config.driver == "minio"
    assert config.auto_connect is False
    assert config.default_visibility == Visibility.PUBLIC
    assert config.presigned_url_expiration == 600
    assert config.retry_delay == 0.25
    assert config.get_driver_config() == MinIOConfig(
        endpoint="minio.local", port=9100, use_ssl=True, bucket="lab"
    )


def test_from_env_s3(monkeypatch):
    monkeypatch.setenv("STORAGE_DRIVER", "s3")
    monkeypatch.setenv("S3_BUCKET", "lab-bucket")
    monkeypatch.setenv("S3_ENDPOINT", "http://localhost:4566")
    monkeypatch.setenv("S3_FORCE_PATH_STYLE", "1")

    config = StorageConfig.from_env().get_driver_config()

    assert isinstance(config, S3Config)
    assert config.bucket == "lab-bucket"
    assert config.endpoint == "http://localhost:4566"
    assert config.force_path_style is True
    assert config.access_key_id is None


@pytest.mark.parametrize("name, value", [
    ("STORAGE_MAX_RETRIES", "three"),
    ("STORAGE_RETRY_DELAY", "soon"),
    ("MINIO_PORT", "http"),
    ("STORAGE_DEFAULT_VISIBILITY", "internal"),
])
def test_from_env_invalid_values(monkeypatch, name, value):
    monkeypatch.setenv(name, value)
    with pytest.raises(StorageConfigError):
        StorageConfig.from_env()


def test_invalid_settings():
    with pytest.raises(StorageConfigError):
        StorageConfig(max_retries=-1)
    with pytest.raises(StorageConfigError):
        StorageConfig(presigned_url_expiration=0)


def test_from_dict():
    config = StorageConfig.from_dict({
        "driver": "S3",
        "default_visibility": "public",
        "s3": {"bucket": "lab-bucket", "region": "ap-northeast-1", "unknown_key": "ignored"},
        "local": LocalConfig(root="/data/storage"),
    })

    assert config.driver == "s3"
    assert config.default_visibility == Visibility.PUBLIC
    assert config.s3 == S3Config(bucket="lab-bucket", region="ap-northeast-1")
    assert config.local.root == "/data/storage"
    assert config.minio == MinIOConfig()


def test_from_dict_requires_driver():
    with pytest.raises(StorageConfigError):
        StorageConfig.from_dict({"s3": {"bucket": "lab"}})


def test_unknown_driver_has_no_block():
    assert StorageConfig(driver="gcs").get_driver_config() is None


# ==================== 例外 ====================

def test_error_kinds_and_chaining():
    cause = OSError("disk full")
    error = UploadFailedError("runs/1/a.bin", cause, size=2048)

    assert isinstance(error, StorageError)
    assert error.kind == "upload_failed"
    assert error.size == 2048
    assert error.cause is cause
    assert "runs/1/a.bin" in str(error)
    assert "2048 bytes" in str(error)
    assert error.to_dict() == {
        "kind": "upload_failed",
        "message": str(error),
        "path": "runs/1/a.bin",
        "cause": "disk full",
    }


def test_not_found_is_distinguishable():
    errors = [StorageNotFoundError("a.txt"), DownloadFailedError("a.txt", IOError("reset"))]
    kinds = [e.kind for e in errors]

    assert kinds == ["not_found", "download_failed"]
    assert not isinstance(errors[1], StorageNotFoundError)


def test_driver_not_found_message():
    error = DriverNotFoundError("gcs", ["local", "s3", "minio"])

    assert str(error) == "Storage driver 'gcs' not found. Available drivers: local, s3, minio"
    assert error.to_dict()["kind"] == "driver_not_found"
