"""
DriverFactory / DriverRegistry のテストコード
"""
from unittest.mock import AsyncMock, patch

import pytest

from objectstore import (
    DriverFactory,
    DriverNotFoundError,
    DriverRegistry,
    DriverType,
    LocalConfig,
    LocalStorageDriver,
    MinIOConfig,
    MinIOStorageDriver,
    S3Config,
    S3StorageDriver,
    StorageConfig,
    StorageConnectionError,
    create_driver,
)


def test_registry_lists_drivers_in_registration_order():
    assert DriverRegistry.list_types() == ["local", "s3", "minio"]
    assert DriverRegistry.get("LOCAL") is LocalStorageDriver
    assert DriverRegistry.get(DriverType.S3) is S3StorageDriver
    assert DriverRegistry.get("minio") is MinIOStorageDriver
    assert LocalStorageDriver.driver_type == DriverType.LOCAL


def test_registry_is_registered():
    assert DriverRegistry.is_registered("s3")
    assert not DriverRegistry.is_registered("gcs")


@pytest.mark.asyncio
async def test_unknown_driver_raises_driver_not_found():
    """未登録のドライバは登録済み一覧付きで失敗する"""
    config = StorageConfig(driver="unknown-backend")

    with pytest.raises(DriverNotFoundError) as exc_info:
        await DriverFactory().create_driver(config)

    error = exc_info.value
    assert error.kind == "driver_not_found"
    assert error.driver == "unknown-backend"
    assert error.available == ["local", "s3", "minio"]
    assert "unknown-backend" in str(error)
    assert "local, s3, minio" in str(error)


def test_resolve_driver_type_is_case_insensitive():
    factory = DriverFactory()
    assert factory.resolve_driver_type(StorageConfig(driver="MinIO")) == DriverType.MINIO


def test_get_driver_options_returns_active_block_only():
    s3_block = S3Config(bucket="lab-bucket")
    config = StorageConfig(driver="s3", s3=s3_block, minio=MinIOConfig(bucket="other"))

    assert DriverFactory().get_driver_options(config) is s3_block


def test_build_driver_passes_retry_settings(tmp_path):
    config = StorageConfig(
        driver="local", local=LocalConfig(root=str(tmp_path)), max_retries=5, retry_delay=0.5
    )

    driver = DriverFactory().build_driver(config)

    assert isinstance(driver, LocalStorageDriver)
    assert driver.max_retries == 5
    assert driver.retry_delay == 0.5
    assert not driver.is_connected()


def test_build_driver_ignores_other_blocks(tmp_path):
    """他ドライバの設定ブロックが不正でもアクティブなドライバは生成できる"""
    config = StorageConfig(
        driver="local",
        local=LocalConfig(root=str(tmp_path)),
        s3=S3Config(bucket=""),
        minio=MinIOConfig(port=-1)
    )
    with patch("objectstore.drivers.s3.S3StorageDriver.__init__") as s3_init:
        driver = DriverFactory().build_driver(config)

    assert isinstance(driver, LocalStorageDriver)
    s3_init.assert_not_called()


@pytest.mark.asyncio
async def test_create_driver_connects(tmp_path):
    config = StorageConfig(driver="local", local=LocalConfig(root=str(tmp_path / "root")))

    driver = await create_driver(config)

    assert driver.is_connected()
    assert (tmp_path / "root").is_dir()


@pytest.mark.asyncio
async def test_create_driver_lazy(tmp_path):
    """auto_connect=False では接続しない"""
    config = StorageConfig(driver="local", local=LocalConfig(root=str(tmp_path / "root")), auto_connect=False)

    driver = await DriverFactory().create_driver(config)

    assert not driver.is_connected()
    assert not (tmp_path / "root").exists()


@pytest.mark.asyncio
async def test_create_driver_argument_overrides_config(tmp_path):
    config = StorageConfig(driver="local", local=LocalConfig(root=str(tmp_path / "root")), auto_connect=True)

    driver = await DriverFactory().create_driver(config, auto_connect=False)

    assert not driver.is_connected()


@pytest.mark.asyncio
async def test_create_driver_propagates_connection_error():
    """接続失敗は呼び出し側に送出される"""
    config = StorageConfig(driver="s3", s3=S3Config(bucket="lab-bucket"))
    error = StorageConnectionError("S3", RuntimeError("unreachable"))

    with patch.object(S3StorageDriver, "connect", AsyncMock(side_effect=error)):
        with pytest.raises(StorageConnectionError) as exc_info:
            await DriverFactory().create_driver(config)

    assert exc_info.value is error
