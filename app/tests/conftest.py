"""
ストレージテスト共通フィクスチャ
"""
import pytest
import pytest_asyncio

from objectstore import LocalConfig, LocalStorageDriver, StorageConfig, reset_instance


STORAGE_ENV_VARS = [
    'STORAGE_DRIVER', 'STORAGE_AUTO_CONNECT', 'STORAGE_DEFAULT_VISIBILITY',
    'STORAGE_MAX_FILE_SIZE', 'STORAGE_PRESIGNED_URL_EXPIRATION',
    'STORAGE_MAX_RETRIES', 'STORAGE_RETRY_DELAY',
    'LOCAL_STORAGE_ROOT', 'LOCAL_STORAGE_BASE_URL', 'LOCAL_STORAGE_ENSURE_DIR',
    'S3_BUCKET', 'S3_REGION', 'S3_ENDPOINT', 'S3_ACCESS_KEY_ID', 'S3_SECRET_ACCESS_KEY',
    'S3_SESSION_TOKEN', 'S3_FORCE_PATH_STYLE', 'S3_USE_SSL',
    'MINIO_ENDPOINT', 'MINIO_PORT', 'MINIO_USE_SSL', 'MINIO_ACCESS_KEY',
    'MINIO_SECRET_KEY', 'MINIO_BUCKET', 'MINIO_REGION',
]


@pytest.fixture(autouse=True)
def clean_storage_env(monkeypatch):
    """環境変数とシングルトンをテストごとにリセット"""
    for name in STORAGE_ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    reset_instance()
    yield
    reset_instance()


@pytest.fixture
def storage_root(tmp_path):
    return tmp_path / "storage"


@pytest.fixture
def local_config(storage_root):
    """ローカルドライバ用の統合設定"""
    return StorageConfig(driver="local", local=LocalConfig(root=str(storage_root)))


@pytest_asyncio.fixture
async def local_driver(storage_root):
    """接続済みのローカルドライバ"""
    driver = LocalStorageDriver(LocalConfig(root=str(storage_root)))
    await driver.connect()
    yield driver
    await driver.disconnect()
