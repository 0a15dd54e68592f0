"""ストレージ設定クラス

環境変数・辞書からの設定読み込みを一元管理。
アクティブなドライバに対応する設定ブロックのみが参照される。
"""

from dataclasses import dataclass, field, fields
from typing import Any, Dict, Mapping, Optional, Union
import os

from .exceptions import StorageConfigError
from .models import Visibility


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None or value == '':
        return default
    return value.strip().lower() in ('1', 'true', 'yes', 'on')


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or value == '':
        return default
    try:
        return int(value)
    except ValueError:
        raise StorageConfigError(f"Environment variable {name} must be an integer: {value!r}")


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or value == '':
        return default
    try:
        return float(value)
    except ValueError:
        raise StorageConfigError(f"Environment variable {name} must be a number: {value!r}")


def _block_from_dict(cls, data: Optional[Mapping[str, Any]]):
    """辞書から設定ブロックを生成（未知のキーは無視）"""
    if data is None:
        return cls()
    if isinstance(data, cls):
        return data
    known = {f.name for f in fields(cls)}
    return cls(**{k: v for k, v in data.items() if k in known})


@dataclass
class LocalConfig:
    """ローカルストレージ固有設定"""
    root: str = "./storage"
    base_url: Optional[str] = None
    ensure_directory_exists: bool = True
    file_mode: int = 0o644
    directory_mode: int = 0o755

    @classmethod
    def from_env(cls) -> 'LocalConfig':
        """環境変数から設定を読み込み"""
        return cls(
            root=os.getenv('LOCAL_STORAGE_ROOT', './storage'),
            base_url=os.getenv('LOCAL_STORAGE_BASE_URL') or None,
            ensure_directory_exists=_env_bool('LOCAL_STORAGE_ENSURE_DIR', True)
        )


@dataclass
class S3Config:
    """S3固有設定"""
    bucket: str = ""
    region: str = "us-east-1"
    endpoint: Optional[str] = None
    access_key_id: Optional[str] = None
    secret_access_key: Optional[str] = None
    session_token: Optional[str] = None
    force_path_style: bool = False
    use_ssl: bool = True
    verify_bucket: bool = True
    client_options: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_env(cls) -> 'S3Config':
        """環境変数から設定を読み込み"""
        return cls(
            bucket=os.getenv('S3_BUCKET', ''),
            region=os.getenv('S3_REGION', 'us-east-1'),
            endpoint=os.getenv('S3_ENDPOINT') or None,
            access_key_id=os.getenv('S3_ACCESS_KEY_ID') or None,
            secret_access_key=os.getenv('S3_SECRET_ACCESS_KEY') or None,
            session_token=os.getenv('S3_SESSION_TOKEN') or None,
            force_path_style=_env_bool('S3_FORCE_PATH_STYLE', False),
            use_ssl=_env_bool('S3_USE_SSL', True)
        )


@dataclass
class MinIOConfig:
    """MinIO固有設定"""
    endpoint: str = "localhost"
    port: int = 9000
    use_ssl: bool = False
    access_key: str = "minioadmin"
    secret_key: str = "minioadmin"
    bucket: str = ""
    region: str = "us-east-1"
    session_token: Optional[str] = None
    create_bucket: bool = True

    @classmethod
    def from_env(cls) -> 'MinIOConfig':
        """環境変数から設定を読み込み"""
        return cls(
            endpoint=os.getenv('MINIO_ENDPOINT', 'localhost'),
            port=_env_int('MINIO_PORT', 9000),
            use_ssl=_env_bool('MINIO_USE_SSL', False),
            access_key=os.getenv('MINIO_ACCESS_KEY', 'minioadmin'),
            secret_key=os.getenv('MINIO_SECRET_KEY', 'minioadmin'),
            bucket=os.getenv('MINIO_BUCKET', ''),
            region=os.getenv('MINIO_REGION', 'us-east-1')
        )


@dataclass
class StorageConfig:
    """統合ストレージ設定"""
    driver: str = "local"
    local: LocalConfig = field(default_factory=LocalConfig)
    s3: S3Config = field(default_factory=S3Config)
    minio: MinIOConfig = field(default_factory=MinIOConfig)
    auto_connect: bool = True
    default_visibility: Visibility = Visibility.PRIVATE
    max_file_size: int = 104857600
    presigned_url_expiration: int = 3600
    max_retries: int = 3
    retry_delay: float = 1.0

    def __post_init__(self):
        try:
            self.default_visibility = Visibility.from_string(self.default_visibility)
        except ValueError:
            raise StorageConfigError(f"Invalid default visibility: {self.default_visibility!r}")
        if self.max_retries < 0:
            raise StorageConfigError(f"max_retries must be >= 0: {self.max_retries}")
        if self.presigned_url_expiration <= 0:
            raise StorageConfigError(
                f"presigned_url_expiration must be positive: {self.presigned_url_expiration}"
            )

    @classmethod
    def from_env(cls) -> 'StorageConfig':
        """環境変数から設定を読み込み"""
        return cls(
            driver=os.getenv('STORAGE_DRIVER', 'local').lower(),
            local=LocalConfig.from_env(),
            s3=S3Config.from_env(),
            minio=MinIOConfig.from_env(),
            auto_connect=_env_bool('STORAGE_AUTO_CONNECT', True),
            default_visibility=os.getenv('STORAGE_DEFAULT_VISIBILITY', Visibility.PRIVATE.value),
            max_file_size=_env_int('STORAGE_MAX_FILE_SIZE', 104857600),
            presigned_url_expiration=_env_int('STORAGE_PRESIGNED_URL_EXPIRATION', 3600),
            max_retries=_env_int('STORAGE_MAX_RETRIES', 3),
            retry_delay=_env_float('STORAGE_RETRY_DELAY', 1.0)
        )

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> 'StorageConfig':
        """辞書（設定ファイル由来など）から設定を読み込み"""
        if 'driver' not in data:
            raise StorageConfigError("Storage configuration requires a 'driver' key")
        scalar_keys = (
            'auto_connect', 'default_visibility', 'max_file_size',
            'presigned_url_expiration', 'max_retries', 'retry_delay'
        )
        kwargs = {key: data[key] for key in scalar_keys if key in data}
        return cls(
            driver=str(data['driver']).lower(),
            local=_block_from_dict(LocalConfig, data.get('local')),
            s3=_block_from_dict(S3Config, data.get('s3')),
            minio=_block_from_dict(MinIOConfig, data.get('minio')),
            **kwargs
        )

    def get_driver_config(self) -> Union[LocalConfig, S3Config, MinIOConfig, None]:
        """現在のドライバに対応する設定ブロックを取得"""
        blocks = {
            'local': self.local,
            's3': self.s3,
            'minio': self.minio,
        }
        return blocks.get(str(getattr(self.driver, 'value', self.driver)).lower())
