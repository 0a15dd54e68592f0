"""Object Store - 統合ストレージレイヤー

ローカルファイルシステム・S3・MinIO を統一的に扱うためのストレージ抽象化レイヤー。
設定 → DriverFactory → ドライバ → StorageService の順に組み立てる。
"""

from .config import StorageConfig, LocalConfig, S3Config, MinIOConfig
from .drivers import StorageDriver, LocalStorageDriver, S3StorageDriver, MinIOStorageDriver
from .exceptions import (
    StorageError,
    StorageNotFoundError,
    UploadFailedError,
    DownloadFailedError,
    DeleteFailedError,
    StorageAccessError,
    StorageConnectionError,
    StorageConfigError,
    DriverNotFoundError,
    InvalidPathError,
    FileValidationError,
    MetadataNotSupportedWarning,
)
from .factory import DriverFactory, create_driver
from .models import (
    Visibility,
    StorageACL,
    DriverType,
    PresignedUrlAction,
    StorageObject,
    StorageMetadata,
    UploadOptions,
    DownloadOptions,
    ByteRange,
    ListOptions,
    PresignedUrlOptions,
    UploadItem,
    UploadedFile,
)
from .registry import DriverRegistry
from .service import StorageService, init_storage, get_storage, reset_instance
from .streams import ByteStream

__all__ = [
    'StorageConfig',
    'LocalConfig',
    'S3Config',
    'MinIOConfig',
    'StorageDriver',
    'LocalStorageDriver',
    'S3StorageDriver',
    'MinIOStorageDriver',
    'StorageError',
    'StorageNotFoundError',
    'UploadFailedError',
    'DownloadFailedError',
    'DeleteFailedError',
    'StorageAccessError',
    'StorageConnectionError',
    'StorageConfigError',
    'DriverNotFoundError',
    'InvalidPathError',
    'FileValidationError',
    'MetadataNotSupportedWarning',
    'DriverFactory',
    'create_driver',
    'Visibility',
    'StorageACL',
    'DriverType',
    'PresignedUrlAction',
    'StorageObject',
    'StorageMetadata',
    'UploadOptions',
    'DownloadOptions',
    'ByteRange',
    'ListOptions',
    'PresignedUrlOptions',
    'UploadItem',
    'UploadedFile',
    'DriverRegistry',
    'StorageService',
    'init_storage',
    'get_storage',
    'reset_instance',
    'ByteStream'
]

__version__ = '1.0.0'
