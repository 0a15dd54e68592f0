"""ストレージドライバ

インポート時に各ドライバが DriverRegistry へ登録される（local, s3, minio の順）。
"""

from .base import StorageDriver
from .local import LocalStorageDriver
from .s3 import S3StorageDriver
from .minio import MinIOStorageDriver

__all__ = [
    'StorageDriver',
    'LocalStorageDriver',
    'S3StorageDriver',
    'MinIOStorageDriver'
]
