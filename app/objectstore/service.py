"""統合ストレージサービス

ストレージドライバを抽象化し、統一的なAPIを提供。
サービスはドライバ種別で分岐せず、既定値の補完とライフサイクル管理のみを行う。
"""

import dataclasses
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, List, Optional, Sequence

from .config import StorageConfig
from .drivers.base import StorageDriver
from .exceptions import StorageConfigError
from .factory import DriverFactory
from .models import (
    DownloadOptions,
    ListOptions,
    PresignedUrlOptions,
    StorageMetadata,
    StorageObject,
    UploadContent,
    UploadItem,
    UploadOptions,
    Visibility,
)
from .streams import ByteStream

logger = logging.getLogger(__name__)


class StorageService:
    """
    統合ストレージサービス

    環境変数STORAGE_DRIVERでドライバを切り替え:
    - 'local': ローカルファイルシステム（デフォルト）
    - 's3': S3ストレージ
    - 'minio': MinIO
    """

    def __init__(self, driver: StorageDriver, config: StorageConfig):
        self._driver = driver
        self._config = config
        logger.info(f"StorageService initialized: driver={driver.name}")

    @classmethod
    async def from_config(cls, config: Optional[StorageConfig] = None,
                          auto_connect: Optional[bool] = None) -> 'StorageService':
        """
        設定からドライバを生成してサービスを構築

        Args:
            config: ストレージ設定。Noneの場合は環境変数から読み込み
            auto_connect: 接続まで行うか。Noneの場合は config.auto_connect に従う
        """
        config = config or StorageConfig.from_env()
        driver = await DriverFactory().create_driver(config, auto_connect=auto_connect)
        return cls(driver, config)

    @property
    def driver(self) -> StorageDriver:
        """ドライバインスタンスを取得"""
        return self._driver

    @property
    def config(self) -> StorageConfig:
        """設定を取得"""
        return self._config

    # --- ライフサイクル ---

    async def startup(self):
        """アプリケーション起動時: auto_connect が有効なら接続"""
        if self._config.auto_connect and not self._driver.is_connected():
            await self._driver.connect()
        logger.info(f"Storage started: driver={self._driver.name}, connected={self._driver.is_connected()}")

    async def shutdown(self):
        """アプリケーション終了時: 接続済みなら切断"""
        if self._driver.is_connected():
            await self._driver.disconnect()
            logger.info(f"Storage disconnected: driver={self._driver.name}")

    @asynccontextmanager
    async def lifespan(self) -> AsyncIterator['StorageService']:
        """startup/shutdown をまとめたコンテキストマネージャ（FastAPI の lifespan 用）"""
        await self.startup()
        try:
            yield self
        finally:
            await self.shutdown()

    async def connect(self):
        await self._driver.connect()

    async def disconnect(self):
        await self._driver.disconnect()

    def is_connected(self) -> bool:
        return self._driver.is_connected()

    # --- 既定値の補完 ---

    def _upload_options(self, options: Optional[UploadOptions]) -> UploadOptions:
        options = options or UploadOptions()
        if options.visibility is None:
            options = dataclasses.replace(options, visibility=self._config.default_visibility)
        return options

    def _presigned_options(self, options: Optional[PresignedUrlOptions]) -> PresignedUrlOptions:
        options = options or PresignedUrlOptions()
        if options.expires_in is None:
            options = dataclasses.replace(options, expires_in=self._config.presigned_url_expiration)
        return options

    # --- 書き込み系メソッド ---

    async def upload(self, path: str, content: UploadContent,
                     options: Optional[UploadOptions] = None) -> StorageObject:
        """ファイルをアップロード（公開設定未指定時は default_visibility）"""
        return await self._driver.upload(path, content, self._upload_options(options))

    async def upload_multiple(self, items: Sequence[UploadItem],
                              options: Optional[UploadOptions] = None) -> List[StorageObject]:
        """複数ファイルをアップロード（結果は入力順）"""
        return await self._driver.upload_multiple(items, self._upload_options(options))

    async def delete(self, path: str) -> None:
        await self._driver.delete(path)

    async def delete_multiple(self, paths: Sequence[str]) -> None:
        await self._driver.delete_multiple(paths)

    async def copy(self, source: str, destination: str) -> None:
        await self._driver.copy(source, destination)

    async def move(self, source: str, destination: str) -> None:
        await self._driver.move(source, destination)

    async def set_metadata(self, path: str, metadata: StorageMetadata) -> None:
        await self._driver.set_metadata(path, metadata)

    async def set_visibility(self, path: str, visibility: Visibility) -> None:
        await self._driver.set_visibility(path, visibility)

    # --- 読み取り系メソッド ---

    async def download(self, path: str, options: Optional[DownloadOptions] = None) -> bytes:
        return await self._driver.download(path, options)

    async def download_stream(self, path: str, options: Optional[DownloadOptions] = None) -> ByteStream:
        return await self._driver.download_stream(path, options)

    async def exists(self, path: str) -> bool:
        return await self._driver.exists(path)

    async def get_metadata(self, path: str) -> StorageMetadata:
        return await self._driver.get_metadata(path)

    async def list(self, prefix: str = '', options: Optional[ListOptions] = None) -> List[StorageObject]:
        return await self._driver.list(prefix, options)

    async def get_visibility(self, path: str) -> Visibility:
        return await self._driver.get_visibility(path)

    # --- URL ---

    def get_url(self, path: str) -> str:
        return self._driver.get_url(path)

    async def get_presigned_url(self, path: str, options: Optional[PresignedUrlOptions] = None) -> str:
        """事前署名URLを生成（有効期限未指定時は presigned_url_expiration）"""
        return await self._driver.get_presigned_url(path, self._presigned_options(options))


_instance: Optional[StorageService] = None


def init_storage(config: Optional[StorageConfig] = None) -> StorageService:
    """
    StorageServiceを初期化（接続は startup で行う）

    Args:
        config: ストレージ設定。Noneの場合は環境変数から読み込み

    Raises:
        DriverNotFoundError: 未登録のドライバが指定された場合
    """
    global _instance
    config = config or StorageConfig.from_env()
    _instance = StorageService(DriverFactory().build_driver(config), config)
    return _instance


def get_storage() -> StorageService:
    """
    StorageServiceのインスタンスを取得（FastAPI の Depends 用）

    Raises:
        StorageConfigError: init_storage が呼ばれていない場合
    """
    if _instance is None:
        raise StorageConfigError("Storage service is not initialized. Call init_storage() first.")
    return _instance


def reset_instance():
    """
    インスタンスをリセット（テスト用）

    注意: 本番環境では使用しないこと
    """
    global _instance
    _instance = None
