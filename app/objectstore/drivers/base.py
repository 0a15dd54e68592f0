"""ストレージドライバ抽象基底クラス

すべてのストレージドライバが実装すべきインターフェースを定義。
I/O を伴う操作はすべてコルーチンで、ブロッキング処理はワーカースレッドで実行する。
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any, Callable, List, Optional, Sequence, TypeVar

from ..models import (
    DownloadOptions,
    DriverType,
    ListOptions,
    PresignedUrlOptions,
    StorageMetadata,
    StorageObject,
    UploadContent,
    UploadItem,
    UploadOptions,
    Visibility,
)
from ..streams import ByteStream

logger = logging.getLogger(__name__)

T = TypeVar('T')


class StorageDriver(ABC):
    """ストレージドライバの抽象基底クラス"""

    # DriverRegistry.register で設定される
    driver_type: Optional[DriverType] = None

    # ケイパビリティフラグ
    supports_metadata: bool = True
    supports_presigned_urls: bool = True

    def __init__(self, config: Any = None, max_retries: int = 3, retry_delay: float = 1.0):
        self.config = config
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self._connected = False

    @property
    def name(self) -> str:
        return self.driver_type.value if self.driver_type else type(self).__name__

    @staticmethod
    async def _run(func: Callable[..., T], *args, **kwargs) -> T:
        """ブロッキング処理をワーカースレッドで実行する"""
        return await asyncio.to_thread(func, *args, **kwargs)

    # --- 接続管理 ---

    @abstractmethod
    async def connect(self) -> None:
        """
        バックエンドへ接続する（接続済みでも安全に呼べる）

        Raises:
            StorageConnectionError: 接続・認証・初期化に失敗した場合
        """

    @abstractmethod
    async def disconnect(self) -> None:
        """リソースを解放する（未接続でも安全に呼べる）"""

    def is_connected(self) -> bool:
        """接続状態を返す（I/Oなし）"""
        return self._connected

    # --- 書き込み系メソッド ---

    @abstractmethod
    async def upload(self, path: str, content: UploadContent,
                     options: Optional[UploadOptions] = None) -> StorageObject:
        """
        ファイルをアップロードする

        Args:
            path: 保存先パス（相対パス形式）
            content: バイト列、バイナリストリーム、または bytes の非同期イテラブル
            options: アップロードオプション

        Returns:
            StorageObject: 保存されたオブジェクトの情報

        Raises:
            UploadFailedError: アップロードに失敗した場合
        """

    async def upload_multiple(self, items: Sequence[UploadItem],
                              options: Optional[UploadOptions] = None) -> List[StorageObject]:
        """
        複数ファイルを並行してアップロードする

        すべての処理の完了を待ってから、入力順で最初の失敗を送出する。
        成功済みのファイルはロールバックしない。
        """
        results = await asyncio.gather(
            *(self.upload(item.path, item.content, options) for item in items),
            return_exceptions=True
        )
        return _raise_first_failure(results)

    @abstractmethod
    async def delete(self, path: str) -> None:
        """
        ファイルを削除する

        Raises:
            StorageNotFoundError: ファイルが存在しない場合
            DeleteFailedError: 削除に失敗した場合
        """

    async def delete_multiple(self, paths: Sequence[str]) -> None:
        """
        複数ファイルを並行して削除する

        いずれかが失敗した場合は全体を失敗とする（成功分は削除済みのまま）。
        """
        results = await asyncio.gather(
            *(self.delete(path) for path in paths),
            return_exceptions=True
        )
        _raise_first_failure(results)

    @abstractmethod
    async def copy(self, source: str, destination: str) -> None:
        """
        ファイルをコピーする

        Raises:
            StorageNotFoundError: コピー元が存在しない場合
        """

    async def move(self, source: str, destination: str) -> None:
        """ファイルを移動する（コピー後にコピー元を削除）"""
        await self.copy(source, destination)
        await self.delete(source)

    @abstractmethod
    async def set_metadata(self, path: str, metadata: StorageMetadata) -> None:
        """メタデータを設定する"""

    @abstractmethod
    async def set_visibility(self, path: str, visibility: Visibility) -> None:
        """公開設定を変更する"""

    # --- 読み取り系メソッド ---

    @abstractmethod
    async def download(self, path: str, options: Optional[DownloadOptions] = None) -> bytes:
        """
        ファイルを読み込む

        Raises:
            StorageNotFoundError: ファイルが存在しない場合
            DownloadFailedError: 読み込みに失敗した場合
        """

    @abstractmethod
    async def download_stream(self, path: str, options: Optional[DownloadOptions] = None) -> ByteStream:
        """
        ファイルをストリーミング読み込みする

        呼び出し側は読み切るか aclose() でストリームを閉じること。
        """

    @abstractmethod
    async def exists(self, path: str) -> bool:
        """ファイルが存在するか確認する（存在しない場合も例外は送出しない）"""

    @abstractmethod
    async def get_metadata(self, path: str) -> StorageMetadata:
        """メタデータを取得する"""

    @abstractmethod
    async def list(self, prefix: str = '', options: Optional[ListOptions] = None) -> List[StorageObject]:
        """
        プレフィックスに一致するオブジェクト一覧を取得する

        Args:
            prefix: パスプレフィックス（空文字列はすべて）
            options: 一覧取得オプション（recursive は既定で False）
        """

    @abstractmethod
    async def get_visibility(self, path: str) -> Visibility:
        """公開設定を取得する"""

    # --- URL ---

    @abstractmethod
    def get_url(self, path: str) -> str:
        """公開URLを返す（I/Oなし）"""

    async def get_presigned_url(self, path: str, options: Optional[PresignedUrlOptions] = None) -> str:
        """
        事前署名URLを生成する

        未対応のドライバは通常のURLを返す。
        """
        return self.get_url(path)

    def __repr__(self) -> str:
        return f"<{type(self).__name__} connected={self._connected}>"


def _raise_first_failure(results: List[Any]) -> List[Any]:
    for result in results:
        if isinstance(result, BaseException):
            raise result
    return list(results)


def filename_from_path(path: str) -> str:
    """パスからファイル名を取得"""
    return path.rstrip('/').rsplit('/', 1)[-1]
