"""ローカルファイルシステムストレージドライバ

ローカルファイルシステムを使用したストレージ。
公開設定はファイルのパーミッション（other の読み取りビット）で表現する。
"""

import logging
import os
import shutil
import stat as stat_module
import warnings
from datetime import datetime
from pathlib import Path
from typing import List, Optional

from ..config import LocalConfig
from ..exceptions import (
    DeleteFailedError,
    DownloadFailedError,
    MetadataNotSupportedWarning,
    StorageAccessError,
    StorageConnectionError,
    StorageNotFoundError,
    UploadFailedError,
    InvalidPathError,
)
from ..models import (
    DownloadOptions,
    DriverType,
    ListOptions,
    StorageMetadata,
    StorageObject,
    UploadContent,
    UploadOptions,
    Visibility,
)
from ..registry import DriverRegistry
from ..streams import ByteStream, content_size, is_bytes_like, iter_upload_chunks
from ..utils.mime import guess_local_content_type
from ..utils.paths import validate_path
from .base import StorageDriver, filename_from_path

logger = logging.getLogger(__name__)

PUBLIC_FILE_MODE = 0o644
PRIVATE_FILE_MODE = 0o600


@DriverRegistry.register(DriverType.LOCAL)
class LocalStorageDriver(StorageDriver):
    """ローカルファイルシステムストレージドライバ"""

    supports_metadata = False
    supports_presigned_urls = False

    def __init__(self, config: LocalConfig = None, max_retries: int = 3, retry_delay: float = 1.0):
        """
        ローカルドライバを初期化（ディレクトリ作成は connect で行う）

        Args:
            config: ローカル設定。Noneの場合は環境変数から読み込み
        """
        if config is None:
            config = LocalConfig.from_env()
        super().__init__(config, max_retries=max_retries, retry_delay=retry_delay)
        self.root = Path(config.root)
        logger.info(f"LocalStorageDriver initialized: root={self.root}")

    # --- 接続管理 ---

    async def connect(self) -> None:
        try:
            if self.config.ensure_directory_exists:
                await self._run(self._make_dirs, self.root)
            elif not self.root.is_dir():
                raise FileNotFoundError(f"Storage root does not exist: {self.root}")
        except OSError as e:
            logger.error(f"Local connect failed: {self.root} - {e}")
            raise StorageConnectionError('local filesystem', e) from e
        self._connected = True
        logger.info(f"Local storage connected: {self.root}")

    async def disconnect(self) -> None:
        self._connected = False

    # --- パス解決 ---

    def _make_dirs(self, directory: Path):
        directory.mkdir(parents=True, exist_ok=True, mode=self.config.directory_mode)

    def _get_full_path(self, path: str, allow_empty: bool = False) -> Path:
        """相対パスを検証してフルパスに変換"""
        relative = validate_path(path, allow_empty=allow_empty)
        full_path = self.root / relative if relative else self.root
        root = self.root.resolve()
        # シンボリックリンク経由でルート外に出ることも拒否する
        if not full_path.resolve().is_relative_to(root):
            raise InvalidPathError(path)
        return full_path

    def _to_storage_object(self, path: str, full_path: Path,
                           content_type: Optional[str] = None) -> StorageObject:
        stat = full_path.stat()
        return StorageObject(
            path=path,
            name=filename_from_path(path),
            size=stat.st_size,
            content_type=content_type or guess_local_content_type(path),
            url=self.get_url(path),
            last_modified=datetime.fromtimestamp(stat.st_mtime),
            etag=_make_etag(stat)
        )

    # --- 書き込み系メソッド ---

    async def upload(self, path: str, content: UploadContent,
                     options: Optional[UploadOptions] = None) -> StorageObject:
        options = options or UploadOptions()
        full_path = self._get_full_path(path)
        size = content_size(content)
        relative = validate_path(path)

        try:
            if not options.overwrite and full_path.exists():
                raise FileExistsError(f"File already exists: {relative}")
            await self._run(self._make_dirs, full_path.parent)

            if is_bytes_like(content):
                await self._run(self._write_bytes, full_path, bytes(content))
            else:
                await self._write_stream(full_path, content)

            mode = self.config.file_mode
            if options.visibility is not None:
                mode = _mode_for(Visibility.from_string(options.visibility))
            await self._run(os.chmod, full_path, mode)

            result = await self._run(
                self._to_storage_object, relative, full_path, options.content_type
            )
        except Exception as e:
            logger.error(f"Local upload failed: {path} - {e}")
            raise UploadFailedError(path, e, size) from e

        if options.metadata is not None:
            warnings.warn(
                f"Local filesystem cannot persist metadata; ignored for {relative}",
                MetadataNotSupportedWarning,
                stacklevel=2
            )
        logger.debug(f"Local upload success: {path} ({result.size} bytes)")
        return result

    def _write_bytes(self, full_path: Path, data: bytes):
        with open(full_path, 'wb') as f:
            f.write(data)

    async def _write_stream(self, full_path: Path, content) -> None:
        """ストリームをチャンク単位で書き込む（失敗時は書きかけのファイルを削除）"""
        f = await self._run(open, full_path, 'wb')
        try:
            async for chunk in iter_upload_chunks(content):
                await self._run(f.write, chunk)
        except BaseException:
            await self._run(f.close)
            await self._run(_unlink_quietly, full_path)
            raise
        await self._run(f.close)

    async def delete(self, path: str) -> None:
        full_path = self._get_full_path(path)
        if not await self.exists(path):
            raise StorageNotFoundError(path)
        try:
            await self._run(full_path.unlink)
        except FileNotFoundError:
            raise StorageNotFoundError(path)
        except OSError as e:
            logger.error(f"Local delete failed: {path} - {e}")
            raise DeleteFailedError(path, e) from e
        logger.debug(f"Local delete success: {path}")

    async def copy(self, source: str, destination: str) -> None:
        source_path = self._get_full_path(source)
        destination_path = self._get_full_path(destination)
        if not await self.exists(source):
            raise StorageNotFoundError(source)
        try:
            await self._run(self._make_dirs, destination_path.parent)
            await self._run(shutil.copy2, source_path, destination_path)
        except OSError as e:
            logger.error(f"Local copy failed: {source} -> {destination} - {e}")
            raise StorageAccessError(
                f"Failed to copy file from {source} to {destination}: {e}", path=source, cause=e
            ) from e

    async def move(self, source: str, destination: str) -> None:
        """同一ファイルシステム内ではアトミックなリネームで移動する"""
        source_path = self._get_full_path(source)
        destination_path = self._get_full_path(destination)
        if not await self.exists(source):
            raise StorageNotFoundError(source)
        try:
            await self._run(self._make_dirs, destination_path.parent)
            await self._run(os.replace, source_path, destination_path)
        except OSError as e:
            logger.error(f"Local move failed: {source} -> {destination} - {e}")
            raise StorageAccessError(
                f"Failed to move file from {source} to {destination}: {e}", path=source, cause=e
            ) from e

    async def set_metadata(self, path: str, metadata: StorageMetadata) -> None:
        if not await self.exists(path):
            raise StorageNotFoundError(path)
        warnings.warn(
            f"Local filesystem cannot persist metadata; ignored for {path}",
            MetadataNotSupportedWarning,
            stacklevel=2
        )

    async def set_visibility(self, path: str, visibility: Visibility) -> None:
        full_path = self._get_full_path(path)
        if not await self.exists(path):
            raise StorageNotFoundError(path)
        try:
            await self._run(os.chmod, full_path, _mode_for(Visibility.from_string(visibility)))
        except OSError as e:
            raise StorageAccessError(f"Failed to set visibility: {path} - {e}", path=path, cause=e) from e

    # --- 読み取り系メソッド ---

    async def download(self, path: str, options: Optional[DownloadOptions] = None) -> bytes:
        options = options or DownloadOptions()
        full_path = self._get_full_path(path)
        if not await self.exists(path):
            raise StorageNotFoundError(path)
        try:
            return await self._run(self._read_range, full_path, options)
        except FileNotFoundError:
            raise StorageNotFoundError(path)
        except OSError as e:
            logger.error(f"Local download failed: {path} - {e}")
            raise DownloadFailedError(path, e) from e

    def _read_range(self, full_path: Path, options: DownloadOptions) -> bytes:
        with open(full_path, 'rb') as f:
            if options.range is None:
                return f.read()
            f.seek(options.range.start)
            length = options.range.length
            return f.read() if length is None else f.read(length)

    async def download_stream(self, path: str, options: Optional[DownloadOptions] = None) -> ByteStream:
        options = options or DownloadOptions()
        full_path = self._get_full_path(path)
        if not await self.exists(path):
            raise StorageNotFoundError(path)
        try:
            f = await self._run(open, full_path, 'rb')
        except FileNotFoundError:
            raise StorageNotFoundError(path)
        except OSError as e:
            logger.error(f"Local stream open failed: {path} - {e}")
            raise DownloadFailedError(path, e) from e

        limit = None
        if options.range is not None:
            try:
                await self._run(f.seek, options.range.start)
            except OSError as e:
                await self._run(f.close)
                raise DownloadFailedError(path, e) from e
            limit = options.range.length
        return ByteStream(f, path, chunk_size=options.chunk_size, limit=limit)

    async def exists(self, path: str) -> bool:
        full_path = self._get_full_path(path)
        return await self._run(full_path.is_file)

    async def get_metadata(self, path: str) -> StorageMetadata:
        full_path = self._get_full_path(path)
        if not await self.exists(path):
            raise StorageNotFoundError(path)
        try:
            stat = await self._run(full_path.stat)
        except FileNotFoundError:
            raise StorageNotFoundError(path)
        except OSError as e:
            raise StorageAccessError(f"Failed to read metadata: {path} - {e}", path=path, cause=e) from e
        return StorageMetadata(
            path=validate_path(path),
            size=stat.st_size,
            content_type=guess_local_content_type(path),
            last_modified=datetime.fromtimestamp(stat.st_mtime),
            etag=_make_etag(stat)
        )

    async def get_visibility(self, path: str) -> Visibility:
        full_path = self._get_full_path(path)
        if not await self.exists(path):
            raise StorageNotFoundError(path)
        stat = await self._run(full_path.stat)
        if stat.st_mode & stat_module.S_IROTH:
            return Visibility.PUBLIC
        return Visibility.PRIVATE

    async def list(self, prefix: str = '', options: Optional[ListOptions] = None) -> List[StorageObject]:
        options = options or ListOptions()
        normalized_prefix = validate_path(prefix or '', allow_empty=True)
        # 末尾の '/' はディレクトリ指定として扱う
        if prefix and prefix.replace('\\', '/').endswith('/') and normalized_prefix:
            normalized_prefix += '/'

        if '/' in normalized_prefix:
            base_relative = normalized_prefix.rsplit('/', 1)[0]
        else:
            base_relative = ''
        base_dir = self._get_full_path(base_relative, allow_empty=True)

        start_after = options.start_after or options.continuation_token
        return await self._run(
            self._list_sync, base_dir, base_relative, normalized_prefix,
            options.recursive, options.max_results, start_after
        )

    def _list_sync(self, base_dir: Path, base_relative: str, prefix: str, recursive: bool,
                   max_results: Optional[int], start_after: Optional[str]) -> List[StorageObject]:
        objects: List[StorageObject] = []
        if not base_dir.is_dir():
            return objects
        self._walk(base_dir, base_relative, prefix, recursive, max_results, start_after, objects)
        return objects

    def _walk(self, directory: Path, relative_dir: str, prefix: str, recursive: bool,
              max_results: Optional[int], start_after: Optional[str], objects: List[StorageObject]) -> bool:
        """ディレクトリを走査する。max_results に達したら False を返す"""
        try:
            entries = sorted(os.scandir(directory), key=_entry_sort_key)
        except OSError as e:
            # 読めないサブツリーはスキップして一覧全体は継続する
            logger.warning(f"Local list skipped unreadable directory: {directory} - {e}")
            return True

        for entry in entries:
            relative = f"{relative_dir}/{entry.name}" if relative_dir else entry.name
            try:
                if entry.is_dir(follow_symlinks=False):
                    if recursive and (relative + '/').startswith(prefix):
                        if not self._walk(Path(entry.path), relative, prefix, recursive,
                                          max_results, start_after, objects):
                            return False
                    continue
                if not entry.is_file() or not relative.startswith(prefix):
                    continue
                if start_after is not None and relative <= start_after:
                    continue
                objects.append(self._to_storage_object(relative, Path(entry.path)))
            except OSError as e:
                logger.warning(f"Local list skipped entry: {relative} - {e}")
                continue
            if max_results is not None and len(objects) >= max_results:
                return False
        return True

    # --- URL ---

    def get_url(self, path: str) -> str:
        normalized = validate_path(path)
        if self.config.base_url:
            return f"{self.config.base_url.rstrip('/')}/{normalized}"
        # ベースURLが未設定の場合はパスをそのまま返す
        return normalized


def _mode_for(visibility: Visibility) -> int:
    return PUBLIC_FILE_MODE if visibility == Visibility.PUBLIC else PRIVATE_FILE_MODE


def _make_etag(stat: os.stat_result) -> str:
    """更新時刻とサイズから合成したETag（内容ハッシュではない）"""
    return f"{int(stat.st_mtime * 1000)}-{stat.st_size}"


def _unlink_quietly(path: Path):
    try:
        path.unlink()
    except FileNotFoundError:
        pass


def _entry_sort_key(entry: os.DirEntry) -> str:
    """ディレクトリは 'name/' として並べ、走査順を相対パスの辞書順に揃える"""
    try:
        is_dir = entry.is_dir(follow_symlinks=False)
    except OSError:
        is_dir = False
    return entry.name + '/' if is_dir else entry.name
