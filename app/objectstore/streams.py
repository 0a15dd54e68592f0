"""ストリームユーティリティ

- ByteStream: ブロッキングなファイルライクオブジェクトを非同期チャンク読み込みに変換
- アップロードコンテンツ（bytes / ストリーム / 非同期イテラブル）の共通処理
"""

import asyncio
import io
import logging
import tempfile
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Optional, Tuple

from .exceptions import DownloadFailedError

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 65536
# これを超える非シーク可能ストリームはディスクへ退避する
SPOOL_MAX_MEMORY = 8 * 1024 * 1024


class ByteStream:
    """
    ダウンロードストリーム

    ``async for chunk in stream`` または ``await stream.read()`` で読み込む。
    読み切り・エラー・aclose() のいずれでも元のハンドルを必ず閉じる。

    使用例:
        async with await storage.download_stream("runs/1/log.txt") as stream:
            async for chunk in stream:
                ...
    """

    def __init__(self, source: Any, path: str, chunk_size: int = DEFAULT_CHUNK_SIZE,
                 limit: Optional[int] = None):
        self._source = source
        self.path = path
        self.chunk_size = chunk_size
        self._remaining = limit
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def read(self, size: int = -1) -> bytes:
        """最大 size バイトを読み込む（-1 は残り全部）"""
        if size is None or size < 0:
            chunks = []
            async for chunk in self:
                chunks.append(chunk)
            return b''.join(chunks)
        if self._closed:
            return b''
        return await self._read_chunk(size)

    async def _read_chunk(self, size: int) -> bytes:
        if self._remaining is not None:
            size = min(size, self._remaining)
            if size <= 0:
                await self.aclose()
                return b''
        try:
            chunk = await asyncio.to_thread(self._source.read, size)
        except Exception as e:
            await self.aclose()
            logger.error(f"Stream read failed: {self.path} - {e}")
            raise DownloadFailedError(self.path, e) from e
        if not chunk:
            await self.aclose()
            return b''
        if self._remaining is not None:
            self._remaining -= len(chunk)
        return chunk

    def __aiter__(self) -> 'ByteStream':
        return self

    async def __anext__(self) -> bytes:
        if self._closed:
            raise StopAsyncIteration
        chunk = await self._read_chunk(self.chunk_size)
        if not chunk:
            raise StopAsyncIteration
        return chunk

    async def aclose(self):
        """元のハンドルを閉じる（複数回呼んでも安全）"""
        if self._closed:
            return
        self._closed = True
        await asyncio.to_thread(_close_source, self._source)

    async def __aenter__(self) -> 'ByteStream':
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.aclose()


def _close_source(source: Any):
    close = getattr(source, 'close', None)
    if close is not None:
        close()
    # urllib3 のレスポンス（minio）はコネクションをプールへ返却する
    release = getattr(source, 'release_conn', None)
    if release is not None:
        release()


def is_bytes_like(content: Any) -> bool:
    return isinstance(content, (bytes, bytearray, memoryview))


def content_size(content: Any) -> Optional[int]:
    """コンテンツのサイズを取得（不明な場合はNone）"""
    if is_bytes_like(content):
        return len(content)
    seekable = getattr(content, 'seekable', None)
    if seekable is not None:
        try:
            if seekable():
                current = content.tell()
                content.seek(0, io.SEEK_END)
                end = content.tell()
                content.seek(current)
                return end - current
        except (OSError, ValueError):
            return None
    return None


async def iter_upload_chunks(content: Any, chunk_size: int = DEFAULT_CHUNK_SIZE) -> AsyncIterator[bytes]:
    """アップロードコンテンツをチャンク単位で非同期に列挙する"""
    if is_bytes_like(content):
        data = bytes(content)
        for offset in range(0, len(data), chunk_size):
            yield data[offset:offset + chunk_size]
        return

    if hasattr(content, '__aiter__'):
        async for chunk in content:
            yield bytes(chunk)
        return

    if hasattr(content, 'read'):
        while True:
            chunk = await asyncio.to_thread(content.read, chunk_size)
            if not chunk:
                break
            yield bytes(chunk)
        return

    if hasattr(content, '__iter__'):
        for chunk in content:
            yield bytes(chunk)
        return

    raise TypeError(f"Unsupported upload content type: {type(content).__name__}")


@asynccontextmanager
async def spool_content(content: Any) -> AsyncIterator[Tuple[Any, int]]:
    """
    SDKに渡せるファイルライクオブジェクトとサイズを取得する

    bytes とシーク可能なストリームはそのまま使い、
    それ以外は SpooledTemporaryFile に退避してサイズを確定させる。
    """
    if is_bytes_like(content):
        yield io.BytesIO(bytes(content)), len(content)
        return

    size = content_size(content)
    if size is not None and hasattr(content, 'read'):
        yield content, size
        return

    spooled = tempfile.SpooledTemporaryFile(max_size=SPOOL_MAX_MEMORY)
    try:
        total = 0
        async for chunk in iter_upload_chunks(content):
            await asyncio.to_thread(spooled.write, chunk)
            total += len(chunk)
        spooled.seek(0)
        yield spooled, total
    finally:
        spooled.close()
