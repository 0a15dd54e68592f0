"""ストレージデータモデル定義

ドライバ間で共有するEnum、データクラスを定義。
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, BinaryIO, Dict, Optional, Union


class Visibility(str, Enum):
    """公開設定（バックエンド非依存）"""
    PUBLIC = "public"
    PRIVATE = "private"

    @classmethod
    def from_string(cls, value: Union[str, 'Visibility']) -> 'Visibility':
        """文字列からVisibilityを取得"""
        if isinstance(value, cls):
            return value
        return cls(str(value).strip().lower())


class StorageACL(str, Enum):
    """S3互換の canned ACL"""
    PRIVATE = "private"
    PUBLIC_READ = "public-read"
    PUBLIC_READ_WRITE = "public-read-write"
    AUTHENTICATED_READ = "authenticated-read"
    BUCKET_OWNER_READ = "bucket-owner-read"
    BUCKET_OWNER_FULL_CONTROL = "bucket-owner-full-control"


class DriverType(str, Enum):
    """ドライバ種別"""
    LOCAL = "local"
    S3 = "s3"
    MINIO = "minio"


class PresignedUrlAction(str, Enum):
    """事前署名URLで許可する操作"""
    GET = "get"
    PUT = "put"


@dataclass(frozen=True)
class StorageObject:
    """アップロード・一覧取得の結果レコード"""
    path: str                          # バックエンド相対パス（'/'区切り）
    name: str                          # パスのベース名
    size: int                          # バイトサイズ
    content_type: str                  # MIMEタイプ
    last_modified: datetime            # 最終更新日時
    url: Optional[str] = None          # 公開URL
    etag: Optional[str] = None         # キャッシュ検証用トークン
    metadata: Optional[Dict[str, str]] = None

    def to_dict(self) -> Dict[str, Any]:
        """辞書形式に変換（APIレスポンス用）"""
        return {
            "path": self.path,
            "name": self.name,
            "size": self.size,
            "content_type": self.content_type,
            "last_modified": self.last_modified.isoformat() if self.last_modified else None,
            "url": self.url,
            "etag": self.etag,
            "metadata": dict(self.metadata) if self.metadata else None,
        }


@dataclass
class StorageMetadata:
    """メタデータの取得・設定用ペイロード

    set_metadata では部分指定として使うため、全フィールドを省略可能にしている。
    """
    path: Optional[str] = None
    size: Optional[int] = None
    content_type: Optional[str] = None
    content_encoding: Optional[str] = None
    content_language: Optional[str] = None
    cache_control: Optional[str] = None
    content_disposition: Optional[str] = None
    last_modified: Optional[datetime] = None
    etag: Optional[str] = None
    custom_metadata: Optional[Dict[str, str]] = None

    def to_dict(self) -> Dict[str, Any]:
        """辞書形式に変換（None は除外）"""
        result: Dict[str, Any] = {}
        for key, value in self.__dict__.items():
            if value is None:
                continue
            result[key] = value.isoformat() if isinstance(value, datetime) else value
        return result


@dataclass
class UploadOptions:
    """アップロードオプション"""
    visibility: Optional[Visibility] = None
    acl: Optional[StorageACL] = None
    content_type: Optional[str] = None
    metadata: Optional[StorageMetadata] = None
    overwrite: bool = True
    driver_options: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ByteRange:
    """バイト範囲（start, end とも含む。end=None は末尾まで）"""
    start: int = 0
    end: Optional[int] = None

    def __post_init__(self):
        if self.start < 0:
            raise ValueError(f"Range start must be >= 0: {self.start}")
        if self.end is not None and self.end < self.start:
            raise ValueError(f"Range end must be >= start: {self.start}-{self.end}")

    @property
    def length(self) -> Optional[int]:
        if self.end is None:
            return None
        return self.end - self.start + 1

    def to_header(self) -> str:
        """HTTP Range ヘッダ値"""
        end = "" if self.end is None else str(self.end)
        return f"bytes={self.start}-{end}"


@dataclass
class DownloadOptions:
    """ダウンロードオプション"""
    range: Optional[ByteRange] = None
    chunk_size: int = 65536
    driver_options: Dict[str, Any] = field(default_factory=dict)


@dataclass
class ListOptions:
    """一覧取得オプション"""
    recursive: bool = False
    max_results: Optional[int] = None
    continuation_token: Optional[str] = None
    start_after: Optional[str] = None
    driver_options: Dict[str, Any] = field(default_factory=dict)


@dataclass
class PresignedUrlOptions:
    """事前署名URLオプション"""
    expires_in: Optional[int] = None
    action: PresignedUrlAction = PresignedUrlAction.GET
    response_headers: Dict[str, str] = field(default_factory=dict)


# アップロード可能なコンテンツ: バイト列、read() を持つバイナリストリーム、または bytes の非同期イテラブル
UploadContent = Union[bytes, bytearray, memoryview, BinaryIO, Any]


@dataclass
class UploadItem:
    """一括アップロードの1要素"""
    path: str
    content: UploadContent


@dataclass
class UploadedFile:
    """Webレイヤーから受け取るアップロードファイル

    buffer または stream のどちらか一方を持つ。ストレージ層は中身のみを使う。
    """
    field_name: str
    original_name: str
    mime_type: str
    size: int
    buffer: Optional[bytes] = None
    stream: Optional[BinaryIO] = None

    @property
    def content(self) -> UploadContent:
        if self.buffer is not None:
            return self.buffer
        if self.stream is not None:
            return self.stream
        raise ValueError(f"Uploaded file has neither buffer nor stream: {self.original_name}")
