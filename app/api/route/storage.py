"""ストレージAPI

アクティブなストレージドライバに対する読み取りエンドポイント:
- GET /api/storage/info: ストレージ情報取得
- GET /api/storage/list: ファイル一覧取得
- GET /api/storage/metadata: メタデータ取得
- GET /api/storage/url: ダウンロードURL生成
"""

from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional
from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel
from objectstore import (
    InvalidPathError,
    ListOptions,
    PresignedUrlOptions,
    StorageError,
    StorageNotFoundError,
    StorageObject,
    StorageService,
    get_storage,
)
from objectstore.utils.paths import get_extension
import logging

logger = logging.getLogger(__name__)

router = APIRouter()


# ==================== Response Models ====================

class StorageInfoResponse(BaseModel):
    """ストレージ情報レスポンス"""
    driver: str  # 'local', 's3' or 'minio'
    connected: bool
    default_visibility: str
    presigned_url_expiration: int
    bucket_name: Optional[str] = None  # バケット名（s3/minioのみ）
    local_path: Optional[str] = None  # ローカルパス（localのみ）


class FileItem(BaseModel):
    """ファイル情報"""
    name: str
    path: str
    size: int
    content_type: str
    last_modified: Optional[str] = None
    extension: Optional[str] = None
    url: Optional[str] = None
    etag: Optional[str] = None


class ListResponse(BaseModel):
    """ファイル一覧レスポンス"""
    prefix: str
    recursive: bool
    files: List[FileItem]
    total: int


class MetadataResponse(BaseModel):
    """メタデータレスポンス"""
    path: str
    size: Optional[int] = None
    content_type: Optional[str] = None
    content_encoding: Optional[str] = None
    content_language: Optional[str] = None
    cache_control: Optional[str] = None
    content_disposition: Optional[str] = None
    last_modified: Optional[str] = None
    etag: Optional[str] = None
    custom_metadata: Optional[Dict[str, str]] = None
    visibility: str


class UrlResponse(BaseModel):
    """ダウンロードURLレスポンス"""
    url: str
    expires_at: str


# ==================== Utility Functions ====================

def sort_files(files: List[StorageObject], sort_by: str, order: str) -> List[StorageObject]:
    """
    ファイルリストをソートする

    Args:
        files: ファイルリスト
        sort_by: ソート対象 ('name', 'size', 'last_modified')
        order: ソート順 ('asc', 'desc')
    """
    reverse = order == 'desc'
    if sort_by == 'size':
        return sorted(files, key=lambda f: f.size, reverse=reverse)
    if sort_by == 'last_modified':
        return sorted(files, key=lambda f: f.last_modified.timestamp() if f.last_modified else 0, reverse=reverse)
    return sorted(files, key=lambda f: f.name.lower(), reverse=reverse)


def to_file_item(obj: StorageObject) -> FileItem:
    return FileItem(
        name=obj.name,
        path=obj.path,
        size=obj.size,
        content_type=obj.content_type,
        last_modified=obj.last_modified.isoformat() if obj.last_modified else None,
        extension=get_extension(obj.path).lower(),
        url=obj.url,
        etag=obj.etag
    )


def to_http_exception(error: StorageError) -> HTTPException:
    """ストレージ例外をHTTPステータスに変換"""
    if isinstance(error, StorageNotFoundError):
        return HTTPException(status_code=404, detail="File not found")
    if isinstance(error, InvalidPathError):
        return HTTPException(status_code=400, detail=error.message)
    logger.error(f"Storage error: {error.kind} - {error}")
    return HTTPException(status_code=500, detail=f"Storage operation failed: {error.kind}")


# ==================== Endpoints ====================

@router.get("/storage/info", tags=["storage"], response_model=StorageInfoResponse)
async def get_storage_info(storage: StorageService = Depends(get_storage)):
    """
    ストレージ情報を取得する

    Returns:
        StorageInfoResponse: ドライバ名、接続状態、バケット名またはローカルパス
    """
    config = storage.config
    driver_config = config.get_driver_config()
    return StorageInfoResponse(
        driver=storage.driver.name,
        connected=storage.is_connected(),
        default_visibility=config.default_visibility.value,
        presigned_url_expiration=config.presigned_url_expiration,
        bucket_name=getattr(driver_config, 'bucket', None),
        local_path=getattr(driver_config, 'root', None)
    )


@router.get("/storage/list", tags=["storage"], response_model=ListResponse)
async def list_files(
    prefix: str = Query("", description="パスプレフィックス（例: runs/1/）"),
    recursive: bool = Query(False, description="サブディレクトリも含めるか"),
    max_results: Optional[int] = Query(None, ge=1, le=1000, description="最大件数"),
    sort_by: str = Query("name", description="ソート対象: name, size, last_modified"),
    order: str = Query("asc", description="ソート順: asc, desc"),
    storage: StorageService = Depends(get_storage)
):
    """
    プレフィックスに一致するファイル一覧を取得する

    Returns:
        ListResponse: ファイル一覧と件数
    """
    # パラメータバリデーション
    if sort_by not in ['name', 'size', 'last_modified']:
        raise HTTPException(status_code=400, detail="sort_by must be 'name', 'size', or 'last_modified'")
    if order not in ['asc', 'desc']:
        raise HTTPException(status_code=400, detail="order must be 'asc' or 'desc'")

    try:
        objects = await storage.list(prefix, ListOptions(recursive=recursive, max_results=max_results))
    except StorageError as e:
        raise to_http_exception(e)

    files = [to_file_item(obj) for obj in sort_files(objects, sort_by, order)]
    return ListResponse(prefix=prefix, recursive=recursive, files=files, total=len(files))


@router.get("/storage/metadata", tags=["storage"], response_model=MetadataResponse)
async def get_file_metadata(
    path: str = Query(..., description="ファイルパス（例: runs/1/output.json）"),
    storage: StorageService = Depends(get_storage)
):
    """
    ファイルのメタデータと公開設定を取得する

    Returns:
        MetadataResponse: メタデータ
    """
    try:
        metadata = await storage.get_metadata(path)
        visibility = await storage.get_visibility(path)
    except StorageError as e:
        raise to_http_exception(e)

    return MetadataResponse(
        path=metadata.path or path,
        size=metadata.size,
        content_type=metadata.content_type,
        content_encoding=metadata.content_encoding,
        content_language=metadata.content_language,
        cache_control=metadata.cache_control,
        content_disposition=metadata.content_disposition,
        last_modified=metadata.last_modified.isoformat() if metadata.last_modified else None,
        etag=metadata.etag,
        custom_metadata=metadata.custom_metadata,
        visibility=visibility.value
    )


@router.get("/storage/url", tags=["storage"], response_model=UrlResponse)
async def get_download_url(
    path: str = Query(..., description="ファイルパス（例: runs/1/output.json）"),
    expires_in: Optional[int] = Query(None, ge=1, le=604800, description="有効期限（秒）"),
    storage: StorageService = Depends(get_storage)
):
    """
    ダウンロードURLを生成する

    事前署名URLに対応しないドライバでは通常のURLを返す。

    Returns:
        UrlResponse: URLと有効期限
    """
    try:
        if not await storage.exists(path):
            raise HTTPException(status_code=404, detail="File not found")
        options = PresignedUrlOptions(expires_in=expires_in)
        url = await storage.get_presigned_url(path, options)
    except StorageError as e:
        raise to_http_exception(e)

    seconds = expires_in or storage.config.presigned_url_expiration
    expires_at = datetime.now(timezone.utc) + timedelta(seconds=seconds)
    return UrlResponse(url=url, expires_at=expires_at.isoformat())
