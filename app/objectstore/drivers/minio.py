"""MinIOストレージドライバ

MinIO クライアント（minio パッケージ）を使用したストレージ。
MinIO はオブジェクトACLを持たないため、公開設定はバケットポリシーで表現する。
"""

import asyncio
import json
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

import urllib3
from minio import Minio
from minio.commonconfig import REPLACE, CopySource
from minio.error import MinioException, S3Error
from urllib3.exceptions import HTTPError

from ..config import MinIOConfig
from ..exceptions import (
    DeleteFailedError,
    DownloadFailedError,
    StorageAccessError,
    StorageConnectionError,
    StorageNotFoundError,
    UploadFailedError,
)
from ..models import (
    DownloadOptions,
    DriverType,
    ListOptions,
    PresignedUrlAction,
    PresignedUrlOptions,
    StorageMetadata,
    StorageObject,
    UploadContent,
    UploadOptions,
    Visibility,
)
from ..registry import DriverRegistry
from ..streams import ByteStream, content_size, spool_content
from ..utils.mime import DEFAULT_CONTENT_TYPE
from ..utils.paths import normalize_path
from .base import StorageDriver, filename_from_path

logger = logging.getLogger(__name__)

NOT_FOUND_CODES = ('NoSuchKey', 'NoSuchObject', 'NotFound', 'ResourceNotFound')
# サイズ不明のストリームをマルチパートで送る際のパートサイズ
STREAM_PART_SIZE = 10 * 1024 * 1024
PUBLIC_READ_SID = 'PublicReadObjects'
# SDKのエラーと通信エラー（リトライ上限到達を含む）
MINIO_ERRORS = (MinioException, HTTPError)


def _is_not_found(error: Exception) -> bool:
    return isinstance(error, S3Error) and error.code in NOT_FOUND_CODES


def _metadata_headers(metadata: Optional[StorageMetadata]) -> Dict[str, str]:
    """StorageMetadata を MinIO に渡すヘッダー辞書へ変換"""
    if metadata is None:
        return {}
    headers = {
        'Cache-Control': metadata.cache_control,
        'Content-Encoding': metadata.content_encoding,
        'Content-Language': metadata.content_language,
        'Content-Disposition': metadata.content_disposition,
    }
    result = {key: value for key, value in headers.items() if value is not None}
    # カスタムメタデータは x-amz-meta- 付きで保存される
    result.update(metadata.custom_metadata or {})
    return result


@DriverRegistry.register(DriverType.MINIO)
class MinIOStorageDriver(StorageDriver):
    """MinIOストレージドライバ"""

    def __init__(self, config: MinIOConfig = None, max_retries: int = 3, retry_delay: float = 1.0):
        """
        MinIOドライバを初期化（クライアント生成は connect で行う）

        Args:
            config: MinIO設定。Noneの場合は環境変数から読み込み
        """
        if config is None:
            config = MinIOConfig.from_env()
        super().__init__(config, max_retries=max_retries, retry_delay=retry_delay)
        self.client: Optional[Minio] = None
        self.bucket = config.bucket
        self._policy_lock: Optional[asyncio.Lock] = None
        logger.info(f"MinIOStorageDriver initialized: endpoint={config.endpoint}:{config.port}, bucket={self.bucket}")

    # --- 接続管理 ---

    def _create_client(self) -> Minio:
        http_client = urllib3.PoolManager(
            retries=urllib3.Retry(
                total=self.max_retries,
                backoff_factor=self.retry_delay,
                status_forcelist=[500, 502, 503, 504]
            )
        )
        return Minio(
            f"{self.config.endpoint}:{self.config.port}",
            access_key=self.config.access_key,
            secret_key=self.config.secret_key,
            session_token=self.config.session_token,
            secure=self.config.use_ssl,
            region=self.config.region,
            http_client=http_client
        )

    def _ensure_bucket(self, client: Minio):
        if client.bucket_exists(bucket_name=self.bucket):
            return
        if not self.config.create_bucket:
            raise ValueError(f"Bucket does not exist: {self.bucket}")
        client.make_bucket(bucket_name=self.bucket)
        logger.info(f"MinIO bucket created: {self.bucket}")

    async def connect(self) -> None:
        if not self.bucket:
            raise StorageConnectionError('MinIO', ValueError('bucket is not configured'))
        try:
            client = await self._run(self._create_client)
            await self._run(self._ensure_bucket, client)
        except Exception as e:
            logger.error(f"MinIO connect failed: bucket={self.bucket} - {e}")
            raise StorageConnectionError('MinIO', e) from e
        self.client = client
        self._connected = True
        logger.info(f"MinIO storage connected: bucket={self.bucket}")

    async def disconnect(self) -> None:
        self.client = None
        self._connected = False

    async def _stat(self, key: str):
        try:
            return await self._run(self.client.stat_object, bucket_name=self.bucket, object_name=key)
        except MINIO_ERRORS as e:
            if _is_not_found(e):
                raise StorageNotFoundError(key)
            raise StorageAccessError(f"MinIO stat_object failed: {key} - {e}", path=key, cause=e) from e

    # --- 書き込み系メソッド ---

    async def _put_object(self, key: str, data: Any, length: int, content_type: str, options: UploadOptions):
        return await self._run(
            self.client.put_object,
            bucket_name=self.bucket,
            object_name=key,
            data=data,
            length=length,
            content_type=content_type,
            metadata=_metadata_headers(options.metadata) or None,
            part_size=STREAM_PART_SIZE if length < 0 else 0,
            **options.driver_options
        )

    async def upload(self, path: str, content: UploadContent,
                     options: Optional[UploadOptions] = None) -> StorageObject:
        options = options or UploadOptions()
        key = normalize_path(path)
        size = content_size(content)
        content_type = options.content_type or (
            options.metadata.content_type if options.metadata and options.metadata.content_type else None
        ) or DEFAULT_CONTENT_TYPE

        try:
            if not options.overwrite and await self.exists(key):
                raise FileExistsError(f"Object already exists: {key}")
            if size is None and hasattr(content, 'read'):
                # サイズ不明のストリームはマルチパートでそのまま送る
                result = await self._put_object(key, content, -1, content_type, options)
                size = (await self._stat(key)).size
            else:
                async with spool_content(content) as (data, length):
                    result = await self._put_object(key, data, length, content_type, options)
                    size = length
            if options.visibility is not None:
                await self.set_visibility(key, options.visibility)
        except Exception as e:
            logger.error(f"MinIO upload failed: {key} - {e}")
            raise UploadFailedError(key, e, size) from e

        logger.debug(f"MinIO upload success: {key}")
        return StorageObject(
            path=key,
            name=filename_from_path(key),
            size=size or 0,
            content_type=content_type,
            url=self.get_url(key),
            last_modified=datetime.now(timezone.utc),
            etag=getattr(result, 'etag', None),
            metadata=options.metadata.custom_metadata if options.metadata else None
        )

    async def delete(self, path: str) -> None:
        key = normalize_path(path)
        await self._stat(key)
        try:
            await self._run(self.client.remove_object, bucket_name=self.bucket, object_name=key)
        except MINIO_ERRORS as e:
            logger.error(f"MinIO delete failed: {key} - {e}")
            raise DeleteFailedError(key, e) from e
        logger.debug(f"MinIO delete success: {key}")

    async def copy(self, source: str, destination: str) -> None:
        source_key = normalize_path(source)
        destination_key = normalize_path(destination)
        try:
            await self._run(
                self.client.copy_object,
                bucket_name=self.bucket,
                object_name=destination_key,
                source=CopySource(bucket_name=self.bucket, object_name=source_key)
            )
        except MINIO_ERRORS as e:
            if _is_not_found(e):
                raise StorageNotFoundError(source_key)
            logger.error(f"MinIO copy failed: {source_key} -> {destination_key} - {e}")
            raise StorageAccessError(
                f"Failed to copy file from {source_key} to {destination_key}: {e}",
                path=source_key, cause=e
            ) from e

    async def set_metadata(self, path: str, metadata: StorageMetadata) -> None:
        key = normalize_path(path)
        stat = await self._stat(key)
        headers = _metadata_headers(metadata)
        headers['Content-Type'] = metadata.content_type or stat.content_type or DEFAULT_CONTENT_TYPE
        try:
            await self._run(
                self.client.copy_object,
                bucket_name=self.bucket,
                object_name=key,
                source=CopySource(bucket_name=self.bucket, object_name=key),
                metadata=headers,
                metadata_directive=REPLACE
            )
        except MINIO_ERRORS as e:
            if _is_not_found(e):
                raise StorageNotFoundError(key)
            raise StorageAccessError(f"Failed to set metadata: {key} - {e}", path=key, cause=e) from e

    # --- バケットポリシーによる公開設定 ---

    def _object_arn(self, key: str) -> str:
        return f"arn:aws:s3:::{self.bucket}/{key}"

    def _read_policy(self) -> Dict[str, Any]:
        try:
            return json.loads(self.client.get_bucket_policy(bucket_name=self.bucket))
        except S3Error as e:
            if e.code == 'NoSuchBucketPolicy':
                return {'Version': '2012-10-17', 'Statement': []}
            raise

    def _write_policy(self, policy: Dict[str, Any]):
        if policy['Statement']:
            self.client.set_bucket_policy(bucket_name=self.bucket, policy=json.dumps(policy))
        else:
            self.client.delete_bucket_policy(bucket_name=self.bucket)

    def _apply_visibility(self, key: str, visibility: Visibility):
        policy = self._read_policy()
        statements = policy.setdefault('Statement', [])
        statement = next((s for s in statements if s.get('Sid') == PUBLIC_READ_SID), None)
        arn = self._object_arn(key)

        if visibility == Visibility.PUBLIC:
            if statement is None:
                statement = {
                    'Sid': PUBLIC_READ_SID,
                    'Effect': 'Allow',
                    'Principal': {'AWS': ['*']},
                    'Action': ['s3:GetObject'],
                    'Resource': [],
                }
                statements.append(statement)
            resources = _as_list(statement.get('Resource'))
            if arn in resources:
                return
            statement['Resource'] = resources + [arn]
        else:
            resources = _as_list(statement.get('Resource')) if statement is not None else []
            if arn not in resources:
                return
            resources.remove(arn)
            if resources:
                statement['Resource'] = resources
            else:
                statements.remove(statement)

        self._write_policy(policy)

    def _is_public(self, key: str) -> bool:
        arn = self._object_arn(key)
        bucket_wide = f"arn:aws:s3:::{self.bucket}/*"
        for statement in self._read_policy().get('Statement', []):
            if statement.get('Effect') != 'Allow':
                continue
            actions = _as_list(statement.get('Action'))
            if 's3:GetObject' not in actions and 's3:*' not in actions:
                continue
            principal = statement.get('Principal')
            if principal != '*' and '*' not in _as_list((principal or {}).get('AWS')):
                continue
            resources = _as_list(statement.get('Resource'))
            if arn in resources or bucket_wide in resources:
                return True
        return False

    def _get_policy_lock(self) -> asyncio.Lock:
        # バケットポリシーの読み取り・書き戻しはドライバ内で直列化する
        if self._policy_lock is None:
            self._policy_lock = asyncio.Lock()
        return self._policy_lock

    async def set_visibility(self, path: str, visibility: Visibility) -> None:
        key = normalize_path(path)
        await self._stat(key)
        try:
            async with self._get_policy_lock():
                await self._run(self._apply_visibility, key, Visibility.from_string(visibility))
        except MINIO_ERRORS as e:
            raise StorageAccessError(f"Failed to set visibility: {key} - {e}", path=key, cause=e) from e

    async def get_visibility(self, path: str) -> Visibility:
        key = normalize_path(path)
        await self._stat(key)
        try:
            is_public = await self._run(self._is_public, key)
        except MINIO_ERRORS as e:
            raise StorageAccessError(f"Failed to read visibility: {key} - {e}", path=key, cause=e) from e
        return Visibility.PUBLIC if is_public else Visibility.PRIVATE

    # --- 読み取り系メソッド ---

    async def _get_object(self, key: str, options: DownloadOptions):
        kwargs: Dict[str, Any] = dict(options.driver_options)
        if options.range is not None:
            kwargs['offset'] = options.range.start
            if options.range.length is not None:
                kwargs['length'] = options.range.length
        try:
            return await self._run(self.client.get_object, bucket_name=self.bucket, object_name=key, **kwargs)
        except MINIO_ERRORS as e:
            if _is_not_found(e):
                raise StorageNotFoundError(key)
            logger.error(f"MinIO get_object failed: {key} - {e}")
            raise DownloadFailedError(key, e) from e

    async def download(self, path: str, options: Optional[DownloadOptions] = None) -> bytes:
        options = options or DownloadOptions()
        key = normalize_path(path)
        response = await self._get_object(key, options)
        async with ByteStream(response, key, chunk_size=options.chunk_size) as stream:
            return await stream.read()

    async def download_stream(self, path: str, options: Optional[DownloadOptions] = None) -> ByteStream:
        options = options or DownloadOptions()
        key = normalize_path(path)
        response = await self._get_object(key, options)
        return ByteStream(response, key, chunk_size=options.chunk_size)

    async def exists(self, path: str) -> bool:
        key = normalize_path(path)
        try:
            await self._run(self.client.stat_object, bucket_name=self.bucket, object_name=key)
            return True
        except MINIO_ERRORS as e:
            if _is_not_found(e):
                return False
            raise StorageAccessError(f"MinIO stat_object failed: {key} - {e}", path=key, cause=e) from e

    async def get_metadata(self, path: str) -> StorageMetadata:
        key = normalize_path(path)
        stat = await self._stat(key)
        headers = {k.lower(): v for k, v in (stat.metadata or {}).items()}
        custom = {
            k[len('x-amz-meta-'):]: v for k, v in headers.items() if k.startswith('x-amz-meta-')
        }
        return StorageMetadata(
            path=key,
            size=stat.size,
            content_type=stat.content_type,
            content_encoding=headers.get('content-encoding'),
            content_language=headers.get('content-language'),
            cache_control=headers.get('cache-control'),
            content_disposition=headers.get('content-disposition'),
            last_modified=stat.last_modified,
            etag=stat.etag,
            custom_metadata=custom or None
        )

    async def list(self, prefix: str = '', options: Optional[ListOptions] = None) -> List[StorageObject]:
        options = options or ListOptions()
        start_after = options.start_after or options.continuation_token
        return await self._run(self._list_sync, prefix or '', options, start_after)

    def _list_sync(self, prefix: str, options: ListOptions, start_after: Optional[str]) -> List[StorageObject]:
        objects: List[StorageObject] = []
        try:
            for obj in self.client.list_objects(
                bucket_name=self.bucket,
                prefix=prefix or None,
                recursive=options.recursive,
                start_after=start_after,
                **options.driver_options
            ):
                # 非再帰時の共通プレフィックス（ディレクトリ）は除外
                if obj.is_dir:
                    continue
                objects.append(StorageObject(
                    path=obj.object_name,
                    name=filename_from_path(obj.object_name),
                    size=obj.size or 0,
                    content_type=obj.content_type or DEFAULT_CONTENT_TYPE,
                    url=self.get_url(obj.object_name),
                    last_modified=obj.last_modified,
                    etag=obj.etag
                ))
                if options.max_results is not None and len(objects) >= options.max_results:
                    break
        except MINIO_ERRORS as e:
            logger.error(f"MinIO list_objects failed: {prefix} - {e}")
            raise StorageAccessError(f"Failed to list objects: {prefix} - {e}", path=prefix, cause=e) from e
        return objects

    # --- URL ---

    def get_url(self, path: str) -> str:
        key = normalize_path(path)
        protocol = 'https' if self.config.use_ssl else 'http'
        port = '' if self.config.port in (80, 443) else f":{self.config.port}"
        return f"{protocol}://{self.config.endpoint}{port}/{self.bucket}/{key}"

    async def get_presigned_url(self, path: str, options: Optional[PresignedUrlOptions] = None) -> str:
        options = options or PresignedUrlOptions()
        key = normalize_path(path)
        expires = timedelta(seconds=options.expires_in or 3600)
        try:
            if PresignedUrlAction(options.action) == PresignedUrlAction.PUT:
                return await self._run(
                    self.client.presigned_put_object, bucket_name=self.bucket, object_name=key, expires=expires
                )
            return await self._run(
                self.client.presigned_get_object,
                bucket_name=self.bucket,
                object_name=key,
                expires=expires,
                response_headers=dict(options.response_headers) or None
            )
        except MINIO_ERRORS as e:
            logger.error(f"Failed to generate presigned URL: {key} - {e}")
            raise StorageAccessError(f"Failed to generate presigned URL: {key} - {e}", path=key, cause=e) from e


def _as_list(value: Any) -> List[Any]:
    if value is None:
        return []
    if isinstance(value, list):
        return list(value)
    return [value]
