"""S3ストレージドライバ

AWS S3およびS3互換ストレージに対応。
公開設定はオブジェクトACL（canned ACL）で表現する。
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from ..config import S3Config
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
    StorageACL,
    StorageMetadata,
    StorageObject,
    UploadContent,
    UploadOptions,
    Visibility,
)
from ..registry import DriverRegistry
from ..streams import ByteStream, content_size, is_bytes_like, spool_content
from ..utils.mime import DEFAULT_CONTENT_TYPE
from ..utils.paths import normalize_path
from .base import StorageDriver, filename_from_path

logger = logging.getLogger(__name__)

ALL_USERS_URI = 'http://acs.amazonaws.com/groups/global/AllUsers'
NOT_FOUND_CODES = ('NoSuchKey', '404', 'NotFound')
# APIエラーと通信エラー（EndpointConnectionError など）
S3_ERRORS = (ClientError, BotoCoreError)

# PresignedUrlOptions.response_headers のキー -> S3 パラメータ
RESPONSE_HEADER_PARAMS = {
    'Cache-Control': 'ResponseCacheControl',
    'Content-Disposition': 'ResponseContentDisposition',
    'Content-Encoding': 'ResponseContentEncoding',
    'Content-Language': 'ResponseContentLanguage',
    'Content-Type': 'ResponseContentType',
}


def _error_code(error: ClientError) -> str:
    return str(error.response.get('Error', {}).get('Code', ''))


def _is_not_found(error: Exception) -> bool:
    return isinstance(error, ClientError) and _error_code(error) in NOT_FOUND_CODES


def _metadata_params(metadata: Optional[StorageMetadata]) -> Dict[str, Any]:
    """StorageMetadata を S3 のリクエストパラメータに変換"""
    if metadata is None:
        return {}
    params = {
        'ContentType': metadata.content_type,
        'ContentEncoding': metadata.content_encoding,
        'ContentLanguage': metadata.content_language,
        'CacheControl': metadata.cache_control,
        'ContentDisposition': metadata.content_disposition,
        'Metadata': metadata.custom_metadata,
    }
    return {key: value for key, value in params.items() if value is not None}


@DriverRegistry.register(DriverType.S3)
class S3StorageDriver(StorageDriver):
    """S3ストレージドライバ"""

    def __init__(self, config: S3Config = None, max_retries: int = 3, retry_delay: float = 1.0):
        """
        S3ドライバを初期化（クライアント生成は connect で行う）

        Args:
            config: S3設定。Noneの場合は環境変数から読み込み
        """
        if config is None:
            config = S3Config.from_env()
        super().__init__(config, max_retries=max_retries, retry_delay=retry_delay)
        self.client = None
        self.bucket = config.bucket
        logger.info(f"S3StorageDriver initialized: bucket={self.bucket}")

    # --- 接続管理 ---

    def _create_client(self):
        botocore_config = Config(
            retries={'max_attempts': self.max_retries + 1, 'mode': 'standard'},
            s3={'addressing_style': 'path' if self.config.force_path_style else 'auto'}
        )
        client_kwargs = {
            'region_name': self.config.region,
            'aws_access_key_id': self.config.access_key_id,
            'aws_secret_access_key': self.config.secret_access_key,
            'aws_session_token': self.config.session_token,
            'use_ssl': self.config.use_ssl,
            'config': botocore_config,
        }
        if self.config.endpoint:
            client_kwargs['endpoint_url'] = self.config.endpoint
        client_kwargs.update(self.config.client_options)
        return boto3.client('s3', **client_kwargs)

    async def connect(self) -> None:
        if not self.bucket:
            raise StorageConnectionError('S3', ValueError('bucket is not configured'))
        try:
            client = await self._run(self._create_client)
            if self.config.verify_bucket:
                await self._run(client.head_bucket, Bucket=self.bucket)
        except S3_ERRORS as e:
            logger.error(f"S3 connect failed: bucket={self.bucket} - {e}")
            raise StorageConnectionError('S3', e) from e
        self.client = client
        self._connected = True
        logger.info(f"S3 storage connected: bucket={self.bucket}")

    async def disconnect(self) -> None:
        if self.client is not None:
            close = getattr(self.client, 'close', None)
            if close is not None:
                await self._run(close)
        self.client = None
        self._connected = False

    async def _head(self, path: str) -> Dict[str, Any]:
        """head_object を実行（存在しない場合は StorageNotFoundError）"""
        try:
            return await self._run(self.client.head_object, Bucket=self.bucket, Key=path)
        except S3_ERRORS as e:
            if _is_not_found(e):
                raise StorageNotFoundError(path)
            raise StorageAccessError(f"S3 head_object failed: {path} - {e}", path=path, cause=e) from e

    # --- 書き込み系メソッド ---

    def _acl_for(self, options: UploadOptions) -> Optional[str]:
        if options.acl is not None:
            return StorageACL(options.acl).value
        if options.visibility is None:
            return None
        if Visibility.from_string(options.visibility) == Visibility.PUBLIC:
            return StorageACL.PUBLIC_READ.value
        return StorageACL.PRIVATE.value

    async def upload(self, path: str, content: UploadContent,
                     options: Optional[UploadOptions] = None) -> StorageObject:
        options = options or UploadOptions()
        key = normalize_path(path)
        size = content_size(content)

        extra_args = _metadata_params(options.metadata)
        acl = self._acl_for(options)
        if acl is not None:
            extra_args['ACL'] = acl
        if options.content_type:
            extra_args['ContentType'] = options.content_type

        try:
            if is_bytes_like(content):
                params = {'Bucket': self.bucket, 'Key': key, 'Body': bytes(content), **extra_args}
                if not options.overwrite:
                    params['IfNoneMatch'] = '*'
                params.update(options.driver_options)
                try:
                    response = await self._run(self.client.put_object, **params)
                except ClientError as e:
                    if _error_code(e) == 'PreconditionFailed':
                        raise FileExistsError(f"Object already exists: {key}") from e
                    raise
                etag = response.get('ETag')
                size = len(content)
            else:
                if not options.overwrite and await self.exists(key):
                    raise FileExistsError(f"Object already exists: {key}")
                extra_args.update(options.driver_options)
                async with spool_content(content) as (fileobj, spooled_size):
                    await self._run(
                        self.client.upload_fileobj, fileobj, self.bucket, key, ExtraArgs=extra_args
                    )
                head = await self._head(key)
                etag = head.get('ETag')
                size = head.get('ContentLength', spooled_size)
        except Exception as e:
            logger.error(f"S3 upload failed: {key} - {e}")
            raise UploadFailedError(key, e, size) from e

        logger.debug(f"S3 upload success: {key}")
        return StorageObject(
            path=key,
            name=filename_from_path(key),
            size=size or 0,
            content_type=options.content_type or extra_args.get('ContentType') or DEFAULT_CONTENT_TYPE,
            url=self.get_url(key),
            last_modified=datetime.now(timezone.utc),
            etag=etag,
            metadata=options.metadata.custom_metadata if options.metadata else None
        )

    async def delete(self, path: str) -> None:
        key = normalize_path(path)
        await self._head(key)
        try:
            await self._run(self.client.delete_object, Bucket=self.bucket, Key=key)
        except S3_ERRORS as e:
            logger.error(f"S3 delete failed: {key} - {e}")
            raise DeleteFailedError(key, e) from e
        logger.debug(f"S3 delete success: {key}")

    async def copy(self, source: str, destination: str) -> None:
        source_key = normalize_path(source)
        destination_key = normalize_path(destination)
        try:
            await self._run(
                self.client.copy_object,
                Bucket=self.bucket,
                CopySource={'Bucket': self.bucket, 'Key': source_key},
                Key=destination_key
            )
        except S3_ERRORS as e:
            if _is_not_found(e):
                raise StorageNotFoundError(source_key)
            logger.error(f"S3 copy failed: {source_key} -> {destination_key} - {e}")
            raise StorageAccessError(
                f"Failed to copy file from {source_key} to {destination_key}: {e}",
                path=source_key, cause=e
            ) from e

    async def set_metadata(self, path: str, metadata: StorageMetadata) -> None:
        key = normalize_path(path)
        await self._head(key)
        try:
            # S3 のメタデータは自身へのコピーで置き換える
            await self._run(
                self.client.copy_object,
                Bucket=self.bucket,
                CopySource={'Bucket': self.bucket, 'Key': key},
                Key=key,
                MetadataDirective='REPLACE',
                **_metadata_params(metadata)
            )
        except S3_ERRORS as e:
            if _is_not_found(e):
                raise StorageNotFoundError(key)
            raise StorageAccessError(f"Failed to set metadata: {key} - {e}", path=key, cause=e) from e

    async def set_visibility(self, path: str, visibility: Visibility) -> None:
        key = normalize_path(path)
        acl = self._acl_for(UploadOptions(visibility=visibility))
        try:
            await self._run(self.client.put_object_acl, Bucket=self.bucket, Key=key, ACL=acl)
        except S3_ERRORS as e:
            if _is_not_found(e):
                raise StorageNotFoundError(key)
            raise StorageAccessError(f"Failed to set visibility: {key} - {e}", path=key, cause=e) from e

    # --- 読み取り系メソッド ---

    async def _get_object(self, key: str, options: DownloadOptions) -> Dict[str, Any]:
        params = {'Bucket': self.bucket, 'Key': key, **options.driver_options}
        if options.range is not None:
            params['Range'] = options.range.to_header()
        try:
            return await self._run(self.client.get_object, **params)
        except S3_ERRORS as e:
            if _is_not_found(e):
                raise StorageNotFoundError(key)
            logger.error(f"S3 get_object failed: {key} - {e}")
            raise DownloadFailedError(key, e) from e

    async def download(self, path: str, options: Optional[DownloadOptions] = None) -> bytes:
        options = options or DownloadOptions()
        key = normalize_path(path)
        response = await self._get_object(key, options)
        async with ByteStream(response['Body'], key, chunk_size=options.chunk_size) as stream:
            return await stream.read()

    async def download_stream(self, path: str, options: Optional[DownloadOptions] = None) -> ByteStream:
        options = options or DownloadOptions()
        key = normalize_path(path)
        response = await self._get_object(key, options)
        return ByteStream(response['Body'], key, chunk_size=options.chunk_size)

    async def exists(self, path: str) -> bool:
        key = normalize_path(path)
        try:
            await self._run(self.client.head_object, Bucket=self.bucket, Key=key)
            return True
        except S3_ERRORS as e:
            if _is_not_found(e):
                return False
            raise StorageAccessError(f"S3 head_object failed: {key} - {e}", path=key, cause=e) from e

    async def get_metadata(self, path: str) -> StorageMetadata:
        key = normalize_path(path)
        response = await self._head(key)
        return StorageMetadata(
            path=key,
            size=response.get('ContentLength'),
            content_type=response.get('ContentType'),
            content_encoding=response.get('ContentEncoding'),
            content_language=response.get('ContentLanguage'),
            cache_control=response.get('CacheControl'),
            content_disposition=response.get('ContentDisposition'),
            last_modified=response.get('LastModified'),
            etag=response.get('ETag'),
            custom_metadata=response.get('Metadata') or None
        )

    async def get_visibility(self, path: str) -> Visibility:
        key = normalize_path(path)
        try:
            response = await self._run(self.client.get_object_acl, Bucket=self.bucket, Key=key)
        except S3_ERRORS as e:
            if _is_not_found(e):
                raise StorageNotFoundError(key)
            raise StorageAccessError(f"Failed to read visibility: {key} - {e}", path=key, cause=e) from e

        for grant in response.get('Grants', []):
            grantee = grant.get('Grantee', {})
            if grantee.get('URI') == ALL_USERS_URI and grant.get('Permission') in ('READ', 'FULL_CONTROL'):
                return Visibility.PUBLIC
        return Visibility.PRIVATE

    async def list(self, prefix: str = '', options: Optional[ListOptions] = None) -> List[StorageObject]:
        options = options or ListOptions()
        all_objects: List[StorageObject] = []
        continuation_token = options.continuation_token

        while True:
            params: Dict[str, Any] = {'Bucket': self.bucket, 'Prefix': prefix or ''}
            if options.max_results is not None:
                params['MaxKeys'] = max(options.max_results - len(all_objects), 0)
            if continuation_token:
                params['ContinuationToken'] = continuation_token
            elif options.start_after:
                params['StartAfter'] = options.start_after
            if not options.recursive:
                params['Delimiter'] = '/'
            params.update(options.driver_options)

            try:
                response = await self._run(self.client.list_objects_v2, **params)
            except S3_ERRORS as e:
                logger.error(f"S3 list_objects failed: {prefix} - {e}")
                raise StorageAccessError(f"Failed to list objects: {prefix} - {e}", path=prefix, cause=e) from e

            for obj in response.get('Contents', []):
                # ディレクトリマーカーは除外
                if obj['Key'].endswith('/'):
                    continue
                all_objects.append(StorageObject(
                    path=obj['Key'],
                    name=filename_from_path(obj['Key']),
                    size=obj.get('Size', 0),
                    content_type=DEFAULT_CONTENT_TYPE,
                    url=self.get_url(obj['Key']),
                    last_modified=obj.get('LastModified'),
                    etag=obj.get('ETag')
                ))

            if options.max_results is not None and len(all_objects) >= options.max_results:
                return all_objects[:options.max_results]
            if response.get('IsTruncated'):
                continuation_token = response.get('NextContinuationToken')
            else:
                break

        return all_objects

    # --- URL ---

    def get_url(self, path: str) -> str:
        key = normalize_path(path)
        if self.config.endpoint:
            return f"{self.config.endpoint.rstrip('/')}/{self.bucket}/{key}"
        return f"https://{self.bucket}.s3.{self.config.region}.amazonaws.com/{key}"

    async def get_presigned_url(self, path: str, options: Optional[PresignedUrlOptions] = None) -> str:
        options = options or PresignedUrlOptions()
        key = normalize_path(path)
        params: Dict[str, Any] = {'Bucket': self.bucket, 'Key': key}
        client_method = 'get_object'
        if PresignedUrlAction(options.action) == PresignedUrlAction.PUT:
            client_method = 'put_object'
        else:
            for header, param in RESPONSE_HEADER_PARAMS.items():
                if header in options.response_headers:
                    params[param] = options.response_headers[header]
        try:
            return await self._run(
                self.client.generate_presigned_url,
                client_method,
                Params=params,
                ExpiresIn=options.expires_in or 3600
            )
        except S3_ERRORS as e:
            logger.error(f"Failed to generate presigned URL: {key} - {e}")
            raise StorageAccessError(f"Failed to generate presigned URL: {key} - {e}", path=key, cause=e) from e
