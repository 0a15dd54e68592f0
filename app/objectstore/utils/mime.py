"""MIMEタイプユーティリティ"""

import mimetypes
from typing import Iterable, Optional

from .paths import get_extension

DEFAULT_CONTENT_TYPE = 'application/octet-stream'

# ローカルドライバが推定に使う固定テーブル（環境による差異を避けるため）
LOCAL_MIME_TYPES = {
    '.pdf': 'application/pdf',
    '.jpg': 'image/jpeg',
    '.jpeg': 'image/jpeg',
    '.png': 'image/png',
    '.gif': 'image/gif',
    '.webp': 'image/webp',
    '.svg': 'image/svg+xml',
    '.txt': 'text/plain',
    '.json': 'application/json',
    '.xml': 'application/xml',
    '.zip': 'application/zip',
    '.mp4': 'video/mp4',
    '.mp3': 'audio/mpeg',
}


def guess_local_content_type(file_path: str) -> str:
    """拡張子から固定テーブルでコンテンツタイプを判定する"""
    return LOCAL_MIME_TYPES.get(get_extension(file_path).lower(), DEFAULT_CONTENT_TYPE)


def get_mime_type(path_or_extension: str, default: str = DEFAULT_CONTENT_TYPE) -> str:
    """パスまたは拡張子からMIMEタイプを取得"""
    if path_or_extension.startswith('.') and '/' not in path_or_extension:
        path_or_extension = f'file{path_or_extension}'
    elif '.' not in path_or_extension:
        path_or_extension = f'file.{path_or_extension}'
    mime_type, _ = mimetypes.guess_type(path_or_extension, strict=False)
    return mime_type or default


def get_extension_for(mime_type: str) -> Optional[str]:
    """MIMEタイプから拡張子（'.' 付き）を取得"""
    return mimetypes.guess_extension(mime_type, strict=False)


def matches(mime_type: str, pattern: str) -> bool:
    """MIMEタイプがパターン（'image/*' など）に一致するか"""
    if pattern in ('*', '*/*'):
        return True
    if pattern.endswith('/*'):
        return mime_type.startswith(pattern[:-1])
    return mime_type == pattern


def is_allowed(mime_type: str, allowed_types: Iterable[str]) -> bool:
    return any(matches(mime_type, pattern) for pattern in allowed_types)


def is_image(mime_type: str) -> bool:
    return mime_type.startswith('image/')


def is_video(mime_type: str) -> bool:
    return mime_type.startswith('video/')


def is_audio(mime_type: str) -> bool:
    return mime_type.startswith('audio/')
