"""パス正規化ユーティリティ

ストレージパスは常に '/' 区切りのバックエンド相対パスとして扱う。
"""

import re

from ..exceptions import InvalidPathError

_DRIVE_LETTER = re.compile(r'^[a-zA-Z]:')


def normalize_path(file_path: str) -> str:
    """
    パスを正規化する

    - バックスラッシュを '/' に変換
    - 先頭・末尾・連続するスラッシュを除去
    - '.' と '..' を解決（ルートより上には出ない）
    """
    if not file_path:
        return ''

    segments = file_path.replace('\\', '/').split('/')
    resolved = []
    for segment in segments:
        if segment in ('', '.'):
            continue
        if segment == '..':
            if resolved:
                resolved.pop()
            continue
        resolved.append(segment)
    return '/'.join(resolved)


def join_path(*segments: str) -> str:
    """パスを結合して正規化する"""
    return normalize_path('/'.join(s for s in segments if s))


def get_directory(file_path: str) -> str:
    normalized = normalize_path(file_path)
    if '/' not in normalized:
        return ''
    return normalized.rsplit('/', 1)[0]


def get_filename(file_path: str) -> str:
    normalized = normalize_path(file_path)
    return normalized.rsplit('/', 1)[-1]


def get_extension(file_path: str) -> str:
    """拡張子を '.' 付きで取得（ドットファイルは拡張子なし）"""
    filename = get_filename(file_path)
    index = filename.rfind('.')
    if index <= 0:
        return ''
    return filename[index:]


def get_basename(file_path: str) -> str:
    """拡張子を除いたファイル名を取得"""
    filename = get_filename(file_path)
    index = filename.rfind('.')
    if index <= 0:
        return filename
    return filename[:index]


def _invalid_reason(file_path: str, allow_empty: bool = False):
    if file_path is None or (not file_path.strip() and not allow_empty):
        return "path is empty"
    if '\0' in file_path:
        return "path contains a null byte"
    if file_path.startswith('/') or file_path.startswith('\\') or _DRIVE_LETTER.match(file_path):
        return "absolute paths are not allowed"
    if any(segment == '..' for segment in file_path.replace('\\', '/').split('/')):
        return "parent directory references are not allowed"
    return None


def is_valid_path(file_path: str) -> bool:
    """安全な相対パスか判定する"""
    return _invalid_reason(file_path) is None


def validate_path(file_path: str, allow_empty: bool = False) -> str:
    """
    パスを検証して正規化済みパスを返す

    Args:
        file_path: 検証するパス
        allow_empty: 空文字列（ルート）を許可するか（一覧取得のプレフィックス用）

    Raises:
        InvalidPathError: 不正なパスの場合
    """
    reason = _invalid_reason(file_path, allow_empty=allow_empty)
    if reason is not None:
        raise InvalidPathError(file_path, reason)
    return normalize_path(file_path)


def ensure_extension(file_path: str, extension: str) -> str:
    """拡張子が付いていなければ付与する"""
    normalized_ext = extension if extension.startswith('.') else f'.{extension}'
    if get_extension(file_path) == normalized_ext:
        return file_path
    return f'{file_path}{normalized_ext}'
