"""ファイル検証ユーティリティ

サイズ・MIMEタイプ・拡張子・パスの検証を行う。
"""

from dataclasses import dataclass
from typing import Iterable, Optional

from ..exceptions import FileValidationError
from . import mime
from .paths import get_extension, is_valid_path


@dataclass(frozen=True)
class ValidationResult:
    """検証結果"""
    valid: bool
    error: Optional[str] = None


VALID = ValidationResult(True)


class FileValidator:
    """アップロード前のファイル検証"""

    @classmethod
    def validate(
        cls,
        content: bytes,
        path: str,
        max_size: Optional[int] = None,
        min_size: Optional[int] = None,
        allowed_mime_types: Optional[Iterable[str]] = None,
        allowed_extensions: Optional[Iterable[str]] = None,
        validate_path: bool = True
    ) -> ValidationResult:
        """
        全項目を順に検証し、最初の失敗を返す

        Args:
            content: ファイル内容
            path: 保存先パス
            max_size: 最大サイズ（バイト）
            min_size: 最小サイズ（バイト）
            allowed_mime_types: 許可するMIMEタイプ（'image/*' 形式可）
            allowed_extensions: 許可する拡張子
            validate_path: パスの安全性を検証するか
        """
        if validate_path:
            result = cls.validate_path(path)
            if not result.valid:
                return result

        if max_size is not None or min_size is not None:
            result = cls.validate_size(len(content), max_size=max_size, min_size=min_size)
            if not result.valid:
                return result

        if allowed_mime_types:
            result = cls.validate_mime_type(mime.get_mime_type(path), allowed_mime_types)
            if not result.valid:
                return result

        if allowed_extensions:
            result = cls.validate_extension(get_extension(path), allowed_extensions)
            if not result.valid:
                return result

        return VALID

    @staticmethod
    def validate_size(size: int, max_size: Optional[int] = None, min_size: Optional[int] = None) -> ValidationResult:
        if max_size is not None and size > max_size:
            return ValidationResult(
                False, f"File size {size} bytes exceeds maximum allowed size of {max_size} bytes"
            )
        if min_size is not None and size < min_size:
            return ValidationResult(
                False, f"File size {size} bytes is below minimum required size of {min_size} bytes"
            )
        return VALID

    @staticmethod
    def validate_mime_type(mime_type: str, allowed_types: Iterable[str]) -> ValidationResult:
        allowed = list(allowed_types)
        if not mime.is_allowed(mime_type, allowed):
            return ValidationResult(
                False, f"MIME type '{mime_type}' is not allowed. Allowed types: {', '.join(allowed)}"
            )
        return VALID

    @staticmethod
    def validate_extension(extension: str, allowed_extensions: Iterable[str]) -> ValidationResult:
        allowed = list(allowed_extensions)
        normalized = extension if extension.startswith('.') else f'.{extension}'
        normalized_allowed = [ext if ext.startswith('.') else f'.{ext}' for ext in allowed]
        if normalized.lower() not in [ext.lower() for ext in normalized_allowed]:
            return ValidationResult(
                False,
                f"File extension '{extension}' is not allowed. Allowed extensions: {', '.join(allowed)}"
            )
        return VALID

    @staticmethod
    def validate_path(path: str) -> ValidationResult:
        if not is_valid_path(path):
            return ValidationResult(False, f"Invalid or unsafe file path: {path}")
        return VALID

    @classmethod
    def ensure_valid(cls, content: bytes, path: str, **options) -> None:
        """検証に失敗した場合は FileValidationError を送出する"""
        result = cls.validate(content, path, **options)
        if not result.valid:
            raise FileValidationError(result.error, path=path)
