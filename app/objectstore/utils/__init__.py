"""ストレージ共通ユーティリティ"""

from .paths import normalize_path, validate_path, is_valid_path
from .validation import FileValidator, ValidationResult

__all__ = [
    'normalize_path',
    'validate_path',
    'is_valid_path',
    'FileValidator',
    'ValidationResult'
]
