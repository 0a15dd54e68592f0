"""カスタム例外

ストレージ関連のエラーを表す例外クラス。
呼び出し側は ``kind`` で「想定内の不在(not_found)」とそれ以外を分岐できる。
"""

from typing import Any, List, Optional


class StorageError(Exception):
    """ストレージ操作の基底例外"""

    kind = "storage_error"

    def __init__(self, message: str, path: Optional[str] = None, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.message = message
        self.path = path
        self.cause = cause

    def to_dict(self) -> dict:
        """辞書形式に変換（ログ・APIレスポンス用）"""
        result: dict = {"kind": self.kind, "message": self.message}
        if self.path is not None:
            result["path"] = self.path
        if self.cause is not None:
            result["cause"] = str(self.cause)
        return result


class StorageNotFoundError(StorageError):
    """ファイルが見つからない"""

    kind = "not_found"

    def __init__(self, path: str):
        super().__init__(f"File not found: {path}", path=path)


class UploadFailedError(StorageError):
    """アップロード失敗"""

    kind = "upload_failed"

    def __init__(self, path: str, cause: Optional[BaseException] = None, size: Optional[int] = None):
        message = f"Failed to upload file: {path}"
        if size is not None:
            message += f" ({size} bytes)"
        if cause is not None:
            message += f" - {cause}"
        super().__init__(message, path=path, cause=cause)
        self.size = size


class DownloadFailedError(StorageError):
    """ダウンロード失敗"""

    kind = "download_failed"

    def __init__(self, path: str, cause: Optional[BaseException] = None):
        message = f"Failed to download file: {path}"
        if cause is not None:
            message += f" - {cause}"
        super().__init__(message, path=path, cause=cause)


class DeleteFailedError(StorageError):
    """削除失敗"""

    kind = "delete_failed"

    def __init__(self, path: str, cause: Optional[BaseException] = None):
        message = f"Failed to delete file: {path}"
        if cause is not None:
            message += f" - {cause}"
        super().__init__(message, path=path, cause=cause)


class StorageAccessError(StorageError):
    """ストレージアクセスエラー（コピー・メタデータ・公開設定など）"""

    kind = "access_failed"


class StorageConnectionError(StorageError):
    """バックエンドへの接続失敗"""

    kind = "connection_failed"

    def __init__(self, driver: str, cause: Optional[BaseException] = None):
        message = f"Failed to connect to {driver} storage"
        if cause is not None:
            message += f": {cause}"
        super().__init__(message, cause=cause)
        self.driver = driver


class StorageConfigError(StorageError):
    """設定エラー"""

    kind = "config_error"


class DriverNotFoundError(StorageError):
    """ドライバが未登録"""

    kind = "driver_not_found"

    def __init__(self, driver: Any, available: List[str]):
        listed = ", ".join(available) if available else "none"
        super().__init__(f"Storage driver '{driver}' not found. Available drivers: {listed}")
        self.driver = str(driver)
        self.available = list(available)


class InvalidPathError(StorageError):
    """不正なパス（ルート外への参照など）"""

    kind = "invalid_path"

    def __init__(self, path: str, reason: str = "path escapes the storage root"):
        super().__init__(f"Invalid or unsafe file path: {path!r} ({reason})", path=path)
        self.reason = reason


class FileValidationError(StorageError):
    """ファイル検証エラー"""

    kind = "validation_failed"


class MetadataNotSupportedWarning(UserWarning):
    """ドライバがメタデータの永続化に対応していないことを示す警告"""
