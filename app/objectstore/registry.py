"""ドライバレジストリ

ストレージドライバの登録・取得を管理。
キーは DriverType で、未知の文字列は解決時に DriverNotFoundError となる。
"""

from typing import Dict, List, Type, TYPE_CHECKING, Union

from .exceptions import DriverNotFoundError
from .models import DriverType

if TYPE_CHECKING:
    from .drivers.base import StorageDriver


class DriverRegistry:
    """ストレージドライバのレジストリ"""

    _drivers: Dict[DriverType, Type['StorageDriver']] = {}

    @classmethod
    def register(cls, driver_type: DriverType):
        """
        ドライバクラスを登録するデコレータ

        使用例:
            @DriverRegistry.register(DriverType.S3)
            class S3StorageDriver(StorageDriver):
                ...
        """
        def decorator(driver_class: Type['StorageDriver']):
            cls._drivers[DriverType(driver_type)] = driver_class
            driver_class.driver_type = DriverType(driver_type)
            return driver_class
        return decorator

    @classmethod
    def resolve(cls, driver: Union[str, DriverType]) -> DriverType:
        """
        文字列を登録済みの DriverType に解決する

        Raises:
            DriverNotFoundError: 未登録のドライバが指定された場合
        """
        name = str(getattr(driver, 'value', driver)).strip().lower()
        for driver_type in cls._drivers:
            if driver_type.value == name:
                return driver_type
        raise DriverNotFoundError(driver, cls.list_types())

    @classmethod
    def get(cls, driver: Union[str, DriverType]) -> Type['StorageDriver']:
        """
        ドライバ名からドライバクラスを取得

        Args:
            driver: ドライバ名（'local', 's3', 'minio'）

        Returns:
            ドライバクラス

        Raises:
            DriverNotFoundError: 未登録のドライバが指定された場合
        """
        return cls._drivers[cls.resolve(driver)]

    @classmethod
    def list_types(cls) -> List[str]:
        """登録済みドライバ名一覧を取得（登録順）"""
        return [driver_type.value for driver_type in cls._drivers]

    @classmethod
    def is_registered(cls, driver: Union[str, DriverType]) -> bool:
        """ドライバが登録済みか確認"""
        name = str(getattr(driver, 'value', driver)).strip().lower()
        return name in cls.list_types()

    @classmethod
    def clear(cls):
        """テスト用: レジストリをクリア"""
        cls._drivers.clear()
