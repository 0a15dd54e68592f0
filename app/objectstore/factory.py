"""ドライバファクトリ

StorageConfig からアクティブなドライバを生成する。
参照するのは選択されたドライバの設定ブロックのみ。
"""

import logging
from typing import Any, Optional, Type

from .config import StorageConfig
from .exceptions import StorageConfigError
from .models import DriverType
from .registry import DriverRegistry
from .drivers.base import StorageDriver

logger = logging.getLogger(__name__)


class DriverFactory:
    """設定に従ってストレージドライバを生成するファクトリ"""

    def __init__(self, registry: Type[DriverRegistry] = DriverRegistry):
        self.registry = registry

    def resolve_driver_type(self, config: StorageConfig) -> DriverType:
        """
        設定のドライバ名を DriverType に解決

        Raises:
            DriverNotFoundError: 未登録のドライバが指定された場合
        """
        return self.registry.resolve(config.driver)

    def get_driver_options(self, config: StorageConfig) -> Any:
        """アクティブなドライバの設定ブロックを取得"""
        driver_type = self.resolve_driver_type(config)
        options = getattr(config, driver_type.value, None)
        if options is None:
            raise StorageConfigError(f"Missing configuration block for driver '{driver_type.value}'")
        return options

    def build_driver(self, config: StorageConfig) -> StorageDriver:
        """
        ドライバをインスタンス化する（接続はしない）

        Raises:
            DriverNotFoundError: 未登録のドライバが指定された場合
        """
        driver_type = self.resolve_driver_type(config)
        driver_class = self.registry.get(driver_type)
        driver = driver_class(
            self.get_driver_options(config),
            max_retries=config.max_retries,
            retry_delay=config.retry_delay
        )
        logger.info(f"Storage driver created: {driver_type.value}")
        return driver

    async def create_driver(self, config: StorageConfig,
                            auto_connect: Optional[bool] = None) -> StorageDriver:
        """
        ドライバを生成し、必要に応じて接続する

        Args:
            config: ストレージ設定
            auto_connect: 接続まで行うか。Noneの場合は config.auto_connect に従う

        Returns:
            StorageDriver: 生成したドライバ（auto_connect 時は接続済み）

        Raises:
            DriverNotFoundError: 未登録のドライバが指定された場合
            StorageConnectionError: 接続に失敗した場合
        """
        driver = self.build_driver(config)
        if config.auto_connect if auto_connect is None else auto_connect:
            await driver.connect()
        return driver


_default_factory = DriverFactory()


async def create_driver(config: StorageConfig, auto_connect: Optional[bool] = None) -> StorageDriver:
    """既定のファクトリでドライバを生成"""
    return await _default_factory.create_driver(config, auto_connect=auto_connect)
