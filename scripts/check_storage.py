#!/usr/bin/env python3
"""
ストレージ接続確認スクリプト

環境変数からストレージ設定を読み込み、ドライバの接続を確認します。

使用方法:
    # 接続確認のみ
    python scripts/check_storage.py

    # ドライバを指定
    python scripts/check_storage.py --driver minio

    # テストファイルのアップロード・読み取り・削除まで確認
    python scripts/check_storage.py --probe
"""

import argparse
import asyncio
import dataclasses
import sys
from datetime import datetime

from objectstore import (
    DriverFactory,
    PresignedUrlOptions,
    StorageConfig,
    StorageError,
    UploadOptions,
)

PROBE_KEY = "test/connection_test.txt"


async def check_storage(driver_name: str = None, probe: bool = False) -> bool:
    """ストレージへの接続をテストする"""
    print("=" * 60)
    print("ストレージ接続テスト")
    print("=" * 60)

    config = StorageConfig.from_env()
    if driver_name:
        config = dataclasses.replace(config, driver=driver_name.lower())

    print("\n📋 設定確認:")
    print(f"  STORAGE_DRIVER: {config.driver}")
    driver_config = config.get_driver_config()
    if getattr(driver_config, 'bucket', None) is not None:
        print(f"  bucket: {driver_config.bucket or '❌ 未設定'}")
    if getattr(driver_config, 'root', None) is not None:
        print(f"  root: {driver_config.root}")

    driver = None
    try:
        print("\n🔍 ドライバに接続中...")
        driver = await DriverFactory().create_driver(config, auto_connect=True)
        print(f"✅ 接続成功: {driver.name}")

        print("\n🔍 オブジェクト一覧を取得中...")
        objects = await driver.list()
        print(f"✅ オブジェクト一覧取得成功（{len(objects)}件）")
        for obj in objects[:10]:
            print(f"  - {obj.path} ({obj.size / 1024:.1f} KB)")

        if probe:
            print("\n🔍 テストファイルのアップロードを試行中...")
            content = f"ストレージ接続テスト\nタイムスタンプ: {datetime.now().isoformat()}".encode('utf-8')
            await driver.upload(PROBE_KEY, content, UploadOptions(content_type='text/plain; charset=utf-8'))
            print(f"✅ テストファイルアップロード成功: {PROBE_KEY}")

            print("\n🔍 テストファイルの読み取りを試行中...")
            downloaded = await driver.download(PROBE_KEY)
            if downloaded != content:
                print("❌ 読み取った内容がアップロードした内容と一致しません")
                return False
            print("✅ テストファイル読み取り成功")

            url = await driver.get_presigned_url(PROBE_KEY, PresignedUrlOptions(expires_in=60))
            print(f"✅ URL生成成功: {url[:80]}")

            print("\n🔍 テストファイルの削除を試行中...")
            await driver.delete(PROBE_KEY)
            print("✅ テストファイル削除成功")

        print("\n" + "=" * 60)
        print("🎉 ストレージテストが成功しました！")
        print("=" * 60)
        return True

    except StorageError as e:
        print(f"\n❌ ストレージエラー ({e.kind}): {e}")
        if e.cause is not None:
            print(f"  → 原因: {type(e.cause).__name__}: {e.cause}")
        return False
    finally:
        if driver is not None and driver.is_connected():
            await driver.disconnect()


def main():
    parser = argparse.ArgumentParser(description='ストレージ接続確認')
    parser.add_argument('--driver', type=str, help='使用するドライバ（local, s3, minio）')
    parser.add_argument('--probe', action='store_true', help='テストファイルの読み書きまで確認')
    args = parser.parse_args()

    success = asyncio.run(check_storage(args.driver, args.probe))
    sys.exit(0 if success else 1)


if __name__ == '__main__':
    main()
