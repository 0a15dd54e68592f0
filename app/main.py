from contextlib import asynccontextmanager
import logging
import os

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from api.route import storage
from objectstore import init_storage

logging.basicConfig(level=os.getenv('LOG_LEVEL', 'INFO'))


@asynccontextmanager
async def lifespan(app: FastAPI):
    # 起動時にストレージを初期化し、終了時に切断する
    service = init_storage()
    async with service.lifespan():
        yield


app = FastAPI(lifespan=lifespan)
# CORSミドルウェアの設定
app.add_middleware(
    CORSMiddleware,
    # 許可するオリジン（フロントエンドのURL）
    allow_origins=os.getenv('CORS_ALLOW_ORIGINS', 'http://localhost:5173').split(','),
    allow_credentials=True,
    allow_methods=["*"],  # 全てのHTTPメソッドを許可
    allow_headers=["*"],  # 全てのヘッダーを許可
)

app.include_router(storage.router, prefix="/api")
