# /backend/kidcare/main.py

from __future__ import annotations
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Depends, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from kidcare.config import CORS_ORIGINS, LOG_LEVEL
from kidcare.db import get_db
from kidcare.errors import KidcareError
from kidcare.kafka import start_kafka, stop_kafka
from kidcare.api.routers import (
    authorizations, children, game_sessions, missions, notes, notifications, templates,
)

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # 앱 시작 시
    await start_kafka()
    try:
        yield
    finally:
        # 앱 종료 시
        await stop_kafka()


app = FastAPI(
    title="KidCare API",
    lifespan=lifespan,
)

# 💡 1. CORS 미들웨어를 가장 먼저 등록합니다.
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# 💡 2. 도메인 예외 → HTTP 응답 (라우터에서는 HTTPException 을 만들지 않습니다)
@app.exception_handler(KidcareError)
async def kidcare_error_handler(request: Request, exc: KidcareError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.detail)
    return JSONResponse(status_code=exc.status_code, content={"code": exc.code, "detail": exc.detail})


# 💡 3. 그 다음에 API 라우터들을 등록합니다.
app.include_router(children.router)
app.include_router(authorizations.router)
app.include_router(templates.router)
app.include_router(missions.router)
app.include_router(notes.router)
app.include_router(notifications.router)
app.include_router(game_sessions.router)


@app.get("/health")
async def health():
    return {"ok": True}


@app.get("/db-health")
async def db_health(db: AsyncSession = Depends(get_db)):
    result = await db.execute(text("SELECT 1"))
    return {"db": "ok", "result": result.scalar_one()}
