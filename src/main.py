# src/main.py
# Главная точка входа FastAPI для THNX Digital: аудит-лог, уведомления, realtime.
#  • Pipeline (Redis, очереди, воркеры, WebSocket-хаб) собирается один раз и
#    лежит в app.state.pipeline; воркеры стартуют на startup (PIPELINE_ENABLED=1).
#  • Все ответы - в конверте {"success": ..., "data"/"message": ...}.

from __future__ import annotations

import asyncio
import logging
import os

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text

from dotenv import load_dotenv
load_dotenv()

from src.config import get_settings
from src.db import SessionLocal  # инициализация БД/пула соединений
from src.runtime import Pipeline

from src.routers.activity_logs import router as activity_logs_router
from src.routers.notifications import router as notifications_router
from src.routers.queues import router as queues_router
from src.routers.realtime import router as realtime_router

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
log = logging.getLogger(__name__)

settings = get_settings()

app = FastAPI(
    title="THNX Digital Backend",
    description="Аудит-лог, уведомления и realtime-канал для админки и кабинета мерчанта.",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.state.pipeline = Pipeline.from_settings(settings, SessionLocal)

# --- Подключение роутеров ---
app.include_router(activity_logs_router,  prefix="/api/activity-logs",  tags=["Аудит-лог"])
app.include_router(notifications_router,  prefix="/api/notifications",  tags=["Уведомления"])
app.include_router(queues_router,         prefix="/api/queues",         tags=["Очереди"])
app.include_router(realtime_router,                                      tags=["Realtime"])


@app.exception_handler(Exception)
async def _unhandled_error(request: Request, exc: Exception):
    log.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"success": False, "message": "Internal server error"})


@app.get("/")
def root():
    """Простой healthcheck."""
    return {"message": "THNX backend работает!", "docs": "/docs"}


def _db_ok() -> bool:
    try:
        with SessionLocal() as db:
            db.execute(text("SELECT 1"))
        return True
    except Exception as exc:
        log.warning("Database health check failed: %s", exc)
        return False


@app.get("/health")
async def health():
    """Готовность: БД (SELECT 1) и Redis (PING)."""
    db_ok = await asyncio.to_thread(_db_ok)
    redis_ok = await app.state.pipeline.ping_redis()
    ok = db_ok and redis_ok
    return JSONResponse(
        status_code=200 if ok else 503,
        content={
            "success": ok,
            "data": {
                "database": "ok" if db_ok else "down",
                "redis": "ok" if redis_ok else "down",
            },
        },
    )


@app.on_event("startup")
async def _startup_pipeline():
    if settings.pipeline_enabled:
        await app.state.pipeline.start()
    else:
        log.info("Pipeline disabled (PIPELINE_ENABLED=0): workers are not started")


@app.on_event("shutdown")
async def _shutdown_pipeline():
    await app.state.pipeline.close()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("src.main:app", host="0.0.0.0", port=8000, reload=False)
