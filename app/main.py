import os

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.config import settings
from app.database import SessionLocal
from app.logging_config import get_logger, setup_logging
from app.routers import admin, webhook
from app.runtime import BotRuntime

setup_logging(settings.log_level)
logger = get_logger("main")

app = FastAPI(
    title="Melo Bot API",
    description="WhatsApp ordering bot for Melo Sportt",
    version="0.1.0",
)

cors_origins = [origin.strip() for origin in settings.cors_allow_origins.split(",") if origin.strip()]
if not cors_origins:
    cors_origins = ["*"]

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(webhook.router)
app.include_router(admin.router)

app.state.runtime = BotRuntime(settings, SessionLocal)


def _are_background_workers_enabled() -> bool:
    if os.environ.get("PYTEST_CURRENT_TEST"):
        return False
    return settings.background_workers_enabled


@app.on_event("startup")
async def start_bot_runtime() -> None:
    if not _are_background_workers_enabled():
        logger.info("Background workers disabled")
        return
    await app.state.runtime.start()


@app.on_event("shutdown")
async def stop_bot_runtime() -> None:
    await app.state.runtime.stop()


@app.get("/health")
async def health():
    runtime = app.state.runtime
    return {
        "status": "ok",
        "workers_running": runtime.running,
        "catalog_size": runtime.catalog.size,
        "conversations": len(runtime.store.all()),
    }
