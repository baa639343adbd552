"""tokenviz FastAPI backend: main application entry point."""
from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from tokenviz import config
from tokenviz.db import connection, sqlite_migrations
from tokenviz.db.file_watcher import file_watcher
from tokenviz.db.ingest_engine import IngestEngine
from tokenviz.observability import initialize as initialize_observability, shutdown as shutdown_observability
from tokenviz.routers.aliases import aliases_router
from tokenviz.routers.analytics import analytics_router
from tokenviz.routers.cache import cache_router
from tokenviz.routers.usage import usage_router

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("tokenviz")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup / shutdown lifecycle."""
    logger.info("tokenviz backend starting up")
    initialize_observability(app)

    # 1. Initialize DB connection
    db = await connection.get_connection()

    # 2. Run migrations
    await sqlite_migrations.run_migrations(db)

    # 3. Initialize ingest engine
    engine = IngestEngine(db, config.LOGS_ROOT, config.LOG_PATTERN, config.SCAN_WORKERS)
    app.state.ingest_engine = engine

    # 4. Initial rescan (background task)
    if config.STARTUP_RESCAN:
        async def _run_startup_rescan() -> None:
            delay = max(0, config.STARTUP_RESCAN_DELAY_SECONDS)
            if delay > 0:
                await asyncio.sleep(delay)
            try:
                await engine.rescan(trigger="startup")
            except Exception:
                logger.exception("Startup rescan failed")

        app.state.rescan_task = asyncio.create_task(_run_startup_rescan())

    # 5. Start file watcher
    if config.WATCH_ENABLED:
        await file_watcher.start(engine, config.LOGS_ROOT)

    yield

    logger.info("tokenviz backend shutting down")

    rescan_task = getattr(app.state, "rescan_task", None)
    if rescan_task is not None:
        rescan_task.cancel()
        try:
            await rescan_task
        except asyncio.CancelledError:
            pass

    await file_watcher.stop()
    shutdown_observability(app)
    await connection.close_connection()


app = FastAPI(
    title="tokenviz API",
    description="Token usage telemetry for Claude Code transcripts",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS: allow the dashboard dev server
app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        config.FRONTEND_ORIGIN,
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(usage_router)
app.include_router(aliases_router)
app.include_router(analytics_router)
app.include_router(cache_router)


@app.get("/api/health")
def health():
    """Health check endpoint."""
    return {
        "status": "ok",
        "db": "connected" if connection.is_connected() else "disconnected",
        "watcher": "running" if file_watcher.is_running else "stopped",
    }


def run() -> None:
    uvicorn.run("tokenviz.main:app", host=config.HOST, port=config.PORT)


if __name__ == "__main__":
    run()
