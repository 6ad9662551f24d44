"""FastAPI application entry point."""

from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from toolserver.config import settings

# Ensure data directory exists for SQLite
os.makedirs("./data", exist_ok=True)

logger = logging.getLogger(__name__)


def configure_logging() -> None:
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    from toolserver.db import engine, Base, async_session
    import toolserver.models  # noqa: F401 – register all models
    from toolserver.engine.execution_store import ExecutionStore
    from toolserver.engine.tool_executor import ToolExecutor
    from toolserver.engine.work_queue import get_work_queue

    configure_logging()

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    queue = get_work_queue()
    await queue.start(lanes=(settings.internal_queue, settings.external_queue))
    logger.info(f"{settings.app_name} started: database={settings.database_url.split('://')[0]} locks={settings.lock_backend}")

    # Executions accepted before a restart were never run
    async with async_session() as db:
        await ToolExecutor(db, queue, ExecutionStore(async_session)).recover_pending()

    yield

    await queue.stop()
    await engine.dispose()


app = FastAPI(
    title=settings.app_name,
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins.split(",") if settings.cors_origins != "*" else ["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ── Register routers ────────────────────────────────
from toolserver.api.tools import router as tools_router
from toolserver.api.agents import router as agents_router
from toolserver.api.agent_tools import router as agent_tools_router
from toolserver.api.executions import router as executions_router

prefix = settings.api_prefix

app.include_router(tools_router, prefix=prefix + "/tools", tags=["tools"])
app.include_router(agents_router, prefix=prefix + "/agents", tags=["agents"])
app.include_router(agent_tools_router, prefix=prefix + "/agents", tags=["agent-tools"])
app.include_router(executions_router, prefix=prefix + "/agents", tags=["executions"])


@app.get("/health")
async def health():
    return {"status": "ok", "version": "0.1.0"}
