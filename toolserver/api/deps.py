"""Shared router dependencies and error translation."""

from __future__ import annotations

from fastapi import Depends, HTTPException
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from toolserver.db import async_session, get_db
from toolserver.engine.execution_store import ExecutionStore
from toolserver.engine.tool_executor import ToolExecutor
from toolserver.engine.work_queue import AsyncioWorkQueue, get_work_queue
from toolserver.errors import (
    AgentNotFoundError,
    ExecutionNotFoundError,
    ExecutionStateError,
    NotAuthorizedError,
    SchemaValidationError,
    ToolDisabledError,
    ToolNotFoundError,
    ToolServerError,
)
from toolserver.models.agent import AiAgent

_STATUS_CODES: list[tuple[type[ToolServerError], int]] = [
    (ToolNotFoundError, 404),
    (AgentNotFoundError, 404),
    (ExecutionNotFoundError, 404),
    (SchemaValidationError, 422),
    (ToolDisabledError, 400),
    (NotAuthorizedError, 403),
    (ExecutionStateError, 409),
]


def to_http(exc: ToolServerError) -> HTTPException:
    status_code = next((code for cls, code in _STATUS_CODES if isinstance(exc, cls)), 400)
    detail: dict = {"message": str(exc), "kind": exc.kind}
    if isinstance(exc, SchemaValidationError):
        detail["errors"] = exc.errors
    return HTTPException(status_code, detail)


def get_execution_store() -> ExecutionStore:
    return ExecutionStore(async_session)


def get_tool_executor(
    db: AsyncSession = Depends(get_db),
    queue: AsyncioWorkQueue = Depends(get_work_queue),
    store: ExecutionStore = Depends(get_execution_store),
) -> ToolExecutor:
    return ToolExecutor(db, queue, store)


async def get_agent(agent_id: str, tenant_id: str = "default", db: AsyncSession = Depends(get_db)) -> AiAgent:
    """Resolve the path agent inside the caller's tenant."""
    result = await db.execute(select(AiAgent).where(AiAgent.id == agent_id, AiAgent.tenant_id == tenant_id))
    agent = result.scalar_one_or_none()
    if not agent:
        raise to_http(AgentNotFoundError(agent_id))
    return agent
