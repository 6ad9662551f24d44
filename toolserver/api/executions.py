"""Tool execution API: run tools and inspect an agent's execution history."""

from __future__ import annotations

import logging
from datetime import datetime

from fastapi import APIRouter, Depends, Query, Response

from toolserver.api.deps import get_agent, get_tool_executor, to_http
from toolserver.engine.tool_executor import ToolExecutor
from toolserver.errors import ToolServerError
from toolserver.models.agent import AiAgent
from toolserver.models.execution import EXECUTION_STATUSES, ToolExecution
from toolserver.models.tool import Tool
from toolserver.schemas.execution import (
    ExecuteRequest,
    ExecutionOut,
    ExecutionPageOut,
    ExecutionStatsOut,
    RetryRequest,
)

router = APIRouter()
logger = logging.getLogger(__name__)


def _out(execution: ToolExecution, tool: Tool | None = None) -> ExecutionOut:
    out = ExecutionOut.model_validate(execution)
    if tool is not None:
        out.tool_slug = tool.slug
        out.tool_name = tool.name
    return out


async def _out_with_tool(executor: ToolExecutor, execution: ToolExecution) -> ExecutionOut:
    return _out(execution, await executor.db.get(Tool, execution.tool_id))


@router.post("/{agent_id}/tools/{slug}/execute", response_model=ExecutionOut, status_code=202)
async def execute_tool(
    slug: str,
    body: ExecuteRequest,
    response: Response,
    agent: AiAgent = Depends(get_agent),
    executor: ToolExecutor = Depends(get_tool_executor),
):
    """Accept a tool invocation; ``sync`` runs it before responding."""
    try:
        if body.sync:
            execution = await executor.execute_sync(agent, slug, body.payload)
            response.status_code = 200
        else:
            execution = await executor.execute(agent, slug, body.payload)
    except ToolServerError as exc:
        logger.warning(f"Tool '{slug}' rejected for agent {agent.id}: {exc}")
        raise to_http(exc) from exc
    return await _out_with_tool(executor, execution)


@router.get("/{agent_id}/executions", response_model=ExecutionPageOut)
async def list_executions(
    status: str | None = Query(None, description="|".join(EXECUTION_STATUSES)),
    tool_slug: str | None = None,
    date_from: datetime | None = Query(None, alias="from"),
    date_to: datetime | None = Query(None, alias="to"),
    page: int = Query(1, ge=1),
    page_size: int = Query(15, ge=1, le=100),
    agent: AiAgent = Depends(get_agent),
    executor: ToolExecutor = Depends(get_tool_executor),
):
    result = await executor.list_executions(
        agent,
        {
            "status": status,
            "tool_slug": tool_slug,
            "from": date_from,
            "to": date_to,
            "page": page,
            "page_size": page_size,
        },
    )
    return ExecutionPageOut(
        items=[_out(e, result.tools.get(e.tool_id)) for e in result.items],
        total=result.total,
        page=result.page,
        page_size=result.page_size,
        last_page=result.last_page,
    )


@router.get("/{agent_id}/executions/stats", response_model=ExecutionStatsOut)
async def execution_stats(
    period: str | None = Query(None, description="1 day | 1 week | 1 month | 3 months"),
    agent: AiAgent = Depends(get_agent),
    executor: ToolExecutor = Depends(get_tool_executor),
):
    try:
        return await executor.stats(agent, period)
    except ValueError as exc:
        raise to_http(ToolServerError(str(exc))) from exc


@router.get("/{agent_id}/executions/{execution_id}", response_model=ExecutionOut)
async def get_execution(
    execution_id: str, agent: AiAgent = Depends(get_agent), executor: ToolExecutor = Depends(get_tool_executor),
):
    try:
        execution = await executor.get_execution(agent, execution_id)
    except ToolServerError as exc:
        raise to_http(exc) from exc
    return await _out_with_tool(executor, execution)


@router.delete("/{agent_id}/executions/{execution_id}", response_model=ExecutionOut)
async def cancel_execution(
    execution_id: str, agent: AiAgent = Depends(get_agent), executor: ToolExecutor = Depends(get_tool_executor),
):
    try:
        execution = await executor.cancel(agent, execution_id)
    except ToolServerError as exc:
        raise to_http(exc) from exc
    return await _out_with_tool(executor, execution)


@router.post("/{agent_id}/executions/{execution_id}/retry", response_model=ExecutionOut, status_code=202)
async def retry_execution(
    execution_id: str,
    response: Response,
    body: RetryRequest | None = None,
    agent: AiAgent = Depends(get_agent),
    executor: ToolExecutor = Depends(get_tool_executor),
):
    sync = bool(body and body.sync)
    try:
        execution = await executor.retry(agent, execution_id, sync=sync)
    except ToolServerError as exc:
        raise to_http(exc) from exc
    if sync:
        response.status_code = 200
    return await _out_with_tool(executor, execution)
