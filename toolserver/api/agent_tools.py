"""Agent-facing tool catalog: what an agent may call, in several formats."""

from __future__ import annotations

from typing import Any, Literal

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from toolserver.api.deps import get_agent, to_http
from toolserver.db import get_db
from toolserver.engine.mcp_mapper import MCPToolMapper
from toolserver.engine.tool_registry import ToolRegistry
from toolserver.errors import ToolNotFoundError
from toolserver.models.agent import AiAgent
from toolserver.models.tool import Tool
from toolserver.schemas.tool import ToolOut

router = APIRouter()


def _standard(tool: Tool) -> dict[str, Any]:
    return ToolOut.model_validate(tool).model_dump(mode="json", by_alias=True)


@router.get("/{agent_id}/tools")
async def list_agent_tools(
    format: Literal["standard", "normalized", "mcp"] = "standard",
    agent: AiAgent = Depends(get_agent),
    db: AsyncSession = Depends(get_db),
):
    registry = ToolRegistry(db)
    tools = await registry.list_available(agent)
    if format == "normalized":
        return {"tools": registry.normalize_for_ai(tools)}
    if format == "mcp":
        return MCPToolMapper().to_mcp_format(tools)
    return {"tools": [_standard(t) for t in tools]}


@router.get("/{agent_id}/tools/stats")
async def agent_tool_stats(agent: AiAgent = Depends(get_agent), db: AsyncSession = Depends(get_db)):
    return await ToolRegistry(db).stats(agent)


@router.get("/{agent_id}/tools/category/{category}")
async def list_agent_tools_by_category(
    category: str, agent: AiAgent = Depends(get_agent), db: AsyncSession = Depends(get_db),
):
    tools = await ToolRegistry(db).list_by_category(agent, category)
    return {"category": category, "tools": [_standard(t) for t in tools]}


@router.get("/{agent_id}/tools/{slug}")
async def get_agent_tool(
    slug: str,
    format: Literal["standard", "mcp"] = "standard",
    agent: AiAgent = Depends(get_agent),
    db: AsyncSession = Depends(get_db),
):
    tool = await ToolRegistry(db).find(agent, slug)
    if tool is None:
        raise to_http(ToolNotFoundError(slug))
    if format == "mcp":
        return MCPToolMapper().map_tool(tool)
    return _standard(tool)


@router.get("/{agent_id}/mcp/manifest")
async def mcp_manifest(agent: AiAgent = Depends(get_agent), db: AsyncSession = Depends(get_db)):
    """Full MCP manifest of the agent's enabled tools."""
    tools = await ToolRegistry(db).list_available(agent)
    return MCPToolMapper().create_manifest(tools, {"agent_id": agent.id, "agent_name": agent.name})
