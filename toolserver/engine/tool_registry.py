"""Which tools an agent may see and invoke.

Every query joins through the agent↔tool link *and* filters on the agent's
tenant, so a cross-tenant row in the link table never leaks a foreign tool.
"""

from __future__ import annotations

from typing import Any, Iterable

from sqlalchemy import select, exists
from sqlalchemy.ext.asyncio import AsyncSession

from toolserver.models.agent import AiAgent
from toolserver.models.agent_tool import AgentTool
from toolserver.models.tool import Tool


def build_object_schema(fields: list[dict], *, with_required: bool) -> dict[str, Any]:
    properties: dict[str, Any] = {}
    required: list[str] = []
    for field in fields:
        properties[field["name"]] = {
            "type": field.get("type"),
            "description": field.get("description", ""),
        }
        if field.get("required", False):
            required.append(field["name"])

    schema: dict[str, Any] = {"type": "object", "properties": properties}
    if with_required:
        schema["required"] = required
    return schema


def summarize(tools: Iterable[Tool]) -> dict[str, Any]:
    tools = list(tools)
    categories: list[str] = []
    for tool in tools:
        if tool.category not in categories:
            categories.append(tool.category)
    return {
        "total": len(tools),
        "internal_count": sum(1 for t in tools if t.kind == "internal"),
        "external_count": sum(1 for t in tools if t.kind == "external"),
        "categories": categories,
    }


class ToolRegistry:
    def __init__(self, db: AsyncSession):
        self.db = db

    def _agent_tools(self, agent: AiAgent, *, include_disabled: bool = False):
        stmt = (
            select(Tool)
            .join(AgentTool, AgentTool.tool_id == Tool.id)
            .where(AgentTool.agent_id == agent.id, Tool.tenant_id == agent.tenant_id)
        )
        if not include_disabled:
            stmt = stmt.where(Tool.enabled == True)  # noqa: E712
        return stmt

    async def list_available(self, agent: AiAgent) -> list[Tool]:
        result = await self.db.execute(self._agent_tools(agent).order_by(Tool.name))
        return list(result.scalars().all())

    async def find(self, agent: AiAgent, slug: str, *, include_disabled: bool = False) -> Tool | None:
        """Look a tool up by slug; disabled tools are absent unless asked for."""
        result = await self.db.execute(
            self._agent_tools(agent, include_disabled=include_disabled).where(Tool.slug == slug)
        )
        return result.scalar_one_or_none()

    async def can_access(self, agent: AiAgent, tool: Tool) -> bool:
        if agent.tenant_id != tool.tenant_id:
            return False
        if not tool.enabled:
            return False
        linked = await self.db.execute(
            select(exists().where(AgentTool.agent_id == agent.id, AgentTool.tool_id == tool.id))
        )
        return bool(linked.scalar())

    async def list_by_category(self, agent: AiAgent, category: str) -> list[Tool]:
        result = await self.db.execute(
            self._agent_tools(agent).where(Tool.category == category).order_by(Tool.name)
        )
        return list(result.scalars().all())

    def normalize_for_ai(self, tools: Iterable[Tool]) -> list[dict[str, Any]]:
        """Provider-neutral descriptors for LLM tool calling."""
        return [
            {
                "name": tool.slug,
                "description": tool.name,
                "input_schema": build_object_schema(tool.inputs, with_required=True),
                "output_schema": build_object_schema(tool.outputs, with_required=True),
                "category": tool.category,
                "kind": tool.kind,
            }
            for tool in tools
        ]

    async def stats(self, agent: AiAgent) -> dict[str, Any]:
        return summarize(await self.list_available(agent))
