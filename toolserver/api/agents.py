"""AI agent management API and agent↔tool links."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from toolserver.api.deps import get_agent
from toolserver.db import get_db
from toolserver.models.agent import AiAgent
from toolserver.models.agent_tool import AgentTool
from toolserver.models.tool import Tool
from toolserver.schemas.agent import AgentCreate, AgentOut, AgentToolLinkOut

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get("/", response_model=list[AgentOut])
async def list_agents(tenant_id: str = "default", db: AsyncSession = Depends(get_db)):
    result = await db.execute(select(AiAgent).where(AiAgent.tenant_id == tenant_id).order_by(AiAgent.name))
    return result.scalars().all()


@router.post("/", response_model=AgentOut, status_code=201)
async def create_agent(body: AgentCreate, db: AsyncSession = Depends(get_db)):
    agent = AiAgent(
        tenant_id=body.tenant_id,
        name=body.name,
        description=body.description,
        context=body.context,
        rules=body.rules,
        enabled=body.enabled,
    )
    db.add(agent)
    await db.commit()
    await db.refresh(agent)
    return agent


@router.post("/{agent_id}/tools/{tool_id}", response_model=AgentToolLinkOut, status_code=201)
async def link_tool(tool_id: str, agent: AiAgent = Depends(get_agent), db: AsyncSession = Depends(get_db)):
    """Grant the agent access to a tool of the same tenant."""
    tool = await db.get(Tool, tool_id)
    if not tool:
        raise HTTPException(404, "Tool not found")
    if tool.tenant_id != agent.tenant_id:
        raise HTTPException(403, "Agents can only be linked to tools of their own tenant")

    result = await db.execute(select(AgentTool).where(AgentTool.agent_id == agent.id, AgentTool.tool_id == tool.id))
    link = result.scalar_one_or_none()
    if link is None:
        link = AgentTool(agent_id=agent.id, tool_id=tool.id)
        db.add(link)
        await db.commit()
        await db.refresh(link)
        logger.info(f"Linked tool '{tool.slug}' to agent {agent.id}")
    return link


@router.delete("/{agent_id}/tools/{tool_id}", status_code=204)
async def unlink_tool(tool_id: str, agent: AiAgent = Depends(get_agent), db: AsyncSession = Depends(get_db)):
    result = await db.execute(select(AgentTool).where(AgentTool.agent_id == agent.id, AgentTool.tool_id == tool_id))
    link = result.scalar_one_or_none()
    if not link:
        raise HTTPException(404, "Tool is not linked to this agent")
    await db.delete(link)
    await db.commit()
