"""Tool management API: register, update, enable and disable tools."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from toolserver.db import get_db
from toolserver.engine.tool_validator import ToolValidator
from toolserver.models.execution import ToolExecution
from toolserver.models.tool import Tool
from toolserver.schemas.tool import ToolCreate, ToolOut, ToolUpdate

router = APIRouter()
logger = logging.getLogger(__name__)


def _check_definition(kind: str, schema: dict, config: dict) -> None:
    validator = ToolValidator()
    errors = validator.validate_schema_definition(schema) + validator.validate_config(kind, config)
    if errors:
        raise HTTPException(422, {"message": "Invalid tool definition", "errors": errors})


async def _load(db: AsyncSession, tool_id: str, tenant_id: str) -> Tool:
    result = await db.execute(select(Tool).where(Tool.id == tool_id, Tool.tenant_id == tenant_id))
    tool = result.scalar_one_or_none()
    if not tool:
        raise HTTPException(404, "Tool not found")
    return tool


@router.get("/", response_model=list[ToolOut])
async def list_tools(
    tenant_id: str = "default",
    kind: str | None = None,
    category: str | None = None,
    enabled: bool | None = None,
    db: AsyncSession = Depends(get_db),
):
    stmt = select(Tool).where(Tool.tenant_id == tenant_id)
    if kind:
        stmt = stmt.where(Tool.kind == kind)
    if category:
        stmt = stmt.where(Tool.category == category)
    if enabled is not None:
        stmt = stmt.where(Tool.enabled == enabled)
    result = await db.execute(stmt.order_by(Tool.name))
    return result.scalars().all()


@router.post("/", response_model=ToolOut, status_code=201)
async def create_tool(body: ToolCreate, db: AsyncSession = Depends(get_db)):
    _check_definition(body.kind, body.tool_schema, body.config)
    tool = Tool(
        tenant_id=body.tenant_id,
        name=body.name,
        slug=body.slug,
        description=body.description,
        category=body.category,
        kind=body.kind,
        tool_schema=body.tool_schema,
        config=body.config,
        enabled=body.enabled,
    )
    db.add(tool)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise HTTPException(409, f"Tool slug '{body.slug}' already exists for this tenant")
    await db.refresh(tool)
    logger.info(f"Registered {tool.kind} tool '{tool.slug}' tenant={tool.tenant_id}")
    return tool


@router.get("/{tool_id}", response_model=ToolOut)
async def get_tool(tool_id: str, tenant_id: str = "default", db: AsyncSession = Depends(get_db)):
    return await _load(db, tool_id, tenant_id)


@router.put("/{tool_id}", response_model=ToolOut)
async def update_tool(tool_id: str, body: ToolUpdate, tenant_id: str = "default", db: AsyncSession = Depends(get_db)):
    tool = await _load(db, tool_id, tenant_id)

    update_data = body.model_dump(exclude_unset=True)
    if "tool_schema" in update_data or "config" in update_data:
        _check_definition(
            tool.kind,
            update_data.get("tool_schema", tool.tool_schema),
            update_data.get("config", tool.config),
        )
    for key, value in update_data.items():
        setattr(tool, key, value)

    await db.commit()
    await db.refresh(tool)
    return tool


@router.post("/{tool_id}/toggle", response_model=ToolOut)
async def toggle_tool(tool_id: str, tenant_id: str = "default", db: AsyncSession = Depends(get_db)):
    tool = await _load(db, tool_id, tenant_id)
    tool.enabled = not tool.enabled
    await db.commit()
    await db.refresh(tool)
    logger.info(f"Tool '{tool.slug}' {'enabled' if tool.enabled else 'disabled'} tenant={tool.tenant_id}")
    return tool


@router.delete("/{tool_id}", status_code=204)
async def delete_tool(tool_id: str, tenant_id: str = "default", db: AsyncSession = Depends(get_db)):
    tool = await _load(db, tool_id, tenant_id)
    # Executions are an audit trail; a tool that has run can only be disabled
    used = await db.execute(select(ToolExecution.id).where(ToolExecution.tool_id == tool.id).limit(1))
    if used.first() is not None:
        raise HTTPException(409, f"Tool '{tool.slug}' has executions and cannot be deleted; disable it instead")
    await db.delete(tool)
    await db.commit()
