"""Schemas for AI agent CRUD and tool links."""

from __future__ import annotations

from typing import Any
from datetime import datetime

from pydantic import BaseModel


class AgentCreate(BaseModel):
    name: str
    description: str = ""
    context: dict[str, Any] | None = None
    rules: dict[str, Any] | None = None
    enabled: bool = True
    tenant_id: str = "default"


class AgentOut(BaseModel):
    id: str
    tenant_id: str
    name: str
    description: str
    context: Any
    rules: Any
    enabled: bool
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class AgentToolLinkOut(BaseModel):
    agent_id: str
    tool_id: str
    created_at: datetime

    model_config = {"from_attributes": True}
