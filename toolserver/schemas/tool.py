"""Schemas for tool administration."""

from __future__ import annotations

from typing import Any, Literal
from datetime import datetime

from pydantic import BaseModel, Field


class ToolCreate(BaseModel):
    name: str
    slug: str = Field(min_length=1, max_length=128, pattern=r"^[a-z0-9][a-z0-9_\-]*$")
    description: str = ""
    category: str = "general"
    kind: Literal["internal", "external"]
    # Structure is checked by ToolValidator so every problem is reported at once
    tool_schema: dict[str, Any] = Field(default_factory=lambda: {"inputs": [], "outputs": []}, alias="schema")
    config: dict[str, Any] = Field(default_factory=dict)
    enabled: bool = True
    tenant_id: str = "default"

    model_config = {"populate_by_name": True}


class ToolUpdate(BaseModel):
    name: str | None = None
    description: str | None = None
    category: str | None = None
    tool_schema: dict[str, Any] | None = Field(default=None, alias="schema")
    config: dict[str, Any] | None = None
    enabled: bool | None = None

    model_config = {"populate_by_name": True}


class ToolOut(BaseModel):
    id: str
    tenant_id: str
    name: str
    slug: str
    description: str
    category: str
    kind: str
    tool_schema: Any = Field(alias="schema")
    config: Any
    enabled: bool
    last_executed_at: datetime | None
    last_error: Any
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True, "populate_by_name": True}
