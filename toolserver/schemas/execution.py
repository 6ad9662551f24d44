"""Schemas for tool execution requests and records."""

from __future__ import annotations

from typing import Any
from datetime import datetime

from pydantic import BaseModel, Field


class ExecuteRequest(BaseModel):
    payload: dict[str, Any] = Field(default_factory=dict)
    # Run inline and return the terminal record instead of ``accepted``
    sync: bool = False


class RetryRequest(BaseModel):
    sync: bool = False


class ExecutionOut(BaseModel):
    id: str
    tool_id: str
    agent_id: str
    tool_slug: str | None = None
    tool_name: str | None = None
    payload: Any
    status: str
    result: Any
    error: Any
    attempts: int
    started_at: datetime | None
    finished_at: datetime | None
    duration_ms: float | None = None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class ExecutionPageOut(BaseModel):
    items: list[ExecutionOut]
    total: int
    page: int
    page_size: int
    last_page: int


class MostUsedTool(BaseModel):
    tool_name: str
    tool_slug: str
    count: int


class ExecutionStatsOut(BaseModel):
    total: int
    successful: int
    failed: int
    pending: int
    success_rate: float
    most_used_tools: list[MostUsedTool]
