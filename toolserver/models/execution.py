"""ToolExecution model: one invocation of a tool by an agent (append-only)."""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import String, Integer, DateTime, JSON, ForeignKey
from sqlalchemy.orm import Mapped, mapped_column

from toolserver.db import Base
from toolserver.engine.clock import utcnow

ACCEPTED = "accepted"
RUNNING = "running"
SUCCESS = "success"
FAILED = "failed"
CANCELLED = "cancelled"

EXECUTION_STATUSES = (ACCEPTED, RUNNING, SUCCESS, FAILED, CANCELLED)
TERMINAL_STATUSES = frozenset({SUCCESS, FAILED, CANCELLED})


class ToolExecution(Base):
    __tablename__ = "tool_executions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    tool_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("tools.id", ondelete="RESTRICT"), nullable=False, index=True,
    )
    agent_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("ai_agents.id", ondelete="RESTRICT"), nullable=False, index=True,
    )
    payload: Mapped[dict] = mapped_column(JSON, default=dict)
    # accepted -> running -> success | failed ; accepted -> cancelled
    status: Mapped[str] = mapped_column(String(16), default=ACCEPTED, index=True)
    result: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    # {message, kind, attempt, max_attempts, failed_at}
    error: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    attempts: Mapped[int] = mapped_column(Integer, default=0)
    started_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    finished_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, index=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def duration_ms(self) -> float | None:
        if not self.started_at or not self.finished_at:
            return None
        return (self.finished_at - self.started_at).total_seconds() * 1000
