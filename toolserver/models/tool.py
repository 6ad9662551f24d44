"""Tool model: a tenant-owned, schema-described callable capability."""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import String, Text, Boolean, DateTime, JSON, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from toolserver.db import Base
from toolserver.engine.clock import utcnow

TOOL_KINDS = ("internal", "external")


class Tool(Base):
    """A registered tool, executed in-process (internal) or over HTTP (external)."""

    __tablename__ = "tools"
    __table_args__ = (UniqueConstraint("tenant_id", "slug", name="uq_tools_tenant_slug"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    tenant_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    slug: Mapped[str] = mapped_column(String(128), nullable=False)
    description: Mapped[str] = mapped_column(Text, default="")
    # Free-text grouping: ticket | conversation | crm | ...
    category: Mapped[str] = mapped_column(String(100), default="general")
    kind: Mapped[str] = mapped_column(String(16), nullable=False)  # internal | external
    # {"inputs": [field, ...], "outputs": [field, ...]}
    tool_schema: Mapped[dict] = mapped_column("schema", JSON, default=lambda: {"inputs": [], "outputs": []})
    # internal: {action, department?, priority?, tags?}
    # external: {url, method, timeout?, retries?, headers?, auth?, body?}
    config: Mapped[dict] = mapped_column(JSON, default=dict)
    enabled: Mapped[bool] = mapped_column(Boolean, default=True)
    # Bookkeeping, written only by the execution job
    last_executed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    last_error: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

    @property
    def inputs(self) -> list[dict]:
        return list((self.tool_schema or {}).get("inputs") or [])

    @property
    def outputs(self) -> list[dict]:
        return list((self.tool_schema or {}).get("outputs") or [])
