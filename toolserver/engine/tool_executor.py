"""The entry point agents use to run tools.

``execute`` does only fast bookkeeping (lookup, authorization, payload
validation, record creation, enqueue) and returns the ``accepted`` record;
the side effect happens later in ``ExecuteToolJob``. ``execute_sync`` runs
the job inline and is meant for tests and callers that need the outcome.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from toolserver.config import settings
from toolserver.engine.clock import Clock, isoformat, utcnow
from toolserver.engine.execute_tool_job import ExecuteToolJob, interrupted_error
from toolserver.engine.execution_store import ExecutionStore
from toolserver.engine.executors.base import ToolRunner
from toolserver.engine.executors.external import ExternalToolExecutor
from toolserver.engine.executors.internal import InternalToolExecutor
from toolserver.engine.tool_registry import ToolRegistry
from toolserver.engine.tool_validator import ToolValidator
from toolserver.engine.work_queue import AsyncioWorkQueue
from toolserver.errors import (
    ExecutionNotFoundError,
    ExecutionStateError,
    NotAuthorizedError,
    ToolDisabledError,
    ToolNotFoundError,
)
from toolserver.models.agent import AiAgent
from toolserver.models.execution import ACCEPTED, FAILED, SUCCESS, ToolExecution
from toolserver.models.tool import Tool

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 15
MAX_PAGE_SIZE = 100

PERIODS: dict[str, timedelta] = {
    "1 day": timedelta(days=1),
    "1 week": timedelta(weeks=1),
    "1 month": timedelta(days=30),
    "3 months": timedelta(days=90),
}


def default_runners() -> dict[str, ToolRunner]:
    runners: list[ToolRunner] = [InternalToolExecutor(), ExternalToolExecutor()]
    return {runner.kind: runner for runner in runners}


def success_rate(successful: int, failed: int) -> float:
    completed = successful + failed
    if completed == 0:
        return 0.0
    return successful / completed * 100


@dataclass
class ExecutionPage:
    items: list[ToolExecution]
    total: int
    page: int
    page_size: int
    tools: dict[str, Tool] = field(default_factory=dict)

    @property
    def last_page(self) -> int:
        return max(1, math.ceil(self.total / self.page_size))


class ToolExecutor:
    def __init__(
        self,
        db: AsyncSession,
        queue: AsyncioWorkQueue,
        store: ExecutionStore,
        *,
        registry: ToolRegistry | None = None,
        validator: ToolValidator | None = None,
        runners: dict[str, ToolRunner] | None = None,
        job_factory: Callable[[ToolExecution, Tool], ExecuteToolJob] | None = None,
        clock: Clock = utcnow,
    ):
        self.db = db
        self.queue = queue
        self.store = store
        self.registry = registry or ToolRegistry(db)
        self.validator = validator or ToolValidator()
        self.runners = runners if runners is not None else default_runners()
        self.job_factory = job_factory or self._make_job
        self.clock = clock

    def _make_job(self, execution: ToolExecution, tool: Tool) -> ExecuteToolJob:
        return ExecuteToolJob(execution.id, tool.kind, self.store, self.runners, self.validator, clock=self.clock)

    # ── Execution ────────────────────────────────────────────────

    async def execute(self, agent: AiAgent, tool_slug: str, payload: dict[str, Any]) -> ToolExecution:
        tool, execution = await self._prepare(agent, tool_slug, payload)
        await self.queue.enqueue(self.job_factory(execution, tool))
        logger.info(
            f"Tool execution initiated execution={execution.id} tool='{tool.slug}' "
            f"agent={agent.id} tenant={agent.tenant_id}"
        )
        return execution

    async def execute_sync(self, agent: AiAgent, tool_slug: str, payload: dict[str, Any]) -> ToolExecution:
        tool, execution = await self._prepare(agent, tool_slug, payload)
        logger.info(f"Running tool execution {execution.id} inline tool='{tool.slug}' agent={agent.id}")
        await self.queue.run_now(self.job_factory(execution, tool))
        await self.db.refresh(execution)
        return execution

    async def _prepare(self, agent: AiAgent, tool_slug: str, payload: dict[str, Any]) -> tuple[Tool, ToolExecution]:
        tool = await self.registry.find(agent, tool_slug, include_disabled=True)
        if tool is None:
            raise ToolNotFoundError(tool_slug)
        if not tool.enabled:
            raise ToolDisabledError(tool.name)
        if not await self.registry.can_access(agent, tool):
            raise NotAuthorizedError(agent.id, tool.name)

        self.validator.validate_payload(tool, payload)

        now = self.clock()
        execution = ToolExecution(
            tool_id=tool.id,
            agent_id=agent.id,
            payload=payload,
            status=ACCEPTED,
            result=None,
            error=None,
            attempts=0,
            created_at=now,
            updated_at=now,
        )
        self.db.add(execution)
        await self.db.commit()
        await self.db.refresh(execution)
        return tool, execution

    async def recover_pending(self, stale_after: timedelta | None = None) -> int:
        """Re-enqueue executions left ``accepted`` by a previous process.

        Executions stuck in ``running`` longer than one attempt plus the longest
        backoff lost their worker; they are failed as ``WorkerInterrupted``.
        """
        await self.fail_interrupted(stale_after)
        count = 0
        for execution_id, kind in await self.store.accepted_ids():
            job = ExecuteToolJob(execution_id, kind, self.store, self.runners, self.validator, clock=self.clock)
            if await self.queue.enqueue(job):
                count += 1
        if count:
            logger.info(f"Recovered {count} pending tool execution(s)")
        return count

    async def fail_interrupted(self, stale_after: timedelta | None = None) -> int:
        if stale_after is None:
            stale_after = timedelta(
                seconds=settings.job_timeout + settings.job_backoff_seconds * 2 ** (settings.job_tries - 1)
            )
        now = self.clock()
        before = now - stale_after
        count = 0
        for execution_id, tool_id, attempts in await self.store.stale_running(before):
            error = interrupted_error(attempts, settings.job_tries, isoformat(now))
            if await self.store.mark_interrupted(execution_id, error, before, now):
                await self.store.update_tool_last_error(tool_id, error)
                count += 1
        if count:
            logger.warning(f"Failed {count} tool execution(s) interrupted while running")
        return count

    # ── Control actions ──────────────────────────────────────────

    async def get_execution(self, agent: AiAgent, execution_id: str) -> ToolExecution:
        result = await self.db.execute(
            select(ToolExecution).where(ToolExecution.id == execution_id, ToolExecution.agent_id == agent.id)
        )
        execution = result.scalar_one_or_none()
        if execution is None:
            raise ExecutionNotFoundError(execution_id)
        return execution

    async def cancel(self, agent: AiAgent, execution_id: str) -> ToolExecution:
        """Cancel an execution that has not been picked up yet."""
        execution = await self.get_execution(agent, execution_id)
        if execution.status != ACCEPTED:
            raise ExecutionStateError(execution.id, execution.status, "cancelled")

        now = self.clock()
        cancelled = await self.store.cancel(
            execution.id,
            {"message": "Execution cancelled by request", "cancelled_at": isoformat(now)},
            now,
        )
        await self.db.refresh(execution)
        if not cancelled:
            # A worker claimed it between the read and the update
            raise ExecutionStateError(execution.id, execution.status, "cancelled")
        logger.info(f"Tool execution {execution.id} cancelled agent={agent.id}")
        return execution

    async def retry(self, agent: AiAgent, execution_id: str, *, sync: bool = False) -> ToolExecution:
        """Run a failed execution again as a brand-new execution."""
        original = await self.get_execution(agent, execution_id)
        if original.status != FAILED:
            raise ExecutionStateError(original.id, original.status, "retried")

        tool = await self.db.get(Tool, original.tool_id)
        if tool is None:
            raise ToolNotFoundError(original.tool_id)
        payload = dict(original.payload or {})
        new = await (self.execute_sync if sync else self.execute)(agent, tool.slug, payload)
        logger.info(f"Tool execution {original.id} retried as {new.id}")
        return new

    # ── Queries ──────────────────────────────────────────────────

    async def list_executions(self, agent: AiAgent, filters: dict[str, Any] | None = None) -> ExecutionPage:
        filters = filters or {}
        page = max(1, int(filters.get("page") or 1))
        page_size = min(MAX_PAGE_SIZE, max(1, int(filters.get("page_size") or DEFAULT_PAGE_SIZE)))

        conditions = [ToolExecution.agent_id == agent.id]
        if filters.get("status"):
            conditions.append(ToolExecution.status == filters["status"])
        if filters.get("tool_slug"):
            conditions.append(
                ToolExecution.tool_id.in_(
                    select(Tool.id).where(Tool.slug == filters["tool_slug"], Tool.tenant_id == agent.tenant_id)
                )
            )
        if filters.get("from"):
            conditions.append(ToolExecution.created_at >= _as_datetime(filters["from"]))
        if filters.get("to"):
            conditions.append(ToolExecution.created_at <= _as_datetime(filters["to"]))

        total = (await self.db.execute(select(func.count(ToolExecution.id)).where(*conditions))).scalar() or 0
        result = await self.db.execute(
            select(ToolExecution)
            .where(*conditions)
            .order_by(ToolExecution.created_at.desc(), ToolExecution.id.desc())
            .offset((page - 1) * page_size)
            .limit(page_size)
        )
        items = list(result.scalars().all())
        return ExecutionPage(items=items, total=total, page=page, page_size=page_size, tools=await self._tools_for(items))

    async def _tools_for(self, executions: list[ToolExecution]) -> dict[str, Tool]:
        tool_ids = {e.tool_id for e in executions}
        if not tool_ids:
            return {}
        result = await self.db.execute(select(Tool).where(Tool.id.in_(tool_ids)))
        return {t.id: t for t in result.scalars().all()}

    async def stats(self, agent: AiAgent, period: str | timedelta | None = None) -> dict[str, Any]:
        conditions = [ToolExecution.agent_id == agent.id]
        if period:
            if isinstance(period, str) and period not in PERIODS:
                raise ValueError(f"Unknown stats period '{period}', expected one of: {', '.join(PERIODS)}")
            window = PERIODS[period] if isinstance(period, str) else period
            conditions.append(ToolExecution.created_at >= self.clock() - window)

        rows = await self.db.execute(
            select(ToolExecution.status, func.count(ToolExecution.id)).where(*conditions).group_by(ToolExecution.status)
        )
        by_status = {status: count for status, count in rows.all()}
        successful = by_status.get(SUCCESS, 0)
        failed = by_status.get(FAILED, 0)

        usage = await self.db.execute(
            select(Tool.name, Tool.slug, func.count(ToolExecution.id).label("count"))
            .join(Tool, Tool.id == ToolExecution.tool_id)
            .where(*conditions)
            .group_by(Tool.id, Tool.name, Tool.slug)
            .order_by(func.count(ToolExecution.id).desc(), Tool.name)
            .limit(5)
        )

        return {
            "total": sum(by_status.values()),
            "successful": successful,
            "failed": failed,
            "pending": by_status.get(ACCEPTED, 0),
            "success_rate": success_rate(successful, failed),
            "most_used_tools": [
                {"tool_name": name, "tool_slug": slug, "count": count} for name, slug, count in usage.all()
            ],
        }


def _as_datetime(value: str | datetime) -> datetime:
    """Timestamps are stored as naive UTC."""
    if isinstance(value, str):
        value = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value
