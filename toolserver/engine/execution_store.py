"""Explicit state transitions over ToolExecution rows.

Every transition is a conditional UPDATE on the expected current status, so
two workers racing on the same execution cannot both move it forward and a
terminal status is never overwritten by an earlier one.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from toolserver.models.execution import ACCEPTED, CANCELLED, FAILED, RUNNING, SUCCESS, ToolExecution
from toolserver.models.tool import Tool


class ExecutionStore:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def get(self, execution_id: str) -> ToolExecution | None:
        async with self.session_factory() as session:
            return await session.get(ToolExecution, execution_id)

    async def get_tool(self, tool_id: str) -> Tool | None:
        async with self.session_factory() as session:
            return await session.get(Tool, tool_id)

    async def accepted_ids(self) -> list[tuple[str, str]]:
        """(execution_id, tool kind) for every execution still waiting to run."""
        async with self.session_factory() as session:
            result = await session.execute(
                select(ToolExecution.id, Tool.kind)
                .join(Tool, Tool.id == ToolExecution.tool_id)
                .where(ToolExecution.status == ACCEPTED)
                .order_by(ToolExecution.created_at)
            )
            return [(row[0], row[1]) for row in result.all()]

    async def stale_running(self, before: datetime) -> list[tuple[str, str, int]]:
        """(execution_id, tool_id, attempts) for ``running`` rows untouched since ``before``."""
        async with self.session_factory() as session:
            result = await session.execute(
                select(ToolExecution.id, ToolExecution.tool_id, ToolExecution.attempts)
                .where(ToolExecution.status == RUNNING, ToolExecution.updated_at < before)
                .order_by(ToolExecution.created_at)
            )
            return [(row[0], row[1], row[2]) for row in result.all()]

    async def _transition(self, execution_id: str, from_status: tuple[str, ...], **values: Any) -> bool:
        async with self.session_factory() as session:
            result = await session.execute(
                update(ToolExecution)
                .where(ToolExecution.id == execution_id, ToolExecution.status.in_(from_status))
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            await session.commit()
            return result.rowcount == 1

    # ── Transitions ──────────────────────────────────────────────

    async def claim(self, execution_id: str, now: datetime) -> bool:
        """accepted -> running; False if someone else got there first."""
        return await self._transition(
            execution_id, (ACCEPTED,), status=RUNNING, attempts=1, started_at=now, updated_at=now,
        )

    async def continue_attempt(self, execution_id: str, attempt: int, now: datetime) -> bool:
        """Start a retry attempt of an execution this job already owns."""
        return await self._transition(execution_id, (RUNNING,), attempts=attempt, updated_at=now)

    async def record_attempt_error(self, execution_id: str, error: dict[str, Any], now: datetime) -> bool:
        return await self._transition(execution_id, (RUNNING,), error=error, updated_at=now)

    async def mark_success(self, execution_id: str, result: dict[str, Any], now: datetime) -> bool:
        return await self._transition(
            execution_id, (RUNNING,), status=SUCCESS, result=result, error=None, finished_at=now, updated_at=now,
        )

    async def mark_failed(self, execution_id: str, error: dict[str, Any], now: datetime) -> bool:
        return await self._transition(
            execution_id, (RUNNING,), status=FAILED, result=None, error=error, finished_at=now, updated_at=now,
        )

    async def mark_interrupted(self, execution_id: str, error: dict[str, Any], before: datetime, now: datetime) -> bool:
        """running -> failed for a row whose worker went away; skips rows touched since ``before``."""
        async with self.session_factory() as session:
            result = await session.execute(
                update(ToolExecution)
                .where(
                    ToolExecution.id == execution_id,
                    ToolExecution.status == RUNNING,
                    ToolExecution.updated_at < before,
                )
                .values(status=FAILED, result=None, error=error, finished_at=now, updated_at=now)
                .execution_options(synchronize_session=False)
            )
            await session.commit()
            return result.rowcount == 1

    async def mark_exhausted(self, execution_id: str, error: dict[str, Any], now: datetime) -> bool:
        """Overwrite the error of a permanently failed job with the exhausted marker."""
        return await self._transition(
            execution_id, (RUNNING, FAILED), status=FAILED, result=None, error=error, finished_at=now, updated_at=now,
        )

    async def cancel(self, execution_id: str, error: dict[str, Any], now: datetime) -> bool:
        return await self._transition(
            execution_id, (ACCEPTED,), status=CANCELLED, error=error, finished_at=now, updated_at=now,
        )

    # ── Tool bookkeeping (after the execution row is committed) ──

    async def update_tool_last_run(self, tool_id: str, now: datetime) -> None:
        async with self.session_factory() as session:
            await session.execute(
                update(Tool)
                .where(Tool.id == tool_id)
                .values(last_executed_at=now, last_error=None)
                .execution_options(synchronize_session=False)
            )
            await session.commit()

    async def update_tool_last_error(self, tool_id: str, error: dict[str, Any]) -> None:
        async with self.session_factory() as session:
            await session.execute(
                update(Tool)
                .where(Tool.id == tool_id)
                .values(last_error=error)
                .execution_options(synchronize_session=False)
            )
            await session.commit()
