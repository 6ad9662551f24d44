"""The queued unit of work for one tool execution.

Lifecycle per attempt:
  1. attempt 1 claims ``accepted -> running``; a duplicate delivery loses the
     claim and exits without touching anything. Later attempts continue only
     while the row is still ``running``.
  2. the runner for ``tool.kind`` performs the side effect under a
     wall-clock ceiling.
  3. the result is checked against the output schema.
  4. success commits the execution first, then the tool's last-run fields.
  5. a failure is stored on the execution; it becomes ``failed`` (and the
     tool's ``last_error``) only when no further attempt will follow.
  6. a worker stopped mid-attempt leaves the execution ``failed`` with kind
     ``WorkerInterrupted`` rather than stuck in ``running``.
"""

from __future__ import annotations

import asyncio
import logging
import math
from typing import Any

from toolserver.config import settings
from toolserver.engine.clock import Clock, isoformat, utcnow
from toolserver.engine.execution_store import ExecutionStore
from toolserver.engine.executors.base import ToolRunner
from toolserver.engine.tool_validator import ToolValidator
from toolserver.errors import ExternalExecutionError, SchemaValidationError, ToolConfigurationError, ToolTimeoutError
from toolserver.models.tool import Tool

logger = logging.getLogger(__name__)

EXHAUSTED_MESSAGE = "Job failed after maximum attempts"
INTERRUPTED_MESSAGE = "Worker stopped before the attempt finished"


def queue_for_kind(kind: str) -> str:
    return settings.external_queue if kind == "external" else settings.internal_queue


def error_record(exc: Exception, attempt: int, max_attempts: int, now: str | None) -> dict[str, Any]:
    record: dict[str, Any] = {
        "message": str(exc),
        "kind": type(exc).__name__,
        "attempt": attempt,
        "max_attempts": max_attempts,
        "recoverable": bool(getattr(exc, "recoverable", True)),
        "failed_at": now,
    }
    if isinstance(exc, SchemaValidationError):
        record["errors"] = exc.errors
    if isinstance(exc, ExternalExecutionError) and exc.status_code is not None:
        record["status_code"] = exc.status_code
    return record


def interrupted_error(attempt: int, max_attempts: int, now: str | None) -> dict[str, Any]:
    return {
        "message": INTERRUPTED_MESSAGE,
        "kind": "WorkerInterrupted",
        "attempt": attempt,
        "max_attempts": max_attempts,
        "recoverable": False,
        "failed_at": now,
    }


class ExecuteToolJob:
    def __init__(
        self,
        execution_id: str,
        tool_kind: str,
        store: ExecutionStore,
        runners: dict[str, ToolRunner],
        validator: ToolValidator | None = None,
        *,
        tries: int | None = None,
        timeout: float | None = None,
        unique_for: int | None = None,
        clock: Clock = utcnow,
    ):
        self.execution_id = execution_id
        self.tool_kind = tool_kind
        self.store = store
        self.runners = runners
        self.validator = validator or ToolValidator()
        self.tries = tries or settings.job_tries
        self.timeout = timeout or settings.job_timeout
        self.unique_for = unique_for or max(settings.job_unique_for, self.max_runtime())
        self.queue = queue_for_kind(tool_kind)
        self.clock = clock

    def max_runtime(self) -> int:
        """Worst case for every attempt plus the backoff between them, in seconds."""
        backoff = settings.job_backoff_seconds * (2 ** (self.tries - 1) - 1)
        return math.ceil(self.tries * self.timeout + backoff)

    def unique_id(self) -> str:
        return f"execute_tool_{self.execution_id}"

    async def handle(self, attempt: int = 1) -> None:
        now = self.clock()
        if attempt == 1:
            owned = await self.store.claim(self.execution_id, now)
        else:
            owned = await self.store.continue_attempt(self.execution_id, attempt, now)
        if not owned:
            current = await self.store.get(self.execution_id)
            logger.warning(
                f"Execution {self.execution_id} not runnable on attempt {attempt} "
                f"(status={current.status if current else 'missing'}); skipping"
            )
            return

        execution = await self.store.get(self.execution_id)
        tool = await self.store.get_tool(execution.tool_id)
        logger.info(
            f"Starting tool execution {execution.id} tool='{tool.slug}' kind={tool.kind} "
            f"attempt={attempt}/{self.tries}"
        )

        try:
            runner = self.runners.get(tool.kind)
            if runner is None:
                raise ToolConfigurationError(tool.name, f"Unknown tool kind: {tool.kind}")
            try:
                result = await asyncio.wait_for(runner.run(tool, execution), timeout=self.timeout)
            except asyncio.TimeoutError:
                raise ToolTimeoutError(tool.name, self.timeout) from None
            self.validator.validate_result(tool, runner.output_for_validation(result))
        except asyncio.CancelledError:
            await self._record_interrupted(tool, attempt)
            raise
        except Exception as exc:
            await self._record_failure(tool, exc, attempt)
            raise

        finished = self.clock()
        await self.store.mark_success(execution.id, result, finished)
        await self.store.update_tool_last_run(tool.id, finished)
        elapsed_ms = (finished - execution.created_at).total_seconds() * 1000
        logger.info(f"Tool execution {execution.id} succeeded tool='{tool.slug}' in {elapsed_ms:.0f}ms")

    async def _record_failure(self, tool: Tool, exc: Exception, attempt: int) -> None:
        now = self.clock()
        error = error_record(exc, attempt, self.tries, isoformat(now))
        final = attempt >= self.tries or not error["recoverable"]
        logger.error(
            f"Tool execution {self.execution_id} failed tool='{tool.slug}' "
            f"attempt={attempt}/{self.tries} final={final}: {exc}"
        )
        if final:
            await self.store.mark_failed(self.execution_id, error, now)
            await self.store.update_tool_last_error(tool.id, error)
        else:
            await self.store.record_attempt_error(self.execution_id, error, now)

    async def _record_interrupted(self, tool: Tool, attempt: int) -> None:
        now = self.clock()
        error = interrupted_error(attempt, self.tries, isoformat(now))
        logger.error(f"Tool execution {self.execution_id} interrupted tool='{tool.slug}' attempt={attempt}/{self.tries}")
        await self.store.mark_failed(self.execution_id, error, now)
        await self.store.update_tool_last_error(tool.id, error)

    async def failed(self, exc: Exception, attempts: int) -> None:
        """Called by the queue once the job will not be attempted again."""
        logger.critical(
            f"Tool execution job {self.execution_id} failed permanently after {attempts} attempt(s): {exc}"
        )
        if not getattr(exc, "recoverable", True) or attempts < self.tries:
            return
        now = self.clock()
        await self.store.mark_exhausted(
            self.execution_id,
            {
                "message": EXHAUSTED_MESSAGE,
                "original_error": str(exc),
                "kind": type(exc).__name__,
                "attempts": attempts,
                "max_attempts": self.tries,
                "failed_at": isoformat(now),
            },
            now,
        )
