"""Tool server exceptions.

Every error carries a ``recoverable`` flag. The work queue retries a failed
job attempt only while the raised error is recoverable; client-facing errors
raised from ``ToolExecutor.execute`` are never retried.
"""

from __future__ import annotations

from typing import Any


class ToolServerError(Exception):
    recoverable: bool = False

    def __init__(self, message: str, recoverable: bool | None = None):
        if recoverable is not None:
            self.recoverable = recoverable
        super().__init__(message)

    @property
    def kind(self) -> str:
        return type(self).__name__


# ── Catalog / authorization ─────────────────────────────────────


class ToolNotFoundError(ToolServerError):
    def __init__(self, tool_slug: str):
        self.tool_slug = tool_slug
        super().__init__(f"Tool '{tool_slug}' not found or not accessible")


class ToolDisabledError(ToolServerError):
    def __init__(self, tool_name: str):
        self.tool_name = tool_name
        super().__init__(f"Tool '{tool_name}' is currently disabled")


class NotAuthorizedError(ToolServerError):
    def __init__(self, agent_id: str, tool_name: str):
        self.agent_id = agent_id
        self.tool_name = tool_name
        super().__init__(f"Agent {agent_id} is not authorized to execute tool '{tool_name}'")


class AgentNotFoundError(ToolServerError):
    def __init__(self, agent_id: str):
        self.agent_id = agent_id
        super().__init__(f"Agent {agent_id} not found")


class ExecutionNotFoundError(ToolServerError):
    def __init__(self, execution_id: str):
        self.execution_id = execution_id
        super().__init__(f"Execution {execution_id} not found")


class ExecutionStateError(ToolServerError):
    """A control action (cancel, retry) is not allowed in the current status."""

    def __init__(self, execution_id: str, status: str, action: str):
        self.execution_id = execution_id
        self.status = status
        self.action = action
        super().__init__(f"Execution is in '{status}' status and cannot be {action}")


# ── Validation ──────────────────────────────────────────────────


class SchemaValidationError(ToolServerError):
    """Payload or schema violations, collected rather than short-circuited."""

    def __init__(self, tool_name: str, errors: list[str], *, context: str = "payload"):
        self.tool_name = tool_name
        self.errors = list(errors)
        self.context = context
        super().__init__(f"Invalid {context} for tool '{tool_name}': {', '.join(self.errors)}")


class OutputValidationError(SchemaValidationError):
    """The backend succeeded but its result does not match the output schema.

    Not retried: re-running would repeat a side effect that already happened.
    """

    def __init__(self, tool_name: str, errors: list[str]):
        super().__init__(tool_name, errors, context="output")


class ActionValidationError(ToolServerError):
    """An internal action is missing fields it needs (below the schema layer)."""

    recoverable = True


# ── Execution ───────────────────────────────────────────────────


class ToolConfigurationError(ToolServerError):
    """The tool itself is misconfigured (unknown kind/action, no URL, ...)."""

    def __init__(self, tool_name: str, message: str):
        self.tool_name = tool_name
        super().__init__(f"Tool '{tool_name}' is misconfigured: {message}")


class ExternalExecutionError(ToolServerError):
    recoverable = True

    def __init__(self, tool_name: str, reason: str, *, status_code: int | None = None, body: Any = None):
        self.tool_name = tool_name
        self.status_code = status_code
        self.body = body
        super().__init__(f"External tool '{tool_name}' execution failed: {reason}")


class ToolTimeoutError(ToolServerError):
    recoverable = True

    def __init__(self, tool_name: str, timeout: float):
        self.tool_name = tool_name
        self.timeout = timeout
        super().__init__(f"Tool '{tool_name}' execution timed out after {timeout:g} seconds")
