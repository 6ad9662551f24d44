"""In-process helpdesk actions run by internal tools."""

from __future__ import annotations

import logging
import uuid
from typing import Any, Callable

from toolserver.engine.clock import Clock, isoformat, utcnow
from toolserver.engine.executors.base import ToolRunner
from toolserver.errors import ActionValidationError, ToolConfigurationError
from toolserver.models.execution import ToolExecution
from toolserver.models.tool import Tool

logger = logging.getLogger(__name__)

ActionHandler = Callable[[dict[str, Any], dict[str, Any]], dict[str, Any]]


def _require(payload: dict[str, Any], *names: str) -> None:
    missing = [name for name in names if payload.get(name) in (None, "")]
    if missing:
        raise ActionValidationError(f"{' and '.join(missing)} {'is' if len(missing) == 1 else 'are'} required")


class InternalToolExecutor(ToolRunner):
    """Dispatches ``config.action`` to one of a fixed set of handlers."""

    kind = "internal"

    def __init__(self, clock: Clock = utcnow):
        self.clock = clock
        self.actions: dict[str, ActionHandler] = {
            "create_ticket": self.create_ticket,
            "transfer_department": self.transfer_department,
            "send_message": self.send_message,
            "close_conversation": self.close_conversation,
            "assign_agent": self.assign_agent,
        }

    async def run(self, tool: Tool, execution: ToolExecution) -> dict[str, Any]:
        config = tool.config or {}
        action = config.get("action")
        handler = self.actions.get(action)
        if handler is None:
            raise ToolConfigurationError(tool.name, f"Unknown internal action: {action or 'none'}")

        logger.info(f"Executing internal tool '{tool.slug}' action={action} execution={execution.id}")
        result = handler(dict(execution.payload or {}), config)
        logger.info(f"Internal tool '{tool.slug}' finished execution={execution.id}")
        return result

    def _now(self) -> str | None:
        return isoformat(self.clock())

    # ── Actions ──────────────────────────────────────────────────

    def create_ticket(self, payload: dict[str, Any], config: dict[str, Any]) -> dict[str, Any]:
        priority = payload.get("priority") or config.get("priority") or "medium"
        return {
            "ticket_id": f"ticket_{uuid.uuid4().hex[:12]}",
            "title": payload.get("title") or "Ticket created by AI agent",
            "status": "created",
            "priority": priority,
            "department": payload.get("department_id") or config.get("department"),
            "customer_id": payload.get("customer_id"),
            "tags": list(config.get("tags") or []),
            "created_by": "ai_agent",
            "created_at": self._now(),
        }

    def transfer_department(self, payload: dict[str, Any], config: dict[str, Any]) -> dict[str, Any]:
        department_id = payload.get("department_id") or config.get("department")
        _require({**payload, "department_id": department_id}, "conversation_id", "department_id")
        return {
            "conversation_id": payload["conversation_id"],
            "new_department_id": department_id,
            "transfer_reason": payload.get("reason") or "Transfer by AI agent",
            "status": "transferred",
            "transferred_at": self._now(),
        }

    def send_message(self, payload: dict[str, Any], config: dict[str, Any]) -> dict[str, Any]:
        _require(payload, "conversation_id", "message")
        return {
            "conversation_id": payload["conversation_id"],
            "message_id": f"msg_{uuid.uuid4().hex[:12]}",
            "message_type": payload.get("type") or "text",
            "status": "sent",
            "timestamp": self._now(),
        }

    def close_conversation(self, payload: dict[str, Any], config: dict[str, Any]) -> dict[str, Any]:
        _require(payload, "conversation_id")
        return {
            "conversation_id": payload["conversation_id"],
            "status": "closed",
            "reason": payload.get("reason") or "Closed by AI agent",
            "notification_sent": bool(payload.get("send_notification", True)),
            "closed_at": self._now(),
        }

    def assign_agent(self, payload: dict[str, Any], config: dict[str, Any]) -> dict[str, Any]:
        _require(payload, "conversation_id", "agent_id")
        return {
            "conversation_id": payload["conversation_id"],
            "agent_id": payload["agent_id"],
            "priority": payload.get("priority") or config.get("priority") or "normal",
            "status": "assigned",
            "assigned_at": self._now(),
        }
