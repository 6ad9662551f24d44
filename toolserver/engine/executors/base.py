"""Common contract for tool executors."""

from __future__ import annotations

from typing import Any

from toolserver.models.execution import ToolExecution
from toolserver.models.tool import Tool


class ToolRunner:
    """Performs the side-effecting work of one execution attempt.

    Each tool kind has one runner; new kinds are added as new subclasses and
    registered with ``ExecuteToolJob`` rather than by editing a dispatcher.
    """

    kind: str = ""

    async def run(self, tool: Tool, execution: ToolExecution) -> dict[str, Any]:
        raise NotImplementedError

    def output_for_validation(self, result: dict[str, Any]) -> Any:
        """The part of ``result`` that the tool's output schema describes."""
        return result
