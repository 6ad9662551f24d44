from toolserver.models.tool import Tool
from toolserver.models.agent import AiAgent
from toolserver.models.agent_tool import AgentTool
from toolserver.models.execution import ToolExecution

__all__ = [
    "Tool",
    "AiAgent",
    "AgentTool",
    "ToolExecution",
]
