"""Re-expose the tool catalog as Model Context Protocol manifests.

Pure transformations: no I/O, no database access.
"""

from __future__ import annotations

from typing import Any, Iterable

from toolserver.config import settings
from toolserver.engine.clock import isoformat, utcnow
from toolserver.engine.tool_registry import summarize
from toolserver.models.tool import Tool

_JSON_SCHEMA_TYPES = {"string", "number", "integer", "boolean", "array", "object"}


def _json_schema_type(field_type: Any) -> str:
    return field_type if field_type in _JSON_SCHEMA_TYPES else "string"


class MCPToolMapper:
    def __init__(
        self,
        protocol: str | None = None,
        version: str | None = None,
        server_name: str | None = None,
        server_version: str | None = None,
    ):
        self.protocol = protocol or settings.mcp_protocol
        self.version = version or settings.mcp_version
        self.server_name = server_name or settings.mcp_server_name
        self.server_version = server_version or settings.mcp_server_version

    def map_tool(self, tool: Tool) -> dict[str, Any]:
        return {
            "name": tool.slug,
            "description": tool.name,
            "inputSchema": self._input_schema(tool.inputs),
            "outputSchema": self._output_schema(tool.outputs),
            "metadata": {
                "category": tool.category,
                "kind": tool.kind,
                "tenant": tool.tenant_id,
                "last_executed_at": isoformat(tool.last_executed_at),
            },
        }

    def to_mcp_format(self, tools: Iterable[Tool]) -> dict[str, Any]:
        return {
            "tools": [self.map_tool(tool) for tool in tools],
            "version": self.version,
            "protocol": self.protocol,
        }

    def create_manifest(self, tools: Iterable[Tool], server_info: dict[str, Any] | None = None) -> dict[str, Any]:
        tools = list(tools)
        server = {
            "name": self.server_name,
            "version": self.server_version,
            "description": "Multi-tenant AI tool execution server",
        }
        server.update(server_info or {})
        return {
            "protocol": self.protocol,
            "version": self.version,
            "server": server,
            "capabilities": {
                "tools": True,
                "async_execution": True,
                "schema_validation": True,
                "multi_tenant": True,
            },
            "tools": [self.map_tool(tool) for tool in tools],
            "stats": summarize(tools),
        }

    def create_response(
        self, tool: Tool, result: dict[str, Any] | None = None, success: bool = True, error: str | None = None,
    ) -> dict[str, Any]:
        """Wrap an execution outcome in the MCP tool-result envelope."""
        return {
            "toolName": tool.slug,
            "success": success,
            "result": (result or {}) if success else None,
            "error": error,
            "timestamp": isoformat(utcnow()),
            "metadata": {
                "kind": tool.kind,
                "category": tool.category,
                "tenant": tool.tenant_id,
            },
        }

    def create_error(self, code: str, message: str, details: dict[str, Any] | None = None) -> dict[str, Any]:
        return {
            "error": {
                "code": code,
                "message": message,
                "details": details or {},
                "timestamp": isoformat(utcnow()),
            }
        }

    @staticmethod
    def _input_schema(inputs: list[dict]) -> dict[str, Any]:
        properties: dict[str, Any] = {}
        required: list[str] = []
        for field in inputs:
            name = field.get("name")
            if not name:
                continue
            properties[name] = {
                "type": _json_schema_type(field.get("type")),
                "description": field.get("description", ""),
            }
            if field.get("required", False):
                required.append(name)
        return {"type": "object", "properties": properties, "required": required}

    @staticmethod
    def _output_schema(outputs: list[dict]) -> dict[str, Any]:
        properties = {
            field["name"]: {
                "type": _json_schema_type(field.get("type")),
                "description": field.get("description", ""),
            }
            for field in outputs
            if field.get("name")
        }
        return {"type": "object", "properties": properties}
