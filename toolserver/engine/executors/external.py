"""External tools: one outbound HTTP call per execution attempt."""

from __future__ import annotations

import asyncio
import json
import logging
import re
import time
from typing import Any
from urllib.parse import quote

import httpx

from toolserver.config import settings
from toolserver.engine.clock import Clock, isoformat, utcnow
from toolserver.engine.executors.base import ToolRunner
from toolserver.engine.secrets import SecretStore
from toolserver.errors import ExternalExecutionError, ToolConfigurationError
from toolserver.models.execution import ToolExecution
from toolserver.models.tool import Tool

logger = logging.getLogger(__name__)

HTTP_METHODS = ("GET", "POST", "PUT", "PATCH", "DELETE")
BODY_METHODS = ("POST", "PUT", "PATCH")
MAX_ERROR_BODY = 500

_SECRET_RE = re.compile(r"\{\{\s*secret\.([^}\s]+)\s*\}\}")
_ENV_RE = re.compile(r"\{\{\s*env\.([^}\s]+)\s*\}\}")
_URL_PLACEHOLDER_RE = re.compile(r"\{([^{}]+)\}")


def get_path(data: Any, path: str) -> Any:
    current = data
    for segment in path.split("."):
        if isinstance(current, dict) and segment in current:
            current = current[segment]
        else:
            return None
    return current


def pop_path(data: dict[str, Any], path: str) -> None:
    *parents, last = path.split(".")
    current: Any = data
    for segment in parents:
        current = current.get(segment) if isinstance(current, dict) else None
        if not isinstance(current, dict):
            return
    if isinstance(current, dict):
        current.pop(last, None)


def _copy(payload: dict[str, Any]) -> dict[str, Any]:
    return json.loads(json.dumps(payload))


def _query_value(value: Any) -> Any:
    if isinstance(value, (str, int, float, bool)) or value is None:
        return value
    if isinstance(value, list) and all(isinstance(v, (str, int, float, bool)) for v in value):
        return value
    return json.dumps(value)


class ExternalToolExecutor(ToolRunner):
    """Build and send the HTTP request described by a tool's config.

    ``config.retries`` is the number of transport tries inside one execution
    attempt; it is independent of the job-level attempt ceiling.
    """

    kind = "external"

    def __init__(
        self,
        secrets: SecretStore | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        retry_sleep_ms: int | None = None,
        clock: Clock = utcnow,
    ):
        self.secrets = secrets or SecretStore()
        self.transport = transport
        self.retry_sleep_ms = settings.external_retry_sleep_ms if retry_sleep_ms is None else retry_sleep_ms
        self.clock = clock

    async def run(self, tool: Tool, execution: ToolExecution) -> dict[str, Any]:
        config = tool.config or {}
        if not config.get("url"):
            raise ToolConfigurationError(tool.name, "URL not configured")
        if not config.get("method"):
            raise ToolConfigurationError(tool.name, "HTTP method not configured")

        method = str(config["method"]).upper()
        if method not in HTTP_METHODS:
            raise ToolConfigurationError(tool.name, f"Unsupported HTTP method: {method}")

        timeout = float(config.get("timeout") or settings.external_default_timeout)
        tries = max(1, int(config.get("retries") or settings.external_default_retries))

        url, remaining = self.resolve_url(tool, config["url"], execution.payload or {})
        headers = self.build_headers(config.get("headers") or [])
        auth = self.apply_auth(headers, config.get("auth") or {})
        request_kwargs = self.build_request(method, remaining, config)

        logger.info(
            f"Executing external tool '{tool.slug}' {method} {config['url']} "
            f"execution={execution.id} tries={tries}"
        )

        t0 = time.perf_counter()
        async with httpx.AsyncClient(timeout=timeout, transport=self.transport) as client:
            response = await self._send(client, tool, method, url, tries, headers=headers, auth=auth, **request_kwargs)
        elapsed_ms = (time.perf_counter() - t0) * 1000

        logger.info(
            f"External tool '{tool.slug}' returned {response.status_code} "
            f"in {elapsed_ms:.0f}ms execution={execution.id}"
        )
        return self.process_response(response, tool, elapsed_ms)

    def output_for_validation(self, result: dict[str, Any]) -> Any:
        return result.get("response_body")

    async def _send(
        self, client: httpx.AsyncClient, tool: Tool, method: str, url: str, tries: int, **kwargs: Any,
    ) -> httpx.Response:
        attempt = 0
        while True:
            attempt += 1
            try:
                response = await client.request(method, url, **kwargs)
            except httpx.HTTPError as e:
                error = ExternalExecutionError(tool.name, f"{type(e).__name__}: {e}")
            else:
                if response.is_success:
                    return response
                body = response.text[:MAX_ERROR_BODY]
                error = ExternalExecutionError(
                    tool.name,
                    f"HTTP {response.status_code}: {body}",
                    status_code=response.status_code,
                    body=body,
                )
                # Client errors will not change on a resend
                if response.status_code < 500 and response.status_code != 429:
                    raise error

            if attempt >= tries:
                raise error
            logger.warning(f"External tool '{tool.slug}' try {attempt}/{tries} failed: {error}")
            await asyncio.sleep(self.retry_sleep_ms / 1000 * attempt)

    # ── Request building ─────────────────────────────────────────

    def resolve_url(self, tool: Tool, template: str, payload: dict[str, Any]) -> tuple[str, dict[str, Any]]:
        """Fill ``{path}`` placeholders from the payload; consumed keys leave the body."""
        remaining = _copy(payload)
        url = template
        for placeholder in _URL_PLACEHOLDER_RE.findall(template):
            value = get_path(payload, placeholder)
            if value is None:
                raise ExternalExecutionError(tool.name, f"Missing value for URL placeholder: {placeholder}")
            url = url.replace("{" + placeholder + "}", quote(str(value), safe=""))
            pop_path(remaining, placeholder)
        return url, remaining

    def render_template(self, value: str) -> str:
        """Substitute secret/env references; unresolved references stay literal."""

        def _secret(match: re.Match) -> str:
            resolved = self.secrets.resolve(match.group(1))
            return resolved if resolved is not None else match.group(0)

        def _env(match: re.Match) -> str:
            resolved = self.secrets.env(match.group(1))
            return resolved if resolved is not None else match.group(0)

        return _ENV_RE.sub(_env, _SECRET_RE.sub(_secret, value))

    def build_headers(self, header_config: list[dict[str, Any]]) -> dict[str, str]:
        headers: dict[str, str] = {}
        for header in header_config:
            key = header.get("key") if isinstance(header, dict) else None
            value = header.get("value") if isinstance(header, dict) else None
            if not key or not value:
                continue
            headers[key] = self.render_template(str(value))
        return headers

    def apply_auth(self, headers: dict[str, str], auth_config: dict[str, Any]) -> httpx.Auth | None:
        auth_type = auth_config.get("type")
        if auth_type == "bearer":
            headers["Authorization"] = f"Bearer {self.render_template(str(auth_config.get('token', '')))}"
        elif auth_type == "basic":
            return httpx.BasicAuth(
                self.render_template(str(auth_config.get("username", ""))),
                self.render_template(str(auth_config.get("password", ""))),
            )
        elif auth_type == "api_key":
            header = auth_config.get("header") or "X-API-Key"
            headers[header] = self.render_template(str(auth_config.get("key", "")))
        return None

    @staticmethod
    def build_request(method: str, payload: dict[str, Any], config: dict[str, Any]) -> dict[str, Any]:
        if method == "GET":
            return {"params": {k: _query_value(v) for k, v in payload.items()}}

        body_template = config.get("body") if isinstance(config.get("body"), dict) else {}
        body = {**body_template, **payload}
        if method in BODY_METHODS:
            return {"json": body}

        # DELETE carries no body unless the tool asks for it
        if config.get("send_payload_on_delete") and payload:
            return {"json": body}
        return {}

    # ── Response handling ────────────────────────────────────────

    def process_response(self, response: httpx.Response, tool: Tool, elapsed_ms: float) -> dict[str, Any]:
        if not response.content:
            body: Any = {}
        else:
            try:
                body = response.json()
            except ValueError:
                body = {"raw": response.text}

        return {
            "status_code": response.status_code,
            "response_body": self.filter_response_body(body, tool),
            "headers": dict(response.headers),
            "success": response.is_success,
            "execution_time": round(elapsed_ms, 2),
            "tool_name": tool.name,
            "timestamp": isoformat(self.clock()),
        }

    @staticmethod
    def filter_response_body(body: Any, tool: Tool) -> Any:
        """Keep only keys declared in the output schema (per item for lists)."""
        allowed = {field["name"] for field in tool.outputs if isinstance(field, dict) and field.get("name")}
        if not allowed:
            return body
        if isinstance(body, list):
            return [
                {k: v for k, v in item.items() if k in allowed} if isinstance(item, dict) else item
                for item in body
            ]
        if isinstance(body, dict):
            return {k: v for k, v in body.items() if k in allowed}
        return body
