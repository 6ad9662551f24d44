"""Global configuration via pydantic-settings."""

from __future__ import annotations

from typing import Literal

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # ── App ──────────────────────────────────────────
    app_name: str = "Tool Server"
    debug: bool = False
    api_prefix: str = "/api/v1"
    log_level: str = "INFO"

    # ── Database ─────────────────────────────────────
    database_url: str = "sqlite+aiosqlite:///./data/toolserver.db"

    # ── Redis ────────────────────────────────────────
    redis_url: str = "redis://localhost:6379/0"
    # Where per-execution uniqueness locks live
    lock_backend: Literal["memory", "redis"] = "memory"

    # ── Job execution ────────────────────────────────
    job_tries: int = 3
    job_timeout: int = 120  # Per-attempt wall-clock ceiling in seconds
    job_unique_for: int = 300  # Uniqueness lease in seconds
    job_backoff_seconds: float = 1.0
    worker_concurrency: int = 4
    internal_queue: str = "internal-tools"
    external_queue: str = "external-tools"

    # ── External tools ───────────────────────────────
    external_default_timeout: int = 30
    external_default_retries: int = 3
    external_retry_sleep_ms: int = 1000

    # ── MCP ──────────────────────────────────────────
    mcp_protocol: str = "mcp"
    mcp_version: str = "1.0.0"
    mcp_server_name: str = "Tool Server"
    mcp_server_version: str = "1.0.0"

    # ── Secrets referenced by {{secret.KEY}} header templates ──
    secrets: dict[str, str] = {}

    # ── CORS ──────────────────────────────────────────
    cors_origins: str = "*"

    model_config = {"env_prefix": "TOOLSRV_", "env_file": ".env"}


settings = Settings()
