"""Process configuration loaded from the environment."""
from __future__ import annotations

import os
from dataclasses import dataclass, field

from dotenv import load_dotenv

DEFAULT_BASE_URL = "https://api.ollama.com"
DEFAULT_MODEL = "deepseek-v3.2"
DEFAULT_TIMEOUT_SECONDS = 60.0
DEFAULT_POLL_INTERVAL_SECONDS = 10.0


@dataclass(frozen=True, slots=True)
class Settings:
    """Runtime settings for the generation subsystem.

    A missing ``ollama_api_key`` is a valid state: the worker stays idle and
    the health check reports the provider as not configured.
    """

    ollama_api_key: str | None = None
    ollama_base_url: str = DEFAULT_BASE_URL
    ollama_model: str = DEFAULT_MODEL
    ollama_timeout: float = DEFAULT_TIMEOUT_SECONDS
    worker_enabled: bool = True
    poll_interval: float = DEFAULT_POLL_INTERVAL_SECONDS
    log_level: str = "INFO"
    cors_origins: list[str] = field(default_factory=list)


def _float_env(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = float(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be a number, got {raw!r}") from exc
    if value <= 0:
        raise ValueError(f"{name} must be positive, got {raw!r}")
    return value


def load_settings() -> Settings:
    """Read settings from the environment (and a local ``.env`` file)."""

    load_dotenv()

    api_key = (os.getenv("OLLAMA_CLOUD_API_KEY") or "").strip() or None
    origins_env = os.getenv("API_CORS_ORIGINS", "")
    origins = [origin.strip() for origin in origins_env.split(",") if origin.strip()]
    if not origins:
        origins = ["http://localhost:3000", "http://127.0.0.1:3000"]

    return Settings(
        ollama_api_key=api_key,
        ollama_base_url=(os.getenv("OLLAMA_CLOUD_URL") or DEFAULT_BASE_URL).rstrip("/"),
        ollama_model=os.getenv("OLLAMA_CLOUD_MODEL") or DEFAULT_MODEL,
        ollama_timeout=_float_env("OLLAMA_CLOUD_TIMEOUT", DEFAULT_TIMEOUT_SECONDS),
        worker_enabled=os.getenv("AI_WORKER_ENABLED", "true").strip().lower() != "false",
        poll_interval=_float_env("AI_WORKER_POLL_INTERVAL", DEFAULT_POLL_INTERVAL_SECONDS),
        log_level=(os.getenv("LOG_LEVEL") or "INFO").upper(),
        cors_origins=origins,
    )
