"""Configuration for the page agent."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Literal

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field

# Load environment variables from a .env file when present.
load_dotenv()

Provider = Literal["claude", "openai"]

DEFAULT_PROVIDER = os.getenv("PAGE_AGENT_PROVIDER", "claude").lower()

DEFAULT_MODELS = {
    "claude": {
        "intent": "claude-3-5-haiku-20241022",
        "codegen": "claude-sonnet-4-20250514",
    },
    "openai": {
        "intent": "gpt-4o-mini",
        "codegen": "gpt-4o",
    },
}

DEFAULT_MAX_RETRIES = 3
DEFAULT_REQUEST_TIMEOUT = 60.0

RATE_LIMIT_MAX_REQUESTS = 10
RATE_LIMIT_WINDOW_SECONDS = 60.0

SESSION_MAX_COUNT = 50
SESSION_IDLE_TIMEOUT_SECONDS = 30 * 60

DEFAULT_BROWSER = os.getenv("AGENT_BROWSER", "chromium").lower()

USER_DATA_DIR = Path("profiles/default")

PLAYWRIGHT_CHANNEL = os.getenv("PLAYWRIGHT_CHANNEL", "chrome")
PLAYWRIGHT_EXECUTABLE = os.getenv("PLAYWRIGHT_EXECUTABLE")

VIEWPORT = {"width": 1440, "height": 900}

DEFAULT_SURFACE_ID = "tab-1"


def get_api_key(provider: str) -> str:
    """Return the API key for the provider, or an empty string when it is not configured."""
    if provider == "openai":
        return os.getenv("OPENAI_API_KEY") or ""
    return os.getenv("ANTHROPIC_API_KEY") or ""


def _env_flag(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


class AgentSettings(BaseModel):
    """Immutable settings snapshot handed to a pipeline run."""

    model_config = ConfigDict(frozen=True)

    provider: Provider = "claude"
    api_key: str = ""
    intent_model: str = DEFAULT_MODELS["claude"]["intent"]
    codegen_model: str = DEFAULT_MODELS["claude"]["codegen"]
    max_retries: int = Field(default=DEFAULT_MAX_RETRIES, ge=0, le=10)
    confirm_destructive: bool = True
    audio_feedback: bool = False
    request_timeout: float = Field(default=DEFAULT_REQUEST_TIMEOUT, gt=0)

    @classmethod
    def from_env(cls, provider: str | None = None, **overrides) -> "AgentSettings":
        resolved = (provider or DEFAULT_PROVIDER).lower()
        if resolved not in DEFAULT_MODELS:
            resolved = "claude"
        models = DEFAULT_MODELS[resolved]
        values = {
            "provider": resolved,
            "api_key": get_api_key(resolved),
            "intent_model": os.getenv("PAGE_AGENT_INTENT_MODEL", models["intent"]),
            "codegen_model": os.getenv("PAGE_AGENT_CODEGEN_MODEL", models["codegen"]),
            "max_retries": os.getenv("PAGE_AGENT_MAX_RETRIES", str(DEFAULT_MAX_RETRIES)),
            "confirm_destructive": _env_flag("PAGE_AGENT_CONFIRM_DESTRUCTIVE", True),
            "audio_feedback": _env_flag("PAGE_AGENT_AUDIO_FEEDBACK", False),
            "request_timeout": os.getenv("PAGE_AGENT_REQUEST_TIMEOUT", str(DEFAULT_REQUEST_TIMEOUT)),
        }
        values.update({key: value for key, value in overrides.items() if value is not None})
        return cls(**values)
