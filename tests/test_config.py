from __future__ import annotations

import sys
from pathlib import Path

import pytest
from pydantic import ValidationError

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from page_agent import cli  # noqa: E402
from page_agent.config import AgentSettings  # noqa: E402


def test_from_env_reads_numeric_settings(monkeypatch) -> None:
    monkeypatch.setenv("PAGE_AGENT_MAX_RETRIES", "5")
    monkeypatch.setenv("PAGE_AGENT_REQUEST_TIMEOUT", "12.5")

    settings = AgentSettings.from_env(provider="openai")

    assert settings.max_retries == 5
    assert settings.request_timeout == 12.5
    assert settings.provider == "openai"


@pytest.mark.parametrize(
    "name, value",
    [("PAGE_AGENT_MAX_RETRIES", "three"), ("PAGE_AGENT_REQUEST_TIMEOUT", "soon"), ("PAGE_AGENT_MAX_RETRIES", "99")],
)
def test_from_env_rejects_bad_values_with_validation_error(monkeypatch, name, value) -> None:
    monkeypatch.setenv(name, value)

    with pytest.raises(ValidationError):
        AgentSettings.from_env()


def test_cli_exits_cleanly_on_bad_environment(monkeypatch, tmp_path) -> None:
    monkeypatch.setenv("PAGE_AGENT_MAX_RETRIES", "lots")
    monkeypatch.setattr(cli, "_configure_logging", lambda level: tmp_path / "page-agent.log")

    with pytest.raises(SystemExit) as excinfo:
        cli.main(["--url", "https://example.test"])

    assert "Invalid settings" in str(excinfo.value.code)
