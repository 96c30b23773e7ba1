from __future__ import annotations

import sys
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from page_agent.fast_path import execute_fast_path_action, match  # noqa: E402
from page_agent.models import ExecutionOutcome  # noqa: E402


@pytest.mark.parametrize(
    "command, action, params",
    [
        ("scroll down", "scroll", {"direction": "down", "amount": "400"}),
        ("  Scroll UP 250 ", "scroll", {"direction": "up", "amount": "250"}),
        ("scroll to top", "scroll", {"direction": "top"}),
        ("scroll to the bottom", "scroll", {"direction": "bottom"}),
        ("page down", "scroll", {"direction": "down", "amount": "800"}),
        ("go back", "goBack", {}),
        ("Go Forward", "goForward", {}),
        ("refresh", "reload", {}),
        ("reload the page", "reload", {}),
        ("go to youtube.com", "navigate", {"url": "youtube.com"}),
        ("please open the website news.ycombinator.com", "navigate", {"url": "news.ycombinator.com"}),
        ("navigate to https://example.com/path?q=1", "navigate", {"url": "https://example.com/path?q=1"}),
        ('click "Sign In"', "clickByText", {"text": "Sign In"}),
        ("click on 'Accept all'", "clickByText", {"text": "Accept all"}),
    ],
)
def test_match_known_commands(command, action, params) -> None:
    result = match(command)

    assert result.matched
    assert result.action == action
    assert result.params == params


@pytest.mark.parametrize(
    "command",
    ["click the blue button", "fill the email field with a@b.c", "open settings", "scroll sideways", ""],
)
def test_match_leaves_model_commands_unmatched(command) -> None:
    result = match(command)

    assert not result.matched
    assert result.action is None
    assert result.params == {}


def test_match_prefers_scroll_to_extreme_over_directional() -> None:
    assert match("scroll to top").params == {"direction": "top"}


@pytest.mark.asyncio
async def test_execute_dispatches_scroll_with_integer_amount() -> None:
    surface = MagicMock()
    surface.scroll = AsyncMock(return_value=ExecutionOutcome(success=True, message="Scrolled down"))

    outcome = await execute_fast_path_action("scroll", {"direction": "down", "amount": "250"}, surface, "tab-1")

    assert outcome.success
    surface.scroll.assert_awaited_once_with("tab-1", "down", 250)


@pytest.mark.asyncio
async def test_execute_dispatches_click_by_text() -> None:
    surface = MagicMock()
    surface.click_by_text = AsyncMock(return_value=ExecutionOutcome(success=True))

    await execute_fast_path_action("clickByText", {"text": "Sign In"}, surface, "tab-1")

    surface.click_by_text.assert_awaited_once_with("tab-1", "Sign In")


@pytest.mark.asyncio
async def test_execute_turns_surface_errors_into_failures() -> None:
    surface = MagicMock()
    surface.reload = AsyncMock(side_effect=RuntimeError("page crashed"))

    outcome = await execute_fast_path_action("reload", {}, surface, "tab-1")

    assert not outcome.success
    assert outcome.error == "page crashed"


@pytest.mark.asyncio
async def test_execute_unknown_action_fails() -> None:
    outcome = await execute_fast_path_action("teleport", {}, MagicMock(), "tab-1")

    assert not outcome.success
    assert outcome.error == "Unknown fast-path action: teleport"
