from __future__ import annotations

import json
import sys
from pathlib import Path
from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from page_agent.action_generator import ActionGenerator, build_codegen_prompt, parse_codegen_response  # noqa: E402
from page_agent.config import AgentSettings  # noqa: E402
from page_agent.errors import ConfigurationError, ProtocolError, RateLimited  # noqa: E402
from page_agent.models import (  # noqa: E402
    ChatMessage,
    ElementAttributes,
    ElementDescriptor,
    GeneratedAction,
    PageSnapshot,
    ParsedIntent,
    RetryContext,
)

SETTINGS = AgentSettings(api_key="test-key")
INTENT = ParsedIntent(action="click", target="sign in button")


def _snapshot() -> PageSnapshot:
    return PageSnapshot(
        url="https://example.test",
        title="Example",
        page_text="Welcome " * 200,
        elements=[
            ElementDescriptor(
                id="el-0",
                tag="button",
                text="Sign In",
                attributes=ElementAttributes(id="signin", class_name="btn " * 30),
            )
        ],
    )


def _generator(response=None, error=None):
    call = AsyncMock(return_value=response, side_effect=error)
    return ActionGenerator(SimpleNamespace(call=call)), call


def test_entries_without_known_kind_are_dropped() -> None:
    raw = json.dumps(
        {
            "success": True,
            "explanation": "Click sign in",
            "actions": [
                {"selector": "el-0", "code": "", "description": "missing kind"},
                {"actionType": "teleport", "selector": "el-0"},
                {
                    "actionType": "click",
                    "selector": "el-0",
                    "code": "",
                    "description": "Click Sign In",
                    "verification": {"type": "domChange", "expectedResult": "login form"},
                },
            ],
        }
    )

    result = parse_codegen_response(raw)

    assert result.success
    assert len(result.actions) == 1
    action = result.actions[0]
    assert action.kind == "click"
    assert action.target == "el-0"
    assert action.verification.kind == "domChange"
    assert action.verification.expected_result == "login form"


def test_no_surviving_actions_is_a_failure() -> None:
    raw = json.dumps({"success": True, "explanation": "nothing", "actions": [{"selector": "el-0"}]})

    result = parse_codegen_response(raw)

    assert not result.success
    assert result.error_kind == "parse"
    assert result.actions == []


def test_model_declining_is_reported_with_explanation() -> None:
    raw = json.dumps({"success": False, "explanation": "There is no cart on this page", "actions": []})

    result = parse_codegen_response(raw)

    assert not result.success
    assert result.error_kind == "declined"
    assert result.explanation == "There is no cart on this page"


def test_garbage_response_is_parse_failure() -> None:
    result = parse_codegen_response("Sure! I'd click the button.")

    assert not result.success
    assert result.error_kind == "parse"


def test_object_payloads_are_serialized_for_modify() -> None:
    raw = json.dumps(
        {
            "success": True,
            "explanation": "Bigger text",
            "actions": [{"actionType": "modify", "code": {"type": "enlarge-text", "scale": 1.5}}],
        }
    )

    action = parse_codegen_response(raw).actions[0]

    assert json.loads(action.payload) == {"type": "enlarge-text", "scale": 1.5}
    assert action.target is None
    assert action.verification.kind == "none"


@pytest.mark.asyncio
async def test_generate_uses_codegen_model_and_token_budget() -> None:
    raw = json.dumps({"success": True, "explanation": "ok", "actions": [{"actionType": "click", "selector": "el-0"}]})
    generator, call = _generator(raw)

    result = await generator.generate("click sign in", INTENT, _snapshot(), SETTINGS, [])

    assert result.success
    assert call.await_args.args[2] == SETTINGS.codegen_model
    assert call.await_args.kwargs["max_tokens"] == 2000


@pytest.mark.asyncio
async def test_gateway_errors_are_captured_not_raised() -> None:
    generator, _ = _generator(error=RateLimited(30))
    result = await generator.generate("click sign in", INTENT, _snapshot(), SETTINGS, [])
    assert not result.success
    assert result.error_kind == "rate_limited"
    assert result.retry_after == 30

    generator, _ = _generator(error=ConfigurationError("API key is required"))
    result = await generator.generate("click sign in", INTENT, _snapshot(), SETTINGS, [])
    assert result.error_kind == "configuration"

    generator, _ = _generator(error=ProtocolError("Invalid response from Claude API"))
    result = await generator.generate("click sign in", INTENT, _snapshot(), SETTINGS, [])
    assert result.error_kind == "protocol"


def test_prompt_includes_context_window_and_retry_details() -> None:
    conversation = [ChatMessage(role="user", content=f"message {index}") for index in range(8)]
    retry = RetryContext(
        attempt=1,
        max_attempts=3,
        previous_errors=["Element not found: el-7"],
        original_action=GeneratedAction(kind="click", target="el-7"),
        alternative_selectors=["el-0"],
    )

    prompt = build_codegen_prompt("click sign in", INTENT, _snapshot(), conversation, retry)

    assert "message 2" not in prompt
    assert "message 3" in prompt and "message 7" in prompt
    assert "- Element not found: el-7" in prompt
    assert "Alternative selector candidates: el-0" in prompt
    assert 'class="' + ("btn " * 30)[:50] + '"' in prompt
    assert "Welcome " * 62 + "Welc..." in prompt
