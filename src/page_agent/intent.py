"""Intent clarification: decide whether a command is clear enough to act on."""

from __future__ import annotations

import logging
from typing import Any, List, Optional

from pydantic import ValidationError

from .config import AgentSettings
from .errors import ConfigurationError, PageAgentError, RateLimited
from .model_gateway import ModelGateway
from .models import IntentDecision, PageSnapshot, ParsedIntent
from .response_parsing import ResponseParseError, extract_json_object

logger = logging.getLogger(__name__)

INTENT_MAX_TOKENS = 500

INTENT_SYSTEM_PROMPT = (
    "You are an intent analyzer for a browser automation assistant. Decide whether the user's command is clear "
    "enough to execute, or whether clarification is needed.\n"
    "Analyze the command against the interactive elements listed for the current page and determine:\n"
    "1. Is the intent clear and unambiguous?\n"
    "2. Can you identify the exact target element(s)?\n"
    "3. Are there multiple plausible interpretations?\n\n"
    "Respond ONLY with a JSON object:\n"
    "{\n"
    '  "clear": boolean,\n'
    '  "clarificationQuestion": string | null,\n'
    '  "clarificationOptions": string[] | null,\n'
    '  "parsedIntent": {"action": "click" | "fill" | "scroll" | "navigate" | "extract" | "modify", '
    '"target": string, "value": string | null} | null\n'
    "}\n\n"
    "Ask for clarification when, for example, the user says \"click submit\" and several submit buttons are "
    "listed, or \"fill the form\" and several forms are visible.\n"
    "Commands such as \"click the blue Sign In button\" or \"fill the email field with test@example.com\" are clear."
)

_ATTRIBUTE_HREF_LIMIT = 50
_TEXT_LIMIT = 50

_ACTION_WORDS = {
    "click": ("click", "press", "tap", "select", "choose"),
    "fill": ("fill", "type", "enter", "write", "input"),
    "scroll": ("scroll",),
    "navigate": ("go to", "open", "navigate", "visit"),
    "extract": ("read", "extract", "copy", "summarize", "what"),
    "modify": ("make", "bigger", "larger", "bold", "contrast", "style", "font"),
}


def guess_action(command: str) -> str:
    """Best-effort action kind from the command wording; defaults to click."""
    lowered = command.lower()
    for action, words in _ACTION_WORDS.items():
        if any(lowered.startswith(word) or f" {word} " in f" {lowered} " for word in words):
            return action
    return "click"


def fallback_decision(command: str, action: str = "click") -> IntentDecision:
    return IntentDecision(clear=True, parsed_intent=ParsedIntent(action=action, target=command))


class IntentResolver:
    """Ask the intent model whether a command needs clarification."""

    def __init__(self, gateway: ModelGateway) -> None:
        self.gateway = gateway

    async def resolve(
        self,
        command: str,
        snapshot: PageSnapshot,
        settings: AgentSettings,
        *,
        allow_clarification: bool = True,
    ) -> IntentDecision:
        user_message = build_intent_prompt(command, snapshot)
        try:
            raw = await self.gateway.call(
                settings.provider,
                settings.api_key,
                settings.intent_model,
                INTENT_SYSTEM_PROMPT,
                user_message,
                max_tokens=INTENT_MAX_TOKENS,
            )
        except (ConfigurationError, RateLimited):
            raise
        except PageAgentError as exc:
            logger.warning("Intent model call failed (%s); proceeding without clarification", exc)
            return fallback_decision(command)

        try:
            decision = parse_intent_response(raw, command)
        except (ResponseParseError, ValidationError) as exc:
            logger.warning("Could not parse intent response: %s", exc)
            logger.debug("Intent raw response: %s", raw)
            return fallback_decision(command)

        if not decision.clear and not allow_clarification:
            logger.info("Intent still ambiguous after clarification; acting on %r", command)
            return fallback_decision(command, guess_action(command))
        return decision


def parse_intent_response(raw: str, command: str) -> IntentDecision:
    payload = extract_json_object(raw)
    clear = payload.get("clear")
    if not isinstance(clear, bool):
        raise ResponseParseError("Intent response is missing a boolean 'clear' flag")

    if not clear:
        options = payload.get("clarificationOptions") or []
        if not isinstance(options, list):
            options = []
        return IntentDecision(
            clear=False,
            clarification_question=_as_text(payload.get("clarificationQuestion")),
            clarification_options=[str(option) for option in options if str(option).strip()],
        )

    intent_payload = payload.get("parsedIntent")
    if not isinstance(intent_payload, dict) or not intent_payload.get("action"):
        return fallback_decision(command)
    return IntentDecision(
        clear=True,
        parsed_intent=ParsedIntent(
            action=str(intent_payload["action"]),
            target=_as_text(intent_payload.get("target")) or command,
            value=_as_text(intent_payload.get("value")),
        ),
    )


def build_intent_prompt(command: str, snapshot: PageSnapshot) -> str:
    lines: List[str] = []
    for element in snapshot.interactive_elements():
        attrs = element.attributes
        rendered: List[str] = []
        if attrs.aria_label:
            rendered.append(f'aria-label="{attrs.aria_label}"')
        if attrs.placeholder:
            rendered.append(f'placeholder="{attrs.placeholder}"')
        if attrs.type:
            rendered.append(f'type="{attrs.type}"')
        if attrs.href:
            rendered.append(f'href="{attrs.href[:_ATTRIBUTE_HREF_LIMIT]}..."')
        attr_text = f" {' '.join(rendered)}" if rendered else ""
        lines.append(f'[{element.id}] <{element.tag}{attr_text}> "{element.text[:_TEXT_LIMIT]}"')

    elements_block = "\n".join(lines) or "No interactive elements found"
    return (
        f"Page: {snapshot.title}\n"
        f"URL: {snapshot.url}\n\n"
        f"Interactive elements on page:\n{elements_block}\n\n"
        f'User command: "{command}"\n\n'
        "Analyze if this command is clear and unambiguous. If there are multiple possible targets, ask for clarification."
    )


def _as_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


__all__ = [
    "INTENT_SYSTEM_PROMPT",
    "IntentResolver",
    "build_intent_prompt",
    "fallback_decision",
    "guess_action",
    "parse_intent_response",
]
