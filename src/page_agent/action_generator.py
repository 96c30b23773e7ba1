"""Action generation: turn a clear intent into structured page actions."""

from __future__ import annotations

import json
import logging
from typing import Any, List, Optional, Sequence

from pydantic import ValidationError

from .config import AgentSettings
from .errors import ConfigurationError, ProtocolError, ProviderError, RateLimited
from .model_gateway import ModelGateway
from .models import (
    ACTION_KINDS,
    VERIFICATION_KINDS,
    ChatMessage,
    CodeGenResult,
    GeneratedAction,
    PageSnapshot,
    ParsedIntent,
    RetryContext,
    VerificationSpec,
)
from .response_parsing import ResponseParseError, extract_json_object

logger = logging.getLogger(__name__)

CODEGEN_MAX_TOKENS = 2000
CONVERSATION_WINDOW = 5
PAGE_TEXT_PREVIEW = 500

CODEGEN_SYSTEM_PROMPT = (
    "You are a browser automation assistant. Generate structured actions that accomplish the user's task on the "
    "current web page.\n\n"
    "You receive the user's command and parsed intent, a simplified DOM where every element has an ID such as "
    "\"el-5\", and recent conversation history.\n\n"
    "Respond ONLY with JSON:\n"
    "{\n"
    '  "success": true,\n'
    '  "explanation": "Brief explanation of what the actions do",\n'
    '  "actions": [\n'
    "    {\n"
    '      "actionType": "click" | "fill" | "scroll" | "navigate" | "extract" | "modify",\n'
    '      "selector": "element ID (e.g. \'el-5\') or CSS selector",\n'
    '      "code": "action-specific value",\n'
    '      "description": "Human-readable description",\n'
    '      "verification": {"type": "domChange" | "navigation" | "styleChange" | "none", '
    '"expectedResult": "What to check for success"}\n'
    "    }\n"
    "  ]\n"
    "}\n\n"
    "Action types:\n"
    "1. click: selector is an element ID, CSS selector or visible text; code is empty.\n"
    "2. fill: selector targets an input or textarea; code is the value to type.\n"
    "3. scroll: selector unused; code is one of up, down, top, bottom.\n"
    "4. navigate: selector unused; code is the URL (e.g. youtube.com or https://google.com).\n"
    "5. extract: selector is the element to read (or empty for the whole page); code unused.\n"
    "6. modify: selector unused; code is a JSON preset such as {\"type\": \"enlarge-text\", \"scale\": 1.5}, "
    "{\"type\": \"bold-text\"}, {\"type\": \"high-contrast\"}, {\"type\": \"highlight-links\"}, "
    "{\"type\": \"reset\"}, or a raw CSS string.\n\n"
    "Prefer element IDs from the DOM context, then CSS selectors, then visible text.\n"
    "Return success: false with an explanation when the task cannot be accomplished on this page.\n"
    "Do NOT generate JavaScript; only structured actions."
)


class ActionGenerator:
    """Ask the code-generation model for structured actions."""

    def __init__(self, gateway: ModelGateway) -> None:
        self.gateway = gateway

    async def generate(
        self,
        command: str,
        parsed_intent: ParsedIntent,
        snapshot: PageSnapshot,
        settings: AgentSettings,
        conversation: Sequence[ChatMessage],
        retry_context: Optional[RetryContext] = None,
    ) -> CodeGenResult:
        user_message = build_codegen_prompt(command, parsed_intent, snapshot, conversation, retry_context)
        try:
            raw = await self.gateway.call(
                settings.provider,
                settings.api_key,
                settings.codegen_model,
                CODEGEN_SYSTEM_PROMPT,
                user_message,
                max_tokens=CODEGEN_MAX_TOKENS,
            )
        except ConfigurationError as exc:
            return _failure("configuration", str(exc), exc.user_message)
        except RateLimited as exc:
            result = _failure("rate_limited", str(exc), exc.user_message)
            result.retry_after = exc.wait_time
            return result
        except ProviderError as exc:
            return _failure("provider", str(exc), exc.user_message)
        except ProtocolError as exc:
            return _failure("protocol", str(exc), exc.user_message)

        return parse_codegen_response(raw)


def parse_codegen_response(raw: str) -> CodeGenResult:
    try:
        payload = extract_json_object(raw)
    except ResponseParseError as exc:
        logger.error("Failed to parse code generation response: %s", exc)
        logger.debug("Codegen raw response: %s", raw)
        return _failure("parse", str(exc), "Failed to parse code generation response")

    if not payload.get("success"):
        explanation = str(payload.get("explanation") or "Code generation failed")
        return CodeGenResult(
            success=False,
            explanation=explanation,
            error=str(payload.get("error") or explanation),
            error_kind="declined",
        )

    entries = payload.get("actions")
    if not isinstance(entries, list):
        entries = []
    actions: List[GeneratedAction] = []
    for entry in entries:
        action = _coerce_action(entry)
        if action is not None:
            actions.append(action)

    explanation = str(payload.get("explanation") or "Generated actions")
    if not actions:
        return CodeGenResult(
            success=False,
            explanation=explanation,
            error="No valid actions were generated",
            error_kind="parse",
        )
    return CodeGenResult(success=True, actions=actions, explanation=explanation)


def _coerce_action(entry: Any) -> Optional[GeneratedAction]:
    if not isinstance(entry, dict):
        logger.warning("Skipping non-object action entry: %r", entry)
        return None
    kind = entry.get("actionType")
    if not kind:
        logger.warning("Invalid action (missing actionType): %s", entry)
        return None
    if kind not in ACTION_KINDS:
        logger.warning("Invalid action (unknown actionType %r): %s", kind, entry)
        return None

    verification_payload = entry.get("verification") or {}
    verification = VerificationSpec()
    if isinstance(verification_payload, dict) and verification_payload.get("type") in VERIFICATION_KINDS:
        verification = VerificationSpec(
            kind=verification_payload["type"],
            expected_result=str(verification_payload.get("expectedResult") or ""),
        )

    code = entry.get("code")
    if isinstance(code, (dict, list)):
        code = json.dumps(code)
    try:
        return GeneratedAction(
            kind=kind,
            target=str(entry["selector"]) if entry.get("selector") else None,
            payload=str(code) if code is not None else "",
            description=str(entry.get("description") or "Action"),
            verification=verification,
        )
    except ValidationError as exc:
        logger.warning("Skipping action that failed validation: %s", exc)
        return None


def build_codegen_prompt(
    command: str,
    parsed_intent: ParsedIntent,
    snapshot: PageSnapshot,
    conversation: Sequence[ChatMessage],
    retry_context: Optional[RetryContext] = None,
) -> str:
    lines: List[str] = [
        f"Page: {snapshot.title}",
        f"URL: {snapshot.url}",
        "",
        "Page text summary:",
        f"{snapshot.page_text[:PAGE_TEXT_PREVIEW]}...",
        "",
        "DOM Elements:",
    ]
    lines.extend(_format_elements(snapshot) or ["- none"])

    lines.append("")
    lines.append("Recent conversation:")
    recent = list(conversation)[-CONVERSATION_WINDOW:]
    if recent:
        lines.extend(f"{message.role}: {message.content}" for message in recent)
    else:
        lines.append("None")

    lines.append("")
    lines.append(f'User command: "{command}"')
    lines.append(f"Parsed intent: {json.dumps(parsed_intent.model_dump(exclude_none=True))}")

    if retry_context and retry_context.previous_errors:
        lines.append("")
        lines.append(f"Retry attempt {retry_context.attempt} of {retry_context.max_attempts}. Previous attempts failed:")
        lines.extend(f"- {error}" for error in retry_context.previous_errors)
        if retry_context.original_action:
            failed = retry_context.original_action
            lines.append(f"Failed action: {failed.kind} selector={failed.target!r} code={failed.payload!r}")
        if retry_context.alternative_selectors:
            lines.append("Alternative selector candidates: " + ", ".join(retry_context.alternative_selectors))
        lines.append("Choose a different target or approach than the failed action.")

    lines.append("")
    lines.append('Generate the actions for this task. Use the element IDs (like "el-5") when possible.')
    return "\n".join(lines)


def _format_elements(snapshot: PageSnapshot) -> List[str]:
    rendered: List[str] = []
    for element in snapshot.elements:
        attrs = element.attributes
        parts: List[str] = []
        if attrs.id:
            parts.append(f'id="{attrs.id}"')
        if attrs.class_name:
            parts.append(f'class="{attrs.class_name[:50]}"')
        if attrs.aria_label:
            parts.append(f'aria-label="{attrs.aria_label}"')
        if attrs.placeholder:
            parts.append(f'placeholder="{attrs.placeholder}"')
        if attrs.type:
            parts.append(f'type="{attrs.type}"')
        if attrs.name:
            parts.append(f'name="{attrs.name}"')
        if attrs.href:
            parts.append(f'href="{attrs.href[:80]}"')
        box = element.bounding_box
        interactive = " (interactive)" if element.is_interactive else ""
        rendered.append(
            f'[{element.id}] <{element.tag} {" ".join(parts)}> "{element.text[:80]}"{interactive} '
            f"({box.x},{box.y} {box.width}x{box.height})"
        )
    return rendered


def _failure(kind: str, error: str, explanation: str) -> CodeGenResult:
    return CodeGenResult(success=False, explanation=explanation, error=error, error_kind=kind)


__all__ = ["ActionGenerator", "CODEGEN_SYSTEM_PROMPT", "build_codegen_prompt", "parse_codegen_response"]
