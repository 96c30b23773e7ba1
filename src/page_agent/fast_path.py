"""Rule-based matching for trivial commands that never need a model call."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable, Dict, List, Mapping, Optional, Pattern

from .models import ExecutionOutcome, FastPathMatch

if TYPE_CHECKING:
    from .executor import PageSurface

logger = logging.getLogger(__name__)

DEFAULT_SCROLL_AMOUNT = "400"
PAGE_SCROLL_AMOUNT = "800"

ParamExtractor = Callable[["re.Match[str]"], Dict[str, str]]


@dataclass(frozen=True)
class FastPathRule:
    pattern: Pattern[str]
    action: str
    extract: Optional[ParamExtractor] = None


def _rule(pattern: str, action: str, extract: Optional[ParamExtractor] = None) -> FastPathRule:
    return FastPathRule(re.compile(pattern, re.IGNORECASE), action, extract)


_HOSTNAME = r"([a-zA-Z0-9][-a-zA-Z0-9]*(?:\.[a-zA-Z0-9][-a-zA-Z0-9]*)+(?:/\S*)?)"

# Order matters; more specific patterns come first.
FAST_PATH_RULES: List[FastPathRule] = [
    _rule(
        r"^scroll\s+(down|up)(?:\s+(\d+))?$",
        "scroll",
        lambda m: {"direction": m.group(1).lower(), "amount": m.group(2) or DEFAULT_SCROLL_AMOUNT},
    ),
    _rule(r"^scroll\s+to\s+(?:the\s+)?(top|bottom)$", "scroll", lambda m: {"direction": m.group(1).lower()}),
    _rule(
        r"^page\s+(down|up)$",
        "scroll",
        lambda m: {"direction": m.group(1).lower(), "amount": PAGE_SCROLL_AMOUNT},
    ),
    _rule(r"^go\s+back$", "goBack"),
    _rule(r"^go\s+forward$", "goForward"),
    _rule(r"^(?:refresh|reload)(?:\s+(?:the\s+)?page)?$", "reload"),
    _rule(
        r"^(?:.*?\s+)?(?:navigate|go|open)(?:\s+to)?\s+(?:the\s+)?(?:website\s+)?(https?://\S+)$",
        "navigate",
        lambda m: {"url": m.group(1)},
    ),
    _rule(
        r"^(?:.*?\s+)?(?:navigate|go|open)(?:\s+to)?\s+(?:the\s+)?(?:website\s+)?" + _HOSTNAME + r"$",
        "navigate",
        lambda m: {"url": m.group(1)},
    ),
    _rule(r"^click\s+(?:on\s+)?[\"']([^\"']+)[\"']$", "clickByText", lambda m: {"text": m.group(1)}),
]


def match(command: str, rules: Optional[List[FastPathRule]] = None) -> FastPathMatch:
    """Return the first rule matching the trimmed command, or an unmatched result."""
    trimmed = command.strip()
    for rule in rules if rules is not None else FAST_PATH_RULES:
        found = rule.pattern.match(trimmed)
        if not found:
            continue
        params = rule.extract(found) if rule.extract else {}
        logger.debug("Fast path matched %r -> %s %s", trimmed, rule.action, params)
        return FastPathMatch(matched=True, action=rule.action, params=params)
    return FastPathMatch(matched=False)


async def execute_fast_path_action(
    action: str,
    params: Mapping[str, str],
    surface: "PageSurface",
    surface_id: str,
) -> ExecutionOutcome:
    """Run a matched fast-path action directly against the surface primitives."""
    try:
        if action == "scroll":
            direction = params.get("direction", "down")
            amount = int(params.get("amount") or DEFAULT_SCROLL_AMOUNT)
            return await surface.scroll(surface_id, direction, amount)
        if action == "goBack":
            return await surface.go_back(surface_id)
        if action == "goForward":
            return await surface.go_forward(surface_id)
        if action == "reload":
            return await surface.reload(surface_id)
        if action == "navigate":
            url = params.get("url") or ""
            if not url:
                return ExecutionOutcome(success=False, error="navigate requires a url")
            return await surface.navigate(surface_id, url)
        if action == "clickByText":
            return await surface.click_by_text(surface_id, params.get("text") or "")
    except Exception as exc:  # noqa: BLE001 - surface failures become outcomes
        logger.warning("Fast-path %s failed: %s", action, exc)
        return ExecutionOutcome(success=False, error=str(exc) or "Fast-path execution failed")
    return ExecutionOutcome(success=False, error=f"Unknown fast-path action: {action}")


__all__ = ["FAST_PATH_RULES", "FastPathRule", "execute_fast_path_action", "match"]
