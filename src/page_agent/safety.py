"""Static inspection of generated actions before they reach the page."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Iterable, List, Pattern

from .models import SafetyVerdict, SelectorValidation

logger = logging.getLogger(__name__)

NETWORK_REASON = "Network requests are not allowed"


@dataclass(frozen=True)
class SafetyRule:
    pattern: Pattern[str]
    message: str


def _rule(pattern: str, message: str) -> SafetyRule:
    return SafetyRule(re.compile(pattern, re.IGNORECASE), message)


# Evaluated in order; the first match blocks the action.
BLOCK_RULES: List[SafetyRule] = [
    _rule(r"fetch\s*\(", NETWORK_REASON),
    _rule(r"XMLHttpRequest", NETWORK_REASON),
    _rule(r"\.ajax\s*\(", NETWORK_REASON),
    _rule(r"axios\.", NETWORK_REASON),
    _rule(r"navigator\.sendBeacon", NETWORK_REASON),
    _rule(r"WebSocket", "WebSocket connections are not allowed"),
    _rule(r"document\.cookie", "Cookie access is not allowed"),
    _rule(r"localStorage", "localStorage access is not allowed"),
    _rule(r"sessionStorage", "sessionStorage access is not allowed"),
    _rule(r"indexedDB", "IndexedDB access is not allowed"),
    _rule(r"caches\.", "Cache API access is not allowed"),
    _rule(r"eval\s*\(", "eval() is not allowed"),
    _rule(r"Function\s*\(", "Function constructor is not allowed"),
    _rule(r"setTimeout\s*\(\s*['\"`]", "setTimeout with string argument is not allowed"),
    _rule(r"setInterval\s*\(\s*['\"`]", "setInterval with string argument is not allowed"),
    _rule(r"<script", "Script injection is not allowed"),
    _rule(r"javascript:", "javascript: URLs are not allowed"),
    _rule(r"data:text/html", "data: HTML URLs are not allowed"),
    _rule(r"chrome\.\w+", "Chrome extension APIs are not allowed in injected code"),
    _rule(r"browser\.\w+", "Browser APIs are not allowed in injected code"),
]

# Every match accumulates into the confirmation message.
FLAG_RULES: List[SafetyRule] = [
    _rule(r"\b(?:pay|purchase|buy|checkout|order|subscribe|billing)\b", "This action involves a payment or purchase"),
    _rule(
        r"\b(?:delete|remove|cancel|unsubscribe|close\s*account|deactivate)\b",
        "This action may delete or remove data",
    ),
    _rule(r"\b(?:password|credit\s*card|ssn|social\s*security)\b", "This action involves sensitive data"),
    _rule(r"\.submit\s*\(\s*\)", "This action will submit a form"),
]

_ELEMENT_REFERENCE = re.compile(r"(?<![\w-])el-(\d+)(?![\w-])")

_SANITIZERS: List[Pattern[str]] = [
    re.compile(r"chrome\.\w+[^;]*", re.IGNORECASE),
    re.compile(r"browser\.\w+[^;]*", re.IGNORECASE),
    re.compile(r"fetch\s*\([^)]*\)", re.IGNORECASE),
    re.compile(r"new\s+XMLHttpRequest[^;]*", re.IGNORECASE),
]
_BLOCKED_PLACEHOLDER = "/* blocked */"


def check(payload: str, kind: str = "", *, block_rules=None, flag_rules=None) -> SafetyVerdict:
    """Return the verdict for ``payload``; blocked rules win over flagged ones."""
    for rule in block_rules if block_rules is not None else BLOCK_RULES:
        found = rule.pattern.search(payload)
        if found:
            logger.warning("Blocked %s action: %s (%r)", kind or "unknown", rule.message, found.group(0))
            return SafetyVerdict(safe=False, blocked_fragment=found.group(0), blocked_reason=rule.message)

    flagged = [
        rule.message
        for rule in (flag_rules if flag_rules is not None else FLAG_RULES)
        if rule.pattern.search(payload)
    ]
    if not flagged:
        return SafetyVerdict(safe=True)

    logger.info("Flagged %s action for confirmation: %s", kind or "unknown", flagged)
    return SafetyVerdict(
        safe=True,
        requires_confirmation=True,
        confirmation_message=confirmation_message(flagged),
        flagged_rules=flagged,
    )


def confirmation_message(flagged: Iterable[str]) -> str:
    listed = "\n- ".join(flagged)
    return f"This action has been flagged for review:\n- {listed}\n\nDo you want to proceed?"


def validate_selectors(payload: str, known_ids: Iterable[str]) -> SelectorValidation:
    """Report every ``el-N`` reference in ``payload`` missing from ``known_ids``."""
    known = set(known_ids)
    invalid: List[str] = []
    for found in _ELEMENT_REFERENCE.finditer(payload or ""):
        element_id = f"el-{found.group(1)}"
        if element_id not in known and element_id not in invalid:
            invalid.append(element_id)
    return SelectorValidation(valid=not invalid, invalid_selectors=invalid)


def sanitize(payload: str) -> str:
    """Best-effort rewrite of dangerous constructs; ``check`` remains the gate."""
    sanitized = payload
    for pattern in _SANITIZERS:
        sanitized = pattern.sub(_BLOCKED_PLACEHOLDER, sanitized)
    return sanitized


__all__ = [
    "BLOCK_RULES",
    "FLAG_RULES",
    "NETWORK_REASON",
    "SafetyRule",
    "check",
    "confirmation_message",
    "sanitize",
    "validate_selectors",
]
