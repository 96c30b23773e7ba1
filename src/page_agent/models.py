"""Core data models for the command pipeline."""

from __future__ import annotations

import time
import uuid
from enum import Enum
from typing import Dict, List, Literal, Optional, Set

from pydantic import BaseModel, ConfigDict, Field, model_validator

ActionKind = Literal["click", "fill", "scroll", "navigate", "extract", "modify"]
VerificationKind = Literal["domChange", "navigation", "styleChange", "none"]
FastPathAction = Literal["scroll", "navigate", "reload", "clickByText", "goBack", "goForward"]
MessageRole = Literal["user", "assistant", "system"]
GenerationErrorKind = Literal["configuration", "provider", "protocol", "rate_limited", "parse", "declined"]

ACTION_KINDS: Set[str] = {"click", "fill", "scroll", "navigate", "extract", "modify"}
VERIFICATION_KINDS: Set[str] = {"domChange", "navigation", "styleChange", "none"}

ELEMENT_TEXT_LIMIT = 100
PAGE_TEXT_LIMIT = 2000


def _now() -> float:
    return time.time()


class PipelineStage(str, Enum):
    IDLE = "idle"
    FAST_PATH = "fast-path"
    INTENT = "intent"
    CLARIFICATION = "clarification"
    CODEGEN = "codegen"
    SAFETY = "safety"
    CONFIRMATION = "confirmation"
    EXECUTION = "execution"
    VERIFICATION = "verification"
    COMPLETE = "complete"
    ERROR = "error"


class Command(BaseModel):
    model_config = ConfigDict(frozen=True)

    text: str
    surface_id: str
    created_at: float = Field(default_factory=_now)


class BoundingBox(BaseModel):
    x: int = 0
    y: int = 0
    width: int = 0
    height: int = 0


class ElementAttributes(BaseModel):
    id: Optional[str] = None
    class_name: Optional[str] = None
    href: Optional[str] = None
    type: Optional[str] = None
    placeholder: Optional[str] = None
    aria_label: Optional[str] = None
    name: Optional[str] = None
    value: Optional[str] = None


class ElementDescriptor(BaseModel):
    id: str
    tag: str
    role: Optional[str] = None
    text: str = ""
    attributes: ElementAttributes = Field(default_factory=ElementAttributes)
    is_interactive: bool = True
    is_visible: bool = True
    bounding_box: BoundingBox = Field(default_factory=BoundingBox)

    @model_validator(mode="after")
    def _truncate_text(self) -> "ElementDescriptor":
        if len(self.text) > ELEMENT_TEXT_LIMIT:
            self.text = self.text[:ELEMENT_TEXT_LIMIT]
        return self


class PageSnapshot(BaseModel):
    snapshot_id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    url: str
    title: str = ""
    captured_at: float = Field(default_factory=_now)
    elements: List[ElementDescriptor] = Field(default_factory=list)
    page_text: str = ""

    @model_validator(mode="after")
    def _check_elements(self) -> "PageSnapshot":
        seen: Set[str] = set()
        for element in self.elements:
            if element.id in seen:
                raise ValueError(f"Duplicate element id in snapshot: {element.id}")
            seen.add(element.id)
        if len(self.page_text) > PAGE_TEXT_LIMIT:
            self.page_text = self.page_text[:PAGE_TEXT_LIMIT]
        return self

    def element_ids(self) -> List[str]:
        return [element.id for element in self.elements]

    def interactive_elements(self) -> List[ElementDescriptor]:
        return [element for element in self.elements if element.is_interactive]

    def find(self, element_id: str) -> Optional[ElementDescriptor]:
        for element in self.elements:
            if element.id == element_id:
                return element
        return None


class FastPathMatch(BaseModel):
    matched: bool
    action: Optional[FastPathAction] = None
    params: Dict[str, str] = Field(default_factory=dict)


class ParsedIntent(BaseModel):
    action: str
    target: Optional[str] = None
    value: Optional[str] = None


class IntentDecision(BaseModel):
    clear: bool
    clarification_question: Optional[str] = None
    clarification_options: List[str] = Field(default_factory=list)
    parsed_intent: Optional[ParsedIntent] = None

    @model_validator(mode="after")
    def _one_side_populated(self) -> "IntentDecision":
        if self.clear:
            if self.parsed_intent is None:
                raise ValueError("A clear intent decision requires parsed_intent")
            self.clarification_question = None
            self.clarification_options = []
        else:
            self.parsed_intent = None
            if not (self.clarification_question or "").strip():
                self.clarification_question = "Could you describe which element you mean?"
        return self


class VerificationSpec(BaseModel):
    kind: VerificationKind = "none"
    expected_result: str = ""


class GeneratedAction(BaseModel):
    kind: ActionKind
    target: Optional[str] = None
    payload: str = ""
    description: str = "Action"
    verification: VerificationSpec = Field(default_factory=VerificationSpec)

    def inspected_text(self) -> str:
        """Text the safety gate inspects: target and payload together."""
        return "\n".join(part for part in (self.target or "", self.payload) if part)


class CodeGenResult(BaseModel):
    success: bool
    actions: List[GeneratedAction] = Field(default_factory=list)
    explanation: str = ""
    error: Optional[str] = None
    error_kind: Optional[GenerationErrorKind] = None
    retry_after: Optional[float] = None


class SafetyVerdict(BaseModel):
    safe: bool
    blocked_fragment: Optional[str] = None
    blocked_reason: Optional[str] = None
    requires_confirmation: bool = False
    confirmation_message: Optional[str] = None
    flagged_rules: List[str] = Field(default_factory=list)


class SelectorValidation(BaseModel):
    valid: bool
    invalid_selectors: List[str] = Field(default_factory=list)


class ExecutionOutcome(BaseModel):
    success: bool
    message: Optional[str] = None
    error: Optional[str] = None
    requires_retry: bool = False


class VerificationOutcome(BaseModel):
    success: bool
    expected_result: str
    observed_result: str
    detail: Optional[str] = None


class RetryContext(BaseModel):
    attempt: int = 0
    max_attempts: int
    previous_errors: List[str] = Field(default_factory=list)
    original_action: Optional[GeneratedAction] = None
    alternative_selectors: List[str] = Field(default_factory=list)

    @property
    def exhausted(self) -> bool:
        return self.attempt >= self.max_attempts


class ChatMessage(BaseModel):
    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    role: MessageRole
    content: str
    timestamp: float = Field(default_factory=_now)
    actions: List[GeneratedAction] = Field(default_factory=list)
    is_error: bool = False


class ActionRecord(BaseModel):
    kind: str
    target: Optional[str] = None
    payload: str = ""
    description: str = ""
    success: bool
    timestamp: float = Field(default_factory=_now)


class PendingClarification(BaseModel):
    command: str
    question: str
    options: List[str] = Field(default_factory=list)
    snapshot_id: Optional[str] = None
    created_at: float = Field(default_factory=_now)


class PendingConfirmation(BaseModel):
    command: str
    actions: List[GeneratedAction]
    confirmation_message: str
    parsed_intent: Optional[ParsedIntent] = None
    retry_context: Optional[RetryContext] = None
    created_at: float = Field(default_factory=_now)


class CommandResult(BaseModel):
    success: bool
    message: str
    stage: PipelineStage
    actions: List[GeneratedAction] = Field(default_factory=list)
    requires_clarification: bool = False
    clarification_question: Optional[str] = None
    clarification_options: List[str] = Field(default_factory=list)
    requires_confirmation: bool = False
    confirmation_message: Optional[str] = None
    retry_after: Optional[float] = None
