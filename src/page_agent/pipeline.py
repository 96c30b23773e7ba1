"""Command pipeline: fast path, intent, codegen, safety, execution, verification and retry."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, List, Optional

from . import fast_path, safety
from .action_generator import ActionGenerator
from .config import AgentSettings
from .errors import ConfigurationError, PageAgentError, RateLimited, SafetyViolation
from .executor import PageSurface, alternative_selectors
from .intent import IntentResolver
from .model_gateway import ModelGateway
from .models import (
    ChatMessage,
    CodeGenResult,
    Command,
    CommandResult,
    GeneratedAction,
    PageSnapshot,
    ParsedIntent,
    PendingClarification,
    PendingConfirmation,
    PipelineStage,
    RetryContext,
)
from .session import Session, SessionStore
from .verifier import Verifier

logger = logging.getLogger(__name__)

GENERIC_FAILURE = "Something went wrong while handling the command."
NO_PENDING_QUESTION = "There is no pending question for this page."
NO_PENDING_CONFIRMATION = "There is no action awaiting confirmation."

_GENERATION_MESSAGES = {
    "provider": "The AI provider request failed. Please try again.",
    "protocol": "The AI provider returned an unexpected response. Please try again.",
    "parse": "I couldn't understand the AI response. Please try rephrasing the command.",
}


@dataclass
class _AttemptFailure:
    error: str
    action: Optional[GeneratedAction]
    retryable: bool


class CommandPipeline:
    """Drive one command per surface through every stage to a terminal result."""

    def __init__(
        self,
        settings: AgentSettings,
        surface: PageSurface,
        gateway: Optional[ModelGateway] = None,
        session_store: Optional[SessionStore] = None,
        *,
        intent_resolver: Optional[IntentResolver] = None,
        action_generator: Optional[ActionGenerator] = None,
        verifier: Optional[Verifier] = None,
    ) -> None:
        self.settings = settings
        self.surface = surface
        gateway = gateway or ModelGateway(timeout=settings.request_timeout)
        self.intent_resolver = intent_resolver or IntentResolver(gateway)
        self.action_generator = action_generator or ActionGenerator(gateway)
        self.verifier = verifier or Verifier()
        self.sessions = session_store or SessionStore()

    # Caller-facing operations -------------------------------------------------

    async def process_command(self, text: str, surface_id: str) -> CommandResult:
        command = Command(text=text.strip(), surface_id=surface_id)
        session = self.sessions.get_or_create(surface_id)
        if session.lock.locked():
            logger.info("Surface %s is busy; queueing %r", surface_id, command.text)
        async with session.claim():
            if session.pending_clarification is not None:
                logger.info(
                    "New command on %s cancels pending clarification for %r",
                    surface_id,
                    session.pending_clarification.command,
                )
            if session.pending_confirmation is not None:
                logger.info(
                    "New command on %s discards pending confirmation for %r",
                    surface_id,
                    session.pending_confirmation.command,
                )
            session.clear_pending()
            session.add_message(ChatMessage(role="user", content=command.text))
            return await self._guarded(session, lambda: self._run(session, command))

    async def submit_clarification(self, surface_id: str, answer: str) -> CommandResult:
        session = self.sessions.get(surface_id)
        if session is None:
            return _error(NO_PENDING_QUESTION)
        async with session.claim():
            pending = session.pending_clarification
            session.add_message(ChatMessage(role="user", content=answer))
            if pending is None:
                return self._finish(session, _error(NO_PENDING_QUESTION))
            session.pending_clarification = None
            return await self._guarded(session, lambda: self._resume_clarification(session, pending, answer))

    async def confirm_pending(self, surface_id: str, approved: bool) -> CommandResult:
        session = self.sessions.get(surface_id)
        if session is None:
            return _error(NO_PENDING_CONFIRMATION)
        async with session.claim():
            pending = session.pending_confirmation
            session.add_message(ChatMessage(role="user", content="yes" if approved else "no"))
            if pending is None:
                return self._finish(session, _error(NO_PENDING_CONFIRMATION))
            session.pending_confirmation = None
            if not approved:
                logger.info("User declined flagged actions for %r", pending.command)
                for action in pending.actions:
                    session.record_action(action, False)
                return self._finish(session, _error("Action cancelled.", pending.actions))
            return await self._guarded(session, lambda: self._resume_confirmation(session, pending))

    def stage(self, surface_id: str) -> PipelineStage:
        session = self.sessions.get(surface_id)
        return session.stage if session else PipelineStage.IDLE

    # Stage sequencing ---------------------------------------------------------

    async def _guarded(self, session: Session, run: Callable[[], Awaitable[CommandResult]]) -> CommandResult:
        try:
            result = await run()
        except ConfigurationError as exc:
            logger.error("Configuration error: %s", exc)
            result = CommandResult(success=False, message=exc.user_message, stage=PipelineStage.ERROR)
        except RateLimited as exc:
            logger.warning("Rate limited; retry in %.1fs", exc.wait_time)
            result = CommandResult(
                success=False, message=exc.user_message, stage=PipelineStage.ERROR, retry_after=exc.wait_time
            )
        except PageAgentError as exc:
            logger.warning("Pipeline stage failed: %s", exc)
            result = CommandResult(success=False, message=exc.user_message, stage=PipelineStage.ERROR)
        except Exception:  # noqa: BLE001 - every command ends with an assistant message
            logger.exception("Unexpected pipeline failure on surface %s", session.surface_id)
            result = CommandResult(success=False, message=GENERIC_FAILURE, stage=PipelineStage.ERROR)
        return self._finish(session, result)

    def _finish(self, session: Session, result: CommandResult) -> CommandResult:
        session.stage = result.stage
        session.add_message(
            ChatMessage(
                role="assistant",
                content=result.message,
                actions=list(result.actions),
                is_error=not result.success,
            )
        )
        logger.info("Command on %s finished at %s (success=%s)", session.surface_id, result.stage.value, result.success)
        return result

    def _enter(self, session: Session, stage: PipelineStage) -> None:
        logger.debug("Surface %s: %s -> %s", session.surface_id, session.stage.value, stage.value)
        session.stage = stage

    async def _run(self, session: Session, command: Command) -> CommandResult:
        if not command.text:
            return _error("Please enter a command.")
        self._enter(session, PipelineStage.FAST_PATH)
        matched = fast_path.match(command.text)
        if matched.matched and matched.action:
            return await self._run_fast_path(session, matched.action, matched.params)

        self._enter(session, PipelineStage.INTENT)
        snapshot = await self._capture(session)
        decision = await self.intent_resolver.resolve(command.text, snapshot, self.settings)
        if not decision.clear:
            self._enter(session, PipelineStage.CLARIFICATION)
            question = decision.clarification_question or "Could you clarify what you mean?"
            session.pending_clarification = PendingClarification(
                command=command.text,
                question=question,
                options=decision.clarification_options,
                snapshot_id=snapshot.snapshot_id,
            )
            return CommandResult(
                success=True,
                message=question,
                stage=PipelineStage.CLARIFICATION,
                requires_clarification=True,
                clarification_question=question,
                clarification_options=decision.clarification_options,
            )

        retry = RetryContext(max_attempts=self.settings.max_retries)
        return await self._attempt(session, command.text, decision.parsed_intent, snapshot, retry)

    async def _run_fast_path(self, session: Session, action: str, params: dict) -> CommandResult:
        self._enter(session, PipelineStage.EXECUTION)
        outcome = await fast_path.execute_fast_path_action(action, params, self.surface, session.surface_id)
        description = " ".join([action] + [f"{key}={value}" for key, value in sorted(params.items())])
        session.record(
            kind=action,
            target=params.get("text"),
            payload=params.get("url") or params.get("direction") or "",
            description=description,
            success=outcome.success,
        )
        if outcome.success:
            return CommandResult(success=True, message=outcome.message or "Done", stage=PipelineStage.COMPLETE)
        return CommandResult(success=False, message=outcome.error or "Action failed", stage=PipelineStage.ERROR)

    async def _resume_clarification(
        self, session: Session, pending: PendingClarification, answer: str
    ) -> CommandResult:
        chosen = _resolve_option(answer, pending.options)
        refined = f"{pending.command}: {chosen}"
        logger.info("Resuming %r with clarification %r", pending.command, chosen)

        self._enter(session, PipelineStage.INTENT)
        snapshot = await self._capture(session)
        decision = await self.intent_resolver.resolve(refined, snapshot, self.settings, allow_clarification=False)
        retry = RetryContext(max_attempts=self.settings.max_retries)
        return await self._attempt(session, refined, decision.parsed_intent, snapshot, retry)

    async def _resume_confirmation(self, session: Session, pending: PendingConfirmation) -> CommandResult:
        snapshot = session.last_snapshot or await self._capture(session)
        intent = pending.parsed_intent or ParsedIntent(action="click", target=pending.command)
        retry = pending.retry_context or RetryContext(max_attempts=self.settings.max_retries)
        return await self._attempt(session, pending.command, intent, snapshot, retry, approved=pending.actions)

    async def _attempt(
        self,
        session: Session,
        command: str,
        intent: Optional[ParsedIntent],
        snapshot: PageSnapshot,
        retry: RetryContext,
        approved: Optional[List[GeneratedAction]] = None,
    ) -> CommandResult:
        """Codegen, safety, execution and verification with bounded regeneration."""
        intent = intent or ParsedIntent(action="click", target=command)
        while True:
            if approved is not None:
                actions, explanation = approved, "Confirmed actions"
                approved = None
            else:
                self._enter(session, PipelineStage.CODEGEN)
                generated = await self.action_generator.generate(
                    command,
                    intent,
                    snapshot,
                    self.settings,
                    session.conversation_context(),
                    retry if retry.previous_errors else None,
                )
                if not generated.success:
                    if generated.error_kind == "provider" and not retry.exhausted:
                        snapshot = await self._prepare_retry(session, retry, generated.error or "Provider error", None)
                        continue
                    return self._generation_failure(generated)
                actions, explanation = generated.actions, generated.explanation

                self._enter(session, PipelineStage.SAFETY)
                blocked = self._safety_block(session, actions)
                if blocked is not None:
                    return blocked

                stale = self._stale_identifiers(actions, snapshot)
                if stale:
                    for action in actions:
                        session.record_action(action, False)
                    failure = _AttemptFailure(
                        error=f"Unknown element id(s) {', '.join(stale)}; the page may have changed",
                        action=actions[0],
                        retryable=True,
                    )
                    if retry.exhausted:
                        return self._exhausted(retry, failure, actions)
                    snapshot = await self._prepare_retry(session, retry, failure.error, failure.action)
                    continue

                confirmation = self._confirmation_needed(actions)
                if confirmation is not None:
                    if self.settings.confirm_destructive:
                        self._enter(session, PipelineStage.CONFIRMATION)
                        session.pending_confirmation = PendingConfirmation(
                            command=command,
                            actions=actions,
                            confirmation_message=confirmation,
                            parsed_intent=intent,
                            retry_context=retry,
                        )
                        return CommandResult(
                            success=True,
                            message=confirmation,
                            stage=PipelineStage.CONFIRMATION,
                            actions=actions,
                            requires_confirmation=True,
                            confirmation_message=confirmation,
                        )
                    logger.info("Flagged actions proceed without confirmation (confirm_destructive disabled)")

            messages, failure = await self._execute(session, actions)
            if failure is None:
                return CommandResult(
                    success=True,
                    message="\n".join([explanation] + messages) if messages else explanation,
                    stage=PipelineStage.COMPLETE,
                    actions=actions,
                )
            if not failure.retryable:
                return CommandResult(success=False, message=failure.error, stage=PipelineStage.ERROR, actions=actions)
            if retry.exhausted:
                return self._exhausted(retry, failure, actions)
            snapshot = await self._prepare_retry(session, retry, failure.error, failure.action)

    async def _execute(self, session: Session, actions: List[GeneratedAction]):
        """Run actions in order; returns (extracted texts, first failure or None)."""
        extracted: List[str] = []
        for action in actions:
            self._enter(session, PipelineStage.EXECUTION)
            outcome = await self.surface.execute(action, session.surface_id)
            session.record_action(action, outcome.success)
            if not outcome.success:
                logger.warning("Action %s failed: %s", action.description, outcome.error)
                return extracted, _AttemptFailure(
                    error=outcome.error or f"{action.description} failed",
                    action=action,
                    retryable=outcome.requires_retry,
                )

            self._enter(session, PipelineStage.VERIFICATION)
            verification = await self.verifier.verify(action.verification, self.surface, session.surface_id)
            if not verification.success:
                logger.warning("Verification failed for %s: %s", action.description, verification.detail)
                return extracted, _AttemptFailure(
                    error=(
                        f"Verification failed: expected {verification.expected_result!r}, "
                        f"observed {verification.observed_result!r}"
                    ),
                    action=action,
                    retryable=True,
                )
            if action.kind == "extract" and outcome.message:
                extracted.append(outcome.message)
        return extracted, None

    async def _prepare_retry(
        self,
        session: Session,
        retry: RetryContext,
        error: str,
        action: Optional[GeneratedAction],
    ) -> PageSnapshot:
        previous = session.last_snapshot
        retry.attempt += 1
        retry.previous_errors.append(error)
        if action is not None:
            retry.original_action = action
            retry.alternative_selectors = alternative_selectors(previous, action.target)
        logger.info("Retry %d/%d after: %s", retry.attempt, retry.max_attempts, error)
        return await self._capture(session)

    async def _capture(self, session: Session) -> PageSnapshot:
        snapshot = await self.surface.capture_snapshot(session.surface_id)
        session.last_snapshot = snapshot
        return snapshot

    # Stage helpers ------------------------------------------------------------

    def _safety_block(self, session: Session, actions: List[GeneratedAction]) -> Optional[CommandResult]:
        for action in actions:
            verdict = safety.check(action.inspected_text(), action.kind)
            if verdict.safe:
                continue
            violation = SafetyViolation(verdict.blocked_fragment or "", verdict.blocked_reason or "blocked")
            logger.warning("Safety violation on %s: %s", session.surface_id, violation)
            for blocked in actions:
                session.record_action(blocked, False)
            return CommandResult(
                success=False, message=violation.user_message, stage=PipelineStage.ERROR, actions=actions
            )
        return None

    @staticmethod
    def _confirmation_needed(actions: List[GeneratedAction]) -> Optional[str]:
        flagged: List[str] = []
        for action in actions:
            verdict = safety.check(action.inspected_text(), action.kind)
            for rule in verdict.flagged_rules:
                if rule not in flagged:
                    flagged.append(rule)
        return safety.confirmation_message(flagged) if flagged else None

    @staticmethod
    def _stale_identifiers(actions: List[GeneratedAction], snapshot: PageSnapshot) -> List[str]:
        known = snapshot.element_ids()
        stale: List[str] = []
        for action in actions:
            for element_id in safety.validate_selectors(action.target or "", known).invalid_selectors:
                if element_id not in stale:
                    stale.append(element_id)
        return stale

    @staticmethod
    def _generation_failure(result: CodeGenResult) -> CommandResult:
        kind = result.error_kind
        logger.warning("Code generation failed (%s): %s", kind, result.error)
        if kind in _GENERATION_MESSAGES:
            message = _GENERATION_MESSAGES[kind]
        else:
            message = result.explanation or result.error or "Could not generate actions for this command."
        return CommandResult(
            success=False,
            message=message,
            stage=PipelineStage.ERROR,
            retry_after=result.retry_after,
        )

    @staticmethod
    def _exhausted(retry: RetryContext, failure: _AttemptFailure, actions: List[GeneratedAction]) -> CommandResult:
        attempts = retry.attempt + 1
        logger.warning("Giving up after %d attempt(s): %s", attempts, failure.error)
        return CommandResult(
            success=False,
            message=f"Failed after {attempts} attempt(s): {failure.error}",
            stage=PipelineStage.ERROR,
            actions=actions,
        )


def _error(message: str, actions: Optional[List[GeneratedAction]] = None) -> CommandResult:
    return CommandResult(success=False, message=message, stage=PipelineStage.ERROR, actions=actions or [])


def _resolve_option(answer: str, options: List[str]) -> str:
    """Map a 1-based option number onto its text; any other answer is used as-is."""
    text = answer.strip()
    if text.isdigit() and options:
        index = int(text) - 1
        if 0 <= index < len(options):
            return options[index]
    return text


__all__ = ["CommandPipeline"]
