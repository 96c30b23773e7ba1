"""Per-surface conversation state with bounded history and eviction."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import AsyncIterator, Callable, Dict, List, Optional

from .config import SESSION_IDLE_TIMEOUT_SECONDS, SESSION_MAX_COUNT
from .models import (
    ActionRecord,
    ChatMessage,
    GeneratedAction,
    PageSnapshot,
    PendingClarification,
    PendingConfirmation,
    PipelineStage,
)

logger = logging.getLogger(__name__)

MAX_MESSAGES = 100
KEEP_MESSAGES = 50
MAX_ACTIONS = 50
KEEP_ACTIONS = 30


@dataclass
class Session:
    surface_id: str
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    messages: List[ChatMessage] = field(default_factory=list)
    last_snapshot: Optional[PageSnapshot] = None
    action_history: List[ActionRecord] = field(default_factory=list)
    pending_clarification: Optional[PendingClarification] = None
    pending_confirmation: Optional[PendingConfirmation] = None
    stage: PipelineStage = PipelineStage.IDLE
    created_at: float = field(default_factory=time.time)
    last_activity_at: float = field(default_factory=time.time)
    lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False, compare=False)
    in_flight: int = 0

    @property
    def busy(self) -> bool:
        """True while a command holds the lock or is queued for it."""
        return self.in_flight > 0 or self.lock.locked()

    @contextlib.asynccontextmanager
    async def claim(self) -> AsyncIterator["Session"]:
        # Counted before the lock is awaited; cleanup treats queued commands as busy.
        self.in_flight += 1
        try:
            async with self.lock:
                yield self
        finally:
            self.in_flight -= 1

    def add_message(self, message: ChatMessage) -> None:
        self.messages.append(message)
        if len(self.messages) > MAX_MESSAGES:
            self.messages = self.messages[-KEEP_MESSAGES:]

    def record_action(self, action: GeneratedAction, success: bool) -> None:
        self.record(action.kind, action.target, action.payload, action.description, success)

    def record(
        self,
        kind: str,
        target: Optional[str],
        payload: str,
        description: str,
        success: bool,
    ) -> None:
        self.action_history.append(
            ActionRecord(kind=kind, target=target, payload=payload, description=description, success=success)
        )
        if len(self.action_history) > MAX_ACTIONS:
            self.action_history = self.action_history[-KEEP_ACTIONS:]

    def recent_actions(self, count: int = 5) -> List[ActionRecord]:
        return self.action_history[-count:]

    def conversation_context(self, max_messages: int = 10) -> List[ChatMessage]:
        return self.messages[-max_messages:]

    def clear_pending(self) -> None:
        self.pending_clarification = None
        self.pending_confirmation = None


class SessionStore:
    """Owns every session; cleanup runs whenever a new session is created."""

    def __init__(
        self,
        max_sessions: int = SESSION_MAX_COUNT,
        idle_timeout: float = SESSION_IDLE_TIMEOUT_SECONDS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.max_sessions = max_sessions
        self.idle_timeout = idle_timeout
        self._clock = clock
        self._sessions: Dict[str, Session] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, surface_id: object) -> bool:
        return surface_id in self._sessions

    def get_or_create(self, surface_id: str) -> Session:
        session = self._sessions.get(surface_id)
        now = self._clock()
        if session is not None:
            session.last_activity_at = now
            return session

        session = Session(surface_id=surface_id, created_at=now, last_activity_at=now)
        self._sessions[surface_id] = session
        logger.debug("Created session %s for surface %s", session.id, surface_id)
        self.cleanup(keep=surface_id)
        return session

    def get(self, surface_id: str) -> Optional[Session]:
        session = self._sessions.get(surface_id)
        if session is not None:
            session.last_activity_at = self._clock()
        return session

    def remove(self, surface_id: str) -> None:
        if self._sessions.pop(surface_id, None) is not None:
            logger.debug("Removed session for surface %s", surface_id)

    def cleanup(self, keep: Optional[str] = None) -> List[str]:
        """Evict idle sessions, then the least recently active ones above the cap.

        Sessions with a command running or queued are never evicted.
        """
        now = self._clock()
        evicted: List[str] = []
        for surface_id, session in list(self._sessions.items()):
            if surface_id == keep or session.busy:
                continue
            if now - session.last_activity_at > self.idle_timeout:
                del self._sessions[surface_id]
                evicted.append(surface_id)

        excess = len(self._sessions) - self.max_sessions
        if excess > 0:
            candidates = sorted(
                (
                    session
                    for surface_id, session in self._sessions.items()
                    if surface_id != keep and not session.busy
                ),
                key=lambda session: session.last_activity_at,
            )
            for session in candidates[:excess]:
                del self._sessions[session.surface_id]
                evicted.append(session.surface_id)

        if evicted:
            logger.info("Evicted %d session(s): %s", len(evicted), ", ".join(evicted))
        return evicted


__all__ = ["Session", "SessionStore"]
