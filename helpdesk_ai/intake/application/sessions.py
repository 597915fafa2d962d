"""
Conversation Session Store
==========================

In-process store of active sessions with one asyncio lock per session
id, so turns for the same conversation run strictly one after another
while different conversations proceed concurrently.
"""

import asyncio
from datetime import datetime, timedelta
from typing import Dict, List, Optional

from helpdesk_ai.intake.domain.entities import ConversationSession, UserContext
from helpdesk_ai.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)


class SessionStore:
    """Active sessions keyed by conversation id."""

    def __init__(self):
        self._sessions: Dict[str, ConversationSession] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    def lock_for(self, session_id: str) -> asyncio.Lock:
        lock = self._locks.get(session_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[session_id] = lock
        return lock

    def get(self, session_id: str) -> Optional[ConversationSession]:
        return self._sessions.get(session_id)

    def create(
        self,
        session_id: str,
        user_context: Optional[UserContext],
        now: datetime
    ) -> ConversationSession:
        session = ConversationSession(
            session_id=session_id,
            user_context=user_context or UserContext(),
            created_at=now,
            last_activity_at=now,
        )
        self._sessions[session_id] = session
        logger.info("Session created", extra={"session_id": session_id})
        return session

    def save(self, session: ConversationSession) -> None:
        """Persist a session unless it was cancelled or closed meanwhile."""
        if session.is_closed:
            self.discard(session.session_id, session)
            return
        self._sessions[session.session_id] = session

    def discard(self, session_id: str, session: Optional[ConversationSession] = None) -> None:
        """
        Drop a session.

        When ``session`` is given, only that exact object is removed, so a
        finished turn cannot remove a newer session with the same id.
        """
        current = self._sessions.get(session_id)
        if current is None or (session is not None and current is not session):
            return
        del self._sessions[session_id]
        lock = self._locks.get(session_id)
        if lock is not None and not lock.locked():
            del self._locks[session_id]

    def is_busy(self, session_id: str) -> bool:
        lock = self._locks.get(session_id)
        return lock is not None and lock.locked()

    def sweep_idle(self, now: datetime, idle_timeout: timedelta) -> List[str]:
        """Discard sessions idle longer than ``idle_timeout``; skip in-flight ones."""
        expired = [
            session_id for session_id, session in self._sessions.items()
            if now - session.last_activity_at > idle_timeout and not self.is_busy(session_id)
        ]
        for session_id in expired:
            session = self._sessions[session_id]
            session.cancelled = True
            self.discard(session_id)
        for session_id in [k for k, lock in self._locks.items() if k not in self._sessions and not lock.locked()]:
            del self._locks[session_id]
        if expired:
            logger.info("Idle sessions swept", extra={"count": len(expired)})
        return expired

    def __len__(self) -> int:
        return len(self._sessions)
