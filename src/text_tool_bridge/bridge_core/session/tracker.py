"""In-memory bookkeeping for conversation runs."""

import asyncio
import secrets
import string
import time
from typing import Any, Dict, List, Optional

from pydantic import BaseModel

from ..logger import get_logger

logger = get_logger(__name__)

_ID_ALPHABET = string.ascii_lowercase + string.digits


class SessionRecord(BaseModel):
    """Statistics of one run.

    Attributes:
        session_id: Identifier of the form ``session_<ms>_<9 chars>``.
        start_time: Creation time in epoch milliseconds.
        total_cost: Accumulated transport cost in USD.
        total_turns: Number of assistant turns seen.
        is_active: False once the run has ended.
        is_error: True if the run ended in a fatal error or the transport reported one.
    """

    session_id: str
    start_time: int
    total_cost: float = 0.0
    total_turns: int = 0
    is_active: bool = True
    is_error: bool = False


class SessionTracker:
    """Creates, updates and expires session records.

    Records live only for the lifetime of the process. Ended sessions stay readable
    until they are cleaned up, which the orchestrator schedules with a delay so
    callers can still inspect a finished run.
    """

    def __init__(self) -> None:
        self._sessions: Dict[str, SessionRecord] = {}
        self._pending_cleanups: Dict[str, asyncio.TimerHandle] = {}

    def create_session(self) -> SessionRecord:
        session = SessionRecord(session_id=self._generate_session_id(), start_time=int(time.time() * 1000))
        self._sessions[session.session_id] = session
        logger.debug(f"Created session {session.session_id}")
        return session.model_copy()

    def get_session(self, session_id: str) -> Optional[SessionRecord]:
        """Return a snapshot of the session, or None if it does not exist."""
        session = self._sessions.get(session_id)
        return session.model_copy() if session is not None else None

    def update_session(self, session_id: str, **updates: Any) -> None:
        """Apply field updates to a session. Unknown sessions are ignored."""
        session = self._sessions.get(session_id)
        if session is None:
            return
        self._sessions[session_id] = session.model_copy(update=updates)

    def end_session(self, session_id: str) -> None:
        self.update_session(session_id, is_active=False)

    def cleanup_session(self, session_id: str) -> None:
        """Forget a session and cancel any cleanup scheduled for it."""
        handle = self._pending_cleanups.pop(session_id, None)
        if handle is not None:
            handle.cancel()
        if self._sessions.pop(session_id, None) is not None:
            logger.debug(f"Cleaned up session {session_id}")

    def schedule_cleanup(self, session_id: str, delay: float) -> None:
        """Clean up ``session_id`` after ``delay`` seconds.

        Without a running event loop, or with a non-positive delay, the session is
        removed immediately.
        """
        if delay <= 0:
            self.cleanup_session(session_id)
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self.cleanup_session(session_id)
            return

        previous = self._pending_cleanups.pop(session_id, None)
        if previous is not None:
            previous.cancel()
        self._pending_cleanups[session_id] = loop.call_later(delay, self.cleanup_session, session_id)

    def cancel_pending_cleanups(self) -> None:
        for handle in self._pending_cleanups.values():
            handle.cancel()
        self._pending_cleanups.clear()

    def active_sessions(self) -> List[SessionRecord]:
        return [session.model_copy() for session in self._sessions.values() if session.is_active]

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._sessions

    @staticmethod
    def _generate_session_id() -> str:
        suffix = "".join(secrets.choice(_ID_ALPHABET) for _ in range(9))
        return f"session_{int(time.time() * 1000)}_{suffix}"
