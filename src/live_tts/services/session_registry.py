"""Registry of live relay sessions, drained when the server shuts down."""

from __future__ import annotations

import asyncio
import logging
import threading
from typing import TYPE_CHECKING, List

if TYPE_CHECKING:
    from .relay_session import RelaySession

logger = logging.getLogger(__name__)


class SessionRegistry:
    """Tracks active relay sessions so shutdown can close them."""

    def __init__(self):
        self._sessions: set[RelaySession] = set()
        self._lock = threading.Lock()

    def add(self, session: RelaySession) -> None:
        with self._lock:
            self._sessions.add(session)
        logger.debug(f"Session registered: {session.session_id} ({len(self)} active)")

    def discard(self, session: RelaySession) -> None:
        with self._lock:
            self._sessions.discard(session)
        logger.debug(f"Session removed: {session.session_id} ({len(self)} active)")

    def snapshot(self) -> List[RelaySession]:
        with self._lock:
            return list(self._sessions)

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    async def close_all(self, grace_seconds: float) -> List[RelaySession]:
        """
        Ask every active session to close and wait up to ``grace_seconds``.

        Returns the sessions that did not finish in time; they are abandoned.
        """
        sessions = self.snapshot()
        if not sessions:
            return []

        logger.info(f"Closing {len(sessions)} active relay session(s)...")
        tasks = {
            asyncio.create_task(session.shutdown()): session for session in sessions
        }
        done, pending = await asyncio.wait(tasks, timeout=grace_seconds)

        for task in done:
            if not task.cancelled() and task.exception() is not None:
                logger.warning(
                    f"Error closing session {tasks[task].session_id}: {task.exception()}"
                )
        for task in pending:
            task.cancel()

        abandoned = [tasks[task] for task in pending]
        if abandoned:
            logger.warning(
                f"{len(abandoned)} session(s) did not close within {grace_seconds}s; abandoning"
            )
        return abandoned
