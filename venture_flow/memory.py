"""Simple in-memory registry of pipeline sessions."""

from __future__ import annotations

import logging
import time
from collections import OrderedDict
from typing import Callable, List, Optional, Tuple
from uuid import uuid4

from .pipeline import PlanPipeline

logger = logging.getLogger(__name__)


class SessionRegistry:
    """Keep one ``PlanPipeline`` per session so the UI can resume a journey.

    Sessions idle for longer than *idle_ttl* seconds are torn down on the next
    ``create``; beyond *max_sessions* the least recently used one goes first.
    """

    def __init__(
        self,
        factory: Callable[[], PlanPipeline],
        *,
        max_sessions: Optional[int] = None,
        idle_ttl: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._factory = factory
        self._max_sessions = max_sessions
        self._idle_ttl = idle_ttl
        self._clock = clock
        # Least recently used first.
        self._sessions: "OrderedDict[str, Tuple[PlanPipeline, float]]" = OrderedDict()

    def __len__(self) -> int:
        return len(self._sessions)

    def create(self) -> tuple[str, PlanPipeline]:
        """Start a new session and return its id with a fresh pipeline."""

        self.prune()
        if self._max_sessions is not None:
            while self._sessions and len(self._sessions) >= self._max_sessions:
                oldest = next(iter(self._sessions))
                logger.info("Session limit %d reached; evicting %s", self._max_sessions, oldest)
                self.discard(oldest)

        session_id = uuid4().hex
        pipeline = self._factory()
        self._sessions[session_id] = (pipeline, self._clock())
        return session_id, pipeline

    def get(self, session_id: str) -> PlanPipeline | None:
        entry = self._sessions.get(session_id)
        if entry is None:
            return None
        self._sessions[session_id] = (entry[0], self._clock())
        self._sessions.move_to_end(session_id)
        return entry[0]

    def discard(self, session_id: str) -> bool:
        """Drop a session, cancelling whatever it still has in flight."""

        entry = self._sessions.pop(session_id, None)
        if entry is None:
            return False
        entry[0].cancel()
        return True

    def prune(self) -> List[str]:
        """Tear down sessions idle for longer than the TTL; returns their ids."""

        if self._idle_ttl is None:
            return []
        cutoff = self._clock() - self._idle_ttl
        expired = [session_id for session_id, (_, seen) in self._sessions.items() if seen <= cutoff]
        for session_id in expired:
            logger.info("Session %s expired", session_id)
            self.discard(session_id)
        return expired

    def session_ids(self) -> List[str]:
        return list(self._sessions)
