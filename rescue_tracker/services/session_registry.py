# rescue_tracker/services/session_registry.py
from typing import Dict, List

from rescue_tracker.core.errors import SessionNotFound
from rescue_tracker.core.logger import logger
from rescue_tracker.models.session import TrackingSession


class SessionRegistry:
    # In-memory map of open tracking sessions; nothing is persisted.

    def __init__(self) -> None:
        self._sessions: Dict[str, TrackingSession] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._sessions

    def add(self, session: TrackingSession) -> TrackingSession:
        self._sessions[session.session_id] = session
        logger.info("Registered session {} ({} open).", session.session_id, len(self._sessions))
        return session

    def get(self, session_id: str) -> TrackingSession:
        try:
            return self._sessions[session_id]
        except KeyError:
            raise SessionNotFound(f"Unknown tracking session: {session_id}") from None

    def discard(self, session_id: str) -> TrackingSession:
        session = self.get(session_id)
        del self._sessions[session_id]
        logger.info("Discarded session {} ({} open).", session_id, len(self._sessions))
        return session

    def all(self) -> List[TrackingSession]:
        return list(self._sessions.values())
