"""
Session Registry

In-memory registry of live conversation sessions.

Design choices
--------------
- In-memory only (no persistence across process restarts).
- One session per transport; lookups by session id or by transport.
- Sole owner and mutator of Session records.
- Session teardown always cancels the session's in-flight requests through
  the RequestCoordinator before the record is dropped.
- Idle sessions are swept on a fixed interval; a liveness probe is sent on a
  shorter interval and any unreachable transport is destroyed immediately.
- A delivered probe refreshes activity; with the heartbeat running, a quiet
  but reachable client is never swept as idle.
- Clock is injectable for tests.
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from typing import Callable, Dict, List, Optional

from ..core.errors import SessionNotFound
from .coordinator import RequestCoordinator
from .models import Session, Transport, Turn

logger = logging.getLogger("paarth.sessions")


class SessionRegistry:
    """
    Registry mapping session ids to Session records.
    """

    def __init__(
        self,
        coordinator: RequestCoordinator,
        idle_timeout_seconds: float = 20 * 60,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """
        Parameters
        ----------
        coordinator : RequestCoordinator
            Coordinator whose requests are cancelled when a session ends.

        idle_timeout_seconds : float
            Inactivity threshold after which ``sweep`` destroys a session.

        clock : Callable[[], float]
            Monotonic clock.
        """
        self._coordinator = coordinator
        self._idle_timeout = idle_timeout_seconds
        self._clock = clock
        self._sessions: Dict[str, Session] = {}
        self._by_transport: Dict[int, str] = {}

    # ------------------------------------------------------------------
    # Core operations
    # ------------------------------------------------------------------

    def create(self, transport: Transport) -> Session:
        """Register a new session bound to ``transport``."""
        session_id = f"krishna_{uuid.uuid4().hex}"
        while session_id in self._sessions:
            session_id = f"krishna_{uuid.uuid4().hex}"

        now = self._clock()
        session = Session(
            id=session_id,
            transport=transport,
            created_at=now,
            last_activity_at=now,
        )
        self._sessions[session_id] = session
        self._by_transport[id(transport)] = session_id

        logger.info("Session created: %s", session_id)
        return session

    def lookup(self, transport: Transport) -> Optional[Session]:
        session_id = self._by_transport.get(id(transport))
        if session_id is None:
            return None
        return self._sessions.get(session_id)

    def get(self, session_id: str) -> Optional[Session]:
        return self._sessions.get(session_id)

    def require(self, session_id: str) -> Session:
        session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFound(session_id)
        return session

    def touch(self, session_id: str) -> None:
        session = self._sessions.get(session_id)
        if session is not None:
            session.last_activity_at = self._clock()

    def record_turn(self, session_id: str, turn: Turn) -> None:
        """Append a completed turn to the session history."""
        self.require(session_id).turns.append(turn)

    def reset(self, session_id: str) -> Session:
        """Clear history and the interrupt counter for a fresh conversation."""
        session = self.require(session_id)
        session.turns.clear()
        session.interrupt_count = 0
        return session

    def register_interrupt(self, session_id: str) -> int:
        session = self.require(session_id)
        session.interrupt_count += 1
        return session.interrupt_count

    def active_request_ids(self, session_id: str) -> List[str]:
        return self._coordinator.active_ids(session_id)

    async def destroy(self, session_id: str, close_transport: bool = False) -> Optional[Session]:
        """
        Remove a session after cancelling its active requests.

        Returns the removed session, or None if it was already gone.
        """
        self._coordinator.cancel_all(session_id)

        session = self._sessions.pop(session_id, None)
        if session is None:
            return None

        self._by_transport.pop(id(session.transport), None)

        duration = self._clock() - session.created_at
        logger.info(
            "Session removed: %s, duration=%ds, questions=%d",
            session_id,
            int(duration),
            len(session.turns),
        )

        if close_transport and session.transport.is_open:
            try:
                await session.transport.close()
            except Exception:
                logger.warning("Failed to close transport for session %s", session_id)

        return session

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    async def sweep(self) -> List[str]:
        """
        Destroy every session idle for longer than the threshold.

        Returns the ids of the destroyed sessions.
        """
        now = self._clock()
        expired = [
            session_id
            for session_id, session in self._sessions.items()
            if now - session.last_activity_at > self._idle_timeout
        ]

        for session_id in expired:
            logger.info("Cleaning up inactive session: %s", session_id)
            await self.destroy(session_id, close_transport=True)

        return expired

    async def heartbeat(self) -> List[str]:
        """
        Send a liveness probe to every session.

        Sessions whose transport is closed or fails the send are destroyed;
        the others count as active.
        Returns the ids of the destroyed sessions.
        """
        dead: List[str] = []

        for session_id, session in list(self._sessions.items()):
            if not session.transport.is_open:
                dead.append(session_id)
                continue
            try:
                await session.transport.send_json(
                    {"type": "heartbeat", "timestamp": int(time.time() * 1000)}
                )
            except Exception as exc:
                logger.info(
                    "Heartbeat failed for session %s (%s), removing", session_id, type(exc).__name__
                )
                dead.append(session_id)
                continue
            session.last_activity_at = self._clock()

        for session_id in dead:
            await self.destroy(session_id)

        return dead

    async def run_sweeper(self, interval_seconds: float) -> None:
        while True:
            await asyncio.sleep(interval_seconds)
            await self.sweep()

    async def run_heartbeat(self, interval_seconds: float) -> None:
        while True:
            await asyncio.sleep(interval_seconds)
            await self.heartbeat()

    async def close_all(self, message: Optional[dict] = None) -> None:
        """Notify and close every session; used on shutdown."""
        for session_id, session in list(self._sessions.items()):
            if message is not None and session.transport.is_open:
                try:
                    await session.transport.send_json(message)
                except Exception:
                    logger.debug("Could not notify session %s of shutdown", session_id)
            await self.destroy(session_id, close_transport=True)

    # ------------------------------------------------------------------
    # Utility operations
    # ------------------------------------------------------------------

    def session_stats(self, session_id: str) -> dict:
        session = self.require(session_id)
        return {
            "duration": round(self._clock() - session.created_at, 3),
            "questions": len(session.turns),
            "interrupts": session.interrupt_count,
        }

    def list_sessions(self) -> List[dict]:
        now = self._clock()
        return [session.summary(now) for session in self._sessions.values()]

    def total_turns(self) -> int:
        return sum(len(session.turns) for session in self._sessions.values())

    def has_session(self, session_id: str) -> bool:
        return session_id in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)
