"""
Request Coordinator

Tracks in-flight generation requests per session and enforces at most one
live generation per session.

Starting a request cancels every active request of the same session. The
same mechanism serves explicit user interruption and session teardown.

Request lifecycle
-----------------
PENDING -> COMPLETED | CANCELLED | FAILED

Terminal states are final. Nothing is retried automatically; a retry is a
new request with a new id.
"""

from __future__ import annotations

import asyncio
import enum
import logging
import uuid
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from ..core.errors import RequestInterrupted

logger = logging.getLogger("paarth.coordinator")

# Terminal states kept for lookup after a request leaves the active set
FINISHED_HISTORY_SIZE = 1024


class CancelToken:
    """Cooperative cancellation flag checked at suspension points."""

    def __init__(self) -> None:
        self._event = asyncio.Event()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        self._event.set()

    async def wait(self) -> None:
        await self._event.wait()

    def raise_if_cancelled(self, request_id: Optional[str] = None) -> None:
        if self._event.is_set():
            raise RequestInterrupted(request_id)


class RequestState(str, enum.Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"


@dataclass
class GenerationRequest:
    id: str
    session_id: str
    cancel_token: CancelToken = field(default_factory=CancelToken)
    state: RequestState = RequestState.PENDING

    @property
    def cancelled(self) -> bool:
        return self.cancel_token.cancelled


class RequestCoordinator:
    """
    Owner of the per-session active request sets.

    No other component mutates these sets.
    """

    def __init__(self) -> None:
        self._active: Dict[str, Dict[str, GenerationRequest]] = {}
        self._owners: Dict[str, str] = {}
        self._finished: "OrderedDict[str, RequestState]" = OrderedDict()

    # ------------------------------------------------------------------
    # Core operations
    # ------------------------------------------------------------------

    def start_request(self, session_id: str) -> GenerationRequest:
        """
        Register a new request for ``session_id``.

        Every request still active for the session is cancelled first.
        """
        superseded = self.cancel_all(session_id)
        if superseded:
            logger.info(
                "Superseded %d active request(s) for session %s", superseded, session_id
            )

        request = GenerationRequest(id=f"req_{uuid.uuid4().hex}", session_id=session_id)
        self._active.setdefault(session_id, {})[request.id] = request
        self._owners[request.id] = session_id
        return request

    def cancel_all(self, session_id: str) -> int:
        """
        Trigger every active cancel token of the session and clear its set.

        Returns the number of cancelled requests. Idempotent.
        """
        requests = self._active.pop(session_id, {})
        for request in requests.values():
            request.cancel_token.cancel()
            request.state = RequestState.CANCELLED
            self._owners.pop(request.id, None)
            self._remember(request)

        if requests:
            logger.debug("Cancelled %d request(s) for session %s", len(requests), session_id)
        return len(requests)

    def complete(self, request_id: str) -> None:
        """Mark a request completed. No-op if it is no longer active."""
        self._finish(request_id, RequestState.COMPLETED)

    def fail(self, request_id: str) -> None:
        """Mark a request failed. No-op if it is no longer active."""
        self._finish(request_id, RequestState.FAILED)

    def _finish(self, request_id: str, state: RequestState) -> None:
        session_id = self._owners.pop(request_id, None)
        if session_id is None:
            return

        requests = self._active.get(session_id, {})
        request = requests.pop(request_id, None)
        if request is not None:
            request.state = state
            self._remember(request)
        if not requests:
            self._active.pop(session_id, None)

    def _remember(self, request: GenerationRequest) -> None:
        self._finished[request.id] = request.state
        while len(self._finished) > FINISHED_HISTORY_SIZE:
            self._finished.popitem(last=False)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def active_ids(self, session_id: str) -> List[str]:
        return list(self._active.get(session_id, {}))

    def is_active(self, request_id: str) -> bool:
        return request_id in self._owners

    def state(self, request_id: str) -> Optional[RequestState]:
        """Current state of a request, or None if it is unknown or long finished."""
        if request_id in self._owners:
            return RequestState.PENDING
        return self._finished.get(request_id)

    def active_count(self) -> int:
        return len(self._owners)
