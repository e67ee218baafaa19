"""
Connection Protocol Handler

Implements the JSON message protocol spoken over one persistent connection.
Every inbound frame is a JSON object with a ``type`` discriminator.

Inbound:  start_session, audio_data, text_query, text_message,
          get_random_verse, advanced_search, interrupt, end_session,
          ping, pong
Outbound: connection_established, session_started, text_response,
          random_verse, search_results, interrupted, session_ended,
          pong, error, heartbeat, server_shutdown

``heartbeat`` is the server liveness probe and ``pong`` its optional client
reply. Neither is required of a client: a delivered probe already counts as
activity for the session.

Generation work (audio_data, text_query, text_message) runs in its own task
so that interrupts and newer questions are read while it is pending. The
request is registered with the RequestCoordinator before the task starts,
in inbound order, so a newer question always supersedes an older one.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional, Set

from pydantic import ValidationError

from ..container import Services
from ..core.errors import GenerationFailed, MalformedMessage
from ..knowledge.models import SearchOptions
from ..prompts import (
    AUDIO_RETRY_TEXT,
    GREETING_TEXT,
    INVALID_FORMAT_TEXT,
    PROCESSING_ERROR_TEXT,
    RANDOM_VERSE_ERROR_TEXT,
    SEARCH_ERROR_TEXT,
    SESSION_NOT_FOUND_TEXT,
    TEXT_RETRY_TEXT,
    UNKNOWN_MESSAGE_TEXT,
)
from ..sessions.coordinator import GenerationRequest
from ..sessions.models import Session, Transport
from .service import RelayResult

logger = logging.getLogger("paarth.connection")

Handler = Callable[[Session, Dict[str, Any]], Awaitable[None]]


def parse_message(raw: str) -> Dict[str, Any]:
    """
    Decode one inbound frame.

    Raises
    ------
    MalformedMessage
        If the frame is not a JSON object with a string ``type``.
    """
    try:
        data = json.loads(raw)
    except (TypeError, ValueError) as exc:
        raise MalformedMessage("Invalid JSON") from exc

    if not isinstance(data, dict) or not isinstance(data.get("type"), str):
        raise MalformedMessage("Message must be an object with a 'type' field")

    return data


def _now_ms() -> int:
    return int(time.time() * 1000)


class ConnectionHandler:
    """
    Protocol state for one connection.
    """

    def __init__(self, services: Services, transport: Transport) -> None:
        self._services = services
        self._transport = transport
        self._tasks: Set[asyncio.Task] = set()
        self.session: Optional[Session] = None
        self.ended = False

        self._handlers: Dict[str, Handler] = {
            "start_session": self._on_start_session,
            "audio_data": self._on_audio_data,
            "text_query": self._on_text_query,
            "text_message": self._on_text_query,
            "get_random_verse": self._on_random_verse,
            "advanced_search": self._on_advanced_search,
            "interrupt": self._on_interrupt,
            "end_session": self._on_end_session,
            "ping": self._on_ping,
            "pong": self._on_pong,
        }

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def open(self) -> Session:
        self.session = self._services.registry.create(self._transport)
        await self._send({
            "type": "connection_established",
            "message": GREETING_TEXT,
            "sessionId": self.session.id,
            "knowledgeBaseStats": self._services.index.stats(),
        })
        return self.session

    async def close(self) -> None:
        """Tear down after the transport closed."""
        if self.session is not None:
            await self._services.registry.destroy(self.session.id)

        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)

    # ------------------------------------------------------------------
    # Inbound dispatch
    # ------------------------------------------------------------------

    async def handle_raw(self, raw: str) -> None:
        try:
            data = parse_message(raw)
        except MalformedMessage as exc:
            logger.warning("Invalid message received: %s", exc)
            await self._send_error(INVALID_FORMAT_TEXT)
            return

        session = self._services.registry.lookup(self._transport)
        if session is None:
            await self._send_error(SESSION_NOT_FOUND_TEXT)
            return

        self._services.registry.touch(session.id)

        handler = self._handlers.get(data["type"])
        if handler is None:
            await self._send_error(UNKNOWN_MESSAGE_TEXT, sessionId=session.id)
            return

        try:
            await handler(session, data)
        except Exception:
            logger.exception("Error handling %s message for session %s", data["type"], session.id)
            await self._send_error(PROCESSING_ERROR_TEXT)

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------

    async def _on_start_session(self, session: Session, data: Dict[str, Any]) -> None:
        self._services.coordinator.cancel_all(session.id)
        self._services.registry.reset(session.id)
        await self._send({"type": "session_started", "sessionId": session.id})

    async def _on_audio_data(self, session: Session, data: Dict[str, Any]) -> None:
        audio = data.get("audio")
        if not isinstance(audio, str) or not audio:
            await self._send_error(AUDIO_RETRY_TEXT)
            return

        mime_type = data.get("mimeType") if isinstance(data.get("mimeType"), str) else None
        request = self._services.coordinator.start_request(session.id)
        self._spawn(self._relay_audio(session.id, request, audio, mime_type))

    async def _on_text_query(self, session: Session, data: Dict[str, Any]) -> None:
        question = data.get("query") or data.get("text")
        if not isinstance(question, str) or not question.strip():
            await self._send_error(TEXT_RETRY_TEXT)
            return

        request = self._services.coordinator.start_request(session.id)
        self._spawn(self._relay_text(session.id, request, question.strip()))

    async def _on_random_verse(self, session: Session, data: Dict[str, Any]) -> None:
        verse = self._services.index.random_verse()
        if verse is None:
            await self._send_error(RANDOM_VERSE_ERROR_TEXT)
            return
        await self._send({
            "type": "random_verse",
            "verse": verse.public_dict(),
            "sessionId": session.id,
        })

    async def _on_advanced_search(self, session: Session, data: Dict[str, Any]) -> None:
        try:
            options = SearchOptions.model_validate(data.get("options") or {})
        except ValidationError:
            await self._send_error(SEARCH_ERROR_TEXT)
            return

        results = await self._services.index.advanced_search(options)
        await self._send({
            "type": "search_results",
            "results": [verse.public_dict() for verse in results],
            "searchOptions": options.model_dump(by_alias=True),
            "sessionId": session.id,
        })

    async def _on_interrupt(self, session: Session, data: Dict[str, Any]) -> None:
        cancelled = self._services.coordinator.cancel_all(session.id)
        count = self._services.registry.register_interrupt(session.id)
        logger.info(
            "Session %s interrupted (%d request(s) cancelled)", session.id, cancelled
        )
        await self._send({
            "type": "interrupted",
            "sessionId": session.id,
            "interruptCount": count,
        })

    async def _on_end_session(self, session: Session, data: Dict[str, Any]) -> None:
        stats = self._services.registry.session_stats(session.id)
        await self._send({
            "type": "session_ended",
            "sessionId": session.id,
            "stats": stats,
        })
        self.ended = True
        await self._services.registry.destroy(session.id, close_transport=True)

    async def _on_ping(self, session: Session, data: Dict[str, Any]) -> None:
        await self._send({"type": "pong", "timestamp": _now_ms()})

    async def _on_pong(self, session: Session, data: Dict[str, Any]) -> None:
        # Heartbeat reply; activity was already refreshed on receipt.
        return None

    # ------------------------------------------------------------------
    # Relay tasks
    # ------------------------------------------------------------------

    def _spawn(self, coro: Awaitable[None]) -> None:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _relay_audio(
        self,
        session_id: str,
        request: GenerationRequest,
        audio: str,
        mime_type: Optional[str],
    ) -> None:
        try:
            result = await self._services.conversation.answer_audio(
                session_id, request, audio, mime_type=mime_type
            )
        except GenerationFailed as exc:
            logger.error("Audio processing failed for session %s: %s", session_id, exc)
            if not request.cancelled:
                await self._send_error(AUDIO_RETRY_TEXT)
            return
        except Exception:
            self._services.coordinator.fail(request.id)
            logger.exception("Unexpected error processing audio for session %s", session_id)
            if not request.cancelled:
                await self._send_error(AUDIO_RETRY_TEXT)
            return

        await self._deliver(session_id, request, result)

    async def _relay_text(
        self,
        session_id: str,
        request: GenerationRequest,
        question: str,
    ) -> None:
        try:
            result = await self._services.conversation.answer_text(session_id, request, question)
        except Exception:
            self._services.coordinator.fail(request.id)
            logger.exception("Unexpected error processing text for session %s", session_id)
            if not request.cancelled:
                await self._send_error(TEXT_RETRY_TEXT)
            return

        await self._deliver(session_id, request, result)

    async def _deliver(
        self,
        session_id: str,
        request: GenerationRequest,
        result: Optional[RelayResult],
    ) -> None:
        if result is None or request.cancelled:
            return

        message: Dict[str, Any] = {
            "type": "text_response",
            "text": result.text,
            "versesUsed": [verse.public_dict() for verse in result.verses],
            "processingTime": result.processing_time_ms,
            "sessionId": session_id,
            "speaker": "krishna",
        }
        if result.transcription is not None:
            message["transcription"] = result.transcription

        await self._send(message)

    # ------------------------------------------------------------------
    # Outbound
    # ------------------------------------------------------------------

    async def _send(self, message: Mapping[str, Any]) -> bool:
        if not self._transport.is_open:
            return False
        try:
            await self._transport.send_json(message)
        except Exception as exc:
            logger.info("Send of %s failed (%s)", message.get("type"), type(exc).__name__)
            return False
        return True

    async def _send_error(self, text: str, **extra: Any) -> None:
        await self._send({"type": "error", "message": text, **extra})
