"""
Conversation Relay

Runs one question through the retrieval-augmented pipeline:

    transcribe (audio only) -> VectorIndex.query -> build_prompt
        -> GenerationGateway.submit -> SessionRegistry.record_turn

Every path ends the request in the RequestCoordinator. A request whose
cancel token fired returns None: nothing is recorded and nothing may be
delivered.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional, Sequence, Tuple

from ..core.errors import GenerationFailed, RequestInterrupted
from ..embeddings.index import VectorIndex
from ..knowledge.models import Verse
from ..llm.gateway import GenerationGateway
from ..prompts import APOLOGY_TEXT, build_prompt
from ..sessions.coordinator import GenerationRequest, RequestCoordinator
from ..sessions.models import Turn
from ..sessions.registry import SessionRegistry

logger = logging.getLogger("paarth.relay")


@dataclass(frozen=True)
class RelayResult:
    text: str
    verses: Tuple[Verse, ...]
    processing_time_ms: int
    transcription: Optional[str] = None
    degraded: bool = False

    @property
    def verse_ids(self) -> Tuple[str, ...]:
        return tuple(verse.id for verse in self.verses)


class ConversationService:
    def __init__(
        self,
        index: VectorIndex,
        gateway: GenerationGateway,
        registry: SessionRegistry,
        coordinator: RequestCoordinator,
        history_window: int = 2,
        retrieval_k_audio: int = 3,
        retrieval_k_text: int = 2,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.index = index
        self.gateway = gateway
        self.registry = registry
        self.coordinator = coordinator
        self._history_window = history_window
        self._k_audio = retrieval_k_audio
        self._k_text = retrieval_k_text
        self._clock = clock

    # ------------------------------------------------------------------
    # Session-bound answers
    # ------------------------------------------------------------------

    async def answer_audio(
        self,
        session_id: str,
        request: GenerationRequest,
        audio: str,
        mime_type: Optional[str] = None,
    ) -> Optional[RelayResult]:
        """
        Transcribe ``audio`` and answer the transcribed question.

        Raises
        ------
        GenerationFailed
            If transcription fails. The request is marked failed.
        """
        started = self._clock()
        logger.info("Processing audio for session %s", session_id)

        try:
            question = await self.gateway.transcribe(
                audio,
                cancel_token=request.cancel_token,
                request_id=request.id,
                mime_type=mime_type,
            )
        except RequestInterrupted:
            return None
        except GenerationFailed:
            self.coordinator.fail(request.id)
            raise

        logger.info("Transcribed question for session %s: %s", session_id, question)
        return await self._answer(
            session_id, request, question, self._k_audio, "audio", started, transcription=question
        )

    async def answer_text(
        self,
        session_id: str,
        request: GenerationRequest,
        question: str,
    ) -> Optional[RelayResult]:
        started = self._clock()
        logger.info("Processing text query for session %s", session_id)
        return await self._answer(session_id, request, question, self._k_text, "text", started)

    async def _answer(
        self,
        session_id: str,
        request: GenerationRequest,
        question: str,
        k: int,
        kind: str,
        started: float,
        transcription: Optional[str] = None,
    ) -> Optional[RelayResult]:
        session = self.registry.get(session_id)
        if session is None or request.cancelled:
            self.coordinator.fail(request.id)
            return None

        verses = await self.index.query(question, k)
        if request.cancelled:
            return None

        prompt = build_prompt(question, verses, session.turns, self._history_window)

        degraded = False
        try:
            text = await self.gateway.submit(
                prompt, cancel_token=request.cancel_token, request_id=request.id
            )
        except RequestInterrupted:
            return None
        except GenerationFailed as exc:
            logger.error("Answer generation failed for session %s: %s", session_id, exc)
            text = APOLOGY_TEXT
            degraded = True

        if request.cancelled or not self.registry.has_session(session_id):
            self.coordinator.fail(request.id)
            return None

        result = RelayResult(
            text=text,
            verses=tuple(verses),
            processing_time_ms=int((self._clock() - started) * 1000),
            transcription=transcription,
            degraded=degraded,
        )

        self.registry.record_turn(
            session_id,
            Turn(
                user_text=question,
                assistant_text=text,
                verse_ids=result.verse_ids,
                kind=kind,
            ),
        )

        if degraded:
            self.coordinator.fail(request.id)
        else:
            self.coordinator.complete(request.id)

        logger.info("Responded to session %s in %dms", session_id, result.processing_time_ms)
        return result

    # ------------------------------------------------------------------
    # Stateless answers
    # ------------------------------------------------------------------

    async def answer_stateless(
        self,
        question: str,
        history: Sequence[Turn] = (),
    ) -> RelayResult:
        """Answer a one-off question that is not bound to a live session."""
        started = self._clock()
        verses = await self.index.query(question, self._k_text)
        prompt = build_prompt(question, verses, history, self._history_window)

        degraded = False
        try:
            text = await self.gateway.submit(prompt)
        except GenerationFailed as exc:
            logger.error("Stateless answer generation failed: %s", exc)
            text = APOLOGY_TEXT
            degraded = True

        return RelayResult(
            text=text,
            verses=tuple(verses),
            processing_time_ms=int((self._clock() - started) * 1000),
            degraded=degraded,
        )
