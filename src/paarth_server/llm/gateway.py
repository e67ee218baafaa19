"""
Generation Gateway

Asynchronous contract around the generation capability:

    submit(prompt, payload?, cancel_token?) -> text

The call suspends until the model responds, the cancel token fires, or the
per-request timeout elapses.

Outcomes
--------
- text                 the model answered and the token was not triggered
- RequestInterrupted   the token fired first; the in-flight call is cancelled
                       and any late result is dropped
- GenerationFailed     transport/model error, malformed response or timeout
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Optional, Protocol

from ..core.errors import GenerationFailed, RequestInterrupted
from ..prompts import TRANSCRIPTION_INSTRUCTION
from ..sessions.coordinator import CancelToken

logger = logging.getLogger("paarth.gateway")


class SupportsGeneration(Protocol):
    def generate(
        self,
        prompt: str,
        audio: Optional[str] = None,
        mime_type: str = "audio/webm",
    ) -> Awaitable[str]:
        ...


def _consume_result(task: "asyncio.Future[str]") -> None:
    # Late results of abandoned calls are dropped silently.
    if not task.cancelled():
        task.exception()


class GenerationGateway:
    """
    Cancellable, time-bounded front for a generation client.
    """

    def __init__(
        self,
        client: SupportsGeneration,
        timeout_seconds: Optional[float] = 60.0,
        audio_mime_type: str = "audio/webm",
    ) -> None:
        self._client = client
        self._timeout = timeout_seconds
        self._audio_mime_type = audio_mime_type

    async def submit(
        self,
        prompt: str,
        payload: Optional[str] = None,
        cancel_token: Optional[CancelToken] = None,
        request_id: Optional[str] = None,
        mime_type: Optional[str] = None,
    ) -> str:
        """
        Submit a prompt, optionally with a base64 audio payload.

        Raises
        ------
        RequestInterrupted
            If ``cancel_token`` is triggered before the response is returned.

        GenerationFailed
            On any error from the generation client, or on timeout.
        """
        if cancel_token is not None:
            cancel_token.raise_if_cancelled(request_id)

        generation = asyncio.ensure_future(
            self._client.generate(
                prompt,
                audio=payload,
                mime_type=mime_type or self._audio_mime_type,
            )
        )
        generation.add_done_callback(_consume_result)

        cancel_wait: Optional[asyncio.Future] = None
        waiters = {generation}
        if cancel_token is not None:
            cancel_wait = asyncio.ensure_future(cancel_token.wait())
            waiters.add(cancel_wait)

        try:
            done, _ = await asyncio.wait(
                waiters,
                timeout=self._timeout,
                return_when=asyncio.FIRST_COMPLETED,
            )
        except asyncio.CancelledError:
            generation.cancel()
            raise
        finally:
            if cancel_wait is not None:
                cancel_wait.cancel()

        if cancel_token is not None and cancel_token.cancelled:
            generation.cancel()
            logger.info("Discarding result of interrupted request %s", request_id)
            raise RequestInterrupted(request_id)

        if generation not in done:
            generation.cancel()
            logger.error("Generation request %s timed out after %ss", request_id, self._timeout)
            raise GenerationFailed("Generation timed out")

        try:
            return generation.result()
        except GenerationFailed:
            raise
        except Exception as exc:
            logger.error("Generation request %s failed: %s", request_id, exc)
            raise GenerationFailed(f"Generation failed: {type(exc).__name__}") from exc

    async def transcribe(
        self,
        audio: str,
        cancel_token: Optional[CancelToken] = None,
        request_id: Optional[str] = None,
        mime_type: Optional[str] = None,
    ) -> str:
        """Ask the model for the user's question contained in ``audio``."""
        text = await self.submit(
            TRANSCRIPTION_INSTRUCTION,
            payload=audio,
            cancel_token=cancel_token,
            request_id=request_id,
            mime_type=mime_type,
        )
        text = text.strip()
        if not text:
            raise GenerationFailed("Empty transcription")
        return text
