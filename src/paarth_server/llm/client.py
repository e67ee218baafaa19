from typing import Any, Dict, List, Optional
import logging

import httpx

from ..config import settings
from ..core.errors import GenerationFailed
from ..prompts import SYSTEM_INSTRUCTION

logger = logging.getLogger("paarth.llm")


class GeminiClient:
    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        base_url: Optional[str] = None,
        system_instruction: str = SYSTEM_INSTRUCTION,
        timeout: float = 60.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key or settings.gemini_api_key.get_secret_value()
        self.model = model or settings.generation_model
        self.base_url = (base_url or settings.gemini_base_url).rstrip("/")
        self.system_instruction = system_instruction
        self.timeout = timeout
        self._transport = transport

    async def generate(
        self,
        prompt: str,
        audio: Optional[str] = None,
        mime_type: str = "audio/webm",
        temperature: float = 0.7,
    ) -> str:
        """
        Returns the text of the first candidate. ``audio`` is base64 data sent
        as an inline part after the prompt.
        """
        parts: List[Dict[str, Any]] = [{"text": prompt}]
        if audio:
            parts.append({"inline_data": {"mime_type": mime_type, "data": audio}})

        payload = {
            "system_instruction": {"parts": [{"text": self.system_instruction}]},
            "contents": [{"role": "user", "parts": parts}],
            "generationConfig": {
                "temperature": temperature,
                "topP": 0.8,
                "topK": 40,
                "maxOutputTokens": 1024,
            },
        }

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                resp = await client.post(
                    f"{self.base_url}/models/{self.model}:generateContent",
                    json=payload,
                    headers={"x-goog-api-key": self.api_key},
                )
            resp.raise_for_status()
            data = resp.json()
        except httpx.HTTPError as exc:
            logger.error("Generation request failed (%s): %s", type(exc).__name__, exc)
            raise GenerationFailed(f"Generation failed: {type(exc).__name__}") from exc
        except ValueError as exc:
            raise GenerationFailed("Generation response is not valid JSON") from exc

        return self._extract_text(data)

    @staticmethod
    def _extract_text(data: Any) -> str:
        try:
            parts = data["candidates"][0]["content"]["parts"]
        except (KeyError, IndexError, TypeError) as exc:
            raise GenerationFailed("No valid response received") from exc

        text = "".join(part.get("text", "") for part in parts if isinstance(part, dict))
        if not text:
            raise GenerationFailed("No valid response received")
        return text
