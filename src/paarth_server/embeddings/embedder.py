"""
Embedding Client

This module implements the embedding capability used by the vector index,
backed by the Gemini embeddings REST API. It is responsible for:

- Single and batched embedding requests
- Network and transport error isolation
- Strict response validation

The class is stateless and safe to reuse across requests.
"""

from __future__ import annotations

from typing import List, Sequence, Optional
import logging
import httpx

from ..config import settings
from ..core.errors import EmbeddingFailed

logger = logging.getLogger("paarth.embedder")


class Embedder:
    """
    Asynchronous embedding generator.

    This class performs no caching; the vector index keeps the vectors it
    computes for the lifetime of the process.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: float = 60.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        """
        Initialize an Embedder.

        Parameters
        ----------
        api_key : Optional[str]
            Override for the Gemini API key. Defaults to settings.gemini_api_key.

        model : Optional[str]
            Override for the embedding model. Defaults to settings.embedding_model.

        base_url : Optional[str]
            Base URL of the Gemini REST API.

        timeout : float
            HTTP timeout for each request.

        transport : Optional[httpx.AsyncBaseTransport]
            Custom transport, used by tests to stub the API.
        """
        self.api_key = api_key or settings.gemini_api_key.get_secret_value()
        self.model = model or settings.embedding_model
        self.base_url = (base_url or settings.gemini_base_url).rstrip("/")
        self.timeout = timeout
        self._transport = transport

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def embed_one(self, text: str) -> List[float]:
        """
        Embed a single text.

        Raises
        ------
        EmbeddingFailed
            If the request fails or the response is malformed.
        """
        payload = {
            "model": f"models/{self.model}",
            "content": {"parts": [{"text": text}]},
        }
        data = await self._post(f"models/{self.model}:embedContent", payload, size=1)
        return self._extract_vector(data.get("embedding"), index=0)

    async def embed(
        self,
        texts: Sequence[str],
        batch_size: int = 20,
    ) -> List[List[float]]:
        """
        Generate embeddings for a sequence of input texts.

        Parameters
        ----------
        texts : Sequence[str]
            Input text strings.

        batch_size : int
            Maximum batch size per request.

        Returns
        -------
        List[List[float]]
            One embedding per input text, in input order.

        Raises
        ------
        EmbeddingFailed
            If any batch fails or the response is malformed.
        """
        if not texts:
            return []

        all_embeddings: List[List[float]] = []

        for start in range(0, len(texts), batch_size):
            batch = list(texts[start : start + batch_size])
            payload = {
                "requests": [
                    {
                        "model": f"models/{self.model}",
                        "content": {"parts": [{"text": text}]},
                    }
                    for text in batch
                ]
            }
            data = await self._post(
                f"models/{self.model}:batchEmbedContents", payload, size=len(batch)
            )

            records = data.get("embeddings")
            if not isinstance(records, list) or len(records) != len(batch):
                raise EmbeddingFailed(
                    "Batch embedding response does not match request size."
                )

            for index, record in enumerate(records):
                all_embeddings.append(self._extract_vector(record, index=start + index))

        return all_embeddings

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _post(self, path: str, payload: dict, size: int) -> dict:
        headers = {"x-goog-api-key": self.api_key}

        try:
            async with httpx.AsyncClient(
                timeout=self.timeout, transport=self._transport
            ) as client:
                response = await client.post(
                    f"{self.base_url}/{path}",
                    json=payload,
                    headers=headers,
                )
                response.raise_for_status()
                data = response.json()
        except httpx.HTTPError as exc:
            logger.error(
                "Embedding request failed (%s): batch size=%d, error=%s",
                type(exc).__name__,
                size,
                str(exc),
            )
            raise EmbeddingFailed(
                f"Embedding generation failed: {type(exc).__name__}"
            ) from exc
        except ValueError as exc:
            raise EmbeddingFailed("Embedding response is not valid JSON.") from exc

        if not isinstance(data, dict):
            raise EmbeddingFailed("Embedding response must be a JSON object.")

        return data

    @staticmethod
    def _extract_vector(record: object, index: int) -> List[float]:
        """
        Validate one embedding record of the form ``{"values": [...]}``.
        """
        if not isinstance(record, dict) or "values" not in record:
            raise EmbeddingFailed(
                f"Malformed embedding record at index {index}: {record!r}"
            )

        values = record["values"]
        if not isinstance(values, list) or not values or not all(
            isinstance(x, (float, int)) for x in values
        ):
            raise EmbeddingFailed(
                f"Invalid embedding vector at index {index}: must be a non-empty float list."
            )

        return [float(x) for x in values]
