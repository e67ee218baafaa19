"""
Verse Vector Index

This module implements the in-memory vector index over the verse corpus.

Key Properties
--------------
- Cosine similarity ranking over precomputed or startup-computed embeddings
- Lexical keyword fallback for verses without embeddings, and for the whole
  corpus when the embedding capability is unavailable
- Stable ordering: ties are broken by corpus insertion order
- Append-only: new verses are validated and fully embedded before they are
  published, in a single assignment of the document tuple
"""

from __future__ import annotations

import asyncio
import logging
import random
from typing import Awaitable, Dict, List, Mapping, Optional, Protocol, Sequence, Tuple, Union

import numpy as np
from pydantic import ValidationError

from ..core.errors import DocumentValidationError, NotInitialized
from ..knowledge.models import REQUIRED_VERSE_FIELDS, Corpus, SearchOptions, Verse

logger = logging.getLogger("paarth.index")


# Lexical scoring weights
EMOTIONAL_TAG_WEIGHT = 4
TOPICAL_TAG_WEIGHT = 3
TEXT_FIELD_WEIGHT = 2
CATEGORY_BONUS = 5

# Scale applied to keyword scores of embedding-less verses so they sit on a
# scale comparable to cosine similarity.
KEYWORD_SCORE_SCALE = 100.0


class SupportsEmbedding(Protocol):
    def embed_one(self, text: str) -> Awaitable[List[float]]:
        ...


# ---------------------------------------------------------------------
# Similarity
# ---------------------------------------------------------------------

def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """
    Cosine similarity of two vectors.

    Returns 0.0 when the vectors differ in dimension, are empty, or either
    has zero magnitude.
    """
    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)

    if va.shape != vb.shape or va.size == 0:
        return 0.0

    norm_a = float(np.linalg.norm(va))
    norm_b = float(np.linalg.norm(vb))
    if norm_a == 0.0 or norm_b == 0.0:
        return 0.0

    return float(np.dot(va, vb) / (norm_a * norm_b))


def _tokens(text: str) -> List[str]:
    return text.lower().split()


def _any_contains(values: Sequence[str], token: str) -> bool:
    return any(token in value for value in values)


# ---------------------------------------------------------------------
# Vector Index
# ---------------------------------------------------------------------

class VectorIndex:
    """
    In-memory nearest-neighbour index over verses.

    Reads are lock-free against an immutable snapshot of the document tuple.
    Appends and initialization are serialized by an asyncio lock.
    """

    def __init__(
        self,
        corpus: Corpus,
        embedder: Optional[SupportsEmbedding] = None,
        embedding_delay_seconds: float = 0.0,
    ) -> None:
        self._docs: Tuple[Verse, ...] = tuple(corpus.verses)
        self._context_keywords: Dict[str, List[str]] = {
            category: list(keywords)
            for category, keywords in corpus.context_keywords.items()
        }
        self._embedder = embedder
        self._embedding_delay = embedding_delay_seconds
        self._initialized = False
        self._lock = asyncio.Lock()

        ids = [doc.id for doc in self._docs]
        if len(ids) != len(set(ids)):
            raise DocumentValidationError("Corpus contains duplicate verse ids.")

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    async def initialize(self) -> None:
        """
        Compute embeddings for every verse that lacks one.

        A failed embedding keeps the verse with no embedding; it is then
        scored lexically.
        """
        async with self._lock:
            if self._embedder is None:
                logger.warning("No embedder configured, index will use keyword search only")
                return

            updated: List[Verse] = []
            computed = 0
            for position, doc in enumerate(self._docs):
                if doc.has_embedding:
                    updated.append(doc)
                    continue

                if computed and self._embedding_delay > 0:
                    await asyncio.sleep(self._embedding_delay)

                updated.append(await self._embed_verse(doc))
                computed += 1
                logger.debug(
                    "Embedded verse %s (%d/%d)", doc.id, position + 1, len(self._docs)
                )

            self._docs = tuple(updated)
            self._initialized = True

        stats = self.stats()
        logger.info(
            "Vector index initialized: %d verses, %d with embeddings",
            stats["total_verses"],
            stats["verses_with_embeddings"],
        )

    async def _embed_verse(self, doc: Verse) -> Verse:
        try:
            vector = await self._embedder.embed_one(doc.embedding_text())
        except Exception as exc:
            logger.error("Embedding failed for verse %s: %r", doc.id, exc)
            return doc.with_embedding(None)
        return doc.with_embedding(vector)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def query(self, text: str, k: int = 3) -> List[Verse]:
        """
        Return up to ``k`` verses most similar to ``text``, best first.
        """
        return await self._rank(text, k, self._docs)

    async def _rank(self, text: str, k: int, docs: Sequence[Verse]) -> List[Verse]:
        if k <= 0 or not docs:
            return []

        try:
            query_embedding = await self._embed_query(text)
        except Exception as exc:
            logger.warning("Semantic search unavailable (%r), using keyword search", exc)
            return self._keyword_search(text, k, docs)

        scored: List[Tuple[float, int, Verse]] = []
        for position, doc in enumerate(docs):
            if doc.has_embedding:
                score = cosine_similarity(query_embedding, doc.embedding)
            else:
                score = self._keyword_score(text, doc)
            scored.append((score, position, doc))

        scored.sort(key=lambda item: (-item[0], item[1]))
        results = [doc for _, _, doc in scored[:k]]

        logger.info("Found %d relevant verses for query %r", len(results), text)
        return results

    async def _embed_query(self, text: str) -> List[float]:
        if not self._initialized or self._embedder is None:
            raise NotInitialized("Vector index is not initialized")
        return await self._embedder.embed_one(text)

    def _keyword_search(self, text: str, k: int, docs: Sequence[Verse]) -> List[Verse]:
        """
        Rank verses by weighted keyword matches, dropping zero scores.
        """
        if k <= 0:
            return []

        query_lower = text.lower()
        words = _tokens(text)

        matched_categories = [
            category
            for category, keywords in self._context_keywords.items()
            if any(keyword.lower() in query_lower for keyword in keywords)
        ]

        scored: List[Tuple[int, int, Verse]] = []
        for position, doc in enumerate(docs):
            score = 0
            for word in words:
                if _any_contains(doc.context_tags, word):
                    score += TOPICAL_TAG_WEIGHT
                if _any_contains(doc.emotional_context, word):
                    score += EMOTIONAL_TAG_WEIGHT
                if word in doc.hindi.lower():
                    score += TEXT_FIELD_WEIGHT
                if word in doc.meaning.lower():
                    score += TEXT_FIELD_WEIGHT

            for category in matched_categories:
                if category in doc.context_tags:
                    score += CATEGORY_BONUS

            if score > 0:
                scored.append((score, position, doc))

        scored.sort(key=lambda item: (-item[0], item[1]))
        return [doc for _, _, doc in scored[:k]]

    @staticmethod
    def _keyword_score(text: str, doc: Verse) -> float:
        """
        Normalized keyword score for a verse that has no embedding.
        """
        score = 0
        for word in _tokens(text):
            if word in doc.hindi.lower():
                score += TEXT_FIELD_WEIGHT
            if word in doc.meaning.lower():
                score += TEXT_FIELD_WEIGHT
            if _any_contains(doc.context_tags, word):
                score += 1
            if _any_contains(doc.emotional_context, word):
                score += 1
        return score / KEYWORD_SCORE_SCALE

    async def advanced_search(self, options: SearchOptions) -> List[Verse]:
        """
        Filter by chapter and tag dimensions, then optionally rank by query.
        """
        results: List[Verse] = list(self._docs)

        if options.chapter is not None:
            results = [v for v in results if v.chapter == options.chapter]

        if options.themes:
            results = [v for v in results if any(t in v.themes for t in options.themes)]

        if options.emotional_context:
            results = [
                v for v in results
                if any(e in v.emotional_context for e in options.emotional_context)
            ]

        if options.life_situations:
            results = [
                v for v in results
                if any(s in v.life_situations for s in options.life_situations)
            ]

        if options.query.strip():
            return await self._rank(options.query, options.max_results, results)

        if options.max_results <= 0:
            return []
        return results[: options.max_results]

    # ------------------------------------------------------------------
    # Ingest
    # ------------------------------------------------------------------

    async def add_document(self, data: Union[Mapping[str, object], Verse]) -> Verse:
        """
        Validate, embed and publish a new verse.

        Raises
        ------
        DocumentValidationError
            If a required field is missing, the id already exists, or a
            supplied embedding differs in dimension from the corpus. The
            corpus is unchanged in that case.
        """
        verse = self._validate(data)

        async with self._lock:
            if any(doc.id == verse.id for doc in self._docs):
                raise DocumentValidationError(f"Verse with ID {verse.id} already exists")

            dimension = self._embedding_dimension()
            if verse.has_embedding and dimension is not None and len(verse.embedding) != dimension:
                raise DocumentValidationError(
                    f"Embedding dimension {len(verse.embedding)} does not match corpus dimension {dimension}"
                )

            if self._initialized and self._embedder is not None and not verse.has_embedding:
                verse = await self._embed_verse(verse)

            self._docs = self._docs + (verse,)

        logger.info("Added new verse: %s", verse.id)
        return verse

    @staticmethod
    def _validate(data: Union[Mapping[str, object], Verse]) -> Verse:
        if isinstance(data, Verse):
            return data

        for field in REQUIRED_VERSE_FIELDS:
            if not data.get(field):
                raise DocumentValidationError(f"Missing required field: {field}")

        try:
            return Verse.model_validate(dict(data))
        except ValidationError as exc:
            raise DocumentValidationError(f"Invalid verse: {exc.error_count()} validation error(s)") from exc

    # ------------------------------------------------------------------
    # Read helpers
    # ------------------------------------------------------------------

    @property
    def documents(self) -> Tuple[Verse, ...]:
        return self._docs

    def _embedding_dimension(self) -> Optional[int]:
        return next((len(doc.embedding) for doc in self._docs if doc.has_embedding), None)

    def __len__(self) -> int:
        return len(self._docs)

    def get(self, verse_id: str) -> Optional[Verse]:
        return next((doc for doc in self._docs if doc.id == verse_id), None)

    def by_chapter(self, chapter: int) -> List[Verse]:
        return [doc for doc in self._docs if doc.chapter == chapter]

    def random_verse(self) -> Optional[Verse]:
        docs = self._docs
        if not docs:
            return None
        return random.choice(docs)

    def stats(self) -> dict:
        docs = self._docs
        return {
            "total_verses": len(docs),
            "verses_with_embeddings": sum(1 for doc in docs if doc.has_embedding),
            "categories": len(self._context_keywords),
            "chapters": len({doc.chapter for doc in docs}),
            "is_initialized": self._initialized,
        }
