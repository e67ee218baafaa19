"""
Knowledge Base Data Models

Canonical schema for verses in the corpus and for the corpus file itself.

Each Verse is immutable once created. Attaching an embedding produces a new
instance via ``with_embedding``.
"""

from __future__ import annotations

from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


REQUIRED_VERSE_FIELDS = ("id", "chapter", "verse", "sanskrit", "hindi", "meaning")


class Verse(BaseModel):
    """
    A single Bhagavad Gita verse with its tag dimensions.

    Tag dimensions
    --------------
    - context_tags       topical tags
    - emotional_context  emotional tags
    - themes             thematic tags (English)
    - life_situations    situational tags
    """

    id: str = Field(..., min_length=1)
    chapter: int = Field(..., ge=1)
    verse: int = Field(..., ge=1)

    sanskrit: str = Field(..., min_length=1)
    hindi: str = Field(..., min_length=1)
    meaning: str = Field(..., min_length=1)
    detailed_explanation: Optional[str] = None

    context_tags: List[str] = Field(default_factory=list)
    emotional_context: List[str] = Field(default_factory=list)
    themes: List[str] = Field(default_factory=list)
    life_situations: List[str] = Field(default_factory=list)

    embedding: Optional[List[float]] = None

    model_config = ConfigDict(
        extra="ignore",
        frozen=True,
    )

    @property
    def has_embedding(self) -> bool:
        return bool(self.embedding)

    def embedding_text(self) -> str:
        """Text used to compute this verse's embedding."""
        parts = [
            self.hindi,
            self.meaning,
            self.detailed_explanation or "",
            " ".join(self.context_tags),
            " ".join(self.emotional_context),
            " ".join(self.themes),
            " ".join(self.life_situations),
        ]
        return " ".join(part for part in parts if part)

    def with_embedding(self, embedding: Optional[List[float]]) -> "Verse":
        return self.model_copy(update={"embedding": embedding})

    def public_dict(self) -> dict:
        """Serializable view without the embedding vector."""
        return self.model_dump(exclude={"embedding"})


class Corpus(BaseModel):
    """Contents of the knowledge base file."""

    verses: List[Verse] = Field(default_factory=list)
    context_keywords: Dict[str, List[str]] = Field(default_factory=dict)

    model_config = ConfigDict(extra="ignore")


class SearchOptions(BaseModel):
    """
    Filter and query criteria for advanced search.

    Filters within one tag dimension are OR-ed; dimensions are AND-ed.
    """

    query: str = ""
    chapter: Optional[int] = None
    themes: List[str] = Field(default_factory=list)
    emotional_context: List[str] = Field(default_factory=list)
    life_situations: List[str] = Field(default_factory=list)
    max_results: int = Field(default=5, alias="maxResults")

    model_config = ConfigDict(extra="ignore", populate_by_name=True)
