"""
Knowledge Base Loader

Reads and writes the verse corpus JSON file:

    {
        "verses": [ {...}, ... ],
        "context_keywords": { "<category>": ["<keyword>", ...], ... }
    }

Verses may carry a precomputed ``embedding`` list; it is kept as-is.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path

from pydantic import ValidationError

from .models import Corpus, Verse

logger = logging.getLogger("paarth.knowledge")


class CorpusLoadError(RuntimeError):
    """Raised when the corpus file exists but cannot be parsed."""


# Minimal corpus used when the knowledge base file is missing.
FALLBACK_CORPUS = Corpus(
    verses=[
        Verse(
            id="bg_2_47",
            chapter=2,
            verse=47,
            sanskrit="कर्मण्येवाधिकारस्ते मा फलेषु कदाचन। मा कर्मफलहेतुर्भूर्मा ते सङ्गोऽस्त्वकर्मणि॥",
            hindi="तुम्हारा अधिकार केवल कर्म करने में है, फल में कभी नहीं। तुम कर्मफल के हेतु मत बनो और न ही तुम्हारी अकर्म में आसक्ति हो।",
            meaning="यह निष्काम कर्म का मूल सिद्धांत है। फल की चिंता छोड़कर पूरी निष्ठा से काम करना ही सच्चा कर्मयोग है।",
            context_tags=["कर्म", "निष्काम", "फल", "कर्मयोग", "कर्तव्य"],
            emotional_context=["चिंता", "तनाव", "प्रेशर"],
            themes=["detachment", "duty", "action"],
        )
    ],
    context_keywords={
        "काम": ["कार्य", "नौकरी", "व्यापार", "करियर"],
        "मन": ["चिंता", "डर", "गुस्सा", "दुख"],
    },
)


def load_corpus(path: str | Path) -> Corpus:
    """
    Load the corpus from ``path``.

    A missing file yields ``FALLBACK_CORPUS``. A file that exists but is not
    valid JSON or does not match the schema raises CorpusLoadError.
    """
    corpus_path = Path(path)

    if not corpus_path.exists():
        logger.warning("Knowledge base %s not found, using fallback verses", corpus_path)
        return FALLBACK_CORPUS.model_copy(deep=True)

    try:
        with corpus_path.open("r", encoding="utf-8") as f:
            data = json.load(f)
        corpus = Corpus.model_validate(data)
    except (json.JSONDecodeError, ValidationError) as exc:
        raise CorpusLoadError(
            f"Failed to load knowledge base {corpus_path}: {type(exc).__name__}"
        ) from exc

    logger.info("Loaded %d verses from %s", len(corpus.verses), corpus_path)
    return corpus


def save_corpus(path: str | Path, corpus: Corpus, include_embeddings: bool = True) -> None:
    """Write the corpus back to ``path`` as pretty-printed UTF-8 JSON."""
    corpus_path = Path(path)
    corpus_path.parent.mkdir(parents=True, exist_ok=True)

    exclude = None if include_embeddings else {"verses": {"__all__": {"embedding"}}}
    data = corpus.model_dump(exclude=exclude, exclude_none=True)

    with corpus_path.open("w", encoding="utf-8") as f:
        json.dump(data, f, ensure_ascii=False, indent=2)

    logger.info("Saved %d verses to %s", len(corpus.verses), corpus_path)
