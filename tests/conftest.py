import asyncio
from typing import Any, Dict, List, Mapping, Optional

import pytest

from paarth_server.config import Settings
from paarth_server.container import build_services
from paarth_server.core.errors import EmbeddingFailed
from paarth_server.knowledge.models import Corpus, Verse


def make_verse(verse_id: str, **overrides: Any) -> Verse:
    data = {
        "id": verse_id,
        "chapter": 2,
        "verse": 47,
        "sanskrit": "श्लोक",
        "hindi": "हिंदी अर्थ",
        "meaning": "भावार्थ",
    }
    data.update(overrides)
    return Verse(**data)


class FakeEmbedder:
    """Returns fixed vectors per text; unknown texts get ``default``."""

    def __init__(
        self,
        vectors: Optional[Dict[str, List[float]]] = None,
        default: Optional[List[float]] = None,
        fail: bool = False,
        error: Optional[Exception] = None,
    ):
        self.vectors = vectors or {}
        self.default = default or [1.0, 0.0]
        self.fail = fail
        self.error = error
        self.calls: List[str] = []

    async def embed_one(self, text: str) -> List[float]:
        self.calls.append(text)
        if self.fail:
            raise EmbeddingFailed("embedding service down")
        if self.error is not None:
            raise self.error
        return list(self.vectors.get(text, self.default))


async def drain(handler) -> None:
    """Wait until every relay task spawned by ``handler`` has finished."""
    while handler._tasks:
        await asyncio.gather(*list(handler._tasks), return_exceptions=True)


class FakeGenerator:
    """
    Stand-in for the Gemini client.

    Audio calls return ``transcripts[audio]``; text calls return ``answer``.
    ``delays`` maps an audio payload to seconds to wait before answering.
    """

    def __init__(
        self,
        answer: str = "कृष्ण का उत्तर",
        transcripts: Optional[Dict[str, str]] = None,
        delays: Optional[Dict[str, float]] = None,
        error: Optional[Exception] = None,
    ):
        self.answer = answer
        self.transcripts = transcripts or {}
        self.delays = delays or {}
        self.error = error
        self.calls: List[Dict[str, Any]] = []

    async def generate(self, prompt: str, audio: Optional[str] = None, mime_type: str = "audio/webm") -> str:
        self.calls.append({"prompt": prompt, "audio": audio, "mime_type": mime_type})
        delay = self.delays.get(audio or "", 0)
        if delay:
            await asyncio.sleep(delay)
        if self.error is not None:
            raise self.error
        if audio is not None:
            return self.transcripts.get(audio, "मुझे चिंता है")
        return self.answer


class FakeTransport:
    def __init__(self, fail_sends: bool = False):
        self.sent: List[Dict[str, Any]] = []
        self.open = True
        self.fail_sends = fail_sends
        self.close_code: Optional[int] = None

    @property
    def is_open(self) -> bool:
        return self.open

    async def send_json(self, message: Mapping[str, Any]) -> None:
        if self.fail_sends:
            raise ConnectionError("peer gone")
        self.sent.append(dict(message))

    async def close(self, code: int = 1000) -> None:
        self.open = False
        self.close_code = code

    def of_type(self, message_type: str) -> List[Dict[str, Any]]:
        return [m for m in self.sent if m["type"] == message_type]


@pytest.fixture
def corpus():
    return Corpus(
        verses=[
            make_verse(
                "bg_2_47",
                context_tags=["कर्म", "काम"],
                emotional_context=["चिंता"],
                themes=["duty"],
            ),
            make_verse(
                "bg_2_20",
                verse=20,
                hindi="आत्मा अमर है",
                meaning="शरीर नश्वर है",
                context_tags=["आत्मा"],
                emotional_context=["शोक"],
                themes=["soul"],
            ),
            make_verse(
                "bg_6_5",
                chapter=6,
                verse=5,
                context_tags=["मन"],
                emotional_context=["निराशा"],
                themes=["mind"],
                life_situations=["आत्मविश्वास"],
            ),
        ],
        context_keywords={"मन": ["चिंता", "डर"]},
    )


@pytest.fixture
def test_settings(tmp_path):
    return Settings(
        gemini_api_key="test-key",
        knowledge_base_path=str(tmp_path / "missing.json"),
        request_timeout_seconds=2.0,
        embedding_delay_seconds=0.0,
    )


@pytest.fixture
def generator():
    return FakeGenerator()


@pytest.fixture
def services(test_settings, corpus, generator):
    return build_services(
        test_settings,
        corpus=corpus,
        embedder=FakeEmbedder(fail=True),
        generator=generator,
    )
