"""
Service Container

Explicitly owned application state. One container is built per application
instance and handed to routes through ``app.state``; there are no module
level registries, so tests can build isolated containers.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from .config import Settings
from .embeddings.embedder import Embedder
from .embeddings.index import SupportsEmbedding, VectorIndex
from .knowledge.loader import load_corpus
from .knowledge.models import Corpus
from .llm.client import GeminiClient
from .llm.gateway import GenerationGateway, SupportsGeneration
from .relay.service import ConversationService
from .sessions.coordinator import RequestCoordinator
from .sessions.registry import SessionRegistry


@dataclass
class Services:
    settings: Settings
    index: VectorIndex
    gateway: GenerationGateway
    coordinator: RequestCoordinator
    registry: SessionRegistry
    conversation: ConversationService


def build_services(
    settings: Settings,
    corpus: Optional[Corpus] = None,
    embedder: Optional[SupportsEmbedding] = None,
    generator: Optional[SupportsGeneration] = None,
) -> Services:
    """
    Wire all components together.

    Collaborators default to the Gemini-backed implementations configured by
    ``settings``; tests pass fakes instead.
    """
    api_key = settings.gemini_api_key.get_secret_value()

    if corpus is None:
        corpus = load_corpus(settings.knowledge_base_path)
    if embedder is None:
        embedder = Embedder(
            api_key=api_key,
            model=settings.embedding_model,
            base_url=settings.gemini_base_url,
        )
    if generator is None:
        generator = GeminiClient(
            api_key=api_key,
            model=settings.generation_model,
            base_url=settings.gemini_base_url,
            timeout=settings.request_timeout_seconds,
        )

    index = VectorIndex(
        corpus,
        embedder=embedder,
        embedding_delay_seconds=settings.embedding_delay_seconds,
    )
    gateway = GenerationGateway(
        generator,
        timeout_seconds=settings.request_timeout_seconds,
        audio_mime_type=settings.audio_mime_type,
    )
    coordinator = RequestCoordinator()
    registry = SessionRegistry(
        coordinator,
        idle_timeout_seconds=settings.session_idle_timeout_seconds,
    )
    conversation = ConversationService(
        index,
        gateway,
        registry,
        coordinator,
        history_window=settings.history_window,
        retrieval_k_audio=settings.retrieval_k_audio,
        retrieval_k_text=settings.retrieval_k_text,
    )

    return Services(
        settings=settings,
        index=index,
        gateway=gateway,
        coordinator=coordinator,
        registry=registry,
        conversation=conversation,
    )
