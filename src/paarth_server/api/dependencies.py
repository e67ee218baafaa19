from fastapi import Depends, Request

from ..container import Services
from ..embeddings.index import VectorIndex
from ..relay.service import ConversationService


def get_services(request: Request) -> Services:
    return request.app.state.services


def get_index(services: Services = Depends(get_services)) -> VectorIndex:
    return services.index


def get_conversation(services: Services = Depends(get_services)) -> ConversationService:
    return services.conversation
