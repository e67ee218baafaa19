"""
Chat Routes: Ask-a-Question Endpoint

Request/response counterpart of the WebSocket text query.

Behavior
--------
1. If ``sessionId`` names a live session, the question is answered in that
   session's context: a new request supersedes any in-flight one and the
   turn is recorded in the session history.
2. Otherwise the question is answered statelessly; nothing is recorded.
3. Generation errors degrade to the canned apology text.
"""

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, status

from .models import AskRequest, AskResponse
from .dependencies import get_conversation
from ..relay.service import ConversationService, RelayResult

router = APIRouter(prefix="/api/krishna", tags=["chat"])


def _search_metrics(result: RelayResult) -> dict:
    return {
        "queryProcessed": True,
        "versesFound": len(result.verses),
        "processingTime": result.processing_time_ms,
        "degraded": result.degraded,
    }


@router.post(
    "/ask",
    response_model=AskResponse,
    summary="Ask Krishna a question",
    status_code=status.HTTP_200_OK,
)
async def ask(
    req: AskRequest,
    conversation: Annotated[ConversationService, Depends(get_conversation)],
) -> AskResponse:
    session_id = None
    if req.session_id and conversation.registry.has_session(req.session_id):
        session_id = req.session_id

    if session_id is None:
        result = await conversation.answer_stateless(req.question)
    else:
        conversation.registry.touch(session_id)
        request = conversation.coordinator.start_request(session_id)
        result = await conversation.answer_text(session_id, request, req.question)
        if result is None:
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail="Request was interrupted",
            )

    return AskResponse(
        question=req.question,
        response=result.text,
        verses_used=[verse.public_dict() for verse in result.verses],
        search_metrics=_search_metrics(result),
        session_id=session_id,
    )
