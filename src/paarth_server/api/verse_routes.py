"""
Verse Routes

Query-by-filter listing of corpus verses and runtime verse ingest.
"""

from typing import Annotated, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status

from .models import OperationResult, VerseCreateRequest, VerseListResponse
from .dependencies import get_index
from ..core.errors import DocumentValidationError
from ..embeddings.index import VectorIndex

router = APIRouter(prefix="/api/krishna/verses", tags=["verses"])


@router.get(
    "",
    response_model=VerseListResponse,
    summary="List verses, by chapter or at random",
)
async def list_verses(
    index: Annotated[VectorIndex, Depends(get_index)],
    chapter: Optional[int] = Query(default=None, ge=1),
    random: bool = False,
    limit: int = Query(default=10, ge=1, le=1000),
) -> VerseListResponse:
    if random:
        verse = index.random_verse()
        verses = [verse] if verse is not None else []
    elif chapter is not None:
        verses = index.by_chapter(chapter)[:limit]
    else:
        verses = list(index.documents[:limit])

    return VerseListResponse(
        verses=[verse.public_dict() for verse in verses],
        total=len(index),
    )


@router.post(
    "",
    response_model=OperationResult,
    summary="Add a verse to the knowledge base",
    status_code=status.HTTP_201_CREATED,
)
async def add_verse(
    req: VerseCreateRequest,
    index: Annotated[VectorIndex, Depends(get_index)],
) -> OperationResult:
    """
    Validate, embed and publish a new verse.

    Missing required fields or a duplicate id return 400 and leave the
    corpus unchanged.
    """
    try:
        verse = await index.add_document(req.model_dump(exclude_none=True))
    except DocumentValidationError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(exc),
        ) from exc

    return OperationResult(
        status="created",
        details={"id": verse.id, "has_embedding": verse.has_embedding},
    )
