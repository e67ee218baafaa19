"""
Search Routes

Free-text and filtered verse search over the vector index. Both routes are
read-only.
"""

import time
from typing import Annotated

from fastapi import APIRouter, Depends, status

from .models import AdvancedSearchResponse, SearchRequest, SearchResponse
from .dependencies import get_index
from ..embeddings.index import VectorIndex
from ..knowledge.models import SearchOptions

router = APIRouter(prefix="/api/krishna", tags=["search"])


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)


@router.post(
    "/search",
    response_model=SearchResponse,
    summary="Semantic verse search",
    status_code=status.HTTP_200_OK,
)
async def search(
    req: SearchRequest,
    index: Annotated[VectorIndex, Depends(get_index)],
) -> SearchResponse:
    """
    Rank verses by similarity to the query.

    An empty query returns no verses rather than an error.
    """
    if not req.query.strip():
        return SearchResponse(
            query=req.query,
            verses=[],
            count=0,
            search_time=0,
            search_type="none",
            message="No query provided",
        )

    started = time.monotonic()
    verses = await index.query(req.query, req.max_results)

    return SearchResponse(
        query=req.query,
        verses=[verse.public_dict() for verse in verses],
        count=len(verses),
        search_time=_elapsed_ms(started),
        search_type="semantic_embedding" if index.is_initialized else "keyword",
    )


@router.post(
    "/advanced-search",
    response_model=AdvancedSearchResponse,
    summary="Filtered verse search",
    status_code=status.HTTP_200_OK,
)
async def advanced_search(
    options: SearchOptions,
    index: Annotated[VectorIndex, Depends(get_index)],
) -> AdvancedSearchResponse:
    started = time.monotonic()
    results = await index.advanced_search(options)

    return AdvancedSearchResponse(
        results=[verse.public_dict() for verse in results],
        search_options=options.model_dump(by_alias=True),
        count=len(results),
        search_time=_elapsed_ms(started),
    )
