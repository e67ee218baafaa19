"""
API Models

Pydantic models for request/response validation on the HTTP endpoints.
Field names are exposed in camelCase on the wire, matching the WebSocket
message vocabulary; snake_case names are accepted on input as well.
"""

from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class ApiModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="forbid",
    )


# ---------------------------------------------------------------------
# Generic
# ---------------------------------------------------------------------

class OperationResult(ApiModel):
    """
    Standardized mutation operation result.
    """
    status: Literal["created", "ok"]
    details: Optional[Dict[str, Any]] = None


# ---------------------------------------------------------------------
# Verse Models
# ---------------------------------------------------------------------

class VerseListResponse(ApiModel):
    verses: List[Dict[str, Any]]
    total: int = Field(..., ge=0)


class VerseCreateRequest(BaseModel):
    """
    New verse payload. Required fields are checked by the index so the
    caller gets the same error for API and programmatic ingest.
    """
    id: Optional[str] = None
    chapter: Optional[int] = None
    verse: Optional[int] = None
    sanskrit: Optional[str] = None
    hindi: Optional[str] = None
    meaning: Optional[str] = None
    detailed_explanation: Optional[str] = None
    context_tags: List[str] = Field(default_factory=list)
    emotional_context: List[str] = Field(default_factory=list)
    themes: List[str] = Field(default_factory=list)
    life_situations: List[str] = Field(default_factory=list)

    model_config = ConfigDict(extra="forbid")


# ---------------------------------------------------------------------
# Search Models
# ---------------------------------------------------------------------

class SearchRequest(ApiModel):
    """
    Free-text verse search request.
    """
    query: str = ""
    max_results: int = Field(default=3, ge=1, le=50)


class SearchResponse(ApiModel):
    query: str
    verses: List[Dict[str, Any]]
    count: int = Field(..., ge=0)
    search_time: int = Field(..., ge=0)
    search_type: str
    message: Optional[str] = None


class AdvancedSearchResponse(ApiModel):
    results: List[Dict[str, Any]]
    search_options: Dict[str, Any]
    count: int = Field(..., ge=0)
    search_time: int = Field(..., ge=0)


# ---------------------------------------------------------------------
# Ask Models
# ---------------------------------------------------------------------

class AskRequest(ApiModel):
    question: str = Field(..., min_length=1)
    session_id: Optional[str] = None


class AskResponse(ApiModel):
    question: str
    response: str
    verses_used: List[Dict[str, Any]]
    search_metrics: Dict[str, Any]
    session_id: Optional[str] = None


# ---------------------------------------------------------------------
# Stats Models
# ---------------------------------------------------------------------

class ServerStats(ApiModel):
    active_sessions: int = Field(..., ge=0)
    total_conversations: int = Field(..., ge=0)
    active_requests: int = Field(..., ge=0)
    uptime: float = Field(..., ge=0.0)


class StatsResponse(ApiModel):
    knowledge_base: Dict[str, Any]
    server: ServerStats


class SessionsResponse(ApiModel):
    sessions: List[Dict[str, Any]]
