# =============================================================================
# API Response Models — Pydantic V2 Schemas
# =============================================================================
#
# Shape of data going OUT of the API. The conversation view carries the
# transcript plus table/card projections of the latest stage result so a
# client can render them without re-parsing the markdown.
# =============================================================================

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class HealthResponse(BaseModel):
    """Response for GET /health — confirms the API is running."""

    status: str = "ok"
    version: str
    service: str


class PipelineStateResponse(BaseModel):
    status: str = Field(description="idle, running, awaiting_approval, complete or failed")
    stage: str | None = Field(default=None, description="Stage the status refers to")


class TurnResponse(BaseModel):
    """One transcript entry."""

    id: str
    role: str = Field(description="'user' or 'assistant'")
    content: str = Field(description="Markdown display text")
    stage: str | None = Field(
        default=None, description="stage1..stage5, 'complete', or null",
    )
    awaiting_decision: bool
    response: dict[str, Any] | None = Field(
        default=None, description="Decoded stage result (fields, error, opaque)",
    )
    created_at: datetime


class RecommendationCard(BaseModel):
    plan_name: str
    score: float | None
    tier: str
    reason: str
    best_for: str


class ResultViews(BaseModel):
    """Table/card projections of the latest decoded stage result."""

    comparison_table: list[dict[str, str]] = Field(default_factory=list)
    recommendations: list[RecommendationCard] = Field(default_factory=list)


class ConversationResponse(BaseModel):
    """Full view of one conversation's pipeline."""

    conversation_id: str
    query: str | None
    state: PipelineStateResponse
    busy: bool
    turns: list[TurnResponse]
    views: ResultViews


class StageFailureResponse(BaseModel):
    """Body of a 502 when a stage call failed at the transport level."""

    detail: str
    stage: str
    conversation: ConversationResponse


class CancelResponse(BaseModel):
    cancelled: bool


class DocumentResponse(BaseModel):
    """Metadata record of an uploaded document."""

    id: int
    name: str
    type: str = Field(validation_alias="file_type")
    size: int = Field(validation_alias="file_size")
    created_at: datetime

    model_config = ConfigDict(from_attributes=True, populate_by_name=True)


class DownloadResponse(BaseModel):
    url: str


class UserResponse(BaseModel):
    id: str
    email: str | None = None
