# =============================================================================
# API Request Models — Pydantic V2 Schemas
# =============================================================================
#
# Shape of data coming INTO the API. Empty queries and empty feedback are
# NOT rejected here: the pipeline controller owns that check so the same
# rule applies however it is driven, and the route maps it to a 400.
# =============================================================================

from pydantic import BaseModel, ConfigDict, Field


class QueryRequest(BaseModel):
    """
    Request body for POST /conversations/{id}/messages.

    Example:
        {"query": "Which health plan under 10 million VND a year covers dental?"}
    """

    query: str = Field(
        ...,
        max_length=4000,
        description="The insurance question that starts a new pipeline run",
        examples=["Which health plan under 10 million VND a year covers dental?"],
    )


class ApproveRequest(BaseModel):
    """
    Request body for POST /conversations/{id}/approve.

    When a gate has several undecided results (after feedback rounds),
    `turn_id` picks which one is approved. Omit it to approve the latest.
    """

    turn_id: str | None = Field(
        default=None,
        description="Transcript turn to approve. Defaults to the latest undecided one.",
        examples=["turn-4"],
    )


class FeedbackRequest(BaseModel):
    """Request body for POST /conversations/{id}/feedback."""

    feedback: str = Field(
        ...,
        max_length=4000,
        description="Revision instructions for the stage awaiting a decision",
    )

    model_config = ConfigDict(
        json_schema_extra={
            "examples": [
                {"feedback": "I also need maternity coverage."},
                {"feedback": "Compare only plans from insurers with local hospitals."},
            ]
        }
    )
