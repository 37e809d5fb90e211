# =============================================================================
# Conversations API — Driving the Human-Gated Pipeline
# =============================================================================
#
# ENDPOINTS:
#   POST /conversations                  — open a conversation
#   GET  /conversations/{id}             — state + transcript + result views
#   POST /conversations/{id}/messages    — submit a query (runs stage 1)
#   POST /conversations/{id}/approve     — pass the current gate
#   POST /conversations/{id}/feedback    — re-run the gate stage
#   POST /conversations/{id}/cancel      — abort the in-flight stage call
#
# ERROR MAPPING:
#   InputValidationError   → 400 (nothing sent, nothing changed)
#   unknown conversation   → 404
#   PipelineBusyError      → 409
#   InvalidTransitionError → 409
#   StageFailedError       → 502 with the resulting conversation view
#
# Upstream errors reported INSIDE a successful agent response are not HTTP
# errors: they are part of the stage's transcript turn.
# =============================================================================

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse

from insurechat.agents.formatter import comparison_rows, ranked_recommendations
from insurechat.agents.pipeline import (
    ConversationRegistry,
    InputValidationError,
    InvalidTransitionError,
    PipelineBusyError,
    PipelineController,
    get_registry,
)
from insurechat.agents.transcript import Turn
from insurechat.api.deps import get_current_user
from insurechat.models.requests import ApproveRequest, FeedbackRequest, QueryRequest
from insurechat.models.responses import (
    CancelResponse,
    ConversationResponse,
    PipelineStateResponse,
    RecommendationCard,
    ResultViews,
    StageFailureResponse,
    TurnResponse,
)
from insurechat.services.agent_client import (
    StageFailedError,
    StageInvoker,
    get_agent_client,
)
from insurechat.services.identity import CurrentUser

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/conversations", tags=["Conversations"])

_FAILURE_RESPONSES = {
    400: {"description": "Empty query or feedback"},
    404: {"description": "Unknown conversation"},
    409: {"description": "Stage call in flight, or not allowed in this state"},
    502: {"model": StageFailureResponse, "description": "A stage call failed"},
}


# ---------------------------------------------------------------------------
# POST /conversations — open a conversation
# ---------------------------------------------------------------------------


@router.post(
    "",
    response_model=ConversationResponse,
    status_code=201,
    summary="Open a conversation",
)
async def create_conversation(
    user: CurrentUser = Depends(get_current_user),
    registry: ConversationRegistry = Depends(get_registry),
    invoker: StageInvoker = Depends(get_agent_client),
) -> ConversationResponse:
    controller = registry.create(invoker, owner_id=user.id)
    return to_response(controller)


# ---------------------------------------------------------------------------
# GET /conversations/{id}
# ---------------------------------------------------------------------------


@router.get(
    "/{conversation_id}",
    response_model=ConversationResponse,
    responses={404: _FAILURE_RESPONSES[404]},
    summary="Conversation state and transcript",
)
async def get_conversation(
    conversation_id: str,
    user: CurrentUser = Depends(get_current_user),
    registry: ConversationRegistry = Depends(get_registry),
) -> ConversationResponse:
    return to_response(_lookup(registry, conversation_id, user))


# ---------------------------------------------------------------------------
# Pipeline operations
# ---------------------------------------------------------------------------


@router.post(
    "/{conversation_id}/messages",
    response_model=ConversationResponse,
    responses=_FAILURE_RESPONSES,
    summary="Submit a query",
    description=(
        "Starts a new pipeline run: calls the first analysis agent and "
        "stops at the first approval gate."
    ),
)
async def submit_query(
    conversation_id: str,
    request: QueryRequest,
    user: CurrentUser = Depends(get_current_user),
    registry: ConversationRegistry = Depends(get_registry),
):
    controller = _lookup(registry, conversation_id, user)
    return await _drive(controller, controller.submit_query(request.query))


@router.post(
    "/{conversation_id}/approve",
    response_model=ConversationResponse,
    responses=_FAILURE_RESPONSES,
    summary="Approve the current gate",
    description=(
        "At the first gate, runs stages 2 to 5 back to back and stops at the "
        "final gate. At the final gate, completes the pipeline."
    ),
)
async def approve(
    conversation_id: str,
    request: ApproveRequest | None = None,
    user: CurrentUser = Depends(get_current_user),
    registry: ConversationRegistry = Depends(get_registry),
):
    controller = _lookup(registry, conversation_id, user)
    turn_id = request.turn_id if request else None
    return await _drive(controller, controller.approve(turn_id))


@router.post(
    "/{conversation_id}/feedback",
    response_model=ConversationResponse,
    responses=_FAILURE_RESPONSES,
    summary="Revise the current gate stage",
)
async def submit_feedback(
    conversation_id: str,
    request: FeedbackRequest,
    user: CurrentUser = Depends(get_current_user),
    registry: ConversationRegistry = Depends(get_registry),
):
    controller = _lookup(registry, conversation_id, user)
    return await _drive(controller, controller.submit_feedback(request.feedback))


@router.post(
    "/{conversation_id}/cancel",
    response_model=CancelResponse,
    responses={404: _FAILURE_RESPONSES[404]},
    summary="Cancel the in-flight stage call",
)
async def cancel(
    conversation_id: str,
    user: CurrentUser = Depends(get_current_user),
    registry: ConversationRegistry = Depends(get_registry),
) -> CancelResponse:
    controller = _lookup(registry, conversation_id, user)
    return CancelResponse(cancelled=controller.cancel())


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _lookup(
    registry: ConversationRegistry,
    conversation_id: str,
    user: CurrentUser,
) -> PipelineController:
    controller = registry.get(conversation_id, owner_id=user.id)
    if controller is None:
        raise HTTPException(
            status_code=404,
            detail=f"Conversation {conversation_id} not found.",
        )
    return controller


async def _drive(controller: PipelineController, operation) -> ConversationResponse | JSONResponse:
    """Await one controller operation and map its failures to HTTP."""
    try:
        await operation
    except InputValidationError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    except (PipelineBusyError, InvalidTransitionError) as e:
        raise HTTPException(status_code=409, detail=str(e)) from e
    except StageFailedError as e:
        logger.warning(
            "Conversation %s: %s", controller.conversation_id, e,
        )
        failure = StageFailureResponse(
            detail=str(e),
            stage=e.stage_id,
            conversation=to_response(controller),
        )
        return JSONResponse(status_code=502, content=failure.model_dump(mode="json"))
    return to_response(controller)


def to_response(controller: PipelineController) -> ConversationResponse:
    latest = controller.transcript.latest_response()
    return ConversationResponse(
        conversation_id=controller.conversation_id,
        query=controller.query,
        state=PipelineStateResponse(
            status=controller.state.status.value,
            stage=controller.state.stage,
        ),
        busy=controller.busy,
        turns=[_turn_response(t) for t in controller.transcript],
        views=ResultViews(
            comparison_table=comparison_rows(latest),
            recommendations=[
                RecommendationCard(**card) for card in ranked_recommendations(latest)
            ],
        ),
    )


def _turn_response(turn: Turn) -> TurnResponse:
    return TurnResponse(
        id=turn.id,
        role=turn.role.value,
        content=turn.content,
        stage=turn.stage,
        awaiting_decision=turn.awaiting_decision,
        response=turn.response.to_dict() if turn.response is not None else None,
        created_at=turn.created_at,
    )
