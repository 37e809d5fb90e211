# =============================================================================
# Stage Catalogue — The Five Remote Analysis Stages
# =============================================================================
#
#   stage1 ──▶ stage2 ──▶ stage3 ──▶ stage4 ──▶ stage5
#   agent1     agent2     agent3     agent4     agent5
#   [gate]     (auto)     (auto)     (auto)     [gate]
#
# Each stage is described once here. The request body of stage n carries
# the user's query plus the results of every stage before it, each under
# that earlier stage's `result_field`:
#
#   stage1 → analysis_result
#   stage2 → optimization_result
#   stage3 → additional_insights
#   stage4 → qa_result
#
# Stage 5's result is consumed only by the human at the final gate.
# =============================================================================

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from insurechat.agents.decoder import DecodedResult


@dataclass(frozen=True)
class StageDescriptor:
    """Static description of one pipeline stage."""

    id: str                   # "stage1" .. "stage5"
    endpoint: str             # Path suffix on the agent service
    title: str                # Heading used in transcript turns
    result_field: str | None  # Request key later stages receive this result under
    gated: bool = False       # Human approval required after this stage


STAGES: tuple[StageDescriptor, ...] = (
    StageDescriptor(
        id="stage1", endpoint="agent1", title="Needs analysis",
        result_field="analysis_result", gated=True,
    ),
    StageDescriptor(
        id="stage2", endpoint="agent2", title="Plan optimisation",
        result_field="optimization_result",
    ),
    StageDescriptor(
        id="stage3", endpoint="agent3", title="Additional insights",
        result_field="additional_insights",
    ),
    StageDescriptor(
        id="stage4", endpoint="agent4", title="Quality review",
        result_field="qa_result",
    ),
    StageDescriptor(
        id="stage5", endpoint="agent5", title="Final evaluation",
        result_field=None, gated=True,
    ),
)

STAGES_BY_ID: dict[str, StageDescriptor] = {s.id: s for s in STAGES}

FIRST_STAGE = STAGES[0]
FINAL_STAGE = STAGES[-1]

# Stages run without human input after stage 1 is approved
AUTO_CHAIN: tuple[StageDescriptor, ...] = STAGES[1:]

# Tag carried by the closing transcript turn once stage 5 is approved
COMPLETE_TAG = "complete"


def get_stage(stage_id: str) -> StageDescriptor:
    """Look up a stage by id. Raises KeyError for unknown ids."""
    return STAGES_BY_ID[stage_id]


def prior_stages(stage: StageDescriptor) -> tuple[StageDescriptor, ...]:
    """Every stage that runs before `stage`, in order."""
    return STAGES[: STAGES.index(stage)]


def compose_request(
    stage: StageDescriptor,
    query: str,
    results: Mapping[str, DecodedResult],
    feedback: str | None = None,
) -> dict[str, Any]:
    """
    Build the request body for one stage call.

    Args:
        stage: The stage being invoked.
        query: The user's original query (`data_query`).
        results: Decoded results of the current run, keyed by stage id.
        feedback: Human revision text for a gate resubmission.

    Raises:
        KeyError: If a prior stage has no cached result. Stages only run
            after all of their predecessors succeeded in the same run.
    """
    body: dict[str, Any] = {"data_query": query}
    for prior in prior_stages(stage):
        if prior.id not in results:
            raise KeyError(
                f"{stage.id} needs the result of {prior.id}, which has "
                f"not run in this pipeline"
            )
        body[prior.result_field] = results[prior.id].as_payload()
    if feedback is not None:
        body["feedback"] = feedback
    return body
