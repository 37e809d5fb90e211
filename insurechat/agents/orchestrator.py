# =============================================================================
# LangGraph Orchestrator — Auto-Chain of Stages 2 to 5
# =============================================================================
#
# Once the human approves stage 1, the remaining stages run without further
# input. The chain is a LangGraph StateGraph:
#
#   START ──▶ stage2 ──▶ stage3 ──▶ stage4 ──▶ stage5 ──▶ END
#                │          │          │          │
#                └──────────┴──────────┴──────────┴──▶ END  (on failure)
#
# Each node asks the pipeline controller to run one stage. The controller
# does the real work (compose body → call → decode → cache → append turn);
# the graph only fixes the order and stops at the first transport failure,
# so later stages are never attempted once one has failed.
#
# DESIGN DECISION: The controller travels in the graph state, the same way
# a provider override object would. It is not JSON-serialisable, which is
# fine as long as no checkpointer is configured on the graph.
#
# DESIGN DECISION: Graph compiled once at module level and reused for
# every conversation; all per-conversation data lives in the state.
# =============================================================================

from __future__ import annotations

import logging
from typing import Protocol

from langgraph.graph import END, START, StateGraph
from typing_extensions import TypedDict

from insurechat.agents.stages import AUTO_CHAIN
from insurechat.services.agent_client import StageFailedError

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Chain State Schema
# ---------------------------------------------------------------------------


class StageRunner(Protocol):
    """The part of the pipeline controller the chain needs."""

    async def run_stage(self, stage_id: str, feedback: str | None = None) -> object:
        ...


class ChainState(TypedDict, total=False):
    """
    State flowing through the auto-chain graph.

    total=False so nodes only return the keys they update.
    """

    # --- Input (set by caller) ---
    pipeline: StageRunner

    # --- Progress (set by nodes) ---
    completed: list[str]
    failure: StageFailedError | None


# ---------------------------------------------------------------------------
# Node Functions
# ---------------------------------------------------------------------------


def _make_stage_node(stage_id: str):
    """Build the node that runs one stage through the controller."""

    async def stage_node(state: ChainState) -> dict:
        try:
            await state["pipeline"].run_stage(stage_id)
        except StageFailedError as e:
            logger.warning("Auto-chain halted at %s: %s", stage_id, e.reason)
            return {"failure": e}
        return {"completed": [*state.get("completed", []), stage_id]}

    stage_node.__name__ = f"{stage_id}_node"
    return stage_node


def _continue_or_stop(next_node: str):
    """Conditional edge: go on to `next_node` unless the last stage failed."""

    def route(state: ChainState) -> str:
        return END if state.get("failure") is not None else next_node

    return route


# ---------------------------------------------------------------------------
# Graph Assembly
# ---------------------------------------------------------------------------

_builder = StateGraph(ChainState)
for _stage in AUTO_CHAIN:
    _builder.add_node(_stage.id, _make_stage_node(_stage.id))

_builder.add_edge(START, AUTO_CHAIN[0].id)
for _current, _following in zip(AUTO_CHAIN, AUTO_CHAIN[1:]):
    _builder.add_conditional_edges(
        _current.id,
        _continue_or_stop(_following.id),
        [_following.id, END],
    )
_builder.add_edge(AUTO_CHAIN[-1].id, END)

graph = _builder.compile()


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


async def run_auto_chain(pipeline: StageRunner) -> list[str]:
    """
    Run stages 2..5 in order through `pipeline`.

    Returns:
        The ids of the stages that completed.

    Raises:
        StageFailedError: The first transport failure; no stage after it ran.
    """
    logger.info("Starting auto-chain: %s", [s.id for s in AUTO_CHAIN])

    result = await graph.ainvoke({"pipeline": pipeline, "completed": []})

    completed = result.get("completed", [])
    failure = result.get("failure")
    if failure is not None:
        raise failure

    logger.info("Auto-chain complete: %s", completed)
    return completed
