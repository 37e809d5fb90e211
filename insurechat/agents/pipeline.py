# =============================================================================
# Pipeline Controller — Human-Gated Five-Stage State Machine
# =============================================================================
#
#   idle ──query──▶ running(stage1) ──▶ awaiting(stage1)
#                        ▲                  │     │
#                        └────feedback──────┘     │ approve
#                                                 ▼
#        running(stage2) ▶ running(stage3) ▶ running(stage4) ▶ running(stage5)
#                                                                   │
#                        ┌────feedback──────┐                       ▼
#                        ▼                  │                awaiting(stage5)
#                 running(stage5) ──────────┘                       │ approve
#                                                                   ▼
#                                                               complete
#
#   Any transport failure ──▶ failed(stage). Auto-chaining stops there.
#   failed(stage1|stage5) still accepts feedback for that stage.
#
# One PipelineController exists per conversation. It is the only writer of
# the conversation's PipelineState, StageResultCache and Transcript, and it
# refuses any new operation while a stage call is in flight.
# =============================================================================

from __future__ import annotations

import asyncio
import enum
import logging
import uuid
from collections.abc import Mapping
from dataclasses import dataclass

from insurechat.agents.decoder import DecodedResult
from insurechat.agents.formatter import render_stage
from insurechat.agents.orchestrator import run_auto_chain
from insurechat.agents.stages import (
    COMPLETE_TAG,
    FINAL_STAGE,
    FIRST_STAGE,
    StageDescriptor,
    compose_request,
    get_stage,
)
from insurechat.agents.transcript import Role, Transcript, Turn
from insurechat.services.agent_client import StageFailedError, StageInvoker

logger = logging.getLogger(__name__)

COMPLETION_MESSAGE = (
    "Analysis complete. The final evaluation has been approved."
)


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class PipelineError(Exception):
    """Base class for operations the controller refuses."""


class InputValidationError(PipelineError, ValueError):
    """Empty query or feedback. Rejected before any network call."""


class PipelineBusyError(PipelineError):
    """A stage call is already in flight for this conversation."""


class InvalidTransitionError(PipelineError):
    """The operation is not allowed in the current pipeline state."""


# ---------------------------------------------------------------------------
# State
# ---------------------------------------------------------------------------


class PipelineStatus(str, enum.Enum):
    IDLE = "idle"
    RUNNING = "running"
    AWAITING_APPROVAL = "awaiting_approval"
    COMPLETE = "complete"
    FAILED = "failed"


@dataclass(frozen=True)
class PipelineState:
    """Pipeline progress: a status plus the stage it refers to, if any."""

    status: PipelineStatus = PipelineStatus.IDLE
    stage: str | None = None

    @classmethod
    def running(cls, stage: str) -> PipelineState:
        return cls(PipelineStatus.RUNNING, stage)

    @classmethod
    def awaiting_approval(cls, stage: str) -> PipelineState:
        return cls(PipelineStatus.AWAITING_APPROVAL, stage)

    @classmethod
    def failed(cls, stage: str) -> PipelineState:
        return cls(PipelineStatus.FAILED, stage)

    @classmethod
    def complete(cls) -> PipelineState:
        return cls(PipelineStatus.COMPLETE, None)

    def __str__(self) -> str:
        if self.stage is None:
            return self.status.value
        return f"{self.status.value}({self.stage})"


class StageResultCache(Mapping[str, DecodedResult]):
    """
    Decoded results of the current run, keyed by stage id.

    Entries are only ever added or replaced (a gate's approved candidate).
    A new run gets a new cache.
    """

    def __init__(self) -> None:
        self._results: dict[str, DecodedResult] = {}

    def __getitem__(self, stage_id: str) -> DecodedResult:
        return self._results[stage_id]

    def __iter__(self):
        return iter(self._results)

    def __len__(self) -> int:
        return len(self._results)

    def record(self, stage_id: str, result: DecodedResult) -> None:
        get_stage(stage_id)
        self._results[stage_id] = result


# ---------------------------------------------------------------------------
# Controller
# ---------------------------------------------------------------------------


class PipelineController:
    """
    Drives one conversation's pipeline.

    All public operations are coroutines meant to be awaited from a single
    event loop. They raise PipelineError subclasses for refused operations
    and StageFailedError (after moving to `failed`) for transport failures.
    """

    def __init__(
        self,
        invoker: StageInvoker,
        owner_id: str | None = None,
        conversation_id: str | None = None,
    ) -> None:
        self.conversation_id = conversation_id or uuid.uuid4().hex
        self.owner_id = owner_id
        self.state = PipelineState()
        self.cache = StageResultCache()
        self.transcript = Transcript()
        self.query: str | None = None
        self._run_turns: set[str] = set()
        self._invoker = invoker
        self._busy = False
        self._inflight: asyncio.Future | None = None
        self._cancel_requested = False

    @property
    def busy(self) -> bool:
        return self._busy

    # -----------------------------------------------------------------------
    # Human-facing operations
    # -----------------------------------------------------------------------

    async def submit_query(self, query: str) -> Turn:
        """
        Start a new run with `query` and invoke stage 1.

        Returns:
            The stage-1 assistant turn (awaiting a decision).
        """
        query = _require_text(query, "query")
        self._enter()
        try:
            self.query = query
            self.cache = StageResultCache()
            self._run_turns = set()
            user_turn = self.transcript.add(Role.USER, query)
            logger.info(
                "[%s] New query: '%s'", self.conversation_id, query[:80],
            )
            try:
                return await self.run_stage(FIRST_STAGE.id)
            except (StageFailedError, asyncio.CancelledError):
                self.transcript.retract(user_turn.id)
                raise
        finally:
            self._leave()

    async def approve(self, turn_id: str | None = None) -> Turn:
        """
        Approve the current gate.

        Args:
            turn_id: Which awaiting turn of the gate stage to approve.
                Defaults to the most recent one.

        Returns:
            After stage 1: the stage-5 turn produced by the auto-chain.
            After stage 5: the closing "complete" turn.
        """
        self._enter()
        try:
            stage_id = self._current_gate("approve")
            turn = self._select_awaiting(stage_id, turn_id)

            self.transcript.mark_decided(turn.id)
            if turn.response is not None:
                self.cache.record(stage_id, turn.response)
            logger.info(
                "[%s] Approved %s (%s)", self.conversation_id, stage_id, turn.id,
            )

            if stage_id == FINAL_STAGE.id:
                self.state = PipelineState.complete()
                return self.transcript.add(
                    Role.ASSISTANT, COMPLETION_MESSAGE, stage=COMPLETE_TAG,
                )

            await run_auto_chain(self)
            return self.transcript.awaiting(FINAL_STAGE.id)[-1]
        finally:
            self._leave()

    async def submit_feedback(self, feedback: str) -> Turn:
        """
        Re-run the gate stage (1 or 5) with revision feedback.

        Allowed while awaiting approval at a gate, and after that gate's
        own call failed. Only that stage is called again.
        """
        feedback = _require_text(feedback, "feedback")
        self._enter()
        try:
            stage_id = self._feedback_stage()
            user_turn = self.transcript.add(Role.USER, feedback, stage=stage_id)
            logger.info(
                "[%s] Feedback for %s: '%s'",
                self.conversation_id, stage_id, feedback[:80],
            )
            try:
                return await self.run_stage(stage_id, feedback=feedback)
            except (StageFailedError, asyncio.CancelledError):
                self.transcript.retract(user_turn.id)
                raise
        finally:
            self._leave()

    def cancel(self) -> bool:
        """
        Abort the in-flight stage call.

        Returns:
            True if a call was cancelled, False if nothing was running.
        """
        if self._inflight is None or self._inflight.done():
            return False
        logger.info(
            "[%s] Cancelling in-flight %s", self.conversation_id, self.state.stage,
        )
        self._cancel_requested = True
        self._inflight.cancel()
        return True

    # -----------------------------------------------------------------------
    # Stage execution
    # -----------------------------------------------------------------------

    async def run_stage(self, stage_id: str, feedback: str | None = None) -> Turn:
        """
        Run one stage: compose body → call → decode → cache → append turn.

        Raises:
            StageFailedError: Transport failure; state becomes failed(stage).
        """
        stage = get_stage(stage_id)
        body = compose_request(stage, self.query or "", self.cache, feedback)
        self.state = PipelineState.running(stage.id)

        try:
            result = await self._call(stage, body)
        except StageFailedError as e:
            self.state = PipelineState.failed(stage.id)
            logger.error(
                "[%s] %s failed: %s", self.conversation_id, stage.id, e.reason,
            )
            raise

        self.cache.record(stage.id, result)
        turn = self.transcript.add(
            Role.ASSISTANT,
            render_stage(stage, result, awaiting_decision=stage.gated),
            response=result,
            stage=stage.id,
            awaiting_decision=stage.gated,
        )
        self._run_turns.add(turn.id)
        if stage.gated:
            self.state = PipelineState.awaiting_approval(stage.id)
        if result.error:
            logger.warning(
                "[%s] %s reported an upstream error: %s",
                self.conversation_id, stage.id, result.error,
            )
        return turn

    async def _call(self, stage: StageDescriptor, body: dict) -> DecodedResult:
        self._cancel_requested = False
        self._inflight = asyncio.ensure_future(self._invoker.invoke(stage, body))
        try:
            return await self._inflight
        except asyncio.CancelledError:
            if not self._cancel_requested:
                self.state = PipelineState.failed(stage.id)
                raise
            raise StageFailedError(stage.id, "cancelled by user") from None
        finally:
            self._inflight = None
            self._cancel_requested = False

    # -----------------------------------------------------------------------
    # Guards
    # -----------------------------------------------------------------------

    def _enter(self) -> None:
        if self._busy:
            raise PipelineBusyError(
                f"A stage call is already running ({self.state})."
            )
        self._busy = True

    def _leave(self) -> None:
        self._busy = False

    def _current_gate(self, operation: str) -> str:
        if self.state.status is not PipelineStatus.AWAITING_APPROVAL:
            raise InvalidTransitionError(
                f"Cannot {operation} while the pipeline is {self.state}."
            )
        return self.state.stage

    def _feedback_stage(self) -> str:
        gates = {FIRST_STAGE.id, FINAL_STAGE.id}
        if (
            self.state.status in (PipelineStatus.AWAITING_APPROVAL, PipelineStatus.FAILED)
            and self.state.stage in gates
            and self.query is not None
        ):
            return self.state.stage
        raise InvalidTransitionError(
            f"Feedback is only accepted at the {FIRST_STAGE.id} or "
            f"{FINAL_STAGE.id} gate; the pipeline is {self.state}."
        )

    def _select_awaiting(self, stage_id: str, turn_id: str | None) -> Turn:
        # Undecided turns left over from an earlier run are not eligible
        candidates = [
            t for t in self.transcript.awaiting(stage_id) if t.id in self._run_turns
        ]
        if turn_id is None:
            if not candidates:
                raise InvalidTransitionError(
                    f"No {stage_id} result is waiting for a decision."
                )
            return candidates[-1]
        for turn in candidates:
            if turn.id == turn_id:
                return turn
        raise InvalidTransitionError(
            f"Turn {turn_id} is not an undecided {stage_id} result."
        )


# ---------------------------------------------------------------------------
# Conversation Registry
# ---------------------------------------------------------------------------


class ConversationRegistry:
    """In-process map of conversation id → PipelineController."""

    def __init__(self) -> None:
        self._controllers: dict[str, PipelineController] = {}

    def create(self, invoker: StageInvoker, owner_id: str) -> PipelineController:
        controller = PipelineController(invoker, owner_id=owner_id)
        self._controllers[controller.conversation_id] = controller
        logger.info(
            "Created conversation %s for user %s",
            controller.conversation_id, owner_id,
        )
        return controller

    def get(self, conversation_id: str, owner_id: str) -> PipelineController | None:
        controller = self._controllers.get(conversation_id)
        if controller is None or controller.owner_id != owner_id:
            return None
        return controller

    def discard_owner(self, owner_id: str) -> int:
        """Drop every conversation of a user (sign-out). Returns the count."""
        doomed = [
            cid for cid, c in self._controllers.items()
            if c.owner_id == owner_id and not c.busy
        ]
        for cid in doomed:
            del self._controllers[cid]
        return len(doomed)


_registry = ConversationRegistry()


def get_registry() -> ConversationRegistry:
    """Process-wide registry (FastAPI dependency, overridable in tests)."""
    return _registry


# ---------------------------------------------------------------------------
# Internal Helpers
# ---------------------------------------------------------------------------


def _require_text(value: str | None, name: str) -> str:
    if value is None or not value.strip():
        raise InputValidationError(f"The {name} must not be empty.")
    return value.strip()


