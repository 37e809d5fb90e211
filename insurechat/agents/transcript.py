# =============================================================================
# Conversation Transcript — Ordered Log of Turns
# =============================================================================
#
# Append/patch-only:
#   - turns are appended in creation order and never reordered
#   - the only in-place change is flipping `awaiting_decision` to False
#   - the only removal is retract(), used when the user turn that
#     triggered a stage call never got an answer
# =============================================================================

from __future__ import annotations

import enum
import itertools
import logging
from collections.abc import Iterator
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime

from insurechat.agents.decoder import DecodedResult

logger = logging.getLogger(__name__)


class Role(str, enum.Enum):
    USER = "user"
    ASSISTANT = "assistant"


@dataclass(frozen=True)
class Turn:
    """
    One transcript entry.

    `stage` is "stage1".."stage5" for stage turns, "complete" for the
    closing turn, or None for a user's free query.
    """

    id: str
    role: Role
    content: str
    response: DecodedResult | None = None
    stage: str | None = None
    awaiting_decision: bool = False
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))


class Transcript:
    """Ordered sequence of Turns owned by one pipeline controller."""

    def __init__(self) -> None:
        self._turns: list[Turn] = []
        self._ids = itertools.count(1)

    def __iter__(self) -> Iterator[Turn]:
        return iter(list(self._turns))

    def __len__(self) -> int:
        return len(self._turns)

    @property
    def turns(self) -> list[Turn]:
        return list(self._turns)

    def add(
        self,
        role: Role,
        content: str,
        *,
        response: DecodedResult | None = None,
        stage: str | None = None,
        awaiting_decision: bool = False,
    ) -> Turn:
        """Create a Turn with the next identifier and append it."""
        turn = Turn(
            id=f"turn-{next(self._ids)}",
            role=role,
            content=content,
            response=response,
            stage=stage,
            awaiting_decision=awaiting_decision,
        )
        self._turns.append(turn)
        return turn

    def get(self, turn_id: str) -> Turn | None:
        for turn in self._turns:
            if turn.id == turn_id:
                return turn
        return None

    def retract(self, turn_id: str) -> None:
        """Remove an unanswered user turn."""
        self._turns = [t for t in self._turns if t.id != turn_id]
        logger.debug("Retracted %s", turn_id)

    def mark_decided(self, turn_id: str) -> Turn:
        """Flip `awaiting_decision` off for one turn and return the new value."""
        for index, turn in enumerate(self._turns):
            if turn.id == turn_id:
                decided = replace(turn, awaiting_decision=False)
                self._turns[index] = decided
                return decided
        raise KeyError(turn_id)

    def awaiting(self, stage: str) -> list[Turn]:
        """Assistant turns of `stage` still waiting for a decision, oldest first."""
        return [
            t for t in self._turns
            if t.role is Role.ASSISTANT and t.stage == stage and t.awaiting_decision
        ]

    def assistant_turns(self) -> list[Turn]:
        return [t for t in self._turns if t.role is Role.ASSISTANT]

    def latest_response(self) -> DecodedResult | None:
        """Decoded result of the most recent assistant turn that has one."""
        for turn in reversed(self._turns):
            if turn.role is Role.ASSISTANT and turn.response is not None:
                return turn.response
        return None
