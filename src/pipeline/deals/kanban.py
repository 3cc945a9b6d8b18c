"""Kanban board transitions: optimistic stage moves and drop-target resolution.

Both functions are pure and operate on already-loaded deal cards. The same
code backs the board endpoint on the server and mirrors what the browser does
optimistically before the stage-update request returns.
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime
from typing import Protocol, TypeVar

from src.pipeline.deals.stages import Stage

STAGE_TARGET_PREFIX = "stage-"
DEAL_TARGET_PREFIX = "deal-"


class _BoardCard(Protocol):
    id: str
    stage: Stage
    updated_at: datetime

    def model_copy(self, *, update: dict | None = None, deep: bool = False): ...


CardT = TypeVar("CardT", bound=_BoardCard)


def apply_optimistic_stage_move(
    deals: list[CardT],
    deal_id: str,
    next_stage: Stage,
    next_updated_at: datetime,
) -> list[CardT]:
    """Move one deal to ``next_stage`` and return the resulting board.

    The returned list has the same length and ids as ``deals``. Only the moved
    card is replaced; every other element is the very same object. When the
    deal is not on the board, or already sits in ``next_stage``, the input
    list itself is returned so callers can skip re-rendering and persisting.
    """
    current = next((deal for deal in deals if deal.id == deal_id), None)
    if current is None:
        return deals
    if current.stage == next_stage:
        return deals

    return [
        deal.model_copy(update={"stage": next_stage, "updated_at": next_updated_at})
        if deal.id == deal_id
        else deal
        for deal in deals
    ]


def resolve_drop_target(drop_target_id: object, deals: Sequence[_BoardCard]) -> Stage | None:
    """Resolve a drag-and-drop target id to the stage the deal should land in.

    ``stage-<stage>`` targets a column directly; ``deal-<id>`` targets another
    card, meaning "that card's column". Anything else, including unknown
    stages and deals not on the board, resolves to None and the drop is
    treated as cancelled.
    """
    target = str(drop_target_id)

    if target.startswith(STAGE_TARGET_PREFIX):
        stage_id = target[len(STAGE_TARGET_PREFIX):]
        try:
            return Stage(stage_id)
        except ValueError:
            return None

    if target.startswith(DEAL_TARGET_PREFIX):
        deal_id = target[len(DEAL_TARGET_PREFIX):]
        deal = next((item for item in deals if item.id == deal_id), None)
        return deal.stage if deal is not None else None

    return None
