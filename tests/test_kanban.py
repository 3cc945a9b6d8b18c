"""Tests for optimistic board moves and drop-target resolution."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

from hypothesis import given
from hypothesis import strategies as st

from src.pipeline.analytics.funnel import build_conversion_funnel
from src.pipeline.deals.kanban import apply_optimistic_stage_move, resolve_drop_target
from src.pipeline.deals.schemas import DealCard
from src.pipeline.deals.stages import Stage

T0 = datetime(2026, 1, 1, tzinfo=timezone.utc)
T1 = T0 + timedelta(hours=1)


def _board(*stages: str) -> list[DealCard]:
    return [
        DealCard(id=f"d{i}", team_id="team-1", title=f"Deal {i}", stage=stage, updated_at=T0)
        for i, stage in enumerate(stages)
    ]


# ── apply_optimistic_stage_move ──────────────────────────────────────────────


class TestOptimisticStageMove:
    def test_changes_only_the_target_deal(self):
        board = _board("lead", "proposal", "won", "lost", "negotiation")

        moved = apply_optimistic_stage_move(board, "d0", Stage.WON, T1)

        assert moved is not board
        assert [d.id for d in moved] == [d.id for d in board]
        assert moved[0].stage is Stage.WON
        assert moved[0].updated_at == T1
        assert board[0].stage is Stage.LEAD
        for before, after in zip(board[1:], moved[1:]):
            assert after is before

    def test_leaves_unrelated_funnel_stable(self):
        board = _board("lead", "proposal", "won", "lost", "negotiation")
        proposals = [{"id": "p1", "status": "sent"}, {"id": "p2", "status": "signed"}]
        before = build_conversion_funnel(proposals, [])

        apply_optimistic_stage_move(board, "d0", Stage.WON, T1)

        assert build_conversion_funnel(proposals, []) == before

    def test_current_stage_returns_same_list(self):
        board = _board("lead", "won")
        assert apply_optimistic_stage_move(board, "d1", Stage.WON, T1) is board

    def test_unknown_deal_returns_same_list(self):
        board = _board("lead", "won")
        assert apply_optimistic_stage_move(board, "missing", Stage.LOST, T1) is board

    def test_empty_board(self):
        assert apply_optimistic_stage_move([], "d0", Stage.WON, T1) == []

    @given(
        stages=st.lists(st.sampled_from(list(Stage)), min_size=1, max_size=12),
        index=st.integers(min_value=0),
        target=st.sampled_from(list(Stage)),
    )
    def test_preserves_ids_and_isolates_change(self, stages, index, target):
        board = _board(*[s.value for s in stages])
        deal_id = board[index % len(board)].id

        moved = apply_optimistic_stage_move(board, deal_id, target, T1)

        assert [d.id for d in moved] == [d.id for d in board]
        for before, after in zip(board, moved):
            if before.id == deal_id:
                assert after.stage is target
                if before.stage is target:
                    assert after is before
            else:
                assert after is before


# ── resolve_drop_target ──────────────────────────────────────────────────────


class TestResolveDropTarget:
    def test_stage_column_targets(self):
        board = _board("lead")
        for stage in Stage:
            assert resolve_drop_target(f"stage-{stage.value}", board) is stage

    def test_deal_target_resolves_to_that_deals_column(self):
        board = _board("lead", "negotiation")
        assert resolve_drop_target("deal-d1", board) is Stage.NEGOTIATION

    def test_unrecognised_targets_cancel(self):
        board = _board("lead")
        assert resolve_drop_target("stage-closed", board) is None
        assert resolve_drop_target("deal-missing", board) is None
        assert resolve_drop_target("column-won", board) is None
        assert resolve_drop_target("", board) is None
        assert resolve_drop_target(None, board) is None
