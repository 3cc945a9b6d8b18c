"""Tests for the stage model: alias resolution, persistence mapping, closing events."""

from __future__ import annotations

import pytest
from hypothesis import given
from hypothesis import strategies as st

from src.pipeline.deals.stages import (
    STAGE_CONFIGS,
    Stage,
    closing_event_for,
    get_stage_configs,
    is_closed_stage,
    normalize_stage,
    to_db_value,
)

ALL_ALIASES = [(alias, config.id) for config in STAGE_CONFIGS for alias in config.db_values]
_KNOWN = {alias.lower() for alias, _stage in ALL_ALIASES}


# ── Round trip and alias table ───────────────────────────────────────────────


class TestStageTable:
    @pytest.mark.parametrize("stage", list(Stage))
    def test_db_value_round_trips(self, stage):
        assert normalize_stage(to_db_value(stage)) is stage

    def test_configs_cover_every_stage_in_board_order(self):
        assert [c.id for c in get_stage_configs()] == list(Stage)

    def test_alias_sets_are_disjoint(self):
        lowered = [alias.lower() for alias, _stage in ALL_ALIASES]
        assert len(lowered) == len(set(lowered))

    def test_canonical_name_is_an_alias_of_itself(self):
        for config in STAGE_CONFIGS:
            assert config.id.value in config.db_values
            assert config.db_values[0] == to_db_value(config.id)

    @pytest.mark.parametrize("alias,stage", ALL_ALIASES)
    def test_every_alias_resolves_in_any_case(self, alias, stage):
        assert normalize_stage(alias) is stage
        assert normalize_stage(alias.upper()) is stage
        assert normalize_stage(alias.title()) is stage


# ── normalize_stage ──────────────────────────────────────────────────────────


class TestNormalizeStage:
    def test_upper_case_trimmed_and_legacy_inputs(self):
        assert normalize_stage("WON") is Stage.WON
        assert normalize_stage(" won ") is Stage.WON
        assert normalize_stage("kazanildi") is Stage.WON
        assert normalize_stage("bogus") is Stage.LEAD

    @pytest.mark.parametrize("value", [None, "", "   ", 42, ["won"]])
    def test_missing_or_non_string_falls_back_to_lead(self, value):
        assert normalize_stage(value) is Stage.LEAD

    def test_stage_members_pass_through(self):
        for stage in Stage:
            assert normalize_stage(stage) is stage

    @given(st.text())
    def test_is_total(self, value):
        assert normalize_stage(value) in set(Stage)

    @given(st.text().filter(lambda s: s.strip().lower() not in _KNOWN))
    def test_unknown_strings_resolve_to_lead(self, value):
        assert normalize_stage(value) is Stage.LEAD


# ── Closing events ───────────────────────────────────────────────────────────


class TestClosingEvents:
    def test_won_and_lost_fire_events(self):
        assert closing_event_for(Stage.WON) == "deal.won"
        assert closing_event_for(Stage.LOST) == "deal.lost"
        assert is_closed_stage(Stage.WON)
        assert is_closed_stage(Stage.LOST)

    def test_open_stages_fire_nothing(self):
        for stage in (Stage.LEAD, Stage.PROPOSAL, Stage.NEGOTIATION):
            assert closing_event_for(stage) is None
            assert not is_closed_stage(stage)
