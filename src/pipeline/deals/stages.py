"""Canonical deal stages, alias resolution and persistence mapping.

The pipeline has exactly five stages. Rows written by older releases (and by
the Turkish-localised UI) carry a variety of spellings for the same stage, so
every read goes through normalize_stage() and every write through
to_db_value(). Both are pure and total.

Unknown values normalise to LEAD, the first pipeline column. See DESIGN.md
for why this fallback is kept.
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict


class Stage(str, Enum):
    """Pipeline stage a deal occupies, in board order."""

    LEAD = "lead"
    PROPOSAL = "proposal"
    NEGOTIATION = "negotiation"
    WON = "won"
    LOST = "lost"


class StageConfig(BaseModel):
    """One board column: canonical id, display label and recognised db values.

    The first entry of db_values is the value persisted for the stage.
    """

    model_config = ConfigDict(frozen=True)

    id: Stage
    label: str
    db_values: tuple[str, ...]


# ── Alias Table ─────────────────────────────────────────────────────────────

STAGE_CONFIGS: tuple[StageConfig, ...] = (
    StageConfig(
        id=Stage.LEAD,
        label="Lead",
        db_values=("lead", "aday"),
    ),
    StageConfig(
        id=Stage.PROPOSAL,
        label="Proposal Sent",
        db_values=("proposal", "proposal_sent", "teklif", "teklif gönderildi", "teklif gonderildi"),
    ),
    StageConfig(
        id=Stage.NEGOTIATION,
        label="Negotiation",
        db_values=("negotiation", "görüşme", "gorusme", "meeting"),
    ),
    StageConfig(
        id=Stage.WON,
        label="Won",
        db_values=("won", "kazanıldı", "kazanildi", "closed_won"),
    ),
    StageConfig(
        id=Stage.LOST,
        label="Lost",
        db_values=("lost", "kaybedildi", "closed_lost"),
    ),
)

_ALIAS_INDEX: dict[str, Stage] = {
    alias.lower(): config.id
    for config in STAGE_CONFIGS
    for alias in config.db_values
}

_DB_VALUES: dict[Stage, str] = {config.id: config.db_values[0] for config in STAGE_CONFIGS}

# Stage -> webhook event fired when a deal enters it
_CLOSING_EVENTS: dict[Stage, str] = {
    Stage.WON: "deal.won",
    Stage.LOST: "deal.lost",
}


# ── Public API ──────────────────────────────────────────────────────────────


def normalize_stage(value: str | None) -> Stage:
    """Resolve any stored or user-supplied stage spelling to a canonical Stage.

    Matching is case-insensitive and ignores surrounding whitespace. Empty,
    missing or unrecognised values fall back to Stage.LEAD; this function
    never raises.
    """
    if isinstance(value, Stage):
        return value
    if not isinstance(value, str) or not value:
        return Stage.LEAD
    return _ALIAS_INDEX.get(value.strip().lower(), Stage.LEAD)


def to_db_value(stage: Stage) -> str:
    """Return the single value persisted for a stage."""
    return _DB_VALUES[Stage(stage)]


def get_stage_configs() -> list[StageConfig]:
    """Return the full alias table in board order."""
    return list(STAGE_CONFIGS)


def is_closed_stage(stage: Stage) -> bool:
    """True for the terminal stages WON and LOST."""
    return stage in _CLOSING_EVENTS


def closing_event_for(stage: Stage) -> str | None:
    """Webhook event name for entering a terminal stage, None otherwise."""
    return _CLOSING_EVENTS.get(stage)
