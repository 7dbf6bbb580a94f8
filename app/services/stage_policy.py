from enum import Enum
from typing import Any, Mapping, Optional, Union

from app.services.draft_service import has_budget


class LeadStage(str, Enum):
    NEW = "new"
    CONTACTED = "contacted"
    QUALIFIED = "qualified"
    PROPOSAL = "proposal"
    NEGOTIATION = "negotiation"
    WON = "won"


STAGE_ORDER = [
    LeadStage.NEW,
    LeadStage.CONTACTED,
    LeadStage.QUALIFIED,
    LeadStage.PROPOSAL,
    LeadStage.NEGOTIATION,
    LeadStage.WON,
]

BASE_SCORE = 25
MAX_SCORE = 100
SCORE_WEIGHTS = {
    "name": 10,
    "email": 15,
    "phone": 15,
    "intent": 5,
    "property_type": 10,
    "location": 10,
    "bedrooms": 5,
    "budget": 15,
}


class InvalidStageError(Exception):
    def __init__(self, stage: Any):
        self.stage = stage
        super().__init__(f"Unknown stage: {stage!r}")


def parse_stage(value: Union[str, LeadStage]) -> LeadStage:
    """Raises InvalidStageError for ids outside the pipeline."""
    try:
        return LeadStage(value)
    except ValueError:
        raise InvalidStageError(value) from None


def stage_rank(stage: Union[str, LeadStage]) -> int:
    return STAGE_ORDER.index(parse_stage(stage))


def _has_fact(draft: Mapping[str, Any], fact: str) -> bool:
    if fact == "budget":
        return has_budget(draft)
    if fact == "bedrooms":
        return draft.get("bedrooms") is not None
    value = draft.get(fact)
    return bool(value.strip()) if isinstance(value, str) else bool(value)


def score_draft(draft: Mapping[str, Any]) -> int:
    """Base score plus a fixed weight per known fact, capped at 100."""
    total = BASE_SCORE + sum(weight for fact, weight in SCORE_WEIGHTS.items() if _has_fact(draft, fact))
    return min(MAX_SCORE, total)


def desired_stage(draft: Mapping[str, Any]) -> LeadStage:
    qualified = (
        _has_fact(draft, "intent")
        and _has_fact(draft, "budget")
        and (_has_fact(draft, "location") or _has_fact(draft, "property_type"))
    )
    return LeadStage.QUALIFIED if qualified else LeadStage.CONTACTED


def next_stage(current: Optional[Union[str, LeadStage]], draft: Mapping[str, Any]) -> LeadStage:
    """Stage after this message. Never moves a lead backwards in the pipeline.

    A missing or unrecognized current stage (e.g. a custom column set by hand)
    falls back to the desired stage.
    """
    desired = desired_stage(draft)
    if current is None:
        return desired
    try:
        current_stage = parse_stage(current)
    except InvalidStageError:
        return desired
    if STAGE_ORDER.index(current_stage) >= STAGE_ORDER.index(desired):
        return current_stage
    return desired
