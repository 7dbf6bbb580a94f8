import itertools

import pytest

from app.services.stage_policy import (
    BASE_SCORE,
    STAGE_ORDER,
    InvalidStageError,
    LeadStage,
    desired_stage,
    next_stage,
    parse_stage,
    score_draft,
    stage_rank,
)

FULL_DRAFT = {
    "name": "Ana",
    "email": "ana@example.com",
    "phone": "11987654321",
    "intent": "buy",
    "property_type": "Apartamento",
    "location": "Pinheiros",
    "bedrooms": 2,
    "budget": 500000,
}


class TestScore:
    def test_base_score(self):
        assert score_draft({}) == BASE_SCORE

    def test_scenario_score(self):
        draft = {"name": "Ana", "intent": "buy", "property_type": "Apartamento", "location": "Pinheiros", "budget": 500000}
        assert score_draft(draft) == 25 + 10 + 5 + 10 + 10 + 15

    def test_capped_at_100(self):
        assert score_draft(FULL_DRAFT) == 100

    def test_zero_bedrooms_counts_as_known(self):
        assert score_draft({"bedrooms": 0}) == BASE_SCORE + 5

    def test_adding_facts_never_lowers_score(self):
        facts = list(FULL_DRAFT)
        for size in range(len(facts)):
            for subset in itertools.combinations(facts, size):
                draft = {fact: FULL_DRAFT[fact] for fact in subset}
                for extra in facts:
                    if extra in draft:
                        continue
                    assert score_draft({**draft, extra: FULL_DRAFT[extra]}) >= score_draft(draft)


class TestStages:
    def test_stage_order(self):
        assert [stage.value for stage in STAGE_ORDER] == [
            "new",
            "contacted",
            "qualified",
            "proposal",
            "negotiation",
            "won",
        ]
        assert stage_rank("won") > stage_rank("new")

    def test_parse_unknown_stage(self):
        with pytest.raises(InvalidStageError):
            parse_stage("archived")

    def test_desired_qualified(self):
        assert desired_stage({"intent": "buy", "budget": 1000, "location": "Moema"}) == LeadStage.QUALIFIED
        assert desired_stage({"intent": "buy", "budget": 1000, "property_type": "Casa"}) == LeadStage.QUALIFIED

    def test_desired_contacted(self):
        assert desired_stage({"intent": "buy", "budget": 1000}) == LeadStage.CONTACTED
        assert desired_stage({"intent": "buy", "budget": 0, "location": "Moema"}) == LeadStage.CONTACTED
        assert desired_stage({}) == LeadStage.CONTACTED

    def test_absent_current_uses_desired(self):
        assert next_stage(None, {}) == LeadStage.CONTACTED

    def test_unknown_current_uses_desired(self):
        assert next_stage("custom-column", {}) == LeadStage.CONTACTED

    def test_promotes_from_new(self):
        assert next_stage("new", FULL_DRAFT) == LeadStage.QUALIFIED

    def test_never_regresses(self):
        assert next_stage(LeadStage.NEGOTIATION, {}) == LeadStage.NEGOTIATION
        assert next_stage("qualified", {"name": "Ana"}) == LeadStage.QUALIFIED

    @pytest.mark.parametrize("current", list(LeadStage))
    @pytest.mark.parametrize("draft", [{}, {"name": "Ana"}, FULL_DRAFT])
    def test_result_is_never_earlier_than_current(self, current, draft):
        assert stage_rank(next_stage(current, draft)) >= stage_rank(current)
