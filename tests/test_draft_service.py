from app.services.draft_service import (
    QUESTION_BUDGET,
    QUESTION_CONTACT,
    QUESTION_INTENT,
    QUESTION_LOCATION,
    QUESTION_NAME,
    QUESTION_PROPERTY_TYPE,
    build_questions,
    merge_draft,
    summarize_draft,
    surfaced_questions,
)
from app.services.signal_extractor import Signal


class TestMergeDraft:
    def test_empty_signal_is_noop(self):
        draft = {"name": "Ana", "budget": 500000}
        assert merge_draft(draft, Signal()) == draft
        assert merge_draft(draft, {}) == draft

    def test_new_values_overwrite(self):
        merged = merge_draft({"name": "Ana", "location": "Pinheiros"}, Signal(location="Moema"))
        assert merged == {"name": "Ana", "location": "Moema"}

    def test_empty_and_non_finite_values_are_ignored(self):
        merged = merge_draft(
            {"name": "Ana", "budget": 100000},
            {"name": "  ", "budget": float("nan"), "email": None},
        )
        assert merged == {"name": "Ana", "budget": 100000}

    def test_does_not_mutate_input(self):
        draft = {"name": "Ana"}
        merge_draft(draft, Signal(email="ana@example.com"))
        assert draft == {"name": "Ana"}

    def test_later_merge_wins(self):
        draft = merge_draft({}, Signal(intent="buy"))
        draft = merge_draft(draft, Signal(intent="rent"))
        assert draft["intent"] == "rent"

    def test_none_draft(self):
        assert merge_draft(None, Signal(name="Ana")) == {"name": "Ana"}


class TestBuildQuestions:
    def test_empty_draft_asks_everything_in_order(self):
        assert build_questions({}) == [
            QUESTION_NAME,
            QUESTION_CONTACT,
            QUESTION_INTENT,
            QUESTION_PROPERTY_TYPE,
            QUESTION_LOCATION,
            QUESTION_BUDGET,
        ]

    def test_contact_satisfied_by_email_or_phone(self):
        assert QUESTION_CONTACT not in build_questions({"email": "a@b.co"})
        assert QUESTION_CONTACT not in build_questions({"phone": "11987654321"})

    def test_only_two_are_surfaced(self):
        assert surfaced_questions({"name": "Ana"}) == [QUESTION_CONTACT, QUESTION_INTENT]

    def test_complete_draft_has_no_questions(self):
        draft = {
            "name": "Ana",
            "email": "ana@example.com",
            "intent": "buy",
            "property_type": "Apartamento",
            "location": "Pinheiros",
            "budget": 500000,
        }
        assert build_questions(draft) == []

    def test_zero_budget_still_asks(self):
        assert QUESTION_BUDGET in build_questions({"budget": 0})


class TestSummarizeDraft:
    def test_full_summary(self):
        draft = {"intent": "buy", "property_type": "Apartamento", "location": "Pinheiros", "bedrooms": 2}
        assert summarize_draft(draft) == "Compra • Apartamento • em Pinheiros • 2q"

    def test_empty_summary(self):
        assert summarize_draft({"name": "Ana"}) == ""
