"""Draft accumulation for a (channel, peer) session."""

import math
from typing import Any, Mapping, Optional, Union

from app.services.signal_extractor import Signal

INTENT_LABELS = {"buy": "Compra", "rent": "Locação", "sell": "Venda"}

QUESTION_NAME = "Qual seu nome?"
QUESTION_CONTACT = "Pode me passar um telefone ou e-mail para contato?"
QUESTION_INTENT = "Você busca comprar, alugar ou vender?"
QUESTION_PROPERTY_TYPE = "Qual tipo de imóvel você procura?"
QUESTION_LOCATION = "Em qual cidade ou bairro?"
QUESTION_BUDGET = "Qual faixa de valor (aprox.)?"

MAX_SURFACED_QUESTIONS = 2


def _is_present(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, bool):
        return True
    if isinstance(value, str):
        return bool(value.strip())
    if isinstance(value, (int, float)):
        return math.isfinite(value)
    return True


def merge_draft(draft: Optional[Mapping[str, Any]], signal: Union[Signal, Mapping[str, Any], None]) -> dict:
    """Return a new draft where every present fact of ``signal`` overwrites the old value.

    Absent, empty or non-finite values are no-ops, so a fact once known is
    never cleared by a later message that does not mention it.
    """
    merged = dict(draft or {})
    if signal is None:
        return merged

    incoming = signal.as_dict() if isinstance(signal, Signal) else dict(signal)
    for fact, value in incoming.items():
        if not _is_present(value):
            continue
        merged[fact] = value.strip() if isinstance(value, str) else value
    return merged


def has_budget(draft: Mapping[str, Any]) -> bool:
    budget = draft.get("budget")
    return isinstance(budget, (int, float)) and not isinstance(budget, bool) and math.isfinite(budget) and budget > 0


def build_questions(draft: Mapping[str, Any]) -> list[str]:
    """Ordered checklist of prompts for facts still missing."""
    questions = []
    if not _is_present(draft.get("name")):
        questions.append(QUESTION_NAME)
    if not _is_present(draft.get("phone")) and not _is_present(draft.get("email")):
        questions.append(QUESTION_CONTACT)
    if not _is_present(draft.get("intent")):
        questions.append(QUESTION_INTENT)
    if not _is_present(draft.get("property_type")):
        questions.append(QUESTION_PROPERTY_TYPE)
    if not _is_present(draft.get("location")):
        questions.append(QUESTION_LOCATION)
    if not has_budget(draft):
        questions.append(QUESTION_BUDGET)
    return questions


def surfaced_questions(draft: Mapping[str, Any]) -> list[str]:
    return build_questions(draft)[:MAX_SURFACED_QUESTIONS]


def summarize_draft(draft: Mapping[str, Any]) -> str:
    """One-line summary used in replies, e.g. ``Compra • Apartamento • em Pinheiros • 2q``."""
    parts = []
    intent = draft.get("intent")
    if intent in INTENT_LABELS:
        parts.append(INTENT_LABELS[intent])
    if _is_present(draft.get("property_type")):
        parts.append(str(draft["property_type"]))
    if _is_present(draft.get("location")):
        parts.append(f"em {draft['location']}")
    if _is_present(draft.get("bedrooms")):
        parts.append(f"{draft['bedrooms']}q")
    return " • ".join(parts)
