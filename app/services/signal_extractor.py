"""
Rule-based extraction of lead facts from a single free-text message.

Each fact is produced by one or more named rules, tried in order; the first
rule that yields a non-empty value wins for that fact. Rules never raise:
text that matches nothing simply leaves the fact out of the Signal.
"""

from __future__ import annotations

import math
import re
from dataclasses import dataclass, fields
from functools import lru_cache
from pathlib import Path
from typing import Any, Callable, Optional, Sequence

import yaml

from app.logging_config import get_logger

logger = get_logger("signal_extractor")

_RULES_PATH = Path(__file__).resolve().parents[1] / "knowledge" / "extraction_rules.yaml"

INTENTS = ("buy", "rent", "sell")
MAX_BEDROOMS = 12

_NAME_WORD = r"[A-Za-zÀ-ÿ]+"
_NAME_CAPTURE = rf"({_NAME_WORD}(?:\s+{_NAME_WORD}){{0,3}})"
_COMPANY_CAPTURE = r"([A-Za-z0-9À-ÿ&.' -]{2,})"

EMAIL_PATTERN = re.compile(r"[A-Z0-9._%+-]+@[A-Z0-9.-]+\.[A-Z]{2,}", re.IGNORECASE)
PHONE_PATTERN = re.compile(r"(?:\+?55\s*)?(?:\(?\d{2}\)?\s*)?(?:9?\d{4})[-\s]?\d{4}")

NAME_INTRO_PATTERN = re.compile(
    r"(?:\bmeu nome é|\bmeu nome e|\bme chamo|\baqui é|\bsou o|\bsou a|\bmy name is)\s+"
    + _NAME_CAPTURE,
    re.IGNORECASE,
)
# pronoun forms only capture capitalised words
NAME_PRONOUN_PATTERN = re.compile(
    r"(?i:\bthis is|\bi am|\bi'm)\s+([A-ZÀ-Þ][a-zß-ÿ]+(?:\s+[A-ZÀ-Þ][a-zß-ÿ]+){0,3})\b"
)
NAME_LABEL_PATTERN = re.compile(rf"\b(?:nome|name)\s*[:\-]\s*{_NAME_CAPTURE}", re.IGNORECASE)

COMPANY_INLINE_PATTERN = re.compile(
    r"(?:\btrabalho (?:na|no|em)|\bsou da|\bsou do|\bda empresa|\bi work (?:at|for))\s+" + _COMPANY_CAPTURE,
    re.IGNORECASE,
)
COMPANY_LABEL_PATTERN = re.compile(
    rf"\b(?:empresa|imobiliária|imobiliaria|corretora|company)\s*[:\-]\s*{_COMPANY_CAPTURE}",
    re.IGNORECASE,
)

BEDROOMS_PATTERN = re.compile(
    r"(\d+)\s*(?:quartos?|dorms?|dormitórios?|dormitorios?|bedrooms?|beds?)\b",
    re.IGNORECASE,
)

LOCATION_MARKER_PATTERN = re.compile(rf"\b(?:bairro|neighbou?rhood)\s+{_NAME_CAPTURE}", re.IGNORECASE)
LOCATION_PREPOSITION_PATTERN = re.compile(
    rf"\b(?:em|na|no|in|at)\s+{_NAME_CAPTURE}(?=[,.!?;]|$)",
    re.IGNORECASE,
)

_THOUSANDS_DOTTED = re.compile(r"\d{1,3}(?:\.\d{3})+")


@dataclass(frozen=True)
class Signal:
    """Facts found in one message. None means no evidence."""

    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None  # digits only, country code stripped
    company: Optional[str] = None
    intent: Optional[str] = None
    property_type: Optional[str] = None
    bedrooms: Optional[int] = None
    location: Optional[str] = None
    budget: Optional[int] = None

    def as_dict(self) -> dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in fields(self) if getattr(self, f.name) is not None}

    def is_empty(self) -> bool:
        return not self.as_dict()


@dataclass(frozen=True)
class ExtractionRule:
    fact: str
    name: str
    apply: Callable[[str], Any]


@dataclass(frozen=True)
class KeywordFamily:
    label: str
    pattern: re.Pattern


def normalize_phone(raw: Any) -> str:
    """Digits-only phone with a leading Brazilian country code removed."""
    digits = re.sub(r"\D", "", str(raw or ""))
    if digits.startswith("55") and len(digits) > 11:
        digits = digits[2:]
    return digits


def format_phone(raw: Any) -> str:
    """Display form used on lead records; matching always uses normalize_phone."""
    digits = normalize_phone(raw)
    if len(digits) == 11:
        return f"({digits[:2]}) {digits[2:7]}-{digits[7:]}"
    if len(digits) == 10:
        return f"({digits[:2]}) {digits[2:6]}-{digits[6:]}"
    return digits


def parse_decimal(value: str | None) -> Optional[float]:
    """Parse a pt-BR style number: '1.500.000', '1,5', '2.500,90' or plain '1.5'."""
    raw = (value or "").strip()
    if not raw:
        return None
    if "," in raw:
        raw = raw.replace(".", "").replace(",", ".")
    elif _THOUSANDS_DOTTED.fullmatch(raw):
        raw = raw.replace(".", "")
    try:
        number = float(raw)
    except ValueError:
        return None
    return number if math.isfinite(number) else None


@lru_cache(maxsize=2)
def _load_rules_data(path: Path = _RULES_PATH) -> dict:
    with path.open("r", encoding="utf-8") as handle:
        return yaml.safe_load(handle) or {}


def _compile_families(entries: list[dict] | None) -> tuple[KeywordFamily, ...]:
    families = []
    for entry in entries or []:
        patterns = [p for p in entry.get("patterns") or [] if p]
        if not entry.get("label") or not patterns:
            continue
        combined = "|".join(f"(?:{p})" for p in patterns)
        families.append(KeywordFamily(label=str(entry["label"]), pattern=re.compile(combined, re.IGNORECASE)))
    return tuple(families)


def _compile_magnitudes(entries: list[dict] | None) -> tuple[re.Pattern, re.Pattern, dict[str, int]]:
    multipliers: dict[str, int] = {}
    for entry in entries or []:
        for word in entry.get("words") or []:
            multipliers[str(word).casefold()] = int(entry.get("multiplier") or 1)
    # longest first so "milhões" wins over "mil"
    words = sorted(multipliers, key=len, reverse=True)
    alternation = "|".join(re.escape(word) for word in words) or r"(?!x)x"
    magnitude = re.compile(rf"([0-9]+(?:[.,][0-9]+)?)\s*({alternation})\b", re.IGNORECASE)
    prefixed = re.compile(
        r"r\$\s*([0-9]{1,3}(?:\.[0-9]{3})+(?:,[0-9]+)?|[0-9]+(?:,[0-9]+)?)" + rf"(?:\s*({alternation})\b)?",
        re.IGNORECASE,
    )
    return prefixed, magnitude, multipliers


def _first_group(pattern: re.Pattern, strip_chars: str = " ") -> Callable[[str], Optional[str]]:
    def apply(text: str) -> Optional[str]:
        match = pattern.search(text)
        if not match:
            return None
        value = match.group(1).strip().strip(strip_chars)
        return value or None

    return apply


def _classify(families: Sequence[KeywordFamily]) -> Callable[[str], Optional[str]]:
    def apply(text: str) -> Optional[str]:
        for family in families:
            if family.pattern.search(text):
                return family.label
        return None

    return apply


def _extract_email(text: str) -> Optional[str]:
    match = EMAIL_PATTERN.search(text)
    return match.group(0).lower() if match else None


def _phone_rule(*money_patterns: re.Pattern) -> Callable[[str], Optional[str]]:
    """Phone digits, ignoring anything inside a money amount such as "R$ 15000000"."""

    def apply(text: str) -> Optional[str]:
        for pattern in money_patterns:
            text = pattern.sub(lambda match: " " * len(match.group(0)), text)
        match = PHONE_PATTERN.search(text)
        if not match:
            return None
        return normalize_phone(match.group(0)) or None

    return apply


def _extract_bedrooms(text: str) -> Optional[int]:
    match = BEDROOMS_PATTERN.search(text)
    if not match:
        return None
    digits = match.group(1)
    if len(digits) > 3:
        return MAX_BEDROOMS
    return max(0, min(MAX_BEDROOMS, int(digits)))


def _scaled_amount(number: str, unit: str | None, multipliers: dict[str, int]) -> Optional[int]:
    amount = parse_decimal(number)
    if amount is None:
        return None
    if unit:
        amount *= multipliers.get(unit.casefold(), 1)
    if not math.isfinite(amount) or amount <= 0:
        return None
    rounded = round(amount)
    return rounded if rounded > 0 else None


def _budget_rules(prefixed: re.Pattern, magnitude: re.Pattern, multipliers: dict[str, int]):
    def from_prefix(text: str) -> Optional[int]:
        match = prefixed.search(text)
        if not match:
            return None
        return _scaled_amount(match.group(1), match.group(2), multipliers)

    def from_magnitude(text: str) -> Optional[int]:
        match = magnitude.search(text)
        if not match:
            return None
        return _scaled_amount(match.group(1), match.group(2), multipliers)

    return from_prefix, from_magnitude


def build_rules(data: dict) -> tuple[ExtractionRule, ...]:
    """Build the ordered rule list from locale keyword data."""
    prefixed, magnitude, multipliers = _compile_magnitudes(data.get("magnitude"))
    budget_from_prefix, budget_from_magnitude = _budget_rules(prefixed, magnitude, multipliers)
    return (
        ExtractionRule("email", "email_token", _extract_email),
        ExtractionRule("phone", "phone_token", _phone_rule(prefixed, magnitude)),
        ExtractionRule("name", "self_introduction", _first_group(NAME_INTRO_PATTERN)),
        ExtractionRule("name", "pronoun_introduction", _first_group(NAME_PRONOUN_PATTERN)),
        ExtractionRule("name", "name_label", _first_group(NAME_LABEL_PATTERN)),
        ExtractionRule("company", "workplace_phrase", _first_group(COMPANY_INLINE_PATTERN, " .-'")),
        ExtractionRule("company", "company_label", _first_group(COMPANY_LABEL_PATTERN, " .-'")),
        ExtractionRule("intent", "intent_keywords", _classify(_compile_families(data.get("intent")))),
        ExtractionRule(
            "property_type", "property_keywords", _classify(_compile_families(data.get("property_type")))
        ),
        ExtractionRule("bedrooms", "bedroom_count", _extract_bedrooms),
        ExtractionRule("location", "neighborhood_marker", _first_group(LOCATION_MARKER_PATTERN)),
        ExtractionRule("location", "preposition_place", _first_group(LOCATION_PREPOSITION_PATTERN)),
        ExtractionRule("budget", "currency_prefix", budget_from_prefix),
        ExtractionRule("budget", "magnitude_word", budget_from_magnitude),
    )


@lru_cache(maxsize=1)
def default_rules() -> tuple[ExtractionRule, ...]:
    rules = build_rules(_load_rules_data())
    logger.debug("Extraction rules loaded", extra={"context": {"rules": [r.name for r in rules]}})
    return rules


def extract(text: str | None, rules: Sequence[ExtractionRule] | None = None) -> Signal:
    """Turn raw message text into a partial Signal."""
    source = (text or "").strip()
    if not source:
        return Signal()

    found: dict[str, Any] = {}
    for rule in default_rules() if rules is None else rules:
        if rule.fact in found:
            continue
        value = rule.apply(source)
        if value is None or value == "":
            continue
        found[rule.fact] = value

    return Signal(**found)
