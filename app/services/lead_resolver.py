from dataclasses import dataclass
from typing import Any, Mapping, Optional, Protocol

from app.services.signal_extractor import normalize_phone

MATCH_SESSION = "session"
MATCH_EMAIL = "email"
MATCH_PHONE = "phone"
MATCH_NEW = "new"


class LeadLookup(Protocol):
    def find_by_email(self, email: str) -> Optional[Any]: ...

    def find_by_phone(self, phone_digits: str) -> Optional[Any]: ...


@dataclass(frozen=True)
class LeadResolution:
    lead_id: Optional[str]
    matched_by: str

    @property
    def is_new(self) -> bool:
        return self.lead_id is None


def resolve_lead(
    draft: Mapping[str, Any],
    session_lead_id: Optional[str],
    leads: LeadLookup,
) -> LeadResolution:
    """Pick the lead this conversation belongs to.

    Priority: lead already linked to the session, exact case-insensitive email,
    digits-only phone. No fuzzy matching; nothing found means a new lead.
    """
    if session_lead_id:
        return LeadResolution(session_lead_id, MATCH_SESSION)

    email = (draft.get("email") or "").strip().lower()
    if email:
        lead = leads.find_by_email(email)
        if lead is not None:
            return LeadResolution(str(lead.id), MATCH_EMAIL)

    phone = normalize_phone(draft.get("phone"))
    if phone:
        lead = leads.find_by_phone(phone)
        if lead is not None:
            return LeadResolution(str(lead.id), MATCH_PHONE)

    return LeadResolution(None, MATCH_NEW)
