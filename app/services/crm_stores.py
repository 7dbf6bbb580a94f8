"""
SQLAlchemy-backed CRM record stores.

Each store method commits its own unit of work and rolls back on failure, so
callers never share a transaction across stores. Errors propagate; the
orchestrator decides what a failed write means for the conversation.
"""

from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Iterable, Optional

import yaml
from sqlalchemy import func
from sqlalchemy.orm import Session

from app.logging_config import get_logger
from app.models import Automation, ConversationMessage, Deal, Lead, Task

logger = get_logger("crm_stores")

DEFAULT_AUTOMATIONS_SEED = Path(__file__).resolve().parents[1] / "knowledge" / "automations.yaml"

LEAD_FIELDS = {
    "name",
    "company",
    "email",
    "phone",
    "phone_digits",
    "origin",
    "score",
    "stage_id",
    "value",
    "last_touch_at",
    "meta",
}


def _commit(db: Session) -> None:
    try:
        db.commit()
    except Exception:
        db.rollback()
        raise


class LeadStore:
    def __init__(self, db: Session):
        self.db = db

    def get(self, lead_id: Optional[str]) -> Optional[Lead]:
        if not lead_id:
            return None
        return self.db.query(Lead).filter(Lead.id == lead_id).first()

    def find_by_email(self, email: str) -> Optional[Lead]:
        normalized = (email or "").strip().lower()
        if not normalized:
            return None
        return self.db.query(Lead).filter(func.lower(Lead.email) == normalized).first()

    def find_by_phone(self, phone_digits: str) -> Optional[Lead]:
        if not phone_digits:
            return None
        return self.db.query(Lead).filter(Lead.phone_digits == phone_digits).first()

    def upsert(self, lead_id: Optional[str], fields: dict) -> str:
        """Update the lead when it exists, create it otherwise. Returns the id."""
        values = {key: value for key, value in fields.items() if key in LEAD_FIELDS}
        lead = self.get(lead_id)
        if lead is None:
            lead = Lead(**values)
            if lead_id:
                lead.id = lead_id
            self.db.add(lead)
        else:
            for key, value in values.items():
                setattr(lead, key, value)
        try:
            self.db.flush()
        except Exception:
            self.db.rollback()
            raise
        saved_id = lead.id
        _commit(self.db)
        return saved_id


class DealStore:
    def __init__(self, db: Session):
        self.db = db

    def create(self, fields: dict) -> str:
        deal = Deal(**fields)
        self.db.add(deal)
        try:
            self.db.flush()
        except Exception:
            self.db.rollback()
            raise
        deal_id = deal.id
        _commit(self.db)
        return deal_id


class TaskStore:
    def __init__(self, db: Session):
        self.db = db

    def create(self, fields: dict) -> str:
        task = Task(**fields)
        self.db.add(task)
        try:
            self.db.flush()
        except Exception:
            self.db.rollback()
            raise
        task_id = task.id
        _commit(self.db)
        return task_id

    def for_lead(self, lead_id: str) -> list[Task]:
        return self.db.query(Task).filter(Task.lead_id == lead_id).order_by(Task.created_at).all()


class AutomationStore:
    def __init__(self, db: Session):
        self.db = db

    def list_active(self, trigger: str) -> list[Automation]:
        return (
            self.db.query(Automation)
            .filter(Automation.active.is_(True), Automation.trigger == trigger)
            .order_by(Automation.created_at, Automation.name)
            .all()
        )

    def create(self, name: str, steps: list, trigger: str = "new_lead", active: bool = True) -> str:
        automation = Automation(name=name, steps=steps, trigger=trigger, active=active)
        self.db.add(automation)
        try:
            self.db.flush()
        except Exception:
            self.db.rollback()
            raise
        automation_id = automation.id
        _commit(self.db)
        return automation_id

    def count(self) -> int:
        return self.db.query(Automation).count()


class ConversationLog:
    """Append-only log of user messages, agent replies and audit events."""

    def __init__(self, db: Session):
        self.db = db

    def append(self, entries: Iterable[dict]) -> int:
        rows = []
        base = datetime.now(timezone.utc)
        for offset, entry in enumerate(entries):
            rows.append(
                ConversationMessage(
                    channel=entry["channel"],
                    role=entry["role"],
                    author=entry.get("author"),
                    peer=entry.get("peer"),
                    source=entry.get("source"),
                    text=entry["text"],
                    meta=entry.get("meta") or {},
                    # keeps user -> agent -> events ordering stable on read
                    created_at=entry.get("created_at") or base + timedelta(microseconds=offset),
                )
            )
        self.db.add_all(rows)
        _commit(self.db)
        return len(rows)

    def recent(self, channel: str, limit: int = 100, peer: Optional[str] = None) -> list[ConversationMessage]:
        query = self.db.query(ConversationMessage).filter(ConversationMessage.channel == channel)
        if peer:
            query = query.filter(ConversationMessage.peer == peer)
        rows = query.order_by(ConversationMessage.created_at.desc()).limit(limit).all()
        return list(reversed(rows))


def load_automation_seed(path: Optional[str]) -> list[dict[str, Any]]:
    """Read automation definitions from YAML; a missing or empty file yields []."""
    if not path:
        return []
    seed_path = Path(path)
    if not seed_path.exists():
        logger.warning("Automation seed file not found", extra={"context": {"path": str(seed_path)}})
        return []
    with seed_path.open("r", encoding="utf-8") as handle:
        data = yaml.safe_load(handle) or {}
    definitions = data.get("automations") if isinstance(data, dict) else data
    return [item for item in definitions or [] if isinstance(item, dict) and item.get("name")]


def seed_automations(db: Session, path: Optional[str]) -> int:
    """Insert seed definitions into an empty automation table."""
    store = AutomationStore(db)
    if store.count() > 0:
        return 0
    created = 0
    for definition in load_automation_seed(path):
        store.create(
            name=str(definition["name"]),
            steps=list(definition.get("steps") or []),
            trigger=str(definition.get("trigger") or "new_lead"),
            active=bool(definition.get("active", True)),
        )
        created += 1
    if created:
        logger.info("Automations seeded", extra={"context": {"count": created}})
    return created
