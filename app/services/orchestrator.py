"""
Per-message CRM workflow.

Extract facts, merge them into the (channel, peer) draft, score and stage the
lead, apply the record side effects and compose the reply. Store calls are
best effort: a failure becomes a ``[CRM] Falha ...`` audit event and the
conversation moves on.

Idempotency lives on the session:
- ``lead_id`` set: later messages update the lead instead of creating one.
- ``deal_id`` set: the deal is never created again.
- ``automations_triggered`` set: new-lead automations never fire again.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from sqlalchemy.orm import Session

from app.config import settings
from app.database import SessionLocal
from app.logging_config import get_logger
from app.services.channel_service import ChannelRegistry, channel_label
from app.services.crm_stores import AutomationStore, ConversationLog, DealStore, LeadStore, TaskStore
from app.services.draft_service import (
    INTENT_LABELS,
    MAX_SURFACED_QUESTIONS,
    build_questions,
    has_budget,
    merge_draft,
    summarize_draft,
)
from app.services.event_log import InboundEvent
from app.services.gateway_client import GatewayClient
from app.services.lead_resolver import resolve_lead
from app.services.result import EXTERNAL_STORE_FAILURE, Result
from app.services.session_store import SessionStore
from app.services.signal_extractor import extract, format_phone, normalize_phone
from app.services.stage_policy import LeadStage, next_stage, score_draft

logger = get_logger("orchestrator")

SOURCE_WEBHOOK = "evolution"
SOURCE_TEST = "test"

NEW_LEAD_TRIGGER = "new_lead"

FOLLOW_UP_NOTE = "Agente IA registrou um novo lead. Responder e qualificar o atendimento."
AUTOMATION_DEFAULT_NOTE = "Enviar mensagem automática"
NO_QUESTIONS_LINE = "Com essas informações, já consigo buscar as melhores opções. Quer que eu te mostre 3 sugestões?"
NOT_CONNECTED_LINE = "Obs: este canal ainda não está conectado. Ao conectar, as mensagens entram automaticamente no CRM."

DEAL_STAGE = "discovery"
DEAL_PROBABILITY = 25
DEAL_CLOSE_LABEL = "30 dias"


@dataclass
class WorkflowToggles:
    auto_create_lead: bool = True
    auto_create_task: bool = True
    auto_create_deal: bool = True
    trigger_marketing_automations: bool = True

    @classmethod
    def from_settings(cls) -> "WorkflowToggles":
        return cls(
            auto_create_lead=settings.auto_create_lead,
            auto_create_task=settings.auto_create_task,
            auto_create_deal=settings.auto_create_deal,
            trigger_marketing_automations=settings.trigger_marketing_automations,
        )


@dataclass
class InboundMessage:
    channel: str
    peer: str
    text: str
    author: Optional[str] = None
    source: str = SOURCE_WEBHOOK
    auto_reply: bool = False

    @classmethod
    def from_event(cls, event: InboundEvent) -> "InboundMessage":
        return cls(
            channel=event.channel,
            peer=event.sender,
            text=event.text,
            author=event.author,
            source=SOURCE_WEBHOOK,
            auto_reply=True,
        )


@dataclass
class WorkflowResult:
    channel: str
    peer: str
    reply: str
    draft: dict
    score: int
    stage: str
    lead_id: Optional[str] = None
    deal_id: Optional[str] = None
    lead_created: bool = False
    deal_created: bool = False
    task_created: bool = False
    automations_triggered: bool = False
    questions: list[str] = field(default_factory=list)
    audit_events: list[str] = field(default_factory=list)
    delivered: Optional[bool] = None


def initials_for(value: str) -> str:
    compact = "".join((value or "").split())
    return compact[:2].upper()


def compose_deal_title(draft: dict, lead_name: str) -> str:
    parts = [
        INTENT_LABELS.get(draft.get("intent"), ""),
        draft.get("property_type") or "",
        f"em {draft['location']}" if draft.get("location") else "",
    ]
    title = " ".join(part for part in parts if part)
    return title or f"Negócio {lead_name}"


def compose_reply(
    label: str,
    draft: dict,
    questions: list[str],
    connected: bool,
    lead_created: bool = False,
    deal_created: bool = False,
    task_created: bool = False,
    automations_triggered: bool = False,
) -> str:
    if lead_created:
        lines = [f"Perfeito! Já registrei seu lead no CRM via {label}."]
    else:
        lines = [f"Certo! Vou te ajudar por aqui ({label})."]

    summary = summarize_draft(draft)
    if summary:
        lines.append(f"Anotei: {summary}.")
    if deal_created:
        lines.append("Também criei um negócio no Pipeline para acompanhar este atendimento.")
    if task_created:
        lines.append("Criei uma tarefa de follow-up para o time comercial.")
    if automations_triggered:
        lines.append("Iniciei automações de marketing para este lead.")
    if not connected:
        lines.append(NOT_CONNECTED_LINE)

    if questions:
        lines.append(" ".join(questions[:MAX_SURFACED_QUESTIONS]))
    else:
        lines.append(NO_QUESTIONS_LINE)
    return "\n".join(lines)


def _automation_step_task(automation: Any, index: int, step: Any, lead_name: str, lead_id: str) -> dict:
    step = step if isinstance(step, dict) else {}
    try:
        minutes = max(0, round(float(step.get("wait_minutes", step.get("waitMinutes")) or 0)))
    except (TypeError, ValueError):
        minutes = 0
    channel = step.get("channel")
    return {
        "title": f"Automação: {automation.name} · Passo {index}",
        "note": str(step.get("message") or "").strip() or AUTOMATION_DEFAULT_NOTE,
        "type": "email" if channel == "email" else "follow_up",
        "due_label": f"{minutes} min" if minutes else "Agora",
        "priority": "medium",
        "related": lead_name,
        "lead_id": lead_id,
        "meta": {"channel": channel, "automation_id": automation.id},
    }


class WorkflowOrchestrator:
    def __init__(
        self,
        sessions: SessionStore,
        channels: Optional[ChannelRegistry] = None,
        gateway: Optional[GatewayClient] = None,
        toggles: Optional[WorkflowToggles] = None,
        session_factory: Callable[[], Session] = SessionLocal,
    ):
        self.sessions = sessions
        self.channels = channels
        self.gateway = gateway or GatewayClient()
        self.toggles = toggles
        self.session_factory = session_factory

    def _store_call(self, db: Session, operation: str, func: Callable[[], Any]) -> Result:
        try:
            return Result.success(func())
        except Exception as e:
            logger.error(
                f"CRM store call failed: {operation}: {e}",
                extra={"context": {"operation": operation}},
            )
            try:
                db.rollback()
            except Exception as rollback_error:
                logger.error(f"Rollback failed after {operation}: {rollback_error}")
            return Result.failure(str(e), EXTERNAL_STORE_FAILURE)

    def handle_message(self, db: Session, inbound: InboundMessage) -> WorkflowResult:
        """Run one message through the workflow under its session's lock."""
        toggles = self.toggles or WorkflowToggles.from_settings()
        label = channel_label(inbound.channel)
        leads = LeadStore(db)
        tasks = TaskStore(db)
        deals = DealStore(db)
        automations = AutomationStore(db)

        with self.sessions.transaction(inbound.channel, inbound.peer) as session:
            session.draft = merge_draft(session.draft, extract(inbound.text))
            draft = session.draft
            questions = build_questions(draft)
            audit: list[str] = []

            resolution = self._store_call(db, "resolve_lead", lambda: resolve_lead(draft, session.lead_id, leads))
            lead_id = resolution.value.lead_id if resolution.ok else session.lead_id
            if not resolution.ok:
                audit.append(f"[CRM] Falha ao consultar leads: {resolution.error}")

            seed = LeadStage.NEW.value
            if lead_id:
                linked = self._store_call(db, "get_lead", lambda: leads.get(lead_id)).unwrap_or(None)
                seed = linked.stage_id if linked is not None else None
            stage = next_stage(seed, draft).value
            score = score_draft(draft)

            author = (inbound.author or "").strip()
            lead_name = draft.get("name") or author or f"Lead {label}"
            company = draft.get("company") or ""
            lead_fields = {
                "name": lead_name,
                "company": company or None,
                "email": draft.get("email"),
                "phone": format_phone(draft["phone"]) if draft.get("phone") else None,
                "phone_digits": normalize_phone(draft.get("phone")) or None,
                "origin": inbound.channel,
                "score": score,
                "stage_id": stage,
                "value": int(draft["budget"]) if has_budget(draft) else 0,
                "last_touch_at": datetime.now(timezone.utc),
            }

            lead_created = False
            if lead_id is None and toggles.auto_create_lead:
                saved = self._store_call(db, "create_lead", lambda: leads.upsert(None, lead_fields))
                if saved.ok:
                    lead_id = saved.value
                    lead_created = True
                    audit.append(f"[CRM] Lead criado: {lead_name} · etapa: {stage}")
                    logger.info("Lead created", extra={"context": {"lead_id": lead_id, "channel": inbound.channel}})
                else:
                    audit.append(f"[CRM] Falha ao criar lead: {saved.error}")
            elif lead_id is not None:
                saved = self._store_call(db, "update_lead", lambda: leads.upsert(lead_id, lead_fields))
                if saved.ok:
                    audit.append(f"[CRM] Lead atualizado: {lead_name} · score: {score}")
                    logger.info("Lead updated", extra={"context": {"lead_id": lead_id, "score": score}})
                else:
                    audit.append(f"[CRM] Falha ao atualizar lead: {saved.error}")
            session.lead_id = lead_id

            task_created = False
            if lead_created and toggles.auto_create_task:
                title = f"Follow-up {lead_name}"
                saved = self._store_call(
                    db,
                    "create_task",
                    lambda: tasks.create(
                        {
                            "title": title,
                            "note": FOLLOW_UP_NOTE,
                            "type": "follow_up",
                            "due_label": "Hoje",
                            "priority": "high",
                            "related": lead_name,
                            "lead_id": lead_id,
                        }
                    ),
                )
                if saved.ok:
                    task_created = True
                    audit.append(f"[CRM] Tarefa criada: {title}")
                else:
                    audit.append(f"[CRM] Falha ao criar tarefa: {saved.error}")

            deal_created = False
            if lead_id and toggles.auto_create_deal and not session.deal_id and draft.get("intent") and has_budget(draft):
                title = compose_deal_title(draft, lead_name)
                deal_company = company or lead_name
                saved = self._store_call(
                    db,
                    "create_deal",
                    lambda: deals.create(
                        {
                            "title": title,
                            "company": deal_company,
                            "stage_id": DEAL_STAGE,
                            "amount": int(draft["budget"]),
                            "probability": DEAL_PROBABILITY,
                            "close_date_label": DEAL_CLOSE_LABEL,
                            "initials": initials_for(deal_company or title),
                            "lead_id": lead_id,
                        }
                    ),
                )
                if saved.ok:
                    session.deal_id = saved.value
                    deal_created = True
                    audit.append(f"[CRM] Negócio criado no Pipeline: {title}")
                    logger.info("Deal created", extra={"context": {"deal_id": saved.value, "lead_id": lead_id}})
                else:
                    audit.append(f"[CRM] Falha ao criar negócio: {saved.error}")

            automations_fired = False
            if lead_created and toggles.trigger_marketing_automations and not session.automations_triggered:
                automations_fired = self._fire_automations(db, automations, tasks, lead_id, lead_name, audit)
                if automations_fired:
                    session.automations_triggered = True

            connected = self.channels.is_connected(inbound.channel) if self.channels else False
            reply = compose_reply(
                label,
                draft,
                questions,
                connected,
                lead_created=lead_created,
                deal_created=deal_created,
                task_created=task_created,
                automations_triggered=automations_fired,
            )

            entries = [
                {"role": "user", "text": inbound.text, "author": author or None},
                {"role": "agent", "text": reply, "author": "Agente IA"},
            ]
            entries += [{"role": "event", "text": text} for text in audit]
            for entry in entries:
                entry.update(channel=inbound.channel, peer=inbound.peer, source=inbound.source)
            logged = self._store_call(db, "append_conversation", lambda: ConversationLog(db).append(entries))
            if logged.is_store_failure:
                logger.error(
                    "Conversation log append failed",
                    extra={"context": {"channel": inbound.channel, "peer": inbound.peer}},
                )

            result = WorkflowResult(
                channel=inbound.channel,
                peer=inbound.peer,
                reply=reply,
                draft=dict(draft),
                score=score,
                stage=stage,
                lead_id=lead_id,
                deal_id=session.deal_id,
                lead_created=lead_created,
                deal_created=deal_created,
                task_created=task_created,
                automations_triggered=automations_fired,
                questions=questions,
                audit_events=audit,
            )

        logger.info(
            "Message processed",
            extra={
                "context": {
                    "channel": inbound.channel,
                    "source": inbound.source,
                    "score": score,
                    "stage": stage,
                    "lead_created": lead_created,
                }
            },
        )
        return result

    def _fire_automations(
        self,
        db: Session,
        automations: AutomationStore,
        tasks: TaskStore,
        lead_id: str,
        lead_name: str,
        audit: list[str],
    ) -> bool:
        listed = self._store_call(db, "list_automations", lambda: automations.list_active(NEW_LEAD_TRIGGER))
        if not listed.ok:
            audit.append(f"[CRM] Falha ao carregar automações: {listed.error}")
            return False

        fired_names = []
        created = 0
        for automation in listed.value or []:
            fired = False
            for index, step in enumerate(automation.steps or [], start=1):
                fields = _automation_step_task(automation, index, step, lead_name, lead_id)
                saved = self._store_call(db, "create_automation_task", lambda: tasks.create(fields))
                if saved.ok:
                    created += 1
                    fired = True
                else:
                    audit.append(f"[CRM] Falha ao criar tarefa de automação: {saved.error}")
            if fired:
                fired_names.append(automation.name)

        if not created:
            return False
        audit.append(f"[CRM] Automações iniciadas: {', '.join(fired_names)}")
        logger.info(
            "Automations triggered",
            extra={"context": {"lead_id": lead_id, "automations": fired_names, "tasks": created}},
        )
        return True

    def _process_in_thread(self, inbound: InboundMessage) -> WorkflowResult:
        db = self.session_factory()
        try:
            return self.handle_message(db, inbound)
        finally:
            db.close()

    def _record_event(self, inbound: InboundMessage, text: str) -> None:
        db = self.session_factory()
        try:
            ConversationLog(db).append(
                [{"channel": inbound.channel, "peer": inbound.peer, "source": inbound.source, "role": "event", "text": text}]
            )
        except Exception as e:
            logger.error(f"Conversation log append failed: {e}")
        finally:
            db.close()

    async def deliver_reply(self, inbound: InboundMessage, result: WorkflowResult) -> bool:
        """Send the reply back through the gateway. Failures become audit events, never exceptions."""
        if self.channels is None:
            return False
        connection = self.channels.get(inbound.channel)
        if not connection.is_configured or not inbound.peer:
            logger.debug("Auto-reply skipped, channel not configured", extra={"context": {"channel": inbound.channel}})
            return False

        sent = await self.gateway.send_text(
            connection.base_url, connection.api_key, connection.instance, inbound.peer, result.reply
        )
        if sent.ok:
            logger.info("Reply delivered", extra={"context": {"channel": inbound.channel, "path": sent.path}})
            return True

        text = f"[CRM] Falha ao enviar no {connection.label}: {sent.error or sent.status}"
        result.audit_events.append(text)
        await asyncio.to_thread(self._record_event, inbound, text)
        return False

    async def run(self, inbound: InboundMessage) -> WorkflowResult:
        """Process off the event loop, then deliver the reply when the source asks for one."""
        result = await asyncio.to_thread(self._process_in_thread, inbound)
        if inbound.auto_reply:
            result.delivered = await self.deliver_reply(inbound, result)
        return result

    async def handle_event(self, event: InboundEvent) -> WorkflowResult:
        return await self.run(InboundMessage.from_event(event))
