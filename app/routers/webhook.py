import hmac
import json
from typing import Any, Optional

from fastapi import APIRouter, Depends, Header, Request
from fastapi.responses import JSONResponse

from app.config import settings
from app.logging_config import get_logger
from app.runtime import get_event_log, get_message_dedup
from app.schemas.webhook import EventsResponse, ParsedWebhook, WebhookAck
from app.services.event_log import EventLog
from app.services.gateway_client import normalize_whatsapp_number
from app.services.message_dedup_service import MessageDeduplicator
from app.services.payload_rules import MESSAGE_TEXT, dig, first_match

logger = get_logger("webhook")

router = APIRouter(prefix="/api/evolution")

WHATSAPP_CHANNEL = "whatsapp"


def _coalesce(*values: Any) -> Any:
    for value in values:
        if value is not None:
            return value
    return None


def _any_string(value: Any) -> Optional[str]:
    return value if isinstance(value, str) else None


def extract_message_text(message: Any) -> str:
    """Text from whichever Evolution message shape is present; first shape found wins."""
    if isinstance(message, str):
        return message
    return first_match(message, MESSAGE_TEXT, accept=_any_string) or ""


def parse_evolution_webhook(payload: Any) -> ParsedWebhook:
    if not isinstance(payload, dict):
        return ParsedWebhook(raw=payload)

    data = _coalesce(payload.get("data"), payload.get("message"), payload)
    key = _coalesce(dig(data, "key"), payload.get("key"))

    from_me = bool(_coalesce(dig(key, "fromMe"), dig(data, "fromMe"), payload.get("fromMe")))
    remote_jid = _coalesce(
        dig(key, "remoteJid"),
        dig(data, "remoteJid"),
        payload.get("remoteJid"),
        payload.get("from"),
        payload.get("sender"),
    )
    message = _coalesce(dig(data, "message"), payload.get("message"), dig(payload, "data.message"), data)
    push_name = _coalesce(dig(data, "pushName"), payload.get("pushName"), payload.get("senderName"))
    instance = _coalesce(payload.get("instance"), payload.get("instanceName"), dig(data, "instance"))
    message_id = _coalesce(dig(key, "id"), payload.get("id"))

    return ParsedWebhook(
        from_me=from_me,
        sender=normalize_whatsapp_number(remote_jid),
        text=str(extract_message_text(message) or "").strip(),
        push_name=str(push_name or "").strip(),
        instance=str(instance or "").strip(),
        message_id=str(message_id) if message_id else None,
    )


def _decode_body(raw: bytes) -> Any:
    text = raw.decode("utf-8", errors="replace")
    if not text.strip():
        return {}
    try:
        return json.loads(text)
    except ValueError:
        return {"_raw": text}


def _token_matches(expected: str, provided: Optional[str]) -> bool:
    candidate = (provided or "").strip()
    if not candidate:
        return False
    return hmac.compare_digest(candidate.encode("utf-8"), expected.encode("utf-8"))


def _coerce_cursor(value: Optional[str]) -> int:
    try:
        return max(0, int(float(value or 0)))
    except (TypeError, ValueError, OverflowError):
        return 0


@router.post("/webhook", response_model=WebhookAck, response_model_exclude_none=True)
async def evolution_webhook(
    request: Request,
    token: Optional[str] = None,
    x_webhook_token: Optional[str] = Header(default=None),
    event_log: EventLog = Depends(get_event_log),
    dedup: MessageDeduplicator = Depends(get_message_dedup),
):
    """Admit one inbound WhatsApp message into the event log."""
    expected = (settings.evolution_webhook_token or "").strip()
    if expected and not (_token_matches(expected, token) or _token_matches(expected, x_webhook_token)):
        logger.warning("Webhook token rejected")
        return JSONResponse(status_code=401, content={"ok": False, "error": "Webhook token inválido"})

    parsed = parse_evolution_webhook(_decode_body(await request.body()))

    if parsed.from_me:
        return {"ok": True, "ignored": True, "reason": "fromMe"}
    if not parsed.text or not parsed.sender:
        return {"ok": True, "ignored": True}
    if await dedup.is_duplicate_message_id(WHATSAPP_CHANNEL, parsed.message_id):
        return {"ok": True, "ignored": True, "reason": "duplicate"}

    event = event_log.admit(
        sender=parsed.sender,
        text=parsed.text,
        channel=WHATSAPP_CHANNEL,
        author=parsed.push_name,
        instance=parsed.instance,
    )
    return {"ok": True, "seq": event.seq}


@router.get("/events", response_model=EventsResponse)
def list_events(after: Optional[str] = None, event_log: EventLog = Depends(get_event_log)):
    """Events with seq greater than ``after`` plus the highest seq issued so far."""
    events, next_after = event_log.read_after(_coerce_cursor(after))
    return {"ok": True, "events": [event.to_dict() for event in events], "nextAfter": next_after}
