from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from app.database import get_db
from app.runtime import get_orchestrator
from app.schemas.message import ConversationMessageOut, ManualMessageRequest, WorkflowResponse
from app.services.channel_service import CHANNEL_LABELS
from app.services.crm_stores import ConversationLog
from app.services.orchestrator import SOURCE_TEST, InboundMessage, WorkflowOrchestrator

router = APIRouter(prefix="/api/ai")


@router.post("/messages", response_model=WorkflowResponse)
def post_test_message(
    request: ManualMessageRequest,
    db: Session = Depends(get_db),
    orchestrator: WorkflowOrchestrator = Depends(get_orchestrator),
):
    """Run a manually typed message through the workflow. Never auto-replies."""
    if request.channel not in CHANNEL_LABELS:
        raise HTTPException(status_code=400, detail=f"Unknown channel: {request.channel}")

    text = request.text.strip()
    if not text:
        raise HTTPException(status_code=400, detail="text obrigatório")

    result = orchestrator.handle_message(
        db,
        InboundMessage(
            channel=request.channel,
            peer=request.peer,
            text=text,
            author=request.author,
            source=SOURCE_TEST,
            auto_reply=False,
        ),
    )
    return WorkflowResponse(
        success=True,
        channel=result.channel,
        reply=result.reply,
        score=result.score,
        stage=result.stage,
        lead_id=result.lead_id,
        deal_id=result.deal_id,
        lead_created=result.lead_created,
        deal_created=result.deal_created,
        task_created=result.task_created,
        automations_triggered=result.automations_triggered,
        questions=result.questions,
        audit_events=result.audit_events,
        draft=result.draft,
    )


@router.get("/messages", response_model=list[ConversationMessageOut])
def list_messages(
    channel: str = "whatsapp",
    peer: Optional[str] = None,
    limit: int = Query(default=100, ge=1, le=500),
    db: Session = Depends(get_db),
):
    return ConversationLog(db).recent(channel, limit=limit, peer=peer)
