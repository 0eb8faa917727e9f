"""Review queue & approval API."""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from trainercrm.api.auth import get_current_trainer
from trainercrm.api.errors import to_http
from trainercrm.database import get_db
from trainercrm.models import Trainer
from trainercrm.schemas import ApproveAllRequest, DeliveryStatusReport, MessageEdit, MessageOut
from trainercrm.services.approval import ApprovalOrchestrator, record_delivery_status
from trainercrm.services.errors import OutreachError
from trainercrm.services.send_channel import SendChannel

router = APIRouter(prefix="/messages", tags=["messages"])


def get_channel() -> Optional[SendChannel]:
    """None = pick the channel from each message."""
    return None


@router.get("/queue", response_model=list[MessageOut])
async def review_queue(
    limit: int = Query(20, ge=1, le=100),
    trainer: Trainer = Depends(get_current_trainer),
    db: AsyncSession = Depends(get_db),
):
    messages = await ApprovalOrchestrator(db).list_review_queue(trainer.id, limit=limit)
    return [MessageOut.from_model(m) for m in messages]


@router.post("/approve-all-safe")
async def approve_all_safe(
    body: Optional[ApproveAllRequest] = None,
    trainer: Trainer = Depends(get_current_trainer),
    channel: Optional[SendChannel] = Depends(get_channel),
    db: AsyncSession = Depends(get_db),
):
    """Approve every high-confidence message; per-item errors are reported, not raised."""
    min_confidence = body.min_confidence if body else None
    batch = await ApprovalOrchestrator(db, channel=channel).approve_all_safe(
        trainer, min_confidence=min_confidence
    )
    return batch.to_dict()


@router.post("/dispatch-due")
async def dispatch_due(
    trainer: Trainer = Depends(get_current_trainer),
    channel: Optional[SendChannel] = Depends(get_channel),
    db: AsyncSession = Depends(get_db),
):
    """Send queued messages whose quiet-hours deferral has ended."""
    batch = await ApprovalOrchestrator(db, channel=channel).dispatch_due(trainer)
    return batch.to_dict()


@router.post("/auto-approve")
async def auto_approve(
    trainer: Trainer = Depends(get_current_trainer),
    channel: Optional[SendChannel] = Depends(get_channel),
    db: AsyncSession = Depends(get_db),
):
    """Approve drafts whose auto-approval preview window has passed."""
    batch = await ApprovalOrchestrator(db, channel=channel).run_auto_approvals(trainer)
    return batch.to_dict()


@router.post("/delivery-status", status_code=204)
async def delivery_status(report: DeliveryStatusReport, db: AsyncSession = Depends(get_db)):
    """Provider callback with the delivery outcome of a sent message."""
    message = await record_delivery_status(db, report.provider_message_id, report.status)
    if message is None:
        raise HTTPException(404, "Message not found")


@router.post("/{message_id}/approve")
async def approve_message(
    message_id: str,
    trainer: Trainer = Depends(get_current_trainer),
    channel: Optional[SendChannel] = Depends(get_channel),
    db: AsyncSession = Depends(get_db),
):
    try:
        result = await ApprovalOrchestrator(db, channel=channel).approve(trainer, message_id)
    except OutreachError as exc:
        raise to_http(exc) from exc
    return result.to_dict()


@router.post("/{message_id}/send-now")
async def send_message_now(
    message_id: str,
    trainer: Trainer = Depends(get_current_trainer),
    channel: Optional[SendChannel] = Depends(get_channel),
    db: AsyncSession = Depends(get_db),
):
    try:
        result = await ApprovalOrchestrator(db, channel=channel).send_now(trainer, message_id)
    except OutreachError as exc:
        raise to_http(exc) from exc
    return result.to_dict()


@router.patch("/{message_id}", response_model=MessageOut)
async def edit_message(
    message_id: str,
    data: MessageEdit,
    trainer: Trainer = Depends(get_current_trainer),
    db: AsyncSession = Depends(get_db),
):
    try:
        message = await ApprovalOrchestrator(db).edit(trainer, message_id, data.content)
    except OutreachError as exc:
        raise to_http(exc) from exc
    return MessageOut.from_model(message)
