"""Outreach message models — drafts, deferred sends and the per-trainer run lock."""

import json
from enum import Enum

from sqlalchemy import Column, DateTime, Float, ForeignKey, String, Text

from trainercrm.database import Base
from trainercrm.models import new_uuid, utcnow


class MessageStatus(str, Enum):
    DRAFT = "draft"
    QUEUED = "queued"
    SENT = "sent"
    EXPIRED = "expired"


OPEN_STATUSES = (MessageStatus.DRAFT.value, MessageStatus.QUEUED.value)


class Message(Base):
    """Outbound message, from generated draft to delivery."""

    __tablename__ = "messages"

    id = Column(String(36), primary_key=True, default=new_uuid)
    trainer_id = Column(String(36), ForeignKey("trainers.id"), nullable=False, index=True)
    contact_id = Column(String(36), ForeignKey("contacts.id"), nullable=False, index=True)
    content = Column(Text, nullable=False)
    channel = Column(String(10), default="sms")  # sms|email
    status = Column(String(20), default=MessageStatus.DRAFT.value, index=True)
    confidence = Column(Float, default=0.0)
    why_reasons = Column(Text, default="[]")  # JSON list stored as text
    generated_by = Column(String(50), default="manual")
    expires_at = Column(DateTime, nullable=True)
    scheduled_for = Column(DateTime, nullable=True)
    auto_approval_at = Column(DateTime, nullable=True, index=True)  # approved unattended after this time
    idempotency_key = Column(String(36), unique=True, nullable=False, default=new_uuid)
    provider_message_id = Column(String(100), nullable=True, index=True)
    delivery_status = Column(String(30), nullable=True)  # reported back by the channel
    sent_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow, index=True)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    @property
    def reasons(self) -> list[str]:
        value = self.why_reasons
        if isinstance(value, str):
            try:
                value = json.loads(value)
            except (json.JSONDecodeError, TypeError):
                value = []
        return list(value or [])

    @property
    def is_open(self) -> bool:
        return self.status in OPEN_STATUSES


class DraftRunLock(Base):
    """In-flight marker: one row per trainer while a generation run is active."""

    __tablename__ = "draft_run_locks"

    trainer_id = Column(String(36), primary_key=True)
    run_id = Column(String(36), nullable=False, default=new_uuid)
    acquired_at = Column(DateTime, default=utcnow)
