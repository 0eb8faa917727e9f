"""SQLAlchemy models — portable across SQLite and PostgreSQL."""

import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    String,
)

from trainercrm.database import Base


def utcnow():
    return datetime.now(timezone.utc)


def new_uuid():
    return str(uuid.uuid4())


# ── Trainer ─────────────────────────────────────────────
class Trainer(Base):
    """Dashboard user; owns contacts and the outreach settings applied to them."""

    __tablename__ = "trainers"

    id = Column(String(36), primary_key=True, default=new_uuid)
    email = Column(String(320), unique=True, nullable=False, index=True)
    hashed_password = Column(String(200), nullable=False)
    name = Column(String(200), default="")
    timezone_name = Column(String(50), default="UTC")
    quiet_hours_start = Column(String(8), nullable=True)  # HH:MM[:SS], trainer-local
    quiet_hours_end = Column(String(8), nullable=True)
    frequency_cap_daily = Column(Integer, nullable=True)  # null = configured default, 0 = unlimited
    frequency_cap_weekly = Column(Integer, nullable=True)
    auto_approval_enabled = Column(Boolean, default=False)
    max_daily_auto_approvals = Column(Integer, nullable=True)  # null = configured default, 0 = none
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)


# ── Contact ─────────────────────────────────────────────
class Contact(Base):
    __tablename__ = "contacts"

    id = Column(String(36), primary_key=True, default=new_uuid)
    trainer_id = Column(String(36), ForeignKey("trainers.id"), nullable=False, index=True)
    first_name = Column(String(100), default="")
    last_name = Column(String(100), default="")
    email = Column(String(320), default="")
    phone = Column(String(30), default="")
    consent_status = Column(String(20), default="active")  # active|pending|opted_out
    last_message_sent_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    @property
    def display_name(self) -> str:
        return f"{self.first_name or ''} {self.last_name or ''}".strip()


# ── Insight ─────────────────────────────────────────────
class Insight(Base):
    """Per-contact metrics produced by the analytics process."""

    __tablename__ = "insights"

    id = Column(String(36), primary_key=True, default=new_uuid)
    trainer_id = Column(String(36), ForeignKey("trainers.id"), nullable=False, index=True)
    contact_id = Column(String(36), ForeignKey("contacts.id"), unique=True, nullable=False)
    risk_score = Column(Integer, default=0)  # 0-100
    last_activity_at = Column(DateTime, nullable=True)
    total_sessions = Column(Integer, default=0)
    missed_sessions = Column(Integer, default=0)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)


# ── Booking ─────────────────────────────────────────────
class Booking(Base):
    __tablename__ = "bookings"

    id = Column(String(36), primary_key=True, default=new_uuid)
    trainer_id = Column(String(36), ForeignKey("trainers.id"), nullable=False, index=True)
    contact_id = Column(String(36), ForeignKey("contacts.id"), nullable=False, index=True)
    scheduled_at = Column(DateTime, nullable=False)
    status = Column(String(20), default="scheduled")  # scheduled|confirmed|cancelled|completed
    created_at = Column(DateTime, default=utcnow)
