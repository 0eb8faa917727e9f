"""Pydantic schemas for API request/response."""

from datetime import datetime
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, EmailStr, Field, field_validator

from trainercrm.services.send_guards import parse_time_of_day


# ── Message ──────────────────────────────────────────────
class MessageOut(BaseModel):
    id: str
    contact_id: str
    content: str
    channel: str
    status: str
    confidence: float
    reasons: list[str] = Field(default_factory=list)
    generated_by: str
    scheduled_for: Optional[datetime] = None
    auto_approval_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    sent_at: Optional[datetime] = None
    delivery_status: Optional[str] = None
    created_at: datetime

    model_config = {"from_attributes": True}

    @classmethod
    def from_model(cls, message):
        return cls(
            id=message.id,
            contact_id=message.contact_id,
            content=message.content,
            channel=message.channel or "sms",
            status=message.status,
            confidence=message.confidence or 0.0,
            reasons=message.reasons,
            generated_by=message.generated_by or "",
            scheduled_for=message.scheduled_for,
            auto_approval_at=message.auto_approval_at,
            expires_at=message.expires_at,
            sent_at=message.sent_at,
            delivery_status=message.delivery_status,
            created_at=message.created_at,
        )


class MessageEdit(BaseModel):
    content: str = Field(min_length=1, max_length=1600)


class ApproveAllRequest(BaseModel):
    min_confidence: Optional[float] = Field(default=None, ge=0.0, le=1.0)


class DeliveryStatusReport(BaseModel):
    provider_message_id: str
    status: str


# ── Draft generation ─────────────────────────────────────
class RunSummaryOut(BaseModel):
    trainer_id: str
    generated: int
    skipped: int
    cleaned: int
    candidates: int
    failed: int = 0
    auto_approval_scheduled: int = 0
    message: str


class DraftCandidateOut(BaseModel):
    contact_id: str
    contact_name: str
    priority: int
    reasons: list[str]
    trigger: str


# ── Trainer settings ─────────────────────────────────────
class TrainerSettingsOut(BaseModel):
    timezone_name: str
    quiet_hours_start: Optional[str] = None
    quiet_hours_end: Optional[str] = None
    frequency_cap_daily: Optional[int] = None
    frequency_cap_weekly: Optional[int] = None
    auto_approval_enabled: bool = False
    max_daily_auto_approvals: Optional[int] = None

    model_config = {"from_attributes": True}


class TrainerSettingsUpdate(BaseModel):
    timezone_name: Optional[str] = None
    quiet_hours_start: Optional[str] = None
    quiet_hours_end: Optional[str] = None
    frequency_cap_daily: Optional[int] = Field(default=None, ge=0)
    frequency_cap_weekly: Optional[int] = Field(default=None, ge=0)
    auto_approval_enabled: Optional[bool] = None
    max_daily_auto_approvals: Optional[int] = Field(default=None, ge=0)

    @field_validator("quiet_hours_start", "quiet_hours_end")
    @classmethod
    def _valid_time(cls, value: Optional[str]) -> Optional[str]:
        if value is None or value == "":
            return None
        return parse_time_of_day(value).strftime("%H:%M:%S")

    @field_validator("timezone_name")
    @classmethod
    def _valid_zone(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        try:
            ZoneInfo(value)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ValueError(f"Unknown timezone: {value}") from e
        return value


# ── Auth ─────────────────────────────────────────────────
class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
