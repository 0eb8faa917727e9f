"""Candidate scorer — ranks a trainer's contacts by how urgently they need a message."""

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Iterable, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from trainercrm.config import get_settings
from trainercrm.database import as_utc
from trainercrm.models import Booking, Contact, Insight
from trainercrm.services.errors import SignalFetchError

logger = logging.getLogger(__name__)


# ── Triggers (precedence order) ───────────────────────
class Trigger(str, Enum):
    HIGH_RISK = "high_risk"
    RE_ENGAGEMENT = "re_engagement"
    MISSED_SESSION = "missed_session"
    BOOKING_REMINDER = "booking_reminder"
    MILESTONE = "milestone"
    LONG_INACTIVE = "long_inactive"
    GENERAL_CHECK_IN = "general_check_in"

    @classmethod
    def parse(cls, value) -> "Trigger":
        """Unknown or empty values fall back to a general check-in."""
        try:
            return cls(value)
        except ValueError:
            return cls.GENERAL_CHECK_IN


# ── Rule constants ────────────────────────────────────
HIGH_RISK_THRESHOLD = 75
HIGH_RISK_POINTS = 100

MESSAGE_GAP_MIN_DAYS = 3
MESSAGE_GAP_BASE = 50
MESSAGE_GAP_PER_DAY = 5
NEVER_MESSAGED_DAYS = 999

MISSED_SESSION_POINTS = 40

BOOKING_WINDOW = timedelta(hours=24)
BOOKING_POINTS = 60

MILESTONE_EVERY = 5
MILESTONE_POINTS = 30

INACTIVE_MIN_DAYS = 5
INACTIVE_BASE = 35
INACTIVE_PER_DAY = 3

CANCELLED_BOOKING_STATUSES = ("cancelled", "canceled")


@dataclass
class DraftCandidate:
    contact_id: str
    contact_name: str
    priority: int = 0
    reasons: list[str] = field(default_factory=list)
    trigger: Trigger = Trigger.GENERAL_CHECK_IN

    def to_dict(self) -> dict:
        return {
            "contact_id": self.contact_id,
            "contact_name": self.contact_name,
            "priority": self.priority,
            "reasons": list(self.reasons),
            "trigger": self.trigger.value,
        }


@dataclass
class SignalSnapshot:
    """Read-only view of one trainer's consented contacts and their signals."""

    trainer_id: str
    contacts: list[Contact] = field(default_factory=list)
    insights: dict[str, Insight] = field(default_factory=dict)
    bookings: dict[str, list[Booking]] = field(default_factory=dict)


def _days_since(moment: Optional[datetime], now: datetime) -> Optional[int]:
    if moment is None:
        return None
    return int((now - as_utc(moment)).total_seconds() // 86400)


def score_contact(
    contact: Contact,
    insight: Optional[Insight],
    bookings: Iterable[Booking],
    now: Optional[datetime] = None,
) -> Optional[DraftCandidate]:
    """Apply every rule to one contact. Returns None when no rule fires.

    Rules are additive; the trigger is taken from the first rule that fired,
    in the order the rules are listed here.
    """
    now = as_utc(now or datetime.now(timezone.utc))
    candidate = DraftCandidate(contact_id=contact.id, contact_name=contact.display_name)
    trigger: Optional[Trigger] = None

    def fire(points: int, reason: str, rule_trigger: Trigger):
        nonlocal trigger
        candidate.priority += points
        candidate.reasons.append(reason)
        if trigger is None:
            trigger = rule_trigger

    if insight is not None and (insight.risk_score or 0) > HIGH_RISK_THRESHOLD:
        fire(HIGH_RISK_POINTS, f"High risk score: {insight.risk_score}", Trigger.HIGH_RISK)

    days_since_message = _days_since(contact.last_message_sent_at, now)
    if days_since_message is None:
        days_since_message = NEVER_MESSAGED_DAYS
    if days_since_message >= MESSAGE_GAP_MIN_DAYS:
        fire(
            MESSAGE_GAP_BASE + days_since_message * MESSAGE_GAP_PER_DAY,
            f"{days_since_message} days since last message",
            Trigger.RE_ENGAGEMENT,
        )

    if insight is not None and (insight.missed_sessions or 0) > 0:
        fire(
            MISSED_SESSION_POINTS,
            f"{insight.missed_sessions} missed sessions",
            Trigger.MISSED_SESSION,
        )

    for booking in bookings:
        if (booking.status or "").lower() in CANCELLED_BOOKING_STATUSES:
            continue
        until = as_utc(booking.scheduled_at) - now
        if timedelta(0) < until < BOOKING_WINDOW:
            fire(BOOKING_POINTS, "Session scheduled within 24 hours", Trigger.BOOKING_REMINDER)
            break

    sessions = (insight.total_sessions or 0) if insight is not None else 0
    if sessions > 0 and sessions % MILESTONE_EVERY == 0:
        fire(MILESTONE_POINTS, f"Milestone: {sessions} sessions completed", Trigger.MILESTONE)

    if insight is not None:
        days_inactive = _days_since(insight.last_activity_at, now)
        if days_inactive is not None and days_inactive >= INACTIVE_MIN_DAYS:
            fire(
                INACTIVE_BASE + days_inactive * INACTIVE_PER_DAY,
                f"{days_inactive} days inactive",
                Trigger.LONG_INACTIVE,
            )

    if candidate.priority <= 0 or not candidate.reasons:
        return None
    candidate.trigger = trigger or Trigger.GENERAL_CHECK_IN
    return candidate


def score_snapshot(snapshot: SignalSnapshot, now: Optional[datetime] = None) -> list[DraftCandidate]:
    """Score every contact in the snapshot, dropping those with no reason to reach out."""
    candidates = []
    for contact in snapshot.contacts:
        candidate = score_contact(
            contact,
            snapshot.insights.get(contact.id),
            snapshot.bookings.get(contact.id, []),
            now=now,
        )
        if candidate is not None:
            candidates.append(candidate)
    return candidates


def rank_candidates(candidates: Iterable[DraftCandidate]) -> list[DraftCandidate]:
    """Highest priority first; equal priorities ordered by contact id."""
    return sorted(candidates, key=lambda c: (-c.priority, c.contact_id))


def selection_size(candidate_count: int) -> int:
    settings = get_settings()
    wanted = min(
        settings.max_selected_candidates,
        max(settings.min_selected_candidates, candidate_count),
    )
    return min(wanted, candidate_count)


def select_top_candidates(candidates: Iterable[DraftCandidate]) -> list[DraftCandidate]:
    ranked = rank_candidates(candidates)
    return ranked[: selection_size(len(ranked))]


# ── Signal loading ────────────────────────────────────
async def load_signals(
    db: AsyncSession,
    trainer_id: str,
    now: Optional[datetime] = None,
) -> SignalSnapshot:
    """Read consented contacts plus their insights and upcoming bookings."""
    now = now or datetime.now(timezone.utc)
    try:
        contacts = (
            await db.execute(
                select(Contact)
                .where(Contact.trainer_id == trainer_id, Contact.consent_status == "active")
                .order_by(Contact.created_at, Contact.id)
            )
        ).scalars().all()

        insights = (
            await db.execute(select(Insight).where(Insight.trainer_id == trainer_id))
        ).scalars().all()

        bookings = (
            await db.execute(
                select(Booking).where(
                    Booking.trainer_id == trainer_id,
                    Booking.scheduled_at >= now,
                )
            )
        ).scalars().all()
    except SQLAlchemyError as exc:
        logger.error(f"Failed to load signals for trainer {trainer_id}: {exc}")
        raise SignalFetchError(f"Failed to fetch signals for trainer {trainer_id}") from exc

    by_contact: dict[str, list[Booking]] = defaultdict(list)
    for booking in bookings:
        by_contact[booking.contact_id].append(booking)

    return SignalSnapshot(
        trainer_id=trainer_id,
        contacts=list(contacts),
        insights={i.contact_id: i for i in insights},
        bookings=dict(by_contact),
    )
