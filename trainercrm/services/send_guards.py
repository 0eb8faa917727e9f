"""Send guards — quiet-hours deferral and per-recipient frequency caps."""

import logging
from dataclasses import dataclass
from datetime import datetime, time, timedelta, timezone
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from trainercrm.config import get_settings
from trainercrm.database import as_utc
from trainercrm.models.message import Message, MessageStatus

logger = logging.getLogger(__name__)
settings = get_settings()


# ── Quiet hours ───────────────────────────────────────
@dataclass
class QuietHoursCheck:
    allowed: bool
    next_available: Optional[datetime] = None  # UTC end of the current window


def parse_time_of_day(value: str) -> time:
    """Parse ``HH:MM`` or ``HH:MM:SS``."""
    parts = (value or "").strip().split(":")
    if len(parts) not in (2, 3):
        raise ValueError(f"Invalid time of day: {value!r}")
    try:
        numbers = [int(p) for p in parts]
    except ValueError as e:
        raise ValueError(f"Invalid time of day: {value!r}") from e
    if len(numbers) == 2:
        numbers.append(0)
    hour, minute, second = numbers
    if not (0 <= hour < 24 and 0 <= minute < 60 and 0 <= second < 60):
        raise ValueError(f"Invalid time of day: {value!r}")
    return time(hour, minute, second)


def resolve_zone(tz_name: Optional[str]) -> ZoneInfo:
    try:
        return ZoneInfo(tz_name or "UTC")
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning(f"Unknown timezone {tz_name!r}, falling back to UTC")
        return ZoneInfo("UTC")


def check_quiet_hours(
    now: datetime,
    start: Optional[str],
    end: Optional[str],
    tz_name: Optional[str] = "UTC",
) -> QuietHoursCheck:
    """Is ``now`` outside the trainer's quiet window?

    The window is read in the trainer's local time. When end <= start the
    window runs overnight. An equal start and end is treated as no window.
    """
    if not start or not end:
        return QuietHoursCheck(allowed=True)
    start_t = parse_time_of_day(start)
    end_t = parse_time_of_day(end)
    if start_t == end_t:
        return QuietHoursCheck(allowed=True)

    zone = resolve_zone(tz_name)
    local = as_utc(now).astimezone(zone)
    current = local.time().replace(tzinfo=None)

    overnight = end_t < start_t
    if overnight:
        in_quiet = current >= start_t or current < end_t
    else:
        in_quiet = start_t <= current < end_t
    if not in_quiet:
        return QuietHoursCheck(allowed=True)

    end_date = local.date()
    if overnight and current >= start_t:
        end_date += timedelta(days=1)
    window_end = datetime.combine(end_date, end_t, tzinfo=zone)
    return QuietHoursCheck(allowed=False, next_available=window_end.astimezone(timezone.utc))


def local_day_start(now: datetime, tz_name: Optional[str] = "UTC") -> datetime:
    """Midnight of ``now``'s calendar day in the trainer's zone, as UTC."""
    zone = resolve_zone(tz_name)
    local = as_utc(now).astimezone(zone)
    midnight = datetime.combine(local.date(), time(0, 0), tzinfo=zone)
    return midnight.astimezone(timezone.utc)


# ── Frequency cap ─────────────────────────────────────
@dataclass
class SendCounts:
    today: int = 0
    week: int = 0


@dataclass
class FrequencyCapCheck:
    allowed: bool
    limit: Optional[str] = None  # daily|weekly when blocked
    remaining: Optional[int] = None  # None = uncapped


def effective_caps(trainer) -> tuple[int, int]:
    """Trainer caps, falling back to the configured defaults. 0 = unlimited."""
    daily = trainer.frequency_cap_daily
    if daily is None:
        daily = settings.default_frequency_cap_daily
    weekly = trainer.frequency_cap_weekly
    if weekly is None:
        weekly = settings.default_frequency_cap_weekly
    return daily or 0, weekly or 0


def check_frequency_cap(counts: SendCounts, daily_cap: int = 0, weekly_cap: int = 0) -> FrequencyCapCheck:
    if daily_cap > 0 and counts.today >= daily_cap:
        return FrequencyCapCheck(allowed=False, limit="daily", remaining=0)
    if weekly_cap > 0 and counts.week >= weekly_cap:
        return FrequencyCapCheck(allowed=False, limit="weekly", remaining=0)

    remaining = []
    if daily_cap > 0:
        remaining.append(daily_cap - counts.today)
    if weekly_cap > 0:
        remaining.append(weekly_cap - counts.week)
    return FrequencyCapCheck(allowed=True, remaining=min(remaining) if remaining else None)


async def count_recent_sends(
    db: AsyncSession,
    trainer_id: str,
    contact_id: str,
    now: Optional[datetime] = None,
) -> SendCounts:
    """Messages delivered to one recipient over the last day and week."""
    now = now or datetime.now(timezone.utc)

    async def _count(since: datetime) -> int:
        return (
            await db.execute(
                select(func.count(Message.id)).where(
                    Message.trainer_id == trainer_id,
                    Message.contact_id == contact_id,
                    Message.status == MessageStatus.SENT.value,
                    Message.sent_at >= since,
                )
            )
        ).scalar() or 0

    return SendCounts(
        today=await _count(now - timedelta(days=1)),
        week=await _count(now - timedelta(days=7)),
    )


def daily_auto_approval_limit(trainer) -> int:
    """Trainer's daily auto-approval limit, falling back to the configured default. 0 = none."""
    limit = trainer.max_daily_auto_approvals
    if limit is None:
        limit = settings.default_max_daily_auto_approvals
    return limit or 0
