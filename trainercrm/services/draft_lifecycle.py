"""Draft lifecycle manager — daily draft generation, dedup and stale-message sweeps."""

import json
import logging
import random
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from trainercrm.config import get_settings
from trainercrm.database import as_utc, async_session
from trainercrm.models import Trainer, new_uuid
from trainercrm.models.message import OPEN_STATUSES, DraftRunLock, Message, MessageStatus
from trainercrm.services.candidate_scorer import (
    DraftCandidate,
    SignalSnapshot,
    load_signals,
    score_snapshot,
    select_top_candidates,
)
from trainercrm.services.errors import OutreachError, RunInProgressError
from trainercrm.services.message_templates import render_message, select_template
from trainercrm.services.send_guards import daily_auto_approval_limit, local_day_start

logger = logging.getLogger(__name__)
settings = get_settings()

GENERATOR_TAG = "auto_daily"
DEFAULT_CHANNEL = "sms"


@dataclass
class RunSummary:
    """Counts reported at the end of a generation run."""

    trainer_id: str
    generated: int = 0
    skipped: int = 0
    cleaned: int = 0
    candidates: int = 0
    failed: int = 0
    auto_approval_scheduled: int = 0

    @property
    def message(self) -> str:
        return (
            f"Generated {self.generated} new drafts, skipped {self.skipped} duplicates, "
            f"cleaned {self.cleaned} expired/orphaned messages"
        )

    def to_dict(self) -> dict:
        return {
            "trainer_id": self.trainer_id,
            "generated": self.generated,
            "skipped": self.skipped,
            "cleaned": self.cleaned,
            "candidates": self.candidates,
            "failed": self.failed,
            "auto_approval_scheduled": self.auto_approval_scheduled,
            "message": self.message,
        }


class DraftLifecycleManager:
    """Runs one generation pass for a trainer.

    Every step commits on its own, so a failure part way through leaves the
    sweeps and already-created drafts in place.
    """

    def __init__(self, db: AsyncSession, rng: Optional[random.Random] = None):
        self.db = db
        self.rng = rng or random.Random()

    # ── Run lock ────────────────────────────────────────
    async def acquire_run_lock(self, trainer_id: str, now: datetime) -> str:
        """Mark a run in flight for the trainer and return its run id.

        Stale markers are taken over.
        """
        ttl = timedelta(minutes=settings.run_lock_ttl_minutes)
        existing = await self.db.get(DraftRunLock, trainer_id, populate_existing=True)
        if existing is not None:
            if as_utc(existing.acquired_at) > now - ttl:
                raise RunInProgressError(f"A draft run is already in progress for trainer {trainer_id}")
            return await self.take_over_stale_lock(trainer_id, existing.run_id, now)

        run_id = new_uuid()
        self.db.add(DraftRunLock(trainer_id=trainer_id, run_id=run_id, acquired_at=now))
        try:
            await self.db.commit()
        except IntegrityError as exc:
            await self.db.rollback()
            raise RunInProgressError(
                f"A draft run is already in progress for trainer {trainer_id}"
            ) from exc
        return run_id

    async def take_over_stale_lock(self, trainer_id: str, seen_run_id: str, now: datetime) -> str:
        """Replace the lock only if it still carries the run id we saw as stale."""
        run_id = new_uuid()
        result = await self.db.execute(
            update(DraftRunLock)
            .where(DraftRunLock.trainer_id == trainer_id, DraftRunLock.run_id == seen_run_id)
            .values(run_id=run_id, acquired_at=now)
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()
        if result.rowcount != 1:
            raise RunInProgressError(f"A draft run is already in progress for trainer {trainer_id}")
        logger.warning(f"Took over stale draft run lock for trainer {trainer_id}")
        return run_id

    async def release_run_lock(self, trainer_id: str, run_id: str):
        await self.db.execute(
            delete(DraftRunLock).where(
                DraftRunLock.trainer_id == trainer_id,
                DraftRunLock.run_id == run_id,
            )
        )
        await self.db.commit()

    # ── Sweeps ──────────────────────────────────────────
    async def _sweep(self, trainer_id: str, status: MessageStatus, cutoff: datetime, now: datetime) -> int:
        conditions = (
            Message.trainer_id == trainer_id,
            Message.status == status.value,
            Message.created_at < cutoff,
        )
        if settings.retain_expired_messages:
            stmt = update(Message).where(*conditions).values(
                status=MessageStatus.EXPIRED.value, updated_at=now
            )
        else:
            stmt = delete(Message).where(*conditions)
        stmt = stmt.execution_options(synchronize_session=False)
        try:
            result = await self.db.execute(stmt)
            await self.db.commit()
        except SQLAlchemyError as exc:
            await self.db.rollback()
            logger.error(f"Error sweeping {status.value} messages for trainer {trainer_id}: {exc}")
            return 0
        return result.rowcount or 0

    async def sweep_expired_drafts(self, trainer_id: str, now: Optional[datetime] = None) -> int:
        """Drafts nobody reviewed within the expiry window."""
        now = now or datetime.now(timezone.utc)
        cutoff = now - timedelta(days=settings.draft_expiry_days)
        count = await self._sweep(trainer_id, MessageStatus.DRAFT, cutoff, now)
        logger.info(f"Cleaned up {count} old drafts for trainer {trainer_id}")
        return count

    async def sweep_orphaned_queued(self, trainer_id: str, now: Optional[datetime] = None) -> int:
        """Quiet-hours deferrals that were never delivered; treated as stuck."""
        now = now or datetime.now(timezone.utc)
        cutoff = now - timedelta(hours=settings.queued_orphan_hours)
        count = await self._sweep(trainer_id, MessageStatus.QUEUED, cutoff, now)
        logger.info(f"Cleaned up {count} orphaned queued messages for trainer {trainer_id}")
        return count

    # ── Dedup ───────────────────────────────────────────
    async def open_message_contact_ids(self, trainer_id: str) -> set[str]:
        result = await self.db.execute(
            select(Message.contact_id).where(
                Message.trainer_id == trainer_id,
                Message.status.in_(OPEN_STATUSES),
            )
        )
        return set(result.scalars().all())

    # ── Draft creation ──────────────────────────────────
    def draw_confidence(self) -> float:
        return settings.confidence_floor + self.rng.random() * settings.confidence_span

    def render_candidate(self, candidate: DraftCandidate, sessions: int = 0) -> str:
        template = select_template(candidate.trigger, self.rng)
        return render_message(template, candidate.contact_name, sessions)

    async def auto_approval_slots(self, trainer_id: str, now: datetime) -> int:
        """How many more drafts may be scheduled for auto-approval today."""
        trainer = await self.db.get(Trainer, trainer_id)
        if trainer is None or not trainer.auto_approval_enabled:
            return 0
        limit = daily_auto_approval_limit(trainer)
        day_start = local_day_start(now, trainer.timezone_name)
        used = (
            await self.db.execute(
                select(func.count(Message.id)).where(
                    Message.trainer_id == trainer_id,
                    Message.auto_approval_at.is_not(None),
                    Message.auto_approval_at >= day_start,
                )
            )
        ).scalar() or 0
        return max(limit - used, 0)

    async def create_draft(
        self,
        trainer_id: str,
        candidate: DraftCandidate,
        content: str,
        now: datetime,
        confidence: Optional[float] = None,
        auto_approval_at: Optional[datetime] = None,
    ) -> Message:
        message = Message(
            trainer_id=trainer_id,
            contact_id=candidate.contact_id,
            content=content,
            channel=DEFAULT_CHANNEL,
            status=MessageStatus.DRAFT.value,
            confidence=self.draw_confidence() if confidence is None else confidence,
            why_reasons=json.dumps(candidate.reasons),
            generated_by=GENERATOR_TAG,
            expires_at=now + timedelta(days=settings.draft_expiry_days),
            auto_approval_at=auto_approval_at,
            created_at=now,
        )
        self.db.add(message)
        await self.db.commit()
        return message

    # ── Run ─────────────────────────────────────────────
    async def run(self, trainer_id: str, now: Optional[datetime] = None) -> RunSummary:
        now = now or datetime.now(timezone.utc)
        logger.info(f"Starting draft generation for trainer {trainer_id}")
        run_id = await self.acquire_run_lock(trainer_id, now)
        try:
            summary = await self._run_locked(trainer_id, now)
        except Exception:
            await self.db.rollback()
            await self.release_run_lock(trainer_id, run_id)
            raise
        await self.release_run_lock(trainer_id, run_id)
        logger.info(f"Trainer {trainer_id}: {summary.message}")
        return summary

    async def _run_locked(self, trainer_id: str, now: datetime) -> RunSummary:
        summary = RunSummary(trainer_id=trainer_id)
        summary.cleaned += await self.sweep_expired_drafts(trainer_id, now)
        summary.cleaned += await self.sweep_orphaned_queued(trainer_id, now)

        existing = await self.open_message_contact_ids(trainer_id)
        logger.info(f"Found {len(existing)} contacts with open messages for trainer {trainer_id}")

        snapshot: SignalSnapshot = await load_signals(self.db, trainer_id, now)
        candidates = score_snapshot(snapshot, now)
        summary.candidates = len(candidates)
        selected = select_top_candidates(candidates)
        logger.info(f"Selected {len(selected)} candidates from {len(candidates)} total")

        # read before any rollback expires the loaded rows
        sessions_by_contact = {
            contact_id: insight.total_sessions or 0
            for contact_id, insight in snapshot.insights.items()
        }

        slots = await self.auto_approval_slots(trainer_id, now)
        preview = timedelta(minutes=settings.auto_approval_preview_minutes)

        for candidate in selected:
            if candidate.contact_id in existing:
                logger.info(f"Skipped {candidate.contact_name} - already has an open message")
                summary.skipped += 1
                continue

            sessions = sessions_by_contact.get(candidate.contact_id, 0)
            content = self.render_candidate(candidate, sessions)
            confidence = self.draw_confidence()
            auto_approval_at = None
            if slots > 0 and confidence >= settings.auto_approval_min_confidence:
                auto_approval_at = now + preview
            try:
                message = await self.create_draft(
                    trainer_id,
                    candidate,
                    content,
                    now,
                    confidence=confidence,
                    auto_approval_at=auto_approval_at,
                )
            except SQLAlchemyError as exc:
                await self.db.rollback()
                logger.error(f"Error creating draft for contact {candidate.contact_id}: {exc}")
                summary.failed += 1
                continue
            existing.add(candidate.contact_id)
            summary.generated += 1
            if auto_approval_at is not None:
                slots -= 1
                summary.auto_approval_scheduled += 1
            logger.info(f"Created draft {message.id} for {candidate.contact_name}")

        return summary


async def generate_drafts_for_all_trainers(
    session_factory=async_session,
    now: Optional[datetime] = None,
    rng: Optional[random.Random] = None,
) -> dict[str, dict]:
    """Run generation for every active trainer; one trainer's failure does not stop the rest."""
    async with session_factory() as db:
        trainer_ids = (
            await db.execute(select(Trainer.id).where(Trainer.is_active.is_(True)))
        ).scalars().all()

    results: dict[str, dict] = {}
    for trainer_id in trainer_ids:
        async with session_factory() as db:
            try:
                summary = await DraftLifecycleManager(db, rng=rng).run(trainer_id, now)
                results[trainer_id] = summary.to_dict()
            except (OutreachError, SQLAlchemyError) as exc:
                logger.error(f"Draft generation failed for trainer {trainer_id}: {exc}")
                results[trainer_id] = {"trainer_id": trainer_id, "error": str(exc)}
    return results
