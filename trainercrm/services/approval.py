"""Approval & send orchestrator — the human gate between a draft and the send channel.

Quiet hours defer a send (a successful outcome), frequency caps reject it
(terminal for that item, checked before any deferral), and a transport
failure leaves the message in its pre-send status so it can be retried by hand.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from trainercrm.config import get_settings
from trainercrm.database import async_session
from trainercrm.models import Contact, Trainer
from trainercrm.models.message import OPEN_STATUSES, Message, MessageStatus
from trainercrm.services.errors import (
    ContactOptedOutError,
    FrequencyCapExceededError,
    InvalidMessageStateError,
    MessageNotFoundError,
    MessageValidationError,
    OutreachError,
    SendChannelError,
)
from trainercrm.services.send_channel import SendChannel, get_send_channel
from trainercrm.services.send_guards import (
    check_frequency_cap,
    check_quiet_hours,
    count_recent_sends,
    daily_auto_approval_limit,
    effective_caps,
    local_day_start,
)

logger = logging.getLogger(__name__)
settings = get_settings()

AUTO_APPROVAL_BATCH_LIMIT = 100


@dataclass
class ApprovalResult:
    message_id: str
    sent: bool = False
    deferred: bool = False
    scheduled_for: Optional[datetime] = None

    def to_dict(self) -> dict:
        if self.deferred:
            return {
                "message_id": self.message_id,
                "deferred": True,
                "scheduled_for": self.scheduled_for.isoformat() if self.scheduled_for else None,
            }
        return {"message_id": self.message_id, "sent": self.sent}


@dataclass
class BatchApprovalResult:
    """Per-item outcomes of a batch; one failure never fails the batch."""

    results: list[ApprovalResult] = field(default_factory=list)
    errors: list[dict] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)  # handed back to manual review

    @property
    def sent(self) -> int:
        return sum(1 for r in self.results if r.sent)

    @property
    def deferred(self) -> int:
        return sum(1 for r in self.results if r.deferred)

    @property
    def approved(self) -> int:
        return len(self.results)

    def add_error(self, message_id: str, exc: Exception):
        if isinstance(exc, OutreachError):
            entry = exc.to_dict()
        else:
            entry = {"error": "unexpected_error", "message": str(exc), "retry": "now"}
        entry["message_id"] = message_id
        self.errors.append(entry)

    def to_dict(self) -> dict:
        return {
            "approved": self.approved,
            "sent": self.sent,
            "deferred": self.deferred,
            "failed": len(self.errors),
            "skipped": len(self.skipped),
            "results": [r.to_dict() for r in self.results],
            "errors": list(self.errors),
        }


class ApprovalOrchestrator:
    """Approve, edit and send messages for one trainer.

    ``session_factory`` opens the independent sessions used when a batch
    approves several messages at once.
    """

    def __init__(
        self,
        db: AsyncSession,
        channel: Optional[SendChannel] = None,
        session_factory=async_session,
    ):
        self.db = db
        self.channel = channel
        self.session_factory = session_factory

    # ── Lookups ─────────────────────────────────────────
    async def get_message(self, trainer_id: str, message_id: str) -> Message:
        result = await self.db.execute(
            select(Message).where(Message.id == message_id, Message.trainer_id == trainer_id)
        )
        message = result.scalar_one_or_none()
        if message is None:
            raise MessageNotFoundError(f"Message {message_id} not found")
        return message

    async def _get_open_message(self, trainer_id: str, message_id: str) -> Message:
        message = await self.get_message(trainer_id, message_id)
        if message.status not in OPEN_STATUSES:
            raise InvalidMessageStateError(
                f"Message {message_id} is '{message.status}', expected draft or queued"
            )
        return message

    async def list_review_queue(self, trainer_id: str, limit: int = 20) -> list[Message]:
        """Open messages, most confident first, then oldest first."""
        result = await self.db.execute(
            select(Message)
            .where(Message.trainer_id == trainer_id, Message.status.in_(OPEN_STATUSES))
            .order_by(Message.confidence.desc(), Message.created_at.asc())
            .limit(limit)
        )
        return list(result.scalars().all())

    # ── Operations ──────────────────────────────────────
    async def approve(
        self,
        trainer: Trainer,
        message_id: str,
        now: Optional[datetime] = None,
    ) -> ApprovalResult:
        """Send now, or queue until the end of the trainer's quiet hours.

        Consent and the frequency cap are checked first, so a capped
        recipient is rejected rather than deferred.
        """
        now = now or datetime.now(timezone.utc)
        message = await self._get_open_message(trainer.id, message_id)
        message.auto_approval_at = None
        return await self._approve_message(trainer, message, now)

    async def send_now(
        self,
        trainer: Trainer,
        message_id: str,
        now: Optional[datetime] = None,
    ) -> ApprovalResult:
        """Explicit override: ignore quiet hours, keep the frequency cap."""
        now = now or datetime.now(timezone.utc)
        message = await self._get_open_message(trainer.id, message_id)
        message.auto_approval_at = None
        contact = await self._check_recipient(trainer, message, now)
        return await self._deliver(trainer, message, contact, now)

    async def edit(self, trainer: Trainer, message_id: str, content: str) -> Message:
        """Overwrite a draft's text. Editing cancels any pending auto-approval."""
        message = await self.get_message(trainer.id, message_id)
        if message.status != MessageStatus.DRAFT.value:
            raise InvalidMessageStateError(
                f"Only drafts can be edited; message {message_id} is '{message.status}'"
            )
        if not content or not content.strip():
            raise MessageValidationError("Message content cannot be empty")
        message.content = content
        message.auto_approval_at = None
        await self.db.commit()
        logger.info(f"Message {message.id} edited by trainer {trainer.id}")
        return message

    async def approve_all_safe(
        self,
        trainer: Trainer,
        now: Optional[datetime] = None,
        min_confidence: Optional[float] = None,
    ) -> BatchApprovalResult:
        """Approve every open message at or above the confidence threshold.

        Items are approved concurrently, each in its own session.
        """
        now = now or datetime.now(timezone.utc)
        threshold = settings.auto_approve_min_confidence if min_confidence is None else min_confidence
        message_ids = (
            await self.db.execute(
                select(Message.id)
                .where(
                    Message.trainer_id == trainer.id,
                    Message.status.in_(OPEN_STATUSES),
                    Message.confidence >= threshold,
                )
                .order_by(Message.confidence.desc(), Message.created_at.asc())
            )
        ).scalars().all()
        # release the connection before the per-item sessions start writing
        await self.db.commit()

        outcomes = await asyncio.gather(
            *(self._approve_isolated(trainer, mid, now) for mid in message_ids),
            return_exceptions=True,
        )

        batch = BatchApprovalResult()
        for message_id, outcome in zip(message_ids, outcomes):
            if isinstance(outcome, ApprovalResult):
                batch.results.append(outcome)
            elif isinstance(outcome, Exception):
                logger.warning(f"Batch approval failed for message {message_id}: {outcome}")
                batch.add_error(message_id, outcome)
            else:
                raise outcome
        logger.info(
            f"Approve-all-safe for trainer {trainer.id}: {batch.approved} approved, "
            f"{len(batch.errors)} failed"
        )
        return batch

    async def dispatch_due(self, trainer: Trainer, now: Optional[datetime] = None) -> BatchApprovalResult:
        """Deliver queued messages whose quiet-hours deferral has ended.

        A message whose recipient hit the frequency cap meanwhile goes back to
        ``draft``; only the trainer can approve it again.
        """
        now = now or datetime.now(timezone.utc)
        message_ids = (
            await self.db.execute(
                select(Message.id)
                .where(
                    Message.trainer_id == trainer.id,
                    Message.status == MessageStatus.QUEUED.value,
                    Message.scheduled_for <= now,
                )
                .order_by(Message.scheduled_for.asc())
            )
        ).scalars().all()

        batch = BatchApprovalResult()
        for message_id in message_ids:
            try:
                message = await self._get_open_message(trainer.id, message_id)
                batch.results.append(await self._approve_message(trainer, message, now))
            except FrequencyCapExceededError as exc:
                await self._return_to_review(message_id)
                logger.warning(f"Dispatch of message {message_id} stopped by frequency cap: {exc}")
                batch.add_error(message_id, exc)
            except OutreachError as exc:
                logger.warning(f"Dispatch failed for message {message_id}: {exc}")
                batch.add_error(message_id, exc)
            except SQLAlchemyError as exc:
                await self.db.rollback()
                logger.error(f"Database error dispatching message {message_id}: {exc}")
                batch.add_error(message_id, exc)
        return batch

    async def run_auto_approvals(
        self, trainer: Trainer, now: Optional[datetime] = None
    ) -> BatchApprovalResult:
        """Approve drafts whose auto-approval time has passed.

        Drafts over the trainer's daily auto-approval limit, drafts of a
        trainer with auto-approval switched off, and drafts whose approval
        fails are handed back to manual review.
        """
        now = now or datetime.now(timezone.utc)
        message_ids = (
            await self.db.execute(
                select(Message.id)
                .where(
                    Message.trainer_id == trainer.id,
                    Message.status == MessageStatus.DRAFT.value,
                    Message.auto_approval_at.is_not(None),
                    Message.auto_approval_at <= now,
                )
                .order_by(Message.auto_approval_at.asc())
                .limit(AUTO_APPROVAL_BATCH_LIMIT)
            )
        ).scalars().all()

        batch = BatchApprovalResult()
        if not message_ids:
            return batch

        if not trainer.auto_approval_enabled:
            for message_id in message_ids:
                await self._return_to_review(message_id)
            batch.skipped.extend(message_ids)
            logger.info(f"Auto-approval disabled for trainer {trainer.id}; {len(message_ids)} drafts left for review")
            return batch

        limit = daily_auto_approval_limit(trainer)
        used = await self.count_auto_approvals_today(trainer, now)
        for message_id in message_ids:
            if used >= limit:
                await self._return_to_review(message_id)
                batch.skipped.append(message_id)
                continue
            try:
                message = await self._get_open_message(trainer.id, message_id)
                batch.results.append(await self._approve_message(trainer, message, now))
                used += 1
            except OutreachError as exc:
                await self._return_to_review(message_id)
                logger.warning(f"Auto-approval failed for message {message_id}: {exc}")
                batch.add_error(message_id, exc)
            except SQLAlchemyError as exc:
                await self.db.rollback()
                logger.error(f"Database error auto-approving message {message_id}: {exc}")
                batch.add_error(message_id, exc)

        if batch.skipped:
            logger.info(
                f"Daily auto-approval limit ({limit}) reached for trainer {trainer.id}; "
                f"{len(batch.skipped)} drafts left for review"
            )
        return batch

    async def count_auto_approvals_today(self, trainer: Trainer, now: datetime) -> int:
        """Auto-approved messages since the start of the trainer's local day."""
        day_start = local_day_start(now, trainer.timezone_name)
        return (
            await self.db.execute(
                select(func.count(Message.id)).where(
                    Message.trainer_id == trainer.id,
                    Message.status.in_((MessageStatus.QUEUED.value, MessageStatus.SENT.value)),
                    Message.auto_approval_at.is_not(None),
                    Message.auto_approval_at >= day_start,
                )
            )
        ).scalar() or 0

    # ── Internals ───────────────────────────────────────
    async def _approve_isolated(self, trainer: Trainer, message_id: str, now: datetime) -> ApprovalResult:
        async with self.session_factory() as session:
            orchestrator = ApprovalOrchestrator(
                session, channel=self.channel, session_factory=self.session_factory
            )
            return await orchestrator.approve(trainer, message_id, now)

    async def _approve_message(self, trainer: Trainer, message: Message, now: datetime) -> ApprovalResult:
        contact = await self._check_recipient(trainer, message, now)

        quiet = check_quiet_hours(
            now, trainer.quiet_hours_start, trainer.quiet_hours_end, trainer.timezone_name
        )
        if not quiet.allowed:
            message.status = MessageStatus.QUEUED.value
            message.scheduled_for = quiet.next_available
            await self.db.commit()
            logger.info(
                f"Message {message.id} deferred by quiet hours until "
                f"{quiet.next_available.isoformat()} (trainer {trainer.id})"
            )
            return ApprovalResult(
                message_id=message.id, deferred=True, scheduled_for=quiet.next_available
            )

        return await self._deliver(trainer, message, contact, now)

    async def _return_to_review(self, message_id: str):
        """Back to a plain draft with no schedule; a human decides what happens next."""
        message = await self.db.get(Message, message_id)
        if message is None or message.status == MessageStatus.SENT.value:
            return
        message.status = MessageStatus.DRAFT.value
        message.scheduled_for = None
        message.auto_approval_at = None
        await self.db.commit()

    def _channel_for(self, message: Message) -> SendChannel:
        return self.channel or get_send_channel(message.channel)

    async def _check_recipient(self, trainer: Trainer, message: Message, now: datetime) -> Contact:
        """Consent and frequency-cap guards; raises when the message may not go out."""
        contact = (
            await self.db.execute(
                select(Contact).where(
                    Contact.id == message.contact_id, Contact.trainer_id == trainer.id
                )
            )
        ).scalar_one_or_none()
        if contact is None:
            raise MessageValidationError(f"Contact {message.contact_id} not found")
        if contact.consent_status == "opted_out":
            raise ContactOptedOutError(f"Contact {contact.id} has opted out of messages")

        counts = await count_recent_sends(self.db, trainer.id, contact.id, now)
        daily_cap, weekly_cap = effective_caps(trainer)
        cap = check_frequency_cap(counts, daily_cap, weekly_cap)
        if not cap.allowed:
            logger.warning(
                f"Frequency cap ({cap.limit}) reached for contact {contact.id}, "
                f"message {message.id} not sent"
            )
            raise FrequencyCapExceededError(
                f"{cap.limit.capitalize()} message limit reached for this client.",
                limit=cap.limit,
            )
        return contact

    async def _deliver(
        self, trainer: Trainer, message: Message, contact: Contact, now: datetime
    ) -> ApprovalResult:
        channel = self._channel_for(message)
        try:
            receipt = await channel.send(message, contact)
        except SendChannelError:
            raise
        except Exception as exc:
            logger.error(f"Send channel error for message {message.id}: {exc}")
            raise SendChannelError(f"Send channel failed: {exc}") from exc

        message.status = MessageStatus.SENT.value
        message.sent_at = now
        message.provider_message_id = receipt.provider_message_id
        message.delivery_status = receipt.status
        await self.db.commit()
        logger.info(f"Message {message.id} sent via {channel.name} (trainer {trainer.id})")
        return ApprovalResult(message_id=message.id, sent=True)


async def record_delivery_status(
    db: AsyncSession, provider_message_id: str, status: str
) -> Optional[Message]:
    """Store a delivery report from the provider. Never changes the message status."""
    result = await db.execute(
        select(Message).where(Message.provider_message_id == provider_message_id)
    )
    message = result.scalar_one_or_none()
    if message is None:
        logger.warning(f"Delivery report for unknown provider message {provider_message_id}")
        return None
    message.delivery_status = status
    await db.commit()
    return message


async def _for_all_trainers(session_factory, operation, channel, now) -> dict[str, dict]:
    async with session_factory() as db:
        trainers = (
            await db.execute(select(Trainer).where(Trainer.is_active.is_(True)))
        ).scalars().all()

    results: dict[str, dict] = {}
    for trainer in trainers:
        async with session_factory() as db:
            orchestrator = ApprovalOrchestrator(db, channel=channel, session_factory=session_factory)
            batch = await getattr(orchestrator, operation)(trainer, now)
            results[trainer.id] = batch.to_dict()
    return results


async def dispatch_due_for_all_trainers(
    session_factory=async_session,
    channel: Optional[SendChannel] = None,
    now: Optional[datetime] = None,
) -> dict[str, dict]:
    return await _for_all_trainers(session_factory, "dispatch_due", channel, now)


async def auto_approve_for_all_trainers(
    session_factory=async_session,
    channel: Optional[SendChannel] = None,
    now: Optional[datetime] = None,
) -> dict[str, dict]:
    return await _for_all_trainers(session_factory, "run_auto_approvals", channel, now)
