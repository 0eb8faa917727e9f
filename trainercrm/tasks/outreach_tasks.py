"""Scheduled outreach tasks."""

import asyncio
import logging

from trainercrm.tasks.celery_app import celery_app

logger = logging.getLogger(__name__)


@celery_app.task
def generate_daily_drafts_task(trainer_id: str | None = None):
    """Generate drafts for one trainer, or for every active trainer."""
    return asyncio.run(_generate(trainer_id))


@celery_app.task
def dispatch_due_messages_task():
    """Send queued messages whose quiet-hours window has closed."""
    return asyncio.run(_dispatch())


async def _generate(trainer_id: str | None):
    from trainercrm.database import async_session
    from trainercrm.services.draft_lifecycle import (
        DraftLifecycleManager,
        generate_drafts_for_all_trainers,
    )

    if trainer_id is None:
        results = await generate_drafts_for_all_trainers()
        logger.info(f"Daily draft generation finished for {len(results)} trainers")
        return results

    async with async_session() as db:
        summary = await DraftLifecycleManager(db).run(trainer_id)
    return summary.to_dict()


async def _dispatch():
    from trainercrm.services.approval import dispatch_due_for_all_trainers

    results = await dispatch_due_for_all_trainers()
    sent = sum(r["sent"] for r in results.values())
    logger.info(f"Dispatched {sent} due messages across {len(results)} trainers")
    return results


@celery_app.task
def auto_approve_drafts_task():
    """Approve drafts whose auto-approval preview window has passed."""
    return asyncio.run(_auto_approve())


async def _auto_approve():
    from trainercrm.services.approval import auto_approve_for_all_trainers

    results = await auto_approve_for_all_trainers()
    approved = sum(r["approved"] for r in results.values())
    skipped = sum(r["skipped"] for r in results.values())
    logger.info(f"Auto-approved {approved} drafts, returned {skipped} to review, across {len(results)} trainers")
    return results
