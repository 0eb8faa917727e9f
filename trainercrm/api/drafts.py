"""Draft generation API — on-demand runs and a scoring preview."""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from trainercrm.api.auth import get_current_trainer
from trainercrm.api.errors import to_http
from trainercrm.database import get_db
from trainercrm.models import Trainer
from trainercrm.schemas import DraftCandidateOut, RunSummaryOut
from trainercrm.services.candidate_scorer import load_signals, rank_candidates, score_snapshot
from trainercrm.services.draft_lifecycle import DraftLifecycleManager
from trainercrm.services.errors import OutreachError

router = APIRouter(prefix="/drafts", tags=["drafts"])


@router.post("/generate", response_model=RunSummaryOut)
async def generate_drafts(
    trainer: Trainer = Depends(get_current_trainer),
    db: AsyncSession = Depends(get_db),
):
    """Run the daily draft generation for the current trainer now."""
    trainer_id = trainer.id
    try:
        summary = await DraftLifecycleManager(db).run(trainer_id)
    except OutreachError as exc:
        raise to_http(exc) from exc
    return RunSummaryOut(**summary.to_dict())


@router.get("/candidates", response_model=list[DraftCandidateOut])
async def preview_candidates(
    trainer: Trainer = Depends(get_current_trainer),
    db: AsyncSession = Depends(get_db),
):
    """Every contact that would be considered, ranked. Creates nothing."""
    try:
        snapshot = await load_signals(db, trainer.id)
    except OutreachError as exc:
        raise to_http(exc) from exc
    return [DraftCandidateOut(**c.to_dict()) for c in rank_candidates(score_snapshot(snapshot))]
