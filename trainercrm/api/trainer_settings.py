"""Trainer outreach settings — quiet hours, frequency caps, timezone and auto-approval."""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from trainercrm.api.auth import get_current_trainer
from trainercrm.database import get_db
from trainercrm.models import Trainer
from trainercrm.schemas import TrainerSettingsOut, TrainerSettingsUpdate

router = APIRouter(prefix="/trainer", tags=["trainer"])


@router.get("/settings", response_model=TrainerSettingsOut)
async def get_trainer_settings(trainer: Trainer = Depends(get_current_trainer)):
    return trainer


@router.patch("/settings", response_model=TrainerSettingsOut)
async def update_trainer_settings(
    data: TrainerSettingsUpdate,
    trainer: Trainer = Depends(get_current_trainer),
    db: AsyncSession = Depends(get_db),
):
    for key, val in data.model_dump(exclude_unset=True).items():
        if key in ("timezone_name", "auto_approval_enabled") and val is None:
            continue
        setattr(trainer, key, val)
    await db.commit()
    await db.refresh(trainer)
    return trainer
