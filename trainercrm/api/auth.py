"""Authentication API — login + current-trainer dependency."""

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from trainercrm.database import get_db
from trainercrm.models import Trainer
from trainercrm.schemas import LoginRequest, TokenResponse
from trainercrm.services.auth import create_trainer_token, decode_trainer_id, verify_password

router = APIRouter(prefix="/auth", tags=["auth"])
security = HTTPBearer()


async def get_current_trainer(
    creds: HTTPAuthorizationCredentials = Depends(security),
    db: AsyncSession = Depends(get_db),
) -> Trainer:
    """Decode the bearer token and return the authenticated trainer."""
    trainer_id = decode_trainer_id(creds.credentials)
    if trainer_id is None:
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Invalid or expired token")
    trainer = await db.get(Trainer, trainer_id)
    if not trainer or not trainer.is_active:
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Trainer not found or inactive")
    return trainer


@router.post("/login", response_model=TokenResponse)
async def login(data: LoginRequest, db: AsyncSession = Depends(get_db)):
    result = await db.execute(select(Trainer).where(Trainer.email == data.email))
    trainer = result.scalar_one_or_none()
    if not trainer or not verify_password(data.password, trainer.hashed_password):
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Invalid email or password")
    if not trainer.is_active:
        raise HTTPException(status.HTTP_403_FORBIDDEN, "Account is disabled")
    return TokenResponse(access_token=create_trainer_token(trainer.id))


@router.get("/me")
async def me(trainer: Trainer = Depends(get_current_trainer)):
    return {
        "id": trainer.id,
        "email": trainer.email,
        "name": trainer.name or "",
    }
