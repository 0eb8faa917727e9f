"""FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from trainercrm.api import auth, drafts, messages, trainer_settings
from trainercrm.config import get_settings

settings = get_settings()

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup: create the bootstrap trainer if configured and missing
    if settings.bootstrap_trainer_email and settings.bootstrap_trainer_password:
        from sqlalchemy import select

        from trainercrm.database import async_session
        from trainercrm.models import Trainer
        from trainercrm.services.auth import hash_password

        async with async_session() as db:
            result = await db.execute(
                select(Trainer).where(Trainer.email == settings.bootstrap_trainer_email)
            )
            if not result.scalar_one_or_none():
                db.add(Trainer(
                    email=settings.bootstrap_trainer_email,
                    hashed_password=hash_password(settings.bootstrap_trainer_password),
                ))
                await db.commit()
                logger.info(f"Created bootstrap trainer {settings.bootstrap_trainer_email}")

    yield


app = FastAPI(
    title=settings.app_name,
    version="0.1.0",
    description="Client retention outreach: daily draft generation and approval",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Register routers
app.include_router(auth.router, prefix="/api/v1")
app.include_router(drafts.router, prefix="/api/v1")
app.include_router(messages.router, prefix="/api/v1")
app.include_router(trainer_settings.router, prefix="/api/v1")


@app.get("/health")
async def health():
    return {"status": "ok", "app": settings.app_name}
