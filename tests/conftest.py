"""Test fixtures — create/drop tables for each test, seed trainers and contacts."""

import os
from collections.abc import AsyncGenerator
from datetime import datetime, timezone

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

# Force SQLite test database *before* any app import
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///./test_trainercrm.db"
os.environ["DATABASE_URL_SYNC"] = "sqlite:///./test_trainercrm.db"

from trainercrm.database import Base, async_session, engine  # noqa: E402
from trainercrm.main import app  # noqa: E402
from trainercrm.models import Booking, Contact, Insight, Trainer  # noqa: E402
from trainercrm.services.errors import SendChannelError  # noqa: E402
from trainercrm.services.send_channel import SendChannel, SendReceipt  # noqa: E402

# Monday 2026-03-02 15:00 UTC
NOW = datetime(2026, 3, 2, 15, 0, tzinfo=timezone.utc)


@pytest_asyncio.fixture(autouse=True)
async def _setup_db():
    """Create all tables before each test, drop after."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest_asyncio.fixture
async def client() -> AsyncGenerator[AsyncClient, None]:
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest_asyncio.fixture
async def db():
    async with async_session() as session:
        yield session


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest_asyncio.fixture
async def trainer(db) -> Trainer:
    from trainercrm.services.auth import hash_password

    t = Trainer(email="coach@example.com", hashed_password=hash_password("secret123"), name="Coach")
    db.add(t)
    await db.commit()
    return t


@pytest.fixture
def auth_headers(trainer) -> dict:
    from trainercrm.services.auth import create_trainer_token

    return {"Authorization": f"Bearer {create_trainer_token(trainer.id)}"}


@pytest.fixture
def make_contact(db, trainer):
    """Factory: contact plus optional insight and bookings."""

    async def _make(
        first_name="Alex",
        last_name="Smith",
        consent_status="active",
        last_message_sent_at=None,
        insight=None,
        bookings=(),
        phone="+15550001111",
        email="alex@example.com",
    ) -> Contact:
        contact = Contact(
            trainer_id=trainer.id,
            first_name=first_name,
            last_name=last_name,
            consent_status=consent_status,
            last_message_sent_at=last_message_sent_at,
            phone=phone,
            email=email,
        )
        db.add(contact)
        await db.flush()
        if insight is not None:
            db.add(Insight(trainer_id=trainer.id, contact_id=contact.id, **insight))
        for scheduled_at, status in bookings:
            db.add(Booking(
                trainer_id=trainer.id,
                contact_id=contact.id,
                scheduled_at=scheduled_at,
                status=status,
            ))
        await db.commit()
        return contact

    return _make


class FakeChannel(SendChannel):
    """Records sends; raises for contacts listed in ``fail_for``."""

    name = "fake"

    def __init__(self, fail_for=(), error=None):
        self.fail_for = set(fail_for)
        self.error = error
        self.sent: list[str] = []

    async def send(self, message, contact):
        if contact.id in self.fail_for:
            raise self.error or SendChannelError("provider timeout")
        self.sent.append(message.id)
        return SendReceipt(provider_message_id=f"prov-{message.id[:8]}", status="accepted")


@pytest.fixture
def fake_channel() -> FakeChannel:
    return FakeChannel()


@pytest.fixture
def failing_channel_factory():
    return FakeChannel
