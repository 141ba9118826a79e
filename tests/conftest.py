"""Shared test fixtures.

Every test gets a fresh file-backed SQLite database (aiosqlite) with the
schema created from the ORM metadata. Events are captured in memory instead
of going to Redis.
"""

from __future__ import annotations

import uuid
from collections.abc import AsyncGenerator, Awaitable, Callable
from datetime import datetime

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from taskbuddy.database import close_db, get_engine, get_session_factory, init_db
from taskbuddy.db import models  # noqa: F401
from taskbuddy.db.base import Base
from taskbuddy.dependencies import get_event_emitter
from taskbuddy.events.emitter import DomainEvent, EventName
from taskbuddy.gamification.seed import seed_achievements
from taskbuddy.ledger.locks import KeyedLocks
from taskbuddy.ledger.store import LedgerStore
from taskbuddy.ledger.transactions import BonusDetail, TransactionType
from taskbuddy.rewards.service import RedemptionEngine, create_reward


class RecordingEmitter:
    """In-memory event sink."""

    def __init__(self) -> None:
        self.events: list[DomainEvent] = []

    async def emit(self, *events: DomainEvent) -> None:
        self.events.extend(events)

    def named(self, name: EventName) -> list[DomainEvent]:
        return [e for e in self.events if e.name is name]


@pytest_asyncio.fixture
async def session_factory(tmp_path) -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    """Initialize the global engine on a throwaway SQLite file."""
    await init_db(f"sqlite+aiosqlite:///{tmp_path / 'ledger.db'}")
    async with get_engine().begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield get_session_factory()
    await close_db()


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Direct database session for setup and assertions."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def emitter() -> RecordingEmitter:
    return RecordingEmitter()


@pytest.fixture
def locks() -> KeyedLocks:
    return KeyedLocks()


@pytest.fixture
def store(session_factory, emitter, locks) -> LedgerStore:
    return LedgerStore(session_factory, emitter=emitter, locks=locks)


@pytest.fixture
def engine(store) -> RedemptionEngine:
    return RedemptionEngine(store)


@pytest_asyncio.fixture
async def catalog(db_session) -> int:
    """Seed the achievement catalog; without it no achievement ever unlocks."""
    return await seed_achievements(db_session)


@pytest.fixture
def family_id() -> uuid.UUID:
    return uuid.uuid4()


@pytest.fixture
def make_child(store, family_id) -> Callable[..., Awaitable[uuid.UUID]]:
    """Open a ledger account, optionally seeded with a starting bonus."""

    async def _make(first_name: str = "Ava", balance: int = 0, family: uuid.UUID | None = None) -> uuid.UUID:
        child_id = uuid.uuid4()
        await store.open_account(child_id, family or family_id, first_name)
        if balance:
            await store.apply_transaction(
                child_id,
                TransactionType.BONUS,
                balance,
                details=BonusDetail(reason="Starting balance"),
            )
        return child_id

    return _make


@pytest.fixture
def make_reward(session_factory, family_id) -> Callable[..., Awaitable[models.Reward]]:
    async def _make(
        points_cost: int = 50,
        name: str = "Movie night",
        max_redemptions_per_child: int | None = None,
        max_redemptions_total: int | None = None,
        expires_at: datetime | None = None,
        family: uuid.UUID | None = None,
    ) -> models.Reward:
        async with session_factory() as db:
            return await create_reward(
                db,
                family_id=family or family_id,
                name=name,
                points_cost=points_cost,
                max_redemptions_per_child=max_redemptions_per_child,
                max_redemptions_total=max_redemptions_total,
                expires_at=expires_at,
            )

    return _make


@pytest_asyncio.fixture
async def client(session_factory, emitter) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client against the app; Redis is left uninitialized."""
    from taskbuddy.main import create_app

    app = create_app()
    app.dependency_overrides[get_event_emitter] = lambda: emitter

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
