"""Pytest configuration and fixtures."""

import os
from decimal import Decimal
from pathlib import Path
from typing import AsyncGenerator

# Settings are read once at import time
os.environ.setdefault("DB_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("OPERATOR_API_TOKENS", "test-operator,second-operator")
os.environ.setdefault("IMPORT_API_TOKEN", "test-import")
os.environ.setdefault("BANKING_ENCRYPTION_KEY", "MDEyMzQ1Njc4OWFiY2RlZjAxMjM0NTY3ODlhYmNkZWY=")
os.environ.setdefault("SYNC_INTERVAL_MINUTES", "0")

import httpx
import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

import app.models  # noqa: F401
from app.core.config import config
from app.core.db.base import Base
from app.core.db.engine import configure_sqlite
from app.core.dependencies import get_db, get_sync_orchestrator
from app.modules.banking.lock import SyncLease
from app.modules.banking.service import SyncOrchestrator
from app.modules.transactions.ingestion import TransactionIngestor
from tests.helpers import DirectoryFactory, FakeAcquisitionAdapter


@pytest.fixture(autouse=True)
def matching_settings(monkeypatch: pytest.MonkeyPatch) -> None:
    """Pin matching settings so tests do not depend on a local .env."""
    monkeypatch.setattr(config, "member_number_pattern", r"\b(\d{5})\b")
    monkeypatch.setattr(config, "name_similarity_threshold", 0.85)
    monkeypatch.setattr(config, "late_payment_day", 15)
    monkeypatch.setattr(config, "late_fee_amount", Decimal("10.00"))
    monkeypatch.setattr(config, "late_fee_due_days", 14)
    monkeypatch.setattr(config, "food_fee_amount", Decimal("45.40"))
    monkeypatch.setattr(config, "membership_fee_amount", Decimal("30.00"))


@pytest.fixture
async def engine(tmp_path: Path):
    """File-backed SQLite so background sessions see committed rows."""
    test_engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'fees.db'}", poolclass=NullPool
    )
    configure_sqlite(test_engine)
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield test_engine
    await test_engine.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


@pytest.fixture
async def db(session_factory: async_sessionmaker) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture
def factory(db: AsyncSession) -> DirectoryFactory:
    return DirectoryFactory(db)


@pytest.fixture
def ingestor() -> TransactionIngestor:
    return TransactionIngestor()


@pytest.fixture
def adapter() -> FakeAcquisitionAdapter:
    return FakeAcquisitionAdapter()


@pytest.fixture
def orchestrator(adapter: FakeAcquisitionAdapter, session_factory: async_sessionmaker) -> SyncOrchestrator:
    return SyncOrchestrator(
        ingestor=TransactionIngestor(),
        adapter=adapter,
        session_factory=session_factory,
        lease=SyncLease(ttl_minutes=30),
    )


@pytest.fixture
async def client(
    session_factory: async_sessionmaker, orchestrator: SyncOrchestrator
) -> AsyncGenerator[httpx.AsyncClient, None]:
    """API client over the ASGI app with the test database and fake bank."""
    from app.main import app

    async def _get_test_db() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = _get_test_db
    app.dependency_overrides[get_sync_orchestrator] = lambda: orchestrator
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as test_client:
        yield test_client
    app.dependency_overrides.clear()
