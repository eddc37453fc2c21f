"""Shared test fixtures and configuration."""

import os
import pytest
from datetime import datetime
from typing import Optional

# Set up test environment variables before importing modules
os.environ.setdefault("STRIPE_API_KEY", "sk_test_dummy_key_for_testing")
os.environ.setdefault("API_KEY", "test_api_key_12345")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")


@pytest.fixture
def auth_headers():
    """Return headers with authentication."""
    return {"Authorization": "Bearer test_api_key_12345"}


@pytest.fixture
async def db_engine():
    """Create an in-memory SQLite database for testing."""
    from donation_ledger.database import Base, create_async_engine

    engine = create_async_engine(
        database_url="sqlite+aiosqlite:///:memory:",
        echo=False
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    """Session factory bound to the test engine."""
    from donation_ledger.database import get_async_session_factory

    return get_async_session_factory(db_engine)


@pytest.fixture
async def db_session(session_factory):
    """Create a database session for testing."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def simulator():
    """In-memory processor with no configured failures."""
    from donation_ledger.processors import SimulatorProcessorClient

    return SimulatorProcessorClient()


@pytest.fixture
def seed_donation(session_factory):
    """Insert and commit one donation; returns its id."""
    from donation_ledger.database import DonationRepository

    async def _seed(
        payment_intent_id: Optional[str],
        account_id: Optional[str] = "acct_1",
        campaign_id: str = "c1",
        amount_cents: int = 5000,
        created_at: Optional[datetime] = None,
    ) -> str:
        async with session_factory() as session:
            donation = await DonationRepository(session).create(
                campaign_id=campaign_id,
                amount_cents=amount_cents,
                payment_intent_id=payment_intent_id,
                organizer_account_id=account_id,
                created_at=created_at,
            )
            await session.commit()
            return donation.id

    return _seed


@pytest.fixture
def fetch_donation(session_factory):
    """Read a donation back in a fresh session."""
    from donation_ledger.database import DonationRepository

    async def _fetch(payment_intent_id: str):
        async with session_factory() as session:
            return await DonationRepository(session).get_by_payment_intent_id(payment_intent_id)

    return _fetch

