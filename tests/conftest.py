"""Shared test fixtures and configuration for Recoup backend tests."""
import pytest
from datetime import date, datetime
from typing import AsyncGenerator, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from recoup.database import Base
from recoup.engines.config import AREngineConfig
from recoup.models import Client, Invoice, InvoiceStatus, Organization
import recoup.models  # noqa: F401  (registers every table on the metadata)

# Configure pytest-asyncio
pytest_plugins = ('pytest_asyncio',)

NOW = datetime(2026, 3, 16, 10, 0, 0)  # a Monday
TODAY = NOW.date()


@pytest.fixture
async def engine():
    """In-memory SQLite engine with the full schema."""
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
async def file_engine(tmp_path):
    """
    SQLite file engine with a connection per session.

    For tests where two workers race; test classes opt in by overriding
    `engine` with this one.
    """
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'recoup.db'}",
        connect_args={"timeout": 30},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture
def config():
    """Engine defaults, independent of the environment."""
    return AREngineConfig()


@pytest.fixture
async def org(db):
    organization = Organization(name="Acme Studio", reply_to_email="billing@acme.test")
    db.add(organization)
    await db.commit()
    return organization


@pytest.fixture
def make_client(db, org):
    """Factory for clients of the test organization."""
    async def _make(
        name: str = "Globex",
        email: Optional[str] = "ap@globex.test",
        phone: Optional[str] = None,
        payment_score: int = 50,
        **kwargs,
    ) -> Client:
        client = Client(
            organization_id=org.id,
            name=name,
            email=email,
            phone=phone,
            payment_score=payment_score,
            **kwargs,
        )
        db.add(client)
        await db.commit()
        return client
    return _make


@pytest.fixture
def make_invoice(db, org):
    """Factory for invoices of the test organization."""
    counter = {"n": 0}

    async def _make(
        client: Optional[Client] = None,
        amount_cents: int = 100_000,
        due_date: date = TODAY,
        status: str = InvoiceStatus.SENT.value,
        amount_paid_cents: int = 0,
        **kwargs,
    ) -> Invoice:
        counter["n"] += 1
        invoice = Invoice(
            organization_id=org.id,
            client_id=client.id if client else None,
            invoice_number=f"INV-{1000 + counter['n']}",
            amount_cents=amount_cents,
            amount_paid_cents=amount_paid_cents,
            due_date=due_date,
            status=status,
            **kwargs,
        )
        db.add(invoice)
        await db.commit()
        return invoice
    return _make
