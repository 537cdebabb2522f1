"""Shared test fixtures for the risk gate tests."""
import os

import pytest
import pytest_asyncio
from sqlalchemy import event
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

os.environ.setdefault("AUTH_ENABLED", "false")
os.environ.setdefault("LEDGER_BACKEND", "memory")
os.environ.setdefault("JUDGMENT_ENABLED", "false")
os.environ.setdefault("KAFKA_ENABLED", "false")
os.environ.setdefault("APP_ENV", "test")

from app.models.risk_assessment import Base  # noqa: E402
from app.scoring.config import ReferenceData, RiskPolicyConfig  # noqa: E402
from app.scoring.engine import RiskScorer  # noqa: E402
from app.services.ledger import InMemoryAssessmentLedger, SqlAssessmentLedger  # noqa: E402


@pytest.fixture
def policy() -> RiskPolicyConfig:
    return RiskPolicyConfig()


@pytest.fixture
def reference() -> ReferenceData:
    return ReferenceData(
        bad_actor_emails=frozenset({"fraudster@example.com"}),
        bad_actor_fingerprints=frozenset({"fp-stolen-42"}),
        bad_actor_ips=frozenset({"203.0.113.66"}),
    )


@pytest.fixture
def scorer(policy, reference) -> RiskScorer:
    return RiskScorer(policy, reference)


@pytest.fixture
def ledger() -> InMemoryAssessmentLedger:
    return InMemoryAssessmentLedger()


async def _sqlite_ledger():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    return engine, SqlAssessmentLedger(async_sessionmaker(engine, expire_on_commit=False))


@pytest_asyncio.fixture
async def sql_ledger():
    """SqlAssessmentLedger on a private in-memory SQLite database."""
    engine, ledger = await _sqlite_ledger()
    yield ledger
    await engine.dispose()


@pytest_asyncio.fixture(params=["memory", "sql"])
async def any_ledger(request):
    """Runs a test once per ledger backend."""
    if request.param == "memory":
        yield InMemoryAssessmentLedger()
        return
    engine, ledger = await _sqlite_ledger()
    yield ledger
    await engine.dispose()


@pytest_asyncio.fixture
async def file_sql_ledger(tmp_path):
    """
    SqlAssessmentLedger on a file-backed SQLite database, one connection per
    session. Transactions open with BEGIN IMMEDIATE so concurrent writers
    queue on the database lock instead of failing on lock upgrade.
    """
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'ledger.db'}", connect_args={"timeout": 30})

    @event.listens_for(engine.sync_engine, "connect")
    def _disable_pysqlite_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield SqlAssessmentLedger(async_sessionmaker(engine, expire_on_commit=False))
    await engine.dispose()
