"""Pytest bootstrap configuration.

Ensure environment variables are set before test collection and module
imports that depend on application settings.
"""
import os

# Module-level engine in infrastructure.database is built from this URL
os.environ.setdefault("DATABASE__URL", "sqlite+aiosqlite:///:memory:")

import pytest
import pytest_asyncio
from sqlalchemy import event
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from core.settings import PaymentSettings, ProcessorSettings
from domain.payment.entity import GatewayAccountContext, GatewayMode
from infrastructure.models import Base
from infrastructure.unit_of_work import SQLAlchemyUnitOfWork

from tests.fakes import LIVE_PROCESSOR_ID, TEST_PROCESSOR_ID, FakeCRM, FakeGateway


@pytest.fixture
def test_context() -> GatewayAccountContext:
    return GatewayAccountContext(
        processor_id=TEST_PROCESSOR_ID,
        mode=GatewayMode.TEST,
        secret_key="sk_test_123",
        publishable_key="pk_test_123",
        webhook_secret="whsec_test",
    )


@pytest.fixture
def live_context() -> GatewayAccountContext:
    return GatewayAccountContext(
        processor_id=LIVE_PROCESSOR_ID,
        mode=GatewayMode.LIVE,
        secret_key="sk_live_123",
        publishable_key="pk_live_123",
    )


@pytest.fixture
def gateway(test_context) -> FakeGateway:
    return FakeGateway(test_context)


@pytest.fixture
def crm() -> FakeCRM:
    return FakeCRM()


@pytest.fixture
def payment_settings() -> PaymentSettings:
    return PaymentSettings(
        processors={
            TEST_PROCESSOR_ID: ProcessorSettings(
                mode=GatewayMode.TEST,
                secret_key="sk_test_123",
                publishable_key="pk_test_123",
                webhook_secret="whsec_test",
            ),
            LIVE_PROCESSOR_ID: ProcessorSettings(
                mode=GatewayMode.LIVE,
                secret_key="sk_live_123",
                publishable_key="pk_live_123",
            ),
        }
    )


@pytest_asyncio.fixture
async def session_factory(tmp_path):
    """File-backed sqlite so separate sessions see each other's commits."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'mirror.db'}")

    # pysqlite defers BEGIN; emit it ourselves so SAVEPOINT nests correctly
    @event.listens_for(engine.sync_engine, "connect")
    def _disable_pysqlite_begin(dbapi_connection, _record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql("BEGIN")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    factory = async_sessionmaker(bind=engine, expire_on_commit=False)
    yield factory
    await engine.dispose()


@pytest.fixture
def uow_factory(session_factory):
    return lambda: SQLAlchemyUnitOfWork(session_factory=session_factory)
