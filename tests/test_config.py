import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from credit_ledger.core.config import Settings
from credit_ledger.core.container import ApplicationContainer
from credit_ledger.domain.ledger import CreditLedgerService
from credit_ledger.infrastructure.database import session as session_module

from .conftest import FakeMeter


def test_nested_environment_overrides(monkeypatch):
    monkeypatch.setenv("METERING__FEATURE_ID", "analyses")
    monkeypatch.setenv("LEDGER__MAX_WRITE_ATTEMPTS", "7")
    monkeypatch.setenv("DATABASE__URL", "sqlite+aiosqlite:///./other.db")

    settings = Settings(_env_file=None)

    assert settings.feature_id == "analyses"
    assert settings.ledger.max_write_attempts == 7
    assert settings.database_url == "sqlite+aiosqlite:///./other.db"


@pytest.mark.asyncio
async def test_service_picks_up_ledger_settings(session, monkeypatch):
    monkeypatch.setenv("METERING__FEATURE_ID", "analyses")
    monkeypatch.setenv("LEDGER__HISTORY_MAX_LIMIT", "25")
    settings = Settings(_env_file=None)

    service = CreditLedgerService.with_session(session, FakeMeter(), settings)

    assert service.feature_id == "analyses"
    assert service.history_max_limit == 25
    assert service.max_write_attempts == 5


@pytest.mark.asyncio
async def test_container_shutdown_disposes_engine_and_sessions_rebuild_lazily():
    container = ApplicationContainer(settings=Settings(_env_file=None), subscription_meter=FakeMeter())
    container.init_infrastructure()
    assert session_module.AsyncSessionFactory is not None

    await container.shutdown()
    assert session_module._engine is None
    assert session_module.AsyncSessionFactory is None

    sessions = session_module.get_session()
    db = await sessions.__anext__()
    assert isinstance(db, AsyncSession)
    await sessions.aclose()
    await session_module.dispose_engine()
