from __future__ import annotations

import os
import tempfile

# Point the engine at a throwaway SQLite file before any lighthouse module builds it.
_DB_DIR = tempfile.mkdtemp(prefix="lighthouse-tests-")
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{os.path.join(_DB_DIR, 'test.db')}"
os.environ.setdefault("ENVIRONMENT", "test")

import pytest  # noqa: E402

from lighthouse.core.config import get_settings  # noqa: E402
from lighthouse.domain.models import Base  # noqa: E402
from lighthouse.persistence.db import engine  # noqa: E402
from lighthouse.services.telemetry import reset_telemetry  # noqa: E402
from lighthouse.services.usage import reset_usage_accounting  # noqa: E402


@pytest.fixture(autouse=True)
async def database() -> None:
    # Fresh schema per test keeps integration tests isolated without cleanup helpers.
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    # Dispose the async engine to prevent cross-loop connection reuse between tests.
    await engine.dispose()


@pytest.fixture(autouse=True)
def _reset_process_state() -> None:
    yield
    get_settings.cache_clear()
    reset_telemetry()
    reset_usage_accounting()
