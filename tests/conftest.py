import sys

import pytest
import pytest_asyncio
import structlog
from prometheus_client import CollectorRegistry
from sqlalchemy.ext.asyncio import AsyncEngine

from costwatch.store.database import open_database


@pytest.fixture(autouse=True)
def _structlog_to_stderr() -> "object":
    """
    keep log lines off captured stdout, as setup_logging does for the CLI.
    """
    structlog.configure(logger_factory=structlog.PrintLoggerFactory(sys.stderr))
    yield
    structlog.reset_defaults()


@pytest.fixture()
def registry() -> "CollectorRegistry":
    """
    fresh Prometheus registry to avoid cross-test state.
    """
    return CollectorRegistry()


@pytest_asyncio.fixture()
async def engine(tmp_path: "object") -> "AsyncEngine":
    """
    file-backed SQLite state database, one per test.
    """
    engine = await open_database(f"sqlite+aiosqlite:///{tmp_path}/state.db")
    yield engine
    await engine.dispose()
