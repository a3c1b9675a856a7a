from pathlib import Path

import structlog
from sqlalchemy import event
from sqlalchemy.engine import make_url
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine
from sqlalchemy.pool import StaticPool

from costwatch.errors import ConfigurationError
from costwatch.store.schema import metadata

logger = structlog.get_logger()

DEFAULT_DATABASE_URL = "sqlite+aiosqlite:///.db/costwatch.db"


def _set_busy_timeout(dbapi_conn: "object", _record: "object") -> "None":
    # wait up to 5s for a competing writer instead of failing
    cursor = dbapi_conn.cursor()  # type: ignore[attr-defined]
    cursor.execute("PRAGMA busy_timeout = 5000")
    cursor.close()


async def open_database(url: "str" = DEFAULT_DATABASE_URL) -> "AsyncEngine":
    """
    opens the state database, creating the parent directory of a
    file-backed SQLite database and the schema when missing.

    Raises ConfigurationError when the database cannot be opened;
    the process cannot run without it.
    """
    parsed = make_url(url)
    in_memory = parsed.database in (None, "", ":memory:")

    try:
        if parsed.get_backend_name() == "sqlite" and not in_memory:
            Path(parsed.database).parent.mkdir(parents=True, exist_ok=True)

        if in_memory:
            # a single shared connection, otherwise every checkout
            # would see its own empty database
            engine = create_async_engine(url, poolclass=StaticPool)
        else:
            engine = create_async_engine(url)

        if parsed.get_backend_name() == "sqlite":
            event.listen(engine.sync_engine, "connect", _set_busy_timeout)

        async with engine.begin() as conn:
            await conn.run_sync(metadata.create_all)

    except (SQLAlchemyError, OSError) as exc:
        raise ConfigurationError(
            "cannot open state database",
            context={"url": parsed.render_as_string(hide_password=True)},
        ) from exc

    logger.info(
        "database_opened",
        url=parsed.render_as_string(hide_password=True),
    )
    return engine
