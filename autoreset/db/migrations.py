"""Database initialization and migrations."""

from __future__ import annotations

from pathlib import Path

import aiosqlite
import structlog

from autoreset.db.models import SCHEMA_SQL

log = structlog.get_logger()


async def init_db(db_path: str) -> aiosqlite.Connection:
    """Open the history database, creating its directory and tables if needed."""
    if db_path != ":memory:":
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
    db = await aiosqlite.connect(db_path)
    db.row_factory = aiosqlite.Row
    await db.executescript(SCHEMA_SQL)
    await db.commit()
    log.info("database_initialized", path=db_path)
    return db
