from importlib.resources import files
from pathlib import Path

import aiosqlite

_SCHEMA = files("botload").joinpath("schema.sql").read_text()


async def open_db(db_path: str | Path) -> aiosqlite.Connection:
    """Open the raw sample database, creating its directory and tables if needed."""
    path = Path(db_path)
    path.parent.mkdir(parents=True, exist_ok=True)
    conn = await aiosqlite.connect(path)
    conn.row_factory = aiosqlite.Row
    await conn.execute("PRAGMA journal_mode=WAL")
    await conn.execute("PRAGMA synchronous=NORMAL")
    await conn.executescript(_SCHEMA)
    return conn
