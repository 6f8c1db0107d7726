import logging
from typing import List, Tuple

import aiosqlite

logger = logging.getLogger(__name__)

# Amounts are TEXT: the token cap does not fit SQLite's 64-bit INTEGER
MIGRATIONS: List[Tuple[int, List[str]]] = [
    (1, [
        """
        CREATE TABLE IF NOT EXISTS sale_parameters (
            id INTEGER PRIMARY KEY CHECK (id = 1),
            address TEXT NOT NULL,
            token_address TEXT NOT NULL,
            owner TEXT NOT NULL,
            fund_recipient TEXT NOT NULL,
            reserve_recipient TEXT NOT NULL,
            start_counter INTEGER NOT NULL,
            end_counter INTEGER NOT NULL,
            exchange_rate TEXT NOT NULL,
            cap TEXT NOT NULL,
            created_at REAL NOT NULL
        )
        """,
        """
        CREATE TABLE IF NOT EXISTS purchases (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            sender TEXT NOT NULL,
            beneficiary TEXT NOT NULL,
            contribution TEXT NOT NULL,
            tokens TEXT NOT NULL,
            counter INTEGER NOT NULL,
            transfer_ref TEXT,
            created_at REAL NOT NULL
        )
        """,
        "CREATE INDEX IF NOT EXISTS idx_purchases_beneficiary ON purchases(beneficiary)",
        """
        CREATE TABLE IF NOT EXISTS sale_state (
            id INTEGER PRIMARY KEY CHECK (id = 1),
            finalized INTEGER NOT NULL DEFAULT 0,
            finalized_counter INTEGER,
            finalized_at REAL
        )
        """,
    ]),
    (2, [
        """
        CREATE TABLE IF NOT EXISTS ownership_changes (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            previous_owner TEXT NOT NULL,
            new_owner TEXT NOT NULL,
            created_at REAL NOT NULL
        )
        """,
    ]),
    (3, [
        "ALTER TABLE sale_state ADD COLUMN pending_owner TEXT",
    ]),
]

LATEST_VERSION = MIGRATIONS[-1][0]


async def _ensure_schema_table(db: aiosqlite.Connection) -> None:
    await db.execute("""
        CREATE TABLE IF NOT EXISTS schema_versions(
            version INTEGER PRIMARY KEY
        )
    """)


async def get_current_version(db: aiosqlite.Connection) -> int:
    async with db.execute("SELECT MAX(version) FROM schema_versions") as cursor:
        row = await cursor.fetchone()
    return row[0] or 0


async def run_migrations(db: aiosqlite.Connection) -> int:
    """
    Bring the journal schema up to date.

    The connection must be in autocommit mode (isolation_level=None);
    each migration runs in its own transaction.

    Returns:
        Schema version after migration
    """
    await _ensure_schema_table(db)
    current = await get_current_version(db)
    for version, statements in MIGRATIONS:
        if version <= current:
            continue
        await db.execute("BEGIN")
        try:
            for sql in statements:
                await db.execute(sql)
            await db.execute("INSERT INTO schema_versions(version) VALUES (?)", (version,))
        except Exception as e:
            await db.execute("ROLLBACK")
            logger.error(f"[MIGRATION] v{version} failed: {e}")
            raise
        await db.execute("COMMIT")
        current = version
        logger.info(f"[MIGRATION] Applied v{version}")
    return current
