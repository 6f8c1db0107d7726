"""
Sale Journal
============

[PERSISTENCE] Durable record of a sale in SQLite:
- Construction parameters (bound once)
- Every settled purchase, with its transfer reference
- Finalization, ownership changes and pending nominations

A controller restored from the journal replays the purchases onto a fresh
token ledger, so the journal is the source of truth across restarts.

[ATOMICITY] The controller opens a transaction with `begin()`, writes the
purchase and forwards the value. A failed forward rolls the row back.
Once the value has moved, the transfer reference and `commit()` run to
completion even if the calling task is cancelled.
"""

import asyncio
import time
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Optional

import aiosqlite

from config import config
from core.persistence import run_migrations
from sale.errors import JournalError
from sale.models import Purchase, SaleParameters

logger = logging.getLogger(__name__)


def _row_to_purchase(row) -> Purchase:
    return Purchase(
        id=row[0],
        sender=row[1],
        beneficiary=row[2],
        contribution=int(row[3]),
        tokens=int(row[4]),
        counter=row[5],
        transfer_ref=row[6],
        created_at=row[7],
    )


class SaleJournal:
    """
    SQLite journal of one sale.

    [USAGE]
        journal = SaleJournal("sale.db")
        await journal.initialize()
        ...
        await journal.close()
    """

    def __init__(self, db_path: Optional[str] = None):
        self.db_path = db_path or config.journal.database_path
        self._db: Optional[aiosqlite.Connection] = None
        self._lock = asyncio.Lock()
        self._in_transaction = False

    async def initialize(self) -> None:
        """Open the database and apply pending migrations."""
        # Autocommit mode: transactions are explicit BEGIN/COMMIT
        self._db = await aiosqlite.connect(self.db_path, isolation_level=None)
        if self.db_path != ":memory:":
            await self._db.execute("PRAGMA journal_mode=WAL")
        version = await run_migrations(self._db)
        logger.debug(f"[JOURNAL] Opened {self.db_path} (schema v{version})")

    async def close(self) -> None:
        """Close the database connection."""
        if self._db:
            await self._db.close()
            self._db = None

    @property
    def db(self) -> aiosqlite.Connection:
        if self._db is None:
            raise JournalError("Journal is not initialized")
        return self._db

    @property
    def in_transaction(self) -> bool:
        return self._in_transaction

    async def begin(self) -> None:
        """
        Open a serialised write transaction.

        Must be closed by exactly one commit() or rollback(), which may run
        in another task than the one that called begin().
        """
        await self._lock.acquire()
        try:
            await self.db.execute("BEGIN IMMEDIATE")
        except BaseException:
            self._lock.release()
            raise
        self._in_transaction = True

    async def commit(self) -> None:
        self._require_transaction()
        try:
            await self.db.execute("COMMIT")
        except Exception:
            if self.db.in_transaction:
                await self.db.execute("ROLLBACK")
            raise
        finally:
            self._in_transaction = False
            self._lock.release()

    async def rollback(self) -> None:
        self._require_transaction()
        try:
            await self.db.execute("ROLLBACK")
        finally:
            self._in_transaction = False
            self._lock.release()

    @asynccontextmanager
    async def atomic(self) -> AsyncIterator["SaleJournal"]:
        """Serialised write transaction; rolled back if the block raises."""
        await self.begin()
        try:
            yield self
        except BaseException:
            await self.rollback()
            raise
        await self.commit()

    def _require_transaction(self) -> None:
        if not self._in_transaction:
            raise JournalError("Purchase writes must run inside a transaction (begin() or atomic())")

    # --- Parameters ---

    async def save_parameters(self, params: SaleParameters) -> None:
        """
        Bind the journal to a sale.

        Saving the same parameters again is a no-op; saving different ones
        raises JournalError.
        """
        existing = await self.load_parameters()
        if existing is not None:
            if existing != params:
                raise JournalError(f"Journal {self.db_path} belongs to sale {existing.address}")
            return

        async with self.atomic():
            await self.db.execute(
                """
                INSERT INTO sale_parameters
                (id, address, token_address, owner, fund_recipient, reserve_recipient,
                 start_counter, end_counter, exchange_rate, cap, created_at)
                VALUES (1, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    params.address,
                    params.token_address,
                    params.owner,
                    params.fund_recipient,
                    params.reserve_recipient,
                    params.start,
                    params.end,
                    str(params.exchange_rate),
                    str(params.cap),
                    time.time(),
                )
            )
            await self.db.execute("INSERT INTO sale_state (id, finalized) VALUES (1, 0)")

        logger.info(f"[JOURNAL] Bound to sale {params.address}")

    async def load_parameters(self) -> Optional[SaleParameters]:
        async with self.db.execute(
            """
            SELECT address, token_address, owner, fund_recipient, reserve_recipient,
                   start_counter, end_counter, exchange_rate, cap
            FROM sale_parameters WHERE id = 1
            """
        ) as cursor:
            row = await cursor.fetchone()

        if not row:
            return None

        return SaleParameters(
            address=row[0],
            token_address=row[1],
            owner=row[2],
            fund_recipient=row[3],
            reserve_recipient=row[4],
            start=row[5],
            end=row[6],
            exchange_rate=int(row[7]),
            cap=int(row[8]),
        )

    # --- Purchases ---

    async def record_purchase(self, purchase: Purchase) -> int:
        """Insert a purchase inside the current transaction; returns its row id."""
        self._require_transaction()
        cursor = await self.db.execute(
            """
            INSERT INTO purchases
            (sender, beneficiary, contribution, tokens, counter, transfer_ref, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                purchase.sender,
                purchase.beneficiary,
                str(purchase.contribution),
                str(purchase.tokens),
                purchase.counter,
                purchase.transfer_ref,
                purchase.created_at,
            )
        )
        purchase.id = cursor.lastrowid
        return purchase.id

    async def set_transfer_ref(self, purchase_id: int, transfer_ref: str) -> None:
        self._require_transaction()
        await self.db.execute(
            "UPDATE purchases SET transfer_ref = ? WHERE id = ?",
            (transfer_ref, purchase_id)
        )

    async def load_purchases(
        self,
        beneficiary: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> List[Purchase]:
        """Purchases in settlement order."""
        sql = (
            "SELECT id, sender, beneficiary, contribution, tokens, counter, transfer_ref, created_at "
            "FROM purchases"
        )
        params: tuple = ()
        if beneficiary is not None:
            sql += " WHERE beneficiary = ?"
            params = (beneficiary,)
        sql += " ORDER BY id ASC"
        if limit is not None:
            sql += " LIMIT ?"
            params = params + (limit,)

        async with self.db.execute(sql, params) as cursor:
            rows = await cursor.fetchall()
        return [_row_to_purchase(row) for row in rows]

    # --- Finalization / Ownership ---

    async def record_finalization(self, counter: int) -> None:
        async with self.atomic():
            cursor = await self.db.execute(
                """
                UPDATE sale_state SET finalized = 1, finalized_counter = ?, finalized_at = ?
                WHERE id = 1 AND finalized = 0
                """,
                (counter, time.time())
            )
            if cursor.rowcount != 1:
                raise JournalError("Sale is not bound or already finalized in the journal")
        logger.info(f"[JOURNAL] Finalization recorded at counter {counter}")

    async def record_nomination(self, nominee: str) -> None:
        """Store a pending ownership nomination (replaces any earlier one)."""
        async with self.atomic():
            cursor = await self.db.execute(
                "UPDATE sale_state SET pending_owner = ? WHERE id = 1",
                (nominee,)
            )
            if cursor.rowcount != 1:
                raise JournalError("Sale is not bound in the journal")

    async def record_owner(self, previous_owner: str, new_owner: str) -> None:
        async with self.atomic():
            await self.db.execute(
                """
                INSERT INTO ownership_changes (previous_owner, new_owner, created_at)
                VALUES (?, ?, ?)
                """,
                (previous_owner, new_owner, time.time())
            )
            await self.db.execute("UPDATE sale_state SET pending_owner = NULL WHERE id = 1")

    async def load_state(self) -> Dict[str, Any]:
        """Finalization flag, current owner and pending nomination."""
        async with self.db.execute(
            "SELECT finalized, finalized_counter, pending_owner FROM sale_state WHERE id = 1"
        ) as cursor:
            row = await cursor.fetchone()

        async with self.db.execute(
            "SELECT new_owner FROM ownership_changes ORDER BY id DESC LIMIT 1"
        ) as cursor:
            owner_row = await cursor.fetchone()

        params = await self.load_parameters()
        owner = owner_row[0] if owner_row else (params.owner if params else None)

        return {
            "finalized": bool(row[0]) if row else False,
            "finalized_counter": row[1] if row else None,
            "owner": owner,
            "pending_owner": row[2] if row else None,
        }

    # --- Statistics ---

    async def get_stats(self) -> Dict[str, Any]:
        """Journal summary (amounts summed in Python; stored as TEXT)."""
        async with self.db.execute("SELECT contribution, tokens FROM purchases") as cursor:
            rows = await cursor.fetchall()

        async with self.db.execute("SELECT COUNT(DISTINCT beneficiary) FROM purchases") as cursor:
            buyers = (await cursor.fetchone())[0]

        state = await self.load_state()

        return {
            "purchase_count": len(rows),
            "buyer_count": buyers,
            "total_contributions": sum(int(r[0]) for r in rows),
            "tokens_sold": sum(int(r[1]) for r in rows),
            "finalized": state["finalized"],
            "owner": state["owner"],
        }
