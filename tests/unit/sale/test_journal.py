"""
Sale Journal Unit Tests
=======================

[UNIT] sale/journal.py and core/persistence/migrations.py against an
in-memory SQLite database.
"""

import asyncio
from dataclasses import replace

import pytest

from config import compute_token_cap
from core.persistence import LATEST_VERSION, get_current_version, run_migrations
from sale.errors import ForwardingFailed, JournalError
from sale.controller import SaleController
from sale.models import Purchase, SaleParameters
from sale.transfer import InMemoryValueTransfer

from conftest import ETH, EXCHANGE_RATE


@pytest.fixture
def params(accounts):
    return SaleParameters(
        address=accounts[7],
        token_address=accounts[6],
        owner=accounts[0],
        fund_recipient=accounts[8],
        reserve_recipient=accounts[9],
        start=1010,
        end=1030,
        exchange_rate=EXCHANGE_RATE,
        cap=compute_token_cap(),
    )


def _purchase(accounts, i=1, contribution=ETH):
    return Purchase(
        sender=accounts[i],
        beneficiary=accounts[i],
        contribution=contribution,
        tokens=contribution * EXCHANGE_RATE,
        counter=1010 + i,
    )


# ============================================================================
# Schema
# ============================================================================

class TestMigrations:
    """Versioned schema."""

    @pytest.mark.asyncio
    async def test_latest_version_applied(self, journal):
        assert await get_current_version(journal.db) == LATEST_VERSION

    @pytest.mark.asyncio
    async def test_rerun_is_noop(self, journal):
        assert await run_migrations(journal.db) == LATEST_VERSION

    @pytest.mark.asyncio
    async def test_tables_exist(self, journal):
        async with journal.db.execute(
            "SELECT name FROM sqlite_master WHERE type = 'table'"
        ) as cursor:
            tables = {row[0] for row in await cursor.fetchall()}

        assert {"sale_parameters", "purchases", "sale_state", "ownership_changes"} <= tables

    def test_uninitialized_journal(self):
        from sale.journal import SaleJournal

        with pytest.raises(JournalError):
            SaleJournal(":memory:").db


# ============================================================================
# Parameters
# ============================================================================

class TestParameters:
    """A journal is bound to exactly one sale."""

    @pytest.mark.asyncio
    async def test_empty_journal(self, journal):
        assert await journal.load_parameters() is None

    @pytest.mark.asyncio
    async def test_save_and_load(self, journal, params):
        await journal.save_parameters(params)

        loaded = await journal.load_parameters()
        assert loaded == params
        assert loaded.cap == compute_token_cap()

    @pytest.mark.asyncio
    async def test_save_same_again(self, journal, params):
        await journal.save_parameters(params)
        await journal.save_parameters(params)

        assert await journal.load_parameters() == params

    @pytest.mark.asyncio
    async def test_save_different_sale(self, journal, params):
        await journal.save_parameters(params)

        with pytest.raises(JournalError):
            await journal.save_parameters(replace(params, end=2000))

    def test_parameters_dict_roundtrip(self, params):
        assert SaleParameters.from_dict(params.to_dict()) == params


# ============================================================================
# Purchases
# ============================================================================

class TestPurchases:
    """Purchase rows and transactions."""

    @pytest.mark.asyncio
    async def test_write_requires_transaction(self, journal, params, accounts):
        await journal.save_parameters(params)

        with pytest.raises(JournalError):
            await journal.record_purchase(_purchase(accounts))

    @pytest.mark.asyncio
    async def test_record_and_load(self, journal, params, accounts):
        await journal.save_parameters(params)
        purchase = _purchase(accounts)

        async with journal.atomic():
            assert journal.in_transaction
            purchase_id = await journal.record_purchase(purchase)
            await journal.set_transfer_ref(purchase_id, "0xabc")

        assert not journal.in_transaction
        loaded = await journal.load_purchases()
        assert len(loaded) == 1
        assert loaded[0].id == purchase_id
        assert loaded[0].tokens == ETH * EXCHANGE_RATE
        assert loaded[0].transfer_ref == "0xabc"

    @pytest.mark.asyncio
    async def test_rollback(self, journal, params, accounts):
        await journal.save_parameters(params)

        with pytest.raises(RuntimeError):
            async with journal.atomic():
                await journal.record_purchase(_purchase(accounts))
                raise RuntimeError("forward failed")

        assert await journal.load_purchases() == []
        assert not journal.in_transaction

    @pytest.mark.asyncio
    async def test_explicit_begin_commit(self, journal, accounts):
        await journal.begin()
        assert journal.in_transaction
        await journal.record_purchase(_purchase(accounts))
        await journal.commit()

        assert not journal.in_transaction
        assert len(await journal.load_purchases()) == 1

    @pytest.mark.asyncio
    async def test_explicit_rollback_releases_journal(self, journal, accounts):
        await journal.begin()
        await journal.record_purchase(_purchase(accounts))
        await journal.rollback()

        async with journal.atomic():
            await journal.record_purchase(_purchase(accounts, 2))

        assert [p.beneficiary for p in await journal.load_purchases()] == [accounts[2]]

    @pytest.mark.asyncio
    async def test_commit_without_transaction(self, journal):
        with pytest.raises(JournalError):
            await journal.commit()

    @pytest.mark.asyncio
    async def test_large_amounts_survive(self, journal, params, accounts):
        """Amounts beyond 64-bit integers are stored exactly."""
        big = compute_token_cap() // EXCHANGE_RATE
        async with journal.atomic():
            await journal.record_purchase(_purchase(accounts, contribution=big))

        loaded = (await journal.load_purchases())[0]
        assert loaded.contribution == big
        assert loaded.tokens == compute_token_cap()

    @pytest.mark.asyncio
    async def test_filter_and_limit(self, journal, params, accounts):
        async with journal.atomic():
            for i in (1, 2, 1, 3):
                await journal.record_purchase(_purchase(accounts, i))

        assert len(await journal.load_purchases(beneficiary=accounts[1])) == 2
        limited = await journal.load_purchases(limit=2)
        assert [p.beneficiary for p in limited] == [accounts[1], accounts[2]]


# ============================================================================
# Finalization / ownership / stats
# ============================================================================

class TestState:
    """Finalization flag, owner history and statistics."""

    @pytest.mark.asyncio
    async def test_initial_state(self, journal, params):
        await journal.save_parameters(params)

        state = await journal.load_state()
        assert state == {
            "finalized": False,
            "finalized_counter": None,
            "owner": params.owner,
            "pending_owner": None,
        }

    @pytest.mark.asyncio
    async def test_finalization(self, journal, params):
        await journal.save_parameters(params)
        await journal.record_finalization(1031)

        state = await journal.load_state()
        assert state["finalized"] is True
        assert state["finalized_counter"] == 1031

    @pytest.mark.asyncio
    async def test_finalization_twice(self, journal, params):
        await journal.save_parameters(params)
        await journal.record_finalization(1031)

        with pytest.raises(JournalError):
            await journal.record_finalization(1032)

    @pytest.mark.asyncio
    async def test_finalization_unbound(self, journal):
        with pytest.raises(JournalError):
            await journal.record_finalization(1)

    @pytest.mark.asyncio
    async def test_owner_history(self, journal, params, accounts):
        await journal.save_parameters(params)
        await journal.record_owner(accounts[0], accounts[5])
        await journal.record_owner(accounts[5], accounts[4])

        assert (await journal.load_state())["owner"] == accounts[4]

    @pytest.mark.asyncio
    async def test_nomination(self, journal, params, accounts):
        await journal.save_parameters(params)
        await journal.record_nomination(accounts[5])
        await journal.record_nomination(accounts[6])

        state = await journal.load_state()
        assert state["pending_owner"] == accounts[6]
        assert state["owner"] == accounts[0]

        await journal.record_owner(accounts[0], accounts[6])
        state = await journal.load_state()
        assert state["pending_owner"] is None
        assert state["owner"] == accounts[6]

    @pytest.mark.asyncio
    async def test_nomination_unbound(self, journal, accounts):
        with pytest.raises(JournalError):
            await journal.record_nomination(accounts[5])

    @pytest.mark.asyncio
    async def test_stats(self, journal, params, accounts):
        await journal.save_parameters(params)
        async with journal.atomic():
            await journal.record_purchase(_purchase(accounts, 1))
            await journal.record_purchase(_purchase(accounts, 1, 2 * ETH))
            await journal.record_purchase(_purchase(accounts, 2))

        stats = await journal.get_stats()
        assert stats["purchase_count"] == 3
        assert stats["buyer_count"] == 2
        assert stats["total_contributions"] == 4 * ETH
        assert stats["tokens_sold"] == 4 * ETH * EXCHANGE_RATE
        assert stats["finalized"] is False
        assert stats["owner"] == accounts[0]


# ============================================================================
# Controller with a journal
# ============================================================================

class TestJournaledSale:
    """Settlement through the journal transaction."""

    @pytest.mark.asyncio
    async def test_purchase_is_recorded(self, active_sale, journal, accounts):
        await active_sale.attach_journal(journal)

        await active_sale.contribute(accounts[1], ETH)

        purchases = await journal.load_purchases()
        assert len(purchases) == 1
        assert purchases[0].beneficiary == accounts[1]
        assert purchases[0].transfer_ref.startswith("0x")

    @pytest.mark.asyncio
    async def test_failed_forward_leaves_no_row(self, active_sale, journal, accounts, value_transfer):
        await active_sale.attach_journal(journal)
        value_transfer.fail_next()

        with pytest.raises(ForwardingFailed):
            await active_sale.contribute(accounts[1], ETH)

        assert await journal.load_purchases() == []
        assert active_sale.tokens_sold == 0
        assert not journal.in_transaction

    @pytest.mark.asyncio
    async def test_attach_after_purchase(self, active_sale, journal, accounts):
        await active_sale.contribute(accounts[1], ETH)

        with pytest.raises(JournalError):
            await active_sale.attach_journal(journal)

    @pytest.mark.asyncio
    async def test_finalize_is_recorded(self, sale, clock, journal, accounts):
        await sale.attach_journal(journal)
        clock.advance_to(sale.end + 1)

        await sale.finalize(accounts[0])

        assert (await journal.load_state())["finalized"] is True

    @pytest.mark.asyncio
    async def test_ownership_is_recorded(self, sale, journal, accounts):
        await sale.attach_journal(journal)

        await sale.transfer_ownership(accounts[0], accounts[5])
        await sale.accept_ownership(accounts[5])

        assert (await journal.load_state())["owner"] == accounts[5]
        assert (await journal.load_state())["pending_owner"] is None

    @pytest.mark.asyncio
    async def test_cancel_after_forward_completes_purchase(
        self, sale_factory, clock, journal, accounts, cancelling_transfer
    ):
        """Value that has moved is always credited and journaled."""
        sale = sale_factory(value_transfer=cancelling_transfer)
        await sale.attach_journal(journal)
        clock.advance_to(sale.start)

        task = asyncio.ensure_future(sale.contribute(accounts[1], ETH))
        with pytest.raises(asyncio.CancelledError):
            await task

        assert cancelling_transfer.balance_of(accounts[8]) == ETH
        assert sale.tokens_sold == ETH * EXCHANGE_RATE
        assert sale.balance_of(accounts[1]) == ETH * EXCHANGE_RATE
        assert sale.balance_of(accounts[9]) == ETH * EXCHANGE_RATE
        assert not journal.in_transaction

        purchases = await journal.load_purchases()
        assert len(purchases) == 1
        assert purchases[0].transfer_ref == cancelling_transfer.transfers[0].ref

        # The sale and the journal stay usable
        cancelling_transfer.cancel_after = False
        await sale.contribute(accounts[2], ETH)
        assert len(await journal.load_purchases()) == 2
        assert sale.tokens_sold == 2 * ETH * EXCHANGE_RATE

    @pytest.mark.asyncio
    async def test_cancelled_purchase_matches_journal(
        self, sale_factory, clock, journal, accounts, cancelling_transfer
    ):
        sale = sale_factory(value_transfer=cancelling_transfer)
        await sale.attach_journal(journal)
        clock.advance_to(sale.start)

        results = await asyncio.gather(sale.contribute(accounts[3], 2 * ETH), return_exceptions=True)

        assert isinstance(results[0], asyncio.CancelledError)
        stats = await journal.get_stats()
        assert stats["total_contributions"] == cancelling_transfer.balance_of(accounts[8]) == 2 * ETH
        assert stats["tokens_sold"] == sale.tokens_sold == 2 * ETH * EXCHANGE_RATE

    @pytest.mark.asyncio
    async def test_nomination_survives_restore(self, sale, journal, accounts, clock, value_transfer):
        await sale.attach_journal(journal)
        await sale.transfer_ownership(accounts[0], accounts[5])

        restored = await SaleController.restore(journal, clock=clock, value_transfer=value_transfer)

        assert restored.owner == accounts[0]
        assert restored.pending_owner == accounts[5]
        await restored.accept_ownership(accounts[5])
        assert restored.owner == accounts[5]
        assert (await journal.load_state())["pending_owner"] is None

    @pytest.mark.asyncio
    async def test_attach_records_earlier_ownership(self, sale, journal, accounts, clock):
        await sale.transfer_ownership(accounts[0], accounts[5])
        await sale.accept_ownership(accounts[5])
        await sale.transfer_ownership(accounts[5], accounts[6])

        await sale.attach_journal(journal)

        state = await journal.load_state()
        assert state["owner"] == accounts[5]
        assert state["pending_owner"] == accounts[6]

        restored = await SaleController.restore(
            journal, clock=clock, value_transfer=InMemoryValueTransfer(),
        )
        assert restored.owner == accounts[5]
        assert restored.pending_owner == accounts[6]
