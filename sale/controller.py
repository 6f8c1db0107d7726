"""
Sale Controller
===============

[SALE] Fixed-window, capped token sale.

- Converts contributions into STX at a fixed exchange rate
- Forwards every contribution to the fund recipient
- Mirrors each buyer credit to the reserve recipient
- Finalizes irreversibly once the window closed or the cap was reached

[ATOMICITY] A purchase is validated completely before anything changes.
Value forwarding is the only step that can fail afterwards, so it runs
before the ledger is touched (inside the journal transaction when a
journal is attached). Ledger credits are applied only once it succeeded.
Everything after a successful forward (journal commit, ledger credits)
runs to completion even if the caller is cancelled; the cancellation is
re-raised afterwards.

[CONCURRENCY] purchase / finalize / ownership calls are serialised by one
asyncio.Lock; an operation never observes another one half-applied.

[USAGE]
    sale = SaleController(
        fund_recipient, reserve_recipient, start=clock.current() + 10, end=clock.current() + 100,
        owner=admin, clock=clock, value_transfer=transfer,
    )
    tokens = await sale.contribute(buyer, 10**18)
    await sale.finalize(admin)
"""

import asyncio
import logging
from enum import Enum
from typing import Any, Dict, Optional

from config import SaleConfig, config
from core.clock import ExternalClock
from core.events import EventBus, PURCHASE_EVENT, FINALIZED_EVENT, OWNERSHIP_EVENT, event_bus
from sale.address import generate_address, to_checksum
from sale.errors import (
    AlreadyFinalized,
    CapExceeded,
    ConstructionError,
    ForwardingFailed,
    InvalidAddress,
    InvalidRecipient,
    InvalidWindow,
    JournalError,
    OutsideWindow,
    SaleStillActive,
    ZeroContribution,
)
from sale.journal import SaleJournal
from sale.models import Purchase, SaleParameters
from sale.ownership import Owned
from sale.token import TokenLedger
from sale.transfer import ValueTransfer

logger = logging.getLogger(__name__)


async def _run_to_completion(coro):
    """
    Await `coro` in its own task, shielded from cancellation of the caller.

    If the caller is cancelled meanwhile, the task still finishes and the
    cancellation is raised once it has.
    """
    task = asyncio.ensure_future(coro)
    interrupted = None
    while not task.done():
        try:
            await asyncio.shield(task)
        except asyncio.CancelledError as e:
            if task.cancelled():
                raise
            interrupted = e
    result = task.result()
    if interrupted is not None:
        raise interrupted
    return result


class SaleState(Enum):
    PENDING = "pending"      # counter < start
    ACTIVE = "active"        # start <= counter <= end
    ENDED = "ended"          # counter > end, not finalized
    FINALIZED = "finalized"  # terminal


class SaleController(Owned):
    """
    Token sale state machine owning its TokenLedger.

    Args:
        fund_recipient: Receives every contribution
        reserve_recipient: Receives a token credit equal to every buyer credit
        start: First counter value at which purchases are accepted
        end: Last counter value at which purchases are accepted
        owner: Administrative authority (finalize, ownership)
        clock: Monotonic counter source
        value_transfer: Moves contributed value to the fund recipient
        sale_config: Exchange rate and cap (default: config.sale)
        events: Event bus for notifications (default: global bus)
        address: Controller address (default: freshly generated)

    Raises:
        InvalidAddress: null/malformed fund recipient, reserve recipient or owner
        InvalidWindow: start not after the current counter, or end not after start
    """

    def __init__(
        self,
        fund_recipient: str,
        reserve_recipient: str,
        start: int,
        end: int,
        *,
        owner: str,
        clock: ExternalClock,
        value_transfer: ValueTransfer,
        sale_config: Optional[SaleConfig] = None,
        events: Optional[EventBus] = None,
        address: Optional[str] = None,
    ):
        fund = to_checksum(fund_recipient)
        if fund is None:
            raise InvalidAddress(f"Invalid fund recipient: {fund_recipient!r}")

        reserve = to_checksum(reserve_recipient)
        if reserve is None:
            raise InvalidAddress(f"Invalid reserve recipient: {reserve_recipient!r}")

        current = clock.current()
        if start <= current:
            raise InvalidWindow(f"Start {start} must be after the current counter {current}")
        if end <= start:
            raise InvalidWindow(f"End {end} must be after start {start}")

        Owned.__init__(self, owner)

        cfg = sale_config or config.sale
        if cfg.exchange_rate <= 0 or cfg.cap <= 0:
            raise ConstructionError(
                f"Exchange rate and cap must be positive ({cfg.exchange_rate}, {cfg.cap})"
            )

        sale_address = to_checksum(address) or generate_address()
        token = TokenLedger(owner=sale_address)

        params = SaleParameters(
            address=sale_address,
            token_address=token.address,
            owner=self.owner,
            fund_recipient=fund,
            reserve_recipient=reserve,
            start=start,
            end=end,
            exchange_rate=cfg.exchange_rate,
            cap=cfg.cap,
        )
        self._setup(params, token, clock, value_transfer, events)

        logger.info(
            f"[SALE] Created sale {sale_address}: window [{start}, {end}], "
            f"rate {cfg.exchange_rate}, cap {cfg.cap}"
        )

    def _setup(
        self,
        params: SaleParameters,
        token: TokenLedger,
        clock: ExternalClock,
        value_transfer: ValueTransfer,
        events: Optional[EventBus],
    ) -> None:
        self.parameters = params
        self.token = token
        self.clock = clock
        self.value_transfer = value_transfer
        self.events = events or event_bus
        self.journal: Optional[SaleJournal] = None

        self._tokens_sold = 0
        self._finalized = False
        self._purchase_count = 0
        self._lock = asyncio.Lock()

    @classmethod
    async def restore(
        cls,
        journal: SaleJournal,
        *,
        clock: ExternalClock,
        value_transfer: ValueTransfer,
        events: Optional[EventBus] = None,
    ) -> "SaleController":
        """
        Rebuild a sale from its journal.

        Purchases are replayed onto a fresh ledger without forwarding value
        again. The construction window check is not repeated: it held when
        the sale was created.
        """
        params = await journal.load_parameters()
        if params is None:
            raise JournalError(f"No sale recorded in {journal.db_path}")

        sale = cls.__new__(cls)
        Owned.__init__(sale, params.owner)
        token = TokenLedger(owner=params.address, address=params.token_address)
        sale._setup(params, token, clock, value_transfer, events)

        for purchase in await journal.load_purchases():
            if sale._tokens_sold + purchase.tokens > params.cap:
                raise JournalError(f"Replaying purchase {purchase.id} exceeds the cap")
            sale._apply(purchase)

        state = await journal.load_state()
        sale._finalized = state["finalized"]
        if state["owner"] and state["owner"] != sale.owner:
            sale._owner = state["owner"]
        sale._pending_owner = state["pending_owner"]
        sale.journal = journal

        logger.info(
            f"[SALE] Restored sale {params.address}: {sale._purchase_count} purchases, "
            f"{sale._tokens_sold} tokens sold, finalized={sale._finalized}"
        )
        return sale

    async def attach_journal(self, journal: SaleJournal) -> None:
        """Persist this sale in `journal`; must happen before the first purchase."""
        async with self._lock:
            if self._purchase_count or self._finalized:
                raise JournalError("Attach the journal before any purchase")
            await journal.save_parameters(self.parameters)
            if self.owner != self.parameters.owner:
                await journal.record_owner(self.parameters.owner, self.owner)
            if self.pending_owner is not None:
                await journal.record_nomination(self.pending_owner)
            self.journal = journal

    # --- Read accessors ---

    @property
    def address(self) -> str:
        return self.parameters.address

    @property
    def token_address(self) -> str:
        return self.token.address

    @property
    def fund_recipient(self) -> str:
        return self.parameters.fund_recipient

    @property
    def reserve_recipient(self) -> str:
        return self.parameters.reserve_recipient

    @property
    def start(self) -> int:
        return self.parameters.start

    @property
    def end(self) -> int:
        return self.parameters.end

    @property
    def exchange_rate(self) -> int:
        return self.parameters.exchange_rate

    @property
    def cap(self) -> int:
        return self.parameters.cap

    @property
    def tokens_sold(self) -> int:
        return self._tokens_sold

    @property
    def is_finalized(self) -> bool:
        return self._finalized

    @property
    def state(self) -> SaleState:
        if self._finalized:
            return SaleState.FINALIZED
        counter = self.clock.current()
        if counter < self.start:
            return SaleState.PENDING
        if counter > self.end:
            return SaleState.ENDED
        return SaleState.ACTIVE

    def balance_of(self, address: str) -> int:
        return self.token.balance_of(address)

    def snapshot(self) -> Dict[str, Any]:
        """Public state of the sale."""
        return {
            "address": self.address,
            "token_address": self.token_address,
            "owner": self.owner,
            "state": self.state.value,
            "start": self.start,
            "end": self.end,
            "exchange_rate": self.exchange_rate,
            "cap": self.cap,
            "tokens_sold": self._tokens_sold,
            "total_supply": self.token.total_supply,
            "purchase_count": self._purchase_count,
            "is_finalized": self._finalized,
        }

    # --- Purchases ---

    async def create(self, sender: str, recipient: str, contribution: int) -> int:
        """Buy tokens for an explicit beneficiary, paid by sender."""
        return await self.purchase(recipient, contribution, sender=sender)

    async def contribute(self, sender: str, contribution: int) -> int:
        """Buy tokens for the sender itself."""
        return await self.purchase(sender, contribution, sender=sender)

    async def purchase(self, buyer: str, contribution: int, *, sender: Optional[str] = None) -> int:
        """
        Convert `contribution` into tokens for `buyer`.

        Args:
            buyer: Address credited with the tokens
            contribution: Value base units (> 0)
            sender: Account the value is taken from (default: buyer)

        Returns:
            Tokens credited to the buyer

        Raises:
            OutsideWindow, AlreadyFinalized, ZeroContribution, CapExceeded,
            InvalidRecipient, ForwardingFailed
        """
        async with self._lock:
            purchase = self._stage_purchase(buyer, contribution, sender)
            await self._settle(purchase)

        logger.info(
            f"[SALE] {purchase.beneficiary} bought {purchase.tokens} {self.token.symbol} "
            f"for {purchase.contribution} (tokens sold: {self._tokens_sold}/{self.cap})"
        )
        await self.events.broadcast(PURCHASE_EVENT, {
            "sale": self.address,
            **purchase.to_dict(),
            "tokens_sold": self._tokens_sold,
        })
        return purchase.tokens

    def _stage_purchase(self, buyer: str, contribution: int, sender: Optional[str]) -> Purchase:
        counter = self.clock.current()
        if not self.start <= counter <= self.end:
            raise OutsideWindow(f"Counter {counter} outside sale window [{self.start}, {self.end}]")

        if self._finalized:
            raise AlreadyFinalized("Sale is finalized")

        if isinstance(contribution, bool) or not isinstance(contribution, int):
            raise TypeError(f"Contribution must be an integer, got {contribution!r}")
        if contribution <= 0:
            raise ZeroContribution(f"Contribution must be positive, got {contribution}")

        tokens = contribution * self.exchange_rate
        if self._tokens_sold + tokens > self.cap:
            raise CapExceeded(
                f"Purchase of {tokens} would exceed the cap ({self._tokens_sold} + {tokens} > {self.cap})"
            )

        beneficiary = to_checksum(buyer)
        if beneficiary is None:
            raise InvalidRecipient(f"Invalid buyer: {buyer!r}")

        payer = to_checksum(sender) if sender is not None else beneficiary
        if payer is None:
            raise InvalidRecipient(f"Invalid sender: {sender!r}")

        return Purchase(
            sender=payer,
            beneficiary=beneficiary,
            contribution=contribution,
            tokens=tokens,
            counter=counter,
        )

    async def _settle(self, purchase: Purchase) -> None:
        """Forward the value, then record and apply the purchase."""
        if self.journal is None:
            purchase.transfer_ref = await self._forward(purchase)
            self._apply(purchase)
            return

        journal = self.journal
        await journal.begin()
        try:
            await journal.record_purchase(purchase)
            purchase.transfer_ref = await self._forward(purchase)
        except BaseException:
            await journal.rollback()
            raise

        # Value has moved: no await point below may be interrupted
        await _run_to_completion(self._commit_purchase(journal, purchase))

    async def _commit_purchase(self, journal: SaleJournal, purchase: Purchase) -> None:
        try:
            await journal.set_transfer_ref(purchase.id, purchase.transfer_ref)
            await journal.commit()
        except Exception as e:
            if journal.in_transaction:
                await journal.rollback()
            logger.error(
                f"[SALE] Contribution forwarded ({purchase.transfer_ref}) but the journal "
                f"write failed: {e}"
            )
            raise JournalError(f"Purchase {purchase.transfer_ref} not journaled: {e}") from e
        finally:
            self._apply(purchase)

    async def _forward(self, purchase: Purchase) -> str:
        try:
            return await self.value_transfer.forward(
                purchase.sender, self.fund_recipient, purchase.contribution
            )
        except Exception as e:
            logger.warning(
                f"[SALE] Forwarding {purchase.contribution} from {purchase.sender} failed: {e}"
            )
            raise ForwardingFailed(f"Could not forward contribution: {e}") from e

    def _apply(self, purchase: Purchase) -> None:
        # Both mints were validated in _stage_purchase and cannot fail here
        self.token.mint(self.address, purchase.beneficiary, purchase.tokens)
        self.token.mint(self.address, self.reserve_recipient, purchase.tokens)
        self._tokens_sold += purchase.tokens
        self._purchase_count += 1

    # --- Administration ---

    async def finalize(self, caller: str) -> None:
        """
        Close the sale permanently.

        Raises:
            Unauthorized: caller is not the owner
            AlreadyFinalized: finalize() already succeeded
            SaleStillActive: window still open and cap not reached
        """
        async with self._lock:
            self.require_owner(caller)

            if self._finalized:
                raise AlreadyFinalized("Sale is already finalized")

            counter = self.clock.current()
            if not (counter > self.end or self._tokens_sold >= self.cap):
                raise SaleStillActive(
                    f"Sale still active at counter {counter} (end {self.end}, "
                    f"sold {self._tokens_sold}/{self.cap})"
                )

            if self.journal is not None:
                await self.journal.record_finalization(counter)
            self._finalized = True

        logger.info(f"[SALE] Finalized sale {self.address} at counter {counter}")
        await self.events.broadcast(FINALIZED_EVENT, {
            "sale": self.address,
            "counter": counter,
            "tokens_sold": self._tokens_sold,
            "total_supply": self.token.total_supply,
        })

    async def transfer_ownership(self, caller: str, new_owner: str) -> str:
        """Nominate a new owner; takes effect once they accept."""
        async with self._lock:
            nominee = self._check_nomination(caller, new_owner)
            if self.journal is not None:
                await self.journal.record_nomination(nominee)
            return self._nominate(caller, nominee)

    async def accept_ownership(self, caller: str) -> str:
        """Complete an ownership transfer (nominee only)."""
        async with self._lock:
            self.require_pending_owner(caller)
            previous = self.owner
            if self.journal is not None:
                await self.journal.record_owner(previous, self.pending_owner)
            new_owner = self._accept(caller)

        await self.events.broadcast(OWNERSHIP_EVENT, {
            "sale": self.address,
            "previous_owner": previous,
            "new_owner": new_owner,
        })
        return new_owner
