"""
Token Ledger
============

[LEDGER] Balance ledger of the sale token (STX).

- Minting is restricted to a single owner (the sale controller)
- total_supply always equals the sum of all balances
- ERC20-style transfer / approve / transfer_from between holders

Amounts are integers in token base units (10^decimals per token).
"""

import logging
from typing import Dict, Optional, Tuple

from config import config
from sale.address import generate_address, to_checksum
from sale.errors import (
    InsufficientAllowance,
    InsufficientBalance,
    InvalidAmount,
    InvalidRecipient,
    Unauthorized,
)

logger = logging.getLogger(__name__)


def _check_amount(amount: int, allow_zero: bool = True) -> int:
    # bool is an int subclass; reject it explicitly
    if isinstance(amount, bool) or not isinstance(amount, int):
        raise InvalidAmount(f"Amount must be an integer, got {amount!r}")
    if amount < 0 or (amount == 0 and not allow_zero):
        raise InvalidAmount(f"Invalid amount: {amount}")
    return amount


class TokenLedger:
    """
    Token balance ledger with a single minting owner.

    [USAGE]
        ledger = TokenLedger(owner=sale_address)
        ledger.mint(sale_address, buyer, 200 * 10**18)
        ledger.balance_of(buyer)
    """

    def __init__(
        self,
        owner: str,
        name: Optional[str] = None,
        symbol: Optional[str] = None,
        decimals: Optional[int] = None,
        address: Optional[str] = None,
    ):
        checksum_owner = to_checksum(owner)
        if checksum_owner is None:
            raise InvalidRecipient(f"Invalid ledger owner: {owner!r}")

        self.owner = checksum_owner
        self.name = name or config.token.name
        self.symbol = symbol or config.token.symbol
        self.decimals = config.token.decimals if decimals is None else decimals
        self.address = to_checksum(address) or generate_address()

        self._balances: Dict[str, int] = {}
        self._allowances: Dict[Tuple[str, str], int] = {}
        self._total_supply = 0

    @property
    def total_supply(self) -> int:
        return self._total_supply

    def balance_of(self, address: str) -> int:
        """Current balance (0 if the address never held tokens)."""
        key = to_checksum(address)
        if key is None:
            return 0
        return self._balances.get(key, 0)

    def holders(self) -> Dict[str, int]:
        """Snapshot of all non-zero balances."""
        return {addr: bal for addr, bal in self._balances.items() if bal}

    # --- Issuance ---

    def mint(self, caller: str, recipient: str, amount: int) -> None:
        """
        Issue new tokens.

        Raises:
            Unauthorized: caller is not the ledger owner
            InvalidRecipient: null or malformed recipient
            InvalidAmount: amount is not a positive integer
        """
        if to_checksum(caller) != self.owner:
            raise Unauthorized(f"Only the ledger owner can mint (caller {caller!r})")

        target = to_checksum(recipient)
        if target is None:
            raise InvalidRecipient(f"Invalid mint recipient: {recipient!r}")

        _check_amount(amount, allow_zero=False)

        self._balances[target] = self._balances.get(target, 0) + amount
        self._total_supply += amount

        logger.debug(f"[LEDGER] Minted {amount} {self.symbol} to {target}")

    # --- Transfers ---

    def transfer(self, sender: str, to: str, amount: int) -> None:
        """Move tokens from sender to `to`."""
        source = to_checksum(sender)
        target = to_checksum(to)
        if source is None:
            raise InvalidRecipient(f"Invalid sender: {sender!r}")
        if target is None:
            raise InvalidRecipient(f"Invalid transfer recipient: {to!r}")
        _check_amount(amount)

        self._move(source, target, amount)

    def approve(self, holder: str, spender: str, amount: int) -> None:
        """Allow spender to move up to `amount` of holder's tokens."""
        owner_key = to_checksum(holder)
        spender_key = to_checksum(spender)
        if owner_key is None or spender_key is None:
            raise InvalidRecipient(f"Invalid approval pair: {holder!r} -> {spender!r}")
        _check_amount(amount)

        self._allowances[(owner_key, spender_key)] = amount

    def allowance(self, holder: str, spender: str) -> int:
        owner_key = to_checksum(holder)
        spender_key = to_checksum(spender)
        if owner_key is None or spender_key is None:
            return 0
        return self._allowances.get((owner_key, spender_key), 0)

    def transfer_from(self, spender: str, holder: str, to: str, amount: int) -> None:
        """Move holder's tokens on their behalf, consuming allowance."""
        spender_key = to_checksum(spender)
        source = to_checksum(holder)
        target = to_checksum(to)
        if spender_key is None or source is None:
            raise InvalidRecipient(f"Invalid spender/holder: {spender!r}, {holder!r}")
        if target is None:
            raise InvalidRecipient(f"Invalid transfer recipient: {to!r}")
        _check_amount(amount)

        allowed = self._allowances.get((source, spender_key), 0)
        if allowed < amount:
            raise InsufficientAllowance(
                f"Allowance {allowed} < {amount} for {spender_key} on {source}"
            )

        self._move(source, target, amount)
        self._allowances[(source, spender_key)] = allowed - amount

    def _move(self, source: str, target: str, amount: int) -> None:
        balance = self._balances.get(source, 0)
        if balance < amount:
            raise InsufficientBalance(f"Balance {balance} < {amount} for {source}")

        self._balances[source] = balance - amount
        self._balances[target] = self._balances.get(target, 0) + amount
