"""
Value Transfer
==============

[HOST] Moving native value (ETH) is outside the sale's control. The
controller calls `forward()` once per purchase and treats any exception
as a failed settlement.

Implementations:
- InMemoryValueTransfer: native balances held in process (tests, simulation)
- ChainValueTransfer: signed native transfer from a custody account via web3

[USAGE]
    transfer = InMemoryValueTransfer()
    transfer.fund(buyer, 10 * 10**18)
    ref = await transfer.forward(buyer, fund_recipient, 10**18)
"""

import os
import time
import hashlib
import logging
from abc import ABC, abstractmethod
from collections import deque
from dataclasses import dataclass
from typing import Deque, Dict, List, Optional

from eth_account import Account

from config import config
from sale.address import to_checksum
from sale.errors import InsufficientFunds, TransferError, TransferRejected

logger = logging.getLogger(__name__)

# Lazy import
Web3 = None


def _ensure_web3():
    global Web3
    if Web3 is None:
        from web3 import Web3 as _Web3
        Web3 = _Web3
    return Web3


class ValueTransfer(ABC):
    """Forwards contributed value to its destination."""

    @abstractmethod
    async def forward(self, sender: str, recipient: str, amount: int) -> str:
        """
        Move `amount` base units from sender to recipient.

        Returns:
            Transfer reference (transaction hash)

        Raises:
            TransferError (or any exception) if the value did not move
        """


@dataclass
class TransferRecord:
    """A completed in-memory transfer."""
    ref: str
    sender: str
    recipient: str
    amount: int
    timestamp: float


class InMemoryValueTransfer(ValueTransfer):
    """
    Native value balances kept in memory.

    Debit and credit happen together or not at all.
    """

    def __init__(self):
        self._balances: Dict[str, int] = {}
        self._failures: Deque[Exception] = deque()
        self.transfers: List[TransferRecord] = []

    def fund(self, address: str, amount: int) -> int:
        """Credit native value to an account (faucet)."""
        key = self._key(address)
        if amount < 0:
            raise ValueError(f"Cannot fund a negative amount: {amount}")
        self._balances[key] = self._balances.get(key, 0) + amount
        return self._balances[key]

    def balance_of(self, address: str) -> int:
        key = to_checksum(address)
        if key is None:
            return 0
        return self._balances.get(key, 0)

    def fail_next(self, error: Optional[Exception] = None) -> None:
        """Make the next forward() raise `error` without moving value."""
        self._failures.append(error or TransferRejected("Injected transfer failure"))

    async def forward(self, sender: str, recipient: str, amount: int) -> str:
        source = self._key(sender)
        target = self._key(recipient)

        if self._failures:
            raise self._failures.popleft()

        balance = self._balances.get(source, 0)
        if balance < amount:
            raise InsufficientFunds(f"{source} holds {balance}, needs {amount}")

        self._balances[source] = balance - amount
        self._balances[target] = self._balances.get(target, 0) + amount

        ref = self._compute_ref(source, target, amount)
        self.transfers.append(TransferRecord(
            ref=ref,
            sender=source,
            recipient=target,
            amount=amount,
            timestamp=time.time(),
        ))
        return ref

    def _compute_ref(self, sender: str, recipient: str, amount: int) -> str:
        data = f"{len(self.transfers)}:{sender}:{recipient}:{amount}".encode("utf-8")
        return "0x" + hashlib.sha256(data).hexdigest()

    @staticmethod
    def _key(address: str) -> str:
        key = to_checksum(address)
        if key is None:
            raise TransferError(f"Invalid address: {address!r}")
        return key


class ChainValueTransfer(ValueTransfer):
    """
    Forward value on-chain from a custody account.

    Contributions are received by the custody account; forward() sends the
    same amount to the fund recipient and waits for the receipt. The
    `sender` argument is kept for logging only.

    Args:
        w3: Web3 instance
        private_key: Custody account key (or from SALE_CUSTODY_KEY env)
        chain_id: Chain ID for replay protection (default: config)
        gas: Gas limit per transfer (default: config)
        receipt_timeout: Seconds to wait for a receipt (default: config)
    """

    def __init__(
        self,
        w3,
        private_key: Optional[str] = None,
        chain_id: Optional[int] = None,
        gas: Optional[int] = None,
        receipt_timeout: Optional[int] = None,
    ):
        self.w3 = w3
        key = private_key or os.getenv("SALE_CUSTODY_KEY", "")
        if not key:
            raise ValueError("Private key required for value forwarding")

        self.account = Account.from_key(key)
        self.address = self.account.address
        self.chain_id = chain_id or config.chain.chain_id
        self.gas = gas or config.chain.transfer_gas
        self.receipt_timeout = receipt_timeout or config.chain.receipt_timeout

    async def forward(self, sender: str, recipient: str, amount: int) -> str:
        Web3 = _ensure_web3()
        to_address = to_checksum(recipient)
        if to_address is None:
            raise TransferError(f"Invalid recipient: {recipient!r}")

        tx = {
            "to": to_address,
            "value": amount,
            "nonce": self.w3.eth.get_transaction_count(self.address),
            "gas": self.gas,
            "gasPrice": self.w3.eth.gas_price,
            "chainId": self.chain_id,
        }

        signed = self.account.sign_transaction(tx)
        tx_hash = self.w3.eth.send_raw_transaction(signed.raw_transaction)
        ref = Web3.to_hex(tx_hash)

        receipt = self.w3.eth.wait_for_transaction_receipt(tx_hash, timeout=self.receipt_timeout)
        if getattr(receipt, "status", None) != 1:
            raise TransferRejected(f"Transfer {ref} reverted")

        logger.info(f"[CHAIN] Forwarded {amount} wei from {sender} to {to_address}: {ref}")
        return ref
