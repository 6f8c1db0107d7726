"""
Sale Module
===========
Fixed-window, capped token sale:
- SaleController: purchase / finalization state machine
- TokenLedger: STX balances, minted only by the controller
- ValueTransfer: forwarding of contributions to the fund recipient
- SaleJournal: SQLite record of parameters, purchases and finalization
"""

from .errors import (
    SaleError,
    ConstructionError,
    InvalidAddress,
    InvalidWindow,
    PurchaseError,
    FinalizeError,
    OutsideWindow,
    AlreadyFinalized,
    ZeroContribution,
    CapExceeded,
    ForwardingFailed,
    SaleStillActive,
    AuthorizationError,
    Unauthorized,
    LedgerError,
    InvalidRecipient,
    InvalidAmount,
    InsufficientBalance,
    InsufficientAllowance,
    TransferError,
    InsufficientFunds,
    TransferRejected,
    JournalError,
)
from .models import Purchase, SaleParameters
from .token import TokenLedger
from .transfer import ValueTransfer, InMemoryValueTransfer, ChainValueTransfer
from .journal import SaleJournal
from .controller import SaleController, SaleState

__all__ = [
    "SaleController",
    "SaleState",
    "TokenLedger",
    "ValueTransfer",
    "InMemoryValueTransfer",
    "ChainValueTransfer",
    "SaleJournal",
    "Purchase",
    "SaleParameters",
    "SaleError",
    "ConstructionError",
    "InvalidAddress",
    "InvalidWindow",
    "PurchaseError",
    "FinalizeError",
    "OutsideWindow",
    "AlreadyFinalized",
    "ZeroContribution",
    "CapExceeded",
    "ForwardingFailed",
    "SaleStillActive",
    "AuthorizationError",
    "Unauthorized",
    "LedgerError",
    "InvalidRecipient",
    "InvalidAmount",
    "InsufficientBalance",
    "InsufficientAllowance",
    "TransferError",
    "InsufficientFunds",
    "TransferRejected",
    "JournalError",
]
