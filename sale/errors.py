"""
Sale Errors
===========

Exception taxonomy for the token sale. Every failing operation raises one
of these before any state change is applied.
"""


class SaleError(Exception):
    """Base class for all token sale errors."""
    pass


# ============================================================================
# Construction
# ============================================================================

class ConstructionError(SaleError):
    """Invalid sale parameters."""
    pass


class InvalidAddress(ConstructionError):
    """Null or malformed recipient/owner address."""
    pass


class InvalidWindow(ConstructionError):
    """Start not in the future, or end not after start."""
    pass


# ============================================================================
# Purchase / Finalize
# ============================================================================

class PurchaseError(SaleError):
    """Purchase rejected."""
    pass


class FinalizeError(SaleError):
    """Finalization rejected."""
    pass


class OutsideWindow(PurchaseError):
    """Current counter is outside [start, end]."""
    pass


class AlreadyFinalized(PurchaseError, FinalizeError):
    """The sale has been finalized."""
    pass


class ZeroContribution(PurchaseError):
    """Contribution must be positive."""
    pass


class CapExceeded(PurchaseError):
    """Purchase would push tokens sold above the cap."""
    pass


class ForwardingFailed(PurchaseError):
    """Contributed value could not be forwarded to the fund recipient."""
    pass


class SaleStillActive(FinalizeError):
    """Neither the window has closed nor the cap has been reached."""
    pass


# ============================================================================
# Authorization
# ============================================================================

class AuthorizationError(SaleError):
    """Caller lacks the required capability."""
    pass


class Unauthorized(AuthorizationError):
    """Caller is not the owner."""
    pass


# ============================================================================
# Ledger
# ============================================================================

class LedgerError(SaleError):
    """Token ledger operation rejected."""
    pass


class InvalidRecipient(LedgerError):
    """Null or malformed token recipient."""
    pass


class InvalidAmount(LedgerError):
    """Amount is not a valid unsigned integer for this operation."""
    pass


class InsufficientBalance(LedgerError):
    """Holder balance is lower than the requested amount."""
    pass


class InsufficientAllowance(LedgerError):
    """Spender allowance is lower than the requested amount."""
    pass


# ============================================================================
# Value transfer / Journal
# ============================================================================

class TransferError(SaleError):
    """Value transfer failed."""
    pass


class InsufficientFunds(TransferError):
    """Sender does not hold enough native value."""
    pass


class TransferRejected(TransferError):
    """The chain rejected or reverted the transfer."""
    pass


class JournalError(SaleError):
    """Sale journal is inconsistent with the requested operation."""
    pass
