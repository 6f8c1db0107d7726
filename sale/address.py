"""
Address helpers.

[CHAIN] Sale participants are identified by EVM addresses. All addresses
are stored in checksum form so that ledger keys stay unique regardless of
the casing a caller used.
"""

from typing import Any, Optional

from eth_account import Account

# Lazy import
Web3 = None


def _ensure_web3():
    global Web3
    if Web3 is None:
        from web3 import Web3 as _Web3
        Web3 = _Web3
    return Web3


ZERO_ADDRESS = "0x" + "0" * 40


def is_null_address(address: Any) -> bool:
    """True for None, empty strings and the zero address."""
    if address is None:
        return True
    if isinstance(address, str):
        stripped = address.strip()
        return not stripped or stripped.lower() == ZERO_ADDRESS
    return False


def to_checksum(address: Any) -> Optional[str]:
    """
    Normalise an address to checksum form.

    Returns None for null or malformed addresses; callers decide which
    error that maps to.
    """
    if is_null_address(address) or not isinstance(address, str):
        return None
    Web3 = _ensure_web3()
    address = address.strip()
    if not Web3.is_address(address):
        return None
    return Web3.to_checksum_address(address)


def generate_address() -> str:
    """Fresh random address for an in-process contract (ledger, controller)."""
    return Account.create().address
