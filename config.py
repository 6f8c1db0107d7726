"""
Token Sale Configuration
========================
Centralised configuration for the sale, the token ledger, the journal
and chain access.
"""

from dataclasses import dataclass, field
from typing import Dict

import os

# ============================================================================
# Blockchain Network Presets
# ============================================================================

NETWORKS: Dict[str, Dict[str, object]] = {
    "mainnet": {
        "name": "Ethereum Mainnet",
        "chain_id": 1,
        "rpc_url": "https://ethereum-rpc.publicnode.com",
        "explorer_url": "https://etherscan.io",
        "symbol": "ETH",
    },
    "sepolia": {
        "name": "Sepolia Testnet",
        "chain_id": 11155111,
        "rpc_url": "https://ethereum-sepolia-rpc.publicnode.com",
        "explorer_url": "https://sepolia.etherscan.io",
        "symbol": "SepoliaETH",
    },
    "local": {
        "name": "Local Devnet",
        "chain_id": 1337,
        "rpc_url": "http://127.0.0.1:8545",
        "explorer_url": "",
        "symbol": "ETH",
    },
}

# Selected network from environment (.env: SALE_NETWORK)
SALE_NETWORK: str = os.getenv("SALE_NETWORK", "local").lower()
if SALE_NETWORK not in NETWORKS:
    SALE_NETWORK = "local"

_SELECTED = NETWORKS[SALE_NETWORK]

RPC_URL: str = os.getenv("SALE_RPC_URL", "").strip() or _SELECTED["rpc_url"]  # type: ignore
CHAIN_ID: int = int(_SELECTED["chain_id"])  # type: ignore
EXPLORER_URL: str = _SELECTED["explorer_url"]  # type: ignore
VALUE_SYMBOL: str = _SELECTED["symbol"]  # type: ignore

SALE_DB_PATH: str = os.getenv("SALE_DB_PATH", "sale.db").strip() or "sale.db"


# ============================================================================
# Sale constants
# ============================================================================

# 10^18 base units per whole token / per whole value unit
TOKEN_UNIT = 10**18

# Fixed USD-denominated raise, converted at a fixed ETH price
ETH_PRICE_USD = 227
USD_CAP = 30_000_000
EXCHANGE_RATE = 200  # STX per ETH


def compute_token_cap(
    usd_cap: int = USD_CAP,
    eth_price_usd: int = ETH_PRICE_USD,
    exchange_rate: int = EXCHANGE_RATE,
    token_unit: int = TOKEN_UNIT,
) -> int:
    """
    Convert a USD raise into a cap in token base units.

    cap = floor(usd_cap / eth_price_usd) * exchange_rate * token_unit
    """
    return (usd_cap // eth_price_usd) * exchange_rate * token_unit


@dataclass
class SaleConfig:
    """Deployment-time constants of the sale."""

    # Token base units credited per value base unit
    exchange_rate: int = EXCHANGE_RATE

    # Maximum cumulative buyer-side issuance (token base units)
    cap: int = field(default_factory=compute_token_cap)


@dataclass
class TokenConfig:
    """Token metadata."""

    name: str = "Stox"
    symbol: str = "STX"
    decimals: int = 18


@dataclass
class JournalConfig:
    """Sale journal persistence."""

    # SQLite database path
    database_path: str = SALE_DB_PATH


@dataclass
class ChainConfig:
    """Chain access for the block-number clock and value forwarding."""

    network: str = SALE_NETWORK
    chain_id: int = CHAIN_ID
    rpc_url: str = RPC_URL
    explorer_url: str = EXPLORER_URL
    value_symbol: str = VALUE_SYMBOL

    # Standard native transfer gas
    transfer_gas: int = 21000

    # Seconds to wait for a forwarding receipt
    receipt_timeout: int = 120


@dataclass
class Config:
    """Top-level configuration."""

    sale: SaleConfig = field(default_factory=SaleConfig)
    token: TokenConfig = field(default_factory=TokenConfig)
    journal: JournalConfig = field(default_factory=JournalConfig)
    chain: ChainConfig = field(default_factory=ChainConfig)


# Global configuration instance
config = Config()


def get_current_network() -> Dict[str, object]:
    """Return the active network preset."""
    return {
        "key": SALE_NETWORK,
        "name": _SELECTED["name"],
        "chain_id": CHAIN_ID,
        "rpc_url": RPC_URL,
        "explorer_url": EXPLORER_URL,
        "symbol": VALUE_SYMBOL,
    }
