#!/usr/bin/env python3
"""
STX Token Sale - Journal Inspector
==================================

Read-only command line view of a sale journal (SQLite).

Usage:
    python main.py cap
    python main.py status --db sale.db
    python main.py balance --db sale.db 0xAbC...
    python main.py purchases --db sale.db --limit 20

The database path defaults to SALE_DB_PATH (see .env).
"""

import argparse
import asyncio
import logging
import sys
from decimal import Decimal
from pathlib import Path
from typing import List, Optional

# Load environment variables from .env
try:
    from dotenv import load_dotenv
    load_dotenv()
except ImportError:
    pass  # python-dotenv not installed

from config import config, get_current_network
from core.clock import ManualClock
from sale.address import to_checksum
from sale.controller import SaleController
from sale.errors import SaleError
from sale.journal import SaleJournal
from sale.transfer import InMemoryValueTransfer


logging.basicConfig(
    level=logging.WARNING,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


def format_units(amount: int, decimals: int = 18) -> str:
    """Render base units as a decimal string (10**18 -> '1')."""
    value = Decimal(amount) / (Decimal(10) ** decimals)
    text = format(value.normalize(), "f")
    return text


async def _open_journal(db_path: str) -> Optional[SaleJournal]:
    """Open an existing journal; never creates a database file."""
    if not Path(db_path).is_file():
        print(f"No sale recorded in {db_path}")
        return None
    journal = SaleJournal(db_path)
    await journal.initialize()
    return journal


async def cmd_cap(args: argparse.Namespace) -> int:
    symbol = config.token.symbol
    print(f"Exchange rate: {config.sale.exchange_rate} {symbol} per {config.chain.value_symbol}")
    print(f"Token cap:     {format_units(config.sale.cap, config.token.decimals)} {symbol} ({config.sale.cap} base units)")
    return 0


async def cmd_status(args: argparse.Namespace) -> int:
    journal = await _open_journal(args.db)
    if journal is None:
        return 1
    try:
        params = await journal.load_parameters()
        if params is None:
            print(f"No sale recorded in {args.db}")
            return 1
        stats = await journal.get_stats()
    finally:
        await journal.close()

    symbol = config.token.symbol
    decimals = config.token.decimals
    print(f"Sale:              {params.address}")
    print(f"Token:             {params.token_address}")
    print(f"Owner:             {stats['owner']}")
    print(f"Window:            [{params.start}, {params.end}]")
    print(f"Fund recipient:    {params.fund_recipient}")
    print(f"Reserve recipient: {params.reserve_recipient}")
    print(f"Purchases:         {stats['purchase_count']} by {stats['buyer_count']} buyers")
    print(f"Contributions:     {format_units(stats['total_contributions'])}")
    print(f"Tokens sold:       {format_units(stats['tokens_sold'], decimals)} / {format_units(params.cap, decimals)} {symbol}")
    print(f"Finalized:         {'yes' if stats['finalized'] else 'no'}")
    return 0


async def cmd_balance(args: argparse.Namespace) -> int:
    address = to_checksum(args.address)
    if address is None:
        print(f"Invalid address: {args.address}")
        return 2

    journal = await _open_journal(args.db)
    if journal is None:
        return 1
    try:
        # The clock and transfer are unused by a replay
        sale = await SaleController.restore(
            journal,
            clock=ManualClock(),
            value_transfer=InMemoryValueTransfer(),
        )
    finally:
        await journal.close()

    balance = sale.balance_of(address)
    print(f"{address}: {format_units(balance, sale.token.decimals)} {sale.token.symbol}")
    return 0


async def cmd_purchases(args: argparse.Namespace) -> int:
    journal = await _open_journal(args.db)
    if journal is None:
        return 1
    try:
        purchases = await journal.load_purchases(limit=args.limit)
    finally:
        await journal.close()

    if not purchases:
        print("No purchases recorded")
        return 0

    for p in purchases:
        print(
            f"#{p.id} @{p.counter} {p.beneficiary} "
            f"+{format_units(p.tokens, config.token.decimals)} {config.token.symbol} "
            f"for {format_units(p.contribution)} (paid by {p.sender}, ref {p.transfer_ref})"
        )
    return 0


COMMANDS = {
    "cap": cmd_cap,
    "status": cmd_status,
    "balance": cmd_balance,
    "purchases": cmd_purchases,
}


def build_parser() -> argparse.ArgumentParser:
    _net = get_current_network()
    parser = argparse.ArgumentParser(
        description=f"STX token sale journal inspector ({_net['name']})",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py cap
  python main.py status --db sale.db
  python main.py balance --db sale.db 0x5aAeb6053F3E94C9b9A09f33669435E7Ef1BeAed
""",
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable debug logging",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("cap", help="Show the configured exchange rate and cap")

    for name, help_text in (
        ("status", "Summarise the recorded sale"),
        ("balance", "Token balance of an address"),
        ("purchases", "List recorded purchases"),
    ):
        sub = subparsers.add_parser(name, help=help_text)
        sub.add_argument(
            "--db",
            type=str,
            default=config.journal.database_path,
            help=f"Journal database (default: {config.journal.database_path})",
        )
        if name == "balance":
            sub.add_argument("address", type=str, help="Holder address")
        if name == "purchases":
            sub.add_argument("--limit", type=int, default=None, help="Show at most N purchases")

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    try:
        return asyncio.run(COMMANDS[args.command](args))
    except SaleError as e:
        print(f"[ERROR] {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
