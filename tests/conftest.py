"""
Token Sale Test Configuration
=============================

[QA] Central pytest configuration:
- Unit tests: isolated, in-memory, fast
- Integration tests: full purchase / finalize flows, temp databases

[FIXTURES]
- accounts: ten deterministic checksum addresses
- clock: ManualClock driven by the test
- value_transfer: in-memory native balances, every account funded
- sale_factory: build a SaleController relative to the current counter
- journal / isolated_db: per-test SQLite journal
- mock_chain: fake web3 provider for chain-backed transfers and clocks

Usage:
    pytest tests/unit/
    pytest tests/integration/
"""

import sys
import asyncio
import tempfile
import shutil
import logging
from pathlib import Path
from typing import Any, Callable, Dict, Generator, List, Optional
from dataclasses import dataclass
from unittest.mock import MagicMock

import pytest
import pytest_asyncio
from eth_account import Account

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))


ETH = 10**18
STX = 10**18
EXCHANGE_RATE = 200
FUNDED_BALANCE = 10**6 * ETH


# ============================================================================
# Pytest Configuration
# ============================================================================

def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line("markers", "unit: Unit tests (fast, isolated)")
    config.addinivalue_line("markers", "integration: Integration tests (I/O, slower)")
    config.addinivalue_line("markers", "slow: Slow tests (skip with -m 'not slow')")


def pytest_collection_modifyitems(config, items):
    """Auto-mark tests based on their path."""
    for item in items:
        if "/unit/" in str(item.fspath):
            item.add_marker(pytest.mark.unit)
        elif "/integration/" in str(item.fspath):
            item.add_marker(pytest.mark.integration)


# ============================================================================
# Logging Configuration
# ============================================================================

@pytest.fixture(scope="session", autouse=True)
def configure_logging():
    """Configure logging for tests."""
    logging.basicConfig(
        level=logging.WARNING,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    logging.getLogger("asyncio").setLevel(logging.WARNING)
    logging.getLogger("aiosqlite").setLevel(logging.WARNING)


# ============================================================================
# Temporary Directory / Database Fixtures
# ============================================================================

@pytest.fixture(scope="function")
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test files."""
    temp_path = Path(tempfile.mkdtemp(prefix="sale_test_"))
    yield temp_path
    shutil.rmtree(temp_path, ignore_errors=True)


@pytest.fixture(scope="function")
def isolated_db() -> Generator[str, None, None]:
    """In-memory SQLite database."""
    yield ":memory:"


@pytest.fixture(scope="function")
def isolated_db_file(temp_dir: Path) -> Generator[Path, None, None]:
    """Database file for persistence tests."""
    db_path = temp_dir / "test_sale.db"
    yield db_path
    if db_path.exists():
        db_path.unlink()


@pytest_asyncio.fixture(scope="function")
async def journal(isolated_db: str):
    """Initialized in-memory SaleJournal."""
    from sale.journal import SaleJournal

    journal_instance = SaleJournal(isolated_db)
    await journal_instance.initialize()
    yield journal_instance
    await journal_instance.close()


# ============================================================================
# Account Fixtures
# ============================================================================

def make_address(index: int) -> str:
    """Deterministic checksum address for test account `index`."""
    return Account.from_key("0x" + f"{index + 1:064x}").address


@pytest.fixture(scope="function")
def accounts() -> List[str]:
    """
    Ten test accounts.

    [ROLES]
    - accounts[0]: sale owner
    - accounts[1..7]: buyers
    - accounts[8]: fund recipient
    - accounts[9]: reserve recipient
    """
    return [make_address(i) for i in range(10)]


@pytest.fixture(scope="function")
def random_address() -> str:
    return Account.create().address


# ============================================================================
# Sale Fixtures
# ============================================================================

@pytest.fixture(scope="function")
def clock():
    """Manual counter starting at block 1000."""
    from core.clock import ManualClock
    return ManualClock(1000)


@pytest.fixture(scope="function")
def value_transfer(accounts: List[str]):
    """In-memory value transfer with every buyer funded."""
    from sale.transfer import InMemoryValueTransfer

    transfer = InMemoryValueTransfer()
    for address in accounts[:8]:
        transfer.fund(address, FUNDED_BALANCE)
    return transfer


@pytest.fixture(scope="function")
def cancelling_transfer(accounts: List[str]):
    """
    In-memory transfer that moves the value, then cancels the calling task.

    Simulates a timeout or shutdown landing right after value has moved.
    Set `.cancel_after = False` to forward normally.
    """
    from sale.transfer import InMemoryValueTransfer

    class CancellingValueTransfer(InMemoryValueTransfer):
        cancel_after = True

        async def forward(self, sender: str, recipient: str, amount: int) -> str:
            ref = await super().forward(sender, recipient, amount)
            if self.cancel_after:
                asyncio.current_task().cancel()
            return ref

    transfer = CancellingValueTransfer()
    for address in accounts[:8]:
        transfer.fund(address, FUNDED_BALANCE)
    return transfer


@pytest.fixture(scope="function")
def events():
    """Fresh event bus (keeps the global one untouched)."""
    from core.events import EventBus
    return EventBus()


@pytest.fixture(scope="function")
def sale_factory(accounts, clock, value_transfer, events) -> Callable[..., Any]:
    """
    Build a SaleController with a window relative to the current counter.

    [USAGE]
        sale = sale_factory(start_in=10, end_in=30)
    """
    from sale.controller import SaleController

    def _create(
        start_in: int = 10,
        end_in: int = 30,
        sale_config: Optional[Any] = None,
        **kwargs: Any,
    ) -> SaleController:
        now = clock.current()
        params: Dict[str, Any] = dict(
            owner=accounts[0],
            clock=clock,
            value_transfer=value_transfer,
            events=events,
            sale_config=sale_config,
        )
        params.update(kwargs)
        return SaleController(
            params.pop("fund_recipient", accounts[8]),
            params.pop("reserve_recipient", accounts[9]),
            now + start_in,
            now + end_in,
            **params,
        )

    return _create


@pytest.fixture(scope="function")
def sale(sale_factory):
    """Sale starting in 10 blocks and ending in 30."""
    return sale_factory()


@pytest.fixture(scope="function")
def active_sale(sale, clock):
    """Sale whose window is open."""
    clock.advance_to(sale.start)
    return sale


# ============================================================================
# Mock Blockchain / Web3 Fixtures
# ============================================================================

@dataclass
class MockTransaction:
    """Mock blockchain transaction."""
    hash: str
    raw: bytes
    status: int = 1  # 1 = success


class MockWeb3:
    """
    Mock Web3 provider for testing without a real chain.

    [FEATURES]
    - Tracks sent raw transactions
    - Advances block_number per transaction
    - reject_next() makes the next receipt report status 0
    """

    def __init__(self, chain_id: int = 1337):
        self.chain_id = chain_id
        self.transactions: Dict[str, MockTransaction] = {}
        self.nonces: Dict[str, int] = {}
        self._tx_counter = 0
        self._reject_next = False

        self.eth = MagicMock()
        self.eth.chain_id = chain_id
        self.eth.block_number = 1000
        self.eth.gas_price = 1_000_000_000  # 1 Gwei
        self.eth.get_transaction_count = self._get_nonce
        self.eth.send_raw_transaction = self._send_transaction
        self.eth.wait_for_transaction_receipt = self._wait_receipt

    def is_connected(self) -> bool:
        return True

    def mine(self, blocks: int = 1) -> int:
        self.eth.block_number += blocks
        return self.eth.block_number

    def reject_next(self) -> None:
        self._reject_next = True

    def _get_nonce(self, address: str) -> int:
        return self.nonces.get(address.lower(), 0)

    def _send_transaction(self, raw_tx: bytes) -> bytes:
        self._tx_counter += 1
        tx_hash = f"0x{self._tx_counter:064x}"
        status = 0 if self._reject_next else 1
        self._reject_next = False
        self.transactions[tx_hash] = MockTransaction(hash=tx_hash, raw=bytes(raw_tx), status=status)
        self.eth.block_number += 1
        return bytes.fromhex(tx_hash[2:])

    def _wait_receipt(self, tx_hash: bytes, **kwargs) -> MagicMock:
        tx = self.transactions.get("0x" + tx_hash.hex())

        receipt = MagicMock()
        receipt.status = tx.status if tx else 0
        receipt.blockNumber = self.eth.block_number
        receipt.gasUsed = 21000
        return receipt


@pytest.fixture(scope="function")
def mock_chain() -> MockWeb3:
    """Mock web3 provider."""
    return MockWeb3()
