"""
Shared fixtures for the VaultView test-suite.

Strict privacy is on for every test: a decoder layout that reads a ciphertext
range fails loudly instead of redacting.
"""
from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional

import base58
import pytest

from vaultview.crypto_core.account_decoder import decode, encode_payroll_jar
from vaultview.crypto_core.authorization import viewer_pubkey
from vaultview.errors import OracleError

OWNER_SEED = bytes([1]) * 32
COUNTERPARTY_SEED = bytes([2]) * 32
STRANGER_SEED = bytes([3]) * 32

SALARY_HANDLE = bytes(range(0x10, 0x20))
ACCRUED_HANDLE = bytes(range(0xA0, 0xB0))

MINT = "CsoLMint1111111111111111111111111111111111"
JAR_ADDRESS = "JarAcct111111111111111111111111111111111111"
FIXED_NOW = datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


def pytest_configure(config):
    config.addinivalue_line("markers", "slow: mark test as slow running")


@pytest.fixture(autouse=True)
def _strict_privacy(monkeypatch):
    monkeypatch.setenv("VAULTVIEW_STRICT_PRIVACY", "1")


def _pub(seed: bytes) -> str:
    return viewer_pubkey(seed)


def _pub_bytes(seed: bytes) -> bytes:
    return base58.b58decode(viewer_pubkey(seed))


@pytest.fixture
def owner_seed() -> bytes:
    return OWNER_SEED


@pytest.fixture
def counterparty_seed() -> bytes:
    return COUNTERPARTY_SEED


@pytest.fixture
def stranger_seed() -> bytes:
    return STRANGER_SEED


@pytest.fixture
def salary_handle() -> bytes:
    return SALARY_HANDLE


@pytest.fixture
def accrued_handle() -> bytes:
    return ACCRUED_HANDLE


@pytest.fixture
def mint() -> str:
    return MINT


@pytest.fixture
def jar_address() -> str:
    return JAR_ADDRESS


@pytest.fixture
def fixed_now() -> datetime:
    return FIXED_NOW


@pytest.fixture
def owner_pub() -> str:
    return _pub(OWNER_SEED)


@pytest.fixture
def counterparty_pub() -> str:
    return _pub(COUNTERPARTY_SEED)


@pytest.fixture
def stranger_pub() -> str:
    return _pub(STRANGER_SEED)


@pytest.fixture
def jar_bytes() -> bytes:
    return encode_payroll_jar(
        _pub_bytes(OWNER_SEED),
        _pub_bytes(COUNTERPARTY_SEED),
        SALARY_HANDLE,
        ACCRUED_HANDLE,
        timestamp=1_760_000_000,
    )


@pytest.fixture
def jar_record(jar_bytes):
    return decode(jar_bytes)


# ============================================================================
# Collaborator fakes
# ============================================================================

class FakeLedger:
    """
    In-memory LedgerReadClient.

    `gates` holds one asyncio.Event per upcoming account read; a read that
    pops an event waits for it before answering.
    `tx_gates` does the same for transaction reads.
    """

    def __init__(self) -> None:
        self.accounts: Dict[str, bytes] = {}
        self.transactions: List[Dict[str, Any]] = []
        self.account_error: Optional[BaseException] = None
        self.tx_error: Optional[BaseException] = None
        self.gates: List[asyncio.Event] = []
        self.tx_gates: List[asyncio.Event] = []
        self.account_calls = 0
        self.tx_calls: List[int] = []

    async def get_account_bytes(self, address: str) -> Optional[bytes]:
        self.account_calls += 1
        snapshot = self.accounts.get(address)
        if self.gates:
            await self.gates.pop(0).wait()
        if self.account_error is not None:
            raise self.account_error
        return snapshot

    async def get_recent_transactions(self, program_address: str, limit: int) -> List[Dict[str, Any]]:
        self.tx_calls.append(limit)
        snapshot = list(self.transactions)
        if self.tx_gates:
            await self.tx_gates.pop(0).wait()
        if self.tx_error is not None:
            raise self.tx_error
        return snapshot


class GatedOracle:
    """Decryption oracle whose answer can be held back with `gate`."""

    def __init__(self, values: Optional[Dict[bytes, Decimal]] = None) -> None:
        self.values: Dict[bytes, Decimal] = dict(values or {})
        self.gate: Optional[asyncio.Event] = None
        self.error: Optional[BaseException] = None
        self.calls = 0

    async def decrypt(self, handle: bytes, proof) -> Decimal:
        self.calls += 1
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        try:
            return self.values[bytes(handle)]
        except KeyError:
            raise OracleError("unknown handle")


@pytest.fixture
def ledger() -> FakeLedger:
    return FakeLedger()


@pytest.fixture
def oracle() -> GatedOracle:
    return GatedOracle({
        SALARY_HANDLE: Decimal("3.25"),
        ACCRUED_HANDLE: Decimal("42.5"),
    })
