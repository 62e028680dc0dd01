# audit/feed.py
from __future__ import annotations

import enum
import time
from dataclasses import dataclass
from typing import Any, AsyncIterator, Callable, Dict, Iterable, List, Mapping, Optional

from vaultview import config
from vaultview.api.logging_config import get_logger
from vaultview.errors import LedgerUnavailable
from vaultview.ledger.client import LedgerReadClient

logger = get_logger("audit")

REDACTION_MARKER = "*** HIDDEN ***"

# Upstream keys that would carry a real amount; never forwarded.
_AMOUNT_KEYS = frozenset({
    "amount", "amounts", "display_amount", "displayAmount", "tokenAmount",
    "lamports", "nativeTransfers", "tokenTransfers", "value", "fee",
})


class InstructionKind(str, enum.Enum):
    BAKE_PAYROLL = "bake_payroll"
    DEPOSIT_DOUGH = "deposit_dough"
    GET_DOUGH = "get_dough"
    UPDATE_SALARY = "update_salary"
    CLAIM_EXCESS_DOUGH = "claim_excess_dough"
    CLOSE_JAR = "close_jar"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, raw: Any) -> "InstructionKind":
        key = str(raw or "").strip().lower().replace("-", "_").replace(" ", "_")
        try:
            return cls(key)
        except ValueError:
            return cls.UNKNOWN


_DESCRIPTIONS = {
    InstructionKind.BAKE_PAYROLL: "Create encrypted payroll",
    InstructionKind.DEPOSIT_DOUGH: "Deposit funds to vault",
    InstructionKind.GET_DOUGH: "Private withdrawal",
    InstructionKind.UPDATE_SALARY: "Update encrypted salary",
    InstructionKind.CLAIM_EXCESS_DOUGH: "Reclaim excess vault funds",
    InstructionKind.CLOSE_JAR: "Close payroll account",
    InstructionKind.UNKNOWN: "Program transaction",
}


@dataclass(frozen=True)
class AuditEntry:
    signature: str
    timestamp: int
    category: InstructionKind
    synthetic: bool = False
    display_amount: str = REDACTION_MARKER

    @property
    def description(self) -> str:
        return _DESCRIPTIONS[self.category]


# (signature, seconds before now, category)
_SYNTHETIC_ROWS = (
    ("SYNTHETIC_TX_1", 3600, InstructionKind.BAKE_PAYROLL),
    ("SYNTHETIC_TX_2", 1800, InstructionKind.DEPOSIT_DOUGH),
    ("SYNTHETIC_TX_3", 600, InstructionKind.GET_DOUGH),
)


def _order_key(e: AuditEntry):
    return (-e.timestamp, e.signature)


def synthetic_entries(now: int) -> List[AuditEntry]:
    """The fixed placeholder dataset, newest first."""
    rows = [AuditEntry(sig, int(now) - age, kind, synthetic=True) for sig, age, kind in _SYNTHETIC_ROWS]
    return sorted(rows, key=_order_key)


def _entry_from_row(row: Mapping[str, Any]) -> Optional[AuditEntry]:
    sig = str(row.get("signature") or "").strip()
    if not sig:
        return None
    leaked = _AMOUNT_KEYS.intersection(row.keys())
    if leaked:
        logger.warning(f"Upstream row {sig[:16]}... carried amount fields {sorted(leaked)}; dropped")
    try:
        ts = int(row.get("timestamp") or 0)
    except (TypeError, ValueError):
        ts = 0
    return AuditEntry(sig, ts, InstructionKind.parse(row.get("category")))


def redact_rows(rows: Iterable[Mapping[str, Any]], limit: int) -> List[AuditEntry]:
    """Map upstream rows to redacted entries: dedupe by signature, order, cap."""
    seen: Dict[str, AuditEntry] = {}
    for row in rows:
        if not isinstance(row, Mapping):
            continue
        entry = _entry_from_row(row)
        if entry is None or entry.signature in seen:
            continue
        seen[entry.signature] = entry
    return sorted(seen.values(), key=_order_key)[:limit]


class AuditFeed:
    """
    Recent program transactions as redacted display rows.

    fetch_recent() is an async generator; each call starts a fresh fetch. When
    the ledger read fails and synthetic_fallback is on, the fixed synthetic
    rows are yielded instead, each tagged synthetic=True.
    """

    def __init__(
        self,
        client: LedgerReadClient,
        program_address: Optional[str] = None,
        *,
        synthetic_fallback: Optional[bool] = None,
        max_limit: Optional[int] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.client = client
        self.program_address = program_address or config.PROGRAM_ID
        self.synthetic_fallback = config.AUDIT_SYNTHETIC_FALLBACK if synthetic_fallback is None else synthetic_fallback
        self.max_limit = int(config.MAX_AUDIT_LIMIT if max_limit is None else max_limit)
        self.clock = clock

    async def _load(self, limit: int) -> List[AuditEntry]:
        try:
            rows = await self.client.get_recent_transactions(self.program_address, limit)
        except Exception as e:
            if not self.synthetic_fallback:
                if isinstance(e, LedgerUnavailable):
                    raise
                raise LedgerUnavailable(f"Audit feed read failed: {e}") from e
            logger.warning(f"Audit feed read failed ({e}); serving synthetic rows")
            return synthetic_entries(int(self.clock()))[:limit]
        return redact_rows(rows or [], limit)

    async def fetch_recent(self, limit: int) -> AsyncIterator[AuditEntry]:
        n = min(int(limit), self.max_limit)
        if n <= 0:
            return
        for entry in await self._load(n):
            yield entry

    async def collect_recent(self, limit: int) -> List[AuditEntry]:
        return [e async for e in self.fetch_recent(limit)]


__all__ = [
    "REDACTION_MARKER",
    "InstructionKind",
    "AuditEntry",
    "AuditFeed",
    "synthetic_entries",
    "redact_rows",
]
