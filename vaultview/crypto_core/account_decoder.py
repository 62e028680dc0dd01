"""
Account decoder for confidential payroll/vault accounts.

Turns the raw bytes of a ledger account into a DecodedAccountRecord:

- a fixed-offset plaintext header (discriminator, owner, counterparty,
  flags, timestamp) that can be read without any key;
- a trailing ciphertext region made of named, opaque byte ranges
  (encrypted salary rate, encrypted accrued balance, ...).

The decoder never interprets a ciphertext range. The bytes are only reachable
as an opaque handle through DecodedAccountRecord.ciphertext_handle(), which
is what gets handed to the decryption oracle.

decode() is pure: no I/O, and identical bytes always give equal records.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple

import base58

from vaultview import config
from vaultview.api.logging_config import get_logger
from vaultview.crypto_core.hexdump import hex_dump
from vaultview.errors import CiphertextLeak, MalformedAccount

logger = get_logger("decoder")

ENCRYPTED_MARKER = "*** ENCRYPTED ***"

_FIXED_SIZES = {"u8": 1, "bool": 1, "u32": 4, "u64": 8, "i64": 8, "pubkey": 32}


@dataclass(frozen=True)
class FieldSpec:
    """Plaintext header field at a fixed offset."""
    name: str
    offset: int
    length: int
    kind: str = "hex"

    @property
    def end(self) -> int:
        return self.offset + self.length


@dataclass(frozen=True)
class CiphertextSpec:
    """Named opaque range inside the trailing ciphertext region."""
    name: str
    offset: int
    length: int

    @property
    def end(self) -> int:
        return self.offset + self.length


@dataclass(frozen=True)
class AccountLayout:
    name: str
    plaintext: Tuple[FieldSpec, ...]
    ciphertext: Tuple[CiphertextSpec, ...] = ()
    header_length: Optional[int] = None
    trailing_name: str = "trailing"

    def __post_init__(self) -> None:
        for f in self.plaintext:
            if f.offset < 0 or f.length <= 0:
                raise ValueError(f"Invalid plaintext field {f.name}: offset={f.offset} length={f.length}")
            if f.kind not in _FIXED_SIZES and f.kind != "hex":
                raise ValueError(f"Unsupported field kind {f.kind!r} for {f.name}")
            want = _FIXED_SIZES.get(f.kind)
            if want is not None and f.length != want:
                raise ValueError(f"Field {f.name} of kind {f.kind} must be {want} bytes, got {f.length}")
            if f.end > self.min_length:
                raise ValueError(f"Field {f.name} ends at {f.end}, past header length {self.min_length}")
        for c in self.ciphertext:
            if c.offset < 0 or c.length <= 0:
                raise ValueError(f"Invalid ciphertext field {c.name}: offset={c.offset} length={c.length}")
        names = [f.name for f in self.plaintext] + [c.name for c in self.ciphertext]
        if len(set(names)) != len(names):
            raise ValueError(f"Duplicate field names in layout {self.name}")

    @property
    def min_length(self) -> int:
        if self.header_length is not None:
            return int(self.header_length)
        return max((f.end for f in self.plaintext), default=0)


# Payroll jar: 8B anchor discriminator | owner | counterparty | flags | last update | handles
PAYROLL_JAR_LAYOUT = AccountLayout(
    name="payroll_jar",
    plaintext=(
        FieldSpec("discriminator", 0, 8, "hex"),
        FieldSpec("owner", 8, 32, "pubkey"),
        FieldSpec("counterparty", 40, 32, "pubkey"),
        FieldSpec("flags", 72, 1, "u8"),
        FieldSpec("timestamp", 73, 8, "i64"),
    ),
    ciphertext=(
        CiphertextSpec("salary_rate", 81, 16),
        CiphertextSpec("accrued_balance", 97, 16),
    ),
)

FLAG_ACTIVE = 0x01


@dataclass(frozen=True)
class PlaintextField:
    name: str
    offset: int
    length: int
    kind: str
    value: Any


@dataclass(frozen=True)
class CiphertextField:
    name: str
    offset: int
    length: int


@dataclass(frozen=True)
class DecodedAccountRecord:
    raw_bytes: bytes
    layout_name: str
    plaintext_fields: Tuple[PlaintextField, ...]
    ciphertext_fields: Tuple[CiphertextField, ...] = field(default=())

    # ---- plaintext ----
    def plaintext(self, name: str) -> Any:
        for f in self.plaintext_fields:
            if f.name == name:
                return f.value
        raise KeyError(name)

    def get(self, name: str, default: Any = None) -> Any:
        try:
            return self.plaintext(name)
        except KeyError:
            return default

    @property
    def owner(self) -> Optional[str]:
        return self.get("owner")

    @property
    def counterparty(self) -> Optional[str]:
        return self.get("counterparty")

    @property
    def timestamp(self) -> Optional[int]:
        return self.get("timestamp")

    @property
    def is_active(self) -> Optional[bool]:
        flags = self.get("flags")
        return None if flags is None else bool(flags & FLAG_ACTIVE)

    # ---- ciphertext ----
    @property
    def ciphertext_names(self) -> Tuple[str, ...]:
        return tuple(c.name for c in self.ciphertext_fields)

    def has_ciphertext(self, name: str) -> bool:
        return name in self.ciphertext_names

    def ciphertext_handle(self, name: str) -> bytes:
        """Opaque handle bytes for the oracle. Never decoded here."""
        for c in self.ciphertext_fields:
            if c.name == name:
                return self.raw_bytes[c.offset:c.offset + c.length]
        raise KeyError(name)

    # ---- display ----
    def interpreted(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {f.name: f.value for f in self.plaintext_fields}
        for c in self.ciphertext_fields:
            out[c.name] = ENCRYPTED_MARKER
        return out

    def hex_dump(self, row_width: int | None = None, max_bytes: int | None = None) -> str:
        return hex_dump(self.raw_bytes, row_width=row_width, max_bytes=max_bytes)


def _read(kind: str, chunk: bytes) -> Any:
    if kind == "hex":
        return chunk.hex()
    if kind == "pubkey":
        return base58.b58encode(chunk).decode("ascii")
    if kind == "bool":
        return chunk[0] != 0
    if kind in ("u8", "u32", "u64"):
        return int.from_bytes(chunk, "little", signed=False)
    if kind == "i64":
        return int.from_bytes(chunk, "little", signed=True)
    raise ValueError(f"Unsupported field kind {kind!r}")


def _ciphertext_ranges(raw: bytes, layout: AccountLayout) -> Tuple[CiphertextField, ...]:
    out = []
    end_named = layout.min_length
    for c in layout.ciphertext:
        start = min(c.offset, len(raw))
        stop = min(c.end, len(raw))
        end_named = max(end_named, c.end)
        if stop > start:
            out.append(CiphertextField(c.name, start, stop - start))
    if len(raw) > end_named:
        out.append(CiphertextField(layout.trailing_name, end_named, len(raw) - end_named))
    return tuple(out)


def _overlaps(f: PlaintextField, c: CiphertextField) -> bool:
    return f.offset < c.offset + c.length and c.offset < f.offset + f.length


def _guard_plaintext(
    fields: Tuple[PlaintextField, ...], cipher: Tuple[CiphertextField, ...], layout_name: str
) -> Tuple[PlaintextField, ...]:
    checked = []
    for f in fields:
        hit = next((c for c in cipher if _overlaps(f, c)), None)
        if hit is None:
            checked.append(f)
            continue
        msg = f"Layout {layout_name}: plaintext field {f.name!r} overlaps ciphertext range {hit.name!r}"
        if config.strict_privacy():
            raise CiphertextLeak(msg)
        logger.error(f"{msg}; value redacted")
        checked.append(PlaintextField(f.name, f.offset, f.length, f.kind, ENCRYPTED_MARKER))
    return tuple(checked)


def decode(raw_bytes: bytes, layout: AccountLayout = PAYROLL_JAR_LAYOUT) -> DecodedAccountRecord:
    """
    Decode raw account bytes against `layout`.

    Raises:
        MalformedAccount: buffer shorter than the layout header
        CiphertextLeak: strict mode and a plaintext field reads a ciphertext range
    """
    raw = bytes(raw_bytes)
    need = layout.min_length
    if len(raw) < need:
        raise MalformedAccount(
            f"Account data too short for {layout.name}: {len(raw)} < {need} bytes",
            length=len(raw),
            required=need,
        )

    cipher = _ciphertext_ranges(raw, layout)
    plain = tuple(
        PlaintextField(f.name, f.offset, f.length, f.kind, _read(f.kind, raw[f.offset:f.end]))
        for f in layout.plaintext
    )
    plain = _guard_plaintext(plain, cipher, layout.name)
    return DecodedAccountRecord(
        raw_bytes=raw,
        layout_name=layout.name,
        plaintext_fields=plain,
        ciphertext_fields=cipher,
    )


def encode_payroll_jar(
    owner: bytes,
    counterparty: bytes,
    salary_handle: bytes,
    accrued_handle: bytes,
    *,
    timestamp: int = 0,
    active: bool = True,
    discriminator: bytes = b"\x00" * 8,
    trailing: bytes = b"",
) -> bytes:
    """Build PAYROLL_JAR_LAYOUT bytes (fixtures, local demos)."""
    if len(owner) != 32 or len(counterparty) != 32:
        raise ValueError("owner and counterparty must be 32-byte public keys")
    if len(salary_handle) != 16 or len(accrued_handle) != 16 or len(discriminator) != 8:
        raise ValueError("handles must be 16 bytes and discriminator 8 bytes")
    return (
        discriminator
        + owner
        + counterparty
        + bytes([FLAG_ACTIVE if active else 0])
        + int(timestamp).to_bytes(8, "little", signed=True)
        + salary_handle
        + accrued_handle
        + trailing
    )


__all__ = [
    "ENCRYPTED_MARKER",
    "FieldSpec",
    "CiphertextSpec",
    "AccountLayout",
    "PAYROLL_JAR_LAYOUT",
    "PlaintextField",
    "CiphertextField",
    "DecodedAccountRecord",
    "decode",
    "encode_payroll_jar",
]
