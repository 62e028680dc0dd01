# crypto_core/hexdump.py
from __future__ import annotations

from vaultview import config

TRUNCATION_MARKER = "... (truncated"


def hex_dump(raw: bytes, row_width: int | None = None, max_bytes: int | None = None) -> str:
    """
    Render raw account bytes as offset-prefixed hex rows for the audit view.

        0000: 0a 1b 2c ...
        0010: ...
        ... (truncated, 42 more bytes)

    Only the rendering is truncated; callers keep the full buffer.
    """
    width = int(row_width or config.HEXDUMP_ROW_WIDTH)
    limit = int(config.HEXDUMP_MAX_BYTES if max_bytes is None else max_bytes)
    if width <= 0:
        raise ValueError("row_width must be > 0")
    if limit < 0:
        raise ValueError("max_bytes must be >= 0")

    shown = bytes(raw[:limit])
    lines = []
    for off in range(0, len(shown), width):
        chunk = shown[off:off + width]
        lines.append(f"{off:04x}: " + " ".join(f"{b:02x}" for b in chunk))

    hidden = len(raw) - len(shown)
    if hidden > 0:
        lines.append(f"{TRUNCATION_MARKER}, {hidden} more bytes)")
    return "\n".join(lines)


def is_truncated(dump: str) -> bool:
    return any(line.startswith(TRUNCATION_MARKER) for line in dump.splitlines())
