# vaultview/config.py
from __future__ import annotations

import os
import pathlib
from decimal import Decimal

# ===== Paths =====
REPO_ROOT = str(pathlib.Path(__file__).resolve().parents[1])
DATA_DIR = os.getenv("DATA_DIR", os.path.join(REPO_ROOT, "data"))

# Durable vault registry (identity -> mint -> account address)
VAULT_REGISTRY_PATH = os.getenv("VAULT_REGISTRY_PATH", os.path.join(DATA_DIR, "vault_registry.json"))

# ===== Ledger =====
SOLANA_RPC_URL = os.getenv("SOLANA_RPC_URL", "https://api.devnet.solana.com")
HELIUS_API_BASE = os.getenv("HELIUS_API_BASE", "https://api-devnet.helius.xyz")
HELIUS_API_KEY = os.getenv("HELIUS_API_KEY", "")

# Payroll program whose transactions feed the audit view
PROGRAM_ID = os.getenv("PROGRAM_ID", "8rgMVbSHkTyEu6K5J2pdmYDxH4HpvYVHcV8Mq1U7QzVt")
DEFAULT_ASSET_MINT = os.getenv("DEFAULT_ASSET_MINT", "")

# ===== Oracle =====
ORACLE_URL = os.getenv("ORACLE_URL", "http://127.0.0.1:8090")
ORACLE_TIMEOUT_SEC: float = float(os.getenv("ORACLE_TIMEOUT_SEC", "15"))

# ===== HTTP =====
HTTP_TIMEOUT_SEC: float = float(os.getenv("HTTP_TIMEOUT_SEC", "5"))
MAX_RETRIES: int = int(os.getenv("MAX_RETRIES", "3"))
RETRY_BASE_DELAY_SEC: float = float(os.getenv("RETRY_BASE_DELAY_SEC", "1.0"))

# ===== Audit feed =====
# Synthetic rows keep the demo view populated when the ledger is unreachable.
AUDIT_SYNTHETIC_FALLBACK: bool = os.getenv("AUDIT_SYNTHETIC_FALLBACK", "1") == "1"
MAX_AUDIT_LIMIT: int = int(os.getenv("MAX_AUDIT_LIMIT", "100"))

# ===== Display =====
HEXDUMP_ROW_WIDTH: int = int(os.getenv("HEXDUMP_ROW_WIDTH", "16"))
HEXDUMP_MAX_BYTES: int = int(os.getenv("HEXDUMP_MAX_BYTES", "128"))
AMOUNT_QUANTUM = Decimal("0.000000001")

# ===== Privacy =====
STRICT_PRIVACY: bool = os.getenv("VAULTVIEW_STRICT_PRIVACY", "0") == "1"

# ===== Logging =====
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_JSON: bool = os.getenv("LOG_JSON", "0") == "1"
LOG_FILE = os.getenv("LOG_FILE", "")


def strict_privacy() -> bool:
    """Re-read the strict flag so tests can flip it through the environment."""
    return os.getenv("VAULTVIEW_STRICT_PRIVACY", "1" if STRICT_PRIVACY else "0") == "1"
