# registry/stores.py
from __future__ import annotations

import copy
import json
import os
import tempfile
from pathlib import Path
from typing import Any, Dict, Protocol

from vaultview import config
from vaultview.api.logging_config import get_logger

logger = get_logger("registry.store")


def empty_entry() -> Dict[str, Any]:
    return {"vaults": {}, "viewers": {}}


def _normalize(entry: Any) -> Dict[str, Any]:
    if not isinstance(entry, dict):
        return empty_entry()
    vaults = entry.get("vaults") if isinstance(entry.get("vaults"), dict) else {}
    viewers = entry.get("viewers") if isinstance(entry.get("viewers"), dict) else {}
    return {
        "vaults": {str(k): str(v) for k, v in vaults.items() if v},
        "viewers": {str(k): sorted({str(x) for x in (v or [])}) for k, v in viewers.items()},
    }


class VaultStore(Protocol):
    def load(self, identity: str) -> Dict[str, Any]: ...

    def save(self, identity: str, entry: Dict[str, Any]) -> None: ...

    def clear(self, identity: str) -> None: ...


class InMemoryVaultStore:
    """Process-local store for tests and throwaway sessions."""

    def __init__(self) -> None:
        self._data: Dict[str, Dict[str, Any]] = {}

    def load(self, identity: str) -> Dict[str, Any]:
        return copy.deepcopy(self._data.get(identity) or empty_entry())

    def save(self, identity: str, entry: Dict[str, Any]) -> None:
        self._data[identity] = _normalize(entry)

    def clear(self, identity: str) -> None:
        self._data.pop(identity, None)


class JsonFileVaultStore:
    """
    Durable per-identity vault map in a single JSON file:

        {"<owner pubkey>": {"vaults": {"<mint>": "<account>"},
                            "viewers": {"<mint>": ["<viewer pubkey>", ...]}}}

    Every save rewrites the whole file through a temp file + rename.
    """

    def __init__(self, path: str | os.PathLike | None = None):
        self.path = Path(path or config.VAULT_REGISTRY_PATH)

    def _read_all(self) -> Dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8") or "{}")
        except json.JSONDecodeError as e:
            logger.error(f"Vault registry file {self.path} is not valid JSON: {e}")
            raise
        return raw if isinstance(raw, dict) else {}

    def _write_all(self, st: Dict[str, Any]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(prefix=".vault_registry.", dir=str(self.path.parent))
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(st, f, indent=2, sort_keys=True)
            os.replace(tmp, self.path)
        except BaseException:
            try:
                os.unlink(tmp)
            except FileNotFoundError:
                pass
            raise

    def load(self, identity: str) -> Dict[str, Any]:
        return _normalize(self._read_all().get(identity))

    def save(self, identity: str, entry: Dict[str, Any]) -> None:
        st = self._read_all()
        st[identity] = _normalize(entry)
        self._write_all(st)

    def clear(self, identity: str) -> None:
        st = self._read_all()
        if st.pop(identity, None) is not None:
            self._write_all(st)


__all__ = ["VaultStore", "InMemoryVaultStore", "JsonFileVaultStore", "empty_entry"]
