"""
Vault registry: which confidential account holds an identity's balance for a mint.

Keyed by (owner identity, asset mint). Registration is last-write-wins with no
merge and no ledger validation; a bad address surfaces later when the account
fetch fails. An unknown key resolves to None ("no vault yet"), which callers
display as a normal state.

The active identity's entry is cached in memory; the store is the durable copy.
"""
from __future__ import annotations

import copy
from typing import Any, Dict, FrozenSet, Optional

from vaultview.api.logging_config import get_logger
from vaultview.registry.stores import VaultStore, empty_entry

logger = get_logger("registry")


def _short(pk: str, n: int = 6) -> str:
    return pk if len(pk) <= 2 * n else f"{pk[:n]}...{pk[-n:]}"


class VaultRegistry:
    def __init__(self, store: VaultStore, identity: Optional[str] = None):
        self.store = store
        self._active: Optional[str] = None
        self._cache: Dict[str, Any] = empty_entry()
        if identity:
            self.activate(identity)

    # ---- lifecycle ----
    @property
    def active_identity(self) -> Optional[str]:
        return self._active

    def activate(self, identity: str) -> None:
        if not identity:
            raise ValueError("identity is required")
        self._active = identity
        self._cache = self.store.load(identity)
        logger.info(f"Vault registry loaded for {_short(identity)} ({len(self._cache['vaults'])} vaults)")

    def deactivate(self) -> None:
        self._active = None
        self._cache = empty_entry()

    def forget(self, identity: str) -> None:
        """Drop every mapping stored for `identity`."""
        self.store.clear(identity)
        if identity == self._active:
            self._cache = empty_entry()

    def _entry(self, identity: str) -> Dict[str, Any]:
        if identity == self._active:
            return self._cache
        return self.store.load(identity)

    def _draft(self, identity: str) -> Dict[str, Any]:
        # Edits go to a copy; the cache only changes once the store accepted them.
        return copy.deepcopy(self._entry(identity))

    def _persist(self, identity: str, entry: Dict[str, Any]) -> None:
        self.store.save(identity, entry)
        if identity == self._active:
            self._cache = self.store.load(identity)

    # ---- vaults ----
    def register(self, owner_identity: str, asset_mint: str, account_address: str) -> None:
        if not owner_identity or not account_address:
            raise ValueError("owner_identity and account_address are required")
        entry = self._draft(owner_identity)
        prev = entry["vaults"].get(asset_mint)
        entry["vaults"][asset_mint] = account_address
        self._persist(owner_identity, entry)
        if prev and prev != account_address:
            logger.info(f"Vault for {_short(owner_identity)} mint={_short(asset_mint)} replaced")
        else:
            logger.info(f"Vault registered for {_short(owner_identity)} mint={_short(asset_mint)}")

    def resolve(self, owner_identity: str, asset_mint: str) -> Optional[str]:
        if not owner_identity:
            return None
        return self._entry(owner_identity)["vaults"].get(asset_mint)

    def vaults(self, owner_identity: str) -> Dict[str, str]:
        return dict(self._entry(owner_identity)["vaults"])

    # ---- viewers ----
    def grant_viewer(self, owner_identity: str, asset_mint: str, viewer: str) -> None:
        entry = self._draft(owner_identity)
        current = set(entry["viewers"].get(asset_mint) or [])
        current.add(viewer)
        entry["viewers"][asset_mint] = sorted(current)
        self._persist(owner_identity, entry)
        logger.info(f"Viewer {_short(viewer)} granted on {_short(owner_identity)} mint={_short(asset_mint)}")

    def revoke_viewer(self, owner_identity: str, asset_mint: str, viewer: str) -> None:
        entry = self._draft(owner_identity)
        current = set(entry["viewers"].get(asset_mint) or [])
        if viewer not in current:
            return
        current.discard(viewer)
        entry["viewers"][asset_mint] = sorted(current)
        self._persist(owner_identity, entry)
        logger.info(f"Viewer {_short(viewer)} revoked on {_short(owner_identity)} mint={_short(asset_mint)}")

    def granted_viewers(self, owner_identity: str, asset_mint: str) -> FrozenSet[str]:
        if not owner_identity:
            return frozenset()
        return frozenset(self._entry(owner_identity)["viewers"].get(asset_mint) or [])


__all__ = ["VaultRegistry"]
