"""
One viewer session: the active identity, its decoded vault accounts, the
disclosure machine of every balance shown, and the audit feed.

Refreshes are last-request-wins. Each refresh takes a ticket before its first
await; a response whose ticket is no longer the latest for that mint (or that
arrives after an identity switch) is reported as STALE and not applied.
"""
from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Dict, Optional, Tuple

import httpx

from vaultview import config
from vaultview.api.logging_config import get_logger
from vaultview.audit.feed import AuditEntry, AuditFeed
from vaultview.crypto_core.account_decoder import PAYROLL_JAR_LAYOUT, AccountLayout, DecodedAccountRecord, decode
from vaultview.crypto_core.authorization import AuthorizationProof, RecordAuthorizer
from vaultview.disclosure.state_machine import (
    HIDDEN,
    DisclosureResult,
    DisclosureStateMachine,
    DisclosureStatus,
    FailureReason,
)
from vaultview.errors import LedgerUnavailable, MalformedAccount
from vaultview.ledger.client import LedgerReadClient
from vaultview.ledger.oracle import DecryptionOracle
from vaultview.registry.vault_registry import VaultRegistry

logger = get_logger("session")


class FetchStatus(str, enum.Enum):
    OK = "ok"
    NO_VAULT = "no_vault"
    NOT_FOUND = "not_found"
    MALFORMED = "malformed"
    UNAVAILABLE = "unavailable"
    STALE = "stale"


@dataclass(frozen=True)
class AccountFetch:
    status: FetchStatus
    asset_mint: str
    address: Optional[str] = None
    record: Optional[DecodedAccountRecord] = None
    error: Optional[str] = None


@dataclass(frozen=True)
class AuditFetch:
    status: FetchStatus
    entries: Tuple[AuditEntry, ...] = ()
    error: Optional[str] = None

    @property
    def synthetic(self) -> bool:
        return any(e.synthetic for e in self.entries)


class VaultSession:
    def __init__(
        self,
        registry: VaultRegistry,
        ledger: LedgerReadClient,
        oracle: DecryptionOracle,
        *,
        asset_mint: Optional[str] = None,
        layout: AccountLayout = PAYROLL_JAR_LAYOUT,
        audit: Optional[AuditFeed] = None,
        program_address: Optional[str] = None,
        oracle_timeout: Optional[float] = None,
    ):
        self.registry = registry
        self.ledger = ledger
        self.oracle = oracle
        self.asset_mint = config.DEFAULT_ASSET_MINT if asset_mint is None else asset_mint
        self.layout = layout
        self.audit = audit or AuditFeed(ledger, program_address)
        self.oracle_timeout = oracle_timeout

        self._epoch = 0
        self._account_tickets: Dict[str, int] = {}
        self._audit_ticket = 0
        self._records: Dict[str, Tuple[str, DecodedAccountRecord]] = {}
        self._machines: Dict[Tuple[str, str, str], DisclosureStateMachine] = {}

    @property
    def identity(self) -> Optional[str]:
        return self.registry.active_identity

    # ---- identity ----
    def switch_identity(self, identity: Optional[str]) -> None:
        if identity == self.identity:
            return
        for m in self._machines.values():
            m.reset()
        self._machines.clear()
        self._records.clear()
        self._epoch += 1
        if identity:
            self.registry.activate(identity)
        else:
            self.registry.deactivate()
        logger.info(f"Session identity switched (epoch {self._epoch})")

    # ---- accounts ----
    def record(self, asset_mint: Optional[str] = None) -> Optional[DecodedAccountRecord]:
        item = self._records.get(self._mint(asset_mint))
        return item[1] if item else None

    def _mint(self, asset_mint: Optional[str]) -> str:
        return self.asset_mint if asset_mint is None else asset_mint

    async def refresh_account(self, asset_mint: Optional[str] = None) -> AccountFetch:
        mint = self._mint(asset_mint)
        ticket = self._account_tickets.get(mint, 0) + 1
        self._account_tickets[mint] = ticket
        epoch = self._epoch

        address = self.registry.resolve(self.identity or "", mint)
        if address is None:
            self._records.pop(mint, None)
            return AccountFetch(FetchStatus.NO_VAULT, mint)

        try:
            raw = await self.ledger.get_account_bytes(address)
        except (LedgerUnavailable, httpx.HTTPError) as e:
            if self._is_stale(mint, ticket, epoch):
                return AccountFetch(FetchStatus.STALE, mint, address)
            logger.warning(f"Account fetch failed for mint {mint[:8]}: {e}")
            return AccountFetch(FetchStatus.UNAVAILABLE, mint, address, error=str(e))

        if self._is_stale(mint, ticket, epoch):
            logger.info(f"Discarding stale account response for mint {mint[:8]} (ticket {ticket})")
            return AccountFetch(FetchStatus.STALE, mint, address)

        if raw is None:
            self._records.pop(mint, None)
            return AccountFetch(FetchStatus.NOT_FOUND, mint, address)

        try:
            rec = decode(raw, self.layout)
        except MalformedAccount as e:
            self._records.pop(mint, None)
            logger.warning(f"Malformed account {address[:8]}...: {e}")
            return AccountFetch(FetchStatus.MALFORMED, mint, address, error=str(e))

        self._records[mint] = (address, rec)
        return AccountFetch(FetchStatus.OK, mint, address, record=rec)

    def _is_stale(self, mint: str, ticket: int, epoch: int) -> bool:
        return epoch != self._epoch or self._account_tickets.get(mint) != ticket

    # ---- disclosure ----
    def _machine(self, address: str, field_name: str, mint: str) -> DisclosureStateMachine:
        key = (self.identity or "", address, field_name)
        m = self._machines.get(key)
        if m is None:
            m = DisclosureStateMachine(
                field_name,
                self.oracle,
                RecordAuthorizer(self.registry, mint),
                timeout=self.oracle_timeout,
            )
            self._machines[key] = m
        return m

    def machine(self, field_name: str, asset_mint: Optional[str] = None) -> Optional[DisclosureStateMachine]:
        mint = self._mint(asset_mint)
        item = self._records.get(mint)
        if item is None:
            return None
        return self._machines.get((self.identity or "", item[0], field_name))

    async def request_disclosure(
        self,
        field_name: str,
        proof: Optional[AuthorizationProof],
        asset_mint: Optional[str] = None,
    ) -> DisclosureResult:
        mint = self._mint(asset_mint)
        item = self._records.get(mint)
        if item is None:
            return DisclosureResult(DisclosureStatus.FAILED, reason=FailureReason.NO_RECORD)
        address, rec = item
        return await self._machine(address, field_name, mint).request_disclosure(rec, proof)

    def hide(self, field_name: str, asset_mint: Optional[str] = None) -> None:
        m = self.machine(field_name, asset_mint)
        if m is not None:
            m.hide()

    def disclosure_state(self, field_name: str, asset_mint: Optional[str] = None) -> DisclosureResult:
        m = self.machine(field_name, asset_mint)
        return m.state if m is not None else HIDDEN

    # ---- audit ----
    async def refresh_audit(self, limit: int = 10) -> AuditFetch:
        self._audit_ticket += 1
        ticket, epoch = self._audit_ticket, self._epoch
        try:
            entries = await self.audit.collect_recent(limit)
        except LedgerUnavailable as e:
            if ticket != self._audit_ticket or epoch != self._epoch:
                return AuditFetch(FetchStatus.STALE)
            return AuditFetch(FetchStatus.UNAVAILABLE, error=str(e))
        if ticket != self._audit_ticket or epoch != self._epoch:
            logger.info(f"Discarding stale audit response (ticket {ticket})")
            return AuditFetch(FetchStatus.STALE)
        return AuditFetch(FetchStatus.OK, tuple(entries))

    async def aclose(self) -> None:
        for c in (self.ledger, self.oracle):
            closer = getattr(c, "aclose", None)
            if closer is not None:
                await closer()


__all__ = ["FetchStatus", "AccountFetch", "AuditFetch", "VaultSession"]
