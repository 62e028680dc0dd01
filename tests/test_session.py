"""Tests for VaultSession: refresh ordering, identity switches, end-to-end disclosure."""

from __future__ import annotations

import asyncio
from decimal import Decimal

import pytest

from vaultview.audit.feed import AuditFeed
from vaultview.crypto_core.authorization import sign_disclosure
from vaultview.disclosure.session import FetchStatus, VaultSession
from vaultview.disclosure.state_machine import HIDDEN, DisclosureStatus, FailureReason
from vaultview.errors import LedgerUnavailable
from vaultview.registry.stores import InMemoryVaultStore
from vaultview.registry.vault_registry import VaultRegistry

FIELD = "accrued_balance"


def _make_session(ledger, oracle, mint, identity=None) -> VaultSession:
    registry = VaultRegistry(InMemoryVaultStore(), identity)
    audit = AuditFeed(ledger, "Program1111", synthetic_fallback=True, clock=lambda: 1_760_000_000)
    return VaultSession(registry, ledger, oracle, asset_mint=mint, audit=audit, oracle_timeout=1.0)


async def _loaded_session(ledger, oracle, mint, jar_address, jar_bytes, identity) -> VaultSession:
    s = _make_session(ledger, oracle, mint, identity)
    s.registry.register(identity, mint, jar_address)
    ledger.accounts[jar_address] = jar_bytes
    fetch = await s.refresh_account()
    assert fetch.status is FetchStatus.OK
    return s


class TestRefreshAccount:
    @pytest.mark.asyncio
    async def test_no_vault_is_a_normal_state(self, ledger, oracle, mint, owner_pub) -> None:
        s = _make_session(ledger, oracle, mint, owner_pub)
        fetch = await s.refresh_account()
        assert fetch.status is FetchStatus.NO_VAULT
        assert ledger.account_calls == 0

    @pytest.mark.asyncio
    async def test_no_identity_means_no_vault(self, ledger, oracle, mint) -> None:
        s = _make_session(ledger, oracle, mint)
        assert (await s.refresh_account()).status is FetchStatus.NO_VAULT

    @pytest.mark.asyncio
    async def test_ok(self, ledger, oracle, mint, jar_address, jar_bytes, owner_pub) -> None:
        s = await _loaded_session(ledger, oracle, mint, jar_address, jar_bytes, owner_pub)
        rec = s.record()
        assert rec is not None
        assert rec.owner == owner_pub

    @pytest.mark.asyncio
    async def test_account_missing_on_ledger(self, ledger, oracle, mint, jar_address, owner_pub) -> None:
        s = _make_session(ledger, oracle, mint, owner_pub)
        s.registry.register(owner_pub, mint, jar_address)
        fetch = await s.refresh_account()
        assert fetch.status is FetchStatus.NOT_FOUND
        assert fetch.address == jar_address

    @pytest.mark.asyncio
    async def test_malformed_account(self, ledger, oracle, mint, jar_address, owner_pub) -> None:
        s = _make_session(ledger, oracle, mint, owner_pub)
        s.registry.register(owner_pub, mint, jar_address)
        ledger.accounts[jar_address] = bytes(16)
        fetch = await s.refresh_account()
        assert fetch.status is FetchStatus.MALFORMED
        assert s.record() is None

    @pytest.mark.asyncio
    async def test_ledger_unavailable(self, ledger, oracle, mint, jar_address, owner_pub) -> None:
        s = _make_session(ledger, oracle, mint, owner_pub)
        s.registry.register(owner_pub, mint, jar_address)
        ledger.account_error = LedgerUnavailable("rpc down")
        fetch = await s.refresh_account()
        assert fetch.status is FetchStatus.UNAVAILABLE
        assert "rpc down" in fetch.error

    @pytest.mark.asyncio
    async def test_stale_response_is_discarded(self, ledger, oracle, mint, jar_address, jar_bytes, owner_pub) -> None:
        s = _make_session(ledger, oracle, mint, owner_pub)
        s.registry.register(owner_pub, mint, jar_address)
        ledger.accounts[jar_address] = bytes(16)
        gate = asyncio.Event()
        ledger.gates.append(gate)

        slow = asyncio.create_task(s.refresh_account())
        await asyncio.sleep(0)
        ledger.accounts[jar_address] = jar_bytes
        fresh = await s.refresh_account()
        gate.set()
        old = await slow

        assert fresh.status is FetchStatus.OK
        assert old.status is FetchStatus.STALE
        assert s.record() == fresh.record

    @pytest.mark.asyncio
    async def test_identity_switch_invalidates_refresh(self, ledger, oracle, mint, jar_address, jar_bytes, owner_pub, counterparty_pub) -> None:
        s = _make_session(ledger, oracle, mint, owner_pub)
        s.registry.register(owner_pub, mint, jar_address)
        ledger.accounts[jar_address] = jar_bytes
        gate = asyncio.Event()
        ledger.gates.append(gate)

        pending = asyncio.create_task(s.refresh_account())
        await asyncio.sleep(0)
        s.switch_identity(counterparty_pub)
        gate.set()

        assert (await pending).status is FetchStatus.STALE
        assert s.record() is None


class TestSessionDisclosure:
    @pytest.mark.asyncio
    async def test_disclose_and_hide(self, ledger, oracle, mint, jar_address, jar_bytes, owner_pub, owner_seed, accrued_handle) -> None:
        s = await _loaded_session(ledger, oracle, mint, jar_address, jar_bytes, owner_pub)

        result = await s.request_disclosure(FIELD, sign_disclosure(owner_seed, accrued_handle))
        assert result.value == Decimal("42.5")
        assert s.disclosure_state(FIELD).disclosed

        s.hide(FIELD)
        assert s.disclosure_state(FIELD) == HIDDEN

    @pytest.mark.asyncio
    async def test_request_before_refresh(self, ledger, oracle, mint, owner_pub, owner_seed, accrued_handle) -> None:
        s = _make_session(ledger, oracle, mint, owner_pub)
        result = await s.request_disclosure(FIELD, sign_disclosure(owner_seed, accrued_handle))
        assert result.reason is FailureReason.NO_RECORD
        assert oracle.calls == 0

    @pytest.mark.asyncio
    async def test_hide_unknown_field_is_noop(self, ledger, oracle, mint, owner_pub) -> None:
        s = _make_session(ledger, oracle, mint, owner_pub)
        s.hide(FIELD)
        assert s.disclosure_state(FIELD) == HIDDEN

    @pytest.mark.asyncio
    async def test_identity_switch_mid_disclosure(
        self, ledger, oracle, mint, jar_address, jar_bytes, owner_pub, counterparty_pub, owner_seed, accrued_handle
    ) -> None:
        s = await _loaded_session(ledger, oracle, mint, jar_address, jar_bytes, owner_pub)
        oracle.gate = asyncio.Event()
        pending = asyncio.create_task(s.request_disclosure(FIELD, sign_disclosure(owner_seed, accrued_handle)))
        for _ in range(10):
            await asyncio.sleep(0)
        assert s.disclosure_state(FIELD).status is DisclosureStatus.DISCLOSING

        s.switch_identity(counterparty_pub)
        s.registry.register(counterparty_pub, mint, jar_address)
        assert (await s.refresh_account()).status is FetchStatus.OK
        assert s.disclosure_state(FIELD) == HIDDEN

        oracle.gate.set()
        late = await pending
        assert late.status is DisclosureStatus.HIDDEN
        assert late.reason is FailureReason.SUPERSEDED
        assert s.disclosure_state(FIELD) == HIDDEN

    @pytest.mark.asyncio
    async def test_switch_to_same_identity_keeps_state(self, ledger, oracle, mint, jar_address, jar_bytes, owner_pub, owner_seed, accrued_handle) -> None:
        s = await _loaded_session(ledger, oracle, mint, jar_address, jar_bytes, owner_pub)
        await s.request_disclosure(FIELD, sign_disclosure(owner_seed, accrued_handle))
        s.switch_identity(owner_pub)
        assert s.disclosure_state(FIELD).disclosed

    @pytest.mark.asyncio
    async def test_sign_out_clears_everything(self, ledger, oracle, mint, jar_address, jar_bytes, owner_pub) -> None:
        s = await _loaded_session(ledger, oracle, mint, jar_address, jar_bytes, owner_pub)
        s.switch_identity(None)
        assert s.identity is None
        assert s.record() is None
        assert (await s.refresh_account()).status is FetchStatus.NO_VAULT

    @pytest.mark.asyncio
    async def test_granted_viewer_discloses_owner_balance(
        self, ledger, oracle, mint, jar_address, jar_bytes, owner_pub, stranger_pub, stranger_seed, accrued_handle
    ) -> None:
        s = await _loaded_session(ledger, oracle, mint, jar_address, jar_bytes, stranger_pub)
        proof = sign_disclosure(stranger_seed, accrued_handle)

        denied = await s.request_disclosure(FIELD, proof)
        assert denied.reason is FailureReason.UNAUTHORIZED

        s.registry.grant_viewer(owner_pub, mint, stranger_pub)
        allowed = await s.request_disclosure(FIELD, proof)
        assert allowed.value == Decimal("42.5")


class TestRefreshAudit:
    @pytest.mark.asyncio
    async def test_synthetic_audit_is_flagged(self, ledger, oracle, mint) -> None:
        ledger.tx_error = LedgerUnavailable("down")
        fetch = await _make_session(ledger, oracle, mint).refresh_audit(10)
        assert fetch.status is FetchStatus.OK
        assert fetch.synthetic
        assert len(fetch.entries) == 3

    @pytest.mark.asyncio
    async def test_real_audit(self, ledger, oracle, mint) -> None:
        ledger.transactions = [{"signature": "SigA", "timestamp": 5, "category": "deposit_dough"}]
        fetch = await _make_session(ledger, oracle, mint).refresh_audit(10)
        assert not fetch.synthetic
        assert [e.signature for e in fetch.entries] == ["SigA"]

    @pytest.mark.asyncio
    async def test_audit_unavailable_without_fallback(self, ledger, oracle, mint) -> None:
        s = _make_session(ledger, oracle, mint)
        s.audit = AuditFeed(ledger, "Program1111", synthetic_fallback=False)
        ledger.tx_error = LedgerUnavailable("down")
        fetch = await s.refresh_audit(10)
        assert fetch.status is FetchStatus.UNAVAILABLE

    @pytest.mark.asyncio
    async def test_stale_audit_response_is_discarded(self, ledger, oracle, mint) -> None:
        s = _make_session(ledger, oracle, mint)
        gate = asyncio.Event()
        ledger.tx_gates.append(gate)
        ledger.transactions = [{"signature": "SigOld", "timestamp": 1, "category": "deposit_dough"}]

        slow = asyncio.create_task(s.refresh_audit(10))
        for _ in range(5):
            await asyncio.sleep(0)
        assert len(ledger.tx_calls) == 1

        ledger.transactions = [{"signature": "SigNew", "timestamp": 2, "category": "get_dough"}]
        fresh = await s.refresh_audit(10)
        gate.set()
        old = await slow

        assert [e.signature for e in fresh.entries] == ["SigNew"]
        assert old.status is FetchStatus.STALE
        assert old.entries == ()

    @pytest.mark.asyncio
    async def test_identity_switch_invalidates_audit_refresh(self, ledger, oracle, mint, owner_pub, counterparty_pub) -> None:
        s = _make_session(ledger, oracle, mint, owner_pub)
        gate = asyncio.Event()
        ledger.tx_gates.append(gate)
        ledger.transactions = [{"signature": "SigA", "timestamp": 1, "category": "deposit_dough"}]

        pending = asyncio.create_task(s.refresh_audit(10))
        for _ in range(5):
            await asyncio.sleep(0)
        s.switch_identity(counterparty_pub)
        gate.set()

        assert (await pending).status is FetchStatus.STALE

    @pytest.mark.asyncio
    async def test_stale_audit_failure_is_not_reported(self, ledger, oracle, mint) -> None:
        s = _make_session(ledger, oracle, mint)
        s.audit = AuditFeed(ledger, "Program1111", synthetic_fallback=False)
        ledger.tx_error = LedgerUnavailable("down")
        gate = asyncio.Event()
        ledger.tx_gates.append(gate)

        slow = asyncio.create_task(s.refresh_audit(10))
        for _ in range(5):
            await asyncio.sleep(0)
        fresh = await s.refresh_audit(10)
        gate.set()
        old = await slow

        assert fresh.status is FetchStatus.UNAVAILABLE
        assert old.status is FetchStatus.STALE
        assert old.error is None
