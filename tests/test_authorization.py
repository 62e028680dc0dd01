"""Tests for disclosure proofs and the record authorizer."""

from __future__ import annotations

import pytest
from nacl.signing import SigningKey

from vaultview.crypto_core.authorization import (
    AuthorizationProof,
    RecordAuthorizer,
    disclosure_challenge,
    proof_fingerprint,
    sign_disclosure,
    verify_disclosure_proof,
    viewer_pubkey,
)
from vaultview.registry.stores import InMemoryVaultStore
from vaultview.registry.vault_registry import VaultRegistry


class TestProofs:
    def test_sign_then_verify(self, owner_seed, accrued_handle) -> None:
        proof = sign_disclosure(owner_seed, accrued_handle)
        assert proof.viewer == viewer_pubkey(owner_seed)
        assert verify_disclosure_proof(proof, accrued_handle)

    def test_proof_is_bound_to_handle(self, owner_seed, salary_handle, accrued_handle) -> None:
        proof = sign_disclosure(owner_seed, salary_handle)
        assert not verify_disclosure_proof(proof, accrued_handle)

    def test_solana_keyfile_secret_signs_with_same_key(self, owner_seed, accrued_handle) -> None:
        sk = SigningKey(owner_seed)
        keyfile_secret = bytes(sk) + bytes(sk.verify_key)
        assert sign_disclosure(keyfile_secret, accrued_handle) == sign_disclosure(owner_seed, accrued_handle)

    def test_bad_secret_length(self, accrued_handle) -> None:
        with pytest.raises(ValueError):
            sign_disclosure(bytes(31), accrued_handle)

    def test_garbage_proof_does_not_verify(self, owner_seed, accrued_handle) -> None:
        viewer = viewer_pubkey(owner_seed)
        assert not verify_disclosure_proof(AuthorizationProof(viewer, "zz"), accrued_handle)
        assert not verify_disclosure_proof(AuthorizationProof(viewer, "00" * 64), accrued_handle)
        assert not verify_disclosure_proof(AuthorizationProof("0OIl", "00" * 64), accrued_handle)

    def test_challenge_format(self) -> None:
        assert disclosure_challenge(b"\x01\x02") == b"vaultview-disclose-v1|0102"

    def test_fingerprint_hides_signature(self, owner_seed, accrued_handle) -> None:
        proof = sign_disclosure(owner_seed, accrued_handle)
        fp = proof_fingerprint(proof)
        assert len(fp) == 12
        assert fp not in proof.signature_hex


class TestRecordAuthorizer:
    def test_owner_and_counterparty_are_allowed(self, jar_record, owner_seed, counterparty_seed, accrued_handle) -> None:
        auth = RecordAuthorizer()
        assert auth(jar_record, "accrued_balance", sign_disclosure(owner_seed, accrued_handle))
        assert auth(jar_record, "accrued_balance", sign_disclosure(counterparty_seed, accrued_handle))

    def test_stranger_is_denied(self, jar_record, stranger_seed, accrued_handle) -> None:
        assert not RecordAuthorizer()(jar_record, "accrued_balance", sign_disclosure(stranger_seed, accrued_handle))

    def test_forged_signature_for_owner_is_denied(self, jar_record, owner_pub, stranger_seed, accrued_handle) -> None:
        stolen = sign_disclosure(stranger_seed, accrued_handle)
        forged = AuthorizationProof(owner_pub, stolen.signature_hex)
        assert not RecordAuthorizer()(jar_record, "accrued_balance", forged)

    def test_missing_proof_or_field(self, jar_record, owner_seed, accrued_handle) -> None:
        auth = RecordAuthorizer()
        assert not auth(jar_record, "accrued_balance", None)
        assert not auth(jar_record, "no_such_field", sign_disclosure(owner_seed, accrued_handle))

    def test_granted_viewer_is_allowed(self, jar_record, owner_pub, stranger_pub, stranger_seed, accrued_handle, mint) -> None:
        registry = VaultRegistry(InMemoryVaultStore())
        auth = RecordAuthorizer(registry, mint)
        proof = sign_disclosure(stranger_seed, accrued_handle)
        assert not auth(jar_record, "accrued_balance", proof)

        registry.grant_viewer(owner_pub, mint, stranger_pub)
        assert auth(jar_record, "accrued_balance", proof)

        registry.revoke_viewer(owner_pub, mint, stranger_pub)
        assert not auth(jar_record, "accrued_balance", proof)

    def test_grant_is_scoped_to_mint(self, jar_record, owner_pub, stranger_pub, stranger_seed, accrued_handle, mint) -> None:
        registry = VaultRegistry(InMemoryVaultStore())
        registry.grant_viewer(owner_pub, "OtherMint", stranger_pub)
        auth = RecordAuthorizer(registry, mint)
        assert not auth(jar_record, "accrued_balance", sign_disclosure(stranger_seed, accrued_handle))
