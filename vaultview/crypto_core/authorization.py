# crypto_core/authorization.py
from __future__ import annotations

import hashlib
from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional

import base58
from nacl.exceptions import BadSignatureError
from nacl.signing import SigningKey, VerifyKey

from vaultview.api.logging_config import get_logger

if TYPE_CHECKING:
    from vaultview.crypto_core.account_decoder import DecodedAccountRecord
    from vaultview.registry.vault_registry import VaultRegistry

logger = get_logger("authorization")

CHALLENGE_PREFIX = b"vaultview-disclose-v1|"


@dataclass(frozen=True)
class AuthorizationProof:
    """Viewer public key (base58) and its Ed25519 signature over the disclosure challenge."""
    viewer: str
    signature_hex: str


def disclosure_challenge(handle: bytes) -> bytes:
    """Message a viewer signs to ask for one ciphertext handle to be disclosed."""
    return CHALLENGE_PREFIX + bytes(handle).hex().encode("ascii")


def _seed_from_secret(secret_key: bytes) -> bytes:
    # Solana keyfiles hold secret||public (64B); the signing seed is the first 32B
    if len(secret_key) == 64:
        return bytes(secret_key[:32])
    if len(secret_key) == 32:
        return bytes(secret_key)
    raise ValueError(f"secret key must be 32 or 64 bytes, got {len(secret_key)}")


def viewer_pubkey(secret_key: bytes) -> str:
    sk = SigningKey(_seed_from_secret(secret_key))
    return base58.b58encode(bytes(sk.verify_key)).decode("ascii")


def sign_disclosure(secret_key: bytes, handle: bytes) -> AuthorizationProof:
    sk = SigningKey(_seed_from_secret(secret_key))
    sig = sk.sign(disclosure_challenge(handle)).signature
    return AuthorizationProof(
        viewer=base58.b58encode(bytes(sk.verify_key)).decode("ascii"),
        signature_hex=sig.hex(),
    )


def verify_disclosure_proof(proof: AuthorizationProof, handle: bytes) -> bool:
    try:
        pub = base58.b58decode(proof.viewer)
        sig = bytes.fromhex(proof.signature_hex)
    except ValueError:
        return False
    if len(pub) != 32 or len(sig) != 64:
        return False
    try:
        VerifyKey(pub).verify(disclosure_challenge(handle), sig)
        return True
    except BadSignatureError:
        return False


def proof_fingerprint(proof: AuthorizationProof) -> str:
    """Short digest safe to log in place of the signature."""
    return hashlib.sha256(proof.signature_hex.encode("utf-8")).hexdigest()[:12]


class RecordAuthorizer:
    """
    Decides whether a proof entitles its viewer to disclose a field of a record.

    The viewer must be the record owner, its counterparty, or a viewer granted
    for that owner through the vault registry, and the signature must verify
    over the field's ciphertext handle.
    """

    def __init__(self, registry: Optional["VaultRegistry"] = None, asset_mint: str = ""):
        self.registry = registry
        self.asset_mint = asset_mint

    def allowed_viewers(self, record: "DecodedAccountRecord") -> set[str]:
        allowed = {v for v in (record.owner, record.counterparty) if v}
        if self.registry is not None and record.owner:
            allowed |= set(self.registry.granted_viewers(record.owner, self.asset_mint))
        return allowed

    def __call__(self, record: "DecodedAccountRecord", field_name: str, proof: Optional[AuthorizationProof]) -> bool:
        if proof is None or not record.has_ciphertext(field_name):
            return False
        if proof.viewer not in self.allowed_viewers(record):
            logger.info(f"Viewer {proof.viewer[:8]}... is not a party of this account")
            return False
        if not verify_disclosure_proof(proof, record.ciphertext_handle(field_name)):
            logger.warning(f"Invalid disclosure signature from {proof.viewer[:8]}... (proof {proof_fingerprint(proof)})")
            return False
        return True


__all__ = [
    "AuthorizationProof",
    "disclosure_challenge",
    "sign_disclosure",
    "verify_disclosure_proof",
    "viewer_pubkey",
    "proof_fingerprint",
    "RecordAuthorizer",
]
