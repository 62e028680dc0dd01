# vaultview/errors.py
from __future__ import annotations


class VaultViewError(RuntimeError):
    """Base class for every failure raised by the disclosure core and its adapters."""


class MalformedAccount(VaultViewError):
    """Raised when raw account bytes cannot be parsed against the expected layout."""

    def __init__(self, message: str, length: int = 0, required: int = 0):
        super().__init__(message)
        self.length = length
        self.required = required


class NotFound(VaultViewError):
    """Vault or account is absent. Core operations return None instead of raising this."""


class Unauthorized(VaultViewError):
    """Caller could not prove it may view the balance."""


class OracleUnauthorized(Unauthorized):
    """The decryption oracle rejected the authorization proof."""


class OracleError(VaultViewError):
    """Transient decryption oracle failure (bad response, unreachable, 5xx)."""


class LedgerUnavailable(VaultViewError):
    """Ledger-read client could not complete the call."""


class DisclosureInProgress(VaultViewError):
    """A disclosure is already in flight for this balance instance."""


class CiphertextLeak(AssertionError):
    """A ciphertext byte range surfaced in interpreted output."""


__all__ = [
    "VaultViewError",
    "MalformedAccount",
    "NotFound",
    "Unauthorized",
    "OracleUnauthorized",
    "OracleError",
    "LedgerUnavailable",
    "DisclosureInProgress",
    "CiphertextLeak",
]
