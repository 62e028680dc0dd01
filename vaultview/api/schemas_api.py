from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Annotated, Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, PlainSerializer, conint

# Decimals travel as strings so no float rounding reaches the client.
DecimalStr = Annotated[Decimal, PlainSerializer(lambda d: str(d), return_type=str, when_used="json")]


class _DecimalAsStr(BaseModel):
    model_config = ConfigDict(
        str_strip_whitespace=True,
        from_attributes=True,
        extra="ignore",
    )


class Ok(_DecimalAsStr):
    status: str = Field("ok", description="Fixed OK status for successful responses.")


# ===== Session =====
class IdentityReq(_DecimalAsStr):
    identity: Optional[str] = Field(None, description="Viewer public key (base58); null signs out.")


class IdentityRes(Ok):
    identity: Optional[str] = Field(None, description="Active identity after the switch.")


# ===== Vault registry =====
class RegisterVaultReq(_DecimalAsStr):
    owner: str = Field(..., min_length=1, description="Owner public key (base58)")
    asset_mint: str = Field(..., description="Confidential token mint")
    account_address: str = Field(..., min_length=1, description="Vault token account address")


class VaultRes(Ok):
    owner: str
    asset_mint: str
    account_address: str


# ===== Accounts =====
class PlaintextFieldOut(_DecimalAsStr):
    name: str
    offset: conint(ge=0)
    length: conint(ge=0)
    value: Any = Field(..., description="Decoded value (pubkeys base58, integers, hex for opaque bytes)")


class CiphertextFieldOut(_DecimalAsStr):
    name: str
    offset: conint(ge=0)
    length: conint(ge=0)
    display: str = Field(..., description="Always the encrypted marker; the handle is never returned.")


class AccountRes(Ok):
    fetch_status: str = Field(..., description="ok")
    asset_mint: str
    address: str
    layout: str
    length: conint(ge=0) = Field(..., description="Raw account length in bytes")
    is_active: Optional[bool] = None
    interpreted: Dict[str, Any] = Field(..., description="Field name -> decoded value or encrypted marker")
    plaintext_fields: List[PlaintextFieldOut]
    ciphertext_fields: List[CiphertextFieldOut]
    hex_dump: str = Field(..., description="Offset-prefixed hex rows, capped for display")


# ===== Disclosure =====
class ProofIn(_DecimalAsStr):
    viewer: str = Field(..., description="Viewer public key (base58)")
    signature_hex: str = Field(..., description="Ed25519 signature over the disclosure challenge (hex)")


class DisclosureReq(_DecimalAsStr):
    field_name: str = Field(..., description="Ciphertext field, e.g. accrued_balance")
    asset_mint: Optional[str] = Field(None, description="Defaults to the session mint")
    proof: Optional[ProofIn] = None


class HideReq(_DecimalAsStr):
    field_name: str
    asset_mint: Optional[str] = None


class DisclosureRes(Ok):
    field_name: str
    disclosure_status: str = Field(..., description="hidden | disclosing | disclosed | failed")
    value: Optional[DecimalStr] = Field(None, description="Plaintext snapshot (string), only when disclosed")
    as_of: Optional[datetime] = Field(None, description="Time the snapshot was taken (UTC)")
    reason: Optional[str] = None


# ===== Audit =====
class AuditEntryOut(_DecimalAsStr):
    signature: str
    timestamp: int
    category: str
    description: str
    display_amount: str
    synthetic: bool


class AuditRes(Ok):
    entries: List[AuditEntryOut]
    synthetic: bool = Field(False, description="True when rows are placeholders, not ledger data")


__all__ = [
    "Ok",
    "IdentityReq", "IdentityRes",
    "RegisterVaultReq", "VaultRes",
    "PlaintextFieldOut", "CiphertextFieldOut", "AccountRes",
    "ProofIn", "DisclosureReq", "HideReq", "DisclosureRes",
    "AuditEntryOut", "AuditRes",
]
