# vaultview/api/app.py
from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Query, Request

from vaultview import config
from vaultview.api.health_checks import comprehensive_health_check
from vaultview.api.logging_config import correlation_id, get_logger, setup_logging
from vaultview.api.schemas_api import (
    AccountRes,
    AuditEntryOut,
    AuditRes,
    CiphertextFieldOut,
    DisclosureReq,
    DisclosureRes,
    HideReq,
    IdentityReq,
    IdentityRes,
    PlaintextFieldOut,
    RegisterVaultReq,
    VaultRes,
)
from vaultview.crypto_core.account_decoder import ENCRYPTED_MARKER
from vaultview.crypto_core.authorization import AuthorizationProof
from vaultview.disclosure.session import FetchStatus, VaultSession
from vaultview.disclosure.state_machine import DisclosureResult, DisclosureStatus, FailureReason
from vaultview.ledger.client import HttpLedgerClient
from vaultview.ledger.oracle import HttpDecryptionOracle
from vaultview.registry.stores import JsonFileVaultStore
from vaultview.registry.vault_registry import VaultRegistry

logger = get_logger("api")

router = APIRouter()

# =========================
# Status mapping
# =========================

_FETCH_HTTP = {
    FetchStatus.NO_VAULT: (404, "No vault registered for this identity and mint"),
    FetchStatus.NOT_FOUND: (404, "Vault account not found on the ledger"),
    FetchStatus.MALFORMED: (502, "Vault account data is malformed"),
    FetchStatus.UNAVAILABLE: (502, "Ledger unavailable"),
    FetchStatus.STALE: (409, "Superseded by a newer refresh"),
}

_REASON_HTTP = {
    FailureReason.UNAUTHORIZED: 403,
    FailureReason.DISCLOSURE_IN_PROGRESS: 409,
    FailureReason.ALREADY_DISCLOSED: 409,
    FailureReason.UNKNOWN_FIELD: 404,
    FailureReason.NO_RECORD: 409,
    FailureReason.ORACLE_ERROR: 502,
    FailureReason.TIMEOUT: 502,
}


def default_session() -> VaultSession:
    return VaultSession(
        VaultRegistry(JsonFileVaultStore()),
        HttpLedgerClient(),
        HttpDecryptionOracle(),
    )


# Session state lives on the event loop: routes and dependencies touching it are async.
async def get_session(request: Request) -> VaultSession:
    session = getattr(request.app.state, "session", None)
    if session is None:
        session = default_session()
        request.app.state.session = session
    return session


def _disclosure_res(field_name: str, r: DisclosureResult) -> DisclosureRes:
    return DisclosureRes(
        field_name=field_name,
        disclosure_status=r.status.value,
        value=r.value,
        as_of=r.as_of,
        reason=r.reason.value if r.reason else None,
    )


# =========================
# Session
# =========================

@router.post("/session/identity", response_model=IdentityRes)
async def switch_identity(req: IdentityReq, session: VaultSession = Depends(get_session)):
    session.switch_identity(req.identity or None)
    return IdentityRes(identity=session.identity)


# =========================
# Vault registry
# =========================

@router.post("/vaults/register", response_model=VaultRes)
async def register_vault(req: RegisterVaultReq, session: VaultSession = Depends(get_session)):
    try:
        session.registry.register(req.owner, req.asset_mint, req.account_address)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return VaultRes(owner=req.owner, asset_mint=req.asset_mint, account_address=req.account_address)


@router.get("/vaults/{owner}/{mint}", response_model=VaultRes)
async def resolve_vault(owner: str, mint: str, session: VaultSession = Depends(get_session)):
    addr = session.registry.resolve(owner, mint)
    if addr is None:
        raise HTTPException(status_code=404, detail="No vault registered for this identity and mint")
    return VaultRes(owner=owner, asset_mint=mint, account_address=addr)


# =========================
# Accounts
# =========================

@router.get("/account/{mint}", response_model=AccountRes)
async def get_account(mint: str, session: VaultSession = Depends(get_session)):
    if not session.identity:
        raise HTTPException(status_code=400, detail="No active identity")
    fetch = await session.refresh_account(mint)
    if fetch.status is not FetchStatus.OK:
        code, detail = _FETCH_HTTP[fetch.status]
        raise HTTPException(status_code=code, detail=detail)

    rec = fetch.record
    return AccountRes(
        fetch_status=fetch.status.value,
        asset_mint=mint,
        address=fetch.address,
        layout=rec.layout_name,
        length=len(rec.raw_bytes),
        is_active=rec.is_active,
        interpreted=rec.interpreted(),
        plaintext_fields=[
            PlaintextFieldOut(name=f.name, offset=f.offset, length=f.length, value=f.value)
            for f in rec.plaintext_fields
        ],
        ciphertext_fields=[
            CiphertextFieldOut(name=c.name, offset=c.offset, length=c.length, display=ENCRYPTED_MARKER)
            for c in rec.ciphertext_fields
        ],
        hex_dump=rec.hex_dump(),
    )


# =========================
# Disclosure
# =========================

@router.post("/disclosure/request", response_model=DisclosureRes)
async def request_disclosure(req: DisclosureReq, session: VaultSession = Depends(get_session)):
    proof = AuthorizationProof(req.proof.viewer, req.proof.signature_hex) if req.proof else None
    result = await session.request_disclosure(req.field_name, proof, req.asset_mint)
    if result.status is DisclosureStatus.FAILED and result.reason in _REASON_HTTP:
        raise HTTPException(status_code=_REASON_HTTP[result.reason], detail=result.reason.value)
    return _disclosure_res(req.field_name, result)


@router.post("/disclosure/hide", response_model=DisclosureRes)
async def hide_disclosure(req: HideReq, session: VaultSession = Depends(get_session)):
    session.hide(req.field_name, req.asset_mint)
    return _disclosure_res(req.field_name, session.disclosure_state(req.field_name, req.asset_mint))


@router.get("/disclosure/{field_name}", response_model=DisclosureRes)
async def disclosure_state(field_name: str, asset_mint: Optional[str] = Query(None), session: VaultSession = Depends(get_session)):
    return _disclosure_res(field_name, session.disclosure_state(field_name, asset_mint))


# =========================
# Audit
# =========================

@router.get("/audit/recent", response_model=AuditRes)
async def audit_recent(
    limit: int = Query(10, description="Rows to return (capped server-side)"),
    session: VaultSession = Depends(get_session),
):
    fetch = await session.refresh_audit(limit)
    if fetch.status is not FetchStatus.OK:
        code, detail = _FETCH_HTTP[fetch.status]
        raise HTTPException(status_code=code, detail=detail)
    return AuditRes(
        entries=[
            AuditEntryOut(
                signature=e.signature,
                timestamp=e.timestamp,
                category=e.category.value,
                description=e.description,
                display_amount=e.display_amount,
                synthetic=e.synthetic,
            )
            for e in fetch.entries
        ],
        synthetic=fetch.synthetic,
    )


# =========================
# Health
# =========================

@router.get("/health")
async def health():
    return await comprehensive_health_check(rpc_url=config.SOLANA_RPC_URL, oracle_url=config.ORACLE_URL)


def create_app(session: Optional[VaultSession] = None) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        setup_logging(config.LOG_LEVEL, config.LOG_JSON, config.LOG_FILE or None)
        logger.info("VaultView API started")
        yield
        current = getattr(app.state, "session", None)
        if current is not None:
            await current.aclose()

    app = FastAPI(title="VaultView API", version="0.1.0", lifespan=lifespan)
    app.state.session = session

    @app.middleware("http")
    async def _correlate(request: Request, call_next):
        with correlation_id(request.headers.get("x-correlation-id")) as cid:
            response = await call_next(request)
            response.headers["x-correlation-id"] = cid
            return response

    app.include_router(router)
    return app


app = create_app()
