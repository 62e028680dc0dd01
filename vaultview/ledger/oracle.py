# ledger/oracle.py
from __future__ import annotations

import asyncio
from decimal import Decimal, InvalidOperation
from typing import Dict, Iterable, Optional, Protocol, Set, Tuple

import httpx

from vaultview import config
from vaultview.api.logging_config import get_logger
from vaultview.crypto_core.authorization import AuthorizationProof, verify_disclosure_proof
from vaultview.errors import OracleError, OracleUnauthorized
from vaultview.ledger.retry import RetryExhausted, call_with_retry

logger = get_logger("oracle")


class DecryptionOracle(Protocol):
    """Turns a ciphertext handle into a plaintext amount for an authorized viewer."""

    async def decrypt(self, handle: bytes, proof: AuthorizationProof) -> Decimal: ...


class _Transient(Exception):
    pass


def _parse_amount(raw) -> Decimal:
    try:
        value = Decimal(str(raw))
    except (InvalidOperation, ValueError) as e:
        raise OracleError("Oracle returned a non-numeric plaintext") from e
    if not value.is_finite():
        raise OracleError("Oracle returned a non-finite plaintext")
    return value


class HttpDecryptionOracle:
    """
    Client for an attested-decrypt service.

    POST {base_url}/decrypt  {"handle": hex, "viewer": b58, "signature": hex}
      200 {"plaintext": "42.5"}   -> Decimal
      401/403                     -> OracleUnauthorized (never retried)
      429/5xx/transport errors    -> retried, then OracleError
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        *,
        timeout: Optional[float] = None,
        max_retries: Optional[int] = None,
        retry_base_delay: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = (base_url or config.ORACLE_URL).rstrip("/")
        self.max_retries = max_retries
        self.retry_base_delay = retry_base_delay
        self._client = httpx.AsyncClient(
            timeout=config.HTTP_TIMEOUT_SEC if timeout is None else timeout,
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def decrypt(self, handle: bytes, proof: AuthorizationProof) -> Decimal:
        payload = {"handle": bytes(handle).hex(), "viewer": proof.viewer, "signature": proof.signature_hex}

        async def _call() -> Decimal:
            resp = await self._client.post(f"{self.base_url}/decrypt", json=payload)
            if resp.status_code in (401, 403):
                raise OracleUnauthorized(f"Oracle denied disclosure (HTTP {resp.status_code})")
            if resp.status_code == 429 or resp.status_code >= 500:
                raise _Transient(f"Oracle HTTP {resp.status_code}")
            if resp.status_code >= 400:
                raise OracleError(f"Oracle rejected request: HTTP {resp.status_code}")
            try:
                body = resp.json()
            except ValueError as e:
                raise OracleError("Oracle returned invalid JSON") from e
            if not isinstance(body, dict) or "plaintext" not in body:
                raise OracleError("Oracle response missing plaintext")
            return _parse_amount(body["plaintext"])

        try:
            return await call_with_retry(
                _call,
                max_retries=self.max_retries,
                base_delay=self.retry_base_delay,
                description="Oracle decrypt",
                retry_on=(httpx.TransportError, _Transient),
            )
        except RetryExhausted as e:
            raise OracleError(str(e)) from e.last_error
        except httpx.HTTPError as e:
            raise OracleError(f"Oracle decrypt: {e}") from e


class LocalDecryptionOracle:
    """
    In-process oracle for demos and local runs.

    Holds plaintexts per handle together with the owner and viewers allowed to
    see them, and checks the proof signature over the handle before answering.
    """

    def __init__(self, delay: float = 0.0):
        self.delay = delay
        self.calls = 0
        self._values: Dict[bytes, Tuple[Decimal, str, Set[str]]] = {}

    def store(self, handle: bytes, amount: Decimal | str | float, owner: str, viewers: Iterable[str] = ()) -> None:
        self._values[bytes(handle)] = (Decimal(str(amount)), owner, set(viewers))

    def update(self, handle: bytes, amount: Decimal | str | float) -> None:
        _, owner, viewers = self._values[bytes(handle)]
        self._values[bytes(handle)] = (Decimal(str(amount)), owner, viewers)

    async def decrypt(self, handle: bytes, proof: AuthorizationProof) -> Decimal:
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        item = self._values.get(bytes(handle))
        if item is None:
            raise OracleError("Unknown ciphertext handle")
        amount, owner, viewers = item
        if proof.viewer != owner and proof.viewer not in viewers:
            logger.warning(f"Local oracle denied {proof.viewer[:8]}...: not a registered viewer")
            raise OracleUnauthorized("Viewer is not registered for this handle")
        if not verify_disclosure_proof(proof, handle):
            logger.warning(f"Local oracle denied {proof.viewer[:8]}...: bad proof signature")
            raise OracleUnauthorized("Invalid authorization proof")
        return amount


__all__ = ["DecryptionOracle", "HttpDecryptionOracle", "LocalDecryptionOracle"]
