# ledger/client.py
from __future__ import annotations

import base64
import binascii
from typing import Any, Dict, List, Optional, Protocol

import httpx

from vaultview import config
from vaultview.api.logging_config import get_logger
from vaultview.errors import LedgerUnavailable
from vaultview.ledger.retry import RetryExhausted, call_with_retry

logger = get_logger("ledger")


class LedgerReadClient(Protocol):
    """Read side of the ledger. Failures are raised as LedgerUnavailable."""

    async def get_account_bytes(self, address: str) -> Optional[bytes]: ...

    async def get_recent_transactions(self, program_address: str, limit: int) -> List[Dict[str, Any]]: ...


class _Transient(Exception):
    """429/5xx or malformed transport answer worth another attempt."""


def _check_status(resp: httpx.Response, what: str) -> None:
    if resp.status_code == 429 or resp.status_code >= 500:
        raise _Transient(f"{what}: HTTP {resp.status_code}")
    if resp.status_code >= 400:
        raise LedgerUnavailable(f"{what}: HTTP {resp.status_code} {resp.text[:200]}")


class HttpLedgerClient:
    """
    Solana JSON-RPC + Helius enhanced-transactions reader.

    - account bytes: getAccountInfo (base64 encoding)
    - recent program transactions: Helius /v0/addresses/{program}/transactions
      when an API key is configured, getSignaturesForAddress otherwise
    """

    def __init__(
        self,
        rpc_url: Optional[str] = None,
        helius_api_base: Optional[str] = None,
        helius_api_key: Optional[str] = None,
        *,
        timeout: Optional[float] = None,
        max_retries: Optional[int] = None,
        retry_base_delay: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.rpc_url = rpc_url or config.SOLANA_RPC_URL
        self.helius_api_base = (helius_api_base or config.HELIUS_API_BASE).rstrip("/")
        self.helius_api_key = config.HELIUS_API_KEY if helius_api_key is None else helius_api_key
        self.max_retries = max_retries
        self.retry_base_delay = retry_base_delay
        self._client = httpx.AsyncClient(
            timeout=config.HTTP_TIMEOUT_SEC if timeout is None else timeout,
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _retrying(self, fn, description: str):
        try:
            return await call_with_retry(
                fn,
                max_retries=self.max_retries,
                base_delay=self.retry_base_delay,
                description=description,
                retry_on=(httpx.TransportError, _Transient),
            )
        except RetryExhausted as e:
            raise LedgerUnavailable(str(e)) from e.last_error
        except httpx.HTTPError as e:
            raise LedgerUnavailable(f"{description}: {e}") from e

    async def rpc(self, method: str, params: Optional[list] = None) -> Any:
        async def _call() -> Any:
            resp = await self._client.post(
                self.rpc_url,
                json={"jsonrpc": "2.0", "id": 1, "method": method, "params": params or []},
            )
            _check_status(resp, f"RPC {method}")
            try:
                body = resp.json()
            except ValueError as e:
                raise _Transient(f"RPC {method}: invalid JSON") from e
            if isinstance(body, dict) and body.get("error"):
                raise LedgerUnavailable(f"RPC {method} error: {body['error']}")
            return (body or {}).get("result")

        return await self._retrying(_call, f"RPC {method}")

    async def get_account_bytes(self, address: str) -> Optional[bytes]:
        result = await self.rpc("getAccountInfo", [address, {"encoding": "base64"}])
        value = (result or {}).get("value") if isinstance(result, dict) else None
        if not value:
            return None
        data = value.get("data")
        b64 = data[0] if isinstance(data, list) and data else data
        if not isinstance(b64, str):
            raise LedgerUnavailable(f"getAccountInfo returned unexpected data for {address}")
        try:
            return base64.b64decode(b64, validate=True)
        except (binascii.Error, ValueError) as e:
            raise LedgerUnavailable(f"getAccountInfo returned invalid base64 for {address}") from e

    async def get_recent_transactions(self, program_address: str, limit: int) -> List[Dict[str, Any]]:
        if limit <= 0:
            return []
        if self.helius_api_key:
            return await self._helius_transactions(program_address, limit)
        return await self._rpc_signatures(program_address, limit)

    async def _helius_transactions(self, program_address: str, limit: int) -> List[Dict[str, Any]]:
        url = f"{self.helius_api_base}/v0/addresses/{program_address}/transactions"

        async def _call() -> Any:
            resp = await self._client.get(url, params={"api-key": self.helius_api_key, "limit": limit})
            _check_status(resp, "Helius transactions")
            try:
                return resp.json()
            except ValueError as e:
                raise _Transient("Helius transactions: invalid JSON") from e

        rows = await self._retrying(_call, "Helius transactions")
        if not isinstance(rows, list):
            raise LedgerUnavailable("Helius transactions: expected a list")
        return [
            {
                "signature": r.get("signature"),
                "timestamp": r.get("timestamp"),
                "category": str(r.get("type") or "unknown"),
            }
            for r in rows
            if isinstance(r, dict)
        ]

    async def _rpc_signatures(self, program_address: str, limit: int) -> List[Dict[str, Any]]:
        rows = await self.rpc("getSignaturesForAddress", [program_address, {"limit": limit}])
        if not isinstance(rows, list):
            raise LedgerUnavailable("getSignaturesForAddress: expected a list")
        return [
            {
                "signature": r.get("signature"),
                "timestamp": r.get("blockTime"),
                "category": "unknown",
            }
            for r in rows
            if isinstance(r, dict)
        ]


__all__ = ["LedgerReadClient", "HttpLedgerClient"]
