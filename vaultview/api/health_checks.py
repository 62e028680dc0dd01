"""
Health check helpers for the display API
"""
import time
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import httpx
import psutil

from vaultview.api.logging_config import get_logger

logger = get_logger("health")

# Track API startup time
API_START_TIME = time.time()


async def check_rpc_health(rpc_url: str, transport: Optional[httpx.AsyncBaseTransport] = None) -> Dict[str, Any]:
    """
    Probe the Solana RPC with getHealth.

    Returns:
        dict with status, response_time_ms, and error (if any)
    """
    start = time.time()
    try:
        async with httpx.AsyncClient(timeout=5.0, transport=transport) as client:
            response = await client.post(
                rpc_url,
                json={"jsonrpc": "2.0", "id": 1, "method": "getHealth"},
            )
            response.raise_for_status()
    except httpx.HTTPError as e:
        logger.error(f"RPC health check failed: {e}")
        return {"status": "unhealthy", "error": str(e), "rpc_url": rpc_url}

    return {
        "status": "healthy",
        "response_time_ms": round((time.time() - start) * 1000, 2),
        "rpc_url": rpc_url,
    }


def get_system_metrics() -> Dict[str, Any]:
    """CPU, memory and disk usage."""
    memory = psutil.virtual_memory()
    disk = psutil.disk_usage("/")
    return {
        "cpu": {"usage_percent": round(psutil.cpu_percent(interval=0.1), 2)},
        "memory": {
            "usage_percent": round(memory.percent, 2),
            "used_mb": round(memory.used / (1024 * 1024), 2),
            "total_mb": round(memory.total / (1024 * 1024), 2),
        },
        "disk": {
            "usage_percent": round(disk.percent, 2),
            "used_gb": round(disk.used / (1024 ** 3), 2),
            "total_gb": round(disk.total / (1024 ** 3), 2),
        },
    }


def get_uptime() -> Dict[str, Any]:
    uptime_seconds = time.time() - API_START_TIME
    minutes = uptime_seconds / 60
    hours = minutes / 60
    days = hours / 24

    if days >= 1:
        formatted = f"{int(days)}d {int(hours % 24)}h"
    elif hours >= 1:
        formatted = f"{int(hours)}h {int(minutes % 60)}m"
    else:
        formatted = f"{int(minutes)}m {int(uptime_seconds % 60)}s"

    return {"uptime_seconds": round(uptime_seconds, 2), "uptime_formatted": formatted}


async def comprehensive_health_check(
    rpc_url: Optional[str] = None,
    oracle_url: Optional[str] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> Dict[str, Any]:
    """
    Overall status plus per-component checks.

    The oracle is reported by URL only; probing it would need a signed request.
    """
    checks: Dict[str, Any] = {}

    if rpc_url:
        checks["rpc"] = await check_rpc_health(rpc_url, transport=transport)
    else:
        checks["rpc"] = {"status": "not_configured"}

    checks["oracle"] = {"status": "configured", "url": oracle_url} if oracle_url else {"status": "not_configured"}
    checks["system"] = get_system_metrics()
    checks["uptime"] = get_uptime()

    healthy = checks["rpc"].get("status") in ("healthy", "not_configured")
    return {
        "status": "healthy" if healthy else "unhealthy",
        "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
        "checks": checks,
    }
