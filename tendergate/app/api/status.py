"""Operational endpoints: component status, cache clearing and IP blocks.

All routes here require the admin token.
"""

from typing import Any

from fastapi import APIRouter, Depends, Request

from tendergate.app.api.deps import get_gate
from tendergate.app.core.logging import get_logger
from tendergate.app.middleware.auth import require_admin

router = APIRouter(prefix="/api", tags=["admin"], dependencies=[Depends(require_admin)])
logger = get_logger(__name__)


@router.get("/status")
async def pipeline_status(request: Request) -> dict[str, Any]:
    """Limiter, breaker, cache and queue state plus security gate stats."""
    pipeline = request.app.state.pipeline
    return {
        "configured": pipeline is not None,
        "pipeline": pipeline.get_status() if pipeline is not None else None,
        "security": get_gate(request).get_stats(),
        "pdf_cache": request.app.state.pdf_cache.get_stats(),
    }


@router.post("/admin/cache/clear")
async def clear_cache(request: Request) -> dict[str, Any]:
    pipeline = request.app.state.pipeline
    if pipeline is not None:
        pipeline.clear_cache()
    request.app.state.pdf_cache.clear()
    return {"success": True}


@router.post("/admin/blocked-ips/{ip}")
async def block_ip(ip: str, request: Request) -> dict[str, Any]:
    get_gate(request).block_ip(ip)
    return {"success": True, "ip": ip, "blocked": True}


@router.delete("/admin/blocked-ips/{ip}")
async def unblock_ip(ip: str, request: Request) -> dict[str, Any]:
    get_gate(request).unblock_ip(ip)
    return {"success": True, "ip": ip, "blocked": False}
