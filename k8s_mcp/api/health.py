"""Health, readiness and metrics endpoints."""

from typing import Any

import structlog
from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse, PlainTextResponse
from pydantic import BaseModel

from k8s_mcp import __version__
from k8s_mcp.api.deps import get_server
from k8s_mcp.mcp.server import KubernetesMCPServer

logger = structlog.get_logger()
router = APIRouter()


class HealthResponse(BaseModel):
    """Health check response model."""

    status: str
    kubernetes: dict[str, Any]
    server: dict[str, Any]
    security: dict[str, Any]
    metrics: dict[str, Any]


@router.get("/health", response_model=HealthResponse)
async def health_check(server: KubernetesMCPServer = Depends(get_server)) -> Any:
    """Health check endpoint; 503 when the cluster is unreachable."""
    report = await server.health_check()
    body = HealthResponse(
        status="healthy" if report["healthy"] else "unhealthy",
        kubernetes=report["kubernetes"],
        server=report["server"],
        security=report["security"],
        metrics=report["metrics"],
    )
    if not report["healthy"]:
        logger.warning("health_check_unhealthy", message=report["kubernetes"].get("message"))
        return JSONResponse(status_code=503, content=body.model_dump())
    return body


@router.get("/ready")
async def readiness_check(server: KubernetesMCPServer = Depends(get_server)) -> dict:
    """Ready once the cluster connection is established."""
    return {"ready": server.k8s.is_available}


@router.get("/metrics", response_class=PlainTextResponse)
async def metrics(server: KubernetesMCPServer = Depends(get_server)) -> str:
    """Request metrics in Prometheus text format."""
    return server.metrics.export_prometheus()


@router.get("/")
async def root(server: KubernetesMCPServer = Depends(get_server)) -> dict:
    """Root endpoint."""
    return {
        "name": server.settings.server_name,
        "version": __version__,
        "status": "running",
        "transport": server.settings.mcp_transport,
    }
