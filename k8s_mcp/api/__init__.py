"""API package."""

from k8s_mcp.api.health import router as health_router
from k8s_mcp.api.streaming import router as streaming_router

__all__ = [
    "health_router",
    "streaming_router",
]
