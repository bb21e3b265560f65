"""Main application entry point."""

import asyncio
import sys
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI

from k8s_mcp import __version__
from k8s_mcp.api import health_router, streaming_router
from k8s_mcp.config import Settings, get_settings
from k8s_mcp.errors import KubernetesMCPError
from k8s_mcp.mcp.server import KubernetesMCPServer
from k8s_mcp.utils import configure_logging

logger = structlog.get_logger()


def create_app(server: KubernetesMCPServer) -> FastAPI:
    """Build the http-chunked application around ``server``."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("starting_application", transport="http-chunked")
        # the gateway stays up without a cluster; /health reports it
        await server.start(require_cluster=False)
        logger.info("application_started_successfully")

        yield

        logger.info("shutting_down_application")
        await server.shutdown()
        logger.info("application_shutdown_complete")

    app = FastAPI(
        title="Kubernetes MCP Server",
        description="Model Context Protocol server for Kubernetes clusters",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.mcp_server = server

    app.include_router(health_router, tags=["Health"])
    app.include_router(streaming_router, tags=["Tools"])
    return app


def run(settings: Settings | None = None) -> None:
    """Console entry point: serve on the configured transport."""
    settings = settings or get_settings()
    configure_logging(settings.log_level, settings.log_format)
    server = KubernetesMCPServer(settings)

    if settings.mcp_transport == "http-chunked":
        import uvicorn

        logger.info("http_chunked_server_starting", host=settings.api_host, port=settings.api_port)
        uvicorn.run(create_app(server), host=settings.api_host, port=settings.api_port, log_config=None)
        return

    try:
        asyncio.run(server.run_stdio())
    except KubernetesMCPError as e:
        logger.error("server_start_failed", error=e.message)
        sys.exit(1)
    except KeyboardInterrupt:
        logger.info("server_interrupted")


if __name__ == "__main__":
    run()
