"""Shared FastAPI dependencies."""

from fastapi import Header, HTTPException, Request

from k8s_mcp.mcp.server import KubernetesMCPServer
from k8s_mcp.security.policy import ANONYMOUS, SecurityContext


def get_server(request: Request) -> KubernetesMCPServer:
    """Return the MCP server attached to the running app."""
    server = getattr(request.app.state, "mcp_server", None)
    if server is None:
        raise HTTPException(status_code=503, detail="MCP server not initialized")
    return server


def get_security_context(
    request: Request,
    x_api_key: str | None = Header(None),
) -> SecurityContext:
    """
    Identify the caller.

    An X-API-Key header is authenticated against the policy engine; without
    one the client host is used, falling back to ``anonymous``.
    """
    server = get_server(request)
    if x_api_key is not None:
        context = server.policy.authenticate_api_key(x_api_key)
        if context is None:
            raise HTTPException(status_code=401, detail="Invalid API key")
        return context

    host = request.client.host if request.client else None
    if host:
        return SecurityContext(user_id=host, source="http")
    return SecurityContext(user_id=ANONYMOUS, source="http")
