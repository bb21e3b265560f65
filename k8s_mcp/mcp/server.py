"""
Kubernetes MCP server.

Wires the connector, access policy, registries, metrics and dispatcher
together and answers MCP JSON-RPC requests. The same instance backs the
stdio transport and the http-chunked gateway.
"""

import asyncio
from typing import Any, Awaitable, Callable

import structlog

from k8s_mcp.config import Settings
from k8s_mcp.errors import KubernetesMCPError, ValidationError
from k8s_mcp.k8s.client import KubernetesClient
from k8s_mcp.k8s.kubectl import KubectlTranslator
from k8s_mcp.mcp.dispatcher import RequestDispatcher
from k8s_mcp.mcp.prompts import KubernetesPrompts, PromptRegistry
from k8s_mcp.mcp.resources import KubernetesResources, ResourceRegistry
from k8s_mcp.mcp.stdio_transport import (
    INTERNAL_ERROR,
    METHOD_NOT_FOUND,
    StdioTransport,
    error_response,
)
from k8s_mcp.mcp.tool_handlers import KubernetesTools
from k8s_mcp.mcp.tools import ToolRegistry
from k8s_mcp.monitoring.metrics import MetricsRecorder
from k8s_mcp.security.policy import PolicyEngine, SecurityContext

logger = structlog.get_logger()

PROTOCOL_VERSION = "2024-11-05"

MethodHandler = Callable[[dict[str, Any], SecurityContext], Awaitable[dict[str, Any]]]


class KubernetesMCPServer:
    """
    MCP server for Kubernetes operations.

    Protocol methods:
    - initialize / ping
    - tools/list, tools/call
    - resources/list, resources/read
    - prompts/list, prompts/get
    """

    def __init__(self, settings: Settings, k8s: KubernetesClient | None = None) -> None:
        self.settings = settings
        self.server_info = {"name": settings.server_name, "version": settings.server_version}
        self.capabilities = {
            "tools": {"listChanged": False},
            "resources": {"subscribe": False, "listChanged": False},
            "prompts": {"listChanged": False},
        }
        self.initialized = False
        self.transport: StdioTransport | None = None

        self.k8s = k8s or KubernetesClient(settings)
        self.translator = KubectlTranslator(self.k8s)

        self.tools = ToolRegistry()
        self.tools.register_all(KubernetesTools(self.k8s, self.translator).descriptors())
        self.resources = ResourceRegistry()
        self.resources.register_all(KubernetesResources(self.k8s).descriptors())
        self.prompts = PromptRegistry()
        self.prompts.register_all(KubernetesPrompts(self.k8s).descriptors())

        self.policy = PolicyEngine(settings, destructive_tools=self.tools.destructive_names())
        self.metrics = MetricsRecorder(enabled=settings.enable_metrics)
        self.dispatcher = RequestDispatcher(
            settings,
            tools=self.tools,
            resources=self.resources,
            prompts=self.prompts,
            policy=self.policy,
            metrics=self.metrics,
            k8s=self.k8s,
        )

        self._methods: dict[str, MethodHandler] = {
            "initialize": self._handle_initialize,
            "ping": self._handle_ping,
            "tools/list": self._handle_tools_list,
            "tools/call": self._handle_tools_call,
            "resources/list": self._handle_resources_list,
            "resources/read": self._handle_resources_read,
            "prompts/list": self._handle_prompts_list,
            "prompts/get": self._handle_prompts_get,
        }
        self._housekeeping: asyncio.Task | None = None

        logger.info(
            "kubernetes_mcp_server_created",
            tools=len(self.tools),
            resources=len(self.resources),
            prompts=len(self.prompts),
        )

    # ── Lifecycle ──────────────────────────────────────────────────────────────

    async def start(self, require_cluster: bool = True) -> None:
        """
        Connect to the cluster and start background housekeeping.

        With ``require_cluster`` a connection failure is raised; otherwise it
        is logged and the server keeps running in a degraded state.
        """
        logger.info("starting_kubernetes_mcp_server", transport=self.settings.mcp_transport)
        try:
            await self.k8s.initialize()
        except KubernetesMCPError as e:
            if require_cluster:
                raise
            logger.warning("kubernetes_unavailable", error=e.message)

        if self._housekeeping is None:
            self._housekeeping = asyncio.create_task(self._housekeeping_loop())

    async def shutdown(self) -> None:
        logger.info("shutting_down_kubernetes_mcp_server")
        if self.transport is not None:
            self.transport.stop()
        if self._housekeeping is not None:
            self._housekeeping.cancel()
            try:
                await self._housekeeping
            except asyncio.CancelledError:
                pass
            self._housekeeping = None
        await self.k8s.cleanup()
        logger.info("kubernetes_mcp_server_stopped")

    async def run_stdio(self) -> None:
        """Serve JSON-RPC on stdin/stdout until EOF."""
        await self.start(require_cluster=True)
        self.transport = StdioTransport()
        try:
            await self.transport.start(self.handle_request)
        finally:
            await self.shutdown()

    async def _housekeeping_loop(self) -> None:
        while True:
            await asyncio.sleep(self.settings.rate_limit_window_seconds)
            self.policy.cleanup()

    async def health_check(self) -> dict[str, Any]:
        k8s_health = await self.k8s.health_check()
        return {
            "healthy": k8s_health.healthy and self.policy.is_healthy(),
            "kubernetes": k8s_health.to_dict(),
            "server": {
                **self.server_info,
                "transport": self.settings.mcp_transport,
                "tools": len(self.tools),
                "resources": len(self.resources),
                "prompts": len(self.prompts),
            },
            "security": self.policy.get_stats(),
            "metrics": self.metrics.get_health_metrics(),
        }

    # ── JSON-RPC ───────────────────────────────────────────────────────────────

    async def handle_request(
        self,
        request: dict[str, Any],
        context: SecurityContext | None = None,
    ) -> dict[str, Any] | None:
        """
        Handle one JSON-RPC request.

        Returns None for notifications. Errors from ``k8s_mcp.errors`` keep
        their code and message; anything else is reported as an internal
        error without details.
        """
        method = request.get("method")
        params = request.get("params") or {}
        request_id = request.get("id")
        context = context or SecurityContext(user_id="stdio", source="stdio")

        if "id" not in request:
            logger.debug("notification_received", method=method)
            return None

        logger.debug("handling_request", method=method, id=request_id)

        handler = self._methods.get(method) if isinstance(method, str) else None
        if handler is None:
            return error_response(request_id, METHOD_NOT_FOUND, f"Method not found: {method}")

        try:
            result = await handler(params, context)
        except KubernetesMCPError as e:
            logger.warning("request_failed", method=method, code=e.code, error=e.message)
            return error_response(request_id, e.code, e.message)
        except Exception as e:
            logger.error("request_handling_error", method=method, error=str(e), error_type=type(e).__name__)
            return error_response(request_id, INTERNAL_ERROR, "Internal error")

        return {"jsonrpc": "2.0", "id": request_id, "result": result}

    async def _handle_initialize(self, params: dict[str, Any], context: SecurityContext) -> dict[str, Any]:
        self.initialized = True
        logger.info("server_initialized", client_info=params.get("clientInfo"))
        return {
            "protocolVersion": PROTOCOL_VERSION,
            "capabilities": self.capabilities,
            "serverInfo": self.server_info,
        }

    async def _handle_ping(self, params: dict[str, Any], context: SecurityContext) -> dict[str, Any]:
        return {}

    async def _handle_tools_list(self, params: dict[str, Any], context: SecurityContext) -> dict[str, Any]:
        return {"tools": self.dispatcher.list_tools(context)}

    async def _handle_tools_call(self, params: dict[str, Any], context: SecurityContext) -> dict[str, Any]:
        name = params.get("name")
        if not name or not isinstance(name, str):
            raise ValidationError("Tool name is required")
        arguments = params.get("arguments") or {}
        if not isinstance(arguments, dict):
            raise ValidationError("Tool arguments must be an object")

        result = await self.dispatcher.call_tool(name, arguments, context)
        return result.to_dict()

    async def _handle_resources_list(self, params: dict[str, Any], context: SecurityContext) -> dict[str, Any]:
        return {"resources": self.dispatcher.list_resources(context)}

    async def _handle_resources_read(self, params: dict[str, Any], context: SecurityContext) -> dict[str, Any]:
        uri = params.get("uri")
        if not uri or not isinstance(uri, str):
            raise ValidationError("Resource URI is required")
        content = await self.dispatcher.read_resource(uri, context)
        return {"contents": [content.to_dict()]}

    async def _handle_prompts_list(self, params: dict[str, Any], context: SecurityContext) -> dict[str, Any]:
        return {"prompts": self.dispatcher.list_prompts(context)}

    async def _handle_prompts_get(self, params: dict[str, Any], context: SecurityContext) -> dict[str, Any]:
        name = params.get("name")
        if not name or not isinstance(name, str):
            raise ValidationError("Prompt name is required")
        arguments = params.get("arguments") or {}
        if not isinstance(arguments, dict):
            raise ValidationError("Prompt arguments must be an object")
        result = await self.dispatcher.get_prompt(name, arguments, context)
        return result.to_dict()
