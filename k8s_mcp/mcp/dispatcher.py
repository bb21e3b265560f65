"""
Request dispatcher.

Every protocol request goes through the same state machine:

    RECEIVED -> POLICY_CHECK -> DENIED
                             -> ROUTE -> EXECUTE -> SUCCESS | FAILED

Each transition is logged and counted. Tool calls never raise out of the
dispatcher. Resource read failures, unknown prompts and denied
resource/prompt requests raise errors from ``k8s_mcp.errors`` for the
transport to report.
"""

import asyncio
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

import structlog

from k8s_mcp.config import Settings
from k8s_mcp.errors import (
    AuthorizationError,
    KubernetesMCPError,
    OperationTimeoutError,
    translate_operation_error,
)
from k8s_mcp.k8s.client import KubernetesClient
from k8s_mcp.mcp.prompts import PromptRegistry
from k8s_mcp.mcp.resources import ResourceRegistry, parse_resource_uri
from k8s_mcp.mcp.results import PromptResult, ResourceContent, ToolResult
from k8s_mcp.mcp.tools import ToolRegistry
from k8s_mcp.monitoring.metrics import MetricsRecorder
from k8s_mcp.security.policy import PolicyEngine, SecurityContext
from k8s_mcp.utils import mask_sensitive_data

logger = structlog.get_logger()

ACCESS_DENIED = "Access denied"


class RequestClass(str, Enum):
    LIST_TOOLS = "tools/list"
    CALL_TOOL = "tools/call"
    LIST_RESOURCES = "resources/list"
    READ_RESOURCE = "resources/read"
    LIST_PROMPTS = "prompts/list"
    GET_PROMPT = "prompts/get"


class RequestState(str, Enum):
    RECEIVED = "received"
    POLICY_CHECK = "policy_check"
    DENIED = "denied"
    ROUTE = "route"
    EXECUTE = "execute"
    SUCCESS = "success"
    FAILED = "failed"


TERMINAL_STATES = {RequestState.DENIED, RequestState.SUCCESS, RequestState.FAILED}

_TRANSITIONS: dict[RequestState, set[RequestState]] = {
    RequestState.RECEIVED: {RequestState.POLICY_CHECK, RequestState.ROUTE},
    RequestState.POLICY_CHECK: {RequestState.DENIED, RequestState.ROUTE, RequestState.FAILED},
    RequestState.ROUTE: {RequestState.EXECUTE, RequestState.FAILED},
    RequestState.EXECUTE: {RequestState.SUCCESS, RequestState.FAILED},
}


@dataclass
class RequestTrace:
    """State of one in-flight request."""

    request_class: RequestClass
    name: str
    identity: str
    metrics: MetricsRecorder
    state: RequestState = RequestState.RECEIVED
    history: list[RequestState] = field(default_factory=list)
    started_at: float = field(default_factory=time.perf_counter)

    def __post_init__(self) -> None:
        self.history.append(self.state)
        self._emit()

    @property
    def elapsed_ms(self) -> float:
        return round((time.perf_counter() - self.started_at) * 1000, 2)

    def advance(self, state: RequestState) -> None:
        if state not in _TRANSITIONS.get(self.state, set()):
            raise RuntimeError(f"Invalid request transition {self.state.value} -> {state.value}")
        self.state = state
        self.history.append(state)
        self._emit()

        if state in TERMINAL_STATES:
            self.metrics.record_request(self.request_class.value, self.name, state.value, self.elapsed_ms)
            if state == RequestState.SUCCESS:
                self.metrics.record_operation(self.name, self.elapsed_ms)
            else:
                self.metrics.record_error(self.name)

    def _emit(self) -> None:
        self.metrics.record_transition(self.request_class.value, self.state.value)
        logger.debug(
            "request_state",
            request=self.request_class.value,
            name=self.name,
            user=self.identity,
            state=self.state.value,
        )


class RequestDispatcher:
    """
    Protocol-facing front end over the three registries.

    Usage:
        dispatcher = RequestDispatcher(settings, tools, resources, prompts, policy, metrics)
        result = await dispatcher.call_tool("get_pods", {"namespace": "default"}, ctx)
    """

    def __init__(
        self,
        settings: Settings,
        tools: ToolRegistry,
        resources: ResourceRegistry,
        prompts: PromptRegistry,
        policy: PolicyEngine,
        metrics: MetricsRecorder,
        k8s: KubernetesClient | None = None,
    ) -> None:
        self._settings = settings
        self.tools = tools
        self.resources = resources
        self.prompts = prompts
        self.policy = policy
        self.metrics = metrics
        self._k8s = k8s

    def _trace(self, request_class: RequestClass, name: str, context: SecurityContext) -> RequestTrace:
        return RequestTrace(request_class=request_class, name=name, identity=context.user_id, metrics=self.metrics)

    def _check(
        self,
        trace: RequestTrace,
        context: SecurityContext,
        resource: str,
        operation: str,
        params: dict[str, Any],
    ) -> bool:
        trace.advance(RequestState.POLICY_CHECK)
        if self.policy.evaluate(context, resource, operation, params):
            return True
        trace.advance(RequestState.DENIED)
        logger.warning("request_denied", request=trace.request_class.value, name=trace.name, user=context.user_id)
        return False

    # ── Listing ────────────────────────────────────────────────────────────────

    def _list(
        self,
        request_class: RequestClass,
        items: list[dict[str, Any]],
        context: SecurityContext,
    ) -> list[dict[str, Any]]:
        trace = self._trace(request_class, request_class.value, context)
        trace.advance(RequestState.ROUTE)
        trace.advance(RequestState.EXECUTE)
        trace.advance(RequestState.SUCCESS)
        return items

    def list_tools(self, context: SecurityContext) -> list[dict[str, Any]]:
        return self._list(RequestClass.LIST_TOOLS, self.tools.list(), context)

    def list_resources(self, context: SecurityContext) -> list[dict[str, Any]]:
        return self._list(RequestClass.LIST_RESOURCES, self.resources.list(), context)

    def list_prompts(self, context: SecurityContext) -> list[dict[str, Any]]:
        return self._list(RequestClass.LIST_PROMPTS, self.prompts.list(), context)

    # ── Tools ──────────────────────────────────────────────────────────────────

    async def call_tool(
        self,
        name: str,
        arguments: dict[str, Any] | None,
        context: SecurityContext,
    ) -> ToolResult:
        """Invoke a tool. Always returns a result, never raises."""
        arguments = arguments or {}
        trace = self._trace(RequestClass.CALL_TOOL, name, context)
        logger.info("calling_tool", tool=name, user=context.user_id, args=mask_sensitive_data(arguments))

        if not self._check(trace, context, f"tools/{name}", "execute", arguments):
            return ToolResult.error(ACCESS_DENIED)

        trace.advance(RequestState.ROUTE)
        if name not in self.tools:
            trace.advance(RequestState.FAILED)
            return ToolResult.error(f"Error: Tool '{name}' not found")

        trace.advance(RequestState.EXECUTE)
        generation = self._generation()
        try:
            async with asyncio.timeout(self._settings.request_timeout_seconds):
                result = await self.tools.invoke(name, arguments)
        except TimeoutError:
            trace.advance(RequestState.FAILED)
            error = OperationTimeoutError(f"Tool '{name}' timed out after {self._settings.k8s_request_timeout_ms}ms")
            logger.warning("tool_timeout", tool=name, timeout_ms=self._settings.k8s_request_timeout_ms)
            return ToolResult.error(f"Error: {error.message}")
        except Exception as e:
            trace.advance(RequestState.FAILED)
            error = translate_operation_error(e)
            logger.error("tool_dispatch_error", tool=name, error=error.message)
            return ToolResult.error(f"Error: {error.message}")

        self._warn_if_switched(generation, name)
        trace.advance(RequestState.FAILED if result.is_error else RequestState.SUCCESS)
        return result

    # ── Resources ──────────────────────────────────────────────────────────────

    async def read_resource(self, uri: str, context: SecurityContext) -> ResourceContent:
        """Read a resource. Failures and denials raise."""
        trace = self._trace(RequestClass.READ_RESOURCE, uri, context)
        try:
            scheme = parse_resource_uri(uri).scheme
        except KubernetesMCPError:
            trace.advance(RequestState.ROUTE)
            trace.advance(RequestState.FAILED)
            raise

        if self._settings.enforce_policy_on_all_requests:
            if not self._check(trace, context, f"resources/{scheme}", "read", {"uri": uri}):
                raise AuthorizationError(ACCESS_DENIED)

        trace.advance(RequestState.ROUTE)
        trace.advance(RequestState.EXECUTE)
        try:
            async with asyncio.timeout(self._settings.request_timeout_seconds):
                content = await self.resources.read(uri)
        except TimeoutError:
            trace.advance(RequestState.FAILED)
            raise OperationTimeoutError(
                f"Reading {uri} timed out after {self._settings.k8s_request_timeout_ms}ms"
            ) from None
        except Exception as e:
            trace.advance(RequestState.FAILED)
            error = translate_operation_error(e)
            logger.warning("resource_read_failed", uri=uri, error=error.message)
            if error is e:
                raise
            raise error from e

        trace.advance(RequestState.SUCCESS)
        return content

    # ── Prompts ────────────────────────────────────────────────────────────────

    async def get_prompt(
        self,
        name: str,
        arguments: dict[str, Any] | None,
        context: SecurityContext,
    ) -> PromptResult:
        """Render a prompt. Unknown names and denials raise; render errors are contained."""
        arguments = arguments or {}
        trace = self._trace(RequestClass.GET_PROMPT, name, context)

        if self._settings.enforce_policy_on_all_requests:
            if not self._check(trace, context, f"prompts/{name}", "generate", arguments):
                raise AuthorizationError(ACCESS_DENIED)

        trace.advance(RequestState.ROUTE)
        trace.advance(RequestState.EXECUTE)
        try:
            result = self.prompts.render(name, arguments)
        except KubernetesMCPError:
            trace.advance(RequestState.FAILED)
            raise

        trace.advance(RequestState.FAILED if result.is_error else RequestState.SUCCESS)
        return result

    # ── Helpers ────────────────────────────────────────────────────────────────

    def _generation(self) -> int | None:
        return self._k8s.generation if self._k8s is not None else None

    def _warn_if_switched(self, generation: int | None, name: str) -> None:
        if generation is not None and self._generation() != generation:
            logger.warning("context_switched_during_request", tool=name)
