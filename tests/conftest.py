"""Test configuration and fixtures."""

from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from typing import Any

import pytest
import pytest_asyncio

from k8s_mcp.config import Settings
from k8s_mcp.errors import NotFoundError
from k8s_mcp.k8s.client import ClusterInfo, HealthStatus
from k8s_mcp.k8s.kubectl import KubectlTranslator
from k8s_mcp.mcp.server import KubernetesMCPServer


def to_plain(obj: Any) -> Any:
    """Stand-in for ApiClient.sanitize_for_serialization on SimpleNamespace fakes."""
    if isinstance(obj, SimpleNamespace):
        return {k: to_plain(v) for k, v in vars(obj).items() if v is not None}
    if isinstance(obj, dict):
        return {k: to_plain(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [to_plain(v) for v in obj]
    if isinstance(obj, datetime):
        return obj.isoformat()
    return obj


class ApiError(Exception):
    """Mimics kubernetes_asyncio ApiException: status, reason and a JSON body."""

    def __init__(self, status: int, reason: str = "", body: str | None = None) -> None:
        super().__init__(reason)
        self.status = status
        self.reason = reason
        self.body = body


class FakeApi:
    """
    Any attribute is an async method returning the configured response.

    Exceptions given as responses are raised instead. Calls are recorded.
    """

    def __init__(self, **responses: Any) -> None:
        self.responses = responses
        self.calls: list[tuple[str, dict[str, Any]]] = []

    def __getattr__(self, name: str) -> Any:
        if name.startswith("_"):
            raise AttributeError(name)

        async def method(*args: Any, **kwargs: Any) -> Any:
            self.calls.append((name, kwargs))
            response = self.responses.get(name)
            if isinstance(response, Exception):
                raise response
            return response

        return method

    def called(self, name: str) -> list[dict[str, Any]]:
        return [kwargs for call, kwargs in self.calls if call == name]


class FakeKubernetes:
    """In-memory replacement for KubernetesClient."""

    def __init__(
        self,
        core_v1: FakeApi | None = None,
        apps_v1: FakeApi | None = None,
        custom_objects: FakeApi | None = None,
    ) -> None:
        self.core_v1 = core_v1 or FakeApi()
        self.apps_v1 = apps_v1 or FakeApi()
        self.custom_objects = custom_objects or FakeApi()
        self.current_namespace = "default"
        self.current_context = "dev"
        self.contexts = ["dev", "staging"]
        self.generation = 0
        self.is_available = True
        self.healthy = True
        self.cleaned_up = False

    def serialize(self, obj: Any) -> Any:
        return to_plain(obj)

    async def initialize(self) -> None:
        pass

    async def cleanup(self) -> None:
        self.cleaned_up = True

    def list_contexts(self) -> list[str]:
        return list(self.contexts)

    async def switch_context(self, name: str) -> None:
        if name not in self.contexts:
            raise NotFoundError(f"Context '{name}' not found")
        self.current_context = name
        self.generation += 1

    async def set_namespace(self, namespace: str) -> None:
        self.current_namespace = namespace

    async def list_namespaces(self) -> list[Any]:
        return (await self.core_v1.list_namespace()).items

    async def get_cluster_info(self) -> ClusterInfo:
        return ClusterInfo(
            name=self.current_context,
            server="https://k8s.example.test:6443",
            version="v1.29.2",
            nodes=1,
            namespaces=["default", "kube-system"],
        )

    async def health_check(self) -> HealthStatus:
        if not self.healthy:
            return HealthStatus(healthy=False, message="Kubernetes health check failed: connection refused")
        return HealthStatus(
            healthy=True,
            message="Kubernetes connection healthy",
            details={"context": self.current_context, "namespace": self.current_namespace},
        )


# ── Object factories ──────────────────────────────────────────────────────────


def ago(**delta: float) -> datetime:
    return datetime.now(timezone.utc) - timedelta(**delta)


def item_list(*items: Any) -> SimpleNamespace:
    return SimpleNamespace(items=list(items))


def make_meta(name: str, namespace: str | None = "default", **extra: Any) -> SimpleNamespace:
    return SimpleNamespace(
        name=name,
        namespace=namespace,
        creation_timestamp=extra.pop("created", ago(minutes=5)),
        labels=extra.pop("labels", None),
        annotations=extra.pop("annotations", None),
        generation=extra.pop("generation", None),
    )


def make_pod(
    name: str,
    phase: str = "Running",
    ready: bool = True,
    restarts: int = 0,
    waiting_reason: str | None = None,
    namespace: str = "default",
) -> SimpleNamespace:
    waiting = SimpleNamespace(reason=waiting_reason) if waiting_reason else None
    container = SimpleNamespace(
        name="app",
        ready=ready,
        restart_count=restarts,
        state=SimpleNamespace(waiting=waiting),
    )
    return SimpleNamespace(
        metadata=make_meta(name, namespace),
        spec=SimpleNamespace(node_name="node-1"),
        status=SimpleNamespace(phase=phase, container_statuses=[container]),
    )


def make_deployment(
    name: str,
    replicas: int = 3,
    ready: int = 3,
    updated: int = 3,
    available: int = 3,
    generation: int = 1,
    observed: int = 1,
) -> SimpleNamespace:
    return SimpleNamespace(
        metadata=make_meta(name, generation=generation),
        spec=SimpleNamespace(replicas=replicas),
        status=SimpleNamespace(
            replicas=replicas,
            ready_replicas=ready,
            updated_replicas=updated,
            available_replicas=available,
            observed_generation=observed,
        ),
    )


def make_namespace(name: str, phase: str = "Active") -> SimpleNamespace:
    return SimpleNamespace(metadata=make_meta(name, namespace=None), status=SimpleNamespace(phase=phase))


def make_secret(name: str, data: dict[str, str], annotations: dict[str, str] | None = None) -> SimpleNamespace:
    return SimpleNamespace(
        metadata=make_meta(name, annotations=annotations),
        type="Opaque",
        data=data,
    )


# ── Fixtures ──────────────────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def anyio_backend():
    """Use asyncio backend for pytest-asyncio."""
    return "asyncio"


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        kubeconfig_path=None,
        kubeconfig_yaml=None,
        kubeconfig_json=None,
        k8s_server=None,
        k8s_token=None,
        k8s_context=None,
        k8s_incluster_token_path="/nonexistent/serviceaccount/token",
        k8s_retry_attempts=0,
        k8s_retry_delay_ms=0,
        stream_progress_steps=3,
        stream_progress_interval_ms=0,
        api_keys=[],
    )


@pytest.fixture
def fake_k8s() -> FakeKubernetes:
    return FakeKubernetes(
        core_v1=FakeApi(
            list_namespace=item_list(make_namespace("default"), make_namespace("kube-system")),
            list_namespaced_pod=item_list(
                make_pod("web-1"),
                make_pod("web-2", phase="Pending", ready=False, restarts=4, waiting_reason="CrashLoopBackOff"),
            ),
            read_namespaced_pod=make_pod("web-1"),
            read_namespaced_pod_log="line 1\nline 2\n",
        ),
        apps_v1=FakeApi(
            list_namespaced_deployment=item_list(make_deployment("web")),
            read_namespaced_deployment=make_deployment("web"),
        ),
    )


@pytest.fixture
def translator(fake_k8s: FakeKubernetes) -> KubectlTranslator:
    return KubectlTranslator(fake_k8s)


@pytest_asyncio.fixture
async def mcp_server(settings: Settings, fake_k8s: FakeKubernetes):
    """MCP server wired to the in-memory cluster."""
    server = KubernetesMCPServer(settings, k8s=fake_k8s)
    yield server
    await server.shutdown()
