"""
Async Kubernetes client wrapping kubernetes-asyncio.

Resolves credentials through an ordered fallback chain, holds the session
state (context, namespace) and exposes typed API sub-clients. One instance is
created at process start and handed to every component that needs cluster
access.
"""

import asyncio
import json
import os
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

import structlog
import yaml
from kubernetes_asyncio import client as k8s_client
from kubernetes_asyncio import config as k8s_config
from tenacity import AsyncRetrying, RetryError, stop_after_attempt, wait_fixed

from k8s_mcp.config import Settings
from k8s_mcp.errors import (
    ClusterConnectionError,
    KubernetesMCPError,
    NotFoundError,
    NotInitializedError,
    translate_api_error,
)
from k8s_mcp.utils import log_operation

logger = structlog.get_logger()

IN_CLUSTER_CONTEXT = "in-cluster"
DEFAULT_KUBECONFIG = os.path.join("~", ".kube", "config")


class CredentialSource(str, Enum):
    """Credential sources in the order initialize() tries them."""

    IN_CLUSTER = "in-cluster"
    INLINE_YAML = "inline-yaml"
    INLINE_JSON = "inline-json"
    MINIMAL = "minimal"
    FILE = "file"
    DEFAULT_FILE = "default-file"


@dataclass
class HealthStatus:
    healthy: bool
    message: str
    details: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {"healthy": self.healthy, "message": self.message, "details": self.details}


@dataclass
class ClusterInfo:
    name: str
    server: str
    version: str | None = None
    nodes: int | None = None
    namespaces: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "server": self.server,
            "version": self.version,
            "nodes": self.nodes,
            "namespaces": self.namespaces,
        }


@dataclass
class _LoadedConfig:
    """Outcome of one credential source: client configuration plus kubeconfig."""

    configuration: Any
    kubeconfig: dict[str, Any] | None
    context: str


class KubernetesClient:
    """
    Session-holding async Kubernetes client.

    Usage:
        k8s = KubernetesClient(settings)
        await k8s.initialize()
        pods = await k8s.core_v1.list_namespaced_pod(k8s.current_namespace)
    """

    def __init__(self, settings: Settings) -> None:
        self._settings = settings
        self._source: CredentialSource | None = None
        self._kubeconfig: dict[str, Any] | None = None
        self._configuration: Any = None
        self._api_client: Any = None
        self._apis: dict[str, Any] = {}
        self._current_context: str | None = None
        self._current_namespace = settings.k8s_namespace
        self._initialized = False
        self._switch_lock = asyncio.Lock()
        self.generation = 0

    # ── Initialization ─────────────────────────────────────────────────────────

    async def initialize(self) -> None:
        """
        Load credentials from the first source that succeeds, then probe.

        The probe runs only against the selected source: if it fails, the
        whole initialization fails and later sources are not tried.
        """
        if self._initialized:
            return

        logger.info("initializing_kubernetes_client")
        last_error: Exception | None = None
        loaded: _LoadedConfig | None = None

        for source, loader in self._credential_loaders():
            try:
                loaded = await loader()
            except Exception as e:
                logger.debug("credential_source_skipped", source=source.value, error=str(e))
                last_error = e
                continue
            self._source = source
            logger.info("kubeconfig_loaded", source=source.value, context=loaded.context)
            break

        if loaded is None:
            raise ClusterConnectionError(f"Failed to load kubeconfig: {last_error}")

        self._kubeconfig = loaded.kubeconfig
        self._current_context = loaded.context
        self._install_api_clients(loaded.configuration)

        try:
            await self._probe()
        except ClusterConnectionError:
            await self._close_api_client()
            raise

        self._initialized = True
        logger.info(
            "kubernetes_client_initialized",
            source=self._source.value,
            context=self._current_context,
            namespace=self._current_namespace,
        )

    def _credential_loaders(self) -> list[tuple[CredentialSource, Any]]:
        return [
            (CredentialSource.IN_CLUSTER, self._load_in_cluster),
            (CredentialSource.INLINE_YAML, self._load_inline_yaml),
            (CredentialSource.INLINE_JSON, self._load_inline_json),
            (CredentialSource.MINIMAL, self._load_minimal),
            (CredentialSource.FILE, self._load_file),
            (CredentialSource.DEFAULT_FILE, self._load_default_file),
        ]

    async def _load_in_cluster(self) -> _LoadedConfig:
        if not os.path.exists(self._settings.k8s_incluster_token_path):
            raise ClusterConnectionError("Not running in cluster")
        configuration = k8s_client.Configuration()
        k8s_config.load_incluster_config(client_configuration=configuration)
        return _LoadedConfig(configuration=configuration, kubeconfig=None, context=IN_CLUSTER_CONTEXT)

    async def _load_inline_yaml(self) -> _LoadedConfig:
        if not self._settings.kubeconfig_yaml:
            raise ClusterConnectionError("KUBECONFIG_YAML not provided")
        return await self._load_from_dict(yaml.safe_load(self._settings.kubeconfig_yaml))

    async def _load_inline_json(self) -> _LoadedConfig:
        if not self._settings.kubeconfig_json:
            raise ClusterConnectionError("KUBECONFIG_JSON not provided")
        return await self._load_from_dict(json.loads(self._settings.kubeconfig_json))

    async def _load_minimal(self) -> _LoadedConfig:
        if not self._settings.k8s_server or not self._settings.k8s_token:
            raise ClusterConnectionError("K8S_SERVER and K8S_TOKEN not provided")
        kubeconfig = {
            "apiVersion": "v1",
            "kind": "Config",
            "clusters": [
                {
                    "name": "default-cluster",
                    "cluster": {
                        "server": self._settings.k8s_server,
                        "insecure-skip-tls-verify": self._settings.k8s_skip_tls_verify,
                    },
                }
            ],
            "users": [{"name": "default-user", "user": {"token": self._settings.k8s_token}}],
            "contexts": [
                {
                    "name": "default-context",
                    "context": {
                        "cluster": "default-cluster",
                        "user": "default-user",
                        "namespace": self._settings.k8s_namespace,
                    },
                }
            ],
            "current-context": "default-context",
        }
        return await self._load_from_dict(kubeconfig)

    async def _load_file(self) -> _LoadedConfig:
        path = self._settings.kubeconfig_path
        if not path:
            raise ClusterConnectionError("KUBECONFIG_PATH not provided")
        return await self._load_from_path(path)

    async def _load_default_file(self) -> _LoadedConfig:
        return await self._load_from_path(os.path.expanduser(DEFAULT_KUBECONFIG))

    async def _load_from_path(self, path: str) -> _LoadedConfig:
        if not os.path.exists(path):
            raise ClusterConnectionError(f"Kubeconfig file not found: {path}")
        with open(path, encoding="utf-8") as fh:
            return await self._load_from_dict(yaml.safe_load(fh))

    async def _load_from_dict(self, kubeconfig: Any, context: str | None = None) -> _LoadedConfig:
        if not isinstance(kubeconfig, dict) or not kubeconfig.get("contexts"):
            raise ClusterConnectionError("Kubeconfig has no contexts")

        context = context or self._settings.k8s_context or kubeconfig.get("current-context")
        if not context:
            context = kubeconfig["contexts"][0]["name"]

        configuration = k8s_client.Configuration()
        await k8s_config.load_kube_config_from_dict(
            config_dict=kubeconfig,
            context=context,
            client_configuration=configuration,
        )
        return _LoadedConfig(configuration=configuration, kubeconfig=kubeconfig, context=context)

    def _install_api_clients(self, configuration: Any) -> None:
        """(Re)derive every typed sub-client from a client configuration."""
        self._configuration = configuration
        self._api_client = k8s_client.ApiClient(configuration=configuration)
        self._apis = {
            "core_v1": k8s_client.CoreV1Api(self._api_client),
            "apps_v1": k8s_client.AppsV1Api(self._api_client),
            "batch_v1": k8s_client.BatchV1Api(self._api_client),
            "rbac_v1": k8s_client.RbacAuthorizationV1Api(self._api_client),
            "networking_v1": k8s_client.NetworkingV1Api(self._api_client),
            "storage_v1": k8s_client.StorageV1Api(self._api_client),
            "custom_objects": k8s_client.CustomObjectsApi(self._api_client),
            "apiextensions_v1": k8s_client.ApiextensionsV1Api(self._api_client),
            "version": k8s_client.VersionApi(self._api_client),
        }
        logger.debug("kubernetes_api_clients_initialized", context=self._current_context)

    async def _probe(self) -> int:
        """List namespaces to prove the cluster is reachable and we are authorized."""
        attempts = self._settings.k8s_retry_attempts + 1
        delay = self._settings.k8s_retry_delay_ms / 1000
        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(attempts),
                wait=wait_fixed(delay),
                reraise=False,
            ):
                with attempt:
                    response = await self._apis["core_v1"].list_namespace()
        except RetryError as e:
            cause = e.last_attempt.exception()
            message = translate_api_error(cause).message if cause else "unknown error"
            raise ClusterConnectionError(f"Kubernetes connection test failed: {message}") from cause

        count = len(response.items)
        logger.info("kubernetes_connection_test_successful", namespaces_count=count)
        return count

    # ── Accessors ──────────────────────────────────────────────────────────────

    def _api(self, key: str) -> Any:
        if not self._initialized:
            raise NotInitializedError("Kubernetes client not initialized")
        return self._apis[key]

    @property
    def is_available(self) -> bool:
        return self._initialized

    @property
    def credential_source(self) -> CredentialSource | None:
        return self._source

    @property
    def current_context(self) -> str | None:
        return self._current_context

    @property
    def current_namespace(self) -> str:
        return self._current_namespace

    @property
    def api_client(self) -> Any:
        if not self._initialized:
            raise NotInitializedError("Kubernetes client not initialized")
        return self._api_client

    @property
    def core_v1(self) -> Any:
        return self._api("core_v1")

    @property
    def apps_v1(self) -> Any:
        return self._api("apps_v1")

    @property
    def batch_v1(self) -> Any:
        return self._api("batch_v1")

    @property
    def rbac_v1(self) -> Any:
        return self._api("rbac_v1")

    @property
    def networking_v1(self) -> Any:
        return self._api("networking_v1")

    @property
    def storage_v1(self) -> Any:
        return self._api("storage_v1")

    @property
    def custom_objects(self) -> Any:
        return self._api("custom_objects")

    @property
    def apiextensions_v1(self) -> Any:
        return self._api("apiextensions_v1")

    @property
    def version_api(self) -> Any:
        return self._api("version")

    def serialize(self, obj: Any) -> Any:
        """Convert an API model object into plain JSON-compatible data."""
        return self.api_client.sanitize_for_serialization(obj)

    # ── Context & namespace management ─────────────────────────────────────────

    def list_contexts(self) -> list[str]:
        if not self._initialized:
            raise NotInitializedError("Kubernetes client not initialized")
        if self._kubeconfig is None:
            return [IN_CLUSTER_CONTEXT]
        return [ctx["name"] for ctx in self._kubeconfig.get("contexts", [])]

    async def switch_context(self, name: str) -> None:
        """
        Switch to another kubeconfig context and re-probe it.

        The credential source stays the same; only the sub-clients are
        re-derived. If the new context is unreachable the previous one is
        restored before the error is raised.
        """
        if name not in self.list_contexts():
            raise NotFoundError(f"Context '{name}' not found")

        async with self._switch_lock:
            previous = (self._current_context, self._configuration, self._api_client, self._apis)
            loaded = await self._load_from_dict(self._kubeconfig, context=name)
            self._current_context = name
            self._install_api_clients(loaded.configuration)
            try:
                await self._probe()
            except ClusterConnectionError:
                await self._close_api_client()
                self._current_context, self._configuration, self._api_client, self._apis = previous
                logger.warning("context_switch_failed", context=name)
                raise

            await _close_quietly(previous[2])
            self.generation += 1

        log_operation("switch_context", name)
        logger.info("switched_kubernetes_context", context=name, generation=self.generation)

    async def set_namespace(self, namespace: str) -> None:
        """Make ``namespace`` the session default after confirming it exists."""
        core_v1 = self.core_v1
        async with self._switch_lock:
            try:
                await core_v1.read_namespace(name=namespace)
            except Exception as e:
                error = translate_api_error(e)
                if isinstance(error, NotFoundError):
                    raise NotFoundError(f"Namespace '{namespace}' not found") from e
                raise error from e
            self._current_namespace = namespace
        logger.info("set_current_namespace", namespace=namespace)

    # ── Cluster information ────────────────────────────────────────────────────

    async def list_namespaces(self) -> list[Any]:
        try:
            response = await self.core_v1.list_namespace()
        except KubernetesMCPError:
            raise
        except Exception as e:
            raise translate_api_error(e) from e
        return response.items

    async def get_cluster_info(self) -> ClusterInfo:
        try:
            namespaces, nodes = await asyncio.gather(
                self.core_v1.list_namespace(),
                self.core_v1.list_node(),
            )
        except KubernetesMCPError:
            raise
        except Exception as e:
            raise translate_api_error(e) from e

        version = None
        try:
            info = await self.version_api.get_code()
            version = info.git_version
        except Exception as e:
            logger.debug("cluster_version_unavailable", error=str(e))

        return ClusterInfo(
            name=self._current_context or "unknown",
            server=getattr(self._configuration, "host", None) or "unknown",
            version=version,
            nodes=len(nodes.items),
            namespaces=[ns.metadata.name for ns in namespaces.items],
        )

    async def health_check(self) -> HealthStatus:
        """Live connectivity check; never raises."""
        if not self._initialized:
            return HealthStatus(healthy=False, message="Kubernetes connection not established")
        try:
            response = await self._apis["core_v1"].list_namespace()
        except Exception as e:
            return HealthStatus(
                healthy=False,
                message=f"Kubernetes health check failed: {translate_api_error(e).message}",
            )
        return HealthStatus(
            healthy=True,
            message="Kubernetes connection healthy",
            details={
                "context": self._current_context,
                "namespace": self._current_namespace,
                "namespaces_count": len(response.items),
                "credential_source": self._source.value if self._source else None,
            },
        )

    async def cleanup(self) -> None:
        logger.info("cleaning_up_kubernetes_client")
        self._initialized = False
        await self._close_api_client()

    async def _close_api_client(self) -> None:
        await _close_quietly(self._api_client)
        self._api_client = None


async def _close_quietly(api_client: Any) -> None:
    if api_client is None:
        return
    try:
        await api_client.close()
    except Exception as e:
        logger.debug("api_client_close_failed", error=str(e))
