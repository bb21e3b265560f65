"""
Resource registry and Kubernetes resource handlers.

Resources are addressed by URIs such as ``k8s-pod://default/my-pod``. The
scheme selects the handler; the authority and the path segments after it are
the positional coordinates (``namespace/name`` for namespaced kinds, ``name``
for cluster-scoped kinds). Read failures propagate to the caller.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable
from urllib.parse import parse_qs, unquote, urlsplit

import structlog
import yaml

from k8s_mcp.errors import (
    KubernetesMCPError,
    NotFoundError,
    UnsupportedResourceError,
    ValidationError,
    translate_operation_error,
)
from k8s_mcp.k8s.client import KubernetesClient
from k8s_mcp.mcp.results import ResourceContent

logger = structlog.get_logger()

DEFAULT_LOG_LINES = 100
MASK = "***"
LAST_APPLIED = "kubectl.kubernetes.io/last-applied-configuration"


@dataclass
class ResourceURI:
    """A parsed resource URI."""

    uri: str
    scheme: str
    segments: list[str] = field(default_factory=list)
    query: dict[str, str] = field(default_factory=dict)


def parse_resource_uri(uri: str) -> ResourceURI:
    """
    Split ``scheme://a/b/c?k=v`` into its scheme, segments and query.

    The authority is treated as the first path segment. Empty segments are
    dropped, and each query key keeps its first value.
    """
    parts = urlsplit(uri)
    if not parts.scheme or "://" not in uri:
        raise ValidationError(f"Invalid resource URI: {uri}")

    raw = [parts.netloc] + parts.path.split("/")
    segments = [unquote(s) for s in raw if s]
    query = {key: values[0] for key, values in parse_qs(parts.query).items() if values}
    return ResourceURI(uri=uri, scheme=parts.scheme, segments=segments, query=query)


ResourceHandler = Callable[[ResourceURI], Awaitable[ResourceContent]]


@dataclass(frozen=True)
class ResourceDescriptor:
    scheme: str
    description: str
    template: str
    handler: ResourceHandler
    min_segments: int = 0
    mime_type: str = "application/json"

    def summary(self) -> dict[str, Any]:
        return {
            "uri": f"{self.scheme}://",
            "name": self.scheme,
            "description": f"{self.description} ({self.template})",
            "mimeType": self.mime_type,
        }


class ResourceRegistry:
    """
    Scheme to resource handler table.

    A scheme registered twice keeps the later descriptor.
    """

    def __init__(self) -> None:
        self._resources: dict[str, ResourceDescriptor] = {}

    def register(self, descriptor: ResourceDescriptor) -> None:
        if descriptor.scheme in self._resources:
            logger.warning("resource_overwritten", scheme=descriptor.scheme)
        self._resources[descriptor.scheme] = descriptor

    def register_all(self, descriptors: list[ResourceDescriptor]) -> None:
        for descriptor in descriptors:
            self.register(descriptor)
        logger.info("resources_registered", count=len(self._resources))

    def list(self) -> list[dict[str, Any]]:
        return [r.summary() for r in self._resources.values()]

    def schemes(self) -> list[str]:
        return list(self._resources)

    def __len__(self) -> int:
        return len(self._resources)

    async def read(self, uri: str) -> ResourceContent:
        parsed = parse_resource_uri(uri)
        descriptor = self._resources.get(parsed.scheme)
        if descriptor is None:
            raise NotFoundError(f"No handler found for scheme: {parsed.scheme}")
        if len(parsed.segments) < descriptor.min_segments:
            raise ValidationError(f"Resource URI must match {descriptor.template}")

        logger.info("reading_resource", uri=uri, scheme=parsed.scheme)
        try:
            return await descriptor.handler(parsed)
        except KubernetesMCPError:
            raise
        except Exception as e:
            raise translate_operation_error(e) from e


class KubernetesResources:
    """
    Resource handlers bound to one connector.

    Usage:
        resources = KubernetesResources(k8s)
        registry.register_all(resources.descriptors())
    """

    def __init__(self, k8s: KubernetesClient) -> None:
        self._k8s = k8s

    def descriptors(self) -> list[ResourceDescriptor]:
        return [
            ResourceDescriptor("k8s-pod", "Kubernetes Pod resource", "k8s-pod://namespace/name", self.pod, 2),
            ResourceDescriptor(
                "k8s-deployment", "Kubernetes Deployment resource", "k8s-deployment://namespace/name", self.deployment, 2
            ),
            ResourceDescriptor(
                "k8s-service", "Kubernetes Service resource", "k8s-service://namespace/name", self.service, 2
            ),
            ResourceDescriptor(
                "k8s-configmap", "Kubernetes ConfigMap resource", "k8s-configmap://namespace/name", self.configmap, 2
            ),
            ResourceDescriptor(
                "k8s-secret", "Kubernetes Secret resource (values masked)", "k8s-secret://namespace/name", self.secret, 2
            ),
            ResourceDescriptor("k8s-namespace", "Kubernetes Namespace resource", "k8s-namespace://name", self.namespace, 1),
            ResourceDescriptor("k8s-node", "Kubernetes Node resource", "k8s-node://name", self.node, 1),
            ResourceDescriptor(
                "k8s-logs",
                "Pod logs resource",
                "k8s-logs://namespace/pod?container=NAME&lines=100",
                self.logs,
                2,
                mime_type="text/plain",
            ),
            ResourceDescriptor("k8s-events", "Kubernetes Events resource", "k8s-events://[namespace]", self.events, 0),
            ResourceDescriptor(
                "k8s-manifest",
                "Kubernetes YAML manifest resource",
                "k8s-manifest://type/namespace/name",
                self.manifest,
                3,
                mime_type="application/x-yaml",
            ),
        ]

    def _json(self, uri: ResourceURI, obj: Any) -> ResourceContent:
        return ResourceContent(uri=uri.uri, text=json.dumps(self._k8s.serialize(obj), indent=2))

    async def pod(self, uri: ResourceURI) -> ResourceContent:
        namespace, name = uri.segments[:2]
        return self._json(uri, await self._k8s.core_v1.read_namespaced_pod(name=name, namespace=namespace))

    async def deployment(self, uri: ResourceURI) -> ResourceContent:
        namespace, name = uri.segments[:2]
        return self._json(uri, await self._k8s.apps_v1.read_namespaced_deployment(name=name, namespace=namespace))

    async def service(self, uri: ResourceURI) -> ResourceContent:
        namespace, name = uri.segments[:2]
        return self._json(uri, await self._k8s.core_v1.read_namespaced_service(name=name, namespace=namespace))

    async def configmap(self, uri: ResourceURI) -> ResourceContent:
        namespace, name = uri.segments[:2]
        return self._json(uri, await self._k8s.core_v1.read_namespaced_config_map(name=name, namespace=namespace))

    async def secret(self, uri: ResourceURI) -> ResourceContent:
        namespace, name = uri.segments[:2]
        secret = await self._k8s.core_v1.read_namespaced_secret(name=name, namespace=namespace)
        data = mask_secret(self._k8s.serialize(secret))
        return ResourceContent(uri=uri.uri, text=json.dumps(data, indent=2))

    async def namespace(self, uri: ResourceURI) -> ResourceContent:
        return self._json(uri, await self._k8s.core_v1.read_namespace(name=uri.segments[0]))

    async def node(self, uri: ResourceURI) -> ResourceContent:
        return self._json(uri, await self._k8s.core_v1.read_node(name=uri.segments[0]))

    async def logs(self, uri: ResourceURI) -> ResourceContent:
        namespace, pod = uri.segments[:2]
        try:
            lines = int(uri.query.get("lines", DEFAULT_LOG_LINES))
        except ValueError:
            raise ValidationError("lines must be an integer") from None

        kwargs: dict[str, Any] = {"name": pod, "namespace": namespace, "tail_lines": lines}
        if uri.query.get("container"):
            kwargs["container"] = uri.query["container"]
        text = await self._k8s.core_v1.read_namespaced_pod_log(**kwargs)
        return ResourceContent(uri=uri.uri, mime_type="text/plain", text=text or "")

    async def events(self, uri: ResourceURI) -> ResourceContent:
        if uri.segments:
            response = await self._k8s.core_v1.list_namespaced_event(namespace=uri.segments[0])
        else:
            response = await self._k8s.core_v1.list_event_for_all_namespaces()
        return self._json(uri, response)

    async def manifest(self, uri: ResourceURI) -> ResourceContent:
        kind, namespace, name = uri.segments[:3]
        core = self._k8s.core_v1
        apps = self._k8s.apps_v1
        readers = {
            "pod": core.read_namespaced_pod,
            "service": core.read_namespaced_service,
            "deployment": apps.read_namespaced_deployment,
            "configmap": core.read_namespaced_config_map,
            "secret": core.read_namespaced_secret,
        }
        reader = readers.get(kind.lower())
        if reader is None:
            raise UnsupportedResourceError(f"Resource type '{kind}' not supported for manifest generation")

        data = self._k8s.serialize(await reader(name=name, namespace=namespace))
        if kind.lower() == "secret":
            data = mask_secret(data)
        return ResourceContent(
            uri=uri.uri,
            mime_type="application/x-yaml",
            text=yaml.safe_dump(data, sort_keys=False),
        )


def mask_secret(data: dict[str, Any]) -> dict[str, Any]:
    """Replace every Secret data value with a mask, keeping the keys."""
    masked = dict(data)
    for key in ("data", "stringData"):
        if masked.get(key):
            masked[key] = {k: MASK for k in masked[key]}
    annotations = (masked.get("metadata") or {}).get("annotations")
    if annotations and LAST_APPLIED in annotations:
        # holds the full manifest, data included
        masked["metadata"] = {**masked["metadata"], "annotations": {**annotations, LAST_APPLIED: MASK}}
    return masked
