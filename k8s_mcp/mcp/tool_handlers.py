"""
Kubernetes tool implementations.

Each tool is a coroutine taking validated arguments and returning a
``ToolResult``. Argument names are the camelCase names MCP clients send.
"""

import json
from datetime import datetime, timezone
from typing import Any

import structlog

from k8s_mcp.errors import ValidationError
from k8s_mcp.k8s.client import KubernetesClient
from k8s_mcp.k8s.formatting import format_age, node_roles, node_status, pod_ready, pod_restarts, pod_status
from k8s_mcp.k8s.kubectl import KubectlTranslator
from k8s_mcp.mcp.results import ToolResult
from k8s_mcp.mcp.tools import ParamKind, ParamSpec, ToolDescriptor
from k8s_mcp.security.policy import validate_resource_name
from k8s_mcp.utils import log_operation

logger = structlog.get_logger()

METRICS_GROUP = "metrics.k8s.io"
METRICS_VERSION = "v1beta1"
MAX_EVENTS = 50

_NAMESPACE = ParamSpec("namespace", description="Kubernetes namespace (defaults to current namespace)")


def _json(data: Any) -> ToolResult:
    return ToolResult.text(json.dumps(data, indent=2, default=str))


class KubernetesTools:
    """
    Tool handlers bound to one connector and translator.

    Usage:
        tools = KubernetesTools(k8s, translator)
        registry.register_all(tools.descriptors())
    """

    def __init__(self, k8s: KubernetesClient, translator: KubectlTranslator) -> None:
        self._k8s = k8s
        self._kubectl = translator

    def _namespace(self, args: dict[str, Any]) -> str:
        namespace = args.get("namespace") or self._k8s.current_namespace
        if not validate_resource_name(namespace):
            raise ValidationError(f"Invalid namespace name: {namespace}")
        return namespace

    def descriptors(self) -> list[ToolDescriptor]:
        return [
            # Listing
            ToolDescriptor(
                "get_pods",
                "Get pods in a namespace",
                self.get_pods,
                (_NAMESPACE, ParamSpec("labelSelector", description="Label selector to filter pods")),
            ),
            ToolDescriptor("get_deployments", "Get deployments in a namespace", self.get_deployments, (_NAMESPACE,)),
            ToolDescriptor("get_services", "Get services in a namespace", self.get_services, (_NAMESPACE,)),
            ToolDescriptor("get_namespaces", "Get all namespaces in the cluster", self.get_namespaces),
            ToolDescriptor("get_nodes", "Get all nodes in the cluster", self.get_nodes),
            ToolDescriptor("get_configmaps", "Get ConfigMaps in a namespace", self.get_configmaps, (_NAMESPACE,)),
            ToolDescriptor(
                "get_secrets",
                "Get Secrets in a namespace (names, types and keys only)",
                self.get_secrets,
                (_NAMESPACE,),
            ),
            ToolDescriptor(
                "get_events",
                "Get recent events in a namespace",
                self.get_events,
                (_NAMESPACE, ParamSpec("fieldSelector", description="Field selector, e.g. involvedObject.name=my-pod")),
            ),
            # Inspection
            ToolDescriptor(
                "describe_resource",
                "Describe a Kubernetes resource",
                self.describe_resource,
                (
                    ParamSpec("resourceType", required=True, description="Type of resource (pod, service, deployment, etc.)"),
                    ParamSpec("resourceName", required=True, description="Name of the resource"),
                    _NAMESPACE,
                ),
            ),
            ToolDescriptor(
                "kubectl",
                "Execute kubectl commands",
                self.kubectl,
                (
                    ParamSpec("command", required=True, description="kubectl command (e.g., get, describe, delete)"),
                    ParamSpec("args", ParamKind.ARRAY, description="Command arguments"),
                ),
            ),
            ToolDescriptor(
                "pod_logs",
                "Get logs from a pod",
                self.pod_logs,
                (
                    ParamSpec("podName", required=True, description="Name of the pod"),
                    _NAMESPACE,
                    ParamSpec("container", description="Container name (for multi-container pods)"),
                    ParamSpec("lines", ParamKind.INTEGER, description="Number of lines to retrieve", default=100),
                ),
            ),
            # Mutation
            ToolDescriptor(
                "delete_pod",
                "Delete a pod",
                self.delete_pod,
                (ParamSpec("podName", required=True, description="Name of the pod to delete"), _NAMESPACE),
                destructive=True,
            ),
            ToolDescriptor(
                "scale_deployment",
                "Scale a deployment",
                self.scale_deployment,
                (
                    ParamSpec("deploymentName", required=True, description="Name of the deployment to scale"),
                    ParamSpec("replicas", ParamKind.INTEGER, required=True, description="Number of replicas"),
                    _NAMESPACE,
                ),
                destructive=True,
            ),
            ToolDescriptor(
                "restart_deployment",
                "Restart a deployment by updating its template",
                self.restart_deployment,
                (ParamSpec("deploymentName", required=True, description="Name of the deployment"), _NAMESPACE),
                destructive=True,
            ),
            ToolDescriptor(
                "rollout_status",
                "Check rollout status of a deployment",
                self.rollout_status,
                (ParamSpec("deploymentName", required=True, description="Name of the deployment"), _NAMESPACE),
            ),
            # Cluster
            ToolDescriptor("cluster_info", "Get cluster information", self.cluster_info),
            ToolDescriptor("cluster_health", "Check cluster health status", self.cluster_health),
            ToolDescriptor("node_metrics", "Get node resource metrics (requires metrics-server)", self.node_metrics),
            ToolDescriptor(
                "pod_metrics",
                "Get pod resource metrics (requires metrics-server)",
                self.pod_metrics,
                (_NAMESPACE,),
            ),
            # Session
            ToolDescriptor(
                "switch_context",
                "Switch Kubernetes context",
                self.switch_context,
                (ParamSpec("contextName", required=True, description="Name of the context to switch to"),),
                destructive=True,
            ),
            ToolDescriptor(
                "set_namespace",
                "Set current namespace",
                self.set_namespace,
                (ParamSpec("namespace", required=True, description="Namespace to set as current"),),
            ),
            ToolDescriptor("list_contexts", "List available Kubernetes contexts", self.list_contexts),
        ]

    # ── Listing ────────────────────────────────────────────────────────────────

    async def get_pods(self, args: dict[str, Any]) -> ToolResult:
        namespace = self._namespace(args)
        kwargs: dict[str, Any] = {"namespace": namespace}
        if args.get("labelSelector"):
            kwargs["label_selector"] = args["labelSelector"]
        response = await self._k8s.core_v1.list_namespaced_pod(**kwargs)
        pods = [
            {
                "name": pod.metadata.name,
                "namespace": pod.metadata.namespace,
                "status": pod_status(pod),
                "ready": pod_ready(pod),
                "restarts": pod_restarts(pod),
                "age": format_age(pod.metadata.creation_timestamp),
                "node": pod.spec.node_name if pod.spec else None,
            }
            for pod in response.items
        ]
        return _json({"pods": pods})

    async def get_deployments(self, args: dict[str, Any]) -> ToolResult:
        response = await self._k8s.apps_v1.list_namespaced_deployment(namespace=self._namespace(args))
        deployments = [
            {
                "name": d.metadata.name,
                "namespace": d.metadata.namespace,
                "replicas": d.spec.replicas if d.spec else 0,
                "readyReplicas": (d.status.ready_replicas or 0) if d.status else 0,
                "availableReplicas": (d.status.available_replicas or 0) if d.status else 0,
                "age": format_age(d.metadata.creation_timestamp),
            }
            for d in response.items
        ]
        return _json({"deployments": deployments})

    async def get_services(self, args: dict[str, Any]) -> ToolResult:
        response = await self._k8s.core_v1.list_namespaced_service(namespace=self._namespace(args))
        services = [
            {
                "name": svc.metadata.name,
                "namespace": svc.metadata.namespace,
                "type": svc.spec.type,
                "clusterIP": svc.spec.cluster_ip,
                "ports": [
                    f"{p.port}/{p.protocol}" + (f":{p.node_port}" if p.node_port else "")
                    for p in svc.spec.ports or []
                ],
                "age": format_age(svc.metadata.creation_timestamp),
            }
            for svc in response.items
        ]
        return _json({"services": services})

    async def get_namespaces(self, args: dict[str, Any]) -> ToolResult:
        items = await self._k8s.list_namespaces()
        namespaces = [
            {
                "name": ns.metadata.name,
                "status": ns.status.phase if ns.status else "Unknown",
                "age": format_age(ns.metadata.creation_timestamp),
            }
            for ns in items
        ]
        return _json({"namespaces": namespaces, "current": self._k8s.current_namespace})

    async def get_nodes(self, args: dict[str, Any]) -> ToolResult:
        response = await self._k8s.core_v1.list_node()
        nodes = [
            {
                "name": node.metadata.name,
                "status": node_status(node),
                "roles": node_roles(node),
                "version": node.status.node_info.kubelet_version if node.status and node.status.node_info else None,
                "age": format_age(node.metadata.creation_timestamp),
            }
            for node in response.items
        ]
        return _json({"nodes": nodes})

    async def get_configmaps(self, args: dict[str, Any]) -> ToolResult:
        response = await self._k8s.core_v1.list_namespaced_config_map(namespace=self._namespace(args))
        configmaps = [
            {
                "name": cm.metadata.name,
                "namespace": cm.metadata.namespace,
                "keys": sorted((cm.data or {}).keys()),
                "age": format_age(cm.metadata.creation_timestamp),
            }
            for cm in response.items
        ]
        return _json({"configmaps": configmaps})

    async def get_secrets(self, args: dict[str, Any]) -> ToolResult:
        response = await self._k8s.core_v1.list_namespaced_secret(namespace=self._namespace(args))
        secrets = [
            {
                "name": secret.metadata.name,
                "namespace": secret.metadata.namespace,
                "type": secret.type,
                "keys": sorted((secret.data or {}).keys()),
                "age": format_age(secret.metadata.creation_timestamp),
            }
            for secret in response.items
        ]
        return _json({"secrets": secrets})

    async def get_events(self, args: dict[str, Any]) -> ToolResult:
        kwargs: dict[str, Any] = {"namespace": self._namespace(args)}
        if args.get("fieldSelector"):
            kwargs["field_selector"] = args["fieldSelector"]
        response = await self._k8s.core_v1.list_namespaced_event(**kwargs)

        def _when(event: Any) -> datetime:
            when = event.last_timestamp or event.event_time or event.metadata.creation_timestamp
            return when or datetime.min.replace(tzinfo=timezone.utc)

        events = sorted(response.items, key=_when, reverse=True)[:MAX_EVENTS]
        return _json(
            {
                "events": [
                    {
                        "type": e.type,
                        "reason": e.reason,
                        "object": f"{e.involved_object.kind}/{e.involved_object.name}" if e.involved_object else "",
                        "message": e.message,
                        "count": e.count,
                        "age": format_age(_when(e)),
                    }
                    for e in events
                ]
            }
        )

    # ── Inspection ─────────────────────────────────────────────────────────────

    async def describe_resource(self, args: dict[str, Any]) -> ToolResult:
        cmd_args = [args["resourceType"], args["resourceName"], "-n", self._namespace(args)]
        return ToolResult.text(await self._kubectl.run("describe", cmd_args))

    async def kubectl(self, args: dict[str, Any]) -> ToolResult:
        result = await self._kubectl.execute(args["command"], [str(a) for a in args.get("args") or []])
        if result.success:
            return ToolResult.text(result.output)
        return ToolResult.error(result.error or "Unknown error")

    async def pod_logs(self, args: dict[str, Any]) -> ToolResult:
        lines = args.get("lines", 100)
        if lines < 1:
            raise ValidationError("lines must be a positive integer")
        kwargs: dict[str, Any] = {
            "name": args["podName"],
            "namespace": self._namespace(args),
            "tail_lines": lines,
        }
        if args.get("container"):
            kwargs["container"] = args["container"]
        logs = await self._k8s.core_v1.read_namespaced_pod_log(**kwargs)
        return ToolResult.text(logs or "")

    # ── Mutation ───────────────────────────────────────────────────────────────

    async def delete_pod(self, args: dict[str, Any]) -> ToolResult:
        output = await self._kubectl.run("delete", ["pod", args["podName"], "-n", self._namespace(args)])
        return ToolResult.text(output)

    async def scale_deployment(self, args: dict[str, Any]) -> ToolResult:
        output = await self._kubectl.run(
            "scale",
            [f"deployment/{args['deploymentName']}", f"--replicas={args['replicas']}", "-n", self._namespace(args)],
        )
        return ToolResult.text(output)

    async def restart_deployment(self, args: dict[str, Any]) -> ToolResult:
        name = args["deploymentName"]
        namespace = self._namespace(args)
        restarted_at = datetime.now(timezone.utc).isoformat()
        patch = {
            "spec": {
                "template": {
                    "metadata": {"annotations": {"kubectl.kubernetes.io/restartedAt": restarted_at}}
                }
            }
        }
        await self._k8s.apps_v1.patch_namespaced_deployment(name=name, namespace=namespace, body=patch)
        log_operation("restart_deployment", f"{namespace}/{name}")
        return ToolResult.text(f'deployment "{name}" restarted')

    async def rollout_status(self, args: dict[str, Any]) -> ToolResult:
        name = args["deploymentName"]
        d = await self._k8s.apps_v1.read_namespaced_deployment(name=name, namespace=self._namespace(args))
        desired = (d.spec.replicas if d.spec and d.spec.replicas is not None else 1)
        status = d.status
        updated = (status.updated_replicas or 0) if status else 0
        available = (status.available_replicas or 0) if status else 0
        observed = (status.observed_generation or 0) if status else 0

        if observed < (d.metadata.generation or 0):
            message = f'Waiting for deployment "{name}" spec update to be observed...'
        elif updated < desired:
            message = (
                f'Waiting for deployment "{name}" rollout to finish: '
                f"{updated} out of {desired} new replicas have been updated..."
            )
        elif available < desired:
            message = (
                f'Waiting for deployment "{name}" rollout to finish: '
                f"{available} of {desired} updated replicas are available..."
            )
        else:
            message = f'deployment "{name}" successfully rolled out'
        return ToolResult.text(message)

    # ── Cluster ────────────────────────────────────────────────────────────────

    async def cluster_info(self, args: dict[str, Any]) -> ToolResult:
        info = await self._k8s.get_cluster_info()
        return _json(info.to_dict())

    async def cluster_health(self, args: dict[str, Any]) -> ToolResult:
        health = await self._k8s.health_check()
        result = _json(health.to_dict())
        result.is_error = not health.healthy
        return result

    async def node_metrics(self, args: dict[str, Any]) -> ToolResult:
        metrics = await self._k8s.custom_objects.list_cluster_custom_object(
            group=METRICS_GROUP, version=METRICS_VERSION, plural="nodes"
        )
        nodes = [
            {"name": item["metadata"]["name"], "cpu": item["usage"].get("cpu"), "memory": item["usage"].get("memory")}
            for item in metrics.get("items", [])
        ]
        return _json({"nodes": nodes})

    async def pod_metrics(self, args: dict[str, Any]) -> ToolResult:
        metrics = await self._k8s.custom_objects.list_namespaced_custom_object(
            group=METRICS_GROUP, version=METRICS_VERSION, namespace=self._namespace(args), plural="pods"
        )
        pods = [
            {
                "name": item["metadata"]["name"],
                "containers": [
                    {"name": c["name"], "cpu": c["usage"].get("cpu"), "memory": c["usage"].get("memory")}
                    for c in item.get("containers", [])
                ],
            }
            for item in metrics.get("items", [])
        ]
        return _json({"pods": pods})

    # ── Session ────────────────────────────────────────────────────────────────

    async def switch_context(self, args: dict[str, Any]) -> ToolResult:
        await self._k8s.switch_context(args["contextName"])
        return ToolResult.text(f'Switched to context "{args["contextName"]}".')

    async def set_namespace(self, args: dict[str, Any]) -> ToolResult:
        namespace = self._namespace(args)
        await self._k8s.set_namespace(namespace)
        return ToolResult.text(f'Current namespace set to "{namespace}".')

    async def list_contexts(self, args: dict[str, Any]) -> ToolResult:
        return _json({"contexts": self._k8s.list_contexts(), "currentContext": self._k8s.current_context})
