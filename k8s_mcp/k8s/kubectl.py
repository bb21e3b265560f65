"""
kubectl-style command translation.

Maps a verb plus kubectl-like arguments (``get pods -n kube-system``) onto
typed Kubernetes API calls. No kubectl binary is involved.
"""

import json
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

import structlog
import yaml

from k8s_mcp.errors import (
    KubernetesMCPError,
    UnsupportedCommandError,
    UnsupportedResourceError,
    ValidationError,
    translate_operation_error,
)
from k8s_mcp.k8s.client import KubernetesClient
from k8s_mcp.k8s.formatting import (
    format_age,
    format_table,
    ready_column,
    restarts_column,
    status_column,
)
from k8s_mcp.utils import log_operation

logger = structlog.get_logger()

RESOURCE_ALIASES: dict[str, str] = {
    "pod": "Pod",
    "pods": "Pod",
    "po": "Pod",
    "service": "Service",
    "services": "Service",
    "svc": "Service",
    "deployment": "Deployment",
    "deployments": "Deployment",
    "deploy": "Deployment",
    "namespace": "Namespace",
    "namespaces": "Namespace",
    "ns": "Namespace",
    "node": "Node",
    "nodes": "Node",
    "no": "Node",
    "configmap": "ConfigMap",
    "configmaps": "ConfigMap",
    "cm": "ConfigMap",
    "statefulset": "StatefulSet",
    "statefulsets": "StatefulSet",
    "sts": "StatefulSet",
}

CLUSTER_SCOPED = {"Namespace", "Node"}
SCALABLE = {"Deployment", "StatefulSet"}
DELETABLE = {"Pod", "Service", "Deployment", "ConfigMap", "StatefulSet"}

# kubectl verbs that exist but are not translated
UNIMPLEMENTED_VERBS = {
    "create",
    "apply",
    "patch",
    "rollout",
    "exec",
    "port-forward",
    "cp",
    "api-versions",
    "api-resources",
}

TABLE_HEADERS = ["NAME", "READY", "STATUS", "RESTARTS", "AGE"]

# Flags that consume the following argument
_VALUE_FLAGS = {"-n", "--namespace", "-o", "--output", "-c", "--container", "--tail", "-l", "--selector"}


@dataclass
class KubectlResult:
    success: bool
    output: str = ""
    error: str | None = None
    exit_code: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "output": self.output,
            "error": self.error,
            "exit_code": self.exit_code,
        }


def resolve_resource_type(token: str) -> str:
    """Canonical kind for a kubectl resource token, case-insensitive."""
    kind = RESOURCE_ALIASES.get(token.lower())
    if kind is None:
        raise UnsupportedResourceError(f"Resource type '{token}' not supported")
    return kind


def extract_namespace(args: list[str]) -> str | None:
    """Namespace from ``-n NS``, ``--namespace NS`` or ``--namespace=NS``."""
    for i, arg in enumerate(args):
        if arg in ("-n", "--namespace") and i + 1 < len(args):
            return args[i + 1]
        if arg.startswith("--namespace="):
            return arg.split("=", 1)[1]
    return None


def extract_flag(args: list[str], *names: str) -> str | None:
    """Value of the first matching flag in either ``--flag value`` or ``--flag=value`` form."""
    for i, arg in enumerate(args):
        if arg in names and i + 1 < len(args):
            return args[i + 1]
        for name in names:
            if name.startswith("--") and arg.startswith(f"{name}="):
                return arg.split("=", 1)[1]
    return None


def positional_args(args: list[str]) -> list[str]:
    """Arguments that are neither flags nor flag values."""
    result = []
    skip = False
    for arg in args:
        if skip:
            skip = False
            continue
        if arg in _VALUE_FLAGS:
            skip = True
            continue
        if arg.startswith("-"):
            continue
        result.append(arg)
    return result


class KubectlTranslator:
    """
    Translate kubectl verbs into Kubernetes API calls.

    ``run()`` raises errors from ``k8s_mcp.errors``; ``execute()`` wraps the
    same call into a ``KubectlResult`` and never raises.
    """

    def __init__(self, k8s: KubernetesClient) -> None:
        self._k8s = k8s
        self._verbs: dict[str, Callable[[list[str]], Awaitable[str]]] = {
            "get": self._get,
            "describe": self._describe,
            "delete": self._delete,
            "scale": self._scale,
            "logs": self._logs,
            "top": self._top,
            "config": self._config,
            "cluster-info": self._cluster_info,
            "version": self._version,
        }

    @property
    def supported_verbs(self) -> list[str]:
        return list(self._verbs)

    async def execute(self, verb: str, args: list[str] | None = None) -> KubectlResult:
        args = args or []
        command = " ".join(["kubectl", verb, *args])
        try:
            output = await self.run(verb, args)
        except KubernetesMCPError as e:
            logger.warning("kubectl_command_failed", command=command, error=e.message)
            return KubectlResult(success=False, error=e.message, exit_code=1)
        except Exception as e:
            error = translate_operation_error(e)
            logger.error("kubectl_command_error", command=command, error=str(e), error_type=type(e).__name__)
            return KubectlResult(success=False, error=error.message, exit_code=1)

        logger.info("kubectl_command_executed", command=command)
        return KubectlResult(success=True, output=output)

    async def run(self, verb: str, args: list[str] | None = None) -> str:
        args = args or []
        log_operation("kubectl_execute", " ".join(["kubectl", verb, *args]))

        handler = self._verbs.get(verb)
        if handler is None:
            if verb in UNIMPLEMENTED_VERBS:
                raise UnsupportedCommandError(f"Command '{verb}' not implemented")
            raise UnsupportedCommandError(f"Command '{verb}' not supported")

        try:
            return await handler(args)
        except KubernetesMCPError:
            raise
        except Exception as e:
            raise translate_operation_error(e) from e

    def _namespace(self, args: list[str]) -> str:
        return extract_namespace(args) or self._k8s.current_namespace

    # ── get / describe / delete ────────────────────────────────────────────────

    async def _get(self, args: list[str]) -> str:
        positional = positional_args(args)
        if not positional:
            raise ValidationError("Resource type required")

        kind = resolve_resource_type(positional[0])
        name = positional[1] if len(positional) > 1 else None
        namespace = self._namespace(args)
        output = extract_flag(args, "-o", "--output")

        result = await self._fetch(kind, name, namespace)
        return self._render(result, output)

    async def _describe(self, args: list[str]) -> str:
        positional = positional_args(args)
        if len(positional) < 2:
            raise ValidationError("Resource type and name required")

        kind = resolve_resource_type(positional[0])
        name = positional[1]
        namespace = self._namespace(args)

        result = await self._fetch(kind, name, namespace)
        body = self._render(result, "yaml")
        header = f"Name:         {name}\n"
        if kind not in CLUSTER_SCOPED:
            header += f"Namespace:    {namespace}\n"
        return header + body

    async def _fetch(self, kind: str, name: str | None, namespace: str) -> Any:
        core = self._k8s.core_v1
        apps = self._k8s.apps_v1

        if kind == "Pod":
            if name:
                return await core.read_namespaced_pod(name=name, namespace=namespace)
            return await core.list_namespaced_pod(namespace=namespace)
        if kind == "Service":
            if name:
                return await core.read_namespaced_service(name=name, namespace=namespace)
            return await core.list_namespaced_service(namespace=namespace)
        if kind == "ConfigMap":
            if name:
                return await core.read_namespaced_config_map(name=name, namespace=namespace)
            return await core.list_namespaced_config_map(namespace=namespace)
        if kind == "Deployment":
            if name:
                return await apps.read_namespaced_deployment(name=name, namespace=namespace)
            return await apps.list_namespaced_deployment(namespace=namespace)
        if kind == "StatefulSet":
            if name:
                return await apps.read_namespaced_stateful_set(name=name, namespace=namespace)
            return await apps.list_namespaced_stateful_set(namespace=namespace)
        if kind == "Namespace":
            if name:
                return await core.read_namespace(name=name)
            return await core.list_namespace()
        if kind == "Node":
            if name:
                return await core.read_node(name=name)
            return await core.list_node()
        raise UnsupportedResourceError(f"Resource type '{kind}' not supported")

    def _render(self, result: Any, output: str | None) -> str:
        data = self._k8s.serialize(result)
        if output == "json":
            return json.dumps(data, indent=2)
        if output == "yaml":
            return yaml.safe_dump(data, sort_keys=False)

        items = getattr(result, "items", None)
        if items is None:
            return json.dumps(data, indent=2)
        if not items:
            return "No resources found."

        rows = [
            [
                item.metadata.name or "unknown",
                ready_column(item),
                status_column(item),
                restarts_column(item),
                format_age(item.metadata.creation_timestamp),
            ]
            for item in items
        ]
        return format_table(TABLE_HEADERS, rows)

    async def _delete(self, args: list[str]) -> str:
        positional = positional_args(args)
        if len(positional) < 2:
            raise ValidationError("Resource type and name required")

        kind = resolve_resource_type(positional[0])
        name = positional[1]
        namespace = self._namespace(args)
        if kind not in DELETABLE:
            raise UnsupportedResourceError(f"Delete not supported for resource type '{positional[0]}'")

        core = self._k8s.core_v1
        apps = self._k8s.apps_v1
        if kind == "Pod":
            await core.delete_namespaced_pod(name=name, namespace=namespace)
        elif kind == "Service":
            await core.delete_namespaced_service(name=name, namespace=namespace)
        elif kind == "ConfigMap":
            await core.delete_namespaced_config_map(name=name, namespace=namespace)
        elif kind == "Deployment":
            await apps.delete_namespaced_deployment(name=name, namespace=namespace)
        else:
            await apps.delete_namespaced_stateful_set(name=name, namespace=namespace)

        return f'{positional[0]} "{name}" deleted'

    # ── scale ──────────────────────────────────────────────────────────────────

    async def _scale(self, args: list[str]) -> str:
        target = next((arg for arg in args if "/" in arg and not arg.startswith("-")), None)
        replicas_arg = next((arg for arg in args if arg.startswith("--replicas=")), None)
        if not target or not replicas_arg:
            raise ValidationError("Resource and replicas required (e.g., deployment/myapp --replicas=3)")

        type_token, name = target.split("/", 1)
        try:
            replicas = int(replicas_arg.split("=", 1)[1])
        except ValueError:
            raise ValidationError("Invalid replicas count") from None
        if replicas < 0:
            raise ValidationError("Invalid replicas count")

        kind = resolve_resource_type(type_token)
        if kind not in SCALABLE:
            raise UnsupportedResourceError(f"Scale not supported for resource type '{type_token}'")

        namespace = self._namespace(args)
        body = {"spec": {"replicas": replicas}}
        if kind == "Deployment":
            await self._k8s.apps_v1.patch_namespaced_deployment_scale(name=name, namespace=namespace, body=body)
        else:
            await self._k8s.apps_v1.patch_namespaced_stateful_set_scale(name=name, namespace=namespace, body=body)

        return f'{type_token} "{name}" scaled'

    # ── logs / top ─────────────────────────────────────────────────────────────

    async def _logs(self, args: list[str]) -> str:
        positional = positional_args(args)
        if not positional:
            raise ValidationError("Pod name required")

        pod = positional[0].split("/", 1)[-1]
        container = extract_flag(args, "-c", "--container")
        tail = extract_flag(args, "--tail")
        tail_lines = None
        if tail is not None:
            try:
                tail_lines = int(tail)
            except ValueError:
                raise ValidationError("Invalid --tail value") from None

        kwargs: dict[str, Any] = {"name": pod, "namespace": self._namespace(args)}
        if container:
            kwargs["container"] = container
        if tail_lines is not None and tail_lines >= 0:
            kwargs["tail_lines"] = tail_lines
        return await self._k8s.core_v1.read_namespaced_pod_log(**kwargs) or ""

    async def _top(self, args: list[str]) -> str:
        positional = positional_args(args)
        if not positional:
            raise ValidationError("Resource type required (nodes or pods)")

        target = positional[0].lower()
        custom = self._k8s.custom_objects
        if target in ("node", "nodes", "no"):
            metrics = await custom.list_cluster_custom_object(
                group="metrics.k8s.io", version="v1beta1", plural="nodes"
            )
            rows = [
                [item["metadata"]["name"], item["usage"].get("cpu", ""), item["usage"].get("memory", "")]
                for item in metrics.get("items", [])
            ]
            return format_table(["NAME", "CPU", "MEMORY"], rows) if rows else "No resources found."

        if target in ("pod", "pods", "po"):
            metrics = await custom.list_namespaced_custom_object(
                group="metrics.k8s.io", version="v1beta1", namespace=self._namespace(args), plural="pods"
            )
            rows = []
            for item in metrics.get("items", []):
                containers = item.get("containers", [])
                cpu = ",".join(c["usage"].get("cpu", "") for c in containers)
                memory = ",".join(c["usage"].get("memory", "") for c in containers)
                rows.append([item["metadata"]["name"], cpu, memory])
            return format_table(["NAME", "CPU", "MEMORY"], rows) if rows else "No resources found."

        raise UnsupportedResourceError(f"Top not supported for resource type '{positional[0]}'")

    # ── config / cluster-info / version ────────────────────────────────────────

    async def _config(self, args: list[str]) -> str:
        sub = args[0] if args else None
        if sub == "get-contexts":
            current = self._k8s.current_context
            return "\n".join(f"* {ctx}" if ctx == current else f"  {ctx}" for ctx in self._k8s.list_contexts())
        if sub == "current-context":
            return self._k8s.current_context or "No current context"
        if sub == "use-context":
            if len(args) < 2:
                raise ValidationError("Context name required")
            await self._k8s.switch_context(args[1])
            return f'Switched to context "{args[1]}".'
        raise UnsupportedCommandError(f"Config subcommand '{sub}' not supported")

    async def _cluster_info(self, args: list[str]) -> str:
        info = await self._k8s.get_cluster_info()
        return "\n".join(
            [
                f"Kubernetes control plane is running at {info.server}",
                "",
                "To further debug and diagnose cluster problems, use 'kubectl cluster-info dump'.",
            ]
        )

    async def _version(self, args: list[str]) -> str:
        info = await self._k8s.get_cluster_info()
        return "\n".join(
            [
                "Client Version: k8s-mcp-server",
                f"Server Version: {info.version or 'unknown'}",
            ]
        )
