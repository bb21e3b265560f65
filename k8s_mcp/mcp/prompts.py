"""
Prompt registry and the built-in Kubernetes troubleshooting prompts.

Each prompt renders a single user message: a short request naming the
target, followed by a fixed checklist.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable

import structlog

from k8s_mcp.errors import KubernetesMCPError, NotFoundError, ValidationError
from k8s_mcp.k8s.client import KubernetesClient
from k8s_mcp.mcp.results import PromptResult

logger = structlog.get_logger()

PromptRenderer = Callable[[dict[str, str]], PromptResult]


@dataclass(frozen=True)
class PromptArgument:
    name: str
    description: str
    required: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.name, "description": self.description, "required": self.required}


@dataclass(frozen=True)
class PromptDescriptor:
    name: str
    description: str
    render: PromptRenderer
    arguments: tuple[PromptArgument, ...] = field(default_factory=tuple)

    def summary(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "arguments": [arg.to_dict() for arg in self.arguments],
        }

    def check_arguments(self, arguments: dict[str, str]) -> None:
        for arg in self.arguments:
            if arg.required and not arguments.get(arg.name):
                raise ValidationError(f"Missing required argument: {arg.name}")


class PromptRegistry:
    """Name to prompt table. Re-registering a name replaces the earlier prompt."""

    def __init__(self) -> None:
        self._prompts: dict[str, PromptDescriptor] = {}

    def register(self, descriptor: PromptDescriptor) -> None:
        if descriptor.name in self._prompts:
            logger.warning("prompt_overwritten", prompt=descriptor.name)
        self._prompts[descriptor.name] = descriptor

    def register_all(self, descriptors: list[PromptDescriptor]) -> None:
        for descriptor in descriptors:
            self.register(descriptor)
        logger.info("prompts_registered", count=len(self._prompts))

    def list(self) -> list[dict[str, Any]]:
        return [p.summary() for p in self._prompts.values()]

    def names(self) -> list[str]:
        return list(self._prompts)

    def __len__(self) -> int:
        return len(self._prompts)

    def render(self, name: str, arguments: dict[str, Any] | None = None) -> PromptResult:
        """
        Render a prompt.

        Raises NotFoundError for an unknown name; argument and rendering
        failures come back as an error-flagged result.
        """
        prompt = self._prompts.get(name)
        if prompt is None:
            raise NotFoundError(f"Prompt not found: {name}")

        args = {key: str(value) for key, value in (arguments or {}).items() if value is not None}
        try:
            prompt.check_arguments(args)
            return prompt.render(args)
        except KubernetesMCPError as e:
            logger.warning("prompt_failed", prompt=name, error=e.message)
            return PromptResult.error(f"Error: {e.message}")
        except Exception as e:
            logger.error("prompt_error", prompt=name, error=str(e), error_type=type(e).__name__)
            return PromptResult.error(f"Error: {e}")


_NAMESPACE = PromptArgument("namespace", "Namespace (optional)")
_POD = PromptArgument("podName", "Pod name to diagnose")


def _checklist(intro: str, items: list[str]) -> str:
    return intro + "\n\nChecklist:\n" + "\n".join(f"- {item}" for item in items)


class KubernetesPrompts:
    """
    Troubleshooting prompts. A missing namespace argument renders as the
    connector's current namespace.
    """

    def __init__(self, k8s: KubernetesClient) -> None:
        self._k8s = k8s

    def _ns(self, args: dict[str, str]) -> str:
        return args.get("namespace") or self._k8s.current_namespace

    def descriptors(self) -> list[PromptDescriptor]:
        return [
            PromptDescriptor(
                "k8s-pod-diagnose",
                "Diagnose pod issues and provide troubleshooting steps",
                self.pod_diagnose,
                (PromptArgument("podName", "Pod name to diagnose", required=True), _NAMESPACE),
            ),
            PromptDescriptor(
                "k8s-cluster-health",
                "Check cluster health and provide recommendations",
                self.cluster_health,
            ),
            PromptDescriptor(
                "k8s-pod-crashloop-diagnose",
                "Diagnose why a pod is in a CrashLoopBackOff state and provide step-by-step remediation guidance.",
                self.crashloop,
                (_POD, _NAMESPACE),
            ),
            PromptDescriptor(
                "k8s-image-pull-failure",
                "Investigate and resolve image pull errors for a deployment or pod.",
                self.image_pull,
                (PromptArgument("resourceName", "Deployment or pod name"), _NAMESPACE),
            ),
            PromptDescriptor(
                "k8s-pod-network-diagnose",
                "Diagnose networking issues for a pod, such as connectivity or DNS failures.",
                self.pod_network,
                (_POD, _NAMESPACE),
            ),
            PromptDescriptor(
                "k8s-pv-mount-failure",
                "Troubleshoot why a pod's persistent volume failed to mount.",
                self.pv_mount,
                (_POD, _NAMESPACE),
            ),
            PromptDescriptor(
                "k8s-cluster-resource-pressure",
                "Identify and address resource pressure (CPU, memory) in the cluster.",
                self.resource_pressure,
            ),
            PromptDescriptor(
                "k8s-service-unreachable",
                "Diagnose why a Kubernetes service is not reachable from within or outside the cluster.",
                self.service_unreachable,
                (PromptArgument("serviceName", "Service name"), _NAMESPACE),
            ),
            PromptDescriptor(
                "k8s-rbac-access-denied",
                'Help users resolve RBAC "access denied" errors.',
                self.rbac_denied,
                (
                    PromptArgument("subject", "User, group, or service account"),
                    PromptArgument("verb", "Action (e.g., get, list, create)"),
                    PromptArgument("resource", "Resource type (e.g., pods, deployments)"),
                    _NAMESPACE,
                ),
            ),
            PromptDescriptor(
                "k8s-pod-resource-usage",
                "Analyze resource usage (CPU, memory) for a specific pod and provide optimization tips.",
                self.pod_resource_usage,
                (PromptArgument("podName", "Pod name"), _NAMESPACE),
            ),
            PromptDescriptor(
                "k8s-deployment-rollout-troubleshoot",
                "Troubleshoot a stuck or failed deployment rollout.",
                self.rollout_troubleshoot,
                (PromptArgument("deploymentName", "Deployment name"), _NAMESPACE),
            ),
            PromptDescriptor(
                "k8s-best-practices-audit",
                "Audit a namespace or deployment for Kubernetes best practices.",
                self.best_practices,
                (_NAMESPACE, PromptArgument("deploymentName", "Deployment name (optional)")),
            ),
        ]

    # ── Renderers ──────────────────────────────────────────────────────────────

    def pod_diagnose(self, args: dict[str, str]) -> PromptResult:
        pod, ns = args["podName"], self._ns(args)
        return PromptResult.user_text(
            f"Troubleshooting guide for pod {pod} in namespace {ns}",
            f"Please help me troubleshoot pod {pod} in namespace {ns}. "
            "Check its status, events, logs, and provide recommendations.",
        )

    def cluster_health(self, args: dict[str, str]) -> PromptResult:
        return PromptResult.user_text(
            "Cluster health assessment and recommendations",
            "Please assess the overall health of this Kubernetes cluster and provide recommendations for improvement.",
        )

    def crashloop(self, args: dict[str, str]) -> PromptResult:
        pod, ns = args.get("podName", ""), self._ns(args)
        return PromptResult.user_text(
            f"CrashLoopBackOff diagnosis for pod {pod} in namespace {ns}",
            _checklist(
                f"Analyze the pod {pod} in namespace {ns} for CrashLoopBackOff issues.",
                [
                    "Check recent events for the pod (image pull errors, OOM, etc.)",
                    "Inspect container logs for stack traces or errors",
                    "Review resource requests/limits",
                    "Examine readiness/liveness probes",
                    "Suggest specific fixes for the root cause.",
                ],
            ),
        )

    def image_pull(self, args: dict[str, str]) -> PromptResult:
        name, ns = args.get("resourceName", ""), self._ns(args)
        return PromptResult.user_text(
            f"Image pull failure investigation for {name} in namespace {ns}",
            _checklist(
                f"Investigate why the image for {name} in namespace {ns} failed to pull.",
                [
                    "Verify image name and tag",
                    "Check registry credentials and access",
                    "Confirm network connectivity to registry",
                    "Review events for authentication or DNS errors",
                    "Provide actionable steps to resolve the issue.",
                ],
            ),
        )

    def pod_network(self, args: dict[str, str]) -> PromptResult:
        pod, ns = args.get("podName", ""), self._ns(args)
        return PromptResult.user_text(
            f"Network diagnosis for pod {pod} in namespace {ns}",
            _checklist(
                f"Diagnose networking issues for pod {pod} in namespace {ns}.",
                [
                    "Check pod IP and status",
                    "Test DNS resolution from within the pod",
                    "Verify service endpoints and selectors",
                    "Inspect network policies",
                    "Suggest troubleshooting steps and possible fixes.",
                ],
            ),
        )

    def pv_mount(self, args: dict[str, str]) -> PromptResult:
        pod, ns = args.get("podName", ""), self._ns(args)
        return PromptResult.user_text(
            f"Persistent volume mount failure for pod {pod} in namespace {ns}",
            _checklist(
                f"Analyze why the persistent volume for pod {pod} in namespace {ns} failed to mount.",
                [
                    "Check PVC status and events",
                    "Review storage class and access modes",
                    "Inspect node and pod events for mount errors",
                    "Recommend steps to resolve the mount issue.",
                ],
            ),
        )

    def resource_pressure(self, args: dict[str, str]) -> PromptResult:
        return PromptResult.user_text(
            "Cluster resource pressure assessment",
            _checklist(
                "Assess the cluster for resource pressure.",
                [
                    "Identify nodes or namespaces with high CPU/memory usage",
                    "Review pod eviction events",
                    "Recommend actions to rebalance workloads or increase resources.",
                ],
            ),
        )

    def service_unreachable(self, args: dict[str, str]) -> PromptResult:
        svc, ns = args.get("serviceName", ""), self._ns(args)
        return PromptResult.user_text(
            f"Service unreachable diagnosis for {svc} in namespace {ns}",
            _checklist(
                f"Diagnose why service {svc} in namespace {ns} is unreachable.",
                [
                    "Check endpoints and selectors",
                    "Review service type and ports",
                    "Inspect network policies",
                    "Suggest steps to restore connectivity.",
                ],
            ),
        )

    def rbac_denied(self, args: dict[str, str]) -> PromptResult:
        subject, verb, resource = args.get("subject", ""), args.get("verb", ""), args.get("resource", "")
        ns = self._ns(args)
        return PromptResult.user_text(
            f"RBAC access denied troubleshooting for {subject} on {resource} ({verb}) in namespace {ns}",
            _checklist(
                f"User or service account {subject} was denied permission to {verb} {resource} in namespace {ns}.",
                [
                    "Analyze RBAC roles and bindings",
                    "Check for missing or misconfigured role bindings",
                    "Provide steps to grant the necessary access.",
                ],
            ),
        )

    def pod_resource_usage(self, args: dict[str, str]) -> PromptResult:
        pod, ns = args.get("podName", ""), self._ns(args)
        return PromptResult.user_text(
            f"Resource usage analysis for pod {pod} in namespace {ns}",
            _checklist(
                f"Analyze CPU and memory usage for pod {pod} in namespace {ns}.",
                [
                    "Compare requests/limits to actual usage",
                    "Identify over/under-provisioned resources",
                    "Suggest optimizations for resource allocation.",
                ],
            ),
        )

    def rollout_troubleshoot(self, args: dict[str, str]) -> PromptResult:
        name, ns = args.get("deploymentName", ""), self._ns(args)
        return PromptResult.user_text(
            f"Deployment rollout troubleshooting for {name} in namespace {ns}",
            _checklist(
                f"Troubleshoot the rollout of deployment {name} in namespace {ns}.",
                [
                    "Check for unavailable replicas",
                    "Review failed pods and events",
                    "Suggest steps to resolve rollout issues.",
                ],
            ),
        )

    def best_practices(self, args: dict[str, str]) -> PromptResult:
        ns = self._ns(args)
        deployment = args.get("deploymentName")
        return PromptResult.user_text(
            f"Best practices audit for {f'deployment {deployment}' if deployment else 'namespace'} in namespace {ns}",
            _checklist(
                f"Audit the configuration of {f'deployment {deployment}' if deployment else 'the namespace'} "
                f"in namespace {ns} for Kubernetes best practices.",
                [
                    "Check for resource requests/limits",
                    "Liveness/readiness probes",
                    "Use of latest image tags",
                    "Security context and RBAC",
                    "Provide a summary and recommendations.",
                ],
            ),
        )
