"""Async Kubernetes connector and kubectl-style command translation."""

from k8s_mcp.k8s.client import ClusterInfo, CredentialSource, HealthStatus, KubernetesClient
from k8s_mcp.k8s.kubectl import KubectlResult, KubectlTranslator

__all__ = [
    "ClusterInfo", "CredentialSource", "HealthStatus", "KubernetesClient",
    "KubectlResult", "KubectlTranslator",
]
