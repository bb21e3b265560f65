"""Monitoring package: in-process request metrics."""

from k8s_mcp.monitoring.metrics import MetricsRecorder

__all__ = ["MetricsRecorder"]
