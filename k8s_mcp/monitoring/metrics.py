"""
In-process metrics recorder.

Counters and duration summaries are kept in memory keyed by metric name and
sorted label set, and exported in the Prometheus text exposition format for
the ``/metrics`` route.
"""

import threading
import time
from dataclasses import dataclass, field
from typing import Any

import structlog

logger = structlog.get_logger()

LabelKey = tuple[tuple[str, str], ...]

_HELP = {
    "mcp_requests_total": "Requests handled by the dispatcher",
    "mcp_request_duration_ms": "Request duration in milliseconds",
    "mcp_request_transitions_total": "Request state machine transitions",
    "mcp_operation_total": "Operations executed",
    "mcp_operation_duration_ms": "Operation duration in milliseconds",
    "mcp_operation_errors_total": "Operation errors",
}


@dataclass
class Summary:
    count: int = 0
    total: float = 0.0
    max: float = 0.0

    def observe(self, value: float) -> None:
        self.count += 1
        self.total += value
        self.max = max(self.max, value)


@dataclass
class MetricValue:
    name: str
    labels: dict[str, str] = field(default_factory=dict)
    value: float = 0.0
    updated_at: float = field(default_factory=time.time)


def _label_key(labels: dict[str, str] | None) -> LabelKey:
    return tuple(sorted((labels or {}).items()))


def _format_labels(key: LabelKey) -> str:
    if not key:
        return ""
    body = ",".join(f'{k}="{_escape(v)}"' for k, v in key)
    return "{" + body + "}"


def _escape(value: str) -> str:
    return str(value).replace("\\", "\\\\").replace('"', '\\"').replace("\n", "\\n")


class MetricsRecorder:
    """
    Thread-safe counters and summaries.

    A disabled recorder accepts every call and records nothing.
    """

    def __init__(self, enabled: bool = True) -> None:
        self.enabled = enabled
        self._counters: dict[str, dict[LabelKey, float]] = {}
        self._summaries: dict[str, dict[LabelKey, Summary]] = {}
        self._lock = threading.Lock()
        self._started_at = time.time()

    # ── Recording ──────────────────────────────────────────────────────────────

    def increment(self, name: str, labels: dict[str, str] | None = None, amount: float = 1) -> None:
        if not self.enabled:
            return
        key = _label_key(labels)
        with self._lock:
            series = self._counters.setdefault(name, {})
            series[key] = series.get(key, 0) + amount

    def observe(self, name: str, value: float, labels: dict[str, str] | None = None) -> None:
        if not self.enabled:
            return
        key = _label_key(labels)
        with self._lock:
            series = self._summaries.setdefault(name, {})
            series.setdefault(key, Summary()).observe(value)

    def record_operation(self, operation: str, duration_ms: float) -> None:
        self.increment("mcp_operation_total", {"operation": operation})
        self.observe("mcp_operation_duration_ms", duration_ms, {"operation": operation})

    def record_error(self, operation: str) -> None:
        self.increment("mcp_operation_errors_total", {"operation": operation})

    def record_request(self, request_class: str, name: str, outcome: str, duration_ms: float) -> None:
        labels = {"class": request_class, "name": name, "outcome": outcome}
        self.increment("mcp_requests_total", labels)
        self.observe("mcp_request_duration_ms", duration_ms, {"class": request_class, "name": name})

    def record_transition(self, request_class: str, state: str) -> None:
        self.increment("mcp_request_transitions_total", {"class": request_class, "state": state})

    # ── Reading ────────────────────────────────────────────────────────────────

    def get_metric(self, name: str, labels: dict[str, str] | None = None) -> MetricValue | None:
        """Current value of a counter, or the observation count of a summary."""
        key = _label_key(labels)
        with self._lock:
            if key in self._counters.get(name, {}):
                return MetricValue(name=name, labels=dict(key), value=self._counters[name][key])
            if key in self._summaries.get(name, {}):
                return MetricValue(name=name, labels=dict(key), value=self._summaries[name][key].count)
        return None

    def export_prometheus(self) -> str:
        lines: list[str] = []
        with self._lock:
            for name in sorted(self._counters):
                lines.append(f"# HELP {name} {_HELP.get(name, name)}")
                lines.append(f"# TYPE {name} counter")
                for key, value in self._counters[name].items():
                    lines.append(f"{name}{_format_labels(key)} {value:g}")

            for name in sorted(self._summaries):
                lines.append(f"# HELP {name} {_HELP.get(name, name)}")
                lines.append(f"# TYPE {name} summary")
                for key, summary in self._summaries[name].items():
                    labels = _format_labels(key)
                    lines.append(f"{name}_sum{labels} {summary.total:g}")
                    lines.append(f"{name}_count{labels} {summary.count}")

        uptime = time.time() - self._started_at
        lines.append("# HELP mcp_server_uptime_seconds Seconds since the server started")
        lines.append("# TYPE mcp_server_uptime_seconds gauge")
        lines.append(f"mcp_server_uptime_seconds {uptime:.3f}")
        return "\n".join(lines) + "\n"

    def get_stats(self) -> dict[str, Any]:
        with self._lock:
            requests = sum(self._counters.get("mcp_requests_total", {}).values())
            errors = sum(
                value
                for key, value in self._counters.get("mcp_requests_total", {}).items()
                if dict(key).get("outcome") != "success"
            )
            series = sum(len(s) for s in self._counters.values()) + sum(len(s) for s in self._summaries.values())
        return {
            "enabled": self.enabled,
            "series": series,
            "requests_total": requests,
            "requests_failed": errors,
            "uptime_seconds": round(time.time() - self._started_at, 3),
        }

    def get_health_metrics(self) -> dict[str, Any]:
        stats = self.get_stats()
        total = stats["requests_total"]
        return {
            "uptime_seconds": stats["uptime_seconds"],
            "requests_total": total,
            "error_rate": (stats["requests_failed"] / total) if total else 0.0,
        }

    def clear(self) -> None:
        with self._lock:
            self._counters.clear()
            self._summaries.clear()
        logger.debug("metrics_cleared")
