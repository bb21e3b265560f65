"""Tests for the in-process metrics recorder."""

from k8s_mcp.monitoring.metrics import MetricsRecorder


def test_counters_and_summaries():
    metrics = MetricsRecorder()
    metrics.record_request("tools/call", "get_pods", "success", 12.5)
    metrics.record_request("tools/call", "get_pods", "success", 7.5)
    metrics.record_request("tools/call", "get_pods", "failed", 3.0)

    assert metrics.get_metric(
        "mcp_requests_total", {"class": "tools/call", "name": "get_pods", "outcome": "success"}
    ).value == 2
    assert metrics.get_metric("mcp_request_duration_ms", {"class": "tools/call", "name": "get_pods"}).value == 3
    assert metrics.get_metric("mcp_requests_total", {"name": "get_pods"}) is None


def test_label_order_does_not_matter():
    metrics = MetricsRecorder()
    metrics.increment("custom_total", {"b": "2", "a": "1"})
    assert metrics.get_metric("custom_total", {"a": "1", "b": "2"}).value == 1


def test_prometheus_export():
    metrics = MetricsRecorder()
    metrics.record_operation("get_pods", 10)
    metrics.record_error("delete_pod")
    text = metrics.export_prometheus()

    assert "# TYPE mcp_operation_total counter" in text
    assert 'mcp_operation_total{operation="get_pods"} 1' in text
    assert 'mcp_operation_errors_total{operation="delete_pod"} 1' in text
    assert 'mcp_operation_duration_ms_sum{operation="get_pods"} 10' in text
    assert 'mcp_operation_duration_ms_count{operation="get_pods"} 1' in text
    assert "# TYPE mcp_server_uptime_seconds gauge" in text
    assert text.endswith("\n")


def test_label_values_are_escaped():
    metrics = MetricsRecorder()
    metrics.increment("custom_total", {"name": 'say "hi"'})
    assert 'custom_total{name="say \\"hi\\""} 1' in metrics.export_prometheus()


def test_stats_and_health():
    metrics = MetricsRecorder()
    metrics.record_request("tools/call", "a", "success", 1)
    metrics.record_request("tools/call", "b", "denied", 1)
    assert metrics.get_stats()["requests_total"] == 2
    assert metrics.get_stats()["requests_failed"] == 1
    assert metrics.get_health_metrics()["error_rate"] == 0.5


def test_disabled_recorder_records_nothing():
    metrics = MetricsRecorder(enabled=False)
    metrics.record_request("tools/call", "a", "success", 1)
    assert metrics.get_metric("mcp_requests_total", {"class": "tools/call", "name": "a", "outcome": "success"}) is None
    assert metrics.get_stats()["requests_total"] == 0


def test_clear():
    metrics = MetricsRecorder()
    metrics.record_operation("get_pods", 1)
    metrics.clear()
    assert metrics.get_metric("mcp_operation_total", {"operation": "get_pods"}) is None
