"""Tests for table and age formatting."""

from datetime import datetime, timedelta, timezone

from kubernetes_asyncio.client import V1ConfigMap, V1ObjectMeta

from k8s_mcp.k8s.formatting import (
    format_age,
    format_table,
    node_roles,
    node_status,
    pod_status,
    ready_column,
    restarts_column,
    status_column,
)

from conftest import make_pod

NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


class TestFormatAge:
    def test_minutes(self):
        assert format_age(NOW - timedelta(minutes=45), now=NOW) == "45m"

    def test_hours_are_floored(self):
        assert format_age(NOW - timedelta(minutes=90), now=NOW) == "1h"

    def test_days_are_floored(self):
        assert format_age(NOW - timedelta(hours=50), now=NOW) == "2d"

    def test_iso_string(self):
        assert format_age("2024-05-01T11:30:00Z", now=NOW) == "30m"

    def test_naive_datetime_is_utc(self):
        assert format_age(datetime(2024, 5, 1, 10, 0), now=NOW) == "2h"

    def test_missing_or_unparseable(self):
        assert format_age(None) == "unknown"
        assert format_age("yesterday") == "unknown"

    def test_future_timestamp_clamps_to_zero(self):
        assert format_age(NOW + timedelta(minutes=5), now=NOW) == "0m"


class TestFormatTable:
    def test_minimum_column_width(self):
        output = format_table(["NAME", "STATUS"], [["pod-a", "Running"]])
        assert output.split("\n") == [
            "NAME      STATUS  ",
            "pod-a     Running ",
        ]

    def test_wide_cells_widen_column(self):
        output = format_table(["NAME"], [["a-very-long-pod-name"]])
        header, row = output.split("\n")
        assert len(header) == len("a-very-long-pod-name")
        assert row == "a-very-long-pod-name"

    def test_header_only(self):
        assert format_table(["NAME", "AGE"], []) == "NAME      AGE     "


class TestObjectSummaries:
    def test_waiting_reason_overrides_phase(self):
        pod = make_pod("p", phase="Running", waiting_reason="ImagePullBackOff")
        assert pod_status(pod) == "ImagePullBackOff"

    def test_node_ready_and_roles(self):
        from types import SimpleNamespace

        node = SimpleNamespace(
            metadata=SimpleNamespace(labels={"node-role.kubernetes.io/control-plane": ""}),
            status=SimpleNamespace(conditions=[SimpleNamespace(type="Ready", status="True")]),
        )
        assert node_status(node) == "Ready"
        assert node_roles(node) == "control-plane"

    def test_kinds_without_status(self):
        config_map = V1ConfigMap(metadata=V1ObjectMeta(name="app-config"), data={"LOG_LEVEL": "debug"})
        assert ready_column(config_map) == "N/A"
        assert status_column(config_map) == "Unknown"
        assert restarts_column(config_map) == "0"
