"""Tests for resource URI parsing and the resource registry."""

import json

import pytest
import yaml

from k8s_mcp.errors import NotFoundError, UnsupportedResourceError, ValidationError
from k8s_mcp.mcp.resources import (
    LAST_APPLIED,
    MASK,
    KubernetesResources,
    ResourceRegistry,
    mask_secret,
    parse_resource_uri,
)

from conftest import ApiError, item_list, make_secret


@pytest.fixture
def registry(fake_k8s):
    registry = ResourceRegistry()
    registry.register_all(KubernetesResources(fake_k8s).descriptors())
    return registry


class TestParseResourceUri:
    def test_authority_is_first_segment(self):
        uri = parse_resource_uri("k8s-pod://default/my-pod")
        assert uri.scheme == "k8s-pod"
        assert uri.segments == ["default", "my-pod"]

    def test_query(self):
        uri = parse_resource_uri("k8s-logs://prod/web-1?container=app&lines=20")
        assert uri.segments == ["prod", "web-1"]
        assert uri.query == {"container": "app", "lines": "20"}

    def test_no_segments(self):
        assert parse_resource_uri("k8s-events://").segments == []

    @pytest.mark.parametrize("uri", ["", "not a uri", "k8s-pod:default/my-pod"])
    def test_invalid(self, uri):
        with pytest.raises(ValidationError):
            parse_resource_uri(uri)


class TestRegistry:
    def test_lists_every_scheme(self, registry):
        schemes = {entry["name"] for entry in registry.list()}
        assert schemes == {
            "k8s-pod", "k8s-deployment", "k8s-service", "k8s-configmap", "k8s-secret",
            "k8s-namespace", "k8s-node", "k8s-logs", "k8s-events", "k8s-manifest",
        }

    async def test_read_pod(self, registry, fake_k8s):
        content = await registry.read("k8s-pod://default/web-1")
        assert content.mime_type == "application/json"
        assert json.loads(content.text)["metadata"]["name"] == "web-1"
        assert fake_k8s.core_v1.called("read_namespaced_pod") == [{"name": "web-1", "namespace": "default"}]

    async def test_too_few_segments(self, registry):
        with pytest.raises(ValidationError, match="k8s-pod://namespace/name"):
            await registry.read("k8s-pod://default")

    async def test_unknown_scheme(self, registry):
        with pytest.raises(NotFoundError):
            await registry.read("k8s-ingress://default/web")

    async def test_api_errors_propagate_translated(self, registry, fake_k8s):
        fake_k8s.core_v1.responses["read_namespaced_pod"] = ApiError(404, "Not Found")
        with pytest.raises(NotFoundError, match="Not Found"):
            await registry.read("k8s-pod://default/ghost")

    async def test_logs_default_lines(self, registry, fake_k8s):
        content = await registry.read("k8s-logs://default/web-1")
        assert content.mime_type == "text/plain"
        assert content.text == "line 1\nline 2\n"
        assert fake_k8s.core_v1.called("read_namespaced_pod_log") == [
            {"name": "web-1", "namespace": "default", "tail_lines": 100}
        ]

    async def test_logs_query_parameters(self, registry, fake_k8s):
        await registry.read("k8s-logs://default/web-1?container=sidecar&lines=5")
        assert fake_k8s.core_v1.called("read_namespaced_pod_log")[0]["container"] == "sidecar"
        assert fake_k8s.core_v1.called("read_namespaced_pod_log")[0]["tail_lines"] == 5

    async def test_logs_bad_lines(self, registry):
        with pytest.raises(ValidationError):
            await registry.read("k8s-logs://default/web-1?lines=many")

    async def test_events_namespace_optional(self, registry, fake_k8s):
        fake_k8s.core_v1.responses["list_event_for_all_namespaces"] = item_list()
        fake_k8s.core_v1.responses["list_namespaced_event"] = item_list()
        await registry.read("k8s-events://")
        await registry.read("k8s-events://prod")
        assert len(fake_k8s.core_v1.called("list_event_for_all_namespaces")) == 1
        assert fake_k8s.core_v1.called("list_namespaced_event") == [{"namespace": "prod"}]

    async def test_secret_values_masked(self, registry, fake_k8s):
        fake_k8s.core_v1.responses["read_namespaced_secret"] = make_secret(
            "db", {"password": "c2VjcmV0"}, annotations={LAST_APPLIED: '{"data":{"password":"c2VjcmV0"}}'}
        )
        content = await registry.read("k8s-secret://default/db")
        assert "c2VjcmV0" not in content.text
        data = json.loads(content.text)
        assert data["data"] == {"password": MASK}
        assert data["metadata"]["annotations"][LAST_APPLIED] == MASK

    async def test_manifest_yaml(self, registry):
        content = await registry.read("k8s-manifest://deployment/default/web")
        assert content.mime_type == "application/x-yaml"
        assert yaml.safe_load(content.text)["spec"]["replicas"] == 3

    async def test_manifest_unsupported_kind(self, registry):
        with pytest.raises(UnsupportedResourceError):
            await registry.read("k8s-manifest://ingress/default/web")


def test_mask_secret_leaves_input_untouched():
    original = {"data": {"token": "abc"}, "metadata": {"name": "t"}}
    masked = mask_secret(original)
    assert masked["data"] == {"token": MASK}
    assert original["data"] == {"token": "abc"}
