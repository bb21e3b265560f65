"""Tests for the access policy engine and rate limiter."""

import time

import pytest

from k8s_mcp.security.policy import (
    AccessRule,
    PolicyEngine,
    RateLimiter,
    RuleAction,
    SecurityContext,
    SecurityPolicy,
    match_pattern,
    validate_resource_name,
)


class FakeClock:
    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock(monkeypatch) -> FakeClock:
    """Freeze wall-clock time, which the in-memory rate-limit storage reads."""
    fake = FakeClock()
    monkeypatch.setattr(time, "time", fake)
    return fake


def allow(resource, operations=None, **conditions):
    return AccessRule(RuleAction.ALLOW, resource, operations, conditions)


def deny(resource, operations=None, **conditions):
    return AccessRule(RuleAction.DENY, resource, operations, conditions)


class TestRules:
    def test_patterns(self):
        assert match_pattern("*", "tools/anything")
        assert match_pattern("tools/get_*", "tools/get_pods")
        assert not match_pattern("tools/get_*", "tools/delete_pod")
        assert match_pattern("*_pods", "tools/get_pods")
        assert match_pattern("tools/kubectl", "tools/kubectl")
        assert not match_pattern("tools/kubectl", "tools/kubectl2")

    def test_last_match_wins(self):
        policy = SecurityPolicy("p", [allow("*"), deny("tools/kubectl")])
        assert policy.decide("tools/kubectl", "execute", {}) is False
        assert policy.decide("tools/get_pods", "execute", {}) is True

    def test_later_allow_overrides_earlier_deny(self):
        policy = SecurityPolicy("p", [deny("tools/*"), allow("tools/get_pods")])
        assert policy.decide("tools/get_pods", "execute", {})
        assert not policy.decide("tools/delete_pod", "execute", {})

    def test_no_match_denies(self):
        assert SecurityPolicy("empty").decide("tools/get_pods", "execute", {}) is False

    def test_operations_restrict_rule(self):
        policy = SecurityPolicy("p", [allow("resources/*", ["read"])])
        assert policy.decide("resources/k8s-pod", "read", {})
        assert not policy.decide("resources/k8s-pod", "write", {})

    def test_conditions(self):
        rule = deny("tools/kubectl", ["execute"], command=["delete", "apply"])
        assert rule.matches("tools/kubectl", "execute", {"command": "delete"})
        assert not rule.matches("tools/kubectl", "execute", {"command": "get"})
        assert not rule.matches("tools/kubectl", "execute", {})

        scalar = allow("tools/get_pods", namespace="default")
        assert scalar.matches("tools/get_pods", "execute", {"namespace": "default"})
        assert not scalar.matches("tools/get_pods", "execute", {"namespace": "prod"})

    @pytest.mark.parametrize(
        "name,valid",
        [("web-1", True), ("a", True), ("Web", False), ("-web", False), ("web-", False), ("", False), ("a" * 254, False)],
    )
    def test_resource_names(self, name, valid):
        assert validate_resource_name(name) is valid


class TestRateLimiter:
    def test_moving_window(self, clock):
        limiter = RateLimiter(window_seconds=60, max_requests=3)

        assert [limiter.check("alice") for _ in range(4)] == [True, True, True, False]

        clock.advance(61)
        assert limiter.check("alice") is True

    def test_identities_are_independent(self, clock):
        limiter = RateLimiter(window_seconds=60, max_requests=1)
        assert limiter.check("alice")
        assert limiter.check("bob")
        assert not limiter.check("alice")

    def test_window_slides(self, clock):
        limiter = RateLimiter(window_seconds=60, max_requests=2)
        limiter.check("alice")
        clock.advance(30)
        limiter.check("alice")
        clock.advance(31)
        # first request has aged out, second has not
        assert limiter.check("alice")
        assert not limiter.check("alice")

    def test_cleanup_drops_idle_identities(self, clock):
        limiter = RateLimiter(window_seconds=10, max_requests=5)
        limiter.check("alice")
        limiter.check("bob")
        clock.advance(5)
        limiter.check("bob")
        clock.advance(6)
        assert limiter.cleanup() == 1
        assert limiter.active_identities == 1


class TestPolicyEngine:
    def test_default_policy_allows(self, settings):
        engine = PolicyEngine(settings)
        ctx = SecurityContext(user_id="alice")
        assert engine.evaluate(ctx, "tools/get_pods", "execute")
        assert engine.evaluate(ctx, "resources/k8s-secret", "read")
        assert engine.evaluate(ctx, "prompts/k8s-cluster-health", "generate")

    def test_strict_policy(self, settings):
        settings.security_policy = "strict"
        engine = PolicyEngine(settings)
        ctx = SecurityContext(user_id="alice")
        assert engine.evaluate(ctx, "tools/get_pods", "execute")
        assert not engine.evaluate(ctx, "tools/delete_pod", "execute")
        assert not engine.evaluate(ctx, "resources/k8s-secret", "read")
        assert engine.evaluate(ctx, "resources/k8s-pod", "read")
        assert not engine.evaluate(ctx, "tools/kubectl", "execute", {"command": "delete"})

    def test_unknown_policy_falls_back_to_default(self, settings):
        settings.security_policy = "nonexistent"
        engine = PolicyEngine(settings)
        assert engine.get_stats()["default_policy"] == "default"

    def test_identity_assignment(self, settings):
        settings.policy_assignments = {"ci-bot": "strict"}
        engine = PolicyEngine(settings)
        assert not engine.evaluate(SecurityContext(user_id="ci-bot"), "tools/delete_pod", "execute")
        assert engine.evaluate(SecurityContext(user_id="alice"), "tools/delete_pod", "execute")

    def test_non_destructive_mode(self, settings):
        settings.allow_only_non_destructive_tools = True
        engine = PolicyEngine(settings, destructive_tools=["delete_pod"])
        ctx = SecurityContext(user_id="alice")
        assert not engine.evaluate(ctx, "tools/delete_pod", "execute")
        assert not engine.evaluate(ctx, "tools/kubectl", "execute", {"command": "scale"})
        assert not engine.evaluate(ctx, "tools/kubectl", "execute", {"command": "config"})
        assert engine.evaluate(ctx, "tools/kubectl", "execute", {"command": "get"})
        assert engine.evaluate(ctx, "tools/scale_deployment", "execute")

    def test_rate_limit_applies_before_policy(self, settings, clock):
        settings.rate_limit_max_requests = 2
        engine = PolicyEngine(settings)
        ctx = SecurityContext(user_id="alice")
        assert engine.evaluate(ctx, "tools/get_pods", "execute")
        assert engine.evaluate(ctx, "tools/get_pods", "execute")
        assert not engine.evaluate(ctx, "tools/get_pods", "execute")

        clock.advance(settings.rate_limit_window_seconds + 1)
        assert engine.evaluate(ctx, "tools/get_pods", "execute")

    def test_errors_while_deciding_deny(self, settings):
        engine = PolicyEngine(settings)
        engine.add_policy(SecurityPolicy("broken", [allow("tools/*", command=object())]))
        engine.assign_policy("alice", "broken")

        class Exploding(dict):
            def get(self, key, default=None):
                raise RuntimeError("boom")

        assert not engine.evaluate(SecurityContext(user_id="alice"), "tools/get_pods", "execute", Exploding(x=1))

    def test_rate_limiter_failure_denies(self, settings, monkeypatch):
        engine = PolicyEngine(settings)

        def broken(identity):
            raise RuntimeError("storage unavailable")

        monkeypatch.setattr(engine._rate_limiter, "check", broken)
        assert not engine.evaluate(SecurityContext(user_id="alice"), "tools/get_pods", "execute")

    def test_policy_management(self, settings):
        engine = PolicyEngine(settings)
        engine.add_policy(SecurityPolicy("readonly", [allow("resources/*", ["read"])]))
        assert "readonly" in engine.list_policies()
        assert engine.get_policy("readonly").rules[0].resource == "resources/*"
        assert engine.remove_policy("readonly")
        assert not engine.remove_policy("default")
        assert not engine.remove_policy("missing")
        assert engine.is_healthy()

    def test_api_key_authentication(self, settings):
        engine = PolicyEngine(settings)
        ctx = engine.authenticate_api_key("k8s-key-abcdef")
        assert ctx.user_id == "api_abcdef"
        assert ctx.source == "api_key"
        assert engine.authenticate_api_key("short") is None
        assert engine.authenticate_api_key(None) is None

    def test_api_key_allow_list(self, settings):
        settings.api_keys = ["listed-key-123456"]
        engine = PolicyEngine(settings)
        assert engine.authenticate_api_key("listed-key-123456") is not None
        assert engine.authenticate_api_key("unlisted-key-654321") is None
