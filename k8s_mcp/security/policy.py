"""
Access policy engine.

Requests are evaluated against ordered allow/deny rules. Every matching rule
is folded in order and the last match decides; no match means deny. A
per-identity moving-window rate limiter runs before any rule is looked at.
"""

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

import structlog
from limits import RateLimitItemPerSecond
from limits.storage import MemoryStorage
from limits.strategies import MovingWindowRateLimiter

from k8s_mcp.config import Settings
from k8s_mcp.utils import log_audit

logger = structlog.get_logger()

ANONYMOUS = "anonymous"
MIN_API_KEY_LENGTH = 10

_RESOURCE_NAME = re.compile(r"^[a-z0-9]([-a-z0-9]*[a-z0-9])?$")

DESTRUCTIVE_TOOLS = [
    "delete_pod",
    "scale_deployment",
    "restart_deployment",
    "switch_context",
]


class RuleAction(str, Enum):
    ALLOW = "allow"
    DENY = "deny"


@dataclass
class AccessRule:
    """
    One allow/deny rule.

    ``resource`` is an exact key, ``*``, a prefix pattern (``tools/get_*``) or
    a suffix pattern (``*_pods``). ``operations`` restricts the rule to the
    listed operations. Each ``conditions`` entry must match the request
    parameter of the same name: list values by membership, scalars by
    equality.
    """

    action: RuleAction
    resource: str
    operations: list[str] | None = None
    conditions: dict[str, Any] = field(default_factory=dict)

    def matches(self, resource: str, operation: str, params: dict[str, Any]) -> bool:
        if not match_pattern(self.resource, resource):
            return False
        if self.operations is not None and operation not in self.operations:
            return False
        for key, expected in self.conditions.items():
            actual = params.get(key)
            if isinstance(expected, (list, tuple, set, frozenset)):
                if actual not in expected:
                    return False
            elif actual != expected:
                return False
        return True


@dataclass
class SecurityPolicy:
    name: str
    rules: list[AccessRule] = field(default_factory=list)

    def decide(self, resource: str, operation: str, params: dict[str, Any]) -> bool:
        allowed = False
        for rule in self.rules:
            if rule.matches(resource, operation, params):
                allowed = rule.action == RuleAction.ALLOW
        return allowed


@dataclass
class SecurityContext:
    """Who is making a request."""

    user_id: str = ANONYMOUS
    source: str = "anonymous"
    groups: list[str] = field(default_factory=list)
    permissions: list[str] = field(default_factory=list)


def match_pattern(pattern: str, resource: str) -> bool:
    if pattern == "*":
        return True
    if pattern.endswith("*"):
        return resource.startswith(pattern[:-1])
    if pattern.startswith("*"):
        return resource.endswith(pattern[1:])
    return pattern == resource


def validate_resource_name(name: str) -> bool:
    """RFC 1123 subdomain-style Kubernetes object name, at most 253 characters."""
    return bool(name) and len(name) <= 253 and _RESOURCE_NAME.match(name) is not None


def default_policies() -> dict[str, SecurityPolicy]:
    """Built-in ``default`` (permissive) and ``strict`` (restrictive) policies."""
    permissive = SecurityPolicy(
        name="default",
        rules=[
            AccessRule(RuleAction.ALLOW, "tools/*", ["execute"]),
            AccessRule(RuleAction.ALLOW, "resources/*", ["read"]),
            AccessRule(RuleAction.ALLOW, "prompts/*", ["generate"]),
        ],
    )
    strict = SecurityPolicy(
        name="strict",
        rules=[
            AccessRule(
                RuleAction.DENY,
                "tools/kubectl",
                ["execute"],
                conditions={"command": ["delete", "apply", "create"]},
            ),
            AccessRule(RuleAction.DENY, "resources/k8s-secret", ["read"]),
            AccessRule(RuleAction.ALLOW, "tools/get_*", ["execute"]),
            AccessRule(RuleAction.ALLOW, "resources/k8s-pod", ["read"]),
        ],
    )
    return {permissive.name: permissive, strict.name: strict}


class RateLimiter:
    """
    Moving-window request limit per identity.

    Built on the ``limits`` moving-window strategy with in-memory storage,
    which prunes an identity's window lazily on each hit.
    """

    def __init__(self, window_seconds: float, max_requests: int) -> None:
        self.window_seconds = window_seconds
        self.max_requests = max_requests
        self._item = RateLimitItemPerSecond(max_requests, window_seconds)
        self._limiter = MovingWindowRateLimiter(MemoryStorage())
        self._identities: set[str] = set()

    def check(self, identity: str) -> bool:
        self._identities.add(identity)
        return self._limiter.hit(self._item, identity)

    def cleanup(self) -> int:
        """Forget identities whose window has emptied. Returns how many were dropped."""
        idle = [
            identity
            for identity in list(self._identities)
            if self._limiter.get_window_stats(self._item, identity).remaining >= self.max_requests
        ]
        for identity in idle:
            self._identities.discard(identity)
        return len(idle)

    @property
    def active_identities(self) -> int:
        return len(self._identities)


class PolicyEngine:
    """
    Decides whether a request may proceed.

    Usage:
        engine = PolicyEngine(settings)
        if not engine.evaluate(ctx, "tools/get_pods", "execute", arguments):
            ...  # deny
    """

    def __init__(
        self,
        settings: Settings,
        destructive_tools: list[str] | None = None,
    ) -> None:
        self._settings = settings
        self._policies: dict[str, SecurityPolicy] = default_policies()
        self._assignments = dict(settings.policy_assignments)
        self._default_policy = settings.security_policy
        self._rate_limiter = RateLimiter(
            window_seconds=settings.rate_limit_window_seconds,
            max_requests=settings.rate_limit_max_requests,
        )

        if self._default_policy not in self._policies:
            logger.warning("unknown_security_policy", policy=self._default_policy, fallback="default")
            self._default_policy = "default"

        if settings.allow_only_non_destructive_tools:
            for policy in self._policies.values():
                policy.rules.extend(self._non_destructive_rules(destructive_tools or DESTRUCTIVE_TOOLS))

        logger.info("security_policies_initialized", policies=self.list_policies(), default=self._default_policy)

    @staticmethod
    def _non_destructive_rules(tool_names: list[str]) -> list[AccessRule]:
        rules = [AccessRule(RuleAction.DENY, f"tools/{name}", ["execute"]) for name in tool_names]
        rules.append(
            AccessRule(
                RuleAction.DENY,
                "tools/kubectl",
                ["execute"],
                conditions={"command": ["delete", "scale", "config"]},
            )
        )
        return rules

    # ── Decisions ──────────────────────────────────────────────────────────────

    def check_rate_limit(self, identity: str) -> bool:
        return self._rate_limiter.check(identity)

    def evaluate(
        self,
        context: SecurityContext,
        resource: str,
        operation: str,
        params: dict[str, Any] | None = None,
    ) -> bool:
        """
        True if ``context`` may perform ``operation`` on ``resource``.

        Rate limit first, then the identity's policy. Any error while
        deciding is a deny.
        """
        identity = context.user_id or ANONYMOUS
        try:
            if not self.check_rate_limit(identity):
                logger.warning("rate_limit_exceeded", user=identity, resource=resource, operation=operation)
                self._audit("rate_limited", resource, identity, operation)
                return False

            policy = self.policy_for(context)
            allowed = policy.decide(resource, operation, params or {})
        except Exception as e:
            logger.error("security_validation_failed", resource=resource, operation=operation, error=str(e))
            return False

        if not allowed:
            logger.warning("access_denied_by_policy", user=identity, resource=resource, policy=policy.name)
        self._audit("allowed" if allowed else "denied", resource, identity, operation, policy=policy.name)
        return allowed

    def policy_for(self, context: SecurityContext) -> SecurityPolicy:
        name = self._assignments.get(context.user_id, self._default_policy)
        return self._policies.get(name) or self._policies["default"]

    def _audit(self, decision: str, resource: str, identity: str, operation: str, **fields: Any) -> None:
        if self._settings.enable_audit_logging:
            log_audit(f"policy_{decision}", resource, user=identity, operation=operation, **fields)

    # ── Policy management ──────────────────────────────────────────────────────

    def add_policy(self, policy: SecurityPolicy) -> None:
        self._policies[policy.name] = policy
        logger.info("security_policy_added", name=policy.name, rules=len(policy.rules))

    def remove_policy(self, name: str) -> bool:
        """Remove a policy. The ``default`` policy cannot be removed."""
        if name == "default" or name not in self._policies:
            return False
        del self._policies[name]
        logger.info("security_policy_removed", name=name)
        return True

    def list_policies(self) -> list[str]:
        return list(self._policies)

    def get_policy(self, name: str) -> SecurityPolicy | None:
        return self._policies.get(name)

    def assign_policy(self, identity: str, policy_name: str) -> None:
        self._assignments[identity] = policy_name

    # ── Identity ───────────────────────────────────────────────────────────────

    def authenticate_api_key(self, api_key: str | None) -> SecurityContext | None:
        """
        Map an API key to a security context.

        Keys shorter than 10 characters are rejected. When ``api_keys`` is
        configured only listed keys are accepted.
        """
        if not api_key or len(api_key) < MIN_API_KEY_LENGTH:
            return None
        if self._settings.api_keys and api_key not in self._settings.api_keys:
            return None
        return SecurityContext(user_id=f"api_{api_key[-6:]}", source="api_key", permissions=["read", "execute"])

    # ── Housekeeping ───────────────────────────────────────────────────────────

    def cleanup(self) -> None:
        dropped = self._rate_limiter.cleanup()
        if dropped:
            logger.debug("rate_limit_windows_cleaned", dropped=dropped)

    def is_healthy(self) -> bool:
        return bool(self._policies)

    def get_stats(self) -> dict[str, Any]:
        return {
            "policies": len(self._policies),
            "default_policy": self._default_policy,
            "active_rate_limits": self._rate_limiter.active_identities,
            "rate_limit_window_ms": self._settings.rate_limit_window_ms,
            "rate_limit_max_requests": self._settings.rate_limit_max_requests,
        }
