"""Access policy engine and identity helpers."""

from k8s_mcp.security.policy import (
    AccessRule,
    PolicyEngine,
    RateLimiter,
    RuleAction,
    SecurityContext,
    SecurityPolicy,
    validate_resource_name,
)

__all__ = [
    "AccessRule", "PolicyEngine", "RateLimiter", "RuleAction",
    "SecurityContext", "SecurityPolicy", "validate_resource_name",
]
