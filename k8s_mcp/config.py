"""Configuration settings for the Kubernetes MCP server."""

from functools import lru_cache
from typing import Literal

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Server settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    # Server
    server_name: str = Field(default="k8s-mcp-server", description="Server name reported on initialize")
    server_version: str = Field(default="1.0.0", description="Server version reported on initialize")
    mcp_transport: Literal["stdio", "http-chunked"] = Field(
        default="stdio", description="Protocol transport (stdio or http-chunked)"
    )
    api_host: str = Field(default="0.0.0.0", description="HTTP host for the http-chunked transport")
    api_port: int = Field(default=3000, ge=1, le=65535, description="HTTP port for the http-chunked transport")
    enable_metrics: bool = Field(default=True, description="Record request metrics")

    # Kubernetes credential sources (tried in priority order)
    kubeconfig_path: str | None = Field(
        default=None,
        validation_alias=AliasChoices("kubeconfig_path", "kubeconfig"),
        description="Explicit kubeconfig file path (KUBECONFIG_PATH or KUBECONFIG)",
    )
    kubeconfig_yaml: str | None = Field(default=None, description="Inline kubeconfig as YAML")
    kubeconfig_json: str | None = Field(default=None, description="Inline kubeconfig as JSON")
    k8s_server: str | None = Field(default=None, description="API server URL for minimal server+token config")
    k8s_token: str | None = Field(default=None, description="Bearer token for minimal server+token config")
    k8s_skip_tls_verify: bool = Field(default=False, description="Skip TLS verification for minimal config")
    k8s_incluster_token_path: str = Field(
        default="/var/run/secrets/kubernetes.io/serviceaccount/token",
        description="Service-account token path used to detect in-cluster execution",
    )

    # Session defaults
    k8s_context: str | None = Field(default=None, description="Context to select after loading kubeconfig")
    k8s_namespace: str = Field(default="default", description="Initial session namespace")

    # Kubernetes call behaviour
    k8s_request_timeout_ms: int = Field(default=30000, ge=1000, description="Per-request deadline in milliseconds")
    k8s_retry_attempts: int = Field(default=3, ge=0, description="Connectivity probe retries")
    k8s_retry_delay_ms: int = Field(default=1000, ge=0, description="Delay between connectivity probe retries")

    # Security
    security_policy: str = Field(default="default", description="Policy applied when no identity mapping exists")
    policy_assignments: dict[str, str] = Field(
        default_factory=dict, description="JSON map of identity -> policy name"
    )
    allow_only_non_destructive_tools: bool = Field(default=False, description="Deny destructive tools")
    enforce_policy_on_all_requests: bool = Field(
        default=True, description="Policy-check resource reads and prompt renders, not only tool calls"
    )
    enable_audit_logging: bool = Field(default=True, description="Emit audit log entries for policy decisions")
    rate_limit_window_ms: int = Field(default=60000, ge=1, description="Rate limit sliding window in milliseconds")
    rate_limit_max_requests: int = Field(default=1000, ge=1, description="Max requests per identity per window")
    api_keys: list[str] = Field(default_factory=list, description="Accepted X-API-Key values (empty accepts any)")

    # Streaming gateway
    stream_progress_steps: int = Field(default=5, ge=0, description="Progress frames emitted before dispatch")
    stream_progress_interval_ms: int = Field(default=500, ge=0, description="Delay between progress frames")

    # Logging
    log_level: str = Field(default="INFO", description="Logging level")
    log_format: Literal["console", "json"] = Field(default="console", description="Log renderer")

    @property
    def request_timeout_seconds(self) -> float:
        return self.k8s_request_timeout_ms / 1000

    @property
    def rate_limit_window_seconds(self) -> float:
        return self.rate_limit_window_ms / 1000


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
