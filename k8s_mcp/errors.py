"""
Error taxonomy for the Kubernetes MCP server.

Every error carries a human-readable message and a JSON-RPC error code used
when the error surfaces as a protocol-level failure.
"""

import json
from typing import Any

import aiohttp
import structlog

logger = structlog.get_logger()


class KubernetesMCPError(Exception):
    """Base class for all server errors."""

    code = -32603

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ClusterConnectionError(KubernetesMCPError):
    """Credential loading or cluster connectivity failed."""

    code = -32000


class NotInitializedError(KubernetesMCPError):
    """A cluster accessor was used before initialize() completed."""

    code = -32003


class NotFoundError(KubernetesMCPError):
    """A context, namespace, tool, resource or prompt does not exist."""

    code = -32002


class ValidationError(KubernetesMCPError):
    """Arguments are malformed or incomplete."""

    code = -32602


class UnsupportedCommandError(KubernetesMCPError):
    """The command translator does not handle this verb."""

    code = -32004


class UnsupportedResourceError(KubernetesMCPError):
    """The command translator does not handle this resource type."""

    code = -32005


class AuthorizationError(KubernetesMCPError):
    """Denied by access policy, rate limit or cluster RBAC."""

    code = -32001


class OperationTimeoutError(KubernetesMCPError):
    """A request exceeded its deadline."""

    code = -32006


class InternalError(KubernetesMCPError):
    """A defect in the server itself rather than a cluster or request failure."""

    code = -32603


def translate_api_error(exc: Exception) -> KubernetesMCPError:
    """
    Wrap an exception raised by the Kubernetes client into the taxonomy.

    ApiException bodies are JSON Status objects; their ``message`` field is the
    most useful text for a user, so it is preferred over the HTTP reason.
    """
    if isinstance(exc, KubernetesMCPError):
        return exc

    status = getattr(exc, "status", None)
    if status is None:
        return ClusterConnectionError(f"Kubernetes API request failed: {exc}")

    message = _api_error_message(exc)
    if status == 404:
        return NotFoundError(message)
    if status in (400, 409, 422):
        return ValidationError(message)
    if status in (401, 403):
        return AuthorizationError(message)
    return ClusterConnectionError(message)


def _api_error_message(exc: Any) -> str:
    body = getattr(exc, "body", None)
    if body:
        try:
            parsed = json.loads(body)
            if isinstance(parsed, dict) and parsed.get("message"):
                return parsed["message"]
        except (TypeError, ValueError):
            logger.debug("api_error_body_not_json", status=getattr(exc, "status", None))
    reason = getattr(exc, "reason", None)
    return reason or "Unknown Kubernetes error"


def translate_operation_error(exc: Exception) -> KubernetesMCPError:
    """
    Classify a failure raised while running a tool, command or resource read.

    API responses and transport failures keep their cluster meaning via
    ``translate_api_error``. Anything else becomes an ``InternalError``.
    """
    if isinstance(exc, KubernetesMCPError) or getattr(exc, "status", None) is not None:
        return translate_api_error(exc)
    if isinstance(exc, (OSError, aiohttp.ClientError)):
        return translate_api_error(exc)
    return InternalError("Internal error")
