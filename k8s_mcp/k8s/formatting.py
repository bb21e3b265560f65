"""Plain-text formatting shared by the command translator and tool handlers."""

from datetime import datetime, timezone
from typing import Any

MIN_COLUMN_WIDTH = 8
COLUMN_SEPARATOR = "  "


def format_table(headers: list[str], rows: list[list[str]]) -> str:
    """
    Render a kubectl-style table.

    Each column is as wide as its header, its widest cell, or 8 characters,
    whichever is largest. Cells are left-aligned and padded to that width,
    columns are joined with two spaces and the header row comes first.
    """
    widths = []
    for i, header in enumerate(headers):
        widest = max([len(header)] + [len(row[i] or "") if i < len(row) else 0 for row in rows])
        widths.append(max(widest, MIN_COLUMN_WIDTH))

    lines = [COLUMN_SEPARATOR.join(header.ljust(widths[i]) for i, header in enumerate(headers))]
    for row in rows:
        lines.append(COLUMN_SEPARATOR.join((cell or "").ljust(widths[i]) for i, cell in enumerate(row)))
    return "\n".join(lines)


def format_age(created: datetime | str | None, now: datetime | None = None) -> str:
    """
    Elapsed time since ``created`` as ``Nm``, ``Nh`` or ``Nd``.

    Minutes below one hour, hours below one day, days otherwise. Always
    floored, never rounded.
    """
    if not created:
        return "unknown"

    if isinstance(created, str):
        try:
            created = datetime.fromisoformat(created.replace("Z", "+00:00"))
        except ValueError:
            return "unknown"

    if created.tzinfo is None:
        created = created.replace(tzinfo=timezone.utc)

    now = now or datetime.now(timezone.utc)
    minutes = max(int((now - created).total_seconds() // 60), 0)

    if minutes < 60:
        return f"{minutes}m"
    hours = minutes // 60
    if hours < 24:
        return f"{hours}h"
    return f"{hours // 24}d"


# ── Object summaries ──────────────────────────────────────────────────────────


def pod_ready(pod: Any) -> str:
    statuses = getattr(pod.status, "container_statuses", None) or []
    ready = sum(1 for cs in statuses if cs.ready)
    return f"{ready}/{len(statuses)}"


def pod_restarts(pod: Any) -> int:
    statuses = getattr(pod.status, "container_statuses", None) or []
    return sum(cs.restart_count or 0 for cs in statuses)


def pod_status(pod: Any) -> str:
    """Waiting reason of the first waiting container, else the pod phase."""
    for cs in getattr(pod.status, "container_statuses", None) or []:
        if cs.state and cs.state.waiting and cs.state.waiting.reason:
            return cs.state.waiting.reason
    return pod.status.phase or "Unknown"


def node_status(node: Any) -> str:
    conditions = getattr(node.status, "conditions", None) or []
    ready = next((c for c in conditions if c.type == "Ready"), None)
    return "Ready" if ready and ready.status == "True" else "NotReady"


def node_roles(node: Any) -> str:
    labels = node.metadata.labels or {}
    prefix = "node-role.kubernetes.io/"
    roles = [label[len(prefix):] for label in labels if label.startswith(prefix)]
    return ",".join(roles) if roles else "<none>"


def ready_column(item: Any) -> str:
    """READY column for a generic list item. Kinds without a status show N/A."""
    status = getattr(item, "status", None)
    if status is None:
        return "N/A"
    ready_replicas = getattr(status, "ready_replicas", None)
    replicas = getattr(status, "replicas", None)
    if ready_replicas and replicas:
        return f"{ready_replicas}/{replicas}"
    if getattr(status, "container_statuses", None):
        return pod_ready(item)
    return "N/A"


def status_column(item: Any) -> str:
    status = getattr(item, "status", None)
    if status is None:
        return "Unknown"
    phase = getattr(status, "phase", None)
    if phase:
        return phase
    conditions = getattr(status, "conditions", None) or []
    return conditions[0].type if conditions else "Unknown"


def restarts_column(item: Any) -> str:
    status = getattr(item, "status", None)
    if status is not None and getattr(status, "container_statuses", None):
        return str(pod_restarts(item))
    return "0"
