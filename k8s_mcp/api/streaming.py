"""
Chunked tool-call endpoint.

``POST /call-tool-chunked`` answers with newline-delimited JSON: progress
frames first, then exactly one terminal frame carrying the tool result or an
error. The progress frames are emitted before the tool is dispatched and do
not reflect how far the tool has actually got.
"""

import asyncio
import json
from typing import Any, AsyncIterator

import structlog
from fastapi import APIRouter, Depends
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field

from k8s_mcp.api.deps import get_security_context, get_server
from k8s_mcp.mcp.server import KubernetesMCPServer
from k8s_mcp.security.policy import SecurityContext

logger = structlog.get_logger()
router = APIRouter()

NDJSON = "application/x-ndjson"


class ToolCallRequest(BaseModel):
    """Body of a chunked tool call."""

    name: str
    args: dict[str, Any] = Field(default_factory=dict)


def _frame(payload: dict[str, Any]) -> str:
    return json.dumps(payload) + "\n"


async def stream_tool_call(
    server: KubernetesMCPServer,
    call: ToolCallRequest,
    context: SecurityContext,
) -> AsyncIterator[str]:
    steps = server.settings.stream_progress_steps
    interval = server.settings.stream_progress_interval_ms / 1000

    for step in range(1, steps + 1):
        yield _frame({"progress": round(step * 100 / steps)})
        if interval:
            await asyncio.sleep(interval)

    try:
        result = await server.dispatcher.call_tool(call.name, call.args, context)
    except Exception as e:
        logger.error("chunked_call_failed", tool=call.name, error=str(e), error_type=type(e).__name__)
        yield _frame({"error": "Internal error"})
        return

    if result.is_error:
        yield _frame({"error": result.first_text})
    else:
        yield _frame({"status": "done", "result": result.to_dict()})
    logger.info("chunked_call_finished", tool=call.name, user=context.user_id, is_error=result.is_error)


@router.post("/call-tool-chunked")
async def call_tool_chunked(
    call: ToolCallRequest,
    server: KubernetesMCPServer = Depends(get_server),
    context: SecurityContext = Depends(get_security_context),
) -> StreamingResponse:
    """Invoke a tool and stream progress followed by the result."""
    logger.info("chunked_call_started", tool=call.name, user=context.user_id)
    return StreamingResponse(stream_tool_call(server, call, context), media_type=NDJSON)
