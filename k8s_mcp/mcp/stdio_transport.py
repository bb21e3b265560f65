"""
Stdio transport for the MCP server.

JSON-RPC 2.0 over stdin/stdout: one request per line in, one response per
line out. Logs go to stderr.
"""

import asyncio
import json
import sys
from typing import Any, Awaitable, Callable, TextIO

import structlog

logger = structlog.get_logger()

PARSE_ERROR = -32700
INVALID_REQUEST = -32600
METHOD_NOT_FOUND = -32601
INTERNAL_ERROR = -32603

RequestHandler = Callable[[dict[str, Any]], Awaitable[dict[str, Any] | None]]


def error_response(request_id: Any, code: int, message: str, data: Any = None) -> dict[str, Any]:
    """Build a JSON-RPC error response."""
    response: dict[str, Any] = {
        "jsonrpc": "2.0",
        "id": request_id,
        "error": {"code": code, "message": message},
    }
    if data is not None:
        response["error"]["data"] = data
    return response


class StdioTransport:
    """
    Reads JSON-RPC requests line by line and writes the handler's responses.

    Handlers return None for notifications, in which case nothing is written.
    """

    def __init__(self, stdin: TextIO | None = None, stdout: TextIO | None = None) -> None:
        self._stdin = stdin or sys.stdin
        self._stdout = stdout or sys.stdout
        self.running = False

    async def start(self, request_handler: RequestHandler) -> None:
        self.running = True
        logger.info("stdio_transport_started")

        try:
            while self.running:
                line = await asyncio.to_thread(self._stdin.readline)
                if not line:
                    break
                line = line.strip()
                if not line:
                    continue

                response = await self._handle_line(line, request_handler)
                if response is not None:
                    self._write_response(response)
        except KeyboardInterrupt:
            logger.info("stdio_transport_interrupted")
        except asyncio.CancelledError:
            logger.info("stdio_transport_cancelled")
            raise
        finally:
            self.running = False
            logger.info("stdio_transport_stopped")

    async def _handle_line(self, line: str, request_handler: RequestHandler) -> dict[str, Any] | None:
        try:
            request = json.loads(line)
        except json.JSONDecodeError as e:
            logger.error("invalid_json", error=str(e), line=line[:100])
            return error_response(None, PARSE_ERROR, "Parse error")

        if not isinstance(request, dict):
            return error_response(None, INVALID_REQUEST, "Invalid Request")

        logger.debug("received_request", method=request.get("method"), id=request.get("id"))
        try:
            return await request_handler(request)
        except Exception as e:
            logger.error("request_handler_error", error=str(e), error_type=type(e).__name__)
            return error_response(request.get("id"), INTERNAL_ERROR, "Internal error")

    def _write_response(self, response: dict[str, Any]) -> None:
        try:
            self._stdout.write(json.dumps(response) + "\n")
            self._stdout.flush()
            logger.debug("sent_response", id=response.get("id"))
        except (OSError, TypeError, ValueError) as e:
            logger.error("failed_to_write_response", error=str(e))

    def stop(self) -> None:
        self.running = False
