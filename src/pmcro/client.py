# client.py
# Proxies the orchestrator uses to reach the tool dispatcher.
#
# Both proxies speak the same JSON-RPC frames: LocalToolClient hands them to
# an in-process McpServer, HttpToolClient POSTs them to <base_url>/mcp.
# Failures come back as ToolCallResult values; only OperationCancelled
# propagates, so the loop can stop processing steps.

import json
import logging
import threading
import uuid
from typing import Any

import httpx

from pmcro.cancellation import run_cancellable
from pmcro.errors import ErrorKind
from pmcro.models import ToolCallResult, ToolDescriptor
from pmcro.server import INVALID_PARAMS, INTERNAL_ERROR, McpServer

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Framing helpers
# ---------------------------------------------------------------------------


def request_frame(method: str, params: dict[str, Any] | None = None) -> dict[str, Any]:
    frame: dict[str, Any] = {"jsonrpc": "2.0", "id": str(uuid.uuid4()), "method": method}
    if params is not None:
        frame["params"] = params
    return frame


def _error_kind(error: dict[str, Any]) -> ErrorKind:
    kind = (error.get("data") or {}).get("kind")
    try:
        return ErrorKind(kind)
    except ValueError:
        pass
    code = error.get("code")
    if code == INVALID_PARAMS:
        return ErrorKind.INVALID_ARGUMENTS
    if code == INTERNAL_ERROR:
        return ErrorKind.TOOL_EXECUTION_FAILURE
    return ErrorKind.PROTOCOL_ERROR


def _decode_text(text: str | None) -> Any:
    if text is None:
        return None
    try:
        return json.loads(text)
    except ValueError:
        return text


def decode_call_response(response: dict[str, Any]) -> ToolCallResult:
    """Turn a tools/call response envelope back into a ToolCallResult."""
    error = response.get("error")
    if error:
        return ToolCallResult.failure(_error_kind(error), error.get("message") or "Tool call failed")

    result = response.get("result") or {}
    texts = [c.get("text") for c in result.get("content") or [] if c.get("type") == "text"]
    text = texts[0] if texts else None

    if result.get("isError"):
        return ToolCallResult.failure(ErrorKind.TOOL_EXECUTION_FAILURE, text or "Tool reported an error")
    return ToolCallResult.ok(_decode_text(text))


def decode_list_response(response: dict[str, Any]) -> list[ToolDescriptor]:
    result = response.get("result") or {}
    return [ToolDescriptor.model_validate(tool) for tool in result.get("tools") or []]


# ---------------------------------------------------------------------------
# Clients
# ---------------------------------------------------------------------------


class ToolClient:
    """Interface the orchestrator depends on."""

    def call_tool(
        self,
        name: str,
        arguments: dict[str, Any],
        *,
        cancel: threading.Event | None = None,
    ) -> ToolCallResult:
        raise NotImplementedError

    def list_tools(self) -> list[ToolDescriptor]:
        raise NotImplementedError

    def close(self) -> None:
        pass


class LocalToolClient(ToolClient):
    """Routes frames to an McpServer living in the same process."""

    def __init__(self, server: McpServer, timeout: float | None = 30.0) -> None:
        self._server = server
        self._timeout = timeout

    def call_tool(self, name, arguments, *, cancel=None) -> ToolCallResult:
        frame = request_frame("tools/call", {"name": name, "arguments": arguments})
        try:
            response = run_cancellable(
                self._server.handle, frame,
                timeout=self._timeout, cancel=cancel, where=f"tool '{name}'",
            )
        except TimeoutError as exc:
            return ToolCallResult.failure(ErrorKind.TOOL_EXECUTION_FAILURE, str(exc))
        return decode_call_response(response)

    def list_tools(self) -> list[ToolDescriptor]:
        return decode_list_response(self._server.handle(request_frame("tools/list")))


class HttpToolClient(ToolClient):
    """Routes frames to a remote MCP endpoint over HTTP."""

    def __init__(self, base_url: str, timeout: float = 30.0, client: httpx.Client | None = None) -> None:
        self._http = client or httpx.Client(base_url=base_url, timeout=timeout)

    def _post(self, frame: dict[str, Any]) -> dict[str, Any]:
        response = self._http.post("/mcp", json=frame)
        try:
            return response.json()
        except ValueError:
            response.raise_for_status()
            raise

    def call_tool(self, name, arguments, *, cancel=None) -> ToolCallResult:
        frame = request_frame("tools/call", {"name": name, "arguments": arguments})
        logger.debug("Executing MCP tool: %s", name)
        try:
            response = run_cancellable(self._post, frame, cancel=cancel, where=f"tool '{name}'")
        except (httpx.HTTPError, ValueError) as exc:
            logger.error("MCP tool execution failed: %s: %s", name, exc)
            return ToolCallResult.failure(ErrorKind.TOOL_EXECUTION_FAILURE, str(exc))
        return decode_call_response(response)

    def list_tools(self) -> list[ToolDescriptor]:
        try:
            return decode_list_response(self._post(request_frame("tools/list")))
        except (httpx.HTTPError, ValueError) as exc:
            logger.error("Failed to list MCP tools: %s", exc)
            return []

    def close(self) -> None:
        self._http.close()
