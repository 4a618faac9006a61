# server.py
# JSON-RPC 2.0 framing in front of the tool registry.
#
# Transport-agnostic: a web framework or stdio loop hands each decoded
# message to McpServer.handle() and writes the returned dict back. handle()
# never raises; every failure becomes an error response.

import json
import logging
from datetime import datetime, timezone
from typing import Any

from pydantic import ValidationError

from pmcro import schema
from pmcro.errors import ErrorKind
from pmcro.models import RpcError, RpcRequest, RpcResponse, ToolCallRequest, ToolCallResult
from pmcro.tools import ToolRegistry

logger = logging.getLogger(__name__)

PROTOCOL_VERSION = "2024-11-05"

PARSE_ERROR = -32700
INVALID_REQUEST = -32600
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602
INTERNAL_ERROR = -32603

ERROR_CODES: dict[ErrorKind, int] = {
    ErrorKind.PROTOCOL_ERROR: INVALID_PARAMS,
    ErrorKind.UNKNOWN_TOOL: INVALID_PARAMS,
    ErrorKind.INVALID_ARGUMENTS: INVALID_PARAMS,
    ErrorKind.TOOL_EXECUTION_FAILURE: INTERNAL_ERROR,
}

CALL_PARAMS_SCHEMA: dict[str, Any] = {
    "type": "object",
    "required": ["name"],
    "properties": {
        "name": {"type": "string", "minLength": 1},
        "arguments": {"type": "object"},
    },
}


def _error(request_id: Any, code: int, message: str, kind: ErrorKind) -> dict[str, Any]:
    return RpcResponse(
        id=request_id,
        error=RpcError(code=code, message=message, data={"kind": kind.value}),
    ).to_dict()


def _success(request_id: Any, result: Any) -> dict[str, Any]:
    return RpcResponse(id=request_id, result=result).to_dict()


def _render_output(output: Any) -> str:
    if isinstance(output, str):
        return output
    return json.dumps(output, ensure_ascii=False, default=str)


class McpServer:
    """Routes initialize / tools/list / tools/call to a ToolRegistry."""

    def __init__(self, registry: ToolRegistry, name: str = "pmcro-mcp-server", version: str = "1.0.0") -> None:
        self._registry = registry
        self._name = name
        self._version = version
        self._methods = {
            "initialize": self._initialize,
            "tools/list": self._list_tools,
            "tools/call": self._call_tool,
        }

    @property
    def registry(self) -> ToolRegistry:
        return self._registry

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    def handle(self, message: dict[str, Any] | str | bytes) -> dict[str, Any]:
        """Handle one request message and return the response envelope."""
        if isinstance(message, (str, bytes)):
            try:
                message = json.loads(message)
            except ValueError as exc:
                return _error(None, PARSE_ERROR, f"Parse error: {exc}", ErrorKind.PROTOCOL_ERROR)

        if not isinstance(message, dict):
            return _error(None, INVALID_REQUEST, "Request must be a JSON object", ErrorKind.PROTOCOL_ERROR)

        request_id = message.get("id")
        if not isinstance(request_id, (str, int)):
            request_id = None
        try:
            request = RpcRequest.model_validate(message)
        except ValidationError as exc:
            return _error(
                request_id, INVALID_REQUEST, f"Invalid request: {exc.errors()[0]['msg']}",
                ErrorKind.PROTOCOL_ERROR,
            )

        logger.info("Handling MCP request: %s", request.method)

        method = self._methods.get(request.method)
        if method is None:
            return _error(
                request.id, METHOD_NOT_FOUND, f"Method not found: {request.method}",
                ErrorKind.PROTOCOL_ERROR,
            )

        try:
            return method(request)
        except Exception as exc:
            logger.exception("Error handling MCP request %s", request.method)
            return _error(request.id, INTERNAL_ERROR, str(exc), ErrorKind.TOOL_EXECUTION_FAILURE)

    # ------------------------------------------------------------------
    # Methods
    # ------------------------------------------------------------------

    def _initialize(self, request: RpcRequest) -> dict[str, Any]:
        return _success(request.id, {
            "protocolVersion": PROTOCOL_VERSION,
            "serverInfo": {"name": self._name, "version": self._version},
            "capabilities": {"tools": {}},
        })

    def _list_tools(self, request: RpcRequest) -> dict[str, Any]:
        tools = [d.model_dump(by_alias=True) for d in self._registry.list()]
        return _success(request.id, {"tools": tools})

    def _call_tool(self, request: RpcRequest) -> dict[str, Any]:
        if request.params is None:
            return _error(request.id, INVALID_PARAMS, "Missing params", ErrorKind.PROTOCOL_ERROR)

        violations = schema.validate(request.params, CALL_PARAMS_SCHEMA)
        if violations:
            return _error(
                request.id, INVALID_PARAMS, f"Invalid params: {schema.describe(violations)}",
                ErrorKind.PROTOCOL_ERROR,
            )

        call = ToolCallRequest(tool_name=request.params["name"], arguments=request.params.get("arguments", {}))
        result: ToolCallResult = self._registry.invoke(call.tool_name, call.arguments)

        if not result.success:
            kind = result.error_kind or ErrorKind.TOOL_EXECUTION_FAILURE
            return _error(
                request.id, ERROR_CODES.get(kind, INTERNAL_ERROR),
                result.error or "Tool execution failed", kind,
            )

        return _success(request.id, {
            "content": [{"type": "text", "text": _render_output(result.output)}],
            "isError": False,
        })

    # ------------------------------------------------------------------
    # Health
    # ------------------------------------------------------------------

    def health(self) -> dict[str, Any]:
        return {
            "status": "healthy",
            "server": self._name,
            "tools": len(self._registry),
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
