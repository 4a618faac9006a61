# tools.py
# Tool registry and dispatcher, plus the built-in tool handlers.
#
# Handlers are registered explicitly from a static list at startup. Each one
# exposes its own descriptor and input model, and performs its own
# deserialize + validate step. invoke() turns every failure into a typed
# ToolCallResult and never raises to its caller.

import json
import logging
from pathlib import Path
from typing import Any, Iterable

import httpx
from pydantic import BaseModel, Field, ValidationError

from pmcro.errors import DuplicateToolError, ErrorKind
from pmcro.models import ToolCallResult, ToolDescriptor
from pmcro.session import ExclusiveSession

logger = logging.getLogger(__name__)

SUMMARY_LIMIT = 4000


# ---------------------------------------------------------------------------
# Handler contract
# ---------------------------------------------------------------------------


class NoInput(BaseModel):
    pass


def _strip_titles(node: Any) -> Any:
    """Drop pydantic's cosmetic `title` keyword so schemas stay in the supported subset."""
    if isinstance(node, list):
        return [_strip_titles(v) for v in node]
    if not isinstance(node, dict):
        return node
    stripped = {}
    for key, value in node.items():
        if key == "title":
            continue
        if key in ("properties", "$defs") and isinstance(value, dict):
            # Keys here are field names, not keywords.
            stripped[key] = {name: _strip_titles(sub) for name, sub in value.items()}
        else:
            stripped[key] = _strip_titles(value)
    return stripped


class ToolHandler:
    """
    Base class for a named capability.

    Subclasses set `name`, `description` and `input_model`, and implement
    run(). The dispatcher only ever talks to handlers through parse() and
    run(); neither is called directly by the orchestrator.
    """

    name: str = ""
    description: str = ""
    input_model: type[BaseModel] = NoInput

    def descriptor(self) -> ToolDescriptor:
        schema = _strip_titles(self.input_model.model_json_schema())
        schema.setdefault("type", "object")
        return ToolDescriptor(name=self.name, description=self.description, input_schema=schema)

    def parse(self, arguments: dict | str | bytes | None) -> BaseModel:
        """Deserialize raw arguments into the handler's input model."""
        if arguments is None:
            arguments = {}
        if isinstance(arguments, (str, bytes)):
            arguments = json.loads(arguments)
        if not isinstance(arguments, dict):
            raise ValueError(f"arguments must be a JSON object, got {type(arguments).__name__}")
        return self.input_model.model_validate(arguments)

    def run(self, params: BaseModel) -> Any:
        raise NotImplementedError


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------


class ToolRegistry:
    """Maps tool names to handlers in registration order."""

    def __init__(self) -> None:
        self._handlers: dict[str, ToolHandler] = {}
        self._descriptors: dict[str, ToolDescriptor] = {}

    def register(self, handler: ToolHandler) -> ToolDescriptor:
        name = handler.name
        if not name:
            raise ValueError(f"{type(handler).__name__} does not declare a tool name.")
        if name in self._handlers:
            raise DuplicateToolError(f"Tool '{name}' is already registered.")
        descriptor = handler.descriptor()
        self._handlers[name] = handler
        self._descriptors[name] = descriptor
        logger.debug("Registered tool: %s", name)
        return descriptor

    def register_many(self, handlers: Iterable[ToolHandler]) -> None:
        for handler in handlers:
            self.register(handler)

    def has(self, name: str) -> bool:
        return name in self._handlers

    def names(self) -> list[str]:
        return list(self._handlers)

    def invoke(self, name: str, arguments: dict | str | bytes | None = None) -> ToolCallResult:
        """
        Look up `name` and run it against `arguments`.

        UnknownTool, InvalidArguments and ToolExecutionFailure all come back
        as failed results; nothing propagates.
        """
        handler = self._handlers.get(name)
        if handler is None:
            return ToolCallResult.failure(ErrorKind.UNKNOWN_TOOL, f"Unknown tool: {name}")

        try:
            params = handler.parse(arguments)
        except (ValueError, ValidationError) as exc:
            return ToolCallResult.failure(
                ErrorKind.INVALID_ARGUMENTS, f"Invalid arguments for '{name}': {exc}"
            )

        try:
            output = handler.run(params)
        except Exception as exc:
            logger.warning("Tool %s failed: %s", name, exc)
            return ToolCallResult.failure(
                ErrorKind.TOOL_EXECUTION_FAILURE, str(exc) or type(exc).__name__
            )

        return ToolCallResult.ok(output)

    def list_tools(self) -> list[ToolDescriptor]:
        """Descriptors in registration order. Pure."""
        return list(self._descriptors.values())

    def __len__(self) -> int:
        return len(self._handlers)

    list = list_tools


# ---------------------------------------------------------------------------
# Built-in tools
# ---------------------------------------------------------------------------


class EchoInput(BaseModel):
    message: str = ""


class EchoTool(ToolHandler):
    name = "echo"
    description = "Return the given message unchanged."
    input_model = EchoInput

    def run(self, params: EchoInput) -> str:
        return params.message


class SearchInput(BaseModel):
    query: str = ""
    max_results: int = Field(default=4, ge=1, le=20)


class SearchTool(ToolHandler):
    name = "search"
    description = "Search the web with DuckDuckGo and return the top results."
    input_model = SearchInput

    def run(self, params: SearchInput) -> str:
        from ddgs import DDGS

        query = params.query.strip()
        if not query:
            raise ValueError("no query provided")

        try:
            # Coerce the generator to a list to ensure actual execution
            results = list(DDGS().text(query, max_results=params.max_results))
        except Exception as exc:
            raise RuntimeError(f"Search failed: {exc}") from exc

        if not results:
            return "No results found."

        lines = []
        for r in results:
            lines.append(f"[{r.get('title', 'No Title')}]\n{r.get('body', '')}\nSource: {r.get('href', '')}")
        return "\n\n".join(lines)


class SummarizeInput(BaseModel):
    text: str = ""


class SummarizeTool(ToolHandler):
    name = "summarize"
    description = f"Condense text to at most {SUMMARY_LIMIT} characters."
    input_model = SummarizeInput

    def run(self, params: SummarizeInput) -> str:
        text = params.text.strip()
        if not text:
            raise ValueError("no text provided")
        return text[:SUMMARY_LIMIT]


class FileWriteInput(BaseModel):
    path: str = Field(..., min_length=1)
    content: str = ""


class FileWriteTool(ToolHandler):
    """Writes files inside a fixed workspace root. Paths may not escape it."""

    name = "file_write"
    description = "Write text content to a file inside the agent workspace."
    input_model = FileWriteInput

    def __init__(self, workspace: str | Path) -> None:
        self._root = Path(workspace)

    def run(self, params: FileWriteInput) -> str:
        root = self._root.resolve()
        target = (root / params.path.strip()).resolve()
        if target != root and root not in target.parents:
            raise PermissionError(
                f"SECURITY BLOCK: '{params.path}' resolves outside the workspace {root}."
            )
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(params.content, encoding="utf-8")
        return f"Wrote {len(params.content)} bytes to {target.relative_to(root)}."


def http_session(timeout: float = 10.0) -> ExclusiveSession[httpx.Client]:
    """One shared httpx.Client for all HTTP tools."""
    return ExclusiveSession(
        "http",
        lambda: httpx.Client(timeout=timeout, follow_redirects=True),
        lambda client: client.close(),
    )


class HttpGetInput(BaseModel):
    url: str = Field(..., min_length=1)


class HttpGetTool(ToolHandler):
    name = "http_get"
    description = "Fetch a URL with GET and return status and body text."
    input_model = HttpGetInput

    def __init__(self, session: ExclusiveSession[httpx.Client]) -> None:
        self._session = session

    def run(self, params: HttpGetInput) -> dict[str, Any]:
        with self._session.use() as client:
            response = client.get(params.url.strip())
        return {
            "url": str(response.url),
            "status": response.status_code,
            "body": response.text[:SUMMARY_LIMIT],
        }


class HttpPostInput(BaseModel):
    url: str = Field(..., min_length=1)
    payload: dict[str, Any] = Field(default_factory=dict)


class HttpPostTool(ToolHandler):
    name = "http_post"
    description = "POST a JSON payload to a URL."
    input_model = HttpPostInput

    def __init__(self, session: ExclusiveSession[httpx.Client]) -> None:
        self._session = session

    def run(self, params: HttpPostInput) -> dict[str, Any]:
        url = params.url.strip()
        with self._session.use() as client:
            response = client.post(url, json=params.payload)
        return {"url": url, "status": response.status_code, "bytes": len(response.content)}


class HttpResetTool(ToolHandler):
    name = "http_reset"
    description = "Discard the shared HTTP session (cookies, connections) and open a fresh one."

    def __init__(self, session: ExclusiveSession[httpx.Client]) -> None:
        self._session = session

    def run(self, params: NoInput) -> dict[str, Any]:
        self._session.reset()
        return {"session": self._session.name, "generation": self._session.generation}


def default_handlers(workspace: str | Path, http_timeout: float = 10.0) -> list[ToolHandler]:
    """The static registration list used by the entry point."""
    session = http_session(http_timeout)
    return [
        EchoTool(),
        SearchTool(),
        SummarizeTool(),
        FileWriteTool(workspace),
        HttpGetTool(session),
        HttpPostTool(session),
        HttpResetTool(session),
    ]


def default_registry(workspace: str | Path, http_timeout: float = 10.0) -> ToolRegistry:
    registry = ToolRegistry()
    registry.register_many(default_handlers(workspace, http_timeout))
    return registry
