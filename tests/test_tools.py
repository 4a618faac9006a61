import json
import threading
import time
from unittest.mock import MagicMock, patch

import pytest
from pydantic import BaseModel

from pmcro.errors import DuplicateToolError, ErrorKind
from pmcro.session import ExclusiveSession
from pmcro.tools import (
    SUMMARY_LIMIT,
    EchoTool,
    FileWriteTool,
    HttpGetTool,
    HttpResetTool,
    SearchTool,
    SummarizeTool,
    ToolHandler,
    ToolRegistry,
    default_registry,
)


class ExplodingTool(ToolHandler):
    name = "explode"
    description = "Always fails."

    def run(self, params):
        raise RuntimeError("boom")


@pytest.fixture
def registry(tmp_path):
    return default_registry(tmp_path)

# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------

def test_registry_lists_builtins_in_registration_order(registry):
    names = [d.name for d in registry.list_tools()]
    assert names == ["echo", "search", "summarize", "file_write", "http_get", "http_post", "http_reset"]
    assert "manual_intervention" not in names

def test_list_tools_is_deterministic(registry):
    assert registry.list_tools() == registry.list_tools()

def test_descriptor_schema_has_no_titles(registry):
    echo = next(d for d in registry.list_tools() if d.name == "echo")
    assert echo.input_schema["type"] == "object"
    assert "title" not in echo.input_schema
    assert "title" not in echo.input_schema["properties"]["message"]

def test_duplicate_registration_rejected():
    registry = ToolRegistry()
    registry.register(EchoTool())
    with pytest.raises(DuplicateToolError):
        registry.register(EchoTool())
    assert len(registry) == 1

def test_nameless_handler_rejected():
    with pytest.raises(ValueError):
        ToolRegistry().register(ToolHandler())

def test_has_and_names(registry):
    assert registry.has("echo")
    assert not registry.has("manual_intervention")
    assert registry.names()[0] == "echo"

class TitledInput(BaseModel):
    title: str
    body: str = ""


class TitledTool(ToolHandler):
    name = "titled"
    input_model = TitledInput

    def run(self, params):
        return params.title


def test_descriptor_keeps_fields_named_title():
    schema = TitledTool().descriptor().input_schema
    assert set(schema["properties"]) == {"title", "body"}
    assert schema["properties"]["title"] == {"type": "string"}
    assert schema["required"] == ["title"]
    assert "title" not in schema

def test_invoke_known_tool(registry):
    result = registry.invoke("echo", {"message": "hi"})
    assert result.success
    assert result.output == "hi"
    assert result.error_kind is None

def test_invoke_accepts_json_text_arguments(registry):
    result = registry.invoke("echo", json.dumps({"message": "raw"}))
    assert result.output == "raw"

def test_invoke_unknown_tool(registry):
    result = registry.invoke("ghost", {})
    assert not result.success
    assert result.error_kind is ErrorKind.UNKNOWN_TOOL
    assert result.error == "Unknown tool: ghost"

@pytest.mark.parametrize("arguments", ["{not json", "[1, 2]", {"message": 42}])
def test_invoke_invalid_arguments(registry, arguments):
    result = registry.invoke("echo", arguments)
    assert not result.success
    assert result.error_kind is ErrorKind.INVALID_ARGUMENTS

def test_invoke_handler_failure_is_contained():
    registry = ToolRegistry()
    registry.register(ExplodingTool())
    result = registry.invoke("explode")
    assert not result.success
    assert result.error_kind is ErrorKind.TOOL_EXECUTION_FAILURE
    assert result.error == "boom"

# ---------------------------------------------------------------------------
# Search (generator/API handling)
# ---------------------------------------------------------------------------

@patch("ddgs.DDGS")
def test_search_success(mock_ddgs_cls):
    mock_instance = mock_ddgs_cls.return_value
    mock_instance.text.return_value = iter([
        {"title": "Result 1", "body": "Body 1", "href": "http://1.com"}
    ])

    result = SearchTool().run(SearchTool.input_model(query="test"))
    assert "Result 1" in result
    assert "Body 1" in result
    assert "http://1.com" in result
    mock_instance.text.assert_called_once_with("test", max_results=4)

@patch("ddgs.DDGS")
def test_search_empty_query(mock_ddgs_cls):
    registry = ToolRegistry()
    registry.register(SearchTool())
    result = registry.invoke("search", {"query": "   "})
    assert result.error_kind is ErrorKind.TOOL_EXECUTION_FAILURE
    assert "no query provided" in result.error
    mock_ddgs_cls.assert_not_called()

@patch("ddgs.DDGS")
def test_search_no_results(mock_ddgs_cls):
    mock_ddgs_cls.return_value.text.return_value = []
    result = SearchTool().run(SearchTool.input_model(query="ghost"))
    assert result == "No results found."

@patch("ddgs.DDGS")
def test_search_exception(mock_ddgs_cls):
    mock_ddgs_cls.return_value.text.side_effect = Exception("Network timeout")
    with pytest.raises(RuntimeError, match="Search failed: Network timeout"):
        SearchTool().run(SearchTool.input_model(query="crash"))

# ---------------------------------------------------------------------------
# Summarize / file_write (sandboxing)
# ---------------------------------------------------------------------------

def test_summarize_truncation():
    result = SummarizeTool().run(SummarizeTool.input_model(text="a" * 5000))
    assert len(result) == SUMMARY_LIMIT

def test_summarize_empty_text():
    with pytest.raises(ValueError, match="no text provided"):
        SummarizeTool().run(SummarizeTool.input_model(text="  "))

def test_file_write_inside_workspace(tmp_path):
    workspace = tmp_path / "workspace"
    registry = ToolRegistry()
    registry.register(FileWriteTool(workspace))

    result = registry.invoke("file_write", {"path": "notes/safe.txt", "content": "ok"})
    assert result.success
    assert "Wrote 2 bytes" in result.output
    assert (workspace / "notes" / "safe.txt").read_text() == "ok"

@pytest.mark.parametrize("path", ["../outside.txt", "/etc/audit_report.txt", "a/../../outside.txt"])
def test_file_write_path_traversal_blocked(tmp_path, path):
    workspace = tmp_path / "workspace"
    workspace.mkdir()
    registry = ToolRegistry()
    registry.register(FileWriteTool(workspace))

    result = registry.invoke("file_write", {"path": path, "content": "hack"})
    assert not result.success
    assert result.error_kind is ErrorKind.TOOL_EXECUTION_FAILURE
    assert "SECURITY BLOCK" in result.error
    assert not (tmp_path / "outside.txt").exists()

# ---------------------------------------------------------------------------
# Shared HTTP session
# ---------------------------------------------------------------------------

def _fake_session():
    closer = MagicMock()
    factory = MagicMock(side_effect=lambda: MagicMock(name="client"))
    return ExclusiveSession("http", factory, closer), factory, closer

def test_session_is_lazy_and_reused():
    session, factory, _ = _fake_session()
    assert not session.active
    first = session.acquire()
    assert session.acquire() is first
    assert factory.call_count == 1
    assert session.generation == 1

def test_session_release_is_idempotent():
    session, _, closer = _fake_session()
    session.acquire()
    session.release()
    session.release()
    assert closer.call_count == 1
    assert not session.active

def test_http_reset_tool_opens_fresh_session():
    session, factory, closer = _fake_session()
    session.acquire()
    result = HttpResetTool(session).run(HttpResetTool.input_model())
    assert result == {"session": "http", "generation": 2}
    assert closer.call_count == 1
    assert factory.call_count == 2

def test_http_get_uses_shared_client():
    session, factory, _ = _fake_session()
    client = session.acquire()
    client.get.return_value = MagicMock(url="https://example.com/", status_code=200, text="<title>x</title>")

    result = HttpGetTool(session).run(HttpGetTool.input_model(url=" https://example.com "))
    client.get.assert_called_once_with("https://example.com")
    assert result["status"] == 200
    assert result["body"] == "<title>x</title>"

def test_session_serializes_concurrent_use():
    session, _, _ = _fake_session()
    active = []
    overlaps = []
    start = threading.Barrier(4)

    def worker():
        start.wait()
        for _ in range(5):
            with session.use():
                active.append(1)
                if len(active) > 1:
                    overlaps.append(len(active))
                time.sleep(0.005)
                active.pop()

    threads = [threading.Thread(target=worker) for _ in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert overlaps == []
    assert session.generation == 1
