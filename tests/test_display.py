import io
import json
from unittest.mock import MagicMock, patch

import pytest
from rich.console import Console

from pmcro import display
from pmcro.auditor import OutcomeAuditor
from pmcro.client import LocalToolClient
from pmcro.errors import ErrorKind
from pmcro.models import ExecutionRecord, Plan, PlanStep, StepStatus, ValidationOutcome
from pmcro.orchestrator import CognitiveOrchestrator
from pmcro.planner import PlanSynthesizer
from pmcro.server import McpServer
from pmcro.tools import EchoTool, ToolRegistry
from pmcro.trail import CognitiveTrail

MARKUP = ["[/bold]", "wrap in [/b] tag", "[red]unclosed", "[link=x]y[/link]"]


@pytest.fixture
def output():
    buffer = io.StringIO()
    with patch.object(display, "console", Console(file=buffer, width=200, color_system=None)):
        yield buffer

# ---------------------------------------------------------------------------
# Individual renderers
# ---------------------------------------------------------------------------

@pytest.mark.parametrize("text", MARKUP)
def test_plan_table_renders_markup_literally(output, text):
    plan = Plan(goal=text, analysis=text, steps=(PlanStep(order=1, action=text, tool=text),))
    display.plan_ready(plan)
    assert text in output.getvalue()

@pytest.mark.parametrize("text", MARKUP)
def test_step_lines_render_markup_literally(output, text):
    display.step_start(0, 1, text, text)
    record = ExecutionRecord(step_order=1, tool=text, status=StepStatus.FAILED,
                             error=text, error_kind=ErrorKind.UNKNOWN_TOOL)
    display.step_result(record)
    display.execution_summary([record])
    assert text in output.getvalue()

@pytest.mark.parametrize("text", MARKUP)
def test_banner_and_check_render_markup_literally(output, text):
    display.banner(text, [text, "echo"])
    display.check_result(ValidationOutcome(success=False, reasoning=text, correction=text))
    assert text in output.getvalue()

def test_banner_without_tools(output):
    display.banner("m", [])
    assert "(none)" in output.getvalue()

# ---------------------------------------------------------------------------
# Full run with the real display
# ---------------------------------------------------------------------------

def test_run_with_markup_in_tool_and_action_returns_report(output):
    registry = ToolRegistry()
    registry.register(EchoTool())
    tools = LocalToolClient(McpServer(registry))

    plan = json.dumps({
        "goal": "[bold]g",
        "analysis": "a",
        "steps": [
            {"order": 1, "action": "wrap in [/b] tag", "tool": "[/bold]", "arguments": {}},
            {"order": 2, "action": "say [/i]", "tool": "echo", "arguments": {"message": "[/x]"}},
        ],
    })
    audit = '{"success": false, "reasoning": "tool [/bold] missing", "correction": null}'
    oracle = MagicMock()
    responses = [plan, audit]
    oracle.chat.side_effect = lambda *a, **kw: responses.pop(0)

    orchestrator = CognitiveOrchestrator(
        PlanSynthesizer(oracle, tools=tools.list_tools()),
        tools,
        OutcomeAuditor(oracle),
        CognitiveTrail(),
    )
    report = orchestrator.execute("noop")

    assert [r.status for r in report.execution_log] == [StepStatus.FAILED, StepStatus.SUCCESS]
    assert report.execution_log[0].error_kind is ErrorKind.UNKNOWN_TOOL
    assert report.execution_log[1].output == "[/x]"
    rendered = output.getvalue()
    assert "[/bold]" in rendered
    assert "wrap in [/b] tag" in rendered
