import json
import threading
from unittest.mock import MagicMock, patch

import pytest

from pmcro.auditor import OutcomeAuditor, parse_outcome
from pmcro.config import Persona
from pmcro.errors import ErrorKind, OperationCancelled, OracleUnavailable, PlanValidationFailure
from pmcro.models import ExecutionRecord, Plan, PlanStep, StepStatus, ToolDescriptor
from pmcro.planner import (
    FALLBACK_TOOL,
    PlanSynthesizer,
    build_system_prompt,
    fallback_kind,
    fallback_plan,
    parse_plan_response,
    strip_code_fences,
)

VALID = {
    "goal": "g",
    "analysis": "a",
    "steps": [{"order": 1, "action": "x", "tool": "t", "arguments": {}}],
}

TOOLS = [
    ToolDescriptor(name="echo", description="Return the message.",
                   input_schema={"type": "object", "properties": {"message": {"type": "string"}}}),
    ToolDescriptor(name="search"),
]


def synthesizer(response=None, side_effect=None):
    oracle = MagicMock()
    oracle.chat.return_value = response
    oracle.chat.side_effect = side_effect
    return PlanSynthesizer(oracle, tools=TOOLS), oracle

# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------

def test_parse_valid_plan():
    plan = parse_plan_response(json.dumps(VALID))
    assert plan.goal == "g"
    assert plan.analysis == "a"
    assert len(plan.steps) == 1
    assert plan.steps[0].tool == "t"
    assert plan.steps[0].arguments() == {}

def test_parse_strips_code_fences():
    plan = parse_plan_response(f"```json\n{json.dumps(VALID)}\n```")
    assert plan.goal == "g"

def test_strip_code_fences_with_preamble():
    assert strip_code_fences('Here you go:\n```\n{"a": 1}\n```') == '{"a": 1}'
    assert strip_code_fences('```json\n{"a": 1}') == '{"a": 1}'

@pytest.mark.parametrize("key", ["@thought", "thought", "reasoning"])
def test_alternate_reasoning_keys(key):
    data = {k: v for k, v in VALID.items() if k != "analysis"}
    data[key] = "because"
    assert parse_plan_response(json.dumps(data)).analysis == "because"

def test_null_arguments_mean_no_arguments():
    data = json.loads(json.dumps(VALID))
    data["steps"][0]["arguments"] = None
    assert parse_plan_response(json.dumps(data)).steps[0].arguments() == {}

def test_steps_are_sorted_stably():
    data = {
        "goal": "g",
        "analysis": "a",
        "steps": [
            {"order": 2, "action": "second-a", "tool": "t"},
            {"order": 1, "action": "first", "tool": "t"},
            {"order": 2, "action": "second-b", "tool": "t"},
        ],
    }
    plan = parse_plan_response(json.dumps(data))
    assert [s.action for s in plan.steps] == ["first", "second-a", "second-b"]

@pytest.mark.parametrize("text", [
    "not json",
    "[]",
    json.dumps({"analysis": "a", "steps": VALID["steps"]}),
    json.dumps({"goal": "g", "analysis": "a"}),
    json.dumps({"goal": "g", "analysis": "a", "steps": []}),
    json.dumps({"goal": "g", "steps": VALID["steps"]}),
    json.dumps({"goal": "g", "analysis": "a", "steps": [{"order": "1", "action": "x", "tool": "t"}]}),
])
def test_unusable_plans_raise(text):
    with pytest.raises(PlanValidationFailure):
        parse_plan_response(text)

# ---------------------------------------------------------------------------
# Plan contract
# ---------------------------------------------------------------------------

def test_plan_wire_round_trip():
    plan = parse_plan_response(json.dumps(VALID))
    assert Plan.from_wire(plan.to_wire()) == plan
    assert plan.to_wire()["steps"][0]["arguments"] == {}

def test_arguments_blob_is_canonical():
    a = PlanStep(order=1, action="x", tool="t", arguments_json='{"b": 1, "a": 2}')
    b = PlanStep(order=1, action="x", tool="t", arguments_json={"a": 2, "b": 1})
    assert a.arguments_json == b.arguments_json

def test_malformed_arguments_blob_kept_verbatim():
    step = PlanStep(order=1, action="x", tool="t", arguments_json="{oops")
    assert step.arguments_json == "{oops"
    assert step.to_wire()["arguments"] == "{oops"
    with pytest.raises(ValueError):
        step.arguments()

def test_plan_requires_a_step():
    with pytest.raises(ValueError):
        Plan(goal="g", steps=())

# ---------------------------------------------------------------------------
# Prompts
# ---------------------------------------------------------------------------

def test_system_prompt_lists_tools_and_persona():
    prompt = build_system_prompt(TOOLS, Persona(role="Cartographer", expertise="Maps", voice="Dry"))
    assert "You are Cartographer, expert in Maps. Voice: Dry." in prompt
    assert '- echo: {"message": "<string>"}' in prompt
    assert "- search: {}" in prompt
    assert "No Markdown" in prompt

def test_system_prompt_is_deterministic():
    assert build_system_prompt(TOOLS) == build_system_prompt(list(TOOLS))

def test_system_prompt_without_tools():
    assert "(no tools registered)" in build_system_prompt([])

# ---------------------------------------------------------------------------
# Synthesizer and fallback
# ---------------------------------------------------------------------------

def test_create_plan_single_oracle_round_trip():
    planner, oracle = synthesizer(response=json.dumps(VALID))
    plan = planner.create_plan("noop")
    assert plan.goal == "g"
    assert fallback_kind(plan) is None
    oracle.chat.assert_called_once()
    messages = oracle.chat.call_args.args[0]
    assert messages[0]["role"] == "system"
    assert '"noop"' in messages[1]["content"]

def test_create_plan_falls_back_on_garbage():
    planner, _ = synthesizer(response="not json")
    plan = planner.create_plan("noop")
    assert plan.goal == "noop"
    assert len(plan.steps) == 1
    assert plan.steps[0].tool == FALLBACK_TOOL
    assert plan.steps[0].order == 1
    assert fallback_kind(plan) is ErrorKind.PLAN_VALIDATION_FAILURE
    assert "Manual intervention required." in plan.analysis

def test_create_plan_falls_back_when_oracle_unavailable():
    planner, _ = synthesizer(side_effect=OracleUnavailable("connection refused"))
    plan = planner.create_plan("noop")
    assert fallback_kind(plan) is ErrorKind.ORACLE_UNAVAILABLE
    assert plan.steps[0].arguments()["reason"] == "connection refused"

def test_create_plan_never_raises_on_unexpected_errors():
    planner, _ = synthesizer(side_effect=KeyError("choices"))
    assert fallback_kind(planner.create_plan("noop")) is ErrorKind.ORACLE_UNAVAILABLE

def test_create_plan_parse_crash_is_a_plan_failure():
    planner, _ = synthesizer(response=json.dumps(VALID))
    with patch("pmcro.planner.parse_plan_response", side_effect=RecursionError("maximum recursion depth exceeded")):
        plan = planner.create_plan("noop")
    assert fallback_kind(plan) is ErrorKind.PLAN_VALIDATION_FAILURE
    assert "recursion" in plan.steps[0].arguments()["reason"]

def test_create_plan_deeply_nested_response():
    planner, _ = synthesizer(response="[" * 200000 + "]" * 200000)
    assert fallback_kind(planner.create_plan("noop")) is ErrorKind.PLAN_VALIDATION_FAILURE

def test_create_plan_cancelled_before_call():
    planner, oracle = synthesizer(response=json.dumps(VALID))
    cancel = threading.Event()
    cancel.set()
    plan = planner.create_plan("noop", cancel=cancel)
    assert fallback_kind(plan) is ErrorKind.CANCELLED
    oracle.chat.assert_not_called()

def test_create_plan_cancelled_in_flight():
    planner, _ = synthesizer(side_effect=OperationCancelled("Cancelled."))
    assert fallback_kind(planner.create_plan("noop")) is ErrorKind.CANCELLED

def test_fallback_kind_ignores_real_plans():
    plan = Plan(goal="g", steps=(PlanStep(order=1, action="a", tool=FALLBACK_TOOL),
                                 PlanStep(order=2, action="b", tool="echo")))
    assert fallback_kind(plan) is None
    assert fallback_kind(fallback_plan("x", "why")) is ErrorKind.PLAN_VALIDATION_FAILURE

# ---------------------------------------------------------------------------
# Outcome auditor
# ---------------------------------------------------------------------------

RECORDS = [ExecutionRecord(step_order=1, tool="t", status=StepStatus.SUCCESS, output="ok")]

def test_parse_outcome_valid():
    outcome = parse_outcome('{"success": true, "reasoning": "done", "correction": null}')
    assert outcome.success
    assert outcome.reasoning == "done"
    assert outcome.correction is None
    assert outcome.error_kind is None

@pytest.mark.parametrize("text", ["nope", '{"success": "yes", "reasoning": "r"}', '{"reasoning": "r"}'])
def test_parse_outcome_invalid(text):
    outcome = parse_outcome(text)
    assert not outcome.success
    assert outcome.error_kind is ErrorKind.OUTCOME_VALIDATION_FAILURE

def test_auditor_sends_intent_and_log():
    oracle = MagicMock()
    oracle.chat.return_value = '{"success": false, "reasoning": "step missing", "correction": "retry"}'
    outcome = OutcomeAuditor(oracle).validate("noop", RECORDS)
    assert not outcome.success
    assert outcome.correction == "retry"
    content = oracle.chat.call_args.args[0][1]["content"]
    assert '"stepOrder": 1' in content
    assert '"noop"' in content

def test_auditor_oracle_unavailable():
    oracle = MagicMock()
    oracle.chat.side_effect = OracleUnavailable("timeout")
    outcome = OutcomeAuditor(oracle).validate("noop", RECORDS)
    assert not outcome.success
    assert outcome.error_kind is ErrorKind.ORACLE_UNAVAILABLE

def test_auditor_propagates_cancellation():
    oracle = MagicMock()
    oracle.chat.side_effect = OperationCancelled("Cancelled.")
    with pytest.raises(OperationCancelled):
        OutcomeAuditor(oracle).validate("noop", RECORDS)
