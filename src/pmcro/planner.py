# planner.py
# Plan Synthesizer (Phase P): intent text → validated Plan.
#
# One oracle round-trip per intent. The oracle's output is treated as
# untrusted text: code fences are stripped, the JSON is parsed, normalized
# and checked against PLAN_SCHEMA. Any failure (oracle down, not JSON,
# structurally unusable) yields the deterministic fallback plan instead of an
# exception. create_plan() never raises.

import json
import logging
import re
import threading
from typing import Any, Sequence

from pydantic import ValidationError

from pmcro import schema
from pmcro.cancellation import is_cancelled
from pmcro.config import Persona
from pmcro.errors import ErrorKind, OperationCancelled, OracleUnavailable, PlanValidationFailure
from pmcro.models import Plan, PlanStep, ToolDescriptor

logger = logging.getLogger(__name__)

FALLBACK_TOOL = "manual_intervention"
FALLBACK_ACTION = "Manual execution required"

# Keys accepted in place of "analysis", in priority order.
REASONING_KEYS = ("analysis", "@thought", "thought", "reasoning")

STEP_SCHEMA: dict[str, Any] = {
    "type": "object",
    "required": ["order", "action", "tool"],
    "properties": {
        "order": {"type": "integer"},
        "action": {"type": "string", "minLength": 1},
        "tool": {"type": "string", "minLength": 1},
        "arguments": {"type": "object"},
    },
}

PLAN_SCHEMA: dict[str, Any] = {
    "type": "object",
    "required": ["goal", "analysis", "steps"],
    "properties": {
        "goal": {"type": "string", "minLength": 1},
        "analysis": {"type": "string"},
        "steps": {"type": "array", "minItems": 1, "items": STEP_SCHEMA},
    },
}


# ---------------------------------------------------------------------------
# Prompts
# ---------------------------------------------------------------------------

OUTPUT_FORMAT = """\
{
  "analysis": "step-by-step reasoning explaining why these steps were chosen",
  "goal": "refined single-sentence goal",
  "steps": [
    {
      "order": 1,
      "action": "what this step does",
      "tool": "tool_name",
      "arguments": {"param_name": "value"}
    }
  ]
}"""

CONSTRAINTS = """\
CRITICAL OUTPUT RULES:
- Respond with ONE JSON object and nothing else.
- No prose before or after the JSON. No Markdown. No ``` code fences.
- Use only the tools listed above; never invent tool names.
- "steps" must contain at least one step; "order" is an integer starting at 1.
- "arguments" must be a JSON object matching the tool's arguments."""


def _argument_hint(descriptor: ToolDescriptor) -> str:
    properties = descriptor.input_schema.get("properties") or {}
    if not properties:
        return "{}"
    fields = []
    for key, prop in properties.items():
        kind = prop.get("type", "any") if isinstance(prop, dict) else "any"
        fields.append(f'"{key}": "<{kind}>"')
    return "{" + ", ".join(fields) + "}"


def build_system_prompt(tools: Sequence[ToolDescriptor], persona: Persona = Persona()) -> str:
    """Deterministic system block: persona, tools, constraints, output format."""
    if tools:
        tool_lines = "\n".join(
            f"- {t.name}: {_argument_hint(t)}" + (f"  # {t.description}" if t.description else "")
            for t in tools
        )
    else:
        tool_lines = "- (no tools registered)"

    return (
        f"You are {persona.role}, expert in {persona.expertise}. Voice: {persona.voice}.\n"
        "You operate inside PMCR-O (Plan, Make, Check, Reflect). Your job is the Plan phase:\n"
        "turn the user's intent into an ordered list of tool calls.\n\n"
        f"Available tools and their required JSON arguments:\n{tool_lines}\n\n"
        f"{CONSTRAINTS}\n\n"
        f"Required output format:\n{OUTPUT_FORMAT}"
    )


def build_intent_prompt(intent: str) -> str:
    return (
        f"Intent:\n{json.dumps(intent, ensure_ascii=False)}\n\n"
        "Analyze the intent, formulate a plan using only the available tools, "
        "and output ONLY valid JSON matching the required format."
    )


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------

_FENCED = re.compile(r"```[A-Za-z0-9_-]*\s*(.*?)\s*```", re.DOTALL)


def strip_code_fences(text: str) -> str:
    """Remove Markdown fences an oracle adds despite being told not to."""
    text = text.strip()
    match = _FENCED.search(text)
    if match:
        return match.group(1).strip()
    # Unterminated or stray fences
    text = re.sub(r"^```[A-Za-z0-9_-]*\s*", "", text)
    text = re.sub(r"\s*```$", "", text)
    return text.strip()


def _normalize(data: dict[str, Any]) -> dict[str, Any]:
    data = dict(data)
    if not isinstance(data.get("analysis"), str):
        for key in REASONING_KEYS[1:]:
            if isinstance(data.get(key), str):
                data["analysis"] = data[key]
                break

    steps = data.get("steps")
    if isinstance(steps, list):
        data["steps"] = [_default_arguments(step) for step in steps]
    return data


def _default_arguments(step: Any) -> Any:
    # Absent and null arguments both mean "no arguments".
    if isinstance(step, dict) and step.get("arguments") is None:
        return {**step, "arguments": {}}
    return step


def parse_plan_response(text: str) -> Plan:
    """
    Parse oracle output into a Plan.

    Raises PlanValidationFailure if the text is not JSON or the JSON does
    not satisfy PLAN_SCHEMA.
    """
    cleaned = strip_code_fences(text)
    try:
        data = json.loads(cleaned)
    except ValueError as exc:
        raise PlanValidationFailure(f"Oracle output is not valid JSON: {exc}") from exc

    if not isinstance(data, dict):
        raise PlanValidationFailure(f"Oracle output is a JSON {type(data).__name__}, expected an object.")

    data = _normalize(data)
    violations = schema.validate(data, PLAN_SCHEMA)
    if violations:
        raise PlanValidationFailure(f"Plan failed validation: {schema.describe(violations)}")

    try:
        return Plan.from_wire(data)
    except ValidationError as exc:
        raise PlanValidationFailure(f"Plan failed validation: {exc}") from exc


# ---------------------------------------------------------------------------
# Fallback
# ---------------------------------------------------------------------------


def fallback_plan(intent: str, reason: str, kind: ErrorKind = ErrorKind.PLAN_VALIDATION_FAILURE) -> Plan:
    """The single-step plan returned whenever synthesis fails."""
    return Plan(
        goal=intent,
        analysis=f"Planning failed ({kind.value}): {reason.rstrip('.')}. Manual intervention required.",
        steps=(
            PlanStep(
                order=1,
                action=FALLBACK_ACTION,
                tool=FALLBACK_TOOL,
                arguments_json={"reason": reason, "errorKind": kind.value},
            ),
        ),
    )


def fallback_kind(plan: Plan) -> ErrorKind | None:
    """Return the failure kind if `plan` is a fallback plan, else None."""
    if len(plan.steps) != 1 or plan.steps[0].tool != FALLBACK_TOOL:
        return None
    try:
        return ErrorKind(plan.steps[0].arguments().get("errorKind"))
    except ValueError:
        return ErrorKind.PLAN_VALIDATION_FAILURE


# ---------------------------------------------------------------------------
# Synthesizer
# ---------------------------------------------------------------------------


class PlanSynthesizer:
    """
    Turns intents into plans through the oracle.

    `tools` are the descriptors advertised to the oracle; they are rendered
    into the system prompt once, at construction.
    """

    def __init__(
        self,
        oracle,
        tools: Sequence[ToolDescriptor] = (),
        persona: Persona = Persona(),
        timeout: float | None = None,
    ) -> None:
        self._oracle = oracle
        self._timeout = timeout
        self._system_prompt = build_system_prompt(tools, persona)

    @property
    def system_prompt(self) -> str:
        return self._system_prompt

    def create_plan(self, intent: str, *, cancel: threading.Event | None = None) -> Plan:
        logger.info("Creating plan for intent: %s", intent)

        if is_cancelled(cancel):
            return fallback_plan(intent, "Planning cancelled before the oracle was consulted.", ErrorKind.CANCELLED)

        messages = [
            {"role": "system", "content": self._system_prompt},
            {"role": "user", "content": build_intent_prompt(intent)},
        ]

        try:
            response = self._oracle.chat(messages, json_mode=True, timeout=self._timeout, cancel=cancel)
        except OracleUnavailable as exc:
            logger.error("Oracle unavailable while planning: %s", exc)
            return fallback_plan(intent, str(exc), ErrorKind.ORACLE_UNAVAILABLE)
        except OperationCancelled:
            return fallback_plan(intent, "Planning cancelled during the oracle round-trip.", ErrorKind.CANCELLED)
        except Exception as exc:
            logger.exception("Error calling the oracle")
            return fallback_plan(intent, str(exc) or type(exc).__name__, ErrorKind.ORACLE_UNAVAILABLE)

        try:
            plan = parse_plan_response(response)
        except PlanValidationFailure as exc:
            logger.warning("Unusable plan from oracle: %s", exc)
            return fallback_plan(intent, str(exc), ErrorKind.PLAN_VALIDATION_FAILURE)
        except Exception as exc:
            logger.exception("Error parsing plan")
            return fallback_plan(intent, str(exc) or type(exc).__name__, ErrorKind.PLAN_VALIDATION_FAILURE)

        logger.info("Plan generated: %d step(s)", len(plan.steps))
        return plan
