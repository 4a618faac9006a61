# models.py
# Data contracts for the PMCR-O harness.
# No business logic lives here. Pure schema and validation.
#
# Every contract serializes to camelCase (model_dump(by_alias=True)) and
# accepts either camelCase or snake_case on input.

import json
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from pmcro.errors import ErrorKind


def _now() -> datetime:
    return datetime.now(timezone.utc)


class _Contract(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class _FrozenContract(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)


# ---------------------------------------------------------------------------
# Tools
# ---------------------------------------------------------------------------


class ToolDescriptor(_FrozenContract):
    """Public description of a registered tool. Immutable once registered."""

    name: str = Field(..., min_length=1, description="Unique tool name.")
    description: str = Field(default="", description="What the tool does.")
    input_schema: dict[str, Any] = Field(
        default_factory=lambda: {"type": "object"},
        description="JSON Schema subset describing the tool arguments.",
    )


class ToolCallRequest(_Contract):
    tool_name: str
    arguments: dict[str, Any] = Field(default_factory=dict)


class ToolCallResult(_Contract):
    """Outcome of one tool invocation. Never raised, always returned."""

    success: bool
    output: Any = None
    error: str | None = None
    error_kind: ErrorKind | None = None

    @classmethod
    def ok(cls, output: Any) -> "ToolCallResult":
        return cls(success=True, output=output)

    @classmethod
    def failure(cls, kind: ErrorKind, error: str) -> "ToolCallResult":
        return cls(success=False, error=error, error_kind=kind)


# ---------------------------------------------------------------------------
# Plans
# ---------------------------------------------------------------------------


class PlanStep(_FrozenContract):
    """A single action node in an execution plan."""

    order: int = Field(..., description="Position of the step; duplicates allowed.")
    action: str = Field(..., description="Human-readable intent of this step.")
    tool: str = Field(..., description="Tool name to dispatch to.")
    arguments_json: str = Field(default="{}", description="Raw JSON arguments blob.")

    @field_validator("arguments_json", mode="before")
    @classmethod
    def _canonical_arguments(cls, value: Any) -> Any:
        # Parseable blobs are stored canonically; anything else is kept
        # verbatim so the Make phase can record the decode failure.
        if not isinstance(value, str):
            return json.dumps(value, sort_keys=True)
        try:
            return json.dumps(json.loads(value), sort_keys=True)
        except ValueError:
            return value

    def arguments(self) -> dict[str, Any]:
        """Decode the arguments blob. Raises ValueError unless it is a JSON object."""
        decoded = json.loads(self.arguments_json)
        if not isinstance(decoded, dict):
            raise ValueError(
                f"arguments must be a JSON object, got {type(decoded).__name__}"
            )
        return decoded

    def to_wire(self) -> dict[str, Any]:
        try:
            decoded = json.loads(self.arguments_json)
        except ValueError:
            decoded = None
        arguments = decoded if isinstance(decoded, dict) else self.arguments_json
        return {
            "order": self.order,
            "action": self.action,
            "tool": self.tool,
            "arguments": arguments,
        }

    @classmethod
    def from_wire(cls, data: dict[str, Any]) -> "PlanStep":
        return cls(
            order=data["order"],
            action=data["action"],
            tool=data["tool"],
            arguments_json=data.get("arguments", {}),
        )


class Plan(_FrozenContract):
    """A complete execution plan. Steps are always sorted by `order`."""

    goal: str = Field(..., description="Top-level objective of the plan.")
    analysis: str = Field(default="", description="Reasoning behind the chosen steps.")
    steps: tuple[PlanStep, ...] = Field(..., min_length=1)

    @field_validator("steps")
    @classmethod
    def _sort_steps(cls, steps: tuple[PlanStep, ...]) -> tuple[PlanStep, ...]:
        # sorted() is stable: equal orders keep their emitted sequence.
        return tuple(sorted(steps, key=lambda step: step.order))

    def to_wire(self) -> dict[str, Any]:
        return {
            "goal": self.goal,
            "analysis": self.analysis,
            "steps": [step.to_wire() for step in self.steps],
        }

    @classmethod
    def from_wire(cls, data: dict[str, Any]) -> "Plan":
        return cls(
            goal=data["goal"],
            analysis=data.get("analysis", ""),
            steps=tuple(PlanStep.from_wire(step) for step in data["steps"]),
        )


# ---------------------------------------------------------------------------
# Trail
# ---------------------------------------------------------------------------


class Phase(str, Enum):
    PLAN = "Plan"
    MAKE = "Make"
    CHECK = "Check"
    REFLECT = "Reflect"


class TrailEntry(_FrozenContract):
    """Append-only audit record of one phase transition."""

    run_id: str = ""
    phase: Phase
    timestamp: datetime = Field(default_factory=_now)
    payload: dict[str, Any] = Field(default_factory=dict)


# ---------------------------------------------------------------------------
# Execution and reporting
# ---------------------------------------------------------------------------


class StepStatus(str, Enum):
    SUCCESS = "Success"
    FAILED = "Failed"


class RunStatus(str, Enum):
    COMPLETED = "Completed"
    CANCELLED = "Cancelled"


class ExecutionRecord(_Contract):
    """Log entry produced for every Make-phase step, successful or not."""

    step_order: int
    tool: str
    action: str = ""
    status: StepStatus
    output: Any = None
    error: str | None = None
    error_kind: ErrorKind | None = None
    timestamp: datetime = Field(default_factory=_now)


class ValidationOutcome(_Contract):
    """Advisory verdict from the Check phase. Not independently verified."""

    success: bool
    reasoning: str = ""
    correction: str | None = None
    error_kind: ErrorKind | None = None


class Report(_Contract):
    """Final Reflect-phase report returned by CognitiveOrchestrator.execute()."""

    run_id: str
    intent: str
    goal: str
    thought_process: str
    status: RunStatus
    validation: ValidationOutcome
    execution_log: list[ExecutionRecord] = Field(default_factory=list)
    history: list[TrailEntry] = Field(default_factory=list)

    def to_json(self, indent: int | None = 2) -> str:
        return self.model_dump_json(by_alias=True, indent=indent)


# ---------------------------------------------------------------------------
# JSON-RPC envelopes
# ---------------------------------------------------------------------------


class RpcRequest(BaseModel):
    jsonrpc: Literal["2.0"] = "2.0"
    id: str | int | None = None
    method: str = Field(..., min_length=1)
    params: Any = None


class RpcError(BaseModel):
    code: int
    message: str
    data: dict[str, Any] | None = None


class RpcResponse(BaseModel):
    jsonrpc: str = "2.0"
    id: str | int | None = None
    result: Any = None
    error: RpcError | None = None

    def to_dict(self) -> dict[str, Any]:
        body: dict[str, Any] = {"jsonrpc": self.jsonrpc, "id": self.id}
        if self.error is not None:
            body["error"] = self.error.model_dump(exclude_none=True)
        else:
            body["result"] = self.result
        return body
