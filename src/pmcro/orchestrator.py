# orchestrator.py
# PMCR-O Orchestration Loop
#
# The loop is the kernel. The oracle and the tools are passive responders;
# this module owns all control flow, state and audit recording.
#
# Control flow (single pass, no revisits):
#   Intake → Plan (one oracle round-trip) → Make (steps strictly in order)
#   → Check (one oracle round-trip) → Reflect (report) → Done
#
# Failures are recorded, never raised: a fallback plan still runs, a failed
# step does not stop the next one, a failed audit is a failed verdict.
# All terminal output is delegated to display.py.

import logging
import threading
import uuid
from enum import Enum

from pmcro import display
from pmcro.auditor import OutcomeAuditor
from pmcro.cancellation import is_cancelled
from pmcro.client import ToolClient
from pmcro.errors import ErrorKind, OperationCancelled
from pmcro.models import (
    ExecutionRecord,
    Phase,
    Plan,
    PlanStep,
    Report,
    RunStatus,
    StepStatus,
    ValidationOutcome,
)
from pmcro.planner import PlanSynthesizer, fallback_kind
from pmcro.trail import CognitiveTrail

logger = logging.getLogger(__name__)


class LoopState(str, Enum):
    INTAKE = "Intake"
    PLAN = "Plan"
    MAKE = "Make"
    CHECK = "Check"
    REFLECT = "Reflect"
    DONE = "Done"


# ---------------------------------------------------------------------------
# One run
# ---------------------------------------------------------------------------


class LoopRun:
    """
    A single pass of the PMCR-O cycle for one intent.

    Instances are single-use: once Done, execute() refuses to run again.
    Concurrent runs each own their LoopRun; the trail is the only state
    they share.
    """

    def __init__(
        self,
        intent: str,
        planner: PlanSynthesizer,
        tools: ToolClient,
        auditor: OutcomeAuditor,
        trail: CognitiveTrail,
        cancel: threading.Event | None = None,
    ) -> None:
        self.run_id = uuid.uuid4().hex[:12]
        self.intent = intent
        self.state = LoopState.INTAKE
        self.records: list[ExecutionRecord] = []
        self._planner = planner
        self._tools = tools
        self._auditor = auditor
        self._trail = trail
        self._cancel = cancel
        self._cancelled_during: str | None = None

    @property
    def cancelled(self) -> bool:
        return self._cancelled_during is not None

    def _mark_cancelled(self, where: str) -> None:
        if self._cancelled_during is None:
            self._cancelled_during = where
            logger.warning("[%s] Run %s cancelled during %s", self.state.value.upper(), self.run_id, where)
            display.cancelled(where)

    def _record(self, phase: Phase, payload: dict) -> None:
        self._trail.append(phase, payload, run_id=self.run_id)

    # ------------------------------------------------------------------
    # Phase P: Plan
    # ------------------------------------------------------------------

    def _plan(self) -> Plan:
        self.state = LoopState.PLAN
        display.calling_planner()

        plan = self._planner.create_plan(self.intent, cancel=self._cancel)
        failure = fallback_kind(plan)

        payload = {
            "goal": plan.goal,
            "analysis": plan.analysis,
            "stepCount": len(plan.steps),
            "steps": plan.to_wire()["steps"],
        }
        if failure is not None:
            payload["errorKind"] = failure.value
        self._record(Phase.PLAN, payload)

        logger.info("[PLAN] Plan generated: %d step(s)%s", len(plan.steps), " (fallback)" if failure else "")
        display.plan_ready(plan, fallback=failure is not None)

        if failure is ErrorKind.CANCELLED or is_cancelled(self._cancel):
            self._mark_cancelled("Plan")
        return plan

    # ------------------------------------------------------------------
    # Phase M: Make
    # ------------------------------------------------------------------

    def _execute_step(self, step: PlanStep) -> ExecutionRecord:
        """
        Dispatch one step. Every failure becomes a Failed record; only
        OperationCancelled escapes.
        """
        try:
            arguments = step.arguments()
        except ValueError as exc:
            return ExecutionRecord(
                step_order=step.order,
                tool=step.tool,
                action=step.action,
                status=StepStatus.FAILED,
                error=f"Could not deserialize arguments: {exc}",
                error_kind=ErrorKind.INVALID_ARGUMENTS,
            )

        try:
            result = self._tools.call_tool(step.tool, arguments, cancel=self._cancel)
        except OperationCancelled:
            raise
        except Exception as exc:
            logger.exception("CRITICAL: Execution failure at step %d", step.order)
            return ExecutionRecord(
                step_order=step.order,
                tool=step.tool,
                action=step.action,
                status=StepStatus.FAILED,
                error=str(exc) or type(exc).__name__,
                error_kind=ErrorKind.TOOL_EXECUTION_FAILURE,
            )

        return ExecutionRecord(
            step_order=step.order,
            tool=step.tool,
            action=step.action,
            status=StepStatus.SUCCESS if result.success else StepStatus.FAILED,
            output=result.output,
            error=result.error,
            error_kind=result.error_kind,
        )

    def _make(self, plan: Plan) -> None:
        self.state = LoopState.MAKE
        if self.cancelled:
            return

        total = len(plan.steps)
        display.execution_start(total)

        for index, step in enumerate(plan.steps):
            if is_cancelled(self._cancel):
                self._mark_cancelled(f"Make, before step {step.order}")
                break

            logger.info("[MAKE] Executing step %d: %s via %s", step.order, step.action, step.tool)
            display.step_start(index, total, step.action, step.tool)

            try:
                record = self._execute_step(step)
            except OperationCancelled as exc:
                record = ExecutionRecord(
                    step_order=step.order,
                    tool=step.tool,
                    action=step.action,
                    status=StepStatus.FAILED,
                    error=str(exc),
                    error_kind=ErrorKind.CANCELLED,
                )
                self._mark_cancelled(f"Make, step {step.order}")

            if record.status is StepStatus.FAILED:
                logger.warning("Step %d failed: %s", step.order, record.error)

            self.records.append(record)
            self._record(Phase.MAKE, record.model_dump(mode="json", by_alias=True))
            display.step_result(record)

            if self.cancelled:
                break

        display.execution_summary(self.records)

    # ------------------------------------------------------------------
    # Phase C: Check
    # ------------------------------------------------------------------

    def _check(self) -> ValidationOutcome:
        self.state = LoopState.CHECK
        if is_cancelled(self._cancel):
            self._mark_cancelled("Check")

        if self.cancelled:
            outcome = ValidationOutcome(
                success=False,
                reasoning="Run cancelled before outcome validation.",
                error_kind=ErrorKind.CANCELLED,
            )
        else:
            logger.info("[CHECK] Validating outcome...")
            display.check_start()
            try:
                outcome = self._auditor.validate(self.intent, self.records, cancel=self._cancel)
            except OperationCancelled as exc:
                self._mark_cancelled("Check")
                outcome = ValidationOutcome(
                    success=False, reasoning=str(exc), error_kind=ErrorKind.CANCELLED
                )

        self._record(Phase.CHECK, outcome.model_dump(mode="json", by_alias=True))
        display.check_result(outcome)
        return outcome

    # ------------------------------------------------------------------
    # Phase R: Reflect
    # ------------------------------------------------------------------

    def _reflect(self, plan: Plan, outcome: ValidationOutcome) -> Report:
        self.state = LoopState.REFLECT
        status = RunStatus.CANCELLED if self.cancelled else RunStatus.COMPLETED

        payload = {
            "status": status.value,
            "recordCount": len(self.records),
            "failedSteps": [r.step_order for r in self.records if r.status is StepStatus.FAILED],
            "validationSuccess": outcome.success,
        }
        if self._cancelled_during:
            payload["cancelledDuring"] = self._cancelled_during
        self._record(Phase.REFLECT, payload)

        return Report(
            run_id=self.run_id,
            intent=self.intent,
            goal=plan.goal,
            thought_process=plan.analysis,
            status=status,
            validation=outcome,
            execution_log=list(self.records),
            history=self._trail.history(run_id=self.run_id),
        )

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    def execute(self) -> Report:
        """
        Full cycle. Returns a Report in all recoverable cases: fallback
        plans, failed steps, failed audits and cancellation.
        """
        if self.state is not LoopState.INTAKE:
            raise RuntimeError(f"Run {self.run_id} already executed; LoopRun instances are single-use.")

        logger.info("[INTAKE] Seed intent: %s", self.intent)
        display.intent_received(self.intent, self.run_id)

        plan = self._plan()
        self._make(plan)
        outcome = self._check()
        report = self._reflect(plan, outcome)

        self.state = LoopState.DONE
        display.final_report(report)
        return report


# ---------------------------------------------------------------------------
# Orchestrator
# ---------------------------------------------------------------------------


class CognitiveOrchestrator:
    """
    Entry point for running intents through the PMCR-O cycle.

    Example:
        orchestrator = CognitiveOrchestrator(planner, tools, auditor, trail)
        report = orchestrator.execute("Find the title of https://example.com")
        print(report.to_json())
    """

    def __init__(
        self,
        planner: PlanSynthesizer,
        tools: ToolClient,
        auditor: OutcomeAuditor,
        trail: CognitiveTrail,
    ) -> None:
        self._planner = planner
        self._tools = tools
        self._auditor = auditor
        self._trail = trail

    @property
    def trail(self) -> CognitiveTrail:
        return self._trail

    def new_run(self, intent: str, cancel: threading.Event | None = None) -> LoopRun:
        return LoopRun(intent, self._planner, self._tools, self._auditor, self._trail, cancel)

    def execute(self, intent: str, cancel: threading.Event | None = None) -> Report:
        return self.new_run(intent, cancel).execute()
