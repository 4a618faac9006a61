# display.py
# All terminal output for the PMCR-O harness.
#
# This module owns presentation entirely. orchestrator.py never formats
# strings; it calls named functions here. Swap this file to change the UI.
#
# Colour language:
#   cyan    : scaffolding / phase transitions
#   blue    : oracle calls
#   yellow  : Check phase
#   green   : success / confirmed
#   red     : failures and cancellation
#   magenta : Make-phase step internals

import json

from rich import box
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.rule import Rule
from rich.table import Table
from rich.text import Text

from pmcro.models import ExecutionRecord, Plan, Report, StepStatus, ValidationOutcome

console = Console()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _label(tag: str, color: str) -> Text:
    t = Text()
    t.append(f" {tag} ", style=f"bold white on {color}")
    return t


def _mono(value: str, max_len: int = 120) -> str:
    if len(value) > max_len:
        value = value[:max_len] + "…"
    return escape(value)


def _render(value) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value.replace("\n", " ")
    return json.dumps(value, default=str)


# ---------------------------------------------------------------------------
# Intake
# ---------------------------------------------------------------------------


def banner(model: str, tool_names: list[str]) -> None:
    tools = escape(", ".join(tool_names)) or "(none)"
    console.print()
    console.print(
        Panel.fit(
            "[bold cyan]PMCR-O Harness[/bold cyan]\n"
            "[dim]Plan → Make → Check → Reflect[/dim]\n\n"
            f"[dim]Oracle :[/dim] [white]{escape(model)}[/white]\n"
            f"[dim]Tools  :[/dim] [white]{tools}[/white]",
            border_style="cyan",
            padding=(1, 4),
        )
    )


def intent_received(intent: str, run_id: str) -> None:
    console.print()
    console.print(Rule(f"[cyan]NEW RUN[/cyan] [dim]{run_id}[/dim]", style="cyan"))
    console.print(
        Panel(
            f"[white]{escape(intent)}[/white]",
            title=_label("INTENT", "cyan"),
            border_style="cyan",
            padding=(0, 2),
        )
    )


# ---------------------------------------------------------------------------
# Plan
# ---------------------------------------------------------------------------


def calling_planner() -> None:
    console.print()
    console.print(_label("PLAN", "blue"), "[blue] → Asking the oracle for a plan…[/blue]")


def plan_ready(plan: Plan, fallback: bool = False) -> None:
    console.print()
    table = Table(
        box=box.SIMPLE_HEAVY,
        border_style="cyan",
        show_header=True,
        header_style="bold cyan",
        padding=(0, 1),
    )
    table.add_column("Order", justify="center", width=6)
    table.add_column("Tool", style="bold white", width=20)
    table.add_column("Args", style="dim white", width=32)
    table.add_column("Action", style="white")

    for step in plan.steps:
        table.add_row(str(step.order), escape(step.tool), _mono(step.arguments_json, 30), escape(step.action))

    color = "red" if fallback else "cyan"
    title = "PLAN: FALLBACK" if fallback else "PLAN READY"
    console.print(
        Panel(
            table,
            title=_label(title, color),
            subtitle=f"[dim]Goal: {escape(plan.goal)}[/dim]",
            border_style=color,
            padding=(0, 1),
        )
    )
    if plan.analysis:
        console.print(f"[dim]  Thought process: {_mono(plan.analysis, 300)}[/dim]")


# ---------------------------------------------------------------------------
# Make
# ---------------------------------------------------------------------------


def execution_start(total: int) -> None:
    console.print()
    console.print(Rule(f"[cyan]MAKE: {total} step(s)[/cyan]", style="cyan"))


def step_start(index: int, total: int, action: str, tool: str) -> None:
    console.print()
    console.print(
        f"[bold cyan]  STEP [{index + 1}/{total}][/bold cyan]  [white]{escape(action)}[/white]"
        f"  [magenta]via[/magenta] [bold white]{escape(tool)}[/bold white]"
    )


def step_result(record: ExecutionRecord) -> None:
    if record.status is StepStatus.SUCCESS:
        console.print(f"  [bold green]✓[/bold green] [white]{_mono(_render(record.output), 140)}[/white]")
    else:
        kind = record.error_kind.value if record.error_kind else "Failed"
        console.print(f"  [bold red]✗ {kind}[/bold red] [white]{_mono(record.error or '', 140)}[/white]")


def cancelled(where: str) -> None:
    console.print()
    console.print(
        Panel(
            f"[bold white]Cancellation observed during {escape(where)}.[/bold white]\n"
            "[dim]Completed steps are kept in the execution log.[/dim]",
            title=_label("CANCELLED", "red"),
            border_style="red",
            padding=(0, 2),
        )
    )


def execution_summary(log: list[ExecutionRecord]) -> None:
    console.print()
    table = Table(
        box=box.SIMPLE_HEAVY,
        border_style="dim",
        show_header=True,
        header_style="bold dim",
        padding=(0, 1),
    )
    table.add_column("Step", justify="center", width=6)
    table.add_column("Tool", width=20)
    table.add_column("Status", justify="center", width=10)
    table.add_column("Output / Error", style="dim white")

    for record in log:
        ok = record.status is StepStatus.SUCCESS
        status = "[bold green]✓[/bold green]" if ok else "[bold red]✗[/bold red]"
        detail = _render(record.output) if ok else (record.error or "")
        table.add_row(str(record.step_order), escape(record.tool), status, _mono(detail, 60))

    console.print(
        Panel(
            table,
            title="[dim]EXECUTION SUMMARY[/dim]",
            border_style="dim",
            padding=(0, 1),
        )
    )


# ---------------------------------------------------------------------------
# Check
# ---------------------------------------------------------------------------


def check_start() -> None:
    console.print()
    console.print(Rule("[yellow]CHECK[/yellow]", style="yellow"))
    console.print("[yellow]  Asking the oracle to audit the execution log against the intent…[/yellow]")


def check_result(outcome: ValidationOutcome) -> None:
    color = "green" if outcome.success else "red"
    verdict = "PASS ✓" if outcome.success else "FAIL ✗"
    body = f"[white]{escape(outcome.reasoning)}[/white]"
    if outcome.correction:
        body += f"\n\n[dim]Correction: {escape(outcome.correction)}[/dim]"
    console.print(
        Panel(
            body,
            title=_label(f"CHECK: {verdict}", color),
            border_style=color,
            padding=(0, 2),
        )
    )


# ---------------------------------------------------------------------------
# Reflect
# ---------------------------------------------------------------------------


def final_report(report: Report) -> None:
    console.print()
    color = "green" if report.validation.success else "yellow"
    console.print(
        Panel(
            f"[bold white]{escape(report.goal)}[/bold white]\n\n"
            f"[dim]Status     :[/dim] {report.status.value}\n"
            f"[dim]Validation :[/dim] {'success' if report.validation.success else 'failure'}\n"
            f"[dim]Steps      :[/dim] {len(report.execution_log)}",
            title=_label("REFLECT", color),
            border_style=color,
            padding=(1, 2),
        )
    )
    console.print()
