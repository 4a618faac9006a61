# run.py
# Entry point. Config and wiring only; no logic lives here.
#
# Point PMCRO_ORACLE_BASE_URL at any OpenAI-compatible endpoint
# (local Ollama by default, or https://openrouter.ai/api/v1).
# Set PMCRO_TOOL_ENDPOINT to use a remote tool dispatcher over HTTP.

import sys

from pmcro import display
from pmcro.auditor import OutcomeAuditor
from pmcro.client import HttpToolClient, LocalToolClient, ToolClient
from pmcro.config import Settings, load_settings
from pmcro.logging_config import setup_logging
from pmcro.oracle import Oracle
from pmcro.orchestrator import CognitiveOrchestrator
from pmcro.planner import PlanSynthesizer
from pmcro.server import McpServer
from pmcro.tools import default_registry
from pmcro.trail import CognitiveTrail

# Demo intents, used when none is given on the command line.
PROMPTS = [
    # Single tool, deterministic
    "Echo the phrase 'PMCR-O online' back to me.",

    # search → summarize chain
    "Find recent papers on transformer attention mechanisms and summarize the key findings.",

    # search → file_write, destination inside the workspace
    "Search for the latest Python packaging best practices and save the summary "
    "to notes/packaging_notes.txt for my reference.",
]


def build_tool_client(settings: Settings) -> ToolClient:
    if settings.tool_endpoint:
        return HttpToolClient(settings.tool_endpoint, timeout=settings.tool_timeout)
    server = McpServer(default_registry(settings.workspace, http_timeout=settings.tool_timeout))
    return LocalToolClient(server, timeout=settings.tool_timeout)


def build_orchestrator(settings: Settings, tools: ToolClient) -> CognitiveOrchestrator:
    oracle = Oracle.from_settings(settings)
    planner = PlanSynthesizer(
        oracle,
        tools=tools.list_tools(),
        persona=settings.persona,
        timeout=settings.oracle_timeout,
    )
    auditor = OutcomeAuditor(oracle, timeout=settings.oracle_timeout)
    trail = CognitiveTrail(max_entries=settings.trail_max_entries)
    return CognitiveOrchestrator(planner, tools, auditor, trail)


def main() -> None:
    settings = load_settings()
    setup_logging(settings.log_level)

    tools = build_tool_client(settings)
    orchestrator = build_orchestrator(settings, tools)
    display.banner(settings.oracle_model, [t.name for t in tools.list_tools()])

    intents = [" ".join(sys.argv[1:])] if len(sys.argv) > 1 else PROMPTS
    try:
        for intent in intents:
            report = orchestrator.execute(intent)
            print(f"\n[REPORT]\n{report.to_json()}\n")
    finally:
        tools.close()


if __name__ == "__main__":
    main()
