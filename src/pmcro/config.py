# config.py
# Runtime settings. Precedence: environment (after .env is loaded) > defaults.

import os
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import load_dotenv


@dataclass(frozen=True)
class Persona:
    """Identity the planner speaks with. Rendered into the system prompt."""

    role: str = "PMCR-O Planner"
    expertise: str = "General Orchestration"
    voice: str = "Precise and concise"


@dataclass
class Settings:
    # Oracle (any OpenAI-compatible endpoint; defaults target a local Ollama)
    oracle_base_url: str = "http://localhost:11434/v1"
    oracle_api_key: str = "ollama"
    oracle_model: str = "qwen2.5-coder:latest"
    oracle_timeout: float = 300.0
    oracle_temperature: float = 0.2
    oracle_max_tokens: int = 4096

    # Tools
    tool_endpoint: str | None = None
    tool_timeout: float = 30.0
    workspace: Path = field(default_factory=lambda: Path("./workspace"))

    # Trail and logging
    trail_max_entries: int | None = 500
    log_level: str = "INFO"

    persona: Persona = field(default_factory=Persona)


def _env(key: str) -> str | None:
    value = os.getenv(key)
    return value if value not in (None, "") else None


def _apply_env_overrides(settings: Settings) -> Settings:
    """Apply PMCRO_* environment variable overrides."""
    casts = {
        "PMCRO_ORACLE_BASE_URL": ("oracle_base_url", str),
        "PMCRO_ORACLE_MODEL": ("oracle_model", str),
        "PMCRO_ORACLE_TIMEOUT": ("oracle_timeout", float),
        "PMCRO_ORACLE_TEMPERATURE": ("oracle_temperature", float),
        "PMCRO_ORACLE_MAX_TOKENS": ("oracle_max_tokens", int),
        "PMCRO_TOOL_ENDPOINT": ("tool_endpoint", str),
        "PMCRO_TOOL_TIMEOUT": ("tool_timeout", float),
        "PMCRO_WORKSPACE": ("workspace", Path),
        "PMCRO_LOG_LEVEL": ("log_level", str),
    }
    for env_key, (attr, cast) in casts.items():
        value = _env(env_key)
        if value is not None:
            setattr(settings, attr, cast(value))

    api_key = _env("PMCRO_ORACLE_API_KEY") or _env("OPENROUTER_API_KEY")
    if api_key:
        settings.oracle_api_key = api_key

    retention = _env("PMCRO_TRAIL_MAX_ENTRIES")
    if retention is not None:
        # 0 disables the bound.
        settings.trail_max_entries = int(retention) or None

    defaults = Persona()
    settings.persona = Persona(
        role=_env("PMCRO_PERSONA_ROLE") or defaults.role,
        expertise=_env("PMCRO_PERSONA_EXPERTISE") or defaults.expertise,
        voice=_env("PMCRO_PERSONA_VOICE") or defaults.voice,
    )
    return settings


def load_settings(dotenv: bool = True) -> Settings:
    """Load settings with precedence: env vars > defaults."""
    if dotenv:
        load_dotenv()
    return _apply_env_overrides(Settings())
