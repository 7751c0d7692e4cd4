"""Configuration loader — reads ~/.agent-proxy/.env, validates with Pydantic.

Process environment variables override values from the file, which is how
the supervisor hands its configuration to the spawned server process.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

from dotenv import dotenv_values
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from agent_proxy.errors import ConfigError

logger = logging.getLogger(__name__)

DEFAULT_PORT = 11434

REQUIRED_VARS = ("VERTEX_AI_PROJECT", "VERTEX_AI_LOCATION", "VERTEX_AI_MODEL")

# env var name → AgentConfig field
ENV_FIELDS = {
    "VERTEX_AI_PROJECT": "vertex_ai_project",
    "VERTEX_AI_LOCATION": "vertex_ai_location",
    "VERTEX_AI_MODEL": "vertex_ai_model",
    "PROXY_PORT": "proxy_port",
    "DEBUG_MODE": "debug_mode",
    "PROMPTS_BASE_PATH": "prompts_base_path",
    "SYSTEM_PROMPT_PATH": "system_prompt_path",
    "INCLUDE_THOUGHTS": "include_thoughts",
}

_HELP = (
    "Required variables:\n"
    "  VERTEX_AI_PROJECT: Google Cloud project ID\n"
    "  VERTEX_AI_LOCATION: Vertex AI region (e.g., us-central1)\n"
    "  VERTEX_AI_MODEL: Model name (e.g., gemini-2.5-flash)\n"
    "Optional variables:\n"
    f"  PROXY_PORT={DEFAULT_PORT}\n"
    "  DEBUG_MODE=false\n"
    "  INCLUDE_THOUGHTS=false\n"
    "  PROMPTS_BASE_PATH=/path/to/prompts  (requires SYSTEM_PROMPT_PATH)\n"
    "  SYSTEM_PROMPT_PATH=base/system.md   (relative to PROMPTS_BASE_PATH)"
)


def state_dir() -> Path:
    """Directory holding .env, the PID record and the server log."""
    override = os.environ.get("AGENT_PROXY_HOME")
    if override:
        return Path(override).expanduser()
    return Path.home() / ".agent-proxy"


def config_path() -> Path:
    return state_dir() / ".env"


class AgentConfig(BaseModel):
    """Immutable per-process configuration."""

    model_config = ConfigDict(frozen=True)

    vertex_ai_project: str
    vertex_ai_location: str
    vertex_ai_model: str
    proxy_port: int = Field(default=DEFAULT_PORT, ge=1, le=65535)
    debug_mode: bool = False
    include_thoughts: bool = False
    prompts_base_path: Path | None = None
    system_prompt_path: str | None = None

    @field_validator("vertex_ai_project", "vertex_ai_location", "vertex_ai_model")
    @classmethod
    def must_not_be_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("must not be empty")
        return v.strip()

    @field_validator("prompts_base_path", "system_prompt_path", mode="before")
    @classmethod
    def blank_is_unset(cls, v):
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @model_validator(mode="after")
    def validate_prompt_paths(self) -> AgentConfig:
        if self.prompts_base_path is None:
            if self.system_prompt_path is not None:
                raise ValueError("SYSTEM_PROMPT_PATH requires PROMPTS_BASE_PATH to be set")
            return self

        if self.system_prompt_path is None:
            raise ValueError("PROMPTS_BASE_PATH requires SYSTEM_PROMPT_PATH to be set")
        if not self.prompts_base_path.is_dir():
            raise ValueError(f"Prompts base path does not exist: {self.prompts_base_path}")
        if not self.system_prompt_file.is_file():
            raise ValueError(f"System prompt file not found: {self.system_prompt_file}")
        return self

    @property
    def prompts_enabled(self) -> bool:
        return self.prompts_base_path is not None

    @property
    def system_prompt_file(self) -> Path:
        if self.prompts_base_path is None or self.system_prompt_path is None:
            raise ConfigError("Prompt composition is not configured")
        return self.prompts_base_path / self.system_prompt_path

    def to_env(self) -> dict[str, str]:
        """Export as environment variables for a spawned server process."""
        env: dict[str, str] = {}
        for name, field in ENV_FIELDS.items():
            value = getattr(self, field)
            if value is None:
                continue
            if isinstance(value, bool):
                env[name] = "true" if value else "false"
            else:
                env[name] = str(value)
        return env


def _coerce_bool(raw: str) -> bool:
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _collect_values(path: Path) -> dict[str, str]:
    values: dict[str, str] = {}
    if path.exists():
        values.update({k: v for k, v in dotenv_values(path).items() if v is not None})
    for name in ENV_FIELDS:
        if name in os.environ:
            values[name] = os.environ[name]
    return values


def load_config(path: str | Path | None = None) -> AgentConfig:
    """Read .env + environment, validate, and return the config.

    Raises ConfigError with an actionable message on any failure.
    """
    config_file = Path(path) if path is not None else config_path()
    values = _collect_values(config_file)

    missing = [name for name in REQUIRED_VARS if not values.get(name, "").strip()]
    if missing:
        where = (
            f"in {config_file}"
            if config_file.exists()
            else f"(configuration file not found: {config_file})"
        )
        raise ConfigError(
            f"Missing required configuration {where}: {', '.join(missing)}\n{_HELP}"
        )

    raw: dict[str, object] = {}
    for name, field in ENV_FIELDS.items():
        if name not in values:
            continue
        value = values[name].strip()
        if field in ("debug_mode", "include_thoughts"):
            raw[field] = _coerce_bool(value)
        elif field == "proxy_port":
            if not (value.isascii() and value.isdigit()):
                raise ConfigError(
                    f"Invalid PROXY_PORT: {value}. Must be a number between 1 and 65535."
                )
            raw[field] = int(value)
        else:
            raw[field] = value

    try:
        config = AgentConfig(**raw)
    except ValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or 'config'}: {err['msg']}"
            for err in e.errors()
        )
        raise ConfigError(f"Failed to load agent configuration: {problems}") from e

    logger.info(
        f"Loaded config: project={config.vertex_ai_project}, "
        f"location={config.vertex_ai_location}, model={config.vertex_ai_model}, "
        f"port={config.proxy_port}, prompts={'enabled' if config.prompts_enabled else 'disabled'}"
    )
    return config
