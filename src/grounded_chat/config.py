"""Configuration models for the grounded chat assistant."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

from dotenv import load_dotenv
from pydantic import BaseModel, Field, SecretStr, ValidationError

from grounded_chat.errors import ConfigurationError

DEFAULT_SYSTEM_INSTRUCTION = (
    "You are an expert in machine learning. Analyze the content of the provided "
    "PDF document. I will ask you questions about specific topics or pages within "
    "this document. Use the information from the PDF to answer my questions accurately."
)

DEFAULT_QUERY_TEMPLATE = "Using the document you were provided, {input}"


class ClientConfig(BaseModel):
    """Credentials and transport settings for the remote model service."""

    api_key: SecretStr
    request_timeout_seconds: float | None = Field(default=None, gt=0.0)


class GroundingConfig(BaseModel):
    """Configures the grounding document and the context cache built from it."""

    document_path: Path = Path("ML_BOOK_250.pdf")
    cache_model: str = "gemini-2.5-flash"
    fallback_model: str = "gemini-2.5-flash"
    system_instruction: str = DEFAULT_SYSTEM_INSTRUCTION
    cache_ttl_seconds: int | None = Field(default=None, ge=60)
    require_document: bool = False
    use_cache: bool = True


class AgentConfig(BaseModel):
    """Configures the turn loop."""

    max_tool_rounds: int = Field(default=6, ge=1)
    query_template: str = DEFAULT_QUERY_TEMPLATE


class ToolConfig(BaseModel):
    """Configures where built-in tools may write."""

    working_root: Path = Field(default_factory=Path.cwd)


class AssistantConfig(BaseModel):
    client: ClientConfig
    grounding: GroundingConfig = Field(default_factory=GroundingConfig)
    agent: AgentConfig = Field(default_factory=AgentConfig)
    tools: ToolConfig = Field(default_factory=ToolConfig)


_ENV_FIELDS: dict[str, tuple[str, str]] = {
    "GROUNDED_CHAT_DOCUMENT": ("grounding", "document_path"),
    "GROUNDED_CHAT_MODEL": ("grounding", "cache_model"),
    "GROUNDED_CHAT_FALLBACK_MODEL": ("grounding", "fallback_model"),
    "GROUNDED_CHAT_CACHE_TTL": ("grounding", "cache_ttl_seconds"),
    "GROUNDED_CHAT_RESULTS_ROOT": ("tools", "working_root"),
    "GROUNDED_CHAT_TIMEOUT": ("client", "request_timeout_seconds"),
}


def load_config(
    env_file: str | Path | None = None,
    **overrides: dict[str, Any],
) -> AssistantConfig:
    """Build the configuration from ``.env``, the environment and overrides.

    ``overrides`` are keyed by section (``grounding``, ``agent``, ``tools``,
    ``client``) and win over environment values. Raises
    ``ConfigurationError`` when the API key is missing or a value is invalid.
    """

    if env_file is not None and not Path(env_file).is_file():
        raise ConfigurationError(f"Env file not found: {env_file}")
    load_dotenv(env_file, override=False)

    sections: dict[str, dict[str, Any]] = {
        "client": {},
        "grounding": {},
        "agent": {},
        "tools": {},
    }
    api_key = os.getenv("GEMINI_API_KEY", "").strip()
    if api_key:
        sections["client"]["api_key"] = api_key
    for env_name, (section, key) in _ENV_FIELDS.items():
        raw = os.getenv(env_name)
        if raw is not None and raw.strip():
            sections[section][key] = raw.strip()
    for section, values in overrides.items():
        if section not in sections:
            raise ConfigurationError(f"Unknown configuration section: {section}")
        sections[section].update({k: v for k, v in values.items() if v is not None})

    if "api_key" not in sections["client"]:
        raise ConfigurationError("GEMINI_API_KEY is not set.")

    try:
        return AssistantConfig.model_validate(sections)
    except ValidationError as exc:
        raise ConfigurationError(f"Invalid configuration: {exc}") from exc
