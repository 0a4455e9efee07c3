from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv
from pydantic import SecretStr

from .errors import ConfigError

# re-export for contract/tests
__all__ = [
    "AppConfig",
    "ChatConfig",
    "ConfigError",
    "LoggingConfig",
    "ModelConfig",
    "ToolsConfig",
    "load_config",
]


_ENV_PATTERN = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)\}")

# Checked in order when model.api_key is absent from the YAML.
API_KEY_ENV_VARS = ("GEMINI_API_KEY", "API_KEY")


def _expand_env_in_str(value: str, *, path: str) -> str:
    def repl(match: re.Match[str]) -> str:
        key = match.group(1)
        if key not in os.environ or os.environ[key] == "":
            raise ConfigError(f"environment variable {key!r} is not set", path=path)
        return os.environ[key]

    return _ENV_PATTERN.sub(repl, value)


def _expand_env(obj: Any, *, path: str) -> Any:
    if isinstance(obj, str):
        return _expand_env_in_str(obj, path=path)
    if isinstance(obj, list):
        return [_expand_env(v, path=f"{path}[{i}]") for i, v in enumerate(obj)]
    if isinstance(obj, dict):
        return {k: _expand_env(v, path=f"{path}.{k}" if path else str(k)) for k, v in obj.items()}
    return obj


def _section(raw: dict[str, Any], key: str) -> dict[str, Any]:
    value = raw.get(key)
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ConfigError("must be a mapping", path=key)
    return value


@dataclass(frozen=True)
class ModelConfig:
    """OpenAI-compatible chat endpoint. Defaults target Gemini's compatibility layer."""

    api_key: SecretStr
    base_url: str = "https://generativelanguage.googleapis.com/v1beta/openai/"
    model: str = "gemini-2.5-flash"
    timeout_s: float = 30.0
    max_retries: int = 3


@dataclass(frozen=True)
class ToolsConfig:
    enabled: bool = True
    max_round_trips: int = 5
    whitelist: list[str] = field(default_factory=list)
    rate_limit: dict[str, float] = field(default_factory=dict)


@dataclass(frozen=True)
class ChatConfig:
    system_instruction: str | None = None


@dataclass(frozen=True)
class LoggingConfig:
    level: str = "INFO"


@dataclass(frozen=True)
class AppConfig:
    model: ModelConfig
    tools: ToolsConfig = field(default_factory=ToolsConfig)
    chat: ChatConfig = field(default_factory=ChatConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


def _load_model(raw: dict[str, Any]) -> ModelConfig:
    api_key = raw.get("api_key")
    if api_key is None or api_key == "":
        api_key = next((os.environ[k] for k in API_KEY_ENV_VARS if os.environ.get(k)), None)
    if not isinstance(api_key, str) or not api_key.strip():
        raise ConfigError(
            f"must be a non-empty string (or set {' / '.join(API_KEY_ENV_VARS)})",
            path="model.api_key",
        )

    try:
        timeout_s = float(raw.get("timeout_s", ModelConfig.timeout_s))
        max_retries = int(raw.get("max_retries", ModelConfig.max_retries))
    except (TypeError, ValueError) as e:
        raise ConfigError(f"invalid number: {e}", path="model") from e

    if timeout_s <= 0:
        raise ConfigError("must be > 0", path="model.timeout_s")
    if max_retries < 0:
        raise ConfigError("must be >= 0", path="model.max_retries")

    return ModelConfig(
        api_key=SecretStr(api_key.strip()),
        base_url=str(raw.get("base_url", ModelConfig.base_url)),
        model=str(raw.get("model", ModelConfig.model)),
        timeout_s=timeout_s,
        max_retries=max_retries,
    )


def _load_tools(raw: dict[str, Any]) -> ToolsConfig:
    enabled = raw.get("enabled", ToolsConfig.enabled)
    if not isinstance(enabled, bool):
        raise ConfigError("must be true or false", path="tools.enabled")

    whitelist = raw.get("whitelist", [])
    if whitelist is None:
        whitelist = []
    if not isinstance(whitelist, list) or not all(isinstance(x, str) for x in whitelist):
        raise ConfigError("must be a list of strings", path="tools.whitelist")

    rate_limit = raw.get("rate_limit", {})
    if rate_limit is None:
        rate_limit = {}
    if not isinstance(rate_limit, dict) or not all(isinstance(k, str) for k in rate_limit.keys()):
        raise ConfigError("must be a mapping of tool name to calls per second", path="tools.rate_limit")

    tools = ToolsConfig(
        enabled=enabled,
        max_round_trips=int(raw.get("max_round_trips", ToolsConfig.max_round_trips)),
        whitelist=list(whitelist),
        rate_limit={k: float(v) for k, v in rate_limit.items()},
    )

    if tools.max_round_trips < 1:
        raise ConfigError("must be an integer >= 1", path="tools.max_round_trips")

    return tools


def load_config(path: str | Path) -> AppConfig:
    """Load YAML config and expand ${ENV_VAR} placeholders.

    A `.env` file in the working directory is honoured for local development;
    variables already set in the environment win.
    """

    load_dotenv(override=False)

    config_path = Path(path)
    if not config_path.exists():
        raise ConfigError("config file not found", path=str(config_path))

    try:
        raw = yaml.safe_load(config_path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"YAML parse error: {e}", path=str(config_path)) from e

    if not isinstance(raw, dict):
        raise ConfigError("top level must be a YAML mapping", path=str(config_path))

    expanded = _expand_env(raw, path="")

    model = _load_model(_section(expanded, "model"))
    tools = _load_tools(_section(expanded, "tools"))

    chat_raw = _section(expanded, "chat")
    instruction = chat_raw.get("system_instruction")
    if instruction is not None and not isinstance(instruction, str):
        raise ConfigError("must be a string", path="chat.system_instruction")
    chat = ChatConfig(system_instruction=instruction or None)

    logging_raw = _section(expanded, "logging")
    log_cfg = LoggingConfig(level=str(logging_raw.get("level", LoggingConfig.level)).upper())

    return AppConfig(model=model, tools=tools, chat=chat, logging=log_cfg)
