"""
repochat configuration.

Values come from, in increasing priority: field defaults, `.env`,
`REPOCHAT_*` environment variables, and the grouped TOML file named by
`REPOCHAT_CONFIG_PATH` (or `repochat_settings.toml` in the working
directory). Provider keys such as `GROQ_API_KEY` fill in whatever is still
unset.
"""
from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

try:  # Python 3.11+
    import tomllib  # type: ignore[attr-defined]
except ModuleNotFoundError:  # pragma: no cover - fallback for older interpreters
    import tomli as tomllib  # type: ignore[no-redef]

from pydantic_settings import BaseSettings, SettingsConfigDict


class AppSettings(BaseSettings):
    """Settings shared by the CLI, the API server and the core services."""

    model_config = SettingsConfigDict(
        env_prefix="REPOCHAT_",
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
    )

    cache_dir: Path = Path("./cache")
    temp_dir: Path = Path("./temp")
    pack_command: str = "repomix {source} -o {output}"
    git_executable: str = "git"
    github_api_base: str = "https://api.github.com"
    github_token: Optional[str] = None
    github_branch_candidates: List[str] = ["main", "master"]
    github_request_timeout: float = 10.0
    llm_provider: str = "groq"
    llm_model: str = "llama-3.3-70b-versatile"
    llm_api_base: Optional[str] = "https://api.groq.com/openai/v1"
    llm_api_key: Optional[str] = None
    llm_temperature: float = 0.7
    llm_max_tokens: int = 8000
    api_host: str = "0.0.0.0"
    api_port: int = 3000
    telemetry_enabled: bool = True
    log_level: str = "INFO"
    log_json: bool = False


_CONFIG_ENV_VAR = "REPOCHAT_CONFIG_PATH"
_DEFAULT_CONFIG_FILE = Path("repochat_settings.toml")
_PROVIDER_ENV_MAPPING = {
    "groq_api_key": "GROQ_API_KEY",
    "openai_api_key": "OPENAI_API_KEY",
    "github_token": "GITHUB_TOKEN",
}
_LLM_KEY_ENV_BY_PROVIDER = {
    "groq": "GROQ_API_KEY",
    "openai": "OPENAI_API_KEY",
}


def _load_toml_config() -> Dict[str, Any]:
    """Read the first TOML file that exists, or nothing."""
    candidates: List[Path] = []
    config_override = os.getenv(_CONFIG_ENV_VAR)
    if config_override:
        candidates.append(Path(config_override))
    candidates.append(_DEFAULT_CONFIG_FILE)

    for candidate in candidates:
        if candidate.is_file():
            with candidate.open("rb") as handle:
                return tomllib.load(handle)
    return {}


def _blank_to_none(value: Any) -> Any:
    if isinstance(value, str) and value.strip() == "":
        return None
    return value


# Grouped TOML keys and the settings field each one feeds.
_TOML_FIELDS: Dict[Tuple[str, str], str] = {
    ("cache", "dir"): "cache_dir",
    ("ingestion", "temp_dir"): "temp_dir",
    ("ingestion", "pack_command"): "pack_command",
    ("ingestion", "git_executable"): "git_executable",
    ("github", "api_base"): "github_api_base",
    ("github", "token"): "github_token",
    ("github", "branch_candidates"): "github_branch_candidates",
    ("github", "request_timeout"): "github_request_timeout",
    ("llm", "provider"): "llm_provider",
    ("llm", "model"): "llm_model",
    ("llm", "api_base"): "llm_api_base",
    ("llm", "api_key"): "llm_api_key",
    ("llm", "temperature"): "llm_temperature",
    ("llm", "max_tokens"): "llm_max_tokens",
    ("api", "host"): "api_host",
    ("api", "port"): "api_port",
    ("general", "telemetry_enabled"): "telemetry_enabled",
    ("general", "log_level"): "log_level",
    ("general", "log_json"): "log_json",
}
_OPTIONAL_FIELDS = {"github_token", "llm_api_base", "llm_api_key"}


def _flatten_config(raw: Dict[str, Any]) -> Dict[str, Any]:
    """Map ``[section] key = value`` pairs onto AppSettings field names."""
    data: Dict[str, Any] = {}
    for (section, key), field_name in _TOML_FIELDS.items():
        group = raw.get(section) or {}
        if key not in group:
            continue
        value = group[key]
        if field_name in _OPTIONAL_FIELDS:
            value = _blank_to_none(value)
        data[field_name] = value
    if isinstance(data.get("log_level"), str):
        data["log_level"] = data["log_level"].upper()
    return data


def _apply_environment_overrides(raw: Dict[str, Any]) -> None:
    providers = raw.get("providers", {})
    for key, env_name in _PROVIDER_ENV_MAPPING.items():
        value = providers.get(key)
        if value:
            os.environ[env_name] = value


def _apply_provider_fallbacks(settings: AppSettings) -> AppSettings:
    """Fill API keys from the well-known provider variables when unset."""
    if not settings.llm_api_key:
        env_name = _LLM_KEY_ENV_BY_PROVIDER.get(settings.llm_provider.lower())
        if env_name and os.getenv(env_name):
            settings.llm_api_key = os.environ[env_name]
    if not settings.github_token and os.getenv("GITHUB_TOKEN"):
        settings.github_token = os.environ["GITHUB_TOKEN"]
    return settings


def load_settings() -> AppSettings:
    raw = _load_toml_config()
    _apply_environment_overrides(raw)
    flattened = _flatten_config(raw)
    return _apply_provider_fallbacks(AppSettings(**flattened))


settings = load_settings()
