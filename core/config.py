# core/config.py
from __future__ import annotations

import logging
import os
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

log = logging.getLogger(__name__)


def _env_flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).lower() in {"1", "true", "yes"}


@dataclass(frozen=True)
class Settings:
    host: str = os.getenv("HOST", "0.0.0.0")
    port: int = int(os.getenv("PORT", "8000"))
    log_level: str = os.getenv("LOG_LEVEL", "INFO")

    # Primary provider (Gemini); the key is the shared server-side credential
    gemini_api_key: str | None = os.getenv("GEMINI_API_KEY") or None
    gemini_model: str = os.getenv("GEMINI_MODEL", "gemini-2.0-flash")
    gemini_base_url: str = os.getenv("GEMINI_BASE_URL", "https://generativelanguage.googleapis.com/v1beta")

    # Secondary provider (OpenRouter)
    openrouter_api_key: str | None = os.getenv("OPENROUTER_API_KEY") or None
    openrouter_model: str = os.getenv("OPENROUTER_MODEL", "google/gemini-2.0-flash-001")
    openrouter_base_url: str = os.getenv("OPENROUTER_BASE_URL", "https://openrouter.ai/api/v1")

    timeout_s: float = float(os.getenv("PROVIDER_TIMEOUT_S", "60"))

    # Anonymous quota
    rate_limit_max_requests: int = int(os.getenv("RATE_LIMIT_MAX_REQUESTS", "10"))
    rate_limit_window_s: float = float(os.getenv("RATE_LIMIT_WINDOW_S", "3600"))
    rate_limit_backend: str = os.getenv("RATE_LIMIT_BACKEND", "memory")

    redis_host: str = os.getenv("REDIS_HOST", "redis")
    redis_port: int = int(os.getenv("REDIS_PORT", "6379"))
    redis_db: int = int(os.getenv("REDIS_DB", "0"))

    # Comma separated proxy addresses whose X-Forwarded-For is trusted; unset trusts none
    forwarded_allow_ips: str | None = os.getenv("FORWARDED_ALLOW_IPS") or None

    test_mode: bool = _env_flag("IMAGE_PARSER_TEST_MODE")
    config_path: str | None = os.getenv("IMAGE_PARSER_CONFIG_PATH") or None


# YAML path -> (Settings field, env var that overrides it)
_YAML_KEYS: Dict[tuple[str, ...], tuple[str, str]] = {
    ("log_level",): ("log_level", "LOG_LEVEL"),
    ("timeout_s",): ("timeout_s", "PROVIDER_TIMEOUT_S"),
    ("providers", "gemini", "model"): ("gemini_model", "GEMINI_MODEL"),
    ("providers", "gemini", "base_url"): ("gemini_base_url", "GEMINI_BASE_URL"),
    ("providers", "openrouter", "model"): ("openrouter_model", "OPENROUTER_MODEL"),
    ("providers", "openrouter", "base_url"): ("openrouter_base_url", "OPENROUTER_BASE_URL"),
    ("rate_limit", "max_requests"): ("rate_limit_max_requests", "RATE_LIMIT_MAX_REQUESTS"),
    ("rate_limit", "window_s"): ("rate_limit_window_s", "RATE_LIMIT_WINDOW_S"),
    ("rate_limit", "backend"): ("rate_limit_backend", "RATE_LIMIT_BACKEND"),
    ("proxy", "forwarded_allow_ips"): ("forwarded_allow_ips", "FORWARDED_ALLOW_IPS"),
}


def _lookup(data: Dict[str, Any], path: tuple[str, ...]) -> Any:
    node: Any = data
    for part in path:
        if not isinstance(node, dict) or part not in node:
            return None
        node = node[part]
    return node


def load_settings(path: Optional[str] = None, base: Optional[Settings] = None) -> Settings:
    """Return settings with a YAML file layered under the environment.

    Credentials are never read from YAML.
    """
    settings = base or Settings()
    path = path or settings.config_path
    if not path:
        return settings

    config_file = Path(path)
    if not config_file.exists():
        log.warning("Config file %s not found, using environment settings", path)
        return settings

    with open(config_file, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"config file {path} must contain a mapping")

    types = {f.name: f.type for f in fields(Settings)}
    overrides: Dict[str, Any] = {}
    for yaml_path, (field_name, env_name) in _YAML_KEYS.items():
        value = _lookup(data, yaml_path)
        if value is None or os.getenv(env_name):
            continue
        overrides[field_name] = _coerce(types[field_name], value)

    return replace(settings, **overrides)


def _coerce(annotation: Any, value: Any) -> Any:
    # annotations are strings under `from __future__ import annotations`
    if annotation == "int":
        return int(value)
    if annotation == "float":
        return float(value)
    return str(value)
