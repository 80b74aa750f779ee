#!/usr/bin/env python3
"""Configuration for the Document Extractor & Builder.

Reads args/app_config.yaml and expands ${VAR:-default} patterns in string
values, then applies DOCBUILDER_* environment overrides on top. A missing
or unreadable file is not fatal: defaults are used and a warning logged.

Usage:
    python -m docbuilder.config.settings --json
"""

import argparse
import json
import logging
import os
import re
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Optional

import yaml

logger = logging.getLogger("docbuilder.config")

BASE_DIR = Path(__file__).resolve().parent.parent.parent
DEFAULT_CONFIG_PATH = BASE_DIR / "args" / "app_config.yaml"

DEFAULT_MODEL = "google/gemini-2.0-flash-001"
DEFAULT_BASE_URL = "https://openrouter.ai/api/v1"


@dataclass
class Settings:
    """Resolved runtime settings."""
    llm_api_key: str = ""
    llm_base_url: str = DEFAULT_BASE_URL
    llm_model: str = DEFAULT_MODEL
    llm_max_tokens: int = 1024
    llm_timeout: float = 60.0
    app_url: str = "http://localhost:5001"
    app_title: str = "Document Information Extractor and Builder"
    blob_backend: str = "local"
    blob_root: str = str(BASE_DIR / "data" / "blobs")
    blob_bucket: str = ""
    blob_prefix: str = ""
    blob_region: str = "us-east-1"
    public_url: str = "http://localhost:5001/blobs"
    fetch_timeout: float = 30.0
    api_key: str = ""
    rate_limit_calls: int = 30
    rate_limit_window: int = 60

    def as_public_dict(self) -> dict:
        """Settings with secrets masked, for --json output and health checks."""
        data = asdict(self)
        for key in ("llm_api_key", "api_key"):
            if data.get(key):
                data[key] = "***"
        return data


def _expand_env(value):
    """Expand ${VAR:-default} patterns in string values."""
    if not isinstance(value, str):
        return value
    pattern = r'\$\{([^}]+)\}'
    def replacer(match):
        expr = match.group(1)
        if ":-" in expr:
            var, default = expr.split(":-", 1)
            return os.environ.get(var, default)
        return os.environ.get(expr, match.group(0))
    return re.sub(pattern, replacer, value)


def _read_yaml(path: Path) -> dict:
    if not path.exists():
        logger.warning("App config not found at %s - using defaults", path)
        return {}
    try:
        with open(path, "r", encoding="utf-8") as f:
            return yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as exc:
        logger.error("Failed to load app config %s: %s", path, exc)
        return {}


# yaml section.key -> Settings field
_YAML_FIELDS = {
    ("llm", "api_key"): "llm_api_key",
    ("llm", "base_url"): "llm_base_url",
    ("llm", "model"): "llm_model",
    ("llm", "max_tokens"): "llm_max_tokens",
    ("llm", "timeout_seconds"): "llm_timeout",
    ("llm", "app_url"): "app_url",
    ("llm", "app_title"): "app_title",
    ("storage", "backend"): "blob_backend",
    ("storage", "root"): "blob_root",
    ("storage", "bucket"): "blob_bucket",
    ("storage", "prefix"): "blob_prefix",
    ("storage", "region"): "blob_region",
    ("storage", "public_url"): "public_url",
    ("storage", "fetch_timeout_seconds"): "fetch_timeout",
    ("api", "api_key"): "api_key",
    ("api", "rate_limit_calls"): "rate_limit_calls",
    ("api", "rate_limit_window_seconds"): "rate_limit_window",
}

# env var -> Settings field
_ENV_FIELDS = {
    "OPENROUTER_API_KEY": "llm_api_key",
    "DOCBUILDER_LLM_BASE_URL": "llm_base_url",
    "DOCBUILDER_LLM_MODEL": "llm_model",
    "DOCBUILDER_LLM_MAX_TOKENS": "llm_max_tokens",
    "DOCBUILDER_LLM_TIMEOUT": "llm_timeout",
    "APP_URL": "app_url",
    "DOCBUILDER_BLOB_BACKEND": "blob_backend",
    "DOCBUILDER_BLOB_ROOT": "blob_root",
    "DOCBUILDER_BLOB_BUCKET": "blob_bucket",
    "DOCBUILDER_PUBLIC_URL": "public_url",
    "DOCBUILDER_API_KEY": "api_key",
}


def _coerce(field_name: str, value):
    default = getattr(Settings, field_name)
    if value is None or value == "":
        return default
    try:
        if isinstance(default, bool):
            return str(value).lower() in ("1", "true", "yes")
        if isinstance(default, int):
            return int(value)
        if isinstance(default, float):
            return float(value)
    except (TypeError, ValueError):
        logger.warning("Invalid value %r for %s - using default %r",
                       value, field_name, default)
        return default
    return str(value)


def load_settings(config_path: Optional[str] = None) -> Settings:
    """Build Settings from the YAML file and environment overrides."""
    path = Path(config_path or os.environ.get("DOCBUILDER_CONFIG_PATH", "")
                or DEFAULT_CONFIG_PATH)
    raw = _read_yaml(path)

    values = {}
    for (section, key), field_name in _YAML_FIELDS.items():
        section_cfg = raw.get(section) or {}
        if key in section_cfg:
            values[field_name] = _coerce(field_name, _expand_env(section_cfg[key]))

    for env_var, field_name in _ENV_FIELDS.items():
        env_value = os.environ.get(env_var, "").strip()
        if env_value:
            values[field_name] = _coerce(field_name, env_value)

    return Settings(**values)


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Process-wide settings, loaded on first use."""
    global _settings
    if _settings is None:
        _settings = load_settings()
    return _settings


def reset_settings() -> None:
    """Drop the cached settings (tests, config reload)."""
    global _settings
    _settings = None


def main():
    parser = argparse.ArgumentParser(description="Show resolved settings")
    parser.add_argument("--config", default=None)
    parser.add_argument("--json", action="store_true")
    args = parser.parse_args()

    settings = load_settings(args.config)
    data = settings.as_public_dict()
    if args.json:
        print(json.dumps(data, indent=2))
    else:
        for key, value in data.items():
            print(f"  {key}: {value}")


if __name__ == "__main__":
    main()
