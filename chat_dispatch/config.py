"""Configuration loading, validation, and defaults."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import yaml

from .prompts import DEFAULT_QUOTE_PROMPT, DEFAULT_QUOTE_TEMPLATE
from .types import DispatchConfig, ModelCapabilities, UpstreamConfig

CONFIG_FILENAMES = [
    "chat-dispatch.yaml",
    "chat-dispatch.yml",
    "chat-dispatch.json",
]

SUPPORTED_API_FORMATS = ("openai", "anthropic")


def _discover_config() -> Path | None:
    """Search CWD then parent dirs up to home for a config file."""
    cwd = Path.cwd()
    home = Path.home()
    search = cwd
    while True:
        for name in CONFIG_FILENAMES:
            candidate = search / name
            if candidate.is_file():
                return candidate
        if search == home or search == search.parent:
            break
        search = search.parent
    return None


def _parse_model(model_id: str, raw: dict[str, Any], default_format: str) -> ModelCapabilities:
    return ModelCapabilities(
        model=model_id,
        name=raw.get("name", ""),
        context_max_token=raw.get("context_max_token", 4096),
        quote_max_token=raw.get("quote_max_token", 2000),
        max_temperature=float(raw.get("max_temperature", 1.0)),
        default_system=raw.get("default_system", "") or "",
        censor_required=bool(raw.get("censor", False)),
        price_per_1k=float(raw.get("price_per_1k", 0.0)),
        api_format=raw.get("api_format", default_format),
    )


def _build_config(raw: dict[str, Any]) -> DispatchConfig:
    """Build a DispatchConfig from a raw dict."""
    upstream_raw = raw.get("upstream", {})
    upstream = UpstreamConfig(
        base_url=upstream_raw.get("base_url", "https://api.openai.com/v1"),
        api_key_env=upstream_raw.get("api_key_env", "OPENAI_API_KEY"),
        api_format=upstream_raw.get("api_format", "openai"),
    )

    # Models keep their declared order; the first is the fallback default
    models: dict[str, ModelCapabilities] = {}
    for model_id, mconf in raw.get("models", {}).items():
        models[model_id] = _parse_model(
            model_id, mconf if isinstance(mconf, dict) else {}, upstream.api_format,
        )

    default_model = raw.get("default_model", "")
    if not default_model and models:
        default_model = next(iter(models))

    return DispatchConfig(
        default_model=default_model,
        models=models,
        token_counter=raw.get("token_counter", "estimate"),
        context_margin=raw.get("context_margin", 300),
        default_max_tokens=raw.get("default_max_tokens", 4000),
        request_timeout=float(raw.get("request_timeout", 480.0)),
        quote_template=raw.get("quote_template", DEFAULT_QUOTE_TEMPLATE),
        quote_prompt=raw.get("quote_prompt", DEFAULT_QUOTE_PROMPT),
        upstream=upstream,
    )


def validate_config(config: DispatchConfig) -> list[str]:
    """Validate a config. Returns list of error strings (empty = valid)."""
    errors: list[str] = []

    if not config.models:
        errors.append("At least one model must be defined")

    if config.default_model and config.default_model not in config.models:
        errors.append(f"Default model '{config.default_model}' not found in models section")

    if config.context_margin < 0:
        errors.append("context_margin must be >= 0")

    if config.upstream.api_format not in SUPPORTED_API_FORMATS:
        errors.append(f"Unknown upstream api_format '{config.upstream.api_format}'")

    for caps in config.models.values():
        if caps.context_max_token <= 0:
            errors.append(f"Model '{caps.model}': context_max_token must be > 0")
        if caps.quote_max_token > caps.context_max_token:
            errors.append(
                f"Model '{caps.model}': quote_max_token ({caps.quote_max_token}) "
                f"exceeds context_max_token ({caps.context_max_token})"
            )
        if caps.api_format not in SUPPORTED_API_FORMATS:
            errors.append(f"Model '{caps.model}': unknown api_format '{caps.api_format}'")

    return errors


def load_config(
    config_path: str | Path | None = None,
    config_dict: dict | None = None,
) -> DispatchConfig:
    """Load config from dict, explicit path, or auto-discover."""
    if config_dict is not None:
        return _build_config(config_dict)

    if config_path is not None:
        path = Path(config_path)
    else:
        path = _discover_config()

    if path is None:
        # Return defaults
        return _build_config({})

    if not path.is_file():
        raise FileNotFoundError(f"Config file not found: {path}")

    text = path.read_text()
    if path.suffix == ".json":
        raw = json.loads(text)
    else:
        raw = yaml.safe_load(text) or {}

    return _build_config(raw)
