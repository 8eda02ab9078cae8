"""Persisted configuration management."""

from __future__ import annotations

import json
import os
from dataclasses import asdict, fields
from pathlib import Path
from typing import Any

from .models import Config

CONFIG_PATH = (Path.home() / ".meetscribe" / "config.json").expanduser()

ENV_OVERRIDES = {
    "MEETSCRIBE_TRANSCRIPTION_URL": "transcription_url",
    "MEETSCRIBE_SUMMARY_URL": "summary_url",
    "MEETSCRIBE_API_TOKEN": "api_token",
    "OPENAI_API_KEY": "openai_api_key",
}

BACKENDS = {"auto", "http", "openai"}
RETRY_MODES = {"on_stop", "background"}


class ConfigError(RuntimeError):
    """Raised when configuration cannot be loaded or saved."""


def _read_file() -> Config:
    if not CONFIG_PATH.exists():
        return Config()
    try:
        payload = json.loads(CONFIG_PATH.read_text())
    except json.JSONDecodeError as exc:
        raise ConfigError(f"Failed to parse configuration file: {exc}") from exc
    known = {f.name for f in fields(Config)}
    unknown = sorted(set(payload) - known)
    if unknown:
        raise ConfigError(f"Unknown configuration keys in {CONFIG_PATH}: {', '.join(unknown)}")
    return Config(**payload)


def validate_config(config: Config) -> None:
    if config.backend not in BACKENDS:
        raise ConfigError(f"Unknown backend '{config.backend}' (expected one of {sorted(BACKENDS)})")
    if config.retry_mode not in RETRY_MODES:
        raise ConfigError(f"Unknown retry mode '{config.retry_mode}' (expected one of {sorted(RETRY_MODES)})")
    if config.max_concurrency < 1:
        raise ConfigError("max_concurrency must be at least 1")
    if config.max_retries < 0:
        raise ConfigError("max_retries cannot be negative")
    if config.chunk_seconds <= 0:
        raise ConfigError("chunk_seconds must be positive")


def load_config() -> Config:
    config = _read_file()
    for env_name, key in ENV_OVERRIDES.items():
        value = os.environ.get(env_name)
        if value:
            setattr(config, key, value)
    validate_config(config)
    return config


def save_config(config: Config) -> None:
    CONFIG_PATH.parent.mkdir(parents=True, exist_ok=True)
    data = {k: v for k, v in asdict(config).items() if v is not None}
    CONFIG_PATH.write_text(json.dumps(data, indent=2))


def update_config(**kwargs: Any) -> Config:
    config = _read_file()
    for key, value in kwargs.items():
        if hasattr(config, key):
            setattr(config, key, value)
        else:
            raise ConfigError(f"Unknown configuration key: {key}")
    validate_config(config)
    save_config(config)
    return config
