"""Configuration loading utilities for the memory chat server.

This module handles layered configuration:
1. Explicit path argument (highest precedence)
2. Environment variable MEMORY_CHAT_CONFIG
3. Fallback to "config/default.yaml"

It also supports optional overrides from environment variables with prefix
``MEMORY_CHAT__`` (e.g., MEMORY_CHAT__BACKEND__TIMEOUT=10). The backend
credential is read from ``NEBIUS_API_KEY`` so it never has to live in YAML.
"""

from __future__ import annotations

import copy
import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

logger = logging.getLogger(__name__)

PLACEHOLDER_API_KEY = "your_api_key_here"

DEFAULTS: Dict[str, Any] = {
    "backend": {
        "api_url": "https://api.studio.nebius.com/v1",
        "api_key": "",
        "model": "qwq-32b-v0",
        "model_path": "qwq",
        "temperature": 0.7,
        "max_tokens": 2000,
        "timeout": 30.0,
    },
    "assistant": {
        "system_prompt": "You are a helpful, friendly and intelligent personal assistant.",
    },
    "memory": {
        "backend": "disk",
        "data_dir": "data",
        "recent_limit": 5,
        "extraction_prompt_path": None,
    },
    "server": {"cors_origins": ["*"]},
    "logging": {"level": "INFO"},
}


def _merge(base: Dict[str, Any], extra: Dict[str, Any]) -> Dict[str, Any]:
    """Recursively merge ``extra`` into a copy of ``base``."""
    out = copy.deepcopy(base)
    for key, value in extra.items():
        if isinstance(value, dict) and isinstance(out.get(key), dict):
            out[key] = _merge(out[key], value)
        else:
            out[key] = value
    return out


def _apply_env_overrides(cfg: Dict[str, Any]) -> Dict[str, Any]:
    """Apply environment variable overrides with prefix MEMORY_CHAT__."""
    prefix = "MEMORY_CHAT__"
    for key, value in os.environ.items():
        if not key.startswith(prefix):
            continue
        # e.g., MEMORY_CHAT__BACKEND__API_URL -> cfg["backend"]["api_url"]
        parts = key[len(prefix):].lower().split("__")
        sub = cfg
        for p in parts[:-1]:
            if p not in sub or not isinstance(sub[p], dict):
                sub[p] = {}
            sub = sub[p]
        leaf = parts[-1]
        if value.lower() in {"true", "false"}:
            sub[leaf] = value.lower() == "true"
        else:
            try:
                if "." in value:
                    sub[leaf] = float(value)
                else:
                    sub[leaf] = int(value)
            except ValueError:
                sub[leaf] = value
    return cfg


def _apply_backend_env(cfg: Dict[str, Any]) -> Dict[str, Any]:
    backend = cfg.setdefault("backend", {})
    api_key = os.environ.get("NEBIUS_API_KEY")
    if api_key is not None:
        backend["api_key"] = api_key
    api_url = os.environ.get("NEBIUS_API_URL")
    if api_url:
        backend["api_url"] = api_url
    return cfg


def load_config(path: str | None = None) -> Dict[str, Any]:
    """Load YAML configuration for the memory chat server.

    Parameters
    ----------
    path : str | None
        Optional path to a configuration file. If not provided, the
        environment variable ``MEMORY_CHAT_CONFIG`` is consulted. As a
        last resort ``config/default.yaml`` is used.

    Returns
    -------
    Dict[str, Any]
        Configuration dictionary layered over :data:`DEFAULTS`, with
        environment overrides applied.
    """
    if path is None:
        path = os.environ.get("MEMORY_CHAT_CONFIG", "config/default.yaml")

    path_obj = Path(path)
    if not path_obj.exists():
        logger.warning("config file not found at %s; using defaults", path_obj)
        cfg = copy.deepcopy(DEFAULTS)
        return _apply_env_overrides(_apply_backend_env(cfg))

    with path_obj.open("r", encoding="utf-8") as f:
        try:
            loaded = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise RuntimeError(f"Failed to parse config file {path_obj}: {e}")

    if not isinstance(loaded, dict):
        raise RuntimeError(f"Invalid config format in {path_obj}, expected dict.")

    cfg = _merge(DEFAULTS, loaded)
    return _apply_env_overrides(_apply_backend_env(cfg))


def api_key_configured(api_key: Optional[str]) -> bool:
    """True when a real credential is present (not empty, not the placeholder)."""
    return bool(api_key) and api_key != PLACEHOLDER_API_KEY


def describe_backend(cfg: Dict[str, Any]) -> None:
    """Log whether the completion backend will be used or canned replies served."""
    api_key = (cfg.get("backend") or {}).get("api_key") or ""
    if api_key == PLACEHOLDER_API_KEY:
        logger.warning(
            "NEBIUS_API_KEY is set to the placeholder value; running in test mode with simulated replies."
        )
    elif not api_key:
        logger.warning("NEBIUS_API_KEY is not set; running in test mode with simulated replies.")
    else:
        logger.info("Completion backend credential is configured.")


def configure_logging(cfg: Dict[str, Any]) -> None:
    level_name = str((cfg.get("logging") or {}).get("level", "INFO")).upper()
    logging.basicConfig(
        level=getattr(logging, level_name, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
