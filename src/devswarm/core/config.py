"""3-layer configuration system for DevSwarm.

Loads and merges configuration from:
1. Default settings (built-in)
2. Config file (devswarm.yaml, or the path in DEVSWARM_CONFIG)
3. CLI parameters (override)
"""

from __future__ import annotations

import copy
import logging
import os
from pathlib import Path
from typing import Optional

import yaml

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "DEVSWARM_CONFIG"
DEFAULT_CONFIG_FILE = "devswarm.yaml"

DEFAULT_CONFIG: dict = {
    "database": {
        "path": "devswarm.db",
    },
    "analysis": {
        "rule_limit": 20,
        "snippet_context": 2,
        "max_code_bytes": 10 * 1024 * 1024,
        "join_policy": "all",
    },
    "agents": {
        "security": {
            "name": "Security Sentinel",
            "description": "Identifies security vulnerabilities, injection risks, and unsafe practices",
            "enabled": True,
            "ai_assisted": True,
        },
        "performance": {
            "name": "Performance Optimizer",
            "description": "Detects performance bottlenecks, inefficient algorithms, and resource leaks",
            "enabled": True,
            "ai_assisted": True,
        },
        "accessibility": {
            "name": "Accessibility Guardian",
            "description": "Ensures code follows accessibility best practices and WCAG guidelines",
            "enabled": True,
            "ai_assisted": False,
        },
        "best-practices": {
            "name": "Best Practices Enforcer",
            "description": "Validates code quality, maintainability, and adherence to standards",
            "enabled": True,
            "ai_assisted": False,
        },
    },
    "progress": {
        "queue_size": 256,
    },
    "forks": {
        "enabled": True,
        "ttl_hours": 24,
        "parent_service_id": "local",
    },
    "ai": {
        "provider": "auto",
        "temperature": 0.3,
        "timeout_seconds": 120,
        "retry_attempts": 3,
        "retry_delay_seconds": 5,
        "max_tokens": 2000,
        "openai": {
            "model": "gpt-4o-mini",
            "api_key_env": "OPENAI_API_KEY",
        },
        "anthropic": {
            "model": "claude-sonnet-4-5-20250929",
            "api_key_env": "ANTHROPIC_API_KEY",
        },
    },
}


def deep_merge(base: dict, override: dict) -> dict:
    """Deep merge two dicts. Arrays are replaced, not merged."""
    result = {}
    for key in base:
        result[key] = base[key]
    for key, value in override.items():
        base_value = result.get(key)
        if isinstance(base_value, dict) and isinstance(value, dict):
            result[key] = deep_merge(base_value, value)
        else:
            result[key] = value
    return result


def resolve_config_path(config_path: Optional[Path] = None) -> Optional[Path]:
    """Explicit path, then $DEVSWARM_CONFIG, then ./devswarm.yaml."""
    if config_path:
        return Path(config_path)
    env_path = os.environ.get(CONFIG_ENV_VAR)
    if env_path:
        return Path(env_path)
    local = Path.cwd() / DEFAULT_CONFIG_FILE
    return local if local.exists() else None


def load_config_file(config_path: Optional[Path]) -> dict:
    """Load a YAML config file. Missing or unreadable files yield {}."""
    if config_path is None or not config_path.exists():
        return {}
    try:
        content = config_path.read_text(encoding="utf-8-sig")  # utf-8-sig strips BOM
        return yaml.safe_load(content) or {}
    except (OSError, yaml.YAMLError) as e:
        logger.warning("Ignoring unreadable config file %s: %s", config_path, e)
        return {}


def get_effective_config(
    config_path: Optional[Path] = None,
    cli_overrides: Optional[dict] = None,
) -> dict:
    """Get the fully resolved configuration."""
    config = copy.deepcopy(DEFAULT_CONFIG)

    path = resolve_config_path(config_path)
    file_config = load_config_file(path)
    if file_config:
        config = deep_merge(config, file_config)

    if cli_overrides:
        config = deep_merge(config, cli_overrides)

    config["_config_path"] = str(path) if path else None
    return config


def resolve_ai_provider_name(config: dict) -> Optional[str]:
    """Pick the AI provider to use, or None when AI assistance is off.

    `auto` prefers OpenAI, then Anthropic, based on which API key is set.
    """
    ai_config = config.get("ai", {})
    name = ai_config.get("provider", "auto")
    if not name or name == "none":
        return None
    if name != "auto":
        return name

    for candidate in ("openai", "anthropic"):
        env_var = ai_config.get(candidate, {}).get("api_key_env", "")
        if env_var and os.environ.get(env_var):
            return candidate
    return None
