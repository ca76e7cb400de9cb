"""
Configuration loader.

Layers, lowest to highest precedence:
1. Defaults declared on the pydantic schemas
2. YAML file
3. TOOLBRIDGE_* environment variables
4. CLI flags

Layers are combined with a recursive merge, so a layer only replaces the
leaves it sets.
"""

import os
from pathlib import Path
from typing import Any, Callable

import yaml

from .schema import AppConfig

# env var -> (section, key, converter)
_ENV_KEYS: dict[str, tuple[str, str, Callable[[str], Any]]] = {
    "TOOLBRIDGE_MODEL": ("llm", "model", str),
    "TOOLBRIDGE_API_BASE": ("llm", "api_base", str),
    "TOOLBRIDGE_LOG_LEVEL": ("logging", "level", str.lower),
    "TOOLBRIDGE_MAX_ITERATIONS": ("orchestration", "max_iterations", int),
}

# CLI argument -> (section, key)
_CLI_KEYS: dict[str, tuple[str, str]] = {
    "model": ("llm", "model"),
    "api_base": ("llm", "api_base"),
    "max_iterations": ("orchestration", "max_iterations"),
    "host": ("server", "host"),
    "port": ("server", "port"),
    "log_level": ("logging", "level"),
    "log_file": ("logging", "file"),
}


def deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Merge `override` into a copy of `base`, recursing into nested dicts.

    Example:
        >>> deep_merge({"a": {"b": 1, "c": 2}}, {"a": {"b": 99}})
        {'a': {'b': 99, 'c': 2}}
    """
    merged = dict(base)
    for key, value in override.items():
        current = merged.get(key)
        if isinstance(current, dict) and isinstance(value, dict):
            merged[key] = deep_merge(current, value)
        else:
            merged[key] = value
    return merged


def load_yaml_config(config_path: Path | None) -> dict[str, Any]:
    """Read the YAML file, or return {} when no path is given.

    Raises:
        FileNotFoundError: If config_path is set but does not exist
    """
    if config_path is None:
        return {}

    path = Path(config_path)
    if not path.is_file():
        raise FileNotFoundError(f"Configuration file not found: {path}")

    data = yaml.safe_load(path.read_text(encoding="utf-8"))
    return data or {}


def load_env_overrides() -> dict[str, Any]:
    """Overrides from TOOLBRIDGE_* variables.

    TOOLBRIDGE_MCP_URL declares a single server named "default" and
    replaces the configured server list.
    """
    overrides: dict[str, Any] = {}

    for var, (section, key, convert) in _ENV_KEYS.items():
        value = os.environ.get(var)
        if value:
            overrides.setdefault(section, {})[key] = convert(value)

    mcp_url = os.environ.get("TOOLBRIDGE_MCP_URL")
    if mcp_url:
        overrides.setdefault("mcp", {})["servers"] = [{"name": "default", "url": mcp_url}]

    return overrides


def apply_cli_overrides(config_dict: dict[str, Any], cli_args: dict[str, Any]) -> dict[str, Any]:
    """Layer the CLI flags that were actually given on top of config_dict."""
    overrides: dict[str, Any] = {}

    for arg, (section, key) in _CLI_KEYS.items():
        if cli_args.get(arg):
            overrides.setdefault(section, {})[key] = cli_args[arg]

    if cli_args.get("sse"):
        overrides.setdefault("server", {})["response_format"] = "sse"

    # -v is a count: 0 is a real value, None means "not a flag of this command"
    if cli_args.get("verbose") is not None:
        overrides.setdefault("logging", {})["verbose"] = cli_args["verbose"]

    return deep_merge(config_dict, overrides)


def load_config(
    config_path: Path | None = None,
    cli_args: dict[str, Any] | None = None,
) -> AppConfig:
    """Build the validated AppConfig from every layer.

    Raises:
        FileNotFoundError: If config_path does not exist
        pydantic.ValidationError: If the merged result is invalid
    """
    layered = deep_merge(load_yaml_config(config_path), load_env_overrides())
    layered = apply_cli_overrides(layered, cli_args or {})
    return AppConfig.model_validate(layered)
