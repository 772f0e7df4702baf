"""Configuration file loading, merging and per-provider settings for ferry.

Reads TOML config from ~/.config/ferry/config.toml (global) and
<base_dir>/ferry.toml (project). Precedence: CLI > environment > project >
global > defaults. API keys come from the environment only.
"""

import argparse
import os
import sys
import tomllib
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from .errors import ConfigError

_UNSET = object()  # Sentinel for "not set by CLI"


# --- Schema ---

CONFIG_KEYS: dict[str, type | tuple[type, ...]] = {
    "provider": str,
    "model": str,
    "max_tokens": int,
    "temperature": (int, float),
    "timeout": (int, float),
    "enable_tools": bool,
    "system_prompt": str,
    "no_system_prompt": bool,
    "quiet": bool,
    "color": bool,
}

PROVIDER_ALIASES = {"claude": "anthropic"}

API_KEY_ENV = {
    "anthropic": "ANTHROPIC_API_KEY",
    "openai": "OPENAI_API_KEY",
    "google": "GOOGLE_API_KEY",
    "deepseek": "DEEPSEEK_API_KEY",
}

MODEL_ENV = {
    "anthropic": "ANTHROPIC_MODEL_NAME",
    "openai": "OPENAI_MODEL_NAME",
    "google": "GOOGLE_MODEL_NAME",
    "deepseek": "DEEPSEEK_MODEL_NAME",
}

ENABLE_TOOLS_ENV = {
    "google": "GOOGLE_ENABLE_TOOLS",
    "deepseek": "DEEPSEEK_ENABLE_TOOLS",
}

DEFAULT_MODELS = {
    "anthropic": "claude-3-7-sonnet-20250219",
    "openai": "gpt-4.1",
    "google": "gemini-2.5-pro",
    "deepseek": "deepseek-chat",
}

DEFAULT_MAX_TOKENS = {
    "anthropic": 4096,
    "openai": 1000,
    "google": 1000,
    "deepseek": 1000,
}

DEFAULT_TEMPERATURE = {
    "openai": 0.7,
    "deepseek": 0.7,
}

DEFAULT_TIMEOUT = 300

# Argparse dest -> hardcoded default
_ARGPARSE_DEFAULTS: dict[str, Any] = {
    "provider": "anthropic",
    "model": None,
    "max_tokens": None,
    "temperature": None,
    "timeout": None,
    "enable_tools": None,
    "system_prompt": None,
    "no_system_prompt": False,
    "quiet": False,
    "color": False,
    "no_color": False,
}


@dataclass
class ProviderSettings:
    """Everything an adapter needs, resolved once at startup."""

    provider: str
    api_key: str
    model: str
    max_tokens: int
    temperature: float | None = None
    timeout: float = DEFAULT_TIMEOUT
    enable_tools: bool = True


# --- Internal helpers ---


def global_config_dir() -> Path:
    """Return the global config directory, respecting XDG_CONFIG_HOME."""
    xdg = os.environ.get("XDG_CONFIG_HOME")
    if xdg:
        return Path(xdg) / "ferry"
    return Path.home() / ".config" / "ferry"


def _type_name(expected: type | tuple[type, ...]) -> str:
    if isinstance(expected, tuple):
        return " or ".join(t.__name__ for t in expected)
    return expected.__name__


def _validate_config(config: dict, source: str) -> None:
    """Validate types and mutual exclusions in a parsed config dict.

    Raises ConfigError for type mismatches or invalid combinations.
    Prints warnings for unknown keys.
    """
    for key, value in config.items():
        if key not in CONFIG_KEYS:
            print(f"warning: {source}: unknown config key {key!r}", file=sys.stderr)
            continue

        expected = CONFIG_KEYS[key]
        # bool is a subclass of int; reject it for numeric fields.
        if isinstance(value, bool) and expected is not bool:
            raise ConfigError(
                f"{source}: {key!r} expected {_type_name(expected)}, got bool"
            )
        if not isinstance(value, expected):
            raise ConfigError(
                f"{source}: {key!r} expected {_type_name(expected)}, got {type(value).__name__}"
            )

    if "provider" in config:
        name = normalize_provider(config["provider"], source)
        config["provider"] = name

    for key in ("max_tokens", "timeout"):
        if key in config and config[key] <= 0:
            raise ConfigError(f"{source}: {key!r} must be positive")

    if config.get("system_prompt") and config.get("no_system_prompt"):
        raise ConfigError(
            f"{source}: 'system_prompt' and 'no_system_prompt' are mutually exclusive"
        )


def _load_single(path: Path, label: str) -> dict:
    """Load and validate a single TOML config file. Returns empty dict if missing."""
    if not path.is_file():
        return {}
    try:
        with open(path, "rb") as f:
            config = tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"{label}: invalid TOML: {e}") from e
    except OSError as e:
        raise ConfigError(f"{label}: cannot read file: {e}") from e

    _validate_config(config, label)
    return {k: v for k, v in config.items() if k in CONFIG_KEYS}


def _env_flag(value: str) -> bool:
    return value.strip().lower() in ("true", "1")


# --- Public API ---


def normalize_provider(name: str, source: str = "provider") -> str:
    """Map aliases to canonical provider names, rejecting unknown ones."""
    key = name.strip().lower()
    key = PROVIDER_ALIASES.get(key, key)
    if key not in API_KEY_ENV:
        raise ConfigError(
            f"{source}: unknown provider {name!r} "
            f"(choose from {', '.join(sorted(API_KEY_ENV))})"
        )
    return key


def load_config(base_dir: Path) -> dict:
    """Load and merge global + project config.

    Returns a flat dict with config-canonical keys. Only keys that were
    actually set in config files are included (no defaults injected).
    """
    global_path = global_config_dir() / "config.toml"
    global_config = _load_single(global_path, str(global_path))

    project_path = Path(base_dir).resolve() / "ferry.toml"
    project_config = _load_single(project_path, str(project_path))

    merged = {**global_config, **project_config}

    # Files can be individually valid but conflict once merged.
    if merged.get("system_prompt") and merged.get("no_system_prompt"):
        raise ConfigError(
            "'system_prompt' and 'no_system_prompt' are mutually exclusive "
            "(set across global and project config)"
        )
    return merged


def apply_config_to_args(args: argparse.Namespace, config: dict) -> None:
    """Apply config values to argparse namespace where CLI didn't set a value.

    After processing all config keys, sweeps remaining _UNSET sentinels and
    replaces them with hardcoded defaults from _ARGPARSE_DEFAULTS.
    """

    def _is_unset(dest: str) -> bool:
        return getattr(args, dest, _UNSET) is _UNSET

    # A single config key drives the --color/--no-color pair.
    if "color" in config:
        color_val = config["color"]
        if _is_unset("color") and _is_unset("no_color"):
            args.color = color_val
            args.no_color = not color_val

    # --system-prompt and --no-system-prompt are exclusive on the CLI; a CLI
    # choice of either one shadows both config keys.
    cli_prompt_set = not (_is_unset("system_prompt") and _is_unset("no_system_prompt"))

    for key, value in config.items():
        if key == "color":
            continue
        if key in ("system_prompt", "no_system_prompt") and cli_prompt_set:
            continue
        if _is_unset(key):
            setattr(args, key, value)

    for dest, default in _ARGPARSE_DEFAULTS.items():
        if _is_unset(dest):
            setattr(args, dest, default)


SETTINGS_KEYS = ("model", "max_tokens", "temperature", "timeout", "enable_tools")


def resolve_provider_settings(
    provider: str, config: dict | None = None, environ=None, cli: dict | None = None
) -> ProviderSettings:
    """Build the settings for one provider from config, environment and CLI.

    config holds values from the config files and cli the values given on the
    command line; a None value in either means "not set". The *_MODEL_NAME and
    *_ENABLE_TOOLS environment variables override config files but not the CLI.

    Raises ConfigError when the provider's API key variable is missing.
    """
    if environ is None:
        environ = os.environ
    provider = normalize_provider(provider)

    key_var = API_KEY_ENV[provider]
    api_key = environ.get(key_var, "").strip()
    if not api_key:
        raise ConfigError(f"Please set {key_var} environment variable")

    values = {k: v for k, v in (config or {}).items() if k in SETTINGS_KEYS}

    model_env = environ.get(MODEL_ENV[provider])
    if model_env:
        values["model"] = model_env
    tools_var = ENABLE_TOOLS_ENV.get(provider)
    if tools_var and tools_var in environ:
        values["enable_tools"] = _env_flag(environ[tools_var])

    for key, value in (cli or {}).items():
        if key in SETTINGS_KEYS and value is not None:
            values[key] = value

    def _pick(key, default):
        value = values.get(key)
        return default if value is None else value

    return ProviderSettings(
        provider=provider,
        api_key=api_key,
        model=_pick("model", DEFAULT_MODELS[provider]),
        max_tokens=_pick("max_tokens", DEFAULT_MAX_TOKENS[provider]),
        temperature=_pick("temperature", DEFAULT_TEMPERATURE.get(provider)),
        timeout=_pick("timeout", DEFAULT_TIMEOUT),
        enable_tools=_pick("enable_tools", True),
    )
