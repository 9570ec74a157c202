"""Configuration file loading and merging for mentat.

Reads TOML config from ~/.config/mentat/config.toml (global) and
<base_dir>/mentat.toml (project), or from an explicit --config file in
place of the project one. Precedence: CLI > environment > project >
global > defaults.
"""

import argparse
import os
import sys
import tomllib
from pathlib import Path
from typing import Any

from .errors import ConfigError

_UNSET = object()  # Sentinel for "not set by CLI"

DEFAULT_BASE_URL = "https://api.anthropic.com"
DEFAULT_MODEL = "claude-opus-4-5-20251101"
MIN_API_KEY_LENGTH = 10
LOG_LEVELS = ("debug", "info", "warning", "error", "critical")
PROXY_SCHEMES = ("http://", "https://", "socks5://")


# --- Schema ---

CONFIG_KEYS: dict[str, type | tuple[type, ...]] = {
    "api_key": str,
    "base_url": str,
    "proxy": str,
    "model": str,
    "max_tokens": int,
    "max_rounds": int,
    "timeout": (int, float),
    "color": bool,
    "quiet": bool,
    "log_level": str,
}

# Environment variable -> config key. The first variable set wins.
ENV_KEYS: list[tuple[str, str]] = [
    ("ANTHROPIC_AUTH_TOKEN", "api_key"),
    ("ANTHROPIC_API_KEY", "api_key"),
    ("ANTHROPIC_BASE_URL", "base_url"),
    ("HTTPS_PROXY", "proxy"),
    ("https_proxy", "proxy"),
    ("MENTAT_MODEL", "model"),
]

# Argparse dest -> hardcoded default
_ARGPARSE_DEFAULTS: dict[str, Any] = {
    "api_key": None,
    "base_url": DEFAULT_BASE_URL,
    "proxy": None,
    "model": DEFAULT_MODEL,
    "max_tokens": 4096,
    "max_rounds": 50,
    "timeout": 600,
    "color": False,
    "no_color": False,
    "quiet": False,
    "log_level": "warning",
}


# --- Internal helpers ---


def global_config_dir() -> Path:
    """Return the global config directory, respecting XDG_CONFIG_HOME."""
    xdg = os.environ.get("XDG_CONFIG_HOME")
    if xdg:
        return Path(xdg) / "mentat"
    return Path.home() / ".config" / "mentat"


def _type_name(expected: type | tuple[type, ...]) -> str:
    """Format an expected type spec as a human-readable string."""
    if isinstance(expected, tuple):
        return " or ".join(t.__name__ for t in expected)
    return expected.__name__


def _validate_config(config: dict, source: str) -> None:
    """Check value types in a parsed config dict.

    Raises ConfigError for type mismatches. Prints warnings for unknown keys.
    """
    for key, value in config.items():
        if key not in CONFIG_KEYS:
            print(f"warning: {source}: unknown config key {key!r}", file=sys.stderr)
            continue

        expected = CONFIG_KEYS[key]
        # bool is a subclass of int in Python, so isinstance(True, int) is True.
        # Reject bools for non-bool fields explicitly.
        if isinstance(value, bool) and expected is not bool:
            raise ConfigError(
                f"{source}: {key!r} expected {_type_name(expected)}, got bool"
            )
        if not isinstance(value, expected):
            raise ConfigError(
                f"{source}: {key!r} expected {_type_name(expected)}, got {type(value).__name__}"
            )


def _check_api_key_in_git(config: dict, config_path: Path) -> None:
    """Warn if api_key is set in a project config inside a git repo."""
    if "api_key" not in config:
        return
    parent = config_path.parent
    while parent != parent.parent:
        if (parent / ".git").exists():
            print(
                f"warning: {config_path}: 'api_key' in a git-tracked project config "
                f"may be committed accidentally. Consider using ANTHROPIC_AUTH_TOKEN.",
                file=sys.stderr,
            )
            return
        parent = parent.parent


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
        raise ConfigError(f"{label}: cannot read file: {e.strerror or e}") from e

    _validate_config(config, label)
    return {k: v for k, v in config.items() if k in CONFIG_KEYS}


# --- Public API ---


def load_config(base_dir: Path, config_path: str | None = None) -> dict:
    """Load and merge global + project (or explicit) config files.

    Returns a flat dict holding only keys actually set in a file; no
    defaults are injected.
    """
    global_path = global_config_dir() / "config.toml"
    global_config = _load_single(global_path, str(global_path))

    if config_path is not None:
        explicit = Path(config_path).expanduser()
        if not explicit.is_file():
            raise ConfigError(
                f"config file not found: {explicit}\n"
                "Run 'mentat --init-config' for a template."
            )
        project_config = _load_single(explicit, str(explicit))
    else:
        project_path = Path(base_dir).resolve() / "mentat.toml"
        project_config = _load_single(project_path, str(project_path))
        if project_config:
            _check_api_key_in_git(project_config, project_path)

    return {**global_config, **project_config}


def env_config(environ=None) -> dict:
    """Config values taken from environment variables (empty values ignored)."""
    environ = os.environ if environ is None else environ
    config: dict = {}
    for var, key in ENV_KEYS:
        value = environ.get(var)
        if value and key not in config:
            config[key] = value
    return config


def apply_config_to_args(args: argparse.Namespace, config: dict) -> None:
    """Apply config values to argparse namespace where CLI didn't set a value.

    For each config key still holding the _UNSET sentinel, apply the
    config value. Remaining sentinels are then replaced with hardcoded
    defaults from _ARGPARSE_DEFAULTS.
    """

    def _is_unset(dest: str) -> bool:
        return getattr(args, dest, _UNSET) is _UNSET

    # A single config key controls the mutually exclusive --color/--no-color pair
    if "color" in config:
        if _is_unset("color") and _is_unset("no_color"):
            args.color = config["color"]
            args.no_color = not config["color"]

    for key, value in config.items():
        if key == "color":
            continue
        if _is_unset(key):
            setattr(args, key, value)

    for dest, default in _ARGPARSE_DEFAULTS.items():
        if _is_unset(dest):
            setattr(args, dest, default)


def validate_settings(args: argparse.Namespace) -> None:
    """Check the merged settings. Messages never echo the API key itself."""
    if not args.api_key:
        raise ConfigError(
            "API key is not set. Set ANTHROPIC_AUTH_TOKEN, pass --api-key, "
            "or add api_key to mentat.toml."
        )
    if len(args.api_key) < MIN_API_KEY_LENGTH:
        raise ConfigError("API key format is invalid")

    if not args.base_url:
        raise ConfigError("base URL must not be empty")
    if not args.base_url.startswith(("http://", "https://")):
        raise ConfigError("base URL must start with http:// or https://")

    if args.proxy and not args.proxy.startswith(PROXY_SCHEMES):
        raise ConfigError("proxy URL must start with http://, https:// or socks5://")

    if not args.model:
        raise ConfigError("model must not be empty")

    for key in ("max_tokens", "max_rounds", "timeout"):
        value = getattr(args, key)
        if value <= 0:
            raise ConfigError(f"{key} must be positive, got {value}")

    if args.log_level.lower() not in LOG_LEVELS:
        raise ConfigError(
            f"log_level must be one of {', '.join(LOG_LEVELS)}, got {args.log_level!r}"
        )


def generate_config(project: bool = False) -> str:
    """Return a commented-out template config string."""
    lines = [
        "# Mentat configuration file",
        f"# {'Project' if project else 'Global'} config: "
        f"{'<project>/mentat.toml' if project else '~/.config/mentat/config.toml'}",
        "#",
        "# CLI flags and environment variables override these values.",
        "",
        "# --- Model service ---",
        '# api_key = "sk-ant-..."          # prefer ANTHROPIC_AUTH_TOKEN; this is a fallback',
        f'# base_url = "{DEFAULT_BASE_URL}"',
        '# proxy = "http://proxy.example.com:8080"  # or socks5://host:1080',
        f'# model = "{DEFAULT_MODEL}"',
        "# timeout = 600                  # seconds per request",
        "",
        "# --- Agent behaviour ---",
        "# max_tokens = 4096",
        "# max_rounds = 50                # model calls per question",
        "",
        "# --- UI ---",
        "# color = true       # true = force color, false = force no-color, absent = auto",
        "# quiet = false",
        '# log_level = "warning"',
        "",
    ]
    return "\n".join(lines)
