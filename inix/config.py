"""
config.py

Responsibility: Load the optional user configuration into a typed model.

The file is YAML, looked up at `$INIX_CONFIG`, else
`$XDG_CONFIG_HOME/inix/config.yaml` (`~/.config/inix/config.yaml`).
A missing file means defaults. CLI flags override anything set here.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping

import yaml

from inix.conflicts import Policy

CONFIG_ENV_VAR = "INIX_CONFIG"
CONFIG_FILE_NAME = "config.yaml"


class ConfigError(ValueError):
    pass


def config_dir(env: Mapping[str, str] | None = None) -> Path:
    """The per-user inix directory (templates, skeleton and config live here)."""
    env = os.environ if env is None else env
    xdg_config = env.get("XDG_CONFIG_HOME") or str(Path.home() / ".config")
    return Path(xdg_config) / "inix"


def default_config_path(env: Mapping[str, str] | None = None) -> Path:
    env = os.environ if env is None else env
    override = env.get(CONFIG_ENV_VAR)
    if override:
        return Path(override).expanduser()
    return config_dir(env) / CONFIG_FILE_NAME


@dataclass(frozen=True)
class Config:
    """User defaults for an inix run."""

    templates_dir: Path | None = None
    skeleton_dir: Path | None = None
    on_conflict: Policy | None = None
    packages: tuple[str, ...] = ()
    inputs: tuple[str, ...] = ()
    auto_allow: bool = False
    source: Path | None = field(default=None, compare=False)


def _optional_path(data: Mapping[str, Any], key: str, base: Path) -> Path | None:
    raw = data.get(key)
    if raw is None:
        return None
    if not isinstance(raw, str) or not raw.strip():
        raise ConfigError(f"`{key}` must be a non-empty path string when provided.")
    path = Path(raw.strip()).expanduser()
    return path if path.is_absolute() else base / path


def _string_list(data: Mapping[str, Any], key: str) -> tuple[str, ...]:
    raw = data.get(key) or []
    if isinstance(raw, str):
        raw = [raw]
    if not isinstance(raw, list) or any(isinstance(x, (dict, list)) or x is None for x in raw):
        raise ConfigError(f"`{key}` must be a list of strings when provided.")
    return tuple(str(x) for x in raw)


def parse_config(data: Mapping[str, Any], *, base_dir: Path) -> Config:
    """
    Validate a raw mapping. Relative paths are resolved against base_dir.
    """
    policy_raw = data.get("on_conflict")
    on_conflict: Policy | None = None
    if policy_raw is not None:
        try:
            on_conflict = Policy(str(policy_raw).strip())
        except ValueError:
            valid = ", ".join(p.value for p in Policy)
            raise ConfigError(f"`on_conflict` must be one of {valid}, got {policy_raw!r}.") from None

    auto_allow = data.get("auto_allow", False)
    if not isinstance(auto_allow, bool):
        raise ConfigError("`auto_allow` must be true or false.")

    return Config(
        templates_dir=_optional_path(data, "templates_dir", base_dir),
        skeleton_dir=_optional_path(data, "skeleton_dir", base_dir),
        on_conflict=on_conflict,
        packages=_string_list(data, "packages"),
        inputs=_string_list(data, "inputs"),
        auto_allow=auto_allow,
    )


def load_config(path: str | Path | None = None, *, env: Mapping[str, str] | None = None) -> Config:
    """
    Load the config file, falling back to defaults when it does not exist.

    Without an explicit file, the user template and skeleton directories default
    to `templates/` and `skeleton/` next to the config file.
    """
    explicit = path is not None
    cfg_path = Path(path) if explicit else default_config_path(env)
    base_dir = cfg_path.parent

    if not cfg_path.exists():
        if explicit:
            raise ConfigError(f"Config file does not exist: {cfg_path}")
        data: dict[str, Any] = {}
        source = None
    else:
        try:
            data = yaml.safe_load(cfg_path.read_text(encoding="utf-8")) or {}
        except yaml.YAMLError as e:
            raise ConfigError(f"{cfg_path}: invalid YAML: {e}") from e
        if not isinstance(data, dict):
            raise ConfigError(f"{cfg_path}: config must be a mapping at the top level.")
        source = cfg_path

    config = parse_config(data, base_dir=base_dir)
    return Config(
        templates_dir=config.templates_dir or base_dir / "templates",
        skeleton_dir=config.skeleton_dir or base_dir / "skeleton",
        on_conflict=config.on_conflict,
        packages=config.packages,
        inputs=config.inputs,
        auto_allow=config.auto_allow,
        source=source,
    )
