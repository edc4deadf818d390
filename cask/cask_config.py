"""
Session configuration, read from an optional YAML file and the environment.

Lookup order (later wins): defaults, the YAML file named by the `path`
argument or `CASK_CONFIG`, then `CASK_DEBUG`, `CASK_STOP_ON_ERROR` and
`CASK_INITIAL_MODE`.
"""

import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Mapping, Optional

import yaml

from cask.cask_datatypes import Mode

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off", ""}


class ConfigError(ValueError):
    pass


@dataclass
class KernelConfig:
    debug: bool = False
    # Stop a block at the first error, not only at quit requests.
    stop_on_error: bool = True
    initial_mode: Mode = Mode.EMBEDDED
    unicode: bool = True
    latex: bool = True
    prompt: str = "(%i{{count}}) "
    continuation_prompt: str = "  "


def _to_bool(key: str, value: Any) -> bool:
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in _TRUE:
        return True
    if text in _FALSE:
        return False
    raise ConfigError(f"{key}: expected a boolean, got {value!r}")


def _to_mode(value: Any) -> Mode:
    if isinstance(value, Mode):
        return value
    try:
        return Mode(str(value).strip().lower())
    except ValueError:
        raise ConfigError(f"initial_mode: expected 'host' or 'embedded', got {value!r}") from None


def _coerce(key: str, value: Any) -> Any:
    match key:
        case "debug" | "stop_on_error" | "unicode" | "latex":
            return _to_bool(key, value)
        case "initial_mode":
            return _to_mode(value)
        case _:
            if not isinstance(value, str):
                raise ConfigError(f"{key}: expected a string, got {value!r}")
            return value


def config_from_mapping(data: Optional[Mapping[str, Any]]) -> KernelConfig:
    config = KernelConfig()
    known = {f.name for f in fields(KernelConfig)}
    for key, value in (data or {}).items():
        if key not in known:
            raise ConfigError(f"unknown configuration key: {key}")
        setattr(config, key, _coerce(key, value))
    return config


def load_config(path: Optional[str] = None, environ: Optional[Mapping[str, str]] = None) -> KernelConfig:
    environ = os.environ if environ is None else environ
    data = {}
    path = path or environ.get("CASK_CONFIG")
    if path:
        p = Path(path)
        try:
            loaded = yaml.safe_load(p.read_text(encoding="utf-8"))
        except FileNotFoundError:
            raise ConfigError(f"configuration file not found: {path}") from None
        except yaml.YAMLError as e:
            raise ConfigError(f"invalid YAML in {path}: {e}") from None
        if loaded is not None and not isinstance(loaded, dict):
            raise ConfigError(f"{path}: top level must be a mapping")
        data.update(loaded or {})
    for env_key, key in (("CASK_DEBUG", "debug"), ("CASK_STOP_ON_ERROR", "stop_on_error"),
                         ("CASK_INITIAL_MODE", "initial_mode")):
        if env_key in environ:
            data[key] = environ[env_key]
    return config_from_mapping(data)
