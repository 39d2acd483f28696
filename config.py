from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml

from isa import MEM_SIZE, PROGRAM_BASE

"""Config loader and validator.

Provides `load_config` which accepts either a path to a YAML file,
a dictionary or None and returns a normalized configuration dict
using DEFAULTS for missing values.
"""


DEFAULTS: dict[str, Any] = {
    "load_address": PROGRAM_BASE,
    "cpu_hz": 2000,
    "timer_hz": 60,
    "tick_limit": 100000,
    "pause_tick": None,
    "seed": None,
    "lenient_log": False,
}


class ConfigError(ValueError):
    """Raised when configuration is invalid or cannot be loaded."""

    pass


def _convert_types(cfg: dict[str, Any]) -> None:
    """Normalize types for configuration values in-place.

    Raises ConfigError on conversion failure.
    """
    try:
        # load_address accepts "0x200" strings from YAML as well
        v = cfg.get("load_address", DEFAULTS["load_address"])
        cfg["load_address"] = int(v, 0) if isinstance(v, str) else int(v)

        cfg["cpu_hz"] = float(cfg.get("cpu_hz", DEFAULTS["cpu_hz"]))
        cfg["timer_hz"] = float(cfg.get("timer_hz", DEFAULTS["timer_hz"]))

        # tick_limit should not be None because DEFAULTS provides a value
        cfg["tick_limit"] = int(cfg.get("tick_limit", DEFAULTS["tick_limit"]))

        v = cfg.get("pause_tick")
        cfg["pause_tick"] = None if v is None else int(v)

        v = cfg.get("seed")
        cfg["seed"] = None if v is None else int(v)

        cfg["lenient_log"] = bool(cfg.get("lenient_log", DEFAULTS["lenient_log"]))
    except Exception as e:
        msg = f"Bad types in config: {e}"
        raise ConfigError(msg) from e


def _validate_cfg(cfg: dict[str, Any]) -> None:
    """Perform semantic validation on normalized config dict.

    Raises ConfigError on invalid values.
    """
    if not (0 <= cfg["load_address"] < MEM_SIZE):
        msg = f"load_address ({cfg['load_address']:#x}) out of memory range (0..{MEM_SIZE - 1:#x})"
        raise ConfigError(msg)

    if cfg["load_address"] % 2 != 0:
        msg = "load_address must be even"
        raise ConfigError(msg)

    if cfg["cpu_hz"] <= 0:
        msg = "cpu_hz must be positive"
        raise ConfigError(msg)

    if cfg["timer_hz"] <= 0:
        msg = "timer_hz must be positive"
        raise ConfigError(msg)

    if cfg["tick_limit"] < 0:
        msg = "tick_limit must be non-negative"
        raise ConfigError(msg)

    if cfg["pause_tick"] is not None and cfg["pause_tick"] < 0:
        msg = "pause_tick must be non-negative or null"
        raise ConfigError(msg)


def load_config(path_or_dict: str | dict[str, Any] | None = None) -> dict[str, Any]:
    """Load and normalize configuration.

    Accepts:
      - None -> returns DEFAULTS copy
      - dict -> overlay DEFAULTS with provided dict
      - str (path) -> load YAML and overlay DEFAULTS

    Returns a normalized dict or raises ConfigError.
    """
    if path_or_dict is None:
        cfg: dict[str, Any] = dict(DEFAULTS)
    elif isinstance(path_or_dict, dict):
        unknown = sorted(set(path_or_dict) - set(DEFAULTS))
        if unknown:
            msg = f"Unknown config keys: {', '.join(unknown)}"
            raise ConfigError(msg)
        cfg = dict(DEFAULTS)
        cfg.update(path_or_dict)
    elif isinstance(path_or_dict, str):
        p = Path(path_or_dict)
        if not p.exists():
            msg = f"Config file not found: {path_or_dict}"
            raise ConfigError(msg)
        try:
            with p.open("r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except Exception as e:
            msg = f"Failed to load config file {path_or_dict}: {e}"
            raise ConfigError(msg) from e
        if not isinstance(data, dict):
            msg = f"Config file {path_or_dict} does not contain a mapping"
            raise ConfigError(msg)
        return load_config(data)
    else:
        msg = "Unsupported config input"
        raise ConfigError(msg)

    # convert types and validate semantics
    _convert_types(cfg)
    _validate_cfg(cfg)

    return cfg
