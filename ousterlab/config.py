# ousterlab/config.py
from __future__ import annotations

import dataclasses
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml

_REQUIRED = ("port", "meta", "input", "output")


class ConfigError(ValueError):
    """Run configuration is missing values or has invalid ones."""


@dataclass(frozen=True)
class RunConfig:
    port: int
    meta: Path
    input: Path
    output: Path
    digits: int = 4
    log_dir: Optional[Path] = None
    log_level: str = "INFO"

    def __post_init__(self):
        if not isinstance(self.port, int) or isinstance(self.port, bool) or not 0 <= self.port <= 0xFFFF:
            raise ConfigError(f"port must be an integer in 0..65535, got {self.port!r}")
        if not isinstance(self.digits, int) or isinstance(self.digits, bool) or self.digits < 1:
            raise ConfigError(f"digits must be a positive integer, got {self.digits!r}")
        for name in ("meta", "input", "output", "log_dir"):
            v = getattr(self, name)
            if v is not None and not isinstance(v, Path):
                if not isinstance(v, str):
                    raise ConfigError(f"{name} must be a path, got {v!r}")
                object.__setattr__(self, name, Path(v))

    @classmethod
    def from_mapping(cls, values: Dict[str, Any]) -> "RunConfig":
        known = {f.name for f in dataclasses.fields(cls)}
        unknown = sorted(set(values) - known)
        if unknown:
            raise ConfigError(f"Unknown configuration keys: {', '.join(unknown)}")
        missing = [k for k in _REQUIRED if values.get(k) is None]
        if missing:
            raise ConfigError(f"Missing required configuration: {', '.join(missing)}")
        return cls(**{k: v for k, v in values.items() if v is not None})


def load_yaml_config(path: Union[str, Path]) -> Dict[str, Any]:
    """
    Read a YAML mapping of RunConfig fields, e.g.

        port: 7502
        meta: sensor.json
        input: drive.pcapng
        output: frames/
        digits: 6
    """
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except OSError as e:
        raise ConfigError(f"Cannot read config file {path}: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigError(f"Config file {path} is not valid YAML: {e}") from e
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"Config file {path} must contain a mapping")
    return data


def merge_config(file_values: Dict[str, Any], cli_values: Dict[str, Any]) -> RunConfig:
    """Command line values win over file values; None means 'not given'."""
    merged = dict(file_values)
    merged.update({k: v for k, v in cli_values.items() if v is not None})
    return RunConfig.from_mapping(merged)
