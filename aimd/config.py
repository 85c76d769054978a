"""
Simulation configuration.

Loads the Gaussian settings (``config.yaml``) and merges them with the
command-line simulation parameters into a validated, immutable ``Config``.
"""

import hashlib
import json
import re
import warnings
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from collections.abc import Iterable
from typing import Any, Dict, FrozenSet, Optional

import yaml

from .exceptions import ConfigError

REQUIRED_ENGINE_FIELDS = ("mem", "cpu", "checkpoint", "key_words", "title",
                          "charge", "multiplicity")

_RANGE_PATTERN = re.compile(r"^\s*(\d+)\s*(?:-\s*(\d+)\s*)?$")


def parse_freeze_range(spec: Optional[str]) -> FrozenSet[int]:
    """
    Parse a freeze range specification.

    Args:
        spec: Comma-separated 1-based inclusive ranges or single indices,
            e.g. ``"1-10,90-100"`` or ``"3,7-9"``

    Returns:
        Set of 1-based atom indices
    """
    if spec is None or not spec.strip():
        return frozenset()

    indices = set()
    for part in spec.split(","):
        match = _RANGE_PATTERN.match(part)
        if match is None:
            raise ConfigError(f"Invalid freeze range entry {part!r} in {spec!r}")
        low = int(match.group(1))
        high = int(match.group(2)) if match.group(2) is not None else low
        if low < 1:
            raise ConfigError(f"Atom indices are 1-based, got {low} in {spec!r}")
        if high < low:
            raise ConfigError(f"Reversed freeze range {part.strip()!r}")
        indices.update(range(low, high + 1))
    return frozenset(indices)


@dataclass(frozen=True)
class Config:
    """
    Validated simulation parameters.

    Gaussian fields mirror ``config.yaml``; the remaining fields come from
    the command line or optional YAML keys.
    """
    # Gaussian input deck
    mem: str
    cpu: str
    checkpoint: str
    key_words: str
    title: str
    charge: int
    multiplicity: int
    gpu: Optional[str] = None

    # Dynamics
    time_step: float = 1.0  # fs
    num_steps: int = 10000
    frozen: FrozenSet[int] = field(default_factory=frozenset)
    restart: bool = False
    initial_temperature: Optional[float] = None  # K, None -> zero velocities
    velocity_seed: Optional[int] = None

    # Engine orchestration
    engine_command: str = "g16"
    engine_timeout: float = 3600.0  # seconds per engine call
    max_retries: int = 2

    # Run directory layout
    work_dir: str = "."
    input_file: str = "input.com"
    output_file: str = "forces.out"
    save_file: str = "save.json"

    def __post_init__(self):
        self.validate()

    def validate(self) -> None:
        """Raise ConfigError if any field is out of range."""
        for name in ("mem", "cpu", "checkpoint", "key_words", "title"):
            value = getattr(self, name)
            if not isinstance(value, str) or not value.strip():
                raise ConfigError(f"'{name}' must be a non-empty string")
        if "force" not in self.key_words.lower():
            raise ConfigError(
                f"key_words must request forces (e.g. 'force'), got {self.key_words!r}")
        if self.multiplicity < 1:
            raise ConfigError(f"multiplicity must be >= 1, got {self.multiplicity}")
        if not self.time_step > 0:
            raise ConfigError(f"time_step must be positive, got {self.time_step}")
        if self.num_steps < 0:
            raise ConfigError(f"num_steps must be >= 0, got {self.num_steps}")
        if self.max_retries < 0:
            raise ConfigError(f"max_retries must be >= 0, got {self.max_retries}")
        if not self.engine_timeout > 0:
            raise ConfigError(f"engine_timeout must be positive, got {self.engine_timeout}")
        if self.initial_temperature is not None and self.initial_temperature < 0:
            raise ConfigError(
                f"initial_temperature must be >= 0, got {self.initial_temperature}")
        if any(index < 1 for index in self.frozen):
            raise ConfigError("frozen atom indices are 1-based")

    @property
    def work_path(self) -> Path:
        return Path(self.work_dir)

    @property
    def input_path(self) -> Path:
        return self.work_path / self.input_file

    @property
    def output_path(self) -> Path:
        return self.work_path / self.output_file

    @property
    def save_path(self) -> Path:
        return self.work_path / self.save_file

    def fingerprint(self) -> str:
        """
        Hash of the fields that define the trajectory.

        Resource directives, step count and file names are excluded so a
        restarted run may extend the trajectory or move to another machine.
        """
        payload = {
            "key_words": " ".join(self.key_words.split()).lower(),
            "charge": self.charge,
            "multiplicity": self.multiplicity,
            "time_step": repr(float(self.time_step)),
            "frozen": sorted(self.frozen),
        }
        encoded = json.dumps(payload, sort_keys=True).encode("utf-8")
        return hashlib.sha256(encoded).hexdigest()

    def with_overrides(self, **overrides) -> "Config":
        """Return a copy with non-None overrides applied."""
        changes = {k: v for k, v in overrides.items() if v is not None}
        return replace(self, **changes)


def load_yaml(config_file) -> Dict[str, Any]:
    """Load a YAML configuration file. The file must exist and be a mapping."""
    path = Path(config_file)
    try:
        with open(path, "r") as f:
            data = yaml.safe_load(f)
    except FileNotFoundError:
        raise ConfigError(f"Config file '{path}' not found. A config file is required.")
    except yaml.YAMLError as e:
        raise ConfigError(f"Config file '{path}' is not valid YAML: {e}")

    if data is None:
        raise ConfigError(f"Config file '{path}' is empty or invalid")
    if not isinstance(data, dict):
        raise ConfigError(f"Config file '{path}' must contain a mapping")
    return data


def _index_set(values) -> FrozenSet[int]:
    try:
        return frozenset(int(i) for i in values)
    except (TypeError, ValueError):
        raise ConfigError(f"Frozen atom indices must be integers, got {values!r}")


def config_from_dict(data: Dict[str, Any], **overrides) -> Config:
    """
    Build a Config from a raw mapping plus command-line overrides.

    Args:
        data: Parsed YAML mapping
        **overrides: Values taking precedence over ``data``; ``None`` values
            are ignored. ``freeze`` may be given as a range string.

    Returns:
        Validated Config
    """
    merged = dict(data)
    merged.update({k: v for k, v in overrides.items() if v is not None})

    missing = [name for name in REQUIRED_ENGINE_FIELDS if merged.get(name) in (None, "")]
    if missing:
        raise ConfigError(f"Missing required config fields: {', '.join(missing)}")

    freeze = merged.pop("freeze", None)
    if freeze is not None:
        if isinstance(freeze, str):
            merged["frozen"] = parse_freeze_range(freeze)
        elif isinstance(freeze, Iterable):
            merged["frozen"] = _index_set(freeze)
        else:
            merged["frozen"] = parse_freeze_range(str(freeze))
    elif "frozen" in merged:
        merged["frozen"] = _index_set(merged["frozen"])

    known = {f.name for f in fields(Config)}
    unknown = sorted(set(merged) - known)
    if unknown:
        raise ConfigError(f"Unknown config fields: {', '.join(unknown)}")

    try:
        merged["charge"] = int(merged["charge"])
        merged["multiplicity"] = int(merged["multiplicity"])
        for name in ("mem", "cpu", "checkpoint", "key_words", "title", "gpu"):
            if merged.get(name) is not None:
                merged[name] = str(merged[name])
        if "time_step" in merged:
            merged["time_step"] = float(merged["time_step"])
        if "num_steps" in merged:
            merged["num_steps"] = int(merged["num_steps"])
    except (TypeError, ValueError) as e:
        raise ConfigError(f"Invalid config value: {e}")

    config = Config(**merged)

    if "nosymm" not in config.key_words.lower():
        warnings.warn("key_words lacks 'nosymm'; Gaussian may reorient the molecule "
                      "between steps and the forces will not match the velocity frame. "
                      "Seed geometries are read from the input orientation, the "
                      "frame Gaussian prints forces in")
    return config


def load_config(config_file, **overrides) -> Config:
    """Load ``config_file`` and merge command-line overrides into a Config."""
    return config_from_dict(load_yaml(config_file), **overrides)
