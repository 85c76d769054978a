"""
Checkpoint persistence for restartable trajectories.

A checkpoint is a single JSON document holding the full system state after
a completed step. Saving writes a temporary file next to the target and
renames it over the previous checkpoint, so an interrupted save leaves the
old checkpoint intact.
"""

import json
import logging
import os
import tempfile
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

from ..config import Config
from ..core.atoms import Atom
from ..core.system import System
from ..exceptions import ConfigError, DeserializationError, RestartIncompatible

logger = logging.getLogger(__name__)

CHECKPOINT_SCHEMA_VERSION = 1


@dataclass(frozen=True)
class Checkpoint:
    """Immutable snapshot of a trajectory after a completed step."""
    step: int
    time: float
    charge: int
    multiplicity: int
    atoms: Tuple[Dict[str, Any], ...]
    config_fingerprint: str
    timestamp: str
    potential_energy: Optional[float] = None
    schema_version: int = CHECKPOINT_SCHEMA_VERSION

    @property
    def n_atoms(self) -> int:
        return len(self.atoms)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "schema_version": self.schema_version,
            "step": self.step,
            "time": self.time,
            "charge": self.charge,
            "multiplicity": self.multiplicity,
            "potential_energy": self.potential_energy,
            "config_fingerprint": self.config_fingerprint,
            "timestamp": self.timestamp,
            "atoms": [dict(record) for record in self.atoms],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Checkpoint":
        if not isinstance(data, dict):
            raise DeserializationError("Checkpoint must be a JSON object")
        try:
            version = int(data.get("schema_version", CHECKPOINT_SCHEMA_VERSION))
            if version != CHECKPOINT_SCHEMA_VERSION:
                raise DeserializationError(f"Unsupported checkpoint schema version {version}")
            atoms = tuple(Atom.from_record(record).to_record() for record in data["atoms"])
            indices = sorted(record["index"] for record in atoms)
            if not atoms or indices != list(range(1, len(atoms) + 1)):
                raise DeserializationError(
                    f"Atom indices must be 1..N without gaps or repeats, got {indices}")
            energy = data.get("potential_energy")
            return cls(
                step=int(data["step"]),
                time=float(data["time"]),
                charge=int(data["charge"]),
                multiplicity=int(data["multiplicity"]),
                atoms=atoms,
                config_fingerprint=str(data["config_fingerprint"]),
                timestamp=str(data["timestamp"]),
                potential_energy=None if energy is None else float(energy),
                schema_version=version,
            )
        except DeserializationError:
            raise
        except (KeyError, TypeError, ValueError, ConfigError) as e:
            raise DeserializationError(f"Malformed checkpoint: {e!r}")

    def restore_system(self) -> System:
        """Rebuild the System stored in this checkpoint."""
        system = System.from_atoms(
            [Atom.from_record(record) for record in self.atoms],
            charge=self.charge,
            multiplicity=self.multiplicity,
            step=self.step,
            time=self.time,
        )
        system.potential_energy = self.potential_energy
        return system


class CheckpointManager:
    """Saves and loads checkpoints at a fixed path."""

    def __init__(self, path):
        self.path = Path(path)

    def exists(self) -> bool:
        return self.path.exists()

    def save(self, system: System, step: int, config_fingerprint: str) -> Checkpoint:
        """
        Persist ``system`` as the checkpoint for ``step``.

        Args:
            system: State after the completed step
            step: Step index
            config_fingerprint: ``Config.fingerprint()`` of the run

        Returns:
            The checkpoint that was written
        """
        checkpoint = Checkpoint(
            step=int(step),
            time=float(system.time),
            charge=system.charge,
            multiplicity=system.multiplicity,
            atoms=tuple(atom.to_record() for atom in system),
            config_fingerprint=config_fingerprint,
            timestamp=datetime.now().isoformat(),
            potential_energy=system.potential_energy,
        )
        self._write(checkpoint)
        logger.debug("Checkpoint for step %d written to %s", step, self.path)
        return checkpoint

    def _write(self, checkpoint: Checkpoint) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=self.path.parent,
                                        prefix=f".{self.path.name}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(checkpoint.to_dict(), f, indent=2)
                f.write("\n")
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, self.path)
        finally:
            if os.path.exists(tmp_name):
                os.remove(tmp_name)

    def load(self, path=None) -> Checkpoint:
        """
        Read a checkpoint.

        Raises:
            OSError: If the file cannot be read
            DeserializationError: If the contents are not a checkpoint
        """
        path = Path(path) if path is not None else self.path
        with open(path, "r", encoding="utf-8") as f:
            try:
                data = json.load(f)
            except json.JSONDecodeError as e:
                raise DeserializationError(f"Checkpoint {path} is not valid JSON: {e}",
                                           component="CheckpointManager")
        try:
            return Checkpoint.from_dict(data)
        except DeserializationError as e:
            e.component = "CheckpointManager"
            raise

    @staticmethod
    def validate_compatibility(checkpoint: Checkpoint, config: Config,
                               atom_count: Optional[int] = None) -> None:
        """
        Reject checkpoints that do not belong to this run.

        Args:
            checkpoint: Loaded checkpoint
            config: Configuration of the current run
            atom_count: Expected number of atoms, if known

        Raises:
            RestartIncompatible: On fingerprint or atom count mismatch
        """
        if checkpoint.config_fingerprint != config.fingerprint():
            raise RestartIncompatible(
                "Checkpoint was written with a different configuration "
                "(key words, charge, multiplicity, time step or frozen atoms changed)",
                step=checkpoint.step, component="CheckpointManager")
        if atom_count is not None and checkpoint.n_atoms != atom_count:
            raise RestartIncompatible(
                f"Checkpoint has {checkpoint.n_atoms} atoms, expected {atom_count}",
                step=checkpoint.step, component="CheckpointManager")
        out_of_range = [i for i in config.frozen if i > checkpoint.n_atoms]
        if out_of_range:
            raise RestartIncompatible(
                f"Frozen atoms {sorted(out_of_range)} exceed the {checkpoint.n_atoms} "
                f"atoms in the checkpoint", step=checkpoint.step,
                component="CheckpointManager")
