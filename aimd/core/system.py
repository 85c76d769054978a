"""
Core System class for AIMD simulations.
"""

import numpy as np
from typing import Iterable, Iterator, List, Optional, Sequence
from ase import Atoms

from . import units
from .atoms import Atom, element_mass, element_symbol
from ..exceptions import ConfigError


class System:
    """
    In-memory molecular state for an AIMD trajectory.

    Atoms are stored as parallel numpy arrays in engine order. The order and
    the atom count are fixed once the system is built.

    Units: positions Angstrom, velocities Angstrom/fs, forces
    amu*Angstrom/fs^2, masses amu, time fs.
    """

    def __init__(self, atomic_numbers: Sequence[int], positions,
                 velocities=None, forces=None, frozen: Iterable[int] = (),
                 charge: int = 0, multiplicity: int = 1,
                 step: int = 0, time: float = 0.0):
        """
        Initialize the system.

        Args:
            atomic_numbers: Atomic number per atom, in engine order
            positions: Coordinates, shape (N, 3)
            velocities: Velocities, shape (N, 3) (default zero)
            forces: Forces, shape (N, 3) (default zero)
            frozen: 1-based indices of atoms held fixed
            charge: Molecular charge
            multiplicity: Spin multiplicity
            step: Number of completed MD steps
            time: Elapsed simulated time in fs
        """
        self.atomic_numbers = np.array(atomic_numbers, dtype=int)
        n_atoms = len(self.atomic_numbers)
        if n_atoms == 0:
            raise ConfigError("System must contain at least one atom")

        self.positions = self._as_vectors(positions, n_atoms, "positions")
        self.velocities = (np.zeros((n_atoms, 3)) if velocities is None
                           else self._as_vectors(velocities, n_atoms, "velocities"))
        self.forces = (np.zeros((n_atoms, 3)) if forces is None
                       else self._as_vectors(forces, n_atoms, "forces"))
        self.masses = np.array([element_mass(z) for z in self.atomic_numbers])
        self.frozen = np.zeros(n_atoms, dtype=bool)

        self.charge = int(charge)
        self.multiplicity = int(multiplicity)
        self.step = int(step)
        self.time = float(time)
        self.potential_energy: Optional[float] = None  # Hartree

        self.freeze(frozen)

    @staticmethod
    def _as_vectors(values, n_atoms: int, name: str) -> np.ndarray:
        array = np.array(values, dtype=float)
        if array.shape != (n_atoms, 3):
            raise ValueError(f"{name} must have shape ({n_atoms}, 3), got {array.shape}")
        return array

    @classmethod
    def from_atoms(cls, atoms: Sequence[Atom], charge: int = 0, multiplicity: int = 1,
                   step: int = 0, time: float = 0.0) -> 'System':
        """Build a system from Atom records (sorted by index)."""
        ordered = sorted(atoms, key=lambda atom: atom.index)
        expected = list(range(1, len(ordered) + 1))
        if [atom.index for atom in ordered] != expected:
            raise ValueError("Atom indices must be contiguous and start at 1")
        system = cls(
            atomic_numbers=[atom.atomic_number for atom in ordered],
            positions=[atom.position for atom in ordered],
            velocities=[atom.velocity for atom in ordered],
            forces=[atom.force for atom in ordered],
            frozen=[atom.index for atom in ordered if atom.frozen],
            charge=charge,
            multiplicity=multiplicity,
            step=step,
            time=time,
        )
        return system

    def freeze(self, indices: Iterable[int]) -> None:
        """
        Mark atoms as frozen and zero their velocities.

        Args:
            indices: 1-based atom indices
        """
        indices = sorted(set(int(i) for i in indices))
        out_of_range = [i for i in indices if not 1 <= i <= len(self)]
        if out_of_range:
            raise ConfigError(
                f"Frozen atom indices {out_of_range} outside 1..{len(self)}")
        for i in indices:
            self.frozen[i - 1] = True
        self.velocities[self.frozen] = 0.0

    @property
    def frozen_indices(self) -> List[int]:
        """1-based indices of frozen atoms."""
        return [int(i) + 1 for i in np.flatnonzero(self.frozen)]

    @property
    def symbols(self) -> List[str]:
        return [element_symbol(int(z)) for z in self.atomic_numbers]

    @property
    def atoms(self) -> Atoms:
        """ASE Atoms view of the current geometry."""
        return Atoms(numbers=self.atomic_numbers, positions=self.positions,
                     masses=self.masses)

    def initialize_velocities(self, temperature: float,
                              seed: Optional[int] = None) -> None:
        """
        Draw velocities from a Maxwell-Boltzmann distribution.

        Args:
            temperature: Temperature in Kelvin
            seed: Seed for the random generator
        """
        rng = np.random.default_rng(seed)
        sigma = units.thermal_velocity_sigma(self.masses, temperature)
        self.velocities = rng.normal(0.0, 1.0, (len(self), 3)) * sigma[:, np.newaxis]
        self.velocities[self.frozen] = 0.0

        # Remove center of mass motion of the mobile atoms
        self._remove_com_motion()

    def _remove_com_motion(self) -> None:
        """Remove center of mass motion of the mobile atoms."""
        mobile = ~self.frozen
        if not np.any(mobile):
            return
        masses = self.masses[mobile]
        com_velocity = (np.sum(masses[:, np.newaxis] * self.velocities[mobile], axis=0)
                        / np.sum(masses))
        self.velocities[mobile] -= com_velocity

    def get_kinetic_energy(self) -> float:
        """Total kinetic energy in eV."""
        return units.kinetic_energy_ev(self.masses, self.velocities)

    def get_potential_energy(self) -> Optional[float]:
        """Last engine energy in eV (None if the engine reported none)."""
        if self.potential_energy is None:
            return None
        return units.energy_to_ev(self.potential_energy)

    def get_temperature(self) -> float:
        """Instantaneous temperature from the kinetic energy of mobile atoms."""
        n_dof = 3 * int(np.count_nonzero(~self.frozen))
        return units.temperature_from_kinetic(self.get_kinetic_energy(), n_dof)

    def update_forces(self, new_forces: np.ndarray) -> None:
        """Replace forces (amu*Angstrom/fs^2)."""
        self.forces = self._as_vectors(new_forces, len(self), "forces")

    def get_atom(self, index: int) -> Atom:
        """Atom view for a 1-based index."""
        i = index - 1
        if not 0 <= i < len(self):
            raise IndexError(f"Atom index {index} outside 1..{len(self)}")
        return Atom(
            index=index,
            atomic_number=int(self.atomic_numbers[i]),
            position=self.positions[i].copy(),
            mass=float(self.masses[i]),
            velocity=self.velocities[i].copy(),
            force=self.forces[i].copy(),
            frozen=bool(self.frozen[i]),
        )

    def __iter__(self) -> Iterator[Atom]:
        for index in range(1, len(self) + 1):
            yield self.get_atom(index)

    def __len__(self) -> int:
        """Return number of atoms."""
        return len(self.atomic_numbers)

    def __repr__(self) -> str:
        """String representation."""
        return (f"System(atoms={len(self)}, frozen={int(self.frozen.sum())}, "
                f"step={self.step}, t={self.time:.2f}fs)")
