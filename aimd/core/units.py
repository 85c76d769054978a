"""
Unit conversions between the quantum engine and the integrator.

All conversion factors used by the package live here.

Engine (Gaussian) units:
    - length: Angstrom (orientation tables)
    - force: Hartree/Bohr
    - energy: Hartree

Integrator working units:
    - length: Angstrom
    - time: femtosecond
    - mass: amu
    - velocity: Angstrom/fs
    - force: amu * Angstrom / fs^2

Factors are derived from ``ase.units`` (energy eV, length Angstrom,
mass amu, time Angstrom*sqrt(amu/eV)).
"""

import numpy as np
from ase import units

# 1 eV/Angstrom expressed in amu*Angstrom/fs^2
EV_PER_ANGSTROM_TO_INTERNAL = units.fs ** 2

# 1 Hartree/Bohr expressed in amu*Angstrom/fs^2 (~0.4961)
HARTREE_PER_BOHR_TO_INTERNAL = units.Hartree / units.Bohr * EV_PER_ANGSTROM_TO_INTERNAL

# 1 amu*Angstrom^2/fs^2 expressed in eV
INTERNAL_ENERGY_TO_EV = 1.0 / units.fs ** 2

HARTREE_TO_EV = units.Hartree

# Engine coordinates are already in Angstrom
ENGINE_LENGTH_TO_ANGSTROM = 1.0


def forces_from_engine(forces) -> np.ndarray:
    """Convert engine forces (Hartree/Bohr) to amu*Angstrom/fs^2."""
    return np.asarray(forces, dtype=float) * HARTREE_PER_BOHR_TO_INTERNAL


def forces_to_engine(forces) -> np.ndarray:
    """Convert amu*Angstrom/fs^2 forces back to Hartree/Bohr."""
    return np.asarray(forces, dtype=float) / HARTREE_PER_BOHR_TO_INTERNAL


def positions_from_engine(positions) -> np.ndarray:
    """Convert engine coordinates to Angstrom."""
    return np.asarray(positions, dtype=float) * ENGINE_LENGTH_TO_ANGSTROM


def positions_to_engine(positions) -> np.ndarray:
    """Convert Angstrom coordinates to engine length units."""
    return np.asarray(positions, dtype=float) / ENGINE_LENGTH_TO_ANGSTROM


def energy_to_ev(energy_hartree: float) -> float:
    """Convert an engine energy (Hartree) to eV."""
    return float(energy_hartree) * HARTREE_TO_EV


def kinetic_energy_ev(masses, velocities) -> float:
    """
    Kinetic energy in eV.

    Args:
        masses: Atomic masses in amu, shape (N,)
        velocities: Velocities in Angstrom/fs, shape (N, 3)

    Returns:
        Total kinetic energy in eV
    """
    masses = np.asarray(masses, dtype=float)
    velocities = np.asarray(velocities, dtype=float)
    internal = 0.5 * np.sum(masses[:, np.newaxis] * velocities ** 2)
    return float(internal * INTERNAL_ENERGY_TO_EV)


def per_atom_kinetic_energy_ev(masses, velocities) -> np.ndarray:
    """Per-atom kinetic energy in eV."""
    masses = np.asarray(masses, dtype=float)
    velocities = np.asarray(velocities, dtype=float)
    return 0.5 * masses * np.sum(velocities ** 2, axis=1) * INTERNAL_ENERGY_TO_EV


def thermal_velocity_sigma(masses, temperature: float) -> np.ndarray:
    """
    Standard deviation of a Maxwell-Boltzmann velocity component.

    Args:
        masses: Atomic masses in amu
        temperature: Temperature in Kelvin

    Returns:
        sigma per atom in Angstrom/fs
    """
    masses = np.asarray(masses, dtype=float)
    # kT/m in eV/amu -> (Angstrom/ase_time)^2 -> (Angstrom/fs)^2
    return np.sqrt(units.kB * temperature / masses) * units.fs


def temperature_from_kinetic(kinetic_ev: float, n_dof: int) -> float:
    """Instantaneous temperature (K) from kinetic energy in eV."""
    if n_dof <= 0:
        return 0.0
    return 2.0 * kinetic_ev / (n_dof * units.kB)
