"""
Atom representation and element lookup for AIMD simulations.
"""

import numpy as np
from typing import Any, Dict, Optional
from dataclasses import dataclass
from ase.data import atomic_masses, chemical_symbols, atomic_numbers as symbol_to_number

from ..exceptions import ConfigError


def element_symbol(atomic_number: int) -> str:
    """Chemical symbol for an atomic number."""
    if not 1 <= atomic_number < len(chemical_symbols):
        raise ConfigError(f"atomic number: {atomic_number}, is not supported!")
    return chemical_symbols[atomic_number]


def element_mass(atomic_number: int) -> float:
    """Standard atomic mass (amu) for an atomic number."""
    if not 1 <= atomic_number < len(atomic_masses):
        raise ConfigError(f"atomic number: {atomic_number}, is not supported!")
    return float(atomic_masses[atomic_number])


def element_number(symbol: str) -> int:
    """Atomic number for a chemical symbol (case-insensitive)."""
    key = symbol.strip().capitalize()
    if key not in symbol_to_number or symbol_to_number[key] == 0:
        raise ConfigError(f"Unknown element symbol {symbol!r}")
    return symbol_to_number[key]


@dataclass
class Atom:
    """
    Individual atom representation.

    Positions in Angstrom, velocities in Angstrom/fs and forces in
    amu*Angstrom/fs^2. ``index`` is 1-based and follows the engine order.
    """
    index: int
    atomic_number: int
    position: np.ndarray
    mass: Optional[float] = None
    velocity: Optional[np.ndarray] = None
    force: Optional[np.ndarray] = None
    frozen: bool = False

    def __post_init__(self):
        """Derive mass from the atomic number and initialize vectors."""
        if self.mass is None:
            self.mass = element_mass(self.atomic_number)
        self.position = np.asarray(self.position, dtype=float)
        if self.velocity is None:
            self.velocity = np.zeros(3)
        if self.force is None:
            self.force = np.zeros(3)
        self.velocity = np.asarray(self.velocity, dtype=float)
        self.force = np.asarray(self.force, dtype=float)

    @property
    def symbol(self) -> str:
        return element_symbol(self.atomic_number)

    def to_record(self) -> Dict[str, Any]:
        """Flat record used by checkpoint files."""
        x, y, z = (float(v) for v in self.position)
        vx, vy, vz = (float(v) for v in self.velocity)
        fx, fy, fz = (float(v) for v in self.force)
        return {
            'index': self.index,
            'symbol': self.symbol,
            'atomic_number': self.atomic_number,
            'x': x, 'y': y, 'z': z,
            'vx': vx, 'vy': vy, 'vz': vz,
            'fx': fx, 'fy': fy, 'fz': fz,
            'frozen': bool(self.frozen),
        }

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> 'Atom':
        """Inverse of :meth:`to_record`."""
        if 'atomic_number' in record:
            atomic_number = int(record['atomic_number'])
        else:
            atomic_number = element_number(record['symbol'])
        return cls(
            index=int(record['index']),
            atomic_number=atomic_number,
            position=np.array([record['x'], record['y'], record['z']], dtype=float),
            velocity=np.array([record['vx'], record['vy'], record['vz']], dtype=float),
            force=np.array([record.get('fx', 0.0), record.get('fy', 0.0),
                            record.get('fz', 0.0)], dtype=float),
            frozen=bool(record['frozen']),
        )

    def __repr__(self) -> str:
        """String representation."""
        flag = ", frozen" if self.frozen else ""
        return f"Atom({self.index}, {self.symbol}{flag})"
