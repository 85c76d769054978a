"""
Deterministic in-memory engine used for tests and dry runs.
"""

from pathlib import Path
from typing import Callable, List, Optional, Sequence

import numpy as np

from .calculator import QuantumEngine
from .input_writer import read_input_deck
from ..exceptions import EngineFailure

# (atomic_numbers, positions in Angstrom) -> forces in Hartree/Bohr
ForceFunction = Callable[[Sequence[int], np.ndarray], np.ndarray]
EnergyFunction = Callable[[Sequence[int], np.ndarray], float]

_RULE = " " + "-" * 69


def zero_forces(atomic_numbers: Sequence[int], positions: np.ndarray) -> np.ndarray:
    return np.zeros((len(atomic_numbers), 3))


def harmonic_forces(k: float = 0.05, center=(0.0, 0.0, 0.0)) -> ForceFunction:
    """Force function pulling every atom toward ``center`` (Hartree/Bohr per Angstrom)."""
    center = np.asarray(center, dtype=float)

    def forces(atomic_numbers, positions):
        return -k * (np.asarray(positions, dtype=float) - center)

    return forces


def format_orientation_block(atomic_numbers: Sequence[int], positions: np.ndarray,
                             header: str = "Standard orientation:") -> List[str]:
    """Gaussian-style coordinate table."""
    lines = [f"                         {header}",
             _RULE,
             " Center     Atomic      Atomic             Coordinates (Angstroms)",
             " Number     Number       Type             X           Y           Z",
             _RULE]
    for i, (z, pos) in enumerate(zip(atomic_numbers, positions), start=1):
        lines.append(f" {i:6d} {z:10d} {0:11d}    {pos[0]:12.6f} {pos[1]:12.6f} {pos[2]:12.6f}")
    lines.append(_RULE)
    return lines


def format_force_block(atomic_numbers: Sequence[int], forces: np.ndarray) -> List[str]:
    """Gaussian-style force table (Hartree/Bohr)."""
    lines = [_RULE,
             " Center     Atomic                   Forces (Hartrees/Bohr)",
             " Number     Number              X              Y              Z",
             _RULE]
    for i, (z, f) in enumerate(zip(atomic_numbers, forces), start=1):
        lines.append(f" {i:6d} {z:8d}    {f[0]:15.9f} {f[1]:15.9f} {f[2]:15.9f}")
    lines.append(_RULE)
    return lines


def render_output(atomic_numbers: Sequence[int], positions: np.ndarray,
                  forces: Optional[np.ndarray] = None, energy: Optional[float] = None,
                  preceding_geometries: Sequence[np.ndarray] = ()) -> str:
    """
    Render text shaped like a Gaussian log.

    Args:
        atomic_numbers: Atomic numbers in order
        positions: Final geometry (Angstrom)
        forces: Forces in Hartree/Bohr, omitted when None
        energy: SCF energy in Hartree, omitted when None
        preceding_geometries: Earlier orientation tables printed before the
            final one

    Returns:
        Output text
    """
    lines = [" Entering Gaussian System, Link 0=g16", f" NAtoms=  {len(atomic_numbers)}"]
    for earlier in preceding_geometries:
        lines.extend(format_orientation_block(atomic_numbers, earlier))
    lines.extend(format_orientation_block(atomic_numbers, positions))
    if energy is not None:
        lines.append(f" SCF Done:  E(RB3LYP) =  {energy:.9f}     A.U. after   10 cycles")
    if forces is not None:
        lines.append(" ***** Axes restored to original set *****")
        lines.extend(format_force_block(atomic_numbers, forces))
    lines.append(" Normal termination of Gaussian 16.")
    return "\n".join(lines) + "\n"


class StubEngine(QuantumEngine):
    """
    Engine that answers from a Python force function.

    Reads the geometry back from the input deck, so the whole write/run/parse
    path is exercised. Results depend only on the deck contents.
    """

    def __init__(self, force_fn: Optional[ForceFunction] = None,
                 energy_fn: Optional[EnergyFunction] = None,
                 fail_times: int = 0, emit_forces: bool = True):
        """
        Initialize stub engine.

        Args:
            force_fn: Forces in Hartree/Bohr for a geometry (default zero)
            energy_fn: Energy in Hartree for a geometry (default none)
            fail_times: Number of initial calls that raise EngineFailure
            emit_forces: Whether to print a force table
        """
        super().__init__(name="stub")
        self.force_fn = force_fn or zero_forces
        self.energy_fn = energy_fn
        self.fail_times = fail_times
        self.emit_forces = emit_forces
        self.decks: List[str] = []

    def _execute(self, input_path: Path) -> str:
        try:
            deck = input_path.read_text()
        except FileNotFoundError:
            raise EngineFailure(f"Input deck {input_path} does not exist", component="EngineRunner")
        self.decks.append(deck)

        if self.fail_times > 0:
            self.fail_times -= 1
            raise EngineFailure("Stub engine failure", component="EngineRunner")

        _charge, _multiplicity, numbers, positions = read_input_deck(deck)
        forces = np.asarray(self.force_fn(numbers, positions), dtype=float) \
            if self.emit_forces else None
        energy = self.energy_fn(numbers, positions) if self.energy_fn else None
        return render_output(numbers, positions, forces=forces, energy=energy)
