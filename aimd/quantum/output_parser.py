"""
Parser for Gaussian output files.

Extracts the final geometry (last "Standard orientation" or
"Input orientation" table), the last
"Forces (Hartrees/Bohr)" table and the last SCF energy from engine output.
Values are returned in engine units; conversion happens in
``aimd.core.units``.
"""

import re
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, List, Optional, Tuple

import numpy as np

from ..exceptions import ParseError

STANDARD_ORIENTATION = "Standard orientation:"
INPUT_ORIENTATION = "Input orientation:"
# Same table layout; with nosymm Gaussian prints only the input orientation
ORIENTATION_HEADERS = (STANDARD_ORIENTATION, INPUT_ORIENTATION)
FORCES_HEADERS = ("Forces (Hartrees/Bohr)",)

_RULE = re.compile(r"^\s*-{10,}\s*$")
_FLOAT = r"[-+]?\d+\.\d*(?:[DdEe][-+]?\d+)?"
# center  atomic-number  atomic-type  x  y  z
_ORIENTATION_ROW = re.compile(
    rf"^\s*(\d+)\s+(\d+)\s+(-?\d+)\s+({_FLOAT})\s+({_FLOAT})\s+({_FLOAT})\s*$")
# center  atomic-number  fx  fy  fz
_FORCE_ROW = re.compile(
    rf"^\s*(\d+)\s+(\d+)\s+({_FLOAT})\s+({_FLOAT})\s+({_FLOAT})\s*$")
_SCF_DONE = re.compile(rf"^\s*SCF Done:\s+E\([^)]*\)\s*=\s*({_FLOAT})")


@dataclass(frozen=True)
class AtomSnapshot:
    """
    Geometry and forces reported by one engine invocation.

    Attributes:
        atomic_numbers: Atomic number per atom, engine order
        positions: Coordinates in Angstrom, shape (N, 3)
        forces: Forces in Hartree/Bohr, shape (N, 3), or None
        energy: Last SCF energy in Hartree, or None
    """
    atomic_numbers: Tuple[int, ...]
    positions: np.ndarray
    forces: Optional[np.ndarray] = None
    energy: Optional[float] = None

    def __post_init__(self):
        # Read-only copies keep the snapshot immutable
        positions = np.array(self.positions, dtype=float)
        positions.setflags(write=False)
        object.__setattr__(self, "positions", positions)
        object.__setattr__(self, "atomic_numbers", tuple(int(z) for z in self.atomic_numbers))
        if self.forces is not None:
            forces = np.array(self.forces, dtype=float)
            forces.setflags(write=False)
            object.__setattr__(self, "forces", forces)

    @property
    def n_atoms(self) -> int:
        return len(self.atomic_numbers)

    @property
    def has_forces(self) -> bool:
        return self.forces is not None


def _to_float(token: str) -> float:
    return float(token.replace("D", "E").replace("d", "e"))


def _iter_tables(lines: List[str], headers: Tuple[str, ...], row_pattern,
                 rules_before_rows: int) -> Iterator[Tuple[str, List[tuple]]]:
    """
    Yield (header, rows) for every table introduced by one of ``headers``, in order.

    Rows start after the ``rules_before_rows``-th dashed rule following the
    header line and run to the next rule. Scanning resumes after each table,
    so the lines are traversed once.
    """
    i = 0
    n_lines = len(lines)
    while i < n_lines:
        header = next((h for h in headers if h in lines[i]), None)
        if header is None:
            i += 1
            continue

        # Skip the column header to the rule preceding the rows
        rules_seen = 0
        i += 1
        while i < n_lines and rules_seen < rules_before_rows:
            if _RULE.match(lines[i]):
                rules_seen += 1
            i += 1

        rows = []
        while i < n_lines and not _RULE.match(lines[i]):
            match = row_pattern.match(lines[i])
            if match is None:
                break
            rows.append(match.groups())
            i += 1

        if rows:
            yield header, rows


def _orientation_blocks(lines: List[str]) -> Iterator[Tuple[str, Tuple[int, ...], np.ndarray]]:
    for header, rows in _iter_tables(lines, ORIENTATION_HEADERS, _ORIENTATION_ROW, 2):
        numbers = tuple(int(row[1]) for row in rows)
        positions = np.array([[_to_float(v) for v in row[3:6]] for row in rows])
        yield header, numbers, positions


def _force_blocks(lines: List[str]) -> Iterator[Tuple[Tuple[int, ...], np.ndarray]]:
    for _header, rows in _iter_tables(lines, FORCES_HEADERS, _FORCE_ROW, 1):
        numbers = tuple(int(row[1]) for row in rows)
        forces = np.array([[_to_float(v) for v in row[2:5]] for row in rows])
        yield numbers, forces


def iter_orientation_blocks(text: str) -> Iterator[Tuple[Tuple[int, ...], np.ndarray]]:
    """Lazily yield (atomic_numbers, positions) for each orientation table."""
    for _header, numbers, positions in _orientation_blocks(text.splitlines()):
        yield numbers, positions


def _final_geometry(lines: List[str], prefer_input_orientation: bool):
    """Last orientation table, or the last input orientation table if preferred and present."""
    last = last_input = None
    for header, numbers, positions in _orientation_blocks(lines):
        last = (numbers, positions)
        if header == INPUT_ORIENTATION:
            last_input = last
    if prefer_input_orientation and last_input is not None:
        return last_input
    return last


def _last(iterator):
    last = None
    for item in iterator:
        last = item
    return last


def _scf_energy(lines: List[str]) -> Optional[float]:
    energy = None
    for line in lines:
        match = _SCF_DONE.match(line)
        if match:
            energy = _to_float(match.group(1))
    return energy


def parse_scf_energy(text: str) -> Optional[float]:
    """Return the last SCF energy (Hartree) or None."""
    return _scf_energy(text.splitlines())


def parse_output(text: str, require_forces: bool = False,
                 prefer_input_orientation: bool = False) -> AtomSnapshot:
    """
    Parse engine output into an AtomSnapshot.

    Engines may print several orientation tables per run (optimizations,
    symmetry passes); only the last one is kept.

    Args:
        text: Raw engine output
        require_forces: Fail if no force table is present
        prefer_input_orientation: Take the geometry from the last "Input
            orientation" table when there is one. Forces are printed in that
            frame, so a geometry used together with them must come from it.

    Returns:
        Snapshot built from the last orientation and force tables
    """
    lines = text.splitlines()

    geometry = _final_geometry(lines, prefer_input_orientation)
    if geometry is None:
        raise ParseError("No 'Standard orientation' coordinate block found in engine output",
                         component="OutputParser")
    atomic_numbers, positions = geometry

    forces = None
    force_block = _last(_force_blocks(lines))
    if force_block is not None:
        force_numbers, forces = force_block
        if len(force_numbers) != len(atomic_numbers):
            raise ParseError(
                f"Force block has {len(force_numbers)} atoms but the coordinate block "
                f"has {len(atomic_numbers)}", component="OutputParser")
        if force_numbers != atomic_numbers:
            raise ParseError("Force block atom order differs from the coordinate block",
                             component="OutputParser")
    elif require_forces:
        raise ParseError("No 'Forces (Hartrees/Bohr)' block found in engine output",
                         component="OutputParser")

    return AtomSnapshot(
        atomic_numbers=atomic_numbers,
        positions=positions,
        forces=forces,
        energy=_scf_energy(lines),
    )


def parse_output_file(path, require_forces: bool = False,
                      prefer_input_orientation: bool = False) -> AtomSnapshot:
    """Read ``path`` and parse it with :func:`parse_output`."""
    text = Path(path).read_text(errors="replace")
    return parse_output(text, require_forces=require_forces,
                        prefer_input_orientation=prefer_input_orientation)
