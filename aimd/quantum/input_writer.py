"""
Gaussian input deck generation.
"""

import os
import tempfile
from pathlib import Path
from typing import List, Tuple

import numpy as np

from ..config import Config
from ..core import units
from ..core.atoms import element_number
from ..core.system import System
from ..exceptions import ParseError


def render_input_deck(system: System, config: Config) -> str:
    """
    Render the Gaussian input deck for the current geometry.

    Frozen atoms are written like any other atom; freezing is applied by the
    integrator, the engine always computes forces for every atom.

    Args:
        system: Current molecular state
        config: Simulation configuration

    Returns:
        Input deck text
    """
    lines = [f"%mem={config.mem}", f"%cpu={config.cpu}"]
    if config.gpu:
        lines.append(f"%gpucpu={config.gpu}")
    lines.append(f"%chk={config.checkpoint}")
    lines.append(f"# {config.key_words.strip()}")
    lines.append("")
    lines.append(config.title.strip())
    lines.append("")
    lines.append(f"{system.charge} {system.multiplicity}")

    coordinates = units.positions_to_engine(system.positions)
    for symbol, pos in zip(system.symbols, coordinates):
        lines.append(f"{symbol:<2} {pos[0]:16.8f} {pos[1]:16.8f} {pos[2]:16.8f}")

    # Gaussian requires a blank line after the molecule specification
    lines.append("")
    lines.append("")
    return "\n".join(lines)


def write_input_deck(system: System, config: Config, path=None) -> Path:
    """
    Write the input deck to ``path`` (default ``config.input_path``).

    The file is replaced atomically so the engine never sees a partial deck.
    """
    path = Path(path) if path is not None else config.input_path
    path.parent.mkdir(parents=True, exist_ok=True)

    text = render_input_deck(system, config)
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w") as f:
            f.write(text)
        os.replace(tmp_name, path)
    finally:
        if os.path.exists(tmp_name):
            os.remove(tmp_name)
    return path


def read_input_deck(text: str) -> Tuple[int, int, List[int], np.ndarray]:
    """
    Parse the molecule specification of an input deck.

    Args:
        text: Input deck text

    Returns:
        (charge, multiplicity, atomic_numbers, positions in Angstrom)
    """
    lines = text.splitlines()

    # Sections are separated by blank lines: route, title, molecule
    try:
        route = next(i for i, line in enumerate(lines) if line.lstrip().startswith("#"))
        title_end = lines.index("", lines.index("", route) + 1)
    except (StopIteration, ValueError):
        raise ParseError("Input deck has no route/title/molecule sections",
                         component="InputWriter")

    molecule = lines[title_end + 1:]
    if not molecule:
        raise ParseError("Input deck has no charge/multiplicity line", component="InputWriter")
    try:
        charge, multiplicity = (int(v) for v in molecule[0].split()[:2])
    except ValueError:
        raise ParseError(f"Invalid charge/multiplicity line {molecule[0]!r}",
                         component="InputWriter")

    numbers = []
    positions = []
    for line in molecule[1:]:
        if not line.strip():
            break
        fields = line.split()
        if len(fields) < 4:
            raise ParseError(f"Invalid atom line {line!r}", component="InputWriter")
        numbers.append(element_number(fields[0]))
        positions.append([float(v) for v in fields[1:4]])

    if not numbers:
        raise ParseError("Input deck has no atoms", component="InputWriter")
    return charge, multiplicity, numbers, units.positions_from_engine(positions)
