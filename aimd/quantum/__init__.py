"""Quantum chemistry engine interfaces for molecular dynamics."""

from .calculator import QuantumEngine
from .gaussian_interface import GaussianEngine
from .stub_engine import StubEngine
from .input_writer import render_input_deck, write_input_deck
from .output_parser import AtomSnapshot, parse_output, parse_output_file

__all__ = [
    "QuantumEngine", "GaussianEngine", "StubEngine",
    "render_input_deck", "write_input_deck",
    "AtomSnapshot", "parse_output", "parse_output_file",
]
