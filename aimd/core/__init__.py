"""Core molecular dynamics simulation modules."""

from .system import System
from .integrator import BornOppenheimerIntegrator
from .atoms import Atom

__all__ = ["System", "BornOppenheimerIntegrator", "Atom"]
