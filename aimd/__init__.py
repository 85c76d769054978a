"""
Ab Initio Molecular Dynamics (AIMD) Package

Born-Oppenheimer molecular dynamics driven by an external quantum chemistry
engine (Gaussian), with atom freezing, per-step reports and checkpoint
restart.
"""

__version__ = "0.1.0"
__author__ = "AIMD Developer"

from .config import Config, load_config, parse_freeze_range
from .core.system import System
from .core.integrator import BornOppenheimerIntegrator
from .quantum.calculator import QuantumEngine
from .quantum.gaussian_interface import GaussianEngine
from .driver import Driver, DriverState, RunContext, run_simulation
from .utils.trajectory import TrajectoryAnalyzer

__all__ = [
    "Config",
    "load_config",
    "parse_freeze_range",
    "System",
    "BornOppenheimerIntegrator",
    "QuantumEngine",
    "GaussianEngine",
    "Driver",
    "DriverState",
    "RunContext",
    "run_simulation",
    "TrajectoryAnalyzer",
]
