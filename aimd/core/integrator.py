"""
Born-Oppenheimer molecular dynamics integrator.
"""

import numpy as np
from typing import Callable

from .system import System
from ..exceptions import ConfigError


ForceProvider = Callable[[System], np.ndarray]


class BornOppenheimerIntegrator:
    """
    Velocity Verlet integrator with the force evaluation split out.

    One step is two phases with the engine call in between:

        1. v(t + dt/2) = v(t) + (dt/2) * F(t) / m
           r(t + dt)   = r(t) + dt * v(t + dt/2)
        2. (engine computes F(t + dt) at r(t + dt))
           v(t + dt)   = v(t + dt/2) + (dt/2) * F(t + dt) / m

    Frozen atoms keep their position and have exactly zero velocity after
    both phases, whatever force the engine reports for them.

    Works in Angstrom, fs, amu and amu*Angstrom/fs^2; see ``aimd.core.units``.
    """

    def __init__(self, timestep: float = 1.0):
        """
        Initialize integrator.

        Args:
            timestep: Time step in femtoseconds
        """
        if not timestep > 0:
            raise ConfigError(f"Time step must be positive, got {timestep}")
        self.timestep = float(timestep)

    def validate(self, system: System) -> None:
        """Reject systems with non-positive masses before integrating."""
        bad = np.flatnonzero(~(system.masses > 0))
        if bad.size:
            raise ConfigError(
                f"Atoms {[int(i) + 1 for i in bad]} have non-positive mass")

    def _accelerations(self, system: System) -> np.ndarray:
        return system.forces / system.masses[:, np.newaxis]

    def half_kick_drift(self, system: System) -> None:
        """Phase 1: half-step velocity update followed by full-step drift."""
        dt = self.timestep
        mobile = ~system.frozen

        velocities = system.velocities + 0.5 * dt * self._accelerations(system)
        velocities[~mobile] = 0.0

        positions = system.positions.copy()
        positions[mobile] = positions[mobile] + dt * velocities[mobile]

        system.velocities = velocities
        system.positions = positions

    def finish_kick(self, system: System, new_forces: np.ndarray) -> None:
        """
        Phase 2: store F(t + dt) and complete the velocity update.

        Args:
            system: System after :meth:`half_kick_drift`
            new_forces: Forces at the new geometry (amu*Angstrom/fs^2)
        """
        dt = self.timestep
        system.update_forces(new_forces)

        velocities = system.velocities + 0.5 * dt * self._accelerations(system)
        velocities[system.frozen] = 0.0
        system.velocities = velocities

        system.step += 1
        system.time += dt

    def step(self, system: System, force_provider: ForceProvider) -> System:
        """
        Perform one full step, calling ``force_provider`` at the new geometry.

        Args:
            system: Molecular system
            force_provider: Returns forces (amu*Angstrom/fs^2) for a system

        Returns:
            The updated system
        """
        self.half_kick_drift(system)
        self.finish_kick(system, force_provider(system))
        return system

    def __repr__(self) -> str:
        return f"BornOppenheimerIntegrator(dt={self.timestep} fs)"
