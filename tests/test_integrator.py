import numpy as np
import pytest

from aimd.core import units
from aimd.core.integrator import BornOppenheimerIntegrator
from aimd.core.system import System
from aimd.exceptions import ConfigError

from conftest import WATER_NUMBERS, WATER_POSITIONS


def constant_force(value):
    def provider(system):
        return np.full((len(system), 3), value)
    return provider


def test_rejects_non_positive_timestep():
    with pytest.raises(ConfigError):
        BornOppenheimerIntegrator(0.0)


def test_constant_force_matches_closed_form():
    system = System([1], [[0.0, 0.0, 0.0]])
    force = 0.01
    system.update_forces(np.full((1, 3), force))
    integrator = BornOppenheimerIntegrator(0.5)

    for _ in range(10):
        integrator.step(system, constant_force(force))

    t = system.time
    a = force / system.masses[0]
    assert system.step == 10
    assert t == pytest.approx(5.0)
    assert np.allclose(system.positions, 0.5 * a * t ** 2)
    assert np.allclose(system.velocities, a * t)


def test_frozen_atoms_never_move():
    system = System(WATER_NUMBERS, WATER_POSITIONS, velocities=np.ones((3, 3)) * 0.01,
                    frozen=[1])
    integrator = BornOppenheimerIntegrator(1.0)
    system.update_forces(np.full((3, 3), 0.05))

    for _ in range(5):
        integrator.step(system, constant_force(0.05))
        assert np.array_equal(system.positions[0], WATER_POSITIONS[0])
        assert np.array_equal(system.velocities[0], np.zeros(3))

    assert not np.allclose(system.positions[1:], WATER_POSITIONS[1:])


def test_half_kick_drift_leaves_step_counter():
    system = System(WATER_NUMBERS, WATER_POSITIONS)
    integrator = BornOppenheimerIntegrator(1.0)
    integrator.half_kick_drift(system)
    assert system.step == 0
    integrator.finish_kick(system, np.zeros((3, 3)))
    assert system.step == 1
    assert system.time == 1.0


def test_energy_is_conserved_in_harmonic_well():
    k = 0.02  # amu/fs^2
    system = System([1], [[0.3, 0.0, 0.0]])
    system.update_forces(-k * system.positions)
    integrator = BornOppenheimerIntegrator(0.1)

    def energy(s):
        return 0.5 * k * np.sum(s.positions ** 2) * units.INTERNAL_ENERGY_TO_EV + s.get_kinetic_energy()

    start = energy(system)
    for _ in range(200):
        integrator.step(system, lambda s: -k * s.positions)
    assert energy(system) == pytest.approx(start, rel=1e-3)


def test_validate_rejects_zero_mass():
    system = System(WATER_NUMBERS, WATER_POSITIONS)
    system.masses[1] = 0.0
    with pytest.raises(ConfigError):
        BornOppenheimerIntegrator(1.0).validate(system)
