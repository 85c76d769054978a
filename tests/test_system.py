import numpy as np
import pytest

from aimd.core.atoms import Atom, element_mass, element_number, element_symbol
from aimd.core.system import System
from aimd.exceptions import ConfigError

from conftest import WATER_NUMBERS, WATER_POSITIONS


def test_element_lookup():
    assert element_symbol(8) == "O"
    assert element_number("H") == 1
    assert element_mass(1) == pytest.approx(1.008, abs=1e-3)
    with pytest.raises(ConfigError):
        element_symbol(0)


def test_freeze_out_of_range():
    with pytest.raises(ConfigError):
        System(WATER_NUMBERS, WATER_POSITIONS, frozen=[4])


def test_freeze_zeroes_velocities():
    system = System(WATER_NUMBERS, WATER_POSITIONS, velocities=np.ones((3, 3)))
    system.freeze([2, 3])
    assert system.frozen_indices == [2, 3]
    assert np.array_equal(system.velocities[1:], np.zeros((2, 3)))


def test_initial_velocities_are_seeded_and_momentum_free():
    a = System(WATER_NUMBERS, WATER_POSITIONS, frozen=[1])
    b = System(WATER_NUMBERS, WATER_POSITIONS, frozen=[1])
    a.initialize_velocities(300.0, seed=7)
    b.initialize_velocities(300.0, seed=7)

    assert np.array_equal(a.velocities, b.velocities)
    assert np.array_equal(a.velocities[0], np.zeros(3))
    momentum = np.sum(a.masses[1:, np.newaxis] * a.velocities[1:], axis=0)
    assert np.allclose(momentum, 0.0)
    assert a.get_temperature() > 0.0


def test_atom_records_round_trip():
    system = System(WATER_NUMBERS, WATER_POSITIONS, frozen=[2], step=3, time=1.5)
    rebuilt = System.from_atoms([Atom.from_record(atom.to_record()) for atom in system],
                                step=system.step, time=system.time)
    assert np.array_equal(rebuilt.positions, system.positions)
    assert rebuilt.frozen_indices == [2]
    assert rebuilt.symbols == ["O", "H", "H"]


def test_ase_view():
    atoms = System(WATER_NUMBERS, WATER_POSITIONS).atoms
    assert atoms.get_chemical_formula() == "H2O"
