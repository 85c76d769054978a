import os

import numpy as np
import pytest

from aimd.core.system import System
from aimd.exceptions import ConfigError
from aimd.utils.results_utils import LOCK_NAME, acquire_run_lock, release_run_lock, run_lock
from aimd.utils.trajectory import TrajectoryAnalyzer, TrajectoryReporter, load_energy_log

from conftest import WATER_NUMBERS, WATER_POSITIONS


@pytest.fixture
def system():
    s = System(WATER_NUMBERS, WATER_POSITIONS, velocities=np.full((3, 3), 0.001))
    s.potential_energy = -76.4
    return s


def report_steps(reporter, system, n):
    for _ in range(n):
        reporter.report(system)
        system.step += 1
        system.time += 0.5
        system.positions = system.positions + 0.01


def test_reporter_writes_all_files(tmp_path, system):
    reporter = TrajectoryReporter(tmp_path)
    reporter.start()
    report_steps(reporter, system, 3)

    energies = load_energy_log(tmp_path / "energy.txt")
    assert np.allclose(energies['time'], [0.0, 0.5, 1.0])
    assert np.allclose(energies['total_energy'],
                       energies['potential_energy'] + energies['kinetic_energy'])
    assert len((tmp_path / "velocity.txt").read_text().splitlines()) == 1 + 3 * 3
    assert len((tmp_path / "kinetic.txt").read_text().splitlines()) == 1 + 3 * 3

    analyzer = TrajectoryAnalyzer.from_run_dir(tmp_path)
    assert len(analyzer.positions) == 3
    assert analyzer.calculate_rmsd()[-1] == pytest.approx(np.sqrt(3 * 0.02 ** 2))


def test_fresh_start_truncates_and_resume_appends(tmp_path, system):
    reporter = TrajectoryReporter(tmp_path)
    reporter.start()
    report_steps(reporter, system, 2)

    reporter.start(resume=True)
    report_steps(reporter, system, 1)
    assert load_energy_log(tmp_path / "energy.txt")['time'].size == 3

    reporter.start()
    assert load_energy_log(tmp_path / "energy.txt")['time'].size == 0


def test_energy_drift_and_plot(tmp_path, system):
    reporter = TrajectoryReporter(tmp_path)
    reporter.start()
    report_steps(reporter, system, 2)
    system.potential_energy = -76.39
    reporter.report(system)

    analyzer = TrajectoryAnalyzer.from_run_dir(tmp_path)
    assert analyzer.energy_drift() == pytest.approx(0.01 * 27.211386, rel=1e-4)
    path = analyzer.plot_energies(work_dir=tmp_path)
    assert path.exists()


def test_lock_excludes_live_owner(tmp_path):
    (tmp_path / LOCK_NAME).write_text(f"{os.getppid()} 2026-01-01T00:00:00")
    with pytest.raises(ConfigError):
        acquire_run_lock(tmp_path)


def test_stale_lock_is_replaced(tmp_path):
    # PIDs are bounded well below this on every supported platform
    (tmp_path / LOCK_NAME).write_text("999999999 2026-01-01T00:00:00")
    lock = acquire_run_lock(tmp_path)
    assert lock.read_text().split()[0] == str(os.getpid())
    release_run_lock(lock)
    assert not lock.exists()


def test_run_lock_context(tmp_path):
    with run_lock(tmp_path) as lock:
        assert lock.exists()
    assert not lock.exists()
