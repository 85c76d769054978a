import json
import logging

import numpy as np
import pytest

from aimd.driver import Driver, DriverState, RunContext, run_simulation
from aimd.exceptions import (
    ConfigError,
    DeserializationError,
    EngineFailure,
    ParseError,
    RestartIncompatible,
    SimulationFailed,
)
from aimd.quantum.stub_engine import (
    StubEngine,
    format_force_block,
    format_orientation_block,
    harmonic_forces,
    render_output,
)
from aimd.utils.checkpoint import CheckpointManager
from aimd.utils.results_utils import LOCK_NAME

from conftest import WATER_NUMBERS, WATER_POSITIONS

PULL = harmonic_forces(k=0.05, center=(0.0, 0.1, 0.0))


class FailingAfter(StubEngine):
    """Stub that starts failing once ``good_calls`` calls have succeeded."""

    def __init__(self, good_calls, **kwargs):
        super().__init__(**kwargs)
        self.good_calls = good_calls

    def _execute(self, input_path):
        if self.calls > self.good_calls:
            raise EngineFailure("segmentation violation", component="EngineRunner")
        return super()._execute(input_path)


class StoppingEngine(StubEngine):
    """Stub that asks its driver to stop during the given call."""

    def __init__(self, stop_on_call, **kwargs):
        super().__init__(**kwargs)
        self.stop_on_call = stop_on_call
        self.driver = None

    def _execute(self, input_path):
        if self.calls == self.stop_on_call:
            self.driver.request_stop()
        return super()._execute(input_path)


class ReorderingEngine(StubEngine):
    def _execute(self, input_path):
        super()._execute(input_path)
        return render_output(WATER_NUMBERS[::-1], WATER_POSITIONS, forces=np.zeros((3, 3)))


def test_zero_force_frozen_scenario(make_config, seed_file):
    config = make_config(time_step=0.5, num_steps=4, freeze="1-2")
    result = run_simulation(config, seed_file=seed_file, engine=StubEngine())

    assert result.state is DriverState.DONE
    assert result.system.step == 4
    assert result.system.time == pytest.approx(2.0)
    assert np.allclose(result.system.positions, WATER_POSITIONS, atol=1e-6)
    assert np.array_equal(result.system.velocities, np.zeros((3, 3)))
    # One evaluation at the seed geometry plus one per step
    assert result.engine_calls == 5


def test_state_sequence(config, seed_file):
    result = run_simulation(config.with_overrides(num_steps=1), seed_file=seed_file,
                            engine=StubEngine())
    step = [DriverState.INTEGRATE, DriverState.WRITE_INPUT, DriverState.RUN_ENGINE,
            DriverState.PARSE_OUTPUT, DriverState.INTEGRATE, DriverState.CHECKPOINT]
    assert result.history[:2] == [DriverState.INIT, DriverState.PARSE_SEED]
    assert result.history[-7:] == step + [DriverState.DONE]


def test_seed_forces_skip_initial_evaluation(config, tmp_path):
    seed = tmp_path / "seed_forces.log"
    seed.write_text(render_output(WATER_NUMBERS, WATER_POSITIONS,
                                  forces=PULL(WATER_NUMBERS, WATER_POSITIONS), energy=-76.4))
    result = run_simulation(config, seed_file=seed, engine=StubEngine(force_fn=PULL))
    assert result.engine_calls == config.num_steps


def test_deterministic(make_config, seed_file, tmp_path):
    results = []
    engines = []
    for name in ("a", "b"):
        engine = StubEngine(force_fn=PULL)
        config = make_config(time_step=0.5, num_steps=5, work_dir=str(tmp_path / name))
        results.append(run_simulation(config, seed_file=seed_file, engine=engine))
        engines.append(engine)

    assert np.array_equal(results[0].system.positions, results[1].system.positions)
    assert np.array_equal(results[0].system.velocities, results[1].system.velocities)
    assert engines[0].decks == engines[1].decks
    assert not np.allclose(results[0].system.positions, WATER_POSITIONS)


def test_restart_continuity(make_config, seed_file, tmp_path):
    straight = run_simulation(
        make_config(time_step=0.5, num_steps=6, work_dir=str(tmp_path / "straight")),
        seed_file=seed_file, engine=StubEngine(force_fn=PULL))

    split_config = make_config(time_step=0.5, num_steps=3, work_dir=str(tmp_path / "split"))
    first = run_simulation(split_config, seed_file=seed_file, engine=StubEngine(force_fn=PULL))
    assert first.system.step == 3

    resumed = run_simulation(split_config.with_overrides(num_steps=6, restart=True),
                             seed_file=seed_file, engine=StubEngine(force_fn=PULL))
    assert resumed.steps_run == 3
    assert resumed.engine_calls == 3
    assert resumed.system.step == 6
    assert resumed.system.time == pytest.approx(straight.system.time)
    assert np.allclose(resumed.system.positions, straight.system.positions, atol=1e-12)
    assert np.allclose(resumed.system.velocities, straight.system.velocities, atol=1e-12)


def test_restart_rejects_changed_configuration(make_config, seed_file):
    config = make_config(time_step=0.5, num_steps=2)
    run_simulation(config, seed_file=seed_file, engine=StubEngine())

    changed = config.with_overrides(time_step=1.0, restart=True, num_steps=4)
    with pytest.raises(SimulationFailed) as excinfo:
        run_simulation(changed, seed_file=seed_file, engine=StubEngine())
    assert isinstance(excinfo.value.cause, RestartIncompatible)
    assert excinfo.value.component == "CheckpointManager"


def test_restart_rejects_different_molecule(make_config, seed_file, tmp_path):
    config = make_config(time_step=0.5, num_steps=2)
    run_simulation(config, seed_file=seed_file, engine=StubEngine())

    other = tmp_path / "methane.log"
    other.write_text(render_output((6, 1, 1, 1, 1), np.eye(5, 3)))
    with pytest.raises(SimulationFailed) as excinfo:
        run_simulation(config.with_overrides(restart=True, num_steps=4), seed_file=other,
                       engine=StubEngine())
    assert isinstance(excinfo.value.cause, RestartIncompatible)


def test_restart_with_corrupt_checkpoint(config, seed_file):
    config.save_path.write_text("{")
    with pytest.raises(SimulationFailed) as excinfo:
        run_simulation(config.with_overrides(restart=True), seed_file=seed_file,
                       engine=StubEngine())
    assert isinstance(excinfo.value.cause, DeserializationError)


def test_restart_without_checkpoint(config, seed_file):
    with pytest.raises(SimulationFailed) as excinfo:
        run_simulation(config.with_overrides(restart=True), seed_file=seed_file,
                       engine=StubEngine())
    assert isinstance(excinfo.value.cause, FileNotFoundError)


def test_retries_recover_from_transient_failures(config, seed_file, caplog):
    engine = StubEngine(fail_times=2)
    with caplog.at_level(logging.WARNING, logger="aimd"):
        result = run_simulation(config, seed_file=seed_file, engine=engine)
    assert result.state is DriverState.DONE
    assert engine.calls == 2 + 1 + config.num_steps
    assert "attempt 2/3" in caplog.text


def test_retries_exhausted_keeps_last_checkpoint(make_config, seed_file):
    config = make_config(time_step=0.5, num_steps=6, max_retries=1)
    engine = FailingAfter(good_calls=3, force_fn=PULL)

    with pytest.raises(SimulationFailed) as excinfo:
        run_simulation(config, seed_file=seed_file, engine=engine)

    error = excinfo.value
    assert isinstance(error.cause, EngineFailure)
    assert error.__cause__ is error.cause
    assert error.step == 3
    assert error.component == "EngineRunner"
    # Seed evaluation plus steps 1-2 succeeded; step 3 was tried twice
    assert engine.calls == 5
    assert CheckpointManager(config.save_path).load().step == 2


def test_atom_order_mismatch_fails(config, seed_file):
    with pytest.raises(SimulationFailed) as excinfo:
        run_simulation(config, seed_file=seed_file, engine=ReorderingEngine())
    assert isinstance(excinfo.value.cause, ParseError)
    assert excinfo.value.component == "OutputParser"


def test_missing_seed_geometry(config, tmp_path):
    seed = tmp_path / "empty.log"
    seed.write_text(" Normal termination of Gaussian 16.\n")
    with pytest.raises(SimulationFailed) as excinfo:
        run_simulation(config, seed_file=seed, engine=StubEngine())
    assert isinstance(excinfo.value.cause, ParseError)
    assert not config.save_path.exists()


def test_frozen_index_beyond_molecule(make_config, seed_file):
    with pytest.raises(SimulationFailed) as excinfo:
        run_simulation(make_config(freeze="2-5", num_steps=1), seed_file=seed_file,
                       engine=StubEngine())
    assert isinstance(excinfo.value.cause, ConfigError)


def test_stop_request_honored_at_step_boundary(config, seed_file):
    engine = StoppingEngine(stop_on_call=3, force_fn=PULL)
    driver = Driver(RunContext.create(config, seed_file=seed_file, engine=engine))
    engine.driver = driver

    result = driver.run()

    assert result.state is DriverState.STOPPED
    assert result.system.step == 2
    assert CheckpointManager(config.save_path).load().step == 2


def test_initial_temperature(make_config, seed_file):
    config = make_config(num_steps=0, initial_temperature=300.0, velocity_seed=11, freeze="1")
    result = run_simulation(config, seed_file=seed_file, engine=StubEngine())
    assert result.state is DriverState.DONE
    assert np.array_equal(result.system.velocities[0], np.zeros(3))
    assert np.any(result.system.velocities[1:] != 0.0)


def test_concurrent_driver_is_locked_out(config, seed_file, tmp_path):
    import os
    (tmp_path / LOCK_NAME).write_text(f"{os.getppid()} 2026-01-01T00:00:00")
    with pytest.raises(SimulationFailed) as excinfo:
        run_simulation(config, seed_file=seed_file, engine=StubEngine())
    assert isinstance(excinfo.value.cause, ConfigError)
    assert (tmp_path / LOCK_NAME).exists()


def test_lock_released_after_run(config, seed_file, tmp_path):
    run_simulation(config, seed_file=seed_file, engine=StubEngine())
    assert not (tmp_path / LOCK_NAME).exists()


def test_restart_with_gapped_atom_indices(config, seed_file):
    run_simulation(config.with_overrides(num_steps=1), seed_file=seed_file, engine=StubEngine())
    data = json.loads(config.save_path.read_text())
    data["atoms"][2]["index"] = 2
    config.save_path.write_text(json.dumps(data))

    with pytest.raises(SimulationFailed) as excinfo:
        run_simulation(config.with_overrides(restart=True), seed_file=seed_file,
                       engine=StubEngine())
    assert isinstance(excinfo.value.cause, DeserializationError)


def test_seed_geometry_matches_force_frame(config, tmp_path):
    standard_frame = WATER_POSITIONS[:, [2, 0, 1]]
    forces = PULL(WATER_NUMBERS, WATER_POSITIONS)
    lines = (format_orientation_block(WATER_NUMBERS, WATER_POSITIONS, header="Input orientation:")
             + format_orientation_block(WATER_NUMBERS, standard_frame)
             + format_force_block(WATER_NUMBERS, forces))
    seed = tmp_path / "seed_both.log"
    seed.write_text("\n".join(lines) + "\n")

    result = run_simulation(config.with_overrides(num_steps=0), seed_file=seed,
                            engine=StubEngine(force_fn=PULL))
    assert result.engine_calls == 0
    assert np.allclose(result.system.positions, WATER_POSITIONS, atol=1e-6)
