"""
AIMD simulation driver.

Ties the integrator, the input deck writer, the quantum engine, the output
parser and the checkpoint manager together into one restartable loop:

    INIT -> LOAD_CHECKPOINT | PARSE_SEED
         -> (INTEGRATE -> WRITE_INPUT -> RUN_ENGINE -> PARSE_OUTPUT
             -> INTEGRATE -> CHECKPOINT)*
         -> DONE | STOPPED | FAILED
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import List, Optional

from .config import Config
from .core import units
from .core.integrator import BornOppenheimerIntegrator
from .core.system import System
from .exceptions import (
    AIMDError,
    EngineFailure,
    ParseError,
    RestartIncompatible,
    SimulationFailed,
)
from .quantum.calculator import QuantumEngine
from .quantum.gaussian_interface import GaussianEngine
from .quantum.input_writer import write_input_deck
from .quantum.output_parser import AtomSnapshot, parse_output, parse_output_file
from .utils.checkpoint import CheckpointManager
from .utils.results_utils import acquire_run_lock, ensure_run_dir, release_run_lock
from .utils.trajectory import TrajectoryReporter


class DriverState(Enum):
    INIT = "init"
    LOAD_CHECKPOINT = "load_checkpoint"
    PARSE_SEED = "parse_seed"
    INTEGRATE = "integrate"
    WRITE_INPUT = "write_input"
    RUN_ENGINE = "run_engine"
    PARSE_OUTPUT = "parse_output"
    CHECKPOINT = "checkpoint"
    DONE = "done"
    STOPPED = "stopped"
    FAILED = "failed"


# Component blamed when a state fails without naming one itself
STATE_COMPONENTS = {
    DriverState.INIT: "Config",
    DriverState.LOAD_CHECKPOINT: "CheckpointManager",
    DriverState.PARSE_SEED: "OutputParser",
    DriverState.INTEGRATE: "Integrator",
    DriverState.WRITE_INPUT: "InputWriter",
    DriverState.RUN_ENGINE: "EngineRunner",
    DriverState.PARSE_OUTPUT: "OutputParser",
    DriverState.CHECKPOINT: "CheckpointManager",
}


@dataclass
class RunContext:
    """Everything one run needs, passed explicitly instead of via globals."""
    config: Config
    engine: QuantumEngine
    checkpoints: CheckpointManager
    seed_file: Optional[Path] = None
    reporter: Optional[TrajectoryReporter] = None
    logger: logging.Logger = field(default_factory=lambda: logging.getLogger(__name__))
    use_lock: bool = True

    @classmethod
    def create(cls, config: Config, seed_file=None,
               engine: Optional[QuantumEngine] = None,
               reporting: bool = True,
               logger: Optional[logging.Logger] = None,
               use_lock: bool = True) -> "RunContext":
        """
        Build a context with the default collaborators for ``config``.

        Args:
            config: Validated configuration
            seed_file: Engine output holding the starting geometry
            engine: Engine to use (default: GaussianEngine from config)
            reporting: Write trajectory/energy report files
            logger: Logger for progress messages
            use_lock: Hold the run directory lock while running
        """
        work_dir = ensure_run_dir(config.work_dir).resolve()
        if engine is None:
            engine = GaussianEngine(
                command=config.engine_command,
                output_path=config.output_path.resolve(),
                timeout=config.engine_timeout,
                cwd=work_dir,
            )
        return cls(
            config=config,
            engine=engine,
            checkpoints=CheckpointManager(config.save_path),
            seed_file=Path(seed_file) if seed_file is not None else None,
            reporter=TrajectoryReporter(work_dir) if reporting else None,
            logger=logger or logging.getLogger(__name__),
            use_lock=use_lock,
        )


@dataclass
class RunResult:
    system: System
    state: DriverState
    steps_run: int
    engine_calls: int
    history: List[DriverState]


class Driver:
    """
    Runs one AIMD trajectory.

    Each loop iteration performs exactly one velocity Verlet step:
    half-kick and drift, deck for the new geometry, engine call, force
    parse, final half-kick, checkpoint. A stop request is honored only
    between steps, so the checkpoint on disk always describes a completed
    step.
    """

    def __init__(self, context: RunContext):
        self.context = context
        self.config = context.config
        self.logger = context.logger
        self.integrator = BornOppenheimerIntegrator(self.config.time_step)
        self.system: Optional[System] = None
        self.state = DriverState.INIT
        self.history: List[DriverState] = [DriverState.INIT]
        self._stop = threading.Event()
        self._fingerprint = self.config.fingerprint()
        self._step_in_progress = 0

    # ------------------------------------------------------------------ #
    #  Control
    # ------------------------------------------------------------------ #

    def request_stop(self) -> None:
        """Ask the driver to halt at the next step boundary."""
        self._stop.set()

    @property
    def stop_requested(self) -> bool:
        return self._stop.is_set()

    def _transition(self, state: DriverState) -> None:
        self.state = state
        self.history.append(state)
        self.logger.debug("step %d -> %s", self._step_in_progress, state.value)

    # ------------------------------------------------------------------ #
    #  Run
    # ------------------------------------------------------------------ #

    def run(self) -> RunResult:
        """
        Run until the configured step count is reached or a stop is requested.

        Raises:
            SimulationFailed: On any fatal error; the cause is chained
        """
        if not self.context.use_lock:
            return self._run()

        try:
            lock_path = acquire_run_lock(self.config.work_dir)
        except (AIMDError, OSError) as e:
            self._fail(e)
        try:
            return self._run()
        finally:
            release_run_lock(lock_path)

    def _run(self) -> RunResult:
        steps_run = 0
        calls_before = self.context.engine.calls
        try:
            self.logger.info("step\ttime_fs\tPE_eV\tKE_eV\tEtot_eV\tT_K\twall_s")
            if self.config.restart:
                self._transition(DriverState.LOAD_CHECKPOINT)
                system = self._load_checkpoint()
            else:
                self._transition(DriverState.PARSE_SEED)
                system = self._seed_system()
            self.system = system

            while system.step < self.config.num_steps:
                if self._stop.is_set():
                    self._transition(DriverState.STOPPED)
                    self.logger.warning("Stop requested; halted after step %d", system.step)
                    break
                self._advance(system)
                steps_run += 1
            else:
                self._transition(DriverState.DONE)
                self.logger.info("Done. %d steps, t = %.2f fs", system.step, system.time)
        except (AIMDError, OSError) as e:
            self._fail(e)

        return RunResult(
            system=system,
            state=self.state,
            steps_run=steps_run,
            engine_calls=self.context.engine.calls - calls_before,
            history=list(self.history),
        )

    def _fail(self, error: BaseException) -> None:
        failed_state = self.state
        component = getattr(error, "component", None) or STATE_COMPONENTS.get(
            failed_state, "Driver")
        step = self._step_in_progress
        self._transition(DriverState.FAILED)
        self.logger.error("Step %d failed in %s (%s): %s", step, component,
                          type(error).__name__, error)
        saved = self.context.checkpoints.path
        if saved.exists():
            self.logger.error("Last good checkpoint kept at %s", saved)
        raise SimulationFailed(error, step=step, component=component) from error

    # ------------------------------------------------------------------ #
    #  Start-up
    # ------------------------------------------------------------------ #

    def _seed_system(self) -> System:
        """Build the starting system from the seed output file."""
        config = self.config
        if self.context.seed_file is None:
            raise ParseError("No seed output file given", component="OutputParser")

        # Seed forces are in the input frame; take the geometry from the same frame
        snapshot = parse_output_file(self.context.seed_file, prefer_input_orientation=True)
        system = System(
            atomic_numbers=snapshot.atomic_numbers,
            positions=units.positions_from_engine(snapshot.positions),
            frozen=config.frozen,
            charge=config.charge,
            multiplicity=config.multiplicity,
        )
        self.integrator.validate(system)
        self.logger.info("Seed geometry: %d atoms from %s", len(system), self.context.seed_file)
        for index in system.frozen_indices:
            self.logger.info("Atom %d (%s) is frozen", index, system.symbols[index - 1])

        if config.initial_temperature:
            system.initialize_velocities(config.initial_temperature, config.velocity_seed)
            self.logger.info("Initial velocities drawn at %.1f K (T = %.1f K)",
                             config.initial_temperature, system.get_temperature())

        if snapshot.has_forces:
            self._apply_snapshot(system, snapshot)
        else:
            # Forces at the seed geometry are needed for the first half-kick
            self._apply_snapshot(system, self._evaluate(system))

        if self.context.reporter is not None:
            self.context.reporter.start(resume=False)
        self._transition(DriverState.CHECKPOINT)
        self.context.checkpoints.save(system, system.step, self._fingerprint)
        self._report(system, wall=0.0)
        return system

    def _load_checkpoint(self) -> System:
        """Resume from the checkpoint file."""
        manager = self.context.checkpoints
        checkpoint = manager.load()

        atom_count = None
        seed_numbers = None
        seed_file = self.context.seed_file
        if seed_file is not None and seed_file.exists():
            seed = parse_output_file(seed_file)
            atom_count = seed.n_atoms
            seed_numbers = seed.atomic_numbers
        manager.validate_compatibility(checkpoint, self.config, atom_count=atom_count)

        system = checkpoint.restore_system()
        if seed_numbers is not None and tuple(system.atomic_numbers) != seed_numbers:
            raise RestartIncompatible("Checkpoint elements differ from the seed geometry",
                                      step=checkpoint.step, component="CheckpointManager")
        self.integrator.validate(system)
        self._step_in_progress = system.step

        if self.context.reporter is not None:
            self.context.reporter.start(resume=True)
        self.logger.info("Resuming from step %d (t = %.2f fs, written %s)",
                         checkpoint.step, checkpoint.time, checkpoint.timestamp)
        return system

    # ------------------------------------------------------------------ #
    #  One step
    # ------------------------------------------------------------------ #

    def _advance(self, system: System) -> None:
        """Perform one velocity Verlet step and checkpoint it."""
        started = time.perf_counter()
        self._step_in_progress = system.step + 1

        self._transition(DriverState.INTEGRATE)
        self.integrator.half_kick_drift(system)

        snapshot = self._evaluate(system)

        self._transition(DriverState.INTEGRATE)
        self.integrator.finish_kick(system, units.forces_from_engine(snapshot.forces))
        system.potential_energy = snapshot.energy

        self._transition(DriverState.CHECKPOINT)
        self.context.checkpoints.save(system, system.step, self._fingerprint)
        self._report(system, wall=time.perf_counter() - started)

    def _evaluate(self, system: System) -> AtomSnapshot:
        """Write the deck for the current geometry, run the engine, parse forces."""
        self._transition(DriverState.WRITE_INPUT)
        deck = write_input_deck(system, self.config)

        self._transition(DriverState.RUN_ENGINE)
        text = self._run_engine(deck)

        self._transition(DriverState.PARSE_OUTPUT)
        snapshot = parse_output(text, require_forces=True)
        if snapshot.atomic_numbers != tuple(int(z) for z in system.atomic_numbers):
            raise ParseError(
                f"Engine reported {snapshot.n_atoms} atoms in a different order or "
                f"composition than the system ({len(system)} atoms)",
                step=self._step_in_progress, component="OutputParser")
        return snapshot

    def _run_engine(self, deck: Path) -> str:
        """Run the engine, retrying the identical deck on failure."""
        attempts = self.config.max_retries + 1
        last_error: Optional[EngineFailure] = None
        for attempt in range(1, attempts + 1):
            try:
                return self.context.engine.run(deck)
            except EngineFailure as e:
                last_error = e
                self.logger.warning("Engine attempt %d/%d failed at step %d: %s",
                                    attempt, attempts, self._step_in_progress, e)
        raise EngineFailure(
            f"Engine failed {attempts} time(s); last error: {last_error}",
            step=self._step_in_progress, component="EngineRunner") from last_error

    @staticmethod
    def _apply_snapshot(system: System, snapshot: AtomSnapshot) -> None:
        system.update_forces(units.forces_from_engine(snapshot.forces))
        system.potential_energy = snapshot.energy

    def _report(self, system: System, wall: float) -> None:
        if self.context.reporter is not None:
            self.context.reporter.report(system)
        kinetic = system.get_kinetic_energy()
        potential = system.get_potential_energy()
        pe = float("nan") if potential is None else potential
        self.logger.info(
            f"{system.step}\t{system.time:.2f}\t{pe:.6f}\t{kinetic:.6f}\t"
            f"{pe + kinetic:.6f}\t{system.get_temperature():.2f}\t{wall:.3e}")


def run_simulation(config: Config, seed_file=None,
                   engine: Optional[QuantumEngine] = None, **kwargs) -> RunResult:
    """Convenience wrapper: build a context, run a Driver, return the result."""
    context = RunContext.create(config, seed_file=seed_file, engine=engine, **kwargs)
    return Driver(context).run()
