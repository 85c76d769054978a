"""
Command-line entry point for AIMD runs.

Reads the Gaussian settings from a YAML file, merges the command-line
simulation parameters and drives the trajectory until it finishes, fails
or is interrupted.
"""

import argparse
import logging
import signal
import sys
from typing import Optional, Sequence

from .config import load_config
from .driver import Driver, DriverState, RunContext
from .exceptions import (
    AIMDError,
    ConfigError,
    DeserializationError,
    EngineFailure,
    ParseError,
    RestartIncompatible,
    SimulationFailed,
)
from .utils.trajectory import TrajectoryAnalyzer

EXIT_OK = 0
EXIT_CONFIG = 2
EXIT_PARSE = 3
EXIT_ENGINE = 4
EXIT_RESTART = 5
EXIT_IO = 6
EXIT_STOPPED = 130

logger = logging.getLogger("aimd")


def exit_code_for(error: BaseException) -> int:
    """Map a failure (or the cause of a SimulationFailed) to a process exit code."""
    if isinstance(error, SimulationFailed):
        error = error.cause
    if isinstance(error, ConfigError):
        return EXIT_CONFIG
    if isinstance(error, ParseError):
        return EXIT_PARSE
    if isinstance(error, EngineFailure):
        return EXIT_ENGINE
    if isinstance(error, RestartIncompatible):
        return EXIT_RESTART
    if isinstance(error, (DeserializationError, OSError)):
        return EXIT_IO
    return 1


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='aimd',
        description='Ab initio molecular dynamics driven by Gaussian force calculations',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Start from a Gaussian output holding the starting geometry
  aimd seed.log

  # 0.5 fs steps, 2000 steps, atoms 1-10 and 90-100 held fixed
  aimd seed.log --time-step 0.5 --num-steps 2000 --freeze 1-10,90-100

  # Continue from save.json in the run directory
  aimd seed.log --restart

Config file must contain:
  mem: "32GB"
  cpu: "0-15"
  checkpoint: "aimd.chk"
  key_words: "b3lyp/6-31g(d) force nosymm"
  title: "water"
  charge: 0
  multiplicity: 1
        """
    )

    parser.add_argument('input',
                        help='Gaussian output file holding the starting geometry')
    parser.add_argument('--config', '-c', default='config.yaml',
                        help='Config file path (default: config.yaml)')
    parser.add_argument('--freeze', '-f', default=None,
                        help='Atoms to hold fixed, 1-based, e.g. "1-10,90-100"')
    parser.add_argument('--time-step', '-t', type=float, default=None,
                        help='Time step in fs (default: 1.0)')
    parser.add_argument('--num-steps', '-n', type=int, default=None,
                        help='Total number of steps (default: 10000)')
    parser.add_argument('--restart', '-r', action='store_true',
                        help='Resume from the checkpoint in the run directory')
    parser.add_argument('--work-dir', '-w', default=None,
                        help='Run directory for decks, outputs and reports (default: .)')
    parser.add_argument('--plot', action='store_true',
                        help='Plot energy conservation when the run ends')
    parser.add_argument('--log-level', default='INFO',
                        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'],
                        help='Logging level (default: INFO)')
    return parser


def _install_stop_handlers(driver: Driver):
    """Route SIGINT/SIGTERM to a graceful stop at the next step boundary."""
    def handler(signum, frame):
        logger.warning("Received %s; stopping after the current step",
                       signal.Signals(signum).name)
        driver.request_stop()

    previous = {}
    for sig in (signal.SIGINT, signal.SIGTERM):
        previous[sig] = signal.signal(sig, handler)
    return previous


def _restore_handlers(previous) -> None:
    for sig, handler in previous.items():
        signal.signal(sig, handler)


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format='%(asctime)s %(levelname)s %(name)s: %(message)s',
    )
    logging.captureWarnings(True)

    try:
        config = load_config(
            args.config,
            freeze=args.freeze,
            time_step=args.time_step,
            num_steps=args.num_steps,
            restart=True if args.restart else None,
            work_dir=args.work_dir,
        )
        context = RunContext.create(config, seed_file=args.input)
    except (AIMDError, OSError) as e:
        logger.error("Error: %s", e)
        return exit_code_for(e)

    driver = Driver(context)
    previous = _install_stop_handlers(driver)
    try:
        result = driver.run()
    except SimulationFailed as e:
        return exit_code_for(e)
    finally:
        _restore_handlers(previous)

    if args.plot:
        analyzer = TrajectoryAnalyzer.from_run_dir(config.work_dir)
        analyzer.plot_energies(work_dir=config.work_dir)
        logger.info("Energy drift: %.6f eV", analyzer.energy_drift())

    if result.state is DriverState.STOPPED:
        return EXIT_STOPPED
    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
