"""
Gaussian 16 interface running the engine as a subprocess.
"""

import logging
import os
import shlex
import signal
import subprocess
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Union

from .calculator import QuantumEngine
from ..exceptions import EngineFailure

logger = logging.getLogger(__name__)


class GaussianEngine(QuantumEngine):
    """
    Runs ``<command> <input> <output>`` and returns the output file text.

    The process is started in its own session so a terminal interrupt aimed
    at the driver does not kill the calculation in flight.
    """

    def __init__(self, command: Union[str, Sequence[str]] = "g16",
                 output_path=None, timeout: Optional[float] = 3600.0,
                 env: Optional[Dict[str, str]] = None, cwd=None):
        """
        Initialize Gaussian engine.

        Args:
            command: Executable (and leading arguments) to launch
            output_path: Where the engine writes its log (default: input
                path with ``.log`` suffix)
            timeout: Seconds to wait for one calculation (None = no limit)
            env: Extra environment variables (e.g. GAUSS_SCRDIR)
            cwd: Working directory for the process (default: input directory)
        """
        super().__init__(name="gaussian")
        self.command = shlex.split(command) if isinstance(command, str) else list(command)
        if not self.command:
            raise ValueError("Engine command must not be empty")
        self.output_path = Path(output_path) if output_path is not None else None
        self.timeout = timeout
        self.env = dict(env) if env else {}
        self.cwd = Path(cwd).resolve() if cwd is not None else None

    def _output_for(self, input_path: Path) -> Path:
        if self.output_path is not None:
            return self.output_path
        return input_path.with_suffix(".log")

    def build_command(self, input_path: Path, output_path: Path) -> List[str]:
        """Command line for one calculation."""
        return [*self.command, str(input_path), str(output_path)]

    def _execute(self, input_path: Path) -> str:
        # The process runs in cwd, so paths handed to it must not be relative
        input_path = input_path.resolve()
        output_path = self._output_for(input_path).resolve()
        if not input_path.exists():
            raise EngineFailure(f"Input deck {input_path} does not exist", component="EngineRunner")

        # A stale log from the previous step must not pass for this step's output
        if output_path.exists():
            output_path.unlink()

        command = self.build_command(input_path, output_path)
        env = {**os.environ, **self.env}
        logger.debug("Running %s", " ".join(command))
        try:
            process = subprocess.Popen(
                command,
                cwd=self.cwd or input_path.parent,
                env=env,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                start_new_session=True,
            )
        except FileNotFoundError:
            raise EngineFailure(f"Engine executable {self.command[0]!r} not found",
                                component="EngineRunner")

        try:
            _stdout, stderr = process.communicate(timeout=self.timeout)
        except subprocess.TimeoutExpired:
            self._kill_session(process)
            raise EngineFailure(f"{self.command[0]} timed out after {self.timeout} s",
                                component="EngineRunner")

        if process.returncode != 0:
            detail = (stderr or "").strip().splitlines()[-1:] or [""]
            raise EngineFailure(
                f"{self.command[0]} exited with status {process.returncode} {detail[0]}".rstrip(),
                component="EngineRunner")

        try:
            text = output_path.read_text(errors="replace")
        except FileNotFoundError:
            raise EngineFailure(f"Engine produced no output file {output_path}",
                                component="EngineRunner")
        if not text.strip():
            raise EngineFailure(f"Engine output {output_path} is empty", component="EngineRunner")
        return text

    @staticmethod
    def _kill_session(process: subprocess.Popen) -> None:
        """Kill the whole session so link executables do not outlive a timeout."""
        try:
            os.killpg(process.pid, signal.SIGKILL)
        except ProcessLookupError:
            pass
        process.communicate()

    def __repr__(self) -> str:
        """String representation."""
        return f"GaussianEngine(command={' '.join(self.command)!r}, timeout={self.timeout})"
