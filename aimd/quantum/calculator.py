"""
Base quantum engine interface for molecular dynamics.
"""

from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional


class QuantumEngine(ABC):
    """
    Abstract base class for quantum chemistry engines.

    An engine takes an input deck on disk and returns the raw text it
    produced. It does not interpret the output; that is the parser's job.
    Implementations raise ``EngineFailure`` when no usable output exists.
    """

    def __init__(self, name: str = "engine"):
        self.name = name
        self.calls = 0
        self.last_output: Optional[str] = None

    @abstractmethod
    def _execute(self, input_path: Path) -> str:
        """Run the engine on ``input_path`` and return its output text."""

    def run(self, input_path) -> str:
        """
        Run the engine on an input deck.

        Args:
            input_path: Path to the input deck

        Returns:
            Raw engine output text
        """
        self.calls += 1
        output = self._execute(Path(input_path))
        self.last_output = output
        return output

    def __repr__(self) -> str:
        """String representation."""
        return f"{self.__class__.__name__}(name={self.name})"
