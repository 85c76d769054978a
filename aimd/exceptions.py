"""
Exception hierarchy for the AIMD driver.

Every fatal condition raised by the package derives from ``AIMDError`` so
callers can tell simulation failures apart from programming errors. File
read/write failures are reported with the builtin ``OSError``.
"""

from typing import Optional


class AIMDError(Exception):
    """
    Base class for all AIMD errors.

    Attributes:
        step: Simulation step during which the error occurred (if known)
        component: Name of the component that failed (if known)
    """

    def __init__(self, message: str, step: Optional[int] = None,
                 component: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.step = step
        self.component = component

    def __str__(self) -> str:
        where = []
        if self.component is not None:
            where.append(self.component)
        if self.step is not None:
            where.append(f"step {self.step}")
        if where:
            return f"[{', '.join(where)}] {self.message}"
        return self.message


class ConfigError(AIMDError, ValueError):
    """Malformed or missing configuration."""


class ParseError(AIMDError, ValueError):
    """Engine output could not be parsed into a geometry."""


class EngineFailure(AIMDError, RuntimeError):
    """External engine crashed, exited non-zero, timed out or produced no output."""


class RestartIncompatible(AIMDError):
    """Checkpoint does not match the configuration of the current run."""


class DeserializationError(AIMDError, ValueError):
    """Checkpoint file exists but its contents are not a valid checkpoint."""


class SimulationFailed(AIMDError):
    """
    Fatal driver failure.

    Wraps the underlying error and records which step and component failed.
    The original exception is available as ``cause`` (and ``__cause__``).
    """

    def __init__(self, cause: BaseException, step: Optional[int] = None,
                 component: Optional[str] = None):
        super().__init__(getattr(cause, "message", str(cause)), step=step,
                         component=component)
        self.cause = cause
