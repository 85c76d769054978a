"""
Shared utilities for managing the run directory.
"""

import os
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path

from ..exceptions import ConfigError

LOCK_NAME = ".aimd.lock"


def ensure_run_dir(work_dir=".", subdir: str = "") -> Path:
    """Ensure the run directory (or a subdirectory of it) exists."""
    path = Path(work_dir) / subdir if subdir else Path(work_dir)
    path.mkdir(parents=True, exist_ok=True)
    return path


def get_results_path(filename: str, work_dir=".", subdir: str = "") -> Path:
    """Get full path for an output file in the run directory."""
    return ensure_run_dir(work_dir, subdir) / filename


def _is_pid_running(pid) -> bool:
    if pid is None:
        return False
    try:
        os.kill(pid, 0)
    except (OSError, ValueError):
        return False
    return True


def _read_lock_pid(lock_path: Path):
    try:
        with open(lock_path, "r", encoding="utf-8") as handle:
            return int(handle.read().split()[0])
    except (OSError, ValueError, IndexError):
        return None


def acquire_run_lock(work_dir=".") -> Path:
    """
    Claim the run directory for this process.

    A lock left behind by a process that no longer exists is replaced.

    Raises:
        ConfigError: If another live driver holds the lock
    """
    lock_path = ensure_run_dir(work_dir) / LOCK_NAME
    while True:
        try:
            fd = os.open(lock_path, os.O_CREAT | os.O_EXCL | os.O_WRONLY)
        except FileExistsError:
            pid = _read_lock_pid(lock_path)
            if pid != os.getpid() and _is_pid_running(pid):
                raise ConfigError(
                    f"Run directory {Path(work_dir).resolve()} is in use by process {pid}")
            try:
                os.remove(lock_path)
            except FileNotFoundError:
                pass
            continue
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(f"{os.getpid()} {datetime.now().isoformat()}")
        return lock_path


def release_run_lock(lock_path: Path) -> None:
    try:
        os.remove(lock_path)
    except FileNotFoundError:
        pass


@contextmanager
def run_lock(work_dir="."):
    """Hold the run directory lock for the duration of the block."""
    lock_path = acquire_run_lock(work_dir)
    try:
        yield lock_path
    finally:
        release_run_lock(lock_path)
