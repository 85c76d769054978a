"""
Utility modules for the AIMD driver.
"""

from .checkpoint import Checkpoint, CheckpointManager
from .results_utils import ensure_run_dir, get_results_path, run_lock
from .trajectory import TrajectoryAnalyzer, TrajectoryReporter

__all__ = [
    'Checkpoint', 'CheckpointManager',
    'ensure_run_dir', 'get_results_path', 'run_lock',
    'TrajectoryAnalyzer', 'TrajectoryReporter',
]
