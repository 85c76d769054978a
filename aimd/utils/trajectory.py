"""Trajectory reporting and analysis tools."""

import numpy as np
import matplotlib.pyplot as plt
from ase.io import read as ase_read, write as ase_write
from pathlib import Path
from typing import Dict, List, Optional

from ..core import units
from ..core.system import System
from ..utils.results_utils import get_results_path

TRAJECTORY_FILE = "trajectory.xyz"
ENERGY_FILE = "energy.txt"
VELOCITY_FILE = "velocity.txt"
KINETIC_FILE = "kinetic.txt"

ENERGY_HEADER = f"{'Time fs':<20} {'Potential eV':<24} {'Kinetic eV':<24} {'Total eV':<24}\n"
VELOCITY_HEADER = (f"{'Step':<8} {'Number':<8} {'Symbol':<8} {'X':<20} {'Y':<20} "
                   f"{'Z':<20} {'Magnitude':<20}\n")
KINETIC_HEADER = f"{'Step':<8} {'Number':<8} {'Symbol':<8} {'Kinetic eV':<20}\n"


class TrajectoryReporter:
    """
    Writes per-step report files in the run directory.

    Files:
        trajectory.xyz: one XYZ frame per step
        energy.txt: time, potential, kinetic and total energy (eV)
        velocity.txt: per-atom velocity components and magnitude (Angstrom/fs)
        kinetic.txt: per-atom kinetic energy (eV)
    """

    def __init__(self, work_dir="."):
        self.work_dir = Path(work_dir)
        self.trajectory_path = get_results_path(TRAJECTORY_FILE, self.work_dir)
        self.energy_path = get_results_path(ENERGY_FILE, self.work_dir)
        self.velocity_path = get_results_path(VELOCITY_FILE, self.work_dir)
        self.kinetic_path = get_results_path(KINETIC_FILE, self.work_dir)

    def start(self, resume: bool = False) -> None:
        """Create the report files; a resumed run keeps existing content."""
        headers = {
            self.trajectory_path: "",
            self.energy_path: ENERGY_HEADER,
            self.velocity_path: VELOCITY_HEADER,
            self.kinetic_path: KINETIC_HEADER,
        }
        for path, header in headers.items():
            if resume and path.exists():
                continue
            with open(path, "w") as f:
                f.write(header)

    def report(self, system: System) -> None:
        """Append the current state of ``system`` to every report file."""
        self.report_trajectory(system)
        self.report_energy(system)
        self.report_velocity(system)
        self.report_kinetic(system)

    def report_trajectory(self, system: System) -> None:
        comment = f"step={system.step} time_fs={system.time:.4f}"
        ase_write(str(self.trajectory_path), system.atoms, format="xyz", append=True,
                  comment=comment)

    def report_energy(self, system: System) -> None:
        kinetic = system.get_kinetic_energy()
        potential = system.get_potential_energy()
        if potential is None:
            potential = float("nan")
        with open(self.energy_path, "a") as f:
            f.write(f"{system.time:<20.4f} {potential:<24.8f} {kinetic:<24.8f} "
                    f"{potential + kinetic:<24.8f}\n")

    def report_velocity(self, system: System) -> None:
        norms = np.linalg.norm(system.velocities, axis=1)
        with open(self.velocity_path, "a") as f:
            for i, (symbol, v, norm) in enumerate(
                    zip(system.symbols, system.velocities, norms), start=1):
                f.write(f"{system.step:<8d} {i:<8d} {symbol:<8} {v[0]:<20.10e} "
                        f"{v[1]:<20.10e} {v[2]:<20.10e} {norm:<20.10e}\n")

    def report_kinetic(self, system: System) -> None:
        per_atom = units.per_atom_kinetic_energy_ev(system.masses, system.velocities)
        with open(self.kinetic_path, "a") as f:
            for i, (symbol, ke) in enumerate(zip(system.symbols, per_atom), start=1):
                f.write(f"{system.step:<8d} {i:<8d} {symbol:<8} {ke:<20.10e}\n")


def load_energy_log(path) -> Dict[str, np.ndarray]:
    """Read ``energy.txt`` into arrays keyed by column."""
    data = np.loadtxt(path, skiprows=1, ndmin=2)
    if data.size == 0:
        data = np.zeros((0, 4))
    return {
        'time': data[:, 0],
        'potential_energy': data[:, 1],
        'kinetic_energy': data[:, 2],
        'total_energy': data[:, 3],
    }


class TrajectoryAnalyzer:
    """Analysis tools for MD trajectories."""

    def __init__(self, energies: Dict[str, np.ndarray],
                 positions: Optional[List[np.ndarray]] = None):
        self.energies = energies
        self.positions = positions or []

    @classmethod
    def from_run_dir(cls, work_dir=".") -> 'TrajectoryAnalyzer':
        """Load energies (and frames, if present) from a run directory."""
        work_dir = Path(work_dir)
        energies = load_energy_log(work_dir / ENERGY_FILE)
        positions = []
        trajectory_path = work_dir / TRAJECTORY_FILE
        if trajectory_path.exists() and trajectory_path.stat().st_size > 0:
            frames = ase_read(str(trajectory_path), index=":", format="xyz")
            positions = [frame.positions for frame in frames]
        return cls(energies, positions)

    def energy_drift(self) -> float:
        """Largest deviation of the total energy from its first value (eV)."""
        total = self.energies['total_energy']
        if total.size == 0:
            return 0.0
        return float(np.nanmax(np.abs(total - total[0])))

    def plot_energies(self, filename="energy_plot.png", work_dir=".", show=False) -> Path:
        """Plot energy vs time."""
        times = self.energies['time']

        fig = plt.figure(figsize=(10, 6))
        plt.plot(times, self.energies['kinetic_energy'], label='Kinetic', alpha=0.8)
        plt.plot(times, self.energies['potential_energy'], label='Potential', alpha=0.8)
        plt.plot(times, self.energies['total_energy'], label='Total', linewidth=2)
        plt.xlabel('Time (fs)')
        plt.ylabel('Energy (eV)')
        plt.legend()
        plt.title('Energy Conservation')
        plt.grid(True, alpha=0.3)

        output_path = get_results_path(filename, work_dir)
        plt.savefig(output_path, dpi=300, bbox_inches='tight')
        print(f"Energy plot saved to: {output_path}")

        if show:
            plt.show()
        plt.close(fig)
        return output_path

    def calculate_rmsd(self, reference_idx: int = 0) -> np.ndarray:
        """Calculate RMSD from reference structure."""
        if not self.positions:
            return np.zeros(0)
        ref_pos = self.positions[reference_idx]

        rmsds = []
        for pos in self.positions:
            rmsd = np.sqrt(np.mean(np.sum((pos - ref_pos)**2, axis=1)))
            rmsds.append(rmsd)

        return np.array(rmsds)
