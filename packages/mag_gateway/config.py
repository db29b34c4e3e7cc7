"""
Configuration for the magnet tracking gateway.
"""

from dataclasses import dataclass, field
from typing import Tuple

import numpy as np

from packages.datatypes.datatypes import SensorLayout

# Same pre-shared key as the sensor nodes
DEFAULT_MASTER_KEY = bytes([
    0x4d, 0x69, 0x73, 0x6f, 0x4b, 0x65, 0x79, 0x21,
    0x10, 0x22, 0x33, 0x44, 0x55, 0x66, 0x77, 0x88
])


def default_sensor_layout() -> SensorLayout:
    """Sensors in the z=0 plane, positions in the 0-1000 coordinate system."""
    return SensorLayout(positions={
        1: np.array([500.0, 1000.0, 0.0]),  # top-middle
        2: np.array([1000.0, 0.0, 0.0]),    # bottom-right
        3: np.array([0.0, 0.0, 0.0]),       # bottom-left
    })


@dataclass(frozen=True)
class SolverConfig:
    """Gauss-Newton / Levenberg-Marquardt dipole solver settings."""
    max_iterations: int = 20
    convergence_threshold: float = 0.1    # Position change (units) to stop
    min_iterations: int = 3               # Iterations before early stop/divergence checks apply
    damping_factor: float = 0.5           # LM damping scale (x relative squared residual)
    divergence_ratio: float = 1.5         # Trial-step error growth that counts as diverging
    position_clamp: Tuple[float, float] = (-100.0, 1100.0)
    min_moment: float = 100.0             # Floor for M each iteration
    fd_position_step: float = 1.0         # Finite-difference step for x, y
    fd_moment_rel_step: float = 1e-3      # Finite-difference step for M (relative)
    singular_tolerance: float = 1e-12     # |det| relative to product of diagonal
    max_relative_residual: float = 0.05   # Converged fits must explain the field this well
    cold_start_grid_step: float = 20.0    # Candidate spacing when no previous estimate exists
    cold_start_attempts: int = 3          # Distinct starts tried before giving up
    cold_start_separation: float = 150.0  # Minimum spacing between those starts


@dataclass(frozen=True)
class GatewayConfig:
    """
    Gateway configuration.

    Defaults match the deployed gateway: three sensors, 10-reading
    baselines, 5-reading calibration points and a 0-1000 position range.
    """
    master_key: bytes = DEFAULT_MASTER_KEY
    max_nodes: int = 3

    # Calibration
    baseline_readings_required: int = 10
    calib_readings_per_point: int = 5
    max_calib_points: int = 20
    calib_point_timeout_s: float = 15.0

    # Estimation
    min_signal_milli_ut: float = 100.0    # Weaker magnet-induced fields are noise
    sensor_layout: SensorLayout = field(default_factory=default_sensor_layout)
    dipole_orientation: Tuple[float, float, float] = (0.0, 0.0, 1.0)
    magnet_plane_height: float = 20.0     # Magnet plane height above the sensor plane
    position_min: float = 0.0
    position_max: float = 1000.0
    triangulation_weight: float = 0.7     # Blend: w * triangulation + (1 - w) * lookup
    position_method: str = "blend"        # "blend" or "dipole"
    solver: SolverConfig = field(default_factory=SolverConfig)

    # Tasks
    rx_timeout_s: float = 10.0
    publish_interval_s: float = 0.1

    def __post_init__(self):
        if len(self.master_key) != 16:
            raise ValueError(f"master_key must be 16 bytes, got {len(self.master_key)}")
        if not 1 <= self.max_nodes <= 255:
            raise ValueError(f"max_nodes must be 1-255, got {self.max_nodes}")
        missing = [
            nid for nid in range(1, self.max_nodes + 1)
            if nid not in self.sensor_layout.positions
        ]
        if missing:
            raise ValueError(f"sensor_layout has no position for nodes {missing}")
        if self.position_method not in ("blend", "dipole"):
            raise ValueError(f"position_method must be 'blend' or 'dipole', got {self.position_method!r}")
        if not 0.0 <= self.triangulation_weight <= 1.0:
            raise ValueError(f"triangulation_weight must be 0-1, got {self.triangulation_weight}")
        if np.linalg.norm(self.dipole_orientation) == 0.0:
            raise ValueError("dipole_orientation must be non-zero")

    @property
    def node_ids(self) -> range:
        return range(1, self.max_nodes + 1)

    def dipole_unit(self) -> np.ndarray:
        """Dipole orientation normalized to a unit vector."""
        m = np.asarray(self.dipole_orientation, dtype=float)
        return m / np.linalg.norm(m)
