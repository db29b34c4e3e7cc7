"""
Configuration for a sensor node sender.
"""

from dataclasses import dataclass
from typing import Tuple

from packages.mag_gateway.config import DEFAULT_MASTER_KEY

@dataclass(frozen=True)
class NodeConfig:
    """Sensor node configuration."""
    node_id: int
    master_key: bytes = DEFAULT_MASTER_KEY
    send_interval_s: float = 0.5

    # Simulated sensor
    ambient_milli_ut: Tuple[int, int, int] = (20000, -5000, 42000)  # Roughly the geomagnetic field
    magnet_moment: float = 2.0e10     # Dipole moment in position units^3 * m-uT
    noise_std: float = 0.0            # Gaussian noise per axis (m-uT)
    temperature_tenths: int = 225
    path_speed: float = 1.0           # Figure-eight speed multiplier

    def __post_init__(self):
        if not 1 <= self.node_id <= 255:
            raise ValueError(f"Invalid node_id: {self.node_id}. Must be 1-255.")
        if len(self.master_key) != 16:
            raise ValueError(f"master_key must be 16 bytes, got {len(self.master_key)}")
