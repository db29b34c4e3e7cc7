"""
Core datatypes for magnet tracking.
All dataclasses are frozen to ensure immutability.
"""

from dataclasses import dataclass
from typing import Dict, List

import numpy as np

@dataclass(frozen=True)
class SensorPayload:
    """Plaintext sensor reading carried inside one secure frame."""
    x_milli_ut: int      # Field X component (m-uT)
    y_milli_ut: int      # Field Y component (m-uT)
    z_milli_ut: int      # Field Z component (m-uT)
    temp_tenths: int     # Temperature in tenths of a degree C

    @property
    def field(self) -> np.ndarray:
        """Field vector [x, y, z] in m-uT."""
        return np.array([self.x_milli_ut, self.y_milli_ut, self.z_milli_ut], dtype=np.int64)

@dataclass(frozen=True)
class SensorFrame:
    """Decoded, authenticated sensor frame from one node."""
    node_id: int         # Sending node (1..max_nodes)
    tx_seq: int          # Per-node monotonic sequence number (u32)
    x_milli_ut: int
    y_milli_ut: int
    z_milli_ut: int
    temp_tenths: int

    @property
    def payload(self) -> SensorPayload:
        return SensorPayload(
            x_milli_ut=self.x_milli_ut,
            y_milli_ut=self.y_milli_ut,
            z_milli_ut=self.z_milli_ut,
            temp_tenths=self.temp_tenths
        )

    @property
    def field(self) -> np.ndarray:
        """Raw field vector [x, y, z] in m-uT."""
        return self.payload.field

@dataclass(frozen=True)
class RadioPacket:
    """Bytes received over the radio with link quality."""
    payload: bytes
    rssi: int = 0        # dBm
    snr: int = 0         # dB

@dataclass(frozen=True)
class PositionEstimate:
    """Output of the dipole solver."""
    x: float             # 0..1000 (clamped)
    y: float             # 0..1000 (clamped)
    M: float             # Dipole moment magnitude
    error: float         # Total squared residual
    iterations: int
    converged: bool
    status: str = "converged"

@dataclass(frozen=True)
class PositionFix:
    """A 2D position in the normalized 0..1000 range and how it was obtained."""
    x: float
    y: float
    method: str          # "triangulation", "lookup", "blend" or "dipole"

@dataclass(frozen=True)
class SensorLayout:
    """Fixed physical sensor positions."""
    positions: Dict[int, np.ndarray]  # node_id -> [x, y, z] in position units

    def get_position(self, node_id: int) -> np.ndarray:
        """Get the position of a specific sensor."""
        if node_id not in self.positions:
            raise ValueError(f"Sensor {node_id} not found in layout")
        return self.positions[node_id]

    def get_all_positions(self) -> Dict[int, np.ndarray]:
        """Get all sensor positions."""
        return dict(self.positions)  # Return a copy to prevent modification

    def node_ids(self) -> List[int]:
        return sorted(self.positions)
