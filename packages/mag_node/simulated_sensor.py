"""
Simulated three-axis magnetometer near a moving magnet.
"""

import math
from typing import Optional, Tuple

import numpy as np

from packages.datatypes.datatypes import SensorPayload
from packages.position_algos.dipole.model import dipole_field

INT32_MIN = -(2 ** 31)
INT32_MAX = 2 ** 31 - 1


def figure_eight(t: float, speed: float = 1.0) -> Tuple[float, float]:
    """
    Magnet path covering the 0-1000 field.
    Lissajous figure-8: x = A*sin(t), y = B*sin(2t)
    """
    scale_t = t * speed * 0.5
    x = 500.0 + 350.0 * math.sin(scale_t)
    y = 500.0 + 300.0 * math.sin(2 * scale_t)
    return x, y


class SimulatedMagnetometer:
    """Ambient field plus the dipole field of the magnet, in m-uT."""

    def __init__(
        self,
        sensor_position: np.ndarray,
        ambient: Tuple[int, int, int] = (20000, -5000, 42000),
        moment: float = 2.0e10,
        orientation: Tuple[float, float, float] = (0.0, 0.0, 1.0),
        plane_height: float = 20.0,
        noise_std: float = 0.0,
        temperature_tenths: int = 225,
        rng: Optional[np.random.Generator] = None
    ):
        self.sensor_position = np.asarray(sensor_position, dtype=float)
        self.ambient = np.asarray(ambient, dtype=float)
        self.moment = moment
        m = np.asarray(orientation, dtype=float)
        self.m_hat = m / np.linalg.norm(m)
        self.plane_height = plane_height
        self.noise_std = noise_std
        self.temperature_tenths = temperature_tenths
        self.rng = rng or np.random.default_rng()

    def field_at(self, magnet_xy: Optional[Tuple[float, float]]) -> np.ndarray:
        """Noise-free field; magnet_xy None means no magnet present."""
        b = self.ambient.copy()
        if magnet_xy is not None:
            b += dipole_field(
                magnet_xy[0], magnet_xy[1], self.moment,
                self.sensor_position, self.m_hat, self.plane_height
            )
        return b

    def read(self, magnet_xy: Optional[Tuple[float, float]] = None) -> SensorPayload:
        b = self.field_at(magnet_xy)
        if self.noise_std > 0:
            b = b + self.rng.normal(0.0, self.noise_std, size=3)
        x, y, z = (int(np.clip(round(v), INT32_MIN, INT32_MAX)) for v in b)
        return SensorPayload(
            x_milli_ut=x,
            y_milli_ut=y,
            z_milli_ut=z,
            temp_tenths=self.temperature_tenths
        )
