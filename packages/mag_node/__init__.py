"""
Sensor node side: frame sender and simulated magnetometer.
"""

from .config import NodeConfig
from .sender import NodeSender
from .simulated_sensor import SimulatedMagnetometer, figure_eight
from .simulation import SimulatedNodeCluster

__all__ = [
    'NodeConfig',
    'NodeSender',
    'SimulatedMagnetometer',
    'figure_eight',
    'SimulatedNodeCluster'
]
