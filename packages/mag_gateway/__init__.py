"""
Gateway configuration and shared state.
"""

from .config import GatewayConfig, SolverConfig, DEFAULT_MASTER_KEY, default_sensor_layout
from .context import PositionSlot, GatewayMetrics

__all__ = [
    'GatewayConfig',
    'SolverConfig',
    'DEFAULT_MASTER_KEY',
    'default_sensor_layout',
    'PositionSlot',
    'GatewayMetrics'
]
