"""
Core datatypes for magnet tracking.
"""

from .datatypes import (
    SensorPayload,
    SensorFrame,
    RadioPacket,
    PositionEstimate,
    PositionFix,
    SensorLayout,
)

__all__ = [
    'SensorPayload',
    'SensorFrame',
    'RadioPacket',
    'PositionEstimate',
    'PositionFix',
    'SensorLayout'
]
