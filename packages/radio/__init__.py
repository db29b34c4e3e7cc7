"""
Radio transports for secure frames.
"""

from .config import RadioConfig
from .transport import (
    RadioError,
    RadioTransport,
    LoopbackRadio,
    SerialLoRaRadio,
    parse_rcv_line,
)

__all__ = [
    'RadioConfig',
    'RadioError',
    'RadioTransport',
    'LoopbackRadio',
    'SerialLoRaRadio',
    'parse_rcv_line'
]
