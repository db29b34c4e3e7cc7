"""
Configuration for the LoRa radio transport.
"""

from dataclasses import dataclass


@dataclass(frozen=True)
class RadioConfig:
    """UART LoRa modem settings. PHY parameters are configured on the modem itself."""
    serial_port: str = "/dev/ttyUSB0"
    baud_rate: int = 115200
    read_timeout_s: float = 0.5   # Per-readline timeout; receive() loops until its own deadline
    destination: int = 0          # Modem address frames are sent to (0 = broadcast)
