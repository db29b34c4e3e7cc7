"""
Radio transports carrying secure frames.

receive() returns a RadioPacket, or None when the timeout expires with no
frame. Only genuine I/O failures raise RadioError.
"""

import json
import logging
import queue
import re
import threading
import time
from abc import ABC, abstractmethod
from typing import Optional

import serial

from packages.datatypes.datatypes import RadioPacket
from .config import RadioConfig

logger = logging.getLogger(__name__)

# +RCV=<address>,<length>,<hex data>,<rssi>,<snr>
RCV_PATTERN = re.compile(r"^\+RCV=(\d+),(\d+),([0-9A-Fa-f]*),(-?\d+),(-?\d+)$")


class RadioError(IOError):
    """Radio I/O failure (not a receive timeout)."""


class RadioTransport(ABC):
    """Send and receive raw frames over a radio link."""

    @abstractmethod
    def receive(self, timeout: float) -> Optional[RadioPacket]:
        """Block up to `timeout` seconds for one packet."""

    @abstractmethod
    def send(self, data: bytes):
        """Transmit one frame."""

    def close(self):
        pass


class LoopbackRadio(RadioTransport):
    """In-process radio: everything sent is received by the same instance."""

    def __init__(self, rssi: int = -40, snr: int = 10):
        self.rssi = rssi
        self.snr = snr
        self._queue: "queue.Queue[RadioPacket]" = queue.Queue()
        self._closed = threading.Event()

    def send(self, data: bytes):
        if self._closed.is_set():
            raise RadioError("radio closed")
        self._queue.put(RadioPacket(payload=bytes(data), rssi=self.rssi, snr=self.snr))

    def inject(self, packet: RadioPacket):
        """Queue a packet with explicit link quality."""
        self._queue.put(packet)

    def receive(self, timeout: float) -> Optional[RadioPacket]:
        if self._closed.is_set():
            raise RadioError("radio closed")
        try:
            return self._queue.get(timeout=timeout)
        except queue.Empty:
            return None

    def pending(self) -> int:
        return self._queue.qsize()

    def close(self):
        self._closed.set()


def parse_rcv_line(line: str) -> Optional[RadioPacket]:
    """
    Parse a modem receive line.

    Returns:
        RadioPacket, or None if the line is not a receive notification

    Raises:
        ValueError: If the declared length does not match the data
    """
    match = RCV_PATTERN.match(line.strip())
    if not match:
        return None

    _, length, data_hex, rssi, snr = match.groups()
    if len(data_hex) != int(length):
        raise ValueError(f"declared length {length} but got {len(data_hex)} characters")
    if len(data_hex) % 2:
        raise ValueError("odd-length hex data")
    payload = bytes.fromhex(data_hex)
    return RadioPacket(payload=payload, rssi=int(rssi), snr=int(snr))


class SerialLoRaRadio(RadioTransport):
    """
    LoRa modem on a UART, driven with AT commands.
    Frames travel hex-encoded; declared lengths count hex characters.
    """

    def __init__(self, config: RadioConfig, serial_conn: Optional[serial.Serial] = None):
        self.config = config
        self.serial_conn = serial_conn
        self._write_lock = threading.Lock()

    def open(self):
        """Open the serial port if no connection was supplied."""
        if self.serial_conn is not None:
            return
        try:
            self.serial_conn = serial.Serial(
                self.config.serial_port,
                self.config.baud_rate,
                timeout=self.config.read_timeout_s
            )
        except serial.SerialException as e:
            raise RadioError(f"cannot open {self.config.serial_port}: {e}") from e

        logger.info(json.dumps({
            "event": "radio_opened",
            "serial_port": self.config.serial_port,
            "baud_rate": self.config.baud_rate
        }))

    def close(self):
        if self.serial_conn is not None:
            self.serial_conn.close()
            self.serial_conn = None

    def receive(self, timeout: float) -> Optional[RadioPacket]:
        # close() may run on another thread while this loop reads
        conn = self.serial_conn
        if conn is None:
            raise RadioError("radio closed")

        deadline = time.monotonic() + timeout
        while True:
            try:
                raw = conn.readline()
            except serial.SerialException as e:
                if self.serial_conn is None:
                    raise RadioError("radio closed") from e
                raise RadioError(f"serial read failed: {e}") from e

            line = raw.decode(errors="ignore").strip()
            if line:
                try:
                    packet = parse_rcv_line(line)
                except ValueError as e:
                    logger.warning(json.dumps({
                        "event": "radio_bad_line",
                        "error": str(e),
                        "line": line[:80]
                    }))
                    packet = None

                if packet is not None:
                    return packet
                if line.startswith("+ERR"):
                    logger.warning(json.dumps({"event": "radio_modem_error", "line": line}))

            if time.monotonic() >= deadline:
                return None
            if self.serial_conn is not conn:
                raise RadioError("radio closed")

    def send(self, data: bytes):
        conn = self.serial_conn
        if conn is None:
            raise RadioError("radio closed")

        data_hex = bytes(data).hex().upper()
        command = f"AT+SEND={self.config.destination},{len(data_hex)},{data_hex}\r\n"
        with self._write_lock:
            try:
                conn.write(command.encode("ascii"))
                conn.flush()
            except serial.SerialException as e:
                raise RadioError(f"serial write failed: {e}") from e
