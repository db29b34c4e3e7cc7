"""
Shared gateway state outside the calibration engine: the published position
slot and receive statistics.
"""

import threading
from dataclasses import dataclass, field
from typing import Dict, Optional, Tuple


class PositionSlot:
    """
    Latest position estimate and the publishing flag.
    Guarded by its own lock; never held together with the calibration lock.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._x = 0
        self._y = 0
        self._valid = False
        self._publishing_enabled = False

    def set(self, x: int, y: int):
        with self._lock:
            self._x = int(x)
            self._y = int(y)
            self._valid = True

    def get(self) -> Optional[Tuple[int, int]]:
        """Current position, or None if no estimate has been made yet."""
        with self._lock:
            if not self._valid:
                return None
            return self._x, self._y

    def enable_publishing(self):
        with self._lock:
            self._publishing_enabled = True

    @property
    def publishing_enabled(self) -> bool:
        with self._lock:
            return self._publishing_enabled

    def publishable(self) -> Optional[Tuple[int, int]]:
        """Position to publish, or None while publishing is off or no estimate exists."""
        with self._lock:
            if not (self._publishing_enabled and self._valid):
                return None
            return self._x, self._y


@dataclass
class GatewayMetrics:
    """Receive-path statistics."""
    frames_accepted: int = 0
    security_drops: Dict[str, int] = field(default_factory=dict)  # Count per reason
    protocol_drops: Dict[str, int] = field(default_factory=dict)  # Count per reason
    radio_timeouts: int = 0
    radio_errors: int = 0
    frames_per_node: Dict[int, int] = field(default_factory=dict)

    def count_accepted(self, node_id: int):
        self.frames_accepted += 1
        self.frames_per_node[node_id] = self.frames_per_node.get(node_id, 0) + 1

    def count_security_drop(self, reason: str):
        self.security_drops[reason] = self.security_drops.get(reason, 0) + 1

    def count_protocol_drop(self, reason: str):
        self.protocol_drops[reason] = self.protocol_drops.get(reason, 0) + 1
