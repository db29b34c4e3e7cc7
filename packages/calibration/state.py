"""
Calibration and per-node state records.
Mutable; owned by the CalibrationEngine and only touched under its lock.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, FrozenSet

import numpy as np


class CalibrationState(Enum):
    IDLE = "idle"
    BASELINE = "baseline"
    WAITING_INPUT = "waiting_input"
    RUNNING = "running"


def _zeros() -> np.ndarray:
    return np.zeros(3, dtype=np.int64)


def trunc_div(vec_sum: np.ndarray, count: int) -> np.ndarray:
    """Integer average of a summed vector, truncating toward zero."""
    out = []
    for s in vec_sum:
        q = abs(int(s)) // count
        out.append(-q if s < 0 else q)
    return np.array(out, dtype=np.int64)


@dataclass
class NodeState:
    """Running record for one sensor node."""
    have_baseline: bool = False
    baseline: np.ndarray = field(default_factory=_zeros)      # Ambient field (m-uT)
    last_raw: np.ndarray = field(default_factory=_zeros)      # Last raw field (m-uT)
    last_magnet: np.ndarray = field(default_factory=_zeros)   # Last raw - baseline (m-uT)
    last_magnitude: int = 0                                   # |last_raw| (m-uT)
    last_seq: int = 0
    frames_received: int = 0

    @property
    def magnet_magnitude(self) -> float:
        return float(np.linalg.norm(self.last_magnet))

    def copy(self) -> "NodeState":
        return NodeState(
            have_baseline=self.have_baseline,
            baseline=self.baseline.copy(),
            last_raw=self.last_raw.copy(),
            last_magnet=self.last_magnet.copy(),
            last_magnitude=self.last_magnitude,
            last_seq=self.last_seq,
            frames_received=self.frames_received
        )


@dataclass
class BaselineData:
    """Ambient-field accumulation for one sensor."""
    valid: bool = False
    readings_collected: int = 0
    field_sum: np.ndarray = field(default_factory=_zeros)
    ambient: np.ndarray = field(default_factory=_zeros)

    def add(self, raw: np.ndarray, required: int) -> bool:
        """
        Accumulate one raw reading.

        Returns:
            True if this reading finalized the baseline
        """
        if self.valid:
            return False
        self.field_sum = self.field_sum + raw
        self.readings_collected += 1
        if self.readings_collected >= required:
            self.ambient = trunc_div(self.field_sum, self.readings_collected)
            self.valid = True
            return True
        return False


@dataclass
class CalibPoint:
    """
    A known magnet position and the averaged magnet-induced field at each sensor.
    """
    x: int                                        # 0..1000
    y: int                                        # 0..1000
    expected_nodes: FrozenSet[int] = frozenset()  # Nodes with a baseline when the point was created
    node_field: Dict[int, np.ndarray] = field(default_factory=dict)
    node_valid: Dict[int, bool] = field(default_factory=dict)
    reading_count: Dict[int, int] = field(default_factory=dict)
    field_sum: Dict[int, np.ndarray] = field(default_factory=dict)

    def is_valid_for(self, node_id: int) -> bool:
        return self.node_valid.get(node_id, False)

    def add(self, node_id: int, magnet_field: np.ndarray, required: int) -> bool:
        """
        Accumulate one magnet-induced reading for a node.

        Returns:
            True if this reading finalized the node's averaged vector
        """
        if self.is_valid_for(node_id):
            return False
        self.field_sum[node_id] = self.field_sum.get(node_id, _zeros()) + magnet_field
        self.reading_count[node_id] = self.reading_count.get(node_id, 0) + 1
        if self.reading_count[node_id] >= required:
            self.node_field[node_id] = trunc_div(self.field_sum[node_id], self.reading_count[node_id])
            self.node_valid[node_id] = True
            return True
        return False

    def is_complete(self) -> bool:
        """True once every expected node has finalized its reading."""
        return all(self.is_valid_for(nid) for nid in self.expected_nodes)

    def pending_nodes(self) -> FrozenSet[int]:
        return frozenset(nid for nid in self.expected_nodes if not self.is_valid_for(nid))

    def copy(self) -> "CalibPoint":
        return CalibPoint(
            x=self.x,
            y=self.y,
            expected_nodes=self.expected_nodes,
            node_field={k: v.copy() for k, v in self.node_field.items()},
            node_valid=dict(self.node_valid),
            reading_count=dict(self.reading_count),
            field_sum={k: v.copy() for k, v in self.field_sum.items()}
        )
