"""
Calibration engine: ambient baselines, known-position calibration points and
the Idle -> Baseline -> WaitingInput -> Running state machine.

One lock guards all engine state. A condition variable bound to the same lock
is notified when the active calibration point completes.
"""

import json
import logging
import threading
from dataclasses import dataclass
from typing import Dict, FrozenSet, List, Optional, Tuple

import numpy as np

from packages.mag_gateway.config import GatewayConfig
from .state import BaselineData, CalibPoint, CalibrationState, NodeState

logger = logging.getLogger(__name__)


class CalibrationCommandError(ValueError):
    """Operator command not allowed in the current state or out of range."""


@dataclass(frozen=True)
class EstimationSnapshot:
    """Copies of node states and calibration points taken under the engine lock."""
    node_states: Dict[int, NodeState]
    points: Tuple[CalibPoint, ...]


class CalibrationEngine:
    """
    Owns NodeState, BaselineData and CalibPoint records and the calibration
    state. Safe to call from the receiver and operator threads concurrently.
    """

    def __init__(self, config: GatewayConfig):
        self.config = config

        self._lock = threading.Lock()
        self._point_done = threading.Condition(self._lock)

        self._state = CalibrationState.IDLE
        self._nodes: Dict[int, NodeState] = {nid: NodeState() for nid in config.node_ids}
        self._baselines: Dict[int, BaselineData] = {nid: BaselineData() for nid in config.node_ids}
        self._points: List[CalibPoint] = []
        self._active_point: Optional[int] = None

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def state(self) -> CalibrationState:
        with self._lock:
            return self._state

    def valid_baseline_count(self) -> int:
        with self._lock:
            return self._valid_baselines()

    def _valid_baselines(self) -> int:
        return sum(1 for b in self._baselines.values() if b.valid)

    def baseline_status(self) -> List[Tuple[int, int, bool, np.ndarray]]:
        """(node_id, readings_collected, valid, ambient) per node."""
        with self._lock:
            return [
                (nid, b.readings_collected, b.valid, b.ambient.copy())
                for nid, b in sorted(self._baselines.items())
            ]

    def points(self) -> List[CalibPoint]:
        with self._lock:
            return [p.copy() for p in self._points]

    def node_state(self, node_id: int) -> NodeState:
        with self._lock:
            return self._nodes[node_id].copy()

    def snapshot(self) -> EstimationSnapshot:
        """Consistent copy of everything the estimators read."""
        with self._lock:
            return EstimationSnapshot(
                node_states={nid: ns.copy() for nid, ns in self._nodes.items()},
                points=tuple(p.copy() for p in self._points)
            )

    # ------------------------------------------------------------------
    # Operator commands
    # ------------------------------------------------------------------

    def _require(self, *allowed: CalibrationState):
        if self._state not in allowed:
            names = "/".join(s.value for s in allowed)
            raise CalibrationCommandError(
                f"command requires state {names}, current state is {self._state.value}"
            )

    def start_calibration(self):
        """Idle -> Baseline."""
        with self._lock:
            self._require(CalibrationState.IDLE)
            self._state = CalibrationState.BASELINE
        logger.info(json.dumps({
            "event": "baseline_started",
            "readings_required": self.config.baseline_readings_required
        }))

    def finish_baseline(self):
        """
        Baseline -> WaitingInput.

        Raises:
            CalibrationCommandError: Fewer than two sensors have a valid baseline
        """
        with self._lock:
            self._require(CalibrationState.BASELINE)
            valid = self._valid_baselines()
            if valid < 2:
                raise CalibrationCommandError(
                    f"need at least 2 sensors with a baseline, have {valid}"
                )
            self._state = CalibrationState.WAITING_INPUT
        logger.info(json.dumps({
            "event": "baseline_finished",
            "valid_sensors": valid
        }))

    def restart_baseline(self):
        """Discard every baseline and start collecting again."""
        with self._lock:
            self._require(CalibrationState.BASELINE)
            for nid in self._baselines:
                self._baselines[nid] = BaselineData()
                self._nodes[nid].have_baseline = False
                self._nodes[nid].baseline = np.zeros(3, dtype=np.int64)
        logger.info(json.dumps({"event": "baseline_restarted"}))

    def begin_point(self, x: int, y: int) -> int:
        """
        Append a calibration point at a known magnet position and make it the
        active point.

        Returns:
            Index of the new point

        Raises:
            CalibrationCommandError: Wrong state, coordinates out of range or
                point limit reached
        """
        lo, hi = self.config.position_min, self.config.position_max
        if not (lo <= x <= hi and lo <= y <= hi):
            raise CalibrationCommandError(f"coordinates must be within {lo:g}-{hi:g}, got ({x}, {y})")

        with self._lock:
            self._require(CalibrationState.WAITING_INPUT)
            if len(self._points) >= self.config.max_calib_points:
                raise CalibrationCommandError(
                    f"calibration point limit reached ({self.config.max_calib_points})"
                )
            expected = frozenset(nid for nid, b in self._baselines.items() if b.valid)
            self._points.append(CalibPoint(x=int(x), y=int(y), expected_nodes=expected))
            self._active_point = len(self._points) - 1
            index = self._active_point

        logger.info(json.dumps({
            "event": "calib_point_started",
            "index": index,
            "x": int(x),
            "y": int(y),
            "nodes": sorted(expected)
        }))
        return index

    def wait_for_point(self, index: int, timeout: float) -> FrozenSet[int]:
        """
        Block until the calibration point is complete or the timeout expires.

        Returns:
            Nodes that have not finalized their reading (empty when complete)
        """
        with self._point_done:
            self._point_done.wait_for(
                lambda: index >= len(self._points) or self._points[index].is_complete(),
                timeout=timeout
            )
            if index >= len(self._points):
                return frozenset()
            pending = self._points[index].pending_nodes()

        if pending:
            logger.warning(json.dumps({
                "event": "calib_point_timeout",
                "index": index,
                "pending_nodes": sorted(pending)
            }))
        return pending

    def clear_points(self):
        """Remove every calibration point."""
        with self._point_done:
            self._require(CalibrationState.WAITING_INPUT)
            self._points.clear()
            self._active_point = None
            self._point_done.notify_all()
        logger.info(json.dumps({"event": "calib_points_cleared"}))

    def start_tracking(self):
        """WaitingInput -> Running."""
        with self._lock:
            self._require(CalibrationState.WAITING_INPUT)
            self._state = CalibrationState.RUNNING
            self._active_point = None
            n_points = len(self._points)
        logger.info(json.dumps({
            "event": "tracking_started",
            "calib_points": n_points
        }))

    # ------------------------------------------------------------------
    # Readings
    # ------------------------------------------------------------------

    def process_reading(self, node_id: int, raw: np.ndarray, tx_seq: int = 0) -> CalibrationState:
        """
        Apply one accepted reading to the node store and the calibration state.

        Args:
            node_id: Sending node (1..max_nodes)
            raw: Raw field vector in milli-microtesla
            tx_seq: Frame sequence number

        Returns:
            Calibration state the reading was processed in

        Raises:
            ValueError: If node_id is outside 1..max_nodes
        """
        if node_id not in self._nodes:
            raise ValueError(f"node_id {node_id} outside 1..{self.config.max_nodes}")
        raw = np.asarray(raw, dtype=np.int64)

        events = []
        with self._lock:
            node = self._nodes[node_id]
            node.last_raw = raw.copy()
            node.last_magnitude = int(np.linalg.norm(raw))
            node.last_seq = tx_seq
            node.frames_received += 1
            if node.have_baseline:
                node.last_magnet = raw - node.baseline

            state = self._state
            if state == CalibrationState.BASELINE:
                events = self._add_baseline_reading(node_id, raw)
            elif state == CalibrationState.WAITING_INPUT and self._active_point is not None:
                events = self._add_point_reading(node_id)

        for level, event in events:
            logger.log(level, json.dumps(event))
        return state

    def _add_baseline_reading(self, node_id: int, raw: np.ndarray) -> list:
        baseline = self._baselines[node_id]
        if baseline.valid:
            return []

        required = self.config.baseline_readings_required
        if baseline.add(raw, required):
            node = self._nodes[node_id]
            node.baseline = baseline.ambient.copy()
            node.have_baseline = True
            node.last_magnet = node.last_raw - node.baseline
            return [(logging.INFO, {
                "event": "baseline_complete",
                "node_id": node_id,
                "ambient": baseline.ambient.tolist(),
                "magnitude": float(np.linalg.norm(baseline.ambient))
            })]
        return [(logging.DEBUG, {
            "event": "baseline_progress",
            "node_id": node_id,
            "collected": baseline.readings_collected,
            "required": required
        })]

    def _add_point_reading(self, node_id: int) -> list:
        node = self._nodes[node_id]
        if not node.have_baseline:
            return []
        point = self._points[self._active_point]
        if node_id not in point.expected_nodes or point.is_valid_for(node_id):
            return []

        required = self.config.calib_readings_per_point
        if point.add(node_id, node.last_magnet, required):
            if point.is_complete():
                self._point_done.notify_all()
            return [(logging.INFO, {
                "event": "calib_point_complete",
                "index": self._active_point,
                "node_id": node_id,
                "field": point.node_field[node_id].tolist()
            })]
        return [(logging.DEBUG, {
            "event": "calib_progress",
            "index": self._active_point,
            "node_id": node_id,
            "collected": point.reading_count[node_id],
            "required": required
        })]
