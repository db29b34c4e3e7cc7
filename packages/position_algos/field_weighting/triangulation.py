"""
Weighted-centroid position estimate using field strength as a proximity proxy.
"""

from typing import Dict, Optional, Tuple

import numpy as np

from packages.calibration.state import NodeState
from packages.datatypes.datatypes import SensorLayout


def triangulate(
    node_states: Dict[int, NodeState],
    layout: SensorLayout,
    min_signal: float = 100.0,
    bounds: Tuple[float, float] = (0.0, 1000.0)
) -> Optional[np.ndarray]:
    """
    Average sensor positions weighted by magnet-induced field magnitude.

    Args:
        node_states: node_id -> NodeState
        layout: Physical sensor positions
        min_signal: Magnitudes below this (m-uT) are treated as noise
        bounds: Componentwise clamp for the result

    Returns:
        [x, y] estimate, or None if fewer than two sensors have usable signal
    """
    weights = []
    positions = []

    for node_id, node in sorted(node_states.items()):
        if not node.have_baseline or node_id not in layout.positions:
            continue

        magnitude = float(np.linalg.norm(node.last_magnet))
        if magnitude < min_signal:
            continue

        weights.append(magnitude)
        positions.append(np.asarray(layout.get_position(node_id), dtype=float)[:2])

    if len(weights) < 2:
        return None

    w = np.array(weights)
    estimate = (w[:, None] * np.array(positions)).sum(axis=0) / w.sum()
    return np.clip(estimate, bounds[0], bounds[1])
