"""
Inverse-distance interpolation over calibration points in field space.
"""

from typing import Dict, Optional, Sequence

import numpy as np

from packages.calibration.state import CalibPoint, NodeState


def field_distance_sq(node_states: Dict[int, NodeState], point: CalibPoint) -> Optional[float]:
    """
    Mean squared distance between live magnet-induced vectors and a point's
    stored vectors, over nodes valid in both.

    Returns:
        Mean squared distance, or None if fewer than two nodes are comparable
    """
    total = 0.0
    compared = 0
    for node_id, node in node_states.items():
        if not node.have_baseline or not point.is_valid_for(node_id):
            continue
        diff = node.last_magnet.astype(float) - point.node_field[node_id].astype(float)
        total += float(diff @ diff)
        compared += 1

    if compared < 2:
        return None
    return total / compared


def interpolate_lookup(
    node_states: Dict[int, NodeState],
    points: Sequence[CalibPoint]
) -> Optional[np.ndarray]:
    """
    Weighted average of calibration point positions, weight 1/max(d^2, 1).

    Returns:
        [x, y] estimate, or None with fewer than two points or no comparable point
    """
    if len(points) < 2:
        return None

    sum_w = 0.0
    acc = np.zeros(2)
    for point in points:
        dist_sq = field_distance_sq(node_states, point)
        if dist_sq is None:
            continue
        w = 1.0 / max(dist_sq, 1.0)
        sum_w += w
        acc += w * np.array([point.x, point.y], dtype=float)

    if sum_w <= 0.0:
        return None
    return acc / sum_w
