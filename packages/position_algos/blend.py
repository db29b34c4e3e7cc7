"""
Production position estimate: triangulation refined by the calibration lookup.
"""

from typing import Dict, Optional, Sequence, Tuple

import numpy as np

from packages.calibration.state import CalibPoint, NodeState
from packages.datatypes.datatypes import PositionFix, SensorLayout
from .field_weighting.triangulation import triangulate
from .lookup.interpolation import interpolate_lookup


def blend_estimates(
    triangulation: np.ndarray,
    lookup: np.ndarray,
    triangulation_weight: float = 0.7
) -> np.ndarray:
    """Componentwise w * triangulation + (1 - w) * lookup."""
    return (triangulation_weight * np.asarray(triangulation, dtype=float)
            + (1.0 - triangulation_weight) * np.asarray(lookup, dtype=float))


def estimate_position(
    node_states: Dict[int, NodeState],
    points: Sequence[CalibPoint],
    layout: SensorLayout,
    min_signal: float = 100.0,
    bounds: Tuple[float, float] = (0.0, 1000.0),
    triangulation_weight: float = 0.7
) -> Optional[PositionFix]:
    """
    Triangulate, blending with the lookup table when two or more calibration
    points exist. Falls back to lookup alone when triangulation fails.

    Returns:
        PositionFix, or None if no method produced an estimate
    """
    tri = triangulate(node_states, layout, min_signal=min_signal, bounds=bounds)

    if tri is not None:
        lookup = interpolate_lookup(node_states, points) if len(points) >= 2 else None
        if lookup is None:
            return PositionFix(x=float(tri[0]), y=float(tri[1]), method="triangulation")
        blended = blend_estimates(tri, lookup, triangulation_weight)
        return PositionFix(x=float(blended[0]), y=float(blended[1]), method="blend")

    lookup = interpolate_lookup(node_states, points)
    if lookup is None:
        return None
    return PositionFix(x=float(lookup[0]), y=float(lookup[1]), method="lookup")
