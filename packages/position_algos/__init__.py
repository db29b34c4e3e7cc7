"""
Magnet position estimation algorithms.
"""

from .field_weighting.triangulation import triangulate
from .lookup.interpolation import interpolate_lookup
from .blend import blend_estimates, estimate_position
from .dipole.model import dipole_field, compute_jacobian
from .dipole.solver import DipoleSolver, DipoleLeastSquaresSolver, measured_fields

__all__ = [
    'triangulate',
    'interpolate_lookup',
    'blend_estimates',
    'estimate_position',
    'dipole_field',
    'compute_jacobian',
    'DipoleSolver',
    'DipoleLeastSquaresSolver',
    'measured_fields'
]
