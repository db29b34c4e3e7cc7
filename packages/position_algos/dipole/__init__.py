"""
Dipole field model and position solvers.
"""

from .model import dipole_field, compute_jacobian
from .solver import DipoleSolver, DipoleLeastSquaresSolver, solve_3x3, measured_fields

__all__ = [
    'dipole_field',
    'compute_jacobian',
    'DipoleSolver',
    'DipoleLeastSquaresSolver',
    'solve_3x3',
    'measured_fields'
]
