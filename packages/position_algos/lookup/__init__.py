"""
Calibration lookup-table interpolation.
"""

from .interpolation import interpolate_lookup, field_distance_sq

__all__ = ['interpolate_lookup', 'field_distance_sq']
