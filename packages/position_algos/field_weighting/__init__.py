"""
Field-strength weighted triangulation.
"""

from .triangulation import triangulate

__all__ = ['triangulate']
