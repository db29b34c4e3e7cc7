"""
Calibration state machine and operator console.
"""

from .state import CalibrationState, NodeState, BaselineData, CalibPoint
from .engine import CalibrationEngine, CalibrationCommandError, EstimationSnapshot
from .console import OperatorConsole

__all__ = [
    'CalibrationState',
    'NodeState',
    'BaselineData',
    'CalibPoint',
    'CalibrationEngine',
    'CalibrationCommandError',
    'EstimationSnapshot',
    'OperatorConsole'
]
