"""Shared pytest fixtures."""

import numpy as np
import pytest

from packages.calibration.engine import CalibrationEngine
from packages.calibration.state import NodeState
from packages.mag_gateway.config import DEFAULT_MASTER_KEY, GatewayConfig


@pytest.fixture
def master_key() -> bytes:
    return DEFAULT_MASTER_KEY


@pytest.fixture
def config() -> GatewayConfig:
    return GatewayConfig()


@pytest.fixture
def engine(config: GatewayConfig) -> CalibrationEngine:
    return CalibrationEngine(config)


@pytest.fixture
def make_node():
    """Build a NodeState with a baseline and the given magnet-induced field."""
    def _make(magnet, have_baseline: bool = True) -> NodeState:
        return NodeState(
            have_baseline=have_baseline,
            last_magnet=np.array(magnet, dtype=np.int64)
        )
    return _make
