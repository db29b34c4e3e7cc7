"""Tests for the dipole field model and solvers."""

import numpy as np
import pytest

from packages.calibration.state import NodeState
from packages.datatypes.datatypes import PositionEstimate
from packages.mag_gateway.config import SolverConfig
from packages.position_algos.dipole.model import compute_jacobian, dipole_field, dipole_field_grid
from packages.position_algos.dipole.solver import (
    DipoleLeastSquaresSolver,
    DipoleSolver,
    _DipoleProblem,
    measured_fields,
    solve_3x3,
)

M_HAT = np.array([0.0, 0.0, 1.0])
TRUTH = (300.0, 700.0, 5000.0)


def synthetic_fields(layout, x, y, M, z0=20.0):
    return {
        nid: dipole_field(x, y, M, layout.get_position(nid), M_HAT, z0)
        for nid in layout.node_ids()
    }


@pytest.fixture
def warm_guess():
    return PositionEstimate(x=320.0, y=680.0, M=4500.0, error=0.0, iterations=0, converged=True)


def test_field_directly_below_magnet():
    b = dipole_field(0.0, 0.0, 8000.0, np.array([0.0, 0.0, 0.0]), M_HAT, 20.0)
    np.testing.assert_allclose(b, [0.0, 0.0, 2.0])


def test_field_distance_is_floored():
    b = dipole_field(0.0, 0.0, 5.0, np.array([0.0, 0.0, 0.0]), M_HAT, 0.0)
    np.testing.assert_allclose(b, [0.0, 0.0, -5.0])


def test_field_falls_off_with_cube_of_distance():
    near = dipole_field(0.0, 0.0, 1.0, np.array([100.0, 0.0, 20.0]), M_HAT, 20.0)
    far = dipole_field(0.0, 0.0, 1.0, np.array([200.0, 0.0, 20.0]), M_HAT, 20.0)
    np.testing.assert_allclose(near, 8.0 * far)


def test_jacobian_columns():
    sensor = np.array([500.0, 1000.0, 0.0])
    x, y, M = 300.0, 700.0, 5000.0
    J = compute_jacobian(x, y, M, sensor, M_HAT, 20.0)

    # The field is linear in M
    np.testing.assert_allclose(J[:, 2], dipole_field(x, y, 1.0, sensor, M_HAT, 20.0), rtol=1e-9)

    h = 1e-3
    dx = (dipole_field(x + h, y, M, sensor, M_HAT, 20.0)
          - dipole_field(x - h, y, M, sensor, M_HAT, 20.0)) / (2 * h)
    np.testing.assert_allclose(J[:, 0], dx, rtol=1e-3, atol=1e-4 * np.abs(dx).max())


def test_solve_3x3_matches_numpy():
    A = np.array([[4.0, 1.0, 0.5], [1.0, 3.0, 0.2], [0.5, 0.2, 2.0]])
    b = np.array([1.0, -2.0, 0.5])
    np.testing.assert_allclose(solve_3x3(A, b), np.linalg.solve(A, b))


def test_solve_3x3_singular():
    A = np.array([[1.0, 2.0, 3.0], [2.0, 4.0, 6.0], [1.0, 0.0, 1.0]])
    assert solve_3x3(A, np.ones(3)) is None
    assert solve_3x3(np.full((3, 3), np.nan), np.ones(3)) is None


def test_converges_from_warm_guess(config, warm_guess):
    solver = DipoleSolver(config.sensor_layout)
    fields = synthetic_fields(config.sensor_layout, *TRUTH)

    result = solver.solve(fields, initial_guess=warm_guess)

    assert result.converged
    assert result.status == "converged"
    assert result.x == pytest.approx(300.0, abs=5.0)
    assert result.y == pytest.approx(700.0, abs=5.0)
    assert solver.last_estimate == result


def test_warm_start_from_previous_estimate(config, warm_guess):
    solver = DipoleSolver(config.sensor_layout)
    solver.solve(synthetic_fields(config.sensor_layout, *TRUTH), initial_guess=warm_guess)

    # Small move, no explicit guess
    result = solver.solve(synthetic_fields(config.sensor_layout, 310.0, 690.0, 5000.0))

    assert result.converged
    assert result.x == pytest.approx(310.0, abs=5.0)
    assert result.y == pytest.approx(690.0, abs=5.0)


def test_converges_from_cold_start(config):
    solver = DipoleSolver(config.sensor_layout)
    result = solver.solve(synthetic_fields(config.sensor_layout, *TRUTH))

    assert result.converged
    assert result.x == pytest.approx(300.0, abs=5.0)
    assert result.y == pytest.approx(700.0, abs=5.0)
    assert result.M == pytest.approx(5000.0, rel=0.01)
    assert solver.last_estimate == result


@pytest.mark.parametrize("x, y", [(412.0, 263.0), (500.0, 500.0), (187.0, 845.0), (733.0, 129.0)])
def test_converges_from_cold_start_with_strong_magnet(config, x, y):
    solver = DipoleSolver(config.sensor_layout)
    result = solver.solve(synthetic_fields(config.sensor_layout, x, y, 2.0e10))

    assert result.converged
    assert result.x == pytest.approx(x, abs=5.0)
    assert result.y == pytest.approx(y, abs=5.0)


def test_cold_starts_are_ranked_and_separated(config):
    problem = _DipoleProblem(synthetic_fields(config.sensor_layout, *TRUTH), config.sensor_layout, M_HAT, 20.0)
    starts = problem.cold_starts(100.0, (0.0, 1000.0), 20.0, count=3, separation=150.0)

    assert len(starts) == 3
    np.testing.assert_allclose(starts[0][:2], [300.0, 700.0])
    assert starts[0][2] == pytest.approx(5000.0, rel=1e-6)
    for i in range(3):
        for j in range(i + 1, 3):
            assert np.hypot(*(starts[i][:2] - starts[j][:2])) >= 150.0


def test_moment_at_floor_is_not_converged(config):
    # Too weak for any moment above the floor anywhere in the clamp region
    solver = DipoleSolver(config.sensor_layout)
    result = solver.solve(synthetic_fields(config.sensor_layout, 300.0, 700.0, 1.0))

    assert not result.converged
    assert result.status in {"poor_fit", "max_iterations", "diverged"}
    assert solver.last_estimate is None


def test_poor_fit_is_not_remembered(config, warm_guess):
    solver = DipoleSolver(config.sensor_layout, config=SolverConfig(max_relative_residual=-1.0))
    result = solver.solve(synthetic_fields(config.sensor_layout, *TRUTH), initial_guess=warm_guess)

    assert result.status == "poor_fit"
    assert not result.converged
    assert solver.last_estimate is None


def test_iteration_cap_is_not_converged(config, warm_guess):
    solver = DipoleSolver(config.sensor_layout, config=SolverConfig(max_iterations=2))
    result = solver.solve(synthetic_fields(config.sensor_layout, *TRUTH), initial_guess=warm_guess)

    assert not result.converged
    assert result.status == "max_iterations"
    assert result.iterations == 2
    assert solver.last_estimate is None


def test_singular_returns_previous_estimate(config, warm_guess):
    solver = DipoleSolver(config.sensor_layout)
    fields = synthetic_fields(config.sensor_layout, *TRUTH)
    previous = solver.solve(fields, initial_guess=warm_guess)

    # An SPD matrix never reaches the product of its diagonal unless diagonal
    solver.config = SolverConfig(singular_tolerance=1.0)
    result = solver.solve(fields)

    assert result.status == "singular"
    assert not result.converged
    assert (result.x, result.y, result.M) == (previous.x, previous.y, previous.M)
    assert solver.last_estimate == previous


def test_singular_without_history(config, warm_guess):
    solver = DipoleSolver(config.sensor_layout, config=SolverConfig(singular_tolerance=1.0))
    result = solver.solve(synthetic_fields(config.sensor_layout, *TRUTH), initial_guess=warm_guess)

    assert result.status == "singular"
    assert (result.x, result.y, result.M) == (320.0, 680.0, 4500.0)


def test_needs_two_sensors(config):
    solver = DipoleSolver(config.sensor_layout)
    assert solver.solve({1: [0.0, 0.0, -1e-3]}) is None


def test_reset_forgets_estimate(config, warm_guess):
    solver = DipoleSolver(config.sensor_layout)
    solver.solve(synthetic_fields(config.sensor_layout, *TRUTH), initial_guess=warm_guess)
    solver.reset()
    assert solver.last_estimate is None


def test_least_squares_reference_agrees(config, warm_guess):
    solver = DipoleLeastSquaresSolver(config.sensor_layout)
    result = solver.solve(synthetic_fields(config.sensor_layout, *TRUTH), initial_guess=warm_guess)

    assert result.converged
    assert result.x == pytest.approx(300.0, abs=5.0)
    assert result.y == pytest.approx(700.0, abs=5.0)


def test_measured_fields_skips_nodes_without_baseline():
    nodes = {
        1: NodeState(have_baseline=True, last_magnet=np.array([1, 2, 3])),
        2: NodeState(have_baseline=False, last_magnet=np.array([4, 5, 6])),
    }
    fields = measured_fields(nodes)
    assert list(fields) == [1]
    assert fields[1].dtype == float


def test_grid_field_matches_single_field():
    sensor = np.array([500.0, 1000.0, 0.0])
    xs = np.array([0.0, 300.0, 500.0])
    ys = np.array([0.0, 700.0, 1000.0])
    grid = dipole_field_grid(xs, ys, 5000.0, sensor, M_HAT, 20.0)
    for i in range(3):
        np.testing.assert_allclose(grid[i], dipole_field(xs[i], ys[i], 5000.0, sensor, M_HAT, 20.0))


def test_recovers_when_magnet_jumps(config, warm_guess):
    solver = DipoleSolver(config.sensor_layout)
    solver.solve(synthetic_fields(config.sensor_layout, *TRUTH), initial_guess=warm_guess)

    result = solver.solve(synthetic_fields(config.sensor_layout, 800.0, 200.0, 5000.0))

    assert result.converged
    assert result.x == pytest.approx(800.0, abs=5.0)
    assert result.y == pytest.approx(200.0, abs=5.0)
