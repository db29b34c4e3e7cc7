"""
Dipole position solvers.

DipoleSolver fits (x, y, M) with Gauss-Newton and Levenberg-Marquardt
damping, solving the 3x3 normal equations in closed form.
DipoleLeastSquaresSolver fits the same model with scipy for cross-checking.
"""

from typing import Dict, List, Optional, Tuple

import numpy as np
from numpy.typing import ArrayLike
from scipy.optimize import least_squares

from packages.calibration.state import NodeState
from packages.datatypes.datatypes import PositionEstimate, SensorLayout
from packages.mag_gateway.config import SolverConfig
from .model import compute_jacobian, dipole_field, dipole_field_grid


def solve_3x3(A: np.ndarray, b: np.ndarray, tolerance: float = 1e-12) -> Optional[np.ndarray]:
    """
    Solve A x = b via the adjugate and determinant.

    Returns:
        x, or None if A is singular relative to the product of its diagonal
    """
    det = (A[0, 0] * (A[1, 1] * A[2, 2] - A[1, 2] * A[2, 1])
           - A[0, 1] * (A[1, 0] * A[2, 2] - A[1, 2] * A[2, 0])
           + A[0, 2] * (A[1, 0] * A[2, 1] - A[1, 1] * A[2, 0]))

    scale = abs(A[0, 0] * A[1, 1] * A[2, 2])
    if det == 0.0 or not np.isfinite(det) or abs(det) < tolerance * scale:
        return None

    adj = np.array([
        [A[1, 1] * A[2, 2] - A[1, 2] * A[2, 1],
         A[0, 2] * A[2, 1] - A[0, 1] * A[2, 2],
         A[0, 1] * A[1, 2] - A[0, 2] * A[1, 1]],
        [A[1, 2] * A[2, 0] - A[1, 0] * A[2, 2],
         A[0, 0] * A[2, 2] - A[0, 2] * A[2, 0],
         A[0, 2] * A[1, 0] - A[0, 0] * A[1, 2]],
        [A[1, 0] * A[2, 1] - A[1, 1] * A[2, 0],
         A[0, 1] * A[2, 0] - A[0, 0] * A[2, 1],
         A[0, 0] * A[1, 1] - A[0, 1] * A[1, 0]],
    ])
    return adj @ b / det


class _DipoleProblem:
    """Measured fields paired with sensor positions for one solve."""

    def __init__(
        self,
        measured: Dict[int, ArrayLike],
        layout: SensorLayout,
        m_hat: np.ndarray,
        z0: float
    ):
        self.node_ids = [nid for nid in sorted(measured) if nid in layout.positions]
        self.sensors = [np.asarray(layout.get_position(nid), dtype=float) for nid in self.node_ids]
        self.fields = [np.asarray(measured[nid], dtype=float) for nid in self.node_ids]
        self.m_hat = m_hat
        self.z0 = z0

    def __len__(self):
        return len(self.node_ids)

    def model(self, theta: np.ndarray) -> np.ndarray:
        return np.concatenate([
            dipole_field(theta[0], theta[1], theta[2], s, self.m_hat, self.z0)
            for s in self.sensors
        ])

    def measured(self) -> np.ndarray:
        return np.concatenate(self.fields)

    def error(self, theta: np.ndarray) -> float:
        r = self.measured() - self.model(theta)
        return float(r @ r)

    def fitted_moments(self, xs: np.ndarray, ys: np.ndarray, min_moment: float) -> Tuple[np.ndarray, np.ndarray]:
        """
        Best moment and squared residual at each candidate position.
        The field is linear in M, so M has a closed form once (x, y) is fixed.
        """
        unit = np.concatenate([
            dipole_field_grid(xs, ys, 1.0, s, self.m_hat, self.z0)
            for s in self.sensors
        ], axis=1)
        b = self.measured()

        uu = np.einsum('ij,ij->i', unit, unit)
        moments = np.full(len(uu), float(min_moment))
        ok = uu > 0.0
        moments[ok] = (unit[ok] @ b) / uu[ok]
        moments = np.maximum(moments, min_moment)

        residual = b[None, :] - moments[:, None] * unit
        return moments, np.einsum('ij,ij->i', residual, residual)

    def cold_starts(
        self,
        min_moment: float,
        bounds: Tuple[float, float],
        grid_step: float,
        count: int = 1,
        separation: float = 0.0
    ) -> List[np.ndarray]:
        """
        Starting points ranked by residual, each with M fitted in closed form.

        Candidates are every sensor position (strongest field first, so it
        wins ties), the sensor centroid and a grid over `bounds`. Returned
        starts are at least `separation` apart.
        """
        strongest = int(np.argmax([f @ f for f in self.fields]))
        order = [strongest] + [i for i in range(len(self.sensors)) if i != strongest]
        centroid = np.mean(self.sensors, axis=0)

        lo, hi = bounds
        axis = np.arange(lo, hi + 0.5 * grid_step, grid_step)
        gx, gy = np.meshgrid(axis, axis)

        xs = np.concatenate([[self.sensors[i][0] + 0.1 for i in order], [centroid[0]], gx.ravel()])
        ys = np.concatenate([[self.sensors[i][1] + 0.1 for i in order], [centroid[1]], gy.ravel()])
        moments, errors = self.fitted_moments(xs, ys, min_moment)

        starts: List[np.ndarray] = []
        for i in np.argsort(errors, kind='stable'):
            if all(np.hypot(xs[i] - s[0], ys[i] - s[1]) >= separation for s in starts):
                starts.append(np.array([xs[i], ys[i], moments[i]]))
                if len(starts) == count:
                    break
        return starts


class DipoleSolver:
    """
    Gauss-Newton / Levenberg-Marquardt fit of a point dipole to the
    magnet-induced fields of two or more sensors.

    Only converged results are remembered and used to warm-start the next call.
    """

    def __init__(
        self,
        layout: SensorLayout,
        config: SolverConfig = SolverConfig(),
        dipole_orientation: Tuple[float, float, float] = (0.0, 0.0, 1.0),
        plane_height: float = 20.0,
        bounds: Tuple[float, float] = (0.0, 1000.0)
    ):
        """
        Initialize the solver.

        Args:
            layout: Physical sensor positions
            config: Iteration, damping and clamping settings
            dipole_orientation: Magnet orientation (normalized here)
            plane_height: Height z0 of the magnet plane
            bounds: Output clamp for x and y, also the cold-start search area
        """
        self.layout = layout
        self.config = config
        m = np.asarray(dipole_orientation, dtype=float)
        self.m_hat = m / np.linalg.norm(m)
        self.z0 = plane_height
        self.bounds = bounds

        self._last_theta: Optional[np.ndarray] = None
        self.last_estimate: Optional[PositionEstimate] = None

    def reset(self):
        """Forget the stored estimate."""
        self._last_theta = None
        self.last_estimate = None

    def _result(self, theta: np.ndarray, error: float, iterations: int, status: str) -> PositionEstimate:
        lo, hi = self.bounds
        return PositionEstimate(
            x=float(np.clip(theta[0], lo, hi)),
            y=float(np.clip(theta[1], lo, hi)),
            M=float(theta[2]),
            error=error,
            iterations=iterations,
            converged=(status == "converged"),
            status=status
        )

    def solve(
        self,
        measured: Dict[int, ArrayLike],
        initial_guess: Optional[PositionEstimate] = None
    ) -> Optional[PositionEstimate]:
        """
        Fit (x, y, M) to measured magnet-induced fields.

        Starts from `initial_guess` when it is marked converged, else from the
        last converged estimate, falling back to the best cold starts.

        Returns:
            PositionEstimate (converged False on divergence, singularity, a
            poor fit or hitting the iteration cap), or None with fewer than
            two sensors
        """
        problem = _DipoleProblem(measured, self.layout, self.m_hat, self.z0)
        if len(problem) < 2:
            return None

        if initial_guess is not None and initial_guess.converged:
            return self._iterate(problem, np.array([initial_guess.x, initial_guess.y, initial_guess.M], dtype=float))

        best = None
        if self._last_theta is not None:
            best = self._iterate(problem, self._last_theta.copy())
            # The magnet may have moved out of the previous basin
            if best.converged or best.status == "singular":
                return best

        cfg = self.config
        for theta in problem.cold_starts(
            cfg.min_moment,
            self.bounds,
            cfg.cold_start_grid_step,
            count=cfg.cold_start_attempts,
            separation=cfg.cold_start_separation
        ):
            estimate = self._iterate(problem, theta)
            if estimate.converged:
                return estimate
            if best is None or estimate.error < best.error:
                best = estimate
        return best

    def _iterate(self, problem: _DipoleProblem, theta: np.ndarray) -> PositionEstimate:
        cfg = self.config
        lo, hi = cfg.position_clamp

        b_meas = problem.measured()
        signal = max(float(b_meas @ b_meas), np.finfo(float).tiny)
        # Error differences below this are rounding
        roundoff = 1e-20 * signal

        error = problem.error(theta)
        extra_damping = 0.0

        for it in range(cfg.max_iterations):
            JtJ = np.zeros((3, 3))
            Jtr = np.zeros(3)
            for sensor, b in zip(problem.sensors, problem.fields):
                r = b - dipole_field(theta[0], theta[1], theta[2], sensor, self.m_hat, self.z0)
                J = compute_jacobian(
                    theta[0], theta[1], theta[2], sensor, self.m_hat, self.z0,
                    pos_step=cfg.fd_position_step,
                    moment_rel_step=cfg.fd_moment_rel_step
                )
                JtJ += J.T @ J
                Jtr += J.T @ r

            # Marquardt damping, proportional to the relative squared residual
            damping = cfg.damping_factor * error / signal + extra_damping
            JtJ[np.diag_indices(3)] *= 1.0 + damping

            delta = solve_3x3(JtJ, Jtr, cfg.singular_tolerance)
            if delta is None:
                if self.last_estimate is not None:
                    prev = self.last_estimate
                    return PositionEstimate(
                        x=prev.x, y=prev.y, M=prev.M, error=prev.error,
                        iterations=it + 1, converged=False, status="singular"
                    )
                return self._result(theta, error, it + 1, "singular")

            trial = theta + delta
            trial[0] = np.clip(trial[0], lo, hi)
            trial[1] = np.clip(trial[1], lo, hi)
            trial[2] = max(trial[2], cfg.min_moment)
            trial_error = problem.error(trial)
            step = np.hypot(trial[0] - theta[0], trial[1] - theta[1])

            # Only an undamped-by-rejection step measures distance to the minimum
            if extra_damping == 0.0 and step < cfg.convergence_threshold and it >= cfg.min_iterations:
                if trial_error <= error:
                    theta, error = trial, trial_error
                return self._finish(theta, error, it + 1, signal)

            if trial_error <= error + roundoff:
                theta, error = trial, trial_error
                extra_damping = extra_damping / 10.0 if extra_damping > 0.01 else 0.0
            elif it > cfg.min_iterations and trial_error > cfg.divergence_ratio * error + roundoff:
                return self._result(theta, error, it + 1, "diverged")
            else:
                extra_damping = max(extra_damping * 10.0, 1.0)

        return self._result(theta, error, cfg.max_iterations, "max_iterations")

    def _finish(self, theta: np.ndarray, error: float, iterations: int, signal: float) -> PositionEstimate:
        cfg = self.config
        if theta[2] <= cfg.min_moment or error > cfg.max_relative_residual * signal:
            return self._result(theta, error, iterations, "poor_fit")

        estimate = self._result(theta, error, iterations, "converged")
        self._last_theta = theta.copy()
        self.last_estimate = estimate
        return estimate


class DipoleLeastSquaresSolver:
    """Same dipole fit using scipy's Levenberg-Marquardt implementation."""

    def __init__(
        self,
        layout: SensorLayout,
        dipole_orientation: Tuple[float, float, float] = (0.0, 0.0, 1.0),
        plane_height: float = 20.0,
        bounds: Tuple[float, float] = (0.0, 1000.0),
        min_moment: float = 100.0,
        max_nfev: int = 200,
        grid_step: float = 20.0
    ):
        self.layout = layout
        m = np.asarray(dipole_orientation, dtype=float)
        self.m_hat = m / np.linalg.norm(m)
        self.z0 = plane_height
        self.bounds = bounds
        self.min_moment = min_moment
        self.max_nfev = max_nfev
        self.grid_step = grid_step

    def solve(
        self,
        measured: Dict[int, ArrayLike],
        initial_guess: Optional[PositionEstimate] = None
    ) -> Optional[PositionEstimate]:
        problem = _DipoleProblem(measured, self.layout, self.m_hat, self.z0)
        if len(problem) < 2:
            return None

        if initial_guess is not None:
            x0 = np.array([initial_guess.x, initial_guess.y, initial_guess.M], dtype=float)
        else:
            x0 = problem.cold_starts(self.min_moment, self.bounds, self.grid_step)[0]

        b_meas = problem.measured()
        # Normalized residuals; the minimizer is unchanged
        norm = max(float(np.linalg.norm(b_meas)), np.finfo(float).tiny)

        def residuals(theta):
            return (b_meas - problem.model(theta)) / norm

        result = least_squares(
            residuals,
            x0,
            method='lm',
            x_scale='jac',
            max_nfev=self.max_nfev
        )

        lo, hi = self.bounds
        return PositionEstimate(
            x=float(np.clip(result.x[0], lo, hi)),
            y=float(np.clip(result.x[1], lo, hi)),
            M=float(result.x[2]),
            error=problem.error(result.x),
            iterations=int(result.nfev),
            converged=bool(result.success),
            status="converged" if result.success else "max_iterations"
        )


def measured_fields(node_states: Dict[int, NodeState]) -> Dict[int, np.ndarray]:
    """Magnet-induced fields of every node that has a baseline."""
    return {
        nid: node.last_magnet.astype(float)
        for nid, node in node_states.items()
        if node.have_baseline
    }
