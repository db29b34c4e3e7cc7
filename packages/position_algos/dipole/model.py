"""
Point-dipole field model and its finite-difference Jacobian.

    r = sensor - (x, y, z0)
    B = (M / |r|^3) * (3 (m_hat . r_hat) r_hat - m_hat)
"""

import numpy as np


def dipole_field_grid(
    xs: np.ndarray,
    ys: np.ndarray,
    M: float,
    sensor: np.ndarray,
    m_hat: np.ndarray,
    z0: float
) -> np.ndarray:
    """
    Field seen by one sensor for many candidate magnet positions at once.

    Returns:
        Array of shape (len(xs), 3)
    """
    xs = np.asarray(xs, dtype=float)
    ys = np.asarray(ys, dtype=float)
    r = np.asarray(sensor, dtype=float) - np.stack([xs, ys, np.full_like(xs, z0)], axis=-1)
    r_norm = np.maximum(np.linalg.norm(r, axis=-1), 1.0)
    r_hat = r / r_norm[:, None]

    b_unit = 3.0 * (r_hat @ m_hat)[:, None] * r_hat - m_hat
    return (M / r_norm ** 3)[:, None] * b_unit


def dipole_field(
    x: float,
    y: float,
    M: float,
    sensor: np.ndarray,
    m_hat: np.ndarray,
    z0: float
) -> np.ndarray:
    """
    Field of a dipole at (x, y, z0) as seen by one sensor.

    Args:
        x, y: Magnet position in the magnet plane
        M: Dipole moment magnitude
        sensor: Sensor position [x, y, z]
        m_hat: Unit dipole orientation
        z0: Magnet plane height

    Returns:
        Field vector [Bx, By, Bz]
    """
    r = np.asarray(sensor, dtype=float) - np.array([x, y, z0], dtype=float)
    r_norm = max(float(np.linalg.norm(r)), 1.0)
    r_hat = r / r_norm

    b_unit = 3.0 * float(np.dot(m_hat, r_hat)) * r_hat - m_hat
    return (M / r_norm ** 3) * b_unit


def compute_jacobian(
    x: float,
    y: float,
    M: float,
    sensor: np.ndarray,
    m_hat: np.ndarray,
    z0: float,
    pos_step: float = 1.0,
    moment_rel_step: float = 1e-3
) -> np.ndarray:
    """
    Central-difference Jacobian of the dipole field.

    Returns:
        3x3 array, J[component, parameter] for parameters (x, y, M)
    """
    m_step = max(moment_rel_step * abs(M), 1.0)
    J = np.empty((3, 3))

    J[:, 0] = (dipole_field(x + pos_step, y, M, sensor, m_hat, z0)
               - dipole_field(x - pos_step, y, M, sensor, m_hat, z0)) / (2.0 * pos_step)
    J[:, 1] = (dipole_field(x, y + pos_step, M, sensor, m_hat, z0)
               - dipole_field(x, y - pos_step, M, sensor, m_hat, z0)) / (2.0 * pos_step)
    J[:, 2] = (dipole_field(x, y, M + m_step, sensor, m_hat, z0)
               - dipole_field(x, y, M - m_step, sensor, m_hat, z0)) / (2.0 * m_step)
    return J
