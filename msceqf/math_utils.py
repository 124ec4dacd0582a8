#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
MSCEqF Math Utilities Module
============================

Rotation helpers shared by the Lie group types and the symmetry core.

Quaternion Convention:
----------------------
All quaternions use Hamilton convention with [w, x, y, z] ordering, the
same ordering used by the groundtruth records. scipy works in [x, y, z, w],
conversions happen here and nowhere else.

Key Operations:
---------------
- skew_symmetric / vee_so3: so(3) hat and vee maps
- so3_exp / so3_log: rotation vector <-> rotation matrix
- so3_left_jacobian: left Jacobian J(phi) used by the SE(3)/SE2(3) exponentials
- normalize_rotation: project a 3x3 matrix back onto SO(3)
- quat_to_rot / rot_to_quat: [w,x,y,z] quaternion conversions

Author: MSCEqF project
"""

import numpy as np
from scipy.spatial.transform import Rotation as R_scipy


# Angles below this use series expansions instead of the closed forms
SMALL_ANGLE = 1e-8


# =============================================================================
# so(3) hat / vee
# =============================================================================

def skew_symmetric(v: np.ndarray) -> np.ndarray:
    """
    Create skew-symmetric matrix from 3D vector.
    [v]x such that [v]x @ u = v x u (cross product)

    [v]x = [ 0   -vz   vy ]
           [ vz   0   -vx ]
           [-vy   vx   0  ]
    """
    return np.array([
        [0,      -v[2],  v[1]],
        [v[2],    0,    -v[0]],
        [-v[1],   v[0],   0   ]
    ], dtype=float)


def vee_so3(M: np.ndarray) -> np.ndarray:
    """Inverse of skew_symmetric (uses the antisymmetric part of M)."""
    return 0.5 * np.array([
        M[2, 1] - M[1, 2],
        M[0, 2] - M[2, 0],
        M[1, 0] - M[0, 1],
    ], dtype=float)


# =============================================================================
# SO(3) exponential / logarithm
# =============================================================================

def so3_exp(phi: np.ndarray) -> np.ndarray:
    """
    Rotation vector -> rotation matrix (Rodrigues).

    Non-finite rotation vectors give a NaN matrix instead of raising, so a
    corrupted generator stays visible downstream.
    """
    phi = np.asarray(phi, dtype=float).reshape(3)
    if not np.all(np.isfinite(phi)):
        return np.full((3, 3), np.nan)
    return R_scipy.from_rotvec(phi).as_matrix()


def so3_log(R: np.ndarray) -> np.ndarray:
    """Rotation matrix -> rotation vector in the ball of radius pi."""
    R = np.asarray(R, dtype=float)
    if not np.all(np.isfinite(R)):
        return np.full(3, np.nan)
    return R_scipy.from_matrix(R).as_rotvec()


def so3_left_jacobian(phi: np.ndarray) -> np.ndarray:
    """
    Left Jacobian of SO(3).

    J(phi) = I + (1 - cos t)/t^2 [phi]x + (t - sin t)/t^3 [phi]x^2,  t = |phi|

    Maps the translational part of a tangent vector to the translation of
    the corresponding SE(3) / SE2(3) group element.
    """
    phi = np.asarray(phi, dtype=float).reshape(3)
    theta = np.linalg.norm(phi)
    Phi = skew_symmetric(phi)
    if theta < SMALL_ANGLE:
        return np.eye(3) + 0.5 * Phi + Phi @ Phi / 6.0
    theta2 = theta * theta
    a = (1.0 - np.cos(theta)) / theta2
    b = (theta - np.sin(theta)) / (theta2 * theta)
    return np.eye(3) + a * Phi + b * Phi @ Phi


def so3_left_jacobian_inv(phi: np.ndarray) -> np.ndarray:
    """
    Inverse of so3_left_jacobian in closed form.

    J^-1(phi) = I - 1/2 [phi]x + (1/t^2 - (1 + cos t)/(2 t sin t)) [phi]x^2
    """
    phi = np.asarray(phi, dtype=float).reshape(3)
    theta = np.linalg.norm(phi)
    Phi = skew_symmetric(phi)
    if theta < SMALL_ANGLE:
        return np.eye(3) - 0.5 * Phi + Phi @ Phi / 12.0
    c = 1.0 / (theta * theta) - (1.0 + np.cos(theta)) / (2.0 * theta * np.sin(theta))
    return np.eye(3) - 0.5 * Phi + c * Phi @ Phi


def normalize_rotation(R: np.ndarray) -> np.ndarray:
    """
    Project a 3x3 matrix onto SO(3) (closest rotation in Frobenius norm).

    Applied at every composition boundary so round-off never accumulates.
    Non-finite input is returned unchanged.
    """
    R = np.asarray(R, dtype=float)
    if not np.all(np.isfinite(R)):
        return R.copy()
    U, _, Vt = np.linalg.svd(R)
    R_out = U @ Vt
    if np.linalg.det(R_out) < 0:
        U[:, -1] *= -1.0
        R_out = U @ Vt
    return R_out


def orthonormality_error(R: np.ndarray) -> float:
    """max |R^T R - I|, inf for non-finite input."""
    R = np.asarray(R, dtype=float)
    if R.shape != (3, 3) or not np.all(np.isfinite(R)):
        return float("inf")
    return float(np.max(np.abs(R.T @ R - np.eye(3))))


# =============================================================================
# Quaternion conversions (all use [w, x, y, z] Hamilton convention)
# =============================================================================

def quat_normalize(q: np.ndarray) -> np.ndarray:
    """
    Normalize quaternion to unit length.

    Args:
        q: Quaternion [w, x, y, z]

    Returns:
        Normalized quaternion with ||q|| = 1
    """
    norm = np.linalg.norm(q)
    if norm < 1e-10:
        return np.array([1.0, 0.0, 0.0, 0.0])
    return q / norm


def quat_to_rot(q: np.ndarray) -> np.ndarray:
    """Convert quaternion [w,x,y,z] to 3x3 rotation matrix."""
    w, x, y, z = quat_normalize(np.asarray(q, dtype=float))
    return np.array([
        [1-2*(y*y+z*z), 2*(x*y-w*z),   2*(x*z+w*y)],
        [2*(x*y+w*z),   1-2*(x*x+z*z), 2*(y*z-w*x)],
        [2*(x*z-w*y),   2*(y*z+w*x),   1-2*(x*x+y*y)]
    ])


def rot_to_quat(R: np.ndarray) -> np.ndarray:
    """Convert 3x3 rotation matrix to quaternion [w,x,y,z] with w >= 0."""
    q_xyzw = R_scipy.from_matrix(R).as_quat()  # scipy returns [x, y, z, w]
    q = np.array([q_xyzw[3], q_xyzw[0], q_xyzw[1], q_xyzw[2]])
    if q[0] < 0:
        q = -q
    return q
