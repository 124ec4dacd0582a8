#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Matrix Lie Groups Module
========================

Value types for the groups that make up the MSCEqF symmetry group:

- SE3:  rigid transforms (R, t), tangent (omega, rho)
- SE23: extended poses (R, v, p), tangent (omega, nu, rho)
- SOT3: rotation and positive scale (R, c), tangent (omega, s)
- IN3:  camera intrinsics [[fx, 0, cx], [0, fy, cy], [0, 0, 1]],
        tangent (a_x, a_y, c_x, c_y)

Group products re-project rotations onto SO(3) (normalize_rotation) so that
long chains of compositions never drift off the manifold. Constructors do not
validate; validation lives in numerical_checks and runs where the symmetry
core consumes an element.

Author: MSCEqF project
"""

from __future__ import annotations

from dataclasses import dataclass, field

import numpy as np
import scipy.linalg as linalg

from .math_utils import (
    SMALL_ANGLE,
    normalize_rotation,
    skew_symmetric,
    so3_exp,
    so3_left_jacobian,
    so3_left_jacobian_inv,
    so3_log,
    vee_so3,
)


def _vec3(x) -> np.ndarray:
    return np.asarray(x, dtype=float).reshape(3)


def _mat3(x) -> np.ndarray:
    return np.asarray(x, dtype=float).reshape(3, 3)


# =============================================================================
# SE(3)
# =============================================================================

@dataclass
class SE3:
    """Rigid transform x -> R x + t."""
    R: np.ndarray = field(default_factory=lambda: np.eye(3))
    t: np.ndarray = field(default_factory=lambda: np.zeros(3))

    def __post_init__(self):
        self.R = _mat3(self.R)
        self.t = _vec3(self.t)

    @classmethod
    def identity(cls) -> SE3:
        return cls()

    @classmethod
    def from_matrix(cls, T: np.ndarray) -> SE3:
        T = np.asarray(T, dtype=float)
        if T.shape != (4, 4) or not np.allclose(T[3, :], [0.0, 0.0, 0.0, 1.0]):
            raise ValueError(f"Not an SE(3) matrix (shape={T.shape}, last row={T[-1]})")
        return cls(T[:3, :3], T[:3, 3])

    def as_matrix(self) -> np.ndarray:
        T = np.eye(4)
        T[:3, :3] = self.R
        T[:3, 3] = self.t
        return T

    def copy(self) -> SE3:
        return SE3(self.R.copy(), self.t.copy())

    def __mul__(self, other: SE3) -> SE3:
        if not isinstance(other, SE3):
            raise TypeError(f"Cannot multiply SE3 with {type(other)}")
        return SE3(normalize_rotation(self.R @ other.R), self.R @ other.t + self.t)

    def inv(self) -> SE3:
        R_inv = self.R.T
        return SE3(normalize_rotation(R_inv), -R_inv @ self.t)

    def act(self, point: np.ndarray) -> np.ndarray:
        return self.R @ _vec3(point) + self.t

    @staticmethod
    def wedge(xi: np.ndarray) -> np.ndarray:
        xi = np.asarray(xi, dtype=float).reshape(6)
        M = np.zeros((4, 4))
        M[:3, :3] = skew_symmetric(xi[0:3])
        M[:3, 3] = xi[3:6]
        return M

    @staticmethod
    def vee(M: np.ndarray) -> np.ndarray:
        return np.concatenate([vee_so3(M[:3, :3]), M[:3, 3]])

    @classmethod
    def exp(cls, xi: np.ndarray) -> SE3:
        xi = np.asarray(xi, dtype=float).reshape(6)
        return cls(so3_exp(xi[0:3]), so3_left_jacobian(xi[0:3]) @ xi[3:6])

    def log(self) -> np.ndarray:
        w = so3_log(self.R)
        return np.concatenate([w, so3_left_jacobian_inv(w) @ self.t])

    def adjoint(self) -> np.ndarray:
        """Ad_T acting on (omega, rho)."""
        Ad = np.zeros((6, 6))
        Ad[0:3, 0:3] = self.R
        Ad[3:6, 0:3] = skew_symmetric(self.t) @ self.R
        Ad[3:6, 3:6] = self.R
        return Ad

    @staticmethod
    def ad(xi: np.ndarray) -> np.ndarray:
        """ad_xi acting on (omega, rho)."""
        xi = np.asarray(xi, dtype=float).reshape(6)
        ad = np.zeros((6, 6))
        W = skew_symmetric(xi[0:3])
        ad[0:3, 0:3] = W
        ad[3:6, 0:3] = skew_symmetric(xi[3:6])
        ad[3:6, 3:6] = W
        return ad

    @staticmethod
    def left_jacobian(xi: np.ndarray) -> np.ndarray:
        """
        6x6 left Jacobian sum_n ad_xi^n / (n+1)!.

        Read off the top-right block of expm([[ad_xi, I], [0, 0]]), the same
        block-exponential trick used for discretizing continuous systems.
        """
        M = np.zeros((12, 12))
        M[0:6, 0:6] = SE3.ad(xi)
        M[0:6, 6:12] = np.eye(6)
        return linalg.expm(M)[0:6, 6:12]


# =============================================================================
# SE2(3) (extended pose)
# =============================================================================

@dataclass
class SE23:
    """
    Extended pose embedded as the 5x5 matrix

        [ R  v  p ]
        [ 0  1  0 ]
        [ 0  0  1 ]

    Tangent ordering is (omega, nu, rho): rotation, velocity column,
    position column.
    """
    R: np.ndarray = field(default_factory=lambda: np.eye(3))
    v: np.ndarray = field(default_factory=lambda: np.zeros(3))
    p: np.ndarray = field(default_factory=lambda: np.zeros(3))

    def __post_init__(self):
        self.R = _mat3(self.R)
        self.v = _vec3(self.v)
        self.p = _vec3(self.p)

    @classmethod
    def identity(cls) -> SE23:
        return cls()

    @classmethod
    def from_matrix(cls, M: np.ndarray) -> SE23:
        M = np.asarray(M, dtype=float)
        if M.shape != (5, 5):
            raise ValueError(f"SE2(3) matrix must be 5x5, got {M.shape}")
        if not np.allclose(M[3:5, :], np.array([[0, 0, 0, 1, 0], [0, 0, 0, 0, 1]])):
            raise ValueError(f"Malformed SE2(3) matrix, bottom rows:\n{M[3:5, :]}")
        return cls(M[:3, :3], M[:3, 3], M[:3, 4])

    def as_matrix(self) -> np.ndarray:
        M = np.eye(5)
        M[:3, :3] = self.R
        M[:3, 3] = self.v
        M[:3, 4] = self.p
        return M

    def copy(self) -> SE23:
        return SE23(self.R.copy(), self.v.copy(), self.p.copy())

    def pose(self) -> SE3:
        """Group homomorphism SE2(3) -> SE(3), (R, v, p) -> (R, p)."""
        return SE3(self.R, self.p)

    def rot_vel(self) -> SE3:
        """Group homomorphism SE2(3) -> SE(3), (R, v, p) -> (R, v). Moves the bias."""
        return SE3(self.R, self.v)

    def __mul__(self, other: SE23) -> SE23:
        if not isinstance(other, SE23):
            raise TypeError(f"Cannot multiply SE23 with {type(other)}")
        return SE23(normalize_rotation(self.R @ other.R),
                    self.R @ other.v + self.v,
                    self.R @ other.p + self.p)

    def inv(self) -> SE23:
        R_inv = self.R.T
        return SE23(normalize_rotation(R_inv), -R_inv @ self.v, -R_inv @ self.p)

    @staticmethod
    def wedge(xi: np.ndarray) -> np.ndarray:
        xi = np.asarray(xi, dtype=float).reshape(9)
        M = np.zeros((5, 5))
        M[:3, :3] = skew_symmetric(xi[0:3])
        M[:3, 3] = xi[3:6]
        M[:3, 4] = xi[6:9]
        return M

    @staticmethod
    def vee(M: np.ndarray) -> np.ndarray:
        return np.concatenate([vee_so3(M[:3, :3]), M[:3, 3], M[:3, 4]])

    @classmethod
    def exp(cls, xi: np.ndarray) -> SE23:
        xi = np.asarray(xi, dtype=float).reshape(9)
        J = so3_left_jacobian(xi[0:3])
        return cls(so3_exp(xi[0:3]), J @ xi[3:6], J @ xi[6:9])

    def log(self) -> np.ndarray:
        w = so3_log(self.R)
        J_inv = so3_left_jacobian_inv(w)
        return np.concatenate([w, J_inv @ self.v, J_inv @ self.p])

    @staticmethod
    def ad(xi: np.ndarray) -> np.ndarray:
        """ad_xi acting on (omega, nu, rho)."""
        xi = np.asarray(xi, dtype=float).reshape(9)
        ad = np.zeros((9, 9))
        W = skew_symmetric(xi[0:3])
        ad[0:3, 0:3] = W
        ad[3:6, 0:3] = skew_symmetric(xi[3:6])
        ad[3:6, 3:6] = W
        ad[6:9, 0:3] = skew_symmetric(xi[6:9])
        ad[6:9, 6:9] = W
        return ad


# =============================================================================
# SOT(3) (rotation and scale)
# =============================================================================

@dataclass
class SOT3:
    """Scaled rotation q -> c R q, c > 0."""
    R: np.ndarray = field(default_factory=lambda: np.eye(3))
    c: float = 1.0

    def __post_init__(self):
        self.R = _mat3(self.R)
        self.c = float(self.c)

    @classmethod
    def identity(cls) -> SOT3:
        return cls()

    def as_matrix(self) -> np.ndarray:
        return self.c * self.R

    def copy(self) -> SOT3:
        return SOT3(self.R.copy(), self.c)

    def __mul__(self, other: SOT3) -> SOT3:
        if not isinstance(other, SOT3):
            raise TypeError(f"Cannot multiply SOT3 with {type(other)}")
        return SOT3(normalize_rotation(self.R @ other.R), self.c * other.c)

    def inv(self) -> SOT3:
        return SOT3(normalize_rotation(self.R.T), 1.0 / self.c)

    def act(self, point: np.ndarray) -> np.ndarray:
        return self.c * (self.R @ _vec3(point))

    @classmethod
    def exp(cls, xi: np.ndarray) -> SOT3:
        xi = np.asarray(xi, dtype=float).reshape(4)
        return cls(so3_exp(xi[0:3]), np.exp(xi[3]))

    def log(self) -> np.ndarray:
        return np.concatenate([so3_log(self.R), [np.log(self.c)]])

    @staticmethod
    def ad(xi: np.ndarray) -> np.ndarray:
        # scale commutes with everything
        xi = np.asarray(xi, dtype=float).reshape(4)
        ad = np.zeros((4, 4))
        ad[0:3, 0:3] = skew_symmetric(xi[0:3])
        return ad


# =============================================================================
# IN(3) (camera intrinsics)
# =============================================================================

def _expm1_over_x(a: float) -> float:
    """(e^a - 1) / a, continuous at 0."""
    if abs(a) < SMALL_ANGLE:
        return 1.0 + 0.5 * a
    return np.expm1(a) / a


@dataclass
class IN3:
    """Intrinsic matrix group [[fx, 0, cx], [0, fy, cy], [0, 0, 1]], fx, fy > 0."""
    fx: float = 1.0
    fy: float = 1.0
    cx: float = 0.0
    cy: float = 0.0

    def __post_init__(self):
        self.fx = float(self.fx)
        self.fy = float(self.fy)
        self.cx = float(self.cx)
        self.cy = float(self.cy)

    @classmethod
    def identity(cls) -> IN3:
        return cls()

    @classmethod
    def from_matrix(cls, K: np.ndarray) -> IN3:
        K = np.asarray(K, dtype=float)
        if K.shape != (3, 3) or not np.allclose([K[0, 1], K[1, 0], K[2, 0], K[2, 1], K[2, 2]],
                                                [0.0, 0.0, 0.0, 0.0, 1.0]):
            raise ValueError(f"Not an intrinsic matrix:\n{K}")
        return cls(K[0, 0], K[1, 1], K[0, 2], K[1, 2])

    def as_matrix(self) -> np.ndarray:
        return np.array([[self.fx, 0.0, self.cx],
                         [0.0, self.fy, self.cy],
                         [0.0, 0.0, 1.0]])

    def copy(self) -> IN3:
        return IN3(self.fx, self.fy, self.cx, self.cy)

    def __mul__(self, other: IN3) -> IN3:
        if not isinstance(other, IN3):
            raise TypeError(f"Cannot multiply IN3 with {type(other)}")
        return IN3(self.fx * other.fx,
                   self.fy * other.fy,
                   self.fx * other.cx + self.cx,
                   self.fy * other.cy + self.cy)

    def inv(self) -> IN3:
        return IN3(1.0 / self.fx, 1.0 / self.fy, -self.cx / self.fx, -self.cy / self.fy)

    @classmethod
    def exp(cls, xi: np.ndarray) -> IN3:
        a_x, a_y, c_x, c_y = np.asarray(xi, dtype=float).reshape(4)
        return cls(np.exp(a_x), np.exp(a_y),
                   c_x * _expm1_over_x(a_x), c_y * _expm1_over_x(a_y))

    def log(self) -> np.ndarray:
        a_x = np.log(self.fx)
        a_y = np.log(self.fy)
        return np.array([a_x, a_y,
                         self.cx / _expm1_over_x(a_x),
                         self.cy / _expm1_over_x(a_y)])

    @staticmethod
    def ad(xi: np.ndarray) -> np.ndarray:
        """ad_xi acting on (a_x, a_y, c_x, c_y)."""
        a_x, a_y, c_x, c_y = np.asarray(xi, dtype=float).reshape(4)
        ad = np.zeros((4, 4))
        ad[2, 0] = -c_x
        ad[2, 2] = a_x
        ad[3, 1] = -c_y
        ad[3, 3] = a_y
        return ad
