#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
MSCEqF Symmetry Module
======================

Symmetry of the MSCEqF: the group G = (SE2(3) x| se(3)) x SE(3) x IN(3) x
{SE(3) | SOT(3)}^n acting on the homogeneous space of SystemState.

Group action (right action, phi(X1 * X2, xi) = phi(X2, phi(X1, xi))):
---------------------------------------------------------------------
    T' = T C                      core extended pose
    b' = Ad_chi(C)^-1 (b - gamma) bias, chi(C) = (A, a) rotation and velocity
    S' = pose(C)^-1 S E           camera extrinsics, pose(C) = (A, b_pos)
    K' = K L                      camera intrinsics
    P' = P E_k                    camera clone k
    q' = Q_k^-1 q = R_Q^T q / c   feature k (camera frame)

The core displaces the bias through chi(C) and the extrinsics through
pose(C); both are homomorphisms, so the action stays a right action with the
semidirect bias product of MSCEqFState. Intrinsics and clone/feature blocks
are moved only by their own sub-block.

Lift:
-----
With W, B, G the 5x5 embeddings of (omega, a, nu), (b_w, b_a) and (0, g):

    Lambda_C = W - B + D + T^-1 (G - D) T
             = (omega - b_w,  a - b_a + R^T g,  R^T v + nu)
    Lambda_b = -ad_chi(Lambda_C) b

so that T Lambda_C = T (W - B + D) + (G - D) T reproduces
R_dot = R [omega - b_w]x,  v_dot = R (a - b_a) + g,  p_dot = v + R nu,
and the bias stays constant. nu is a virtual input, zero for a real IMU.

Input action:
-------------
    W' = C^-1 (W + D) C - D - Pi(C^-1 Gamma C),  Pi(M) = M - M D^T D

gives lift(phi(X, xi), psi(X, u)) = Ad_X^-1 lift(xi, u) on the core, bias,
extrinsic, intrinsic and clone blocks whenever C has no position part or b_w
is zero. Otherwise the core position rate is off by A^T (b_w x b_pos).

Author: MSCEqF project
"""

from dataclasses import replace
from typing import Optional

import numpy as np
import scipy.linalg as linalg

from . import config as cfg
from .lie_groups import IN3, SE23, SE3, SOT3
from .math_utils import skew_symmetric
from .numerical_checks import DEFAULT_ORTHO_TOL, assert_finite, check_block_layout
from .state import (
    CLONE_DIM,
    CameraClone,
    Feature,
    MSCEqFAlgebra,
    MSCEqFState,
    SystemState,
)


def _build_D() -> np.ndarray:
    D = np.zeros((5, 5))
    D[3, 4] = 1.0
    D.flags.writeable = False
    return D


# The D matrix: T D - D T moves the velocity column into the position column
D = _build_D()


def _rot_vel_part(M: np.ndarray) -> np.ndarray:
    """Drop the position column of a 5x5 se2(3) matrix."""
    return M - M @ D.T @ D


def _bias_matrix(b: np.ndarray) -> np.ndarray:
    return SE23.wedge(np.concatenate([b, np.zeros(3)]))


def _input_matrix(u) -> np.ndarray:
    W = np.zeros((5, 5))
    W[:3, :3] = skew_symmetric(np.asarray(u.ang, dtype=float).reshape(3))
    W[:3, 3] = np.asarray(u.acc, dtype=float).reshape(3)
    nu = getattr(u, 'nu', None)
    if nu is not None:
        W[:3, 4] = np.asarray(nu, dtype=float).reshape(3)
    return W


def compose(X1: MSCEqFState, X2: MSCEqFState) -> MSCEqFState:
    """
    Element acting like X2 first, then X1.

    phi is a right action, so phi(X1, phi(X2, xi)) == phi(X2 * X1, xi).
    """
    return X2 * X1


def phi(X: MSCEqFState, xi: SystemState, tol: float = DEFAULT_ORTHO_TOL) -> SystemState:
    """
    Right group action of the symmetry group on the homogeneous space.

    Args:
        X: MSCEqF state (symmetry group element)
        xi: System state (homogeneous space element)
        tol: Orthonormality tolerance for rotation checks

    Returns:
        New SystemState; X and xi are not modified

    Raises:
        ValueError: malformed X or xi, or clone/feature blocks that do not
            match identifier-for-identifier
    """
    X.validate(tol)
    xi.validate(tol)
    check_block_layout(X.blocks.ids(), xi.blocks.ids())

    T = xi.T * X.C
    if xi.b is None and not np.any(X.gamma):
        b = None
    else:
        b = X.C.inv().rot_vel().adjoint() @ (xi.bias() - X.gamma)
    S = X.C.pose().inv() * xi.S * X.E
    K = xi.K * X.L

    out = SystemState(T, b, S, K)
    for key, block in xi.blocks.items():
        Xk = X.blocks[key]
        if isinstance(block, CameraClone) and isinstance(Xk, SE3):
            out.blocks.add(key, CameraClone(block.pose * Xk, block.timestamp))
        elif isinstance(block, Feature) and isinstance(Xk, SOT3):
            out.blocks.add(key, Feature(Xk.inv().act(block.point)))
        else:
            raise ValueError(f"Block {key!r}: {type(Xk).__name__} cannot act on "
                             f"{type(block).__name__}")
    return out


def input_action(X: MSCEqFState, u, tol: float = DEFAULT_ORTHO_TOL):
    """
    Action psi(X, u) of the symmetry group on the IMU input.

    Returns a copy of u with ang, acc and the virtual position rate nu
    replaced by the transformed input. Only X's core and bias blocks act.
    """
    X.validate(tol)
    C = X.C.as_matrix()
    C_inv = X.C.inv().as_matrix()
    W = C_inv @ (_input_matrix(u) + D) @ C - D - _rot_vel_part(C_inv @ _bias_matrix(X.gamma) @ C)
    w = SE23.vee(W)
    return replace(u, ang=w[0:3], acc=w[3:6], nu=w[6:9])


def lift(xi: SystemState, u, imu_params: Optional[dict] = None,
         tol: float = DEFAULT_ORTHO_TOL) -> MSCEqFAlgebra:
    """
    Lift the system dynamics onto the symmetry group.

    Args:
        xi: System state (homogeneous space element)
        u: IMU sample with angular velocity `ang`, specific force `acc` and
            optional virtual position rate `nu`
        imu_params: IMU parameters (g_norm)
        tol: Orthonormality tolerance for rotation checks on xi

    Returns:
        Lie algebra element whose flow through phi reproduces the
        continuous-time kinematics at xi. Non-finite IMU components give
        non-finite generator components.
    """
    xi.validate(tol)
    g_norm = (imu_params or {}).get('g_norm', cfg.DEFAULT_G_NORM)
    bias = xi.bias()

    W = _input_matrix(u)
    B = _bias_matrix(bias)
    G = np.zeros((5, 5))
    G[:3, 3] = np.array([0.0, 0.0, -g_norm])

    T = xi.T.as_matrix()
    T_inv = xi.T.inv().as_matrix()
    core = SE23.vee(W - B + D + T_inv @ (G - D) @ T)

    # Cancels the core's pull on the bias, b stays constant along the flow
    bias_gen = -SE3.ad(core[0:6]) @ bias

    # Extrinsics: Ad_{S^-1} of the pose part keeps S fixed along the flow.
    # The result is the camera twist (w_c, v_c) in the camera frame.
    pose_rate = np.concatenate([core[0:3], core[6:9]])
    extrinsic = xi.S.inv().adjoint() @ pose_rate
    w_c = extrinsic[0:3]
    v_c = extrinsic[3:6]

    out = MSCEqFAlgebra(core, bias_gen, extrinsic, np.zeros(4))
    for key, block in xi.blocks.items():
        if isinstance(block, CameraClone):
            out.blocks.add(key, np.zeros(CLONE_DIM))
        else:
            q = block.point
            n2 = float(q @ q)
            Omega = w_c + np.cross(q, v_c) / n2
            s = float(q @ v_c) / n2
            out.blocks.add(key, np.concatenate([Omega, [s]]))

    if cfg.VERBOSE_DEBUG:
        print(f"[MSCEqF] lift: omega={core[0:3]}, nu={core[3:6]}, rho={core[6:9]}")
    return out


def curvature_correction(X: MSCEqFState, inn: np.ndarray,
                         tol: float = DEFAULT_ORTHO_TOL) -> np.ndarray:
    """
    Return the Gamma matrix for the reset / curvature correction.

    Gamma = I - 1/2 ad_inn over X's layout. Blocks are decoupled except for
    the bias rows: with the semidirect bracket

        [(x, a), (y, b)]_bias = ad_chi(x) b - ad_chi(y) a

    the bias rows carry ad_chi(inn_core) on the bias columns and ad_inn_bias
    on the rotation/velocity columns of the core. chi(inn_core) is read off
    the core innovation matrix with its position column removed through D.

    Args:
        X: MSCEqF state (symmetry group element)
        inn: Innovation in X's tangent coordinates (length X.dof)
        tol: Orthonormality tolerance for rotation checks on X

    Returns:
        (X.dof, X.dof) Gamma matrix, identity for a zero innovation
    """
    X.validate(tol)
    inn = np.asarray(inn, dtype=float).reshape(-1)
    if inn.size != X.dof:
        raise ValueError(f"Innovation has {inn.size} entries, X has {X.dof} dof")
    assert_finite("innovation", inn, extra_info={"dof": X.dof})

    delta = MSCEqFAlgebra.from_vector(inn, X)
    chi = SE23.vee(_rot_vel_part(SE23.wedge(delta.core)))[0:6]
    blocks = [
        SE23.ad(delta.core),
        SE3.ad(chi),
        SE3.ad(delta.extrinsic),
        IN3.ad(delta.intrinsic),
    ]
    for key, Xk in X.blocks.items():
        if isinstance(Xk, SE3):
            blocks.append(SE3.ad(delta.blocks[key]))
        else:
            blocks.append(SOT3.ad(delta.blocks[key]))

    ad = linalg.block_diag(*blocks)
    ad[9:15, 0:6] = SE3.ad(delta.bias)
    return np.eye(X.dof) - 0.5 * ad


def flow(xi: SystemState, u, dt: float, imu_params: Optional[dict] = None,
         tol: float = DEFAULT_ORTHO_TOL) -> SystemState:
    """
    One exponential step of the lifted flow: phi(exp(dt * lift(xi, u)), xi).

    Raises ValueError when u is non-finite (the resulting group element is
    malformed).
    """
    Lambda = lift(xi, u, imu_params, tol)
    return phi(MSCEqFState.exp(dt * Lambda), xi, tol)
