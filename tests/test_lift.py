import numpy as np
import pytest

from msceqf.data_loaders import Imu
from msceqf.lie_groups import IN3, SE23, SE3
from msceqf.math_utils import skew_symmetric, so3_exp, so3_log
from msceqf.state import CameraClone, Feature, MSCEqFAlgebra, MSCEqFState, SystemState
from msceqf.symmetry import flow, input_action, lift, phi

G_NORM = 9.81
GRAVITY = np.array([0.0, 0.0, -G_NORM])


def _make_xi(seed=3) -> SystemState:
    rng = np.random.default_rng(seed)
    xi = SystemState(
        SE23(so3_exp(rng.normal(size=3)), rng.normal(size=3), rng.normal(size=3)),
        0.05 * rng.normal(size=6),
        SE3(so3_exp(0.2 * rng.normal(size=3)), 0.1 * rng.normal(size=3)),
        IN3(450.0, 455.0, 320.0, 240.0),
    )
    xi.blocks.add("c0", CameraClone(SE3(so3_exp(rng.normal(size=3)), rng.normal(size=3)), 0.0))
    xi.blocks.add("f0", Feature(np.array([0.3, -0.2, 4.0])))
    xi.blocks.add("f1", Feature(np.array([-1.0, 0.5, 2.5])))
    return xi


def _make_imu(seed=4) -> Imu:
    rng = np.random.default_rng(seed)
    return Imu(0.0, rng.normal(size=3), np.array([0.0, 0.0, G_NORM]) + rng.normal(size=3))


def test_stationary_platform_has_zero_core_generator():
    xi = SystemState()
    u = Imu(0.0, np.zeros(3), np.array([0.0, 0.0, G_NORM]))

    Lambda = lift(xi, u, {"g_norm": G_NORM})

    assert np.allclose(Lambda.core, np.zeros(9), atol=1e-12)
    assert np.allclose(Lambda.extrinsic, np.zeros(6), atol=1e-12)


def test_stationary_platform_does_not_move_under_flow():
    xi = SystemState(SE23(np.eye(3), np.zeros(3), np.array([1.0, 2.0, 3.0])))
    u = Imu(0.0, np.zeros(3), np.array([0.0, 0.0, G_NORM]))

    out = flow(xi, u, 0.1, {"g_norm": G_NORM})

    assert np.allclose(out.T.as_matrix(), xi.T.as_matrix(), atol=1e-12)


def test_core_generator_closed_form():
    xi = _make_xi()
    u = _make_imu()

    Lambda = lift(xi, u, {"g_norm": G_NORM})

    assert np.allclose(Lambda.core[0:3], u.ang - xi.bw)
    assert np.allclose(Lambda.core[3:6], u.acc - xi.ba + xi.R.T @ GRAVITY)
    assert np.allclose(Lambda.core[6:9], xi.R.T @ xi.v)
    assert np.allclose(Lambda.bias, -SE3.ad(Lambda.core[0:6]) @ xi.bias())
    assert np.allclose(Lambda.intrinsic, np.zeros(4))
    assert np.allclose(Lambda.blocks["c0"], np.zeros(6))


def test_default_gravity_magnitude():
    xi = _make_xi()
    u = _make_imu()
    assert np.allclose(lift(xi, u).core, lift(xi, u, {"g_norm": 9.81}).core)


def test_missing_bias_reads_as_zero():
    xi = _make_xi()
    xi_zero = xi.copy()
    xi.b = None
    xi_zero.b = np.zeros(6)
    u = _make_imu()

    assert np.allclose(lift(xi, u).vector(), lift(xi_zero, u).vector())


def test_non_finite_input_propagates():
    xi = _make_xi()
    u = Imu(0.0, np.array([np.nan, 0.0, 0.0]), np.array([0.0, 0.0, G_NORM]))

    Lambda = lift(xi, u)

    assert np.isnan(Lambda.core[0:3]).any()
    assert np.isfinite(Lambda.core[6:9]).all()
    with pytest.raises(ValueError):
        flow(xi, u, 0.01)


def test_flow_reproduces_kinematics():
    xi = _make_xi()
    u = _make_imu()
    dt = 1e-6

    out = flow(xi, u, dt, {"g_norm": G_NORM})

    w = u.ang - xi.bw
    assert np.allclose(so3_log(xi.R.T @ out.R) / dt, w, atol=1e-4)
    assert np.allclose((out.v - xi.v) / dt, xi.R @ (u.acc - xi.ba) + GRAVITY, atol=1e-4)
    assert np.allclose((out.p - xi.p) / dt, xi.v, atol=1e-4)

    # features are static in the world, expressed in the moving camera frame
    R_S, t_S = xi.S.R, xi.S.t
    w_c = R_S.T @ w
    v_c = R_S.T @ (xi.R.T @ xi.v + np.cross(w, t_S))
    for key in ("f0", "f1"):
        q = xi.blocks[key].point
        q_dot = -np.cross(w_c, q) - v_c
        assert np.allclose((out.blocks[key].point - q) / dt, q_dot, atol=1e-4)


def test_static_blocks_are_constant_along_flow():
    xi = _make_xi()
    u = _make_imu()

    out = flow(xi, u, 0.5)

    assert np.allclose(out.S.as_matrix(), xi.S.as_matrix(), atol=1e-9)
    assert np.allclose(out.K.as_matrix(), xi.K.as_matrix())
    assert np.allclose(out.bias(), xi.bias())
    assert np.allclose(out.blocks["c0"].pose.as_matrix(),
                       xi.blocks["c0"].pose.as_matrix(), atol=1e-12)


def _conjugated(X: MSCEqFState, Lambda: MSCEqFAlgebra, s=1e-6) -> np.ndarray:
    """Ad_{X^-1} Lambda as d/ds log(X^-1 exp(s Lambda) X) at s = 0."""
    X_inv = X.inv()
    plus = (X_inv * MSCEqFState.exp(s * Lambda) * X).log().vector()
    minus = (X_inv * MSCEqFState.exp(-s * Lambda) * X).log().vector()
    return (plus - minus) / (2.0 * s)


def _core_element(seed, with_position=False) -> MSCEqFState:
    rng = np.random.default_rng(seed)
    p = rng.normal(size=3) if with_position else np.zeros(3)
    return MSCEqFState(C=SE23(so3_exp(rng.normal(size=3)), rng.normal(size=3), p),
                       gamma=0.2 * rng.normal(size=6))


def test_input_action_moves_input_by_core_and_bias():
    u = _make_imu()
    X = _core_element(7)
    A, a = X.C.R, X.C.v

    moved = input_action(X, u)

    shift = X.C.inv().rot_vel().adjoint() @ X.gamma
    assert np.allclose(moved.ang, A.T @ u.ang - shift[0:3])
    assert np.allclose(moved.acc, A.T @ (np.cross(u.ang, a) + u.acc) - shift[3:6])
    assert np.allclose(moved.nu, -A.T @ a)
    assert moved.timestamp == u.timestamp
    # identity leaves the input alone
    same = input_action(MSCEqFState(), u)
    assert np.allclose(same.ang, u.ang) and np.allclose(same.acc, u.acc)
    assert np.allclose(same.nu, np.zeros(3))


def test_lift_is_equivariant_under_core_rotation():
    """Core rotation/velocity, bias shift, extrinsic, intrinsic and clone blocks."""
    u = _make_imu()
    for seed in (3, 8):
        xi = _make_xi(seed)
        X = _core_element(seed + 10)
        X.E = SE3.exp(np.array([0.1, -0.3, 0.2, 0.05, 0.0, -0.1]))
        X.L = IN3(1.2, 0.8, 3.0, -2.0)
        X.blocks = MSCEqFState.identity_like(xi).blocks
        X.blocks["c0"] = SE3.exp(np.array([0.2, 0.1, 0.0, 1.0, 0.0, 0.0]))

        moved = lift(phi(X, xi), input_action(X, u)).vector()
        expected = _conjugated(X, lift(xi, u))

        # c0 ends at 31, features follow
        assert np.allclose(moved[0:31], expected[0:31], atol=1e-6)


def test_lift_is_equivariant_on_features_with_fixed_extrinsic():
    xi = _make_xi()
    u = _make_imu()
    X = _core_element(21)
    X.blocks = MSCEqFState.identity_like(xi).blocks

    moved = lift(phi(X, xi), input_action(X, u))

    assert np.allclose(moved.vector(), _conjugated(X, lift(xi, u)), atol=1e-6)


def test_flow_commutes_with_action():
    xi = _make_xi()
    u = _make_imu()
    X = _core_element(22)
    X.blocks = MSCEqFState.identity_like(xi).blocks
    X.blocks["c0"] = SE3.exp(np.array([0.0, 0.3, 0.0, 0.0, 0.5, 0.0]))
    dt = 0.3

    lhs = flow(phi(X, xi), input_action(X, u), dt)
    rhs = phi(X, flow(xi, u, dt))

    assert np.allclose(lhs.T.as_matrix(), rhs.T.as_matrix(), atol=1e-8)
    assert np.allclose(lhs.bias(), rhs.bias(), atol=1e-10)
    assert np.allclose(lhs.S.as_matrix(), rhs.S.as_matrix(), atol=1e-8)
    for key in ("f0", "f1"):
        assert np.allclose(lhs.blocks[key].point, rhs.blocks[key].point, atol=1e-8)
    assert np.allclose(lhs.blocks["c0"].pose.as_matrix(),
                       rhs.blocks["c0"].pose.as_matrix(), atol=1e-8)


def test_core_position_with_gyro_bias_breaks_equivariance():
    """A core translation couples with b_w through the dropped position column."""
    u = _make_imu()
    X = _core_element(30, with_position=True)
    X.blocks = MSCEqFState.identity_like(_make_xi()).blocks

    xi = _make_xi()
    moved = lift(phi(X, xi), input_action(X, u)).vector()
    expected = _conjugated(X, lift(xi, u))
    residual = X.C.R.T @ np.cross(xi.bw, X.C.p)
    assert np.linalg.norm(residual) > 1e-3
    assert np.allclose(moved[0:6], expected[0:6], atol=1e-6)
    assert np.allclose(moved[6:9] - expected[6:9], residual, atol=1e-6)
    assert np.allclose(moved[9:15], expected[9:15], atol=1e-6)

    # without gyro bias the full core group acts equivariantly
    xi.b[0:3] = 0.0
    moved = lift(phi(X, xi), input_action(X, u)).vector()
    assert np.allclose(moved[0:15], _conjugated(X, lift(xi, u))[0:15], atol=1e-6)


def test_lift_generator_matches_matrix_form():
    """T Lambda = T (W - B + D) + (G - D) T at the matrix level."""
    xi = _make_xi()
    u = _make_imu()
    T = xi.T.as_matrix()

    Lambda = lift(xi, u)

    W = np.zeros((5, 5))
    W[:3, :3] = skew_symmetric(u.ang - xi.bw)
    W[:3, 3] = u.acc - xi.ba
    D = np.zeros((5, 5))
    D[3, 4] = 1.0
    G = np.zeros((5, 5))
    G[:3, 3] = GRAVITY
    assert np.allclose(T @ SE23.wedge(Lambda.core), T @ (W + D) + (G - D) @ T)
