import numpy as np
import pytest

from msceqf.config import default_config
from msceqf.data_loaders import Groundtruth
from msceqf.lie_groups import SE23, SE3, SOT3
from msceqf.math_utils import quat_to_rot, so3_exp
from msceqf.state import (
    CLONE_DIM,
    FEATURE_DIM,
    FIXED_DIM,
    BlockCollection,
    CameraClone,
    MSCEqFAlgebra,
    MSCEqFState,
    SystemState,
    augment_clone,
    augment_feature,
    initialize_system_state,
    marginalize_oldest_clone,
    remove_block,
    slide_clone_window,
)


def _make_pair():
    xi = SystemState(SE23(so3_exp(np.array([0.1, 0.2, 0.3])), np.ones(3), np.zeros(3)))
    X = MSCEqFState.identity_like(xi)
    return xi, X


def test_collection_keeps_insertion_order_across_removals():
    blocks = BlockCollection()
    for key in "abcdef":
        blocks.add(key, key.upper())

    for key in "bcde":
        blocks.remove(key)

    assert blocks.keys() == ["a", "f"]
    assert blocks["f"] == "F"
    blocks.add("g", "G")
    assert blocks.ids() == ("a", "f", "g")
    assert len(blocks) == 3
    assert "b" not in blocks


def test_collection_rejects_bad_ids():
    blocks = BlockCollection([("a", 1)])
    with pytest.raises(KeyError):
        blocks.add("a", 2)
    with pytest.raises(KeyError):
        blocks.remove("z")
    with pytest.raises(KeyError):
        blocks["z"] = 3
    with pytest.raises(KeyError):
        blocks["z"]


def test_augment_clone_grows_both_sides():
    xi, X = _make_pair()
    X.E = SE3.exp(np.array([0.1, 0.0, 0.0, 0.0, 0.2, 0.0]))

    offset = augment_clone(xi, X, 7, timestamp=1.5)

    assert offset == FIXED_DIM
    assert X.dof == FIXED_DIM + CLONE_DIM
    clone = xi.blocks[7]
    assert isinstance(clone, CameraClone)
    assert clone.timestamp == 1.5
    assert np.allclose(clone.pose.as_matrix(), xi.camera_pose().as_matrix())
    assert np.allclose(X.blocks[7].as_matrix(), X.E.as_matrix())
    # the stored group block is a copy
    X.E.t[:] = 5.0
    assert not np.allclose(X.blocks[7].t, X.E.t)


def test_augment_feature_and_duplicates():
    xi, X = _make_pair()
    augment_clone(xi, X, "c0")
    offset = augment_feature(xi, X, "f0", np.array([0.0, 1.0, 3.0]))

    assert offset == FIXED_DIM + CLONE_DIM
    assert X.dof == FIXED_DIM + CLONE_DIM + FEATURE_DIM
    assert isinstance(X.blocks["f0"], SOT3)

    with pytest.raises(KeyError):
        augment_feature(xi, X, "f0", np.array([0.0, 0.0, 1.0]))
    with pytest.raises(ValueError):
        augment_feature(xi, X, "f1", np.zeros(3))
    assert xi.blocks.ids() == ("c0", "f0")
    assert X.blocks.ids() == ("c0", "f0")


def test_remove_block_from_both_sides():
    xi, X = _make_pair()
    augment_clone(xi, X, "c0")
    augment_feature(xi, X, "f0", np.array([0.0, 0.0, 2.0]))

    remove_block(xi, X, "c0")

    assert xi.blocks.ids() == ("f0",)
    assert X.blocks.ids() == ("f0",)
    with pytest.raises(KeyError):
        remove_block(xi, X, "c0")


def test_marginalize_oldest_clone_keeps_features():
    xi, X = _make_pair()
    for k in range(3):
        augment_clone(xi, X, f"c{k}", timestamp=float(k))
    augment_feature(xi, X, "f0", np.array([0.0, 0.0, 2.0]))

    removed = marginalize_oldest_clone(xi, X, max_clones=2)

    assert removed == ["c0", "c1"]
    assert xi.blocks.ids() == ("c2", "f0")
    assert X.blocks.ids() == ("c2", "f0")


def test_group_product_inverse_and_log():
    xi, X = _make_pair()
    augment_clone(xi, X, "c0")
    augment_feature(xi, X, "f0", np.array([0.0, 0.0, 2.0]))
    rng = np.random.default_rng(5)
    vec = 0.2 * rng.normal(size=X.dof)

    Y = MSCEqFState.exp(MSCEqFAlgebra.from_vector(vec, X))
    I = Y * Y.inv()

    assert np.allclose(Y.log().vector(), vec, atol=1e-10)
    assert np.allclose(I.log().vector(), np.zeros(X.dof), atol=1e-10)
    with pytest.raises(ValueError):
        Y * MSCEqFState()
    with pytest.raises(ValueError):
        MSCEqFAlgebra.from_vector(vec[:-1], X)


def test_exp_is_a_one_parameter_subgroup():
    xi, X = _make_pair()
    rng = np.random.default_rng(6)
    a = MSCEqFAlgebra.from_vector(0.4 * rng.normal(size=X.dof), X)

    half = MSCEqFState.exp(0.5 * a)
    full = MSCEqFState.exp(a)
    both = half * half

    assert np.allclose(both.C.as_matrix(), full.C.as_matrix())
    assert np.allclose(both.gamma, full.gamma)
    assert np.allclose(full.inv().gamma, MSCEqFState.exp(-1.0 * a).gamma)


def test_clone_window_follows_config():
    xi, X = _make_pair()
    config = default_config()
    n = config["MAX_CLONES"]
    augment_feature(xi, X, "f0", np.array([0.0, 0.0, 2.0]))

    removed_all = []
    for k in range(n + 2):
        removed, offset = slide_clone_window(xi, X, f"c{k}", float(k), config)
        removed_all += removed
        assert offset == X.dof - CLONE_DIM

    assert removed_all == ["c0", "c1"]
    assert xi.blocks.ids() == ("f0",) + tuple(f"c{k}" for k in range(2, n + 2))
    assert X.blocks.ids() == xi.blocks.ids()

    config["MAX_CLONES"] = 0
    with pytest.raises(ValueError):
        slide_clone_window(xi, X, "c_bad", 0.0, config)


def test_algebra_scaling():
    xi, X = _make_pair()
    augment_feature(xi, X, "f0", np.array([0.0, 0.0, 2.0]))
    a = MSCEqFAlgebra.from_vector(np.arange(X.dof, dtype=float), X)

    assert np.allclose((2.0 * a).vector(), 2.0 * a.vector())
    assert np.allclose((a * 0.5).vector(), 0.5 * a.vector())
    assert MSCEqFAlgebra.zeros_like(xi).dof == X.dof


def test_initialize_from_default_config():
    xi = initialize_system_state(default_config())

    assert xi.b is None
    assert np.allclose(xi.T.as_matrix(), np.eye(5))
    assert np.allclose(xi.S.as_matrix(), np.eye(4))
    assert len(xi.blocks) == 0


def test_initialize_from_groundtruth():
    q = np.array([np.cos(0.25), 0.0, 0.0, np.sin(0.25)])
    gt = Groundtruth(2.0, q, np.array([1.0, 2.0, 3.0]), np.array([0.1, 0.0, 0.0]),
                     np.array([0.01, 0.02, 0.03]), np.array([0.1, 0.2, 0.3]))

    xi = initialize_system_state(default_config(), gt)

    assert np.allclose(xi.R, quat_to_rot(q))
    assert np.allclose(xi.p, [1.0, 2.0, 3.0])
    assert np.allclose(xi.v, [0.1, 0.0, 0.0])
    assert np.allclose(xi.b, [0.01, 0.02, 0.03, 0.1, 0.2, 0.3])


def test_initialize_rejects_bad_extrinsic_rotation():
    config = default_config()
    config["BODY_T_CAM"] = np.diag([1.0, 1.0, 2.0, 1.0])
    with pytest.raises(ValueError):
        initialize_system_state(config)
