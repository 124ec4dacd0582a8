"""
State containers for the MSCEqF symmetry core.

This module handles:
- SystemState (xi): element of the homogeneous space (physical estimate)
- MSCEqFState (X): element of the symmetry group
- MSCEqFAlgebra: Lie-algebra element with X's block layout (lift output)
- BlockCollection: identifier-indexed ordered arena for clone/feature blocks
- Atomic augmentation/removal of clone and feature blocks on (xi, X)
- SystemState initialization from config and groundtruth

Block Layout (tangent coordinates of X, dimension X.dof):
    core       : 9  (omega, nu, rho)        SE2(3)
    bias       : 6  (b_w, b_a)              se(3), moved by the core
    extrinsic  : 6  (omega, rho)            SE(3)
    intrinsic  : 4  (a_x, a_y, c_x, c_y)    IN(3)
    per block  : 6 for a camera clone (SE(3)), 4 for a feature (SOT(3)),
                 in collection order

Author: MSCEqF project
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Hashable, Iterable, Iterator, List, Optional, Tuple

import numpy as np

from . import config as cfg
from .lie_groups import IN3, SE23, SE3, SOT3
from .math_utils import normalize_rotation, quat_to_rot
from .numerical_checks import (
    DEFAULT_ORTHO_TOL,
    assert_finite,
    check_block_layout,
    check_positive,
    check_rotation,
    check_vector,
)

CORE_DIM = 9
BIAS_DIM = 6
EXTRINSIC_DIM = 6
INTRINSIC_DIM = 4
CLONE_DIM = 6
FEATURE_DIM = 4
FIXED_DIM = CORE_DIM + BIAS_DIM + EXTRINSIC_DIM + INTRINSIC_DIM


# =============================================================================
# Ordered block arena
# =============================================================================

class BlockCollection:
    """
    Ordered collection of blocks keyed by stable identifiers.

    Blocks live in a flat slot list; the id -> slot dict gives O(1) lookup.
    Removal leaves a hole, holes are compacted once they make up more than
    half the arena, so add/remove stay O(1) amortized and iteration always
    follows insertion order.
    """

    def __init__(self, items: Optional[Iterable[Tuple[Hashable, Any]]] = None):
        self._slots: List[Optional[Tuple[Hashable, Any]]] = []
        self._index: Dict[Hashable, int] = {}
        self._holes = 0
        if items is not None:
            for key, value in items:
                self.add(key, value)

    def add(self, key: Hashable, value: Any) -> None:
        if key in self._index:
            raise KeyError(f"Duplicate block id {key!r}")
        self._index[key] = len(self._slots)
        self._slots.append((key, value))

    def remove(self, key: Hashable) -> Any:
        if key not in self._index:
            raise KeyError(f"Unknown block id {key!r}")
        slot = self._index.pop(key)
        _, value = self._slots[slot]
        self._slots[slot] = None
        self._holes += 1
        if 2 * self._holes > len(self._slots):
            self._compact()
        return value

    def _compact(self) -> None:
        live = [s for s in self._slots if s is not None]
        self._slots = live
        self._index = {key: i for i, (key, _) in enumerate(live)}
        self._holes = 0

    def __getitem__(self, key: Hashable) -> Any:
        if key not in self._index:
            raise KeyError(f"Unknown block id {key!r}")
        return self._slots[self._index[key]][1]

    def __setitem__(self, key: Hashable, value: Any) -> None:
        # replacing only; new blocks go through add()
        if key not in self._index:
            raise KeyError(f"Unknown block id {key!r}")
        self._slots[self._index[key]] = (key, value)

    def __contains__(self, key: Hashable) -> bool:
        return key in self._index

    def __len__(self) -> int:
        return len(self._index)

    def __iter__(self) -> Iterator[Hashable]:
        return iter(self.keys())

    def keys(self) -> List[Hashable]:
        return [s[0] for s in self._slots if s is not None]

    def values(self) -> List[Any]:
        return [s[1] for s in self._slots if s is not None]

    def items(self) -> List[Tuple[Hashable, Any]]:
        return [s for s in self._slots if s is not None]

    def ids(self) -> Tuple[Hashable, ...]:
        return tuple(self.keys())

    def map(self, fn) -> BlockCollection:
        """New collection with the same ids and order, values fn(key, value)."""
        return BlockCollection((key, fn(key, value)) for key, value in self.items())

    def copy(self) -> BlockCollection:
        return self.map(lambda _key, value: value.copy())

    def __repr__(self) -> str:
        return f"BlockCollection({[(k, type(v).__name__) for k, v in self.items()]})"


# =============================================================================
# Homogeneous space element
# =============================================================================

@dataclass
class CameraClone:
    """Historical camera pose (camera -> world) kept for multi-state constraints."""
    pose: SE3
    timestamp: float = float("nan")

    def copy(self) -> CameraClone:
        return CameraClone(self.pose.copy(), self.timestamp)


@dataclass
class Feature:
    """3-D feature position expressed in the current camera frame."""
    point: np.ndarray

    def __post_init__(self):
        self.point = np.asarray(self.point, dtype=float).reshape(3)

    def copy(self) -> Feature:
        return Feature(self.point.copy())


@dataclass
class SystemState:
    """
    Homogeneous space element xi = (T, b, S, K, blocks).

    T: IMU extended pose in world (R, v, p)
    b: [b_w, b_a] or None before any bias estimate exists (read as zero)
    S: camera pose in the IMU frame
    K: camera intrinsics
    blocks: CameraClone / Feature entries keyed by id
    """
    T: SE23 = field(default_factory=SE23)
    b: Optional[np.ndarray] = None
    S: SE3 = field(default_factory=SE3)
    K: IN3 = field(default_factory=IN3)
    blocks: BlockCollection = field(default_factory=BlockCollection)

    def __post_init__(self):
        if self.b is not None:
            self.b = np.asarray(self.b, dtype=float).reshape(BIAS_DIM)

    @property
    def R(self) -> np.ndarray:
        return self.T.R

    @property
    def v(self) -> np.ndarray:
        return self.T.v

    @property
    def p(self) -> np.ndarray:
        return self.T.p

    def bias(self) -> np.ndarray:
        if self.b is None:
            return np.zeros(BIAS_DIM)
        return self.b

    @property
    def bw(self) -> np.ndarray:
        return self.bias()[0:3]

    @property
    def ba(self) -> np.ndarray:
        return self.bias()[3:6]

    def camera_pose(self) -> SE3:
        """Camera -> world transform, pose(T) * S."""
        return self.T.pose() * self.S

    def copy(self) -> SystemState:
        return SystemState(self.T.copy(),
                           None if self.b is None else self.b.copy(),
                           self.S.copy(), self.K.copy(), self.blocks.copy())

    def validate(self, tol: float = DEFAULT_ORTHO_TOL) -> None:
        """Raise ValueError if any block violates its manifold constraints."""
        check_rotation(self.T.R, "xi.T.R", tol)
        assert_finite("xi.T.v", self.T.v)
        assert_finite("xi.T.p", self.T.p)
        if self.b is not None:
            check_vector(self.b, BIAS_DIM, "xi.b")
        check_rotation(self.S.R, "xi.S.R", tol)
        assert_finite("xi.S.t", self.S.t)
        check_positive(self.K.fx, "xi.K.fx")
        check_positive(self.K.fy, "xi.K.fy")
        assert_finite("xi.K.c", [self.K.cx, self.K.cy])
        for key, block in self.blocks.items():
            if isinstance(block, CameraClone):
                check_rotation(block.pose.R, f"xi.clone[{key!r}].R", tol)
                assert_finite(f"xi.clone[{key!r}].t", block.pose.t)
            elif isinstance(block, Feature):
                assert_finite(f"xi.feature[{key!r}]", block.point)
                if np.linalg.norm(block.point) <= 0.0:
                    raise ValueError(f"xi.feature[{key!r}] is at the camera center")
            else:
                raise ValueError(f"xi block {key!r} has unsupported type {type(block).__name__}")


# =============================================================================
# Lie algebra element
# =============================================================================

def _block_dim(block: Any) -> int:
    if isinstance(block, (CameraClone, SE3)):
        return CLONE_DIM
    if isinstance(block, (Feature, SOT3)):
        return FEATURE_DIM
    raise ValueError(f"Unsupported block type {type(block).__name__}")


@dataclass
class MSCEqFAlgebra:
    """Lie algebra element with the block layout of MSCEqFState."""
    core: np.ndarray = field(default_factory=lambda: np.zeros(CORE_DIM))
    bias: np.ndarray = field(default_factory=lambda: np.zeros(BIAS_DIM))
    extrinsic: np.ndarray = field(default_factory=lambda: np.zeros(EXTRINSIC_DIM))
    intrinsic: np.ndarray = field(default_factory=lambda: np.zeros(INTRINSIC_DIM))
    blocks: BlockCollection = field(default_factory=BlockCollection)

    def __post_init__(self):
        self.core = np.asarray(self.core, dtype=float).reshape(CORE_DIM)
        self.bias = np.asarray(self.bias, dtype=float).reshape(BIAS_DIM)
        self.extrinsic = np.asarray(self.extrinsic, dtype=float).reshape(EXTRINSIC_DIM)
        self.intrinsic = np.asarray(self.intrinsic, dtype=float).reshape(INTRINSIC_DIM)

    @classmethod
    def zeros_like(cls, layout) -> MSCEqFAlgebra:
        """Zero element for the block layout of an MSCEqFState or SystemState."""
        return cls(blocks=layout.blocks.map(lambda _k, b: np.zeros(_block_dim(b))))

    def __mul__(self, scalar: float) -> MSCEqFAlgebra:
        s = float(scalar)
        return MSCEqFAlgebra(s * self.core, s * self.bias, s * self.extrinsic,
                             s * self.intrinsic, self.blocks.map(lambda _k, w: s * w))

    __rmul__ = __mul__

    @property
    def dof(self) -> int:
        return FIXED_DIM + sum(w.size for w in self.blocks.values())

    def vector(self) -> np.ndarray:
        return np.concatenate([self.core, self.bias, self.extrinsic, self.intrinsic]
                              + list(self.blocks.values()))

    @classmethod
    def from_vector(cls, vec: np.ndarray, layout) -> MSCEqFAlgebra:
        """Split a flat tangent vector according to layout's blocks."""
        vec = np.asarray(vec, dtype=float).reshape(-1)
        expected = FIXED_DIM + sum(_block_dim(b) for b in layout.blocks.values())
        if vec.size != expected:
            raise ValueError(f"Tangent vector has {vec.size} entries, layout needs {expected}")
        out = cls(vec[0:9], vec[9:15], vec[15:21], vec[21:25])
        idx = FIXED_DIM
        for key, block in layout.blocks.items():
            n = _block_dim(block)
            out.blocks.add(key, vec[idx:idx + n].copy())
            idx += n
        return out


# =============================================================================
# Symmetry group element
# =============================================================================

def _identity_block(block: Any) -> Any:
    if isinstance(block, (CameraClone, SE3)):
        return SE3.identity()
    if isinstance(block, (Feature, SOT3)):
        return SOT3.identity()
    raise ValueError(f"Unsupported block type {type(block).__name__}")


@dataclass
class MSCEqFState:
    """
    Symmetry group element X = (C, gamma, E, L, blocks).

    C: SE2(3) core
    gamma: se(3) bias shift (omega, rho)
    E: SE(3) extrinsic
    L: IN(3) intrinsic
    blocks: SE3 per camera clone, SOT3 per feature, same ids as xi

    The bias is a semidirect factor, moved by the core through
    chi(C) = C.rot_vel():

        (C1, gamma1) (C2, gamma2) = (C1 C2, gamma1 + Ad_chi(C1) gamma2)

    All other blocks multiply block-wise.
    """
    C: SE23 = field(default_factory=SE23)
    gamma: np.ndarray = field(default_factory=lambda: np.zeros(BIAS_DIM))
    E: SE3 = field(default_factory=SE3)
    L: IN3 = field(default_factory=IN3)
    blocks: BlockCollection = field(default_factory=BlockCollection)

    def __post_init__(self):
        self.gamma = np.asarray(self.gamma, dtype=float).reshape(BIAS_DIM)

    @classmethod
    def identity(cls) -> MSCEqFState:
        return cls()

    @classmethod
    def identity_like(cls, layout) -> MSCEqFState:
        """Identity with the block layout of a SystemState or MSCEqFState."""
        return cls(blocks=layout.blocks.map(lambda _k, b: _identity_block(b)))

    @property
    def dof(self) -> int:
        return FIXED_DIM + sum(_block_dim(b) for b in self.blocks.values())

    def copy(self) -> MSCEqFState:
        return MSCEqFState(self.C.copy(), self.gamma.copy(), self.E.copy(),
                           self.L.copy(), self.blocks.copy())

    def __mul__(self, other: MSCEqFState) -> MSCEqFState:
        if not isinstance(other, MSCEqFState):
            raise TypeError(f"Cannot multiply MSCEqFState with {type(other)}")
        check_block_layout(self.blocks.ids(), other.blocks.ids())
        blocks = BlockCollection()
        for key, Xk in self.blocks.items():
            Yk = other.blocks[key]
            if type(Xk) is not type(Yk):
                raise ValueError(f"Block {key!r}: cannot compose {type(Xk).__name__} "
                                 f"with {type(Yk).__name__}")
            blocks.add(key, Xk * Yk)
        gamma = self.gamma + self.C.rot_vel().adjoint() @ other.gamma
        return MSCEqFState(self.C * other.C, gamma,
                           self.E * other.E, self.L * other.L, blocks)

    def inv(self) -> MSCEqFState:
        C_inv = self.C.inv()
        return MSCEqFState(C_inv, -C_inv.rot_vel().adjoint() @ self.gamma,
                           self.E.inv(), self.L.inv(),
                           self.blocks.map(lambda _k, b: b.inv()))

    @classmethod
    def exp(cls, algebra: MSCEqFAlgebra) -> MSCEqFState:
        """
        Group exponential.

        Along t -> exp(t Lambda) the bias shift grows as
        gamma' = Ad_chi(C(t)) Lambda_b, hence gamma = J(chi(Lambda_C)) Lambda_b
        with J the SE(3) left Jacobian.
        """
        blocks = BlockCollection()
        for key, w in algebra.blocks.items():
            if w.size == CLONE_DIM:
                blocks.add(key, SE3.exp(w))
            elif w.size == FEATURE_DIM:
                blocks.add(key, SOT3.exp(w))
            else:
                raise ValueError(f"Algebra block {key!r} has {w.size} entries")
        assert_finite("algebra.core", algebra.core)
        gamma = SE3.left_jacobian(algebra.core[0:6]) @ algebra.bias
        return cls(SE23.exp(algebra.core), gamma, SE3.exp(algebra.extrinsic),
                   IN3.exp(algebra.intrinsic), blocks)

    def log(self) -> MSCEqFAlgebra:
        core = self.C.log()
        bias = np.linalg.solve(SE3.left_jacobian(core[0:6]), self.gamma)
        return MSCEqFAlgebra(core, bias, self.E.log(), self.L.log(),
                             self.blocks.map(lambda _k, b: b.log()))

    def validate(self, tol: float = DEFAULT_ORTHO_TOL) -> None:
        """Raise ValueError if X is not a well-formed group element."""
        check_rotation(self.C.R, "X.C.R", tol)
        assert_finite("X.C.v", self.C.v)
        assert_finite("X.C.p", self.C.p)
        check_vector(self.gamma, BIAS_DIM, "X.gamma")
        check_rotation(self.E.R, "X.E.R", tol)
        assert_finite("X.E.t", self.E.t)
        check_positive(self.L.fx, "X.L.fx")
        check_positive(self.L.fy, "X.L.fy")
        assert_finite("X.L.c", [self.L.cx, self.L.cy])
        for key, block in self.blocks.items():
            if isinstance(block, SE3):
                check_rotation(block.R, f"X.clone[{key!r}].R", tol)
                assert_finite(f"X.clone[{key!r}].t", block.t)
            elif isinstance(block, SOT3):
                check_rotation(block.R, f"X.feature[{key!r}].R", tol)
                check_positive(block.c, f"X.feature[{key!r}].c")
            else:
                raise ValueError(f"X block {key!r} has unsupported type {type(block).__name__}")


# =============================================================================
# Atomic augmentation / removal
# =============================================================================

def _check_new_id(xi: SystemState, X: MSCEqFState, block_id: Hashable) -> None:
    check_block_layout(X.blocks.ids(), xi.blocks.ids())
    if block_id in xi.blocks or block_id in X.blocks:
        raise KeyError(f"Duplicate block id {block_id!r}")


def augment_clone(xi: SystemState, X: MSCEqFState, clone_id: Hashable,
                  timestamp: float = float("nan")) -> int:
    """
    Clone the current camera pose into both xi and X.

    xi receives pose(T) * S, X receives a copy of its extrinsic block E, so
    the clone of phi(X, xi) equals the camera pose of phi(X, xi) at the time
    of cloning.

    Returns:
        Offset of the new block in X's tangent coordinates
    """
    _check_new_id(xi, X, clone_id)
    offset = X.dof
    xi.blocks.add(clone_id, CameraClone(xi.camera_pose(), timestamp))
    X.blocks.add(clone_id, X.E.copy())
    if cfg.VERBOSE_DEBUG:
        print(f"[MSCEqF] Cloned camera pose id={clone_id!r} t={timestamp:.6f}, "
              f"{len(xi.blocks)} blocks")
    return offset


def augment_feature(xi: SystemState, X: MSCEqFState, feature_id: Hashable,
                    point: np.ndarray, element: Optional[SOT3] = None) -> int:
    """Add a camera-frame feature to xi and its SOT(3) block (identity by default) to X."""
    _check_new_id(xi, X, feature_id)
    feature = Feature(point)
    assert_finite(f"feature[{feature_id!r}]", feature.point)
    if np.linalg.norm(feature.point) <= 0.0:
        raise ValueError(f"feature[{feature_id!r}] is at the camera center")
    offset = X.dof
    xi.blocks.add(feature_id, feature)
    X.blocks.add(feature_id, SOT3.identity() if element is None else element.copy())
    return offset


def remove_block(xi: SystemState, X: MSCEqFState, block_id: Hashable) -> None:
    """Remove a clone/feature block from both xi and X."""
    check_block_layout(X.blocks.ids(), xi.blocks.ids())
    if block_id not in xi.blocks:
        raise KeyError(f"Unknown block id {block_id!r}")
    xi.blocks.remove(block_id)
    X.blocks.remove(block_id)


def marginalize_oldest_clone(xi: SystemState, X: MSCEqFState, max_clones: int) -> List[Hashable]:
    """
    Drop the oldest camera clones until fewer than max_clones remain, making
    room for the next augment_clone.

    Returns:
        Removed clone ids, oldest first
    """
    removed = []
    clone_ids = [k for k, b in xi.blocks.items() if isinstance(b, CameraClone)]
    while len(clone_ids) >= max_clones and clone_ids:
        oldest = clone_ids.pop(0)
        remove_block(xi, X, oldest)
        removed.append(oldest)
    if removed and cfg.VERBOSE_DEBUG:
        print(f"[MSCEqF] Marginalized {len(removed)} clone(s), "
              f"now tracking {len(clone_ids)} clones")
    return removed


def slide_clone_window(xi: SystemState, X: MSCEqFState, clone_id: Hashable,
                       timestamp: float, config: Dict[str, Any]) -> Tuple[List[Hashable], int]:
    """
    Clone the current camera pose, first marginalizing the oldest clones if
    the window already holds config['MAX_CLONES'].

    Returns:
        (removed clone ids, offset of the new clone in X's tangent coordinates)
    """
    max_clones = int(config['MAX_CLONES'])
    if max_clones < 1:
        raise ValueError(f"MAX_CLONES must be >= 1, got {max_clones}")
    removed = marginalize_oldest_clone(xi, X, max_clones)
    offset = augment_clone(xi, X, clone_id, timestamp)
    return removed, offset


# =============================================================================
# Initialization
# =============================================================================

def initialize_system_state(config: Dict[str, Any], groundtruth=None) -> SystemState:
    """
    Build the initial SystemState.

    Args:
        config: Dictionary from load_config() / default_config()
        groundtruth: Optional Groundtruth record for pose, velocity and bias

    Returns:
        SystemState with no clone/feature blocks
    """
    T_bc = np.asarray(config['BODY_T_CAM'], dtype=float)
    S = SE3.from_matrix(T_bc)
    check_rotation(S.R, "BODY_T_CAM rotation", config.get('ORTHO_TOL', DEFAULT_ORTHO_TOL))
    S = SE3(normalize_rotation(S.R), S.t)

    intr = config['INTRINSICS']
    K = IN3(intr['fx'], intr['fy'], intr['cx'], intr['cy'])

    if groundtruth is None:
        return SystemState(SE23.identity(), None, S, K)

    T = SE23(quat_to_rot(groundtruth.q), groundtruth.v, groundtruth.p)
    b = np.concatenate([groundtruth.bw, groundtruth.ba])
    print(f"[MSCEqF] Initialized from groundtruth at t={groundtruth.timestamp:.6f}")
    return SystemState(T, b, S, K)
