#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Numerical Validation and Tripwire Module
=========================================

Contract checks for the symmetry core. A failed check dumps diagnostic
information and raises; nothing here tries to repair a corrupted state.
"""

import numpy as np

from .math_utils import orthonormality_error


# Tolerance on max |R^T R - I| before a rotation counts as malformed
DEFAULT_ORTHO_TOL = 1e-6


def _print_banner(title):
    print(f"\n{'='*70}")
    print(f"[TRIPWIRE] {title}")
    print(f"{'='*70}")


def assert_finite(name, M, t=None, extra_info=None, raise_on_fail=True):
    """
    Tripwire: Check matrix/vector for inf/nan and dump diagnostics if found.

    Parameters:
    -----------
    name : str
        Descriptive name of the quantity being checked
    M : np.ndarray or float
        Value to validate
    t : float, optional
        Timestamp (for logging context)
    extra_info : dict, optional
        Additional diagnostic information to dump
    raise_on_fail : bool
        If True, raises ValueError on failure. If False, only prints the dump.

    Returns:
    --------
    bool : True if finite, False if inf/nan detected
    """
    if M is None:
        print(f"[TRIPWIRE] {name}: is None!")
        if raise_on_fail:
            raise ValueError(f"{name} is None")
        return False

    M = np.asarray(M, dtype=float)
    if np.all(np.isfinite(M)):
        return True

    _print_banner(f"NaN/inf DETECTED in {name}")
    if t is not None:
        print(f"Timestamp: {t:.6f}")
    print(f"Shape: {M.shape}")
    if M.size <= 100:
        print(f"Value:\n{M}")
    nan_locs = np.argwhere(np.isnan(M))
    inf_locs = np.argwhere(np.isinf(M))
    if nan_locs.size:
        print(f"NaN locations (first 10): {nan_locs[:10].tolist()}")
    if inf_locs.size:
        print(f"Inf locations (first 10): {inf_locs[:10].tolist()}")
    if extra_info:
        print("Additional context:")
        for key, val in extra_info.items():
            print(f"  {key}: {val}")
    print(f"{'='*70}\n")

    if raise_on_fail:
        raise ValueError(f"NaN/inf detected in {name}")
    return False


def check_rotation(R, name="rotation", tol=DEFAULT_ORTHO_TOL):
    """
    Validate a rotation matrix: finite, orthonormal within tol, det = +1.

    Raises:
    -------
    ValueError on any violation.
    """
    R = np.asarray(R, dtype=float)
    if R.shape != (3, 3):
        raise ValueError(f"{name}: expected 3x3 rotation, got shape {R.shape}")
    assert_finite(name, R)
    err = orthonormality_error(R)
    det = float(np.linalg.det(R))
    if err > tol or det <= 0.0:
        _print_banner(f"{name} is not a rotation")
        print(f"max |R^T R - I| = {err:.3e} (tol {tol:.1e}), det = {det:.6f}")
        print(f"Value:\n{R}")
        print(f"{'='*70}\n")
        raise ValueError(f"{name}: not orthonormal (err={err:.3e}, det={det:.6f})")


def check_positive(value, name):
    """Scales and focal lengths must be finite and strictly positive."""
    assert_finite(name, value)
    if float(value) <= 0.0:
        raise ValueError(f"{name} must be > 0, got {float(value)}")


def check_vector(v, size, name):
    """Validate a finite vector of the given length."""
    v = np.asarray(v, dtype=float)
    if v.size != size:
        raise ValueError(f"{name}: expected {size} entries, got {v.size}")
    assert_finite(name, v)


def check_block_layout(group_ids, state_ids):
    """
    Identifiers of the group and state collections must match exactly,
    same order, same count.
    """
    group_ids = tuple(group_ids)
    state_ids = tuple(state_ids)
    if group_ids == state_ids:
        return
    _print_banner("clone/feature layout mismatch")
    print(f"group ids ({len(group_ids)}): {list(group_ids)}")
    print(f"state ids ({len(state_ids)}): {list(state_ids)}")
    missing = [i for i in state_ids if i not in group_ids]
    extra = [i for i in group_ids if i not in state_ids]
    if missing:
        print(f"missing in group: {missing}")
    if extra:
        print(f"missing in state: {extra}")
    print(f"{'='*70}\n")
    raise ValueError(
        f"Clone/feature identifiers differ: group has {len(group_ids)}, "
        f"state has {len(state_ids)}")
