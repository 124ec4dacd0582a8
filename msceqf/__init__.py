"""
MSCEqF (Multi-State Constraint Equivariant Filter) Symmetry Package

Symmetry core of a visual-inertial equivariant filter: the symmetry group,
its action on the system state, the lift of the IMU dynamics and the
curvature correction used at the reset step.

Version: 0.1.0

Submodules:
- config: Configuration loading and global constants
- math_utils: so(3) maps, rotation normalization, quaternion conversions
- numerical_checks: Tripwire checks on rotations, scales and block layouts
- lie_groups: SE3, SE23, SOT3, IN3 value types
- state: SystemState, MSCEqFState, MSCEqFAlgebra, clone/feature blocks
- symmetry: phi, lift, curvature_correction, D, compose, input_action, flow
- data_loaders: IMU, groundtruth and image parsing

Author: MSCEqF project

Usage:
    # Import specific modules (lazy loading)
    from msceqf import symmetry
    from msceqf import state

    # Or import specific functions
    from msceqf.config import load_config
    from msceqf.symmetry import phi, lift, curvature_correction, D
    from msceqf.state import SystemState, MSCEqFState, augment_clone
    from msceqf.data_loaders import DataParser
"""

__version__ = "0.1.0"

# Lazy module imports - access as msceqf.symmetry, msceqf.state, etc.
# This avoids importing cv2/pandas for users of the symmetry core only
import importlib

# Available submodules
_SUBMODULES = {
    "config", "math_utils", "numerical_checks", "lie_groups",
    "state", "symmetry", "data_loaders",
}


def __getattr__(name):
    """Lazy module loading to avoid importing all dependencies at once."""
    if name in _SUBMODULES:
        module = importlib.import_module(f".{name}", __name__)
        globals()[name] = module  # Cache in globals to avoid repeated import
        return module
    raise AttributeError(f"module 'msceqf' has no attribute '{name}'")


def __dir__():
    """List available submodules."""
    return list(_SUBMODULES)


__all__ = list(_SUBMODULES)
