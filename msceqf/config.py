#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
MSCEqF Configuration Module
===========================

Handles YAML configuration loading and defines global constants for the
MSCEqF symmetry core.

Configuration Structure:
------------------------
The YAML config file contains:
- imu: gravity magnitude
- extrinsics: camera pose in the IMU frame (4x4, body_T_cam)
- camera: pinhole intrinsics (fx, fy, cx, cy)
- symmetry: orthonormality tolerance, clone window length
- data: input files and column titles for the data parser

Frame Conventions:
------------------
- World Frame: gravity along -Z, g = (0, 0, -g_norm)
- IMU Frame: accelerometer measures specific force (+g_norm on Z at rest, level)
- Camera Frame: OpenCV convention (X-right, Y-down, Z-forward)
- Quaternion: [w, x, y, z] Hamilton convention

Author: MSCEqF project
"""

import copy
import os
from typing import Any, Dict

import numpy as np
import yaml

from .numerical_checks import DEFAULT_ORTHO_TOL

# ========================================
# Debug verbosity control
# ========================================
VERBOSE_DEBUG = False  # Per-call symmetry debug output

DEFAULT_G_NORM = 9.81

DEFAULT_IMU_TITLES = ["t", "ang_x", "ang_y", "ang_z", "acc_x", "acc_y", "acc_z"]
DEFAULT_GROUNDTRUTH_TITLES = ["t", "q_x", "q_y", "q_z", "q_w", "p_x", "p_y", "p_z",
                              "v_x", "v_y", "v_z", "bw_x", "bw_y", "bw_z",
                              "ba_x", "ba_y", "ba_z"]
DEFAULT_IMAGE_TITLES = ["t", "image"]

_DEFAULTS: Dict[str, Any] = {
    "IMU_PARAMS": {
        "g_norm": DEFAULT_G_NORM,
    },
    "BODY_T_CAM": np.eye(4),
    "INTRINSICS": {"fx": 1.0, "fy": 1.0, "cx": 0.0, "cy": 0.0},
    "ORTHO_TOL": DEFAULT_ORTHO_TOL,
    "MAX_CLONES": 10,
    "DATA": {
        "imu_file": "",
        "groundtruth_file": "",
        "image_file": "",
        "image_folder": "",
        "imu_titles": DEFAULT_IMU_TITLES,
        "groundtruth_titles": DEFAULT_GROUNDTRUTH_TITLES,
        "image_titles": DEFAULT_IMAGE_TITLES,
        "delimiter": ",",
        "timeoffset": 0.0,
    },
}


def default_config() -> Dict[str, Any]:
    """Fresh copy of the built-in defaults (same layout as load_config)."""
    return copy.deepcopy(_DEFAULTS)


def load_config(config_path: str) -> Dict[str, Any]:
    """
    Load YAML configuration file and convert to the flat global format.

    Missing sections fall back to default_config().

    Args:
        config_path: Path to YAML configuration file

    Returns:
        Dictionary with configuration parameters including:
        - IMU_PARAMS: gravity magnitude (g_norm)
        - BODY_T_CAM: 4x4 camera pose in the IMU frame
        - INTRINSICS: fx, fy, cx, cy
        - ORTHO_TOL: rotation orthonormality tolerance
        - MAX_CLONES: clone window length
        - DATA: data parser arguments

    Raises:
        FileNotFoundError: If config file doesn't exist
        ValueError: If a section has the wrong shape
        yaml.YAMLError: If config file is malformed
    """
    if not os.path.exists(config_path):
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with open(config_path, 'r') as f:
        config = yaml.safe_load(f) or {}

    result = default_config()

    # ========================================
    # IMU
    # ========================================
    imu = config.get('imu', {})
    for key in result['IMU_PARAMS']:
        if key in imu:
            result['IMU_PARAMS'][key] = float(imu[key])
    if result['IMU_PARAMS']['g_norm'] <= 0.0:
        raise ValueError(f"imu.g_norm must be > 0, got {result['IMU_PARAMS']['g_norm']}")

    # ========================================
    # Extrinsics (camera pose in IMU frame)
    # ========================================
    extr = config.get('extrinsics', {})
    if 'body_T_cam' in extr:
        T = np.array(extr['body_T_cam'], dtype=np.float64)
        if T.shape != (4, 4):
            raise ValueError(f"extrinsics.body_T_cam must be 4x4, got {T.shape}")
        result['BODY_T_CAM'] = T

    # ========================================
    # Intrinsics
    # ========================================
    cam = config.get('camera', {})
    for key in ('fx', 'fy', 'cx', 'cy'):
        if key in cam:
            result['INTRINSICS'][key] = float(cam[key])

    # ========================================
    # Symmetry
    # ========================================
    sym = config.get('symmetry', {})
    result['ORTHO_TOL'] = float(sym.get('ortho_tol', result['ORTHO_TOL']))
    result['MAX_CLONES'] = int(sym.get('max_clones', result['MAX_CLONES']))
    if result['MAX_CLONES'] < 1:
        raise ValueError(f"symmetry.max_clones must be >= 1, got {result['MAX_CLONES']}")

    # ========================================
    # Data files
    # ========================================
    data = config.get('data', {})
    for key, default in result['DATA'].items():
        if key not in data:
            continue
        if key == 'timeoffset':
            result['DATA'][key] = float(data[key])
        elif key.endswith('_titles'):
            result['DATA'][key] = [str(s) for s in data[key]]
        else:
            result['DATA'][key] = str(data[key]) if data[key] is not None else default

    if VERBOSE_DEBUG:
        print(f"[Config] Loaded {config_path}: g_norm={result['IMU_PARAMS']['g_norm']}, "
              f"max_clones={result['MAX_CLONES']}")

    return result
