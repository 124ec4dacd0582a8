#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
MSCEqF Data Loaders Module

Reads IMU, groundtruth and image index files into time-sorted sensor records.
"""

import os
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Union

import cv2
import numpy as np
import pandas as pd

from . import config as cfg
from .math_utils import quat_normalize


# Timestamps above this are nanoseconds
NANOSECOND_THRESHOLD = 10e12


# =============================================================================
# Data Classes
# =============================================================================

@dataclass
class Imu:
    """Single IMU measurement."""
    timestamp: float  # seconds
    ang: np.ndarray  # angular velocity [wx,wy,wz] rad/s
    acc: np.ndarray  # specific force [ax,ay,az] m/s²
    nu: Optional[np.ndarray] = None  # virtual position rate (body frame), None reads as zero


@dataclass
class Camera:
    """Image with its mask."""
    timestamp: float  # seconds, timeoffset applied
    image: np.ndarray
    mask: np.ndarray  # uint8, 255 where features may be tracked


@dataclass
class Groundtruth:
    """Groundtruth IMU state."""
    timestamp: float  # seconds
    q: np.ndarray = field(default_factory=lambda: np.array([1.0, 0.0, 0.0, 0.0]))  # [w,x,y,z]
    p: np.ndarray = field(default_factory=lambda: np.zeros(3))
    v: np.ndarray = field(default_factory=lambda: np.zeros(3))
    bw: np.ndarray = field(default_factory=lambda: np.zeros(3))
    ba: np.ndarray = field(default_factory=lambda: np.zeros(3))


# =============================================================================
# CSV helpers
# =============================================================================

def _normalize_title(s) -> str:
    return str(s).strip().lower()


def _to_seconds(t: np.ndarray) -> np.ndarray:
    return np.where(t > NANOSECOND_THRESHOLD, t / 1e9, t)


def _read_table(path: str, delimiter: str, titles: Sequence[str], kind: str,
                as_str: bool = False) -> pd.DataFrame:
    """
    Read a delimited file and return the requested columns, in title order.

    Columns are matched case-insensitively after trimming, so files may have
    shuffled or extra columns.
    """
    df = pd.read_csv(path, sep=delimiter, skipinitialspace=True,
                     dtype=str if as_str else None)
    df.columns = [_normalize_title(c) for c in df.columns]
    wanted = [_normalize_title(t) for t in titles]
    missing = [t for t in wanted if t not in df.columns]
    if missing:
        raise ValueError(f"{kind} file {path} missing column(s): {missing} "
                         f"(header: {list(df.columns)})")
    return df[wanted]


def _numeric(df: pd.DataFrame, kind: str, path: str) -> np.ndarray:
    try:
        return df.to_numpy(dtype=float)
    except ValueError as e:
        raise ValueError(f"{kind} file {path} has non-numeric entries: {e}") from e


# =============================================================================
# Data parser
# =============================================================================

class DataParser:
    """
    Parser for the IMU, groundtruth and image index files of a sequence.

    Title lists follow a fixed order:
        imu_titles:         [t, ang_x, ang_y, ang_z, acc_x, acc_y, acc_z]
        groundtruth_titles: [t, q_x, q_y, q_z, q_w, p_x, p_y, p_z,
                             (v_x, v_y, v_z), (bw_x, bw_y, bw_z, ba_x, ba_y, ba_z)]
                            17 = velocity + bias, 14 = bias only,
                            11 = velocity only, 8 = pose only
        image_titles:       [t, image filename]

    An empty filename skips that stream.
    """

    def __init__(self, imu_file: str = "", groundtruth_file: str = "",
                 image_file: str = "", image_folder: str = "",
                 imu_titles: Optional[Sequence[str]] = None,
                 groundtruth_titles: Optional[Sequence[str]] = None,
                 image_titles: Optional[Sequence[str]] = None,
                 delimiter: str = ",", timeoffset: float = 0.0):
        self.imu_file = imu_file or ""
        self.groundtruth_file = groundtruth_file or ""
        self.image_file = image_file or ""
        self.image_folder = image_folder or ""
        self.imu_titles = list(imu_titles or cfg.DEFAULT_IMU_TITLES)
        self.groundtruth_titles = list(groundtruth_titles or cfg.DEFAULT_GROUNDTRUTH_TITLES)
        self.image_titles = list(image_titles or cfg.DEFAULT_IMAGE_TITLES)
        self.delimiter = delimiter
        self.timeoffset = float(timeoffset)

        self.imu_data: List[Imu] = []
        self.groundtruth_data: List[Groundtruth] = []
        self.image_data: List[Camera] = []

    @classmethod
    def from_config(cls, config: dict) -> 'DataParser':
        """Build a parser from the DATA section of load_config()."""
        return cls(**config['DATA'])

    def parse_and_check(self) -> None:
        """Clear current data, then read, parse and check every provided file."""
        if self.groundtruth_file:
            if not os.path.isfile(self.groundtruth_file):
                raise FileNotFoundError(f"Groundtruth file not found: {self.groundtruth_file}")
            self.groundtruth_data = self._parse_groundtruth()
        else:
            self.groundtruth_data = []
            print("[GT] Groundtruth data file not provided. Skipping")

        if self.imu_file:
            if not os.path.isfile(self.imu_file):
                raise FileNotFoundError(f"IMU file not found: {self.imu_file}")
            self.imu_data = self._parse_imu()
        else:
            self.imu_data = []
            print("[IMU] Imu data file not provided. Skipping")

        if self.image_file:
            if not os.path.isfile(self.image_file):
                raise FileNotFoundError(f"Image index file not found: {self.image_file}")
            if not os.path.isdir(self.image_folder):
                raise FileNotFoundError(f"Image folder not found: {self.image_folder}")
            self.image_data = self._parse_images()
        else:
            self.image_data = []
            print("[Images] Image data file not provided. Skipping")

    def _parse_imu(self) -> List[Imu]:
        if len(self.imu_titles) != 7:
            raise ValueError(f"Expected 7 IMU titles, got {len(self.imu_titles)}")
        df = _read_table(self.imu_file, self.delimiter, self.imu_titles, "IMU")
        data = _numeric(df, "IMU", self.imu_file)
        t = _to_seconds(data[:, 0])

        recs = [Imu(float(t[i]), data[i, 1:4].copy(), data[i, 4:7].copy())
                for i in range(len(data))]
        recs.sort(key=lambda r: r.timestamp)
        print(f"[IMU] Loaded {len(recs)} samples from {os.path.basename(self.imu_file)}")
        return recs

    def _parse_groundtruth(self) -> List[Groundtruth]:
        n = len(self.groundtruth_titles)
        if n == 17:
            have_velocity, have_bias = True, True
        elif n == 14:
            have_velocity, have_bias = False, True
        elif n == 11:
            have_velocity, have_bias = True, False
        elif n == 8:
            have_velocity, have_bias = False, False
        else:
            raise ValueError(f"Wrong number of groundtruth titles: {n} (expected 17, 14, 11 or 8)")

        df = _read_table(self.groundtruth_file, self.delimiter, self.groundtruth_titles, "Groundtruth")
        data = _numeric(df, "Groundtruth", self.groundtruth_file)
        t = _to_seconds(data[:, 0])

        recs = []
        for i, row in enumerate(data):
            gt = Groundtruth(float(t[i]))
            # [x,y,z,w] in the file
            gt.q = quat_normalize(np.array([row[4], row[1], row[2], row[3]]))
            gt.p = row[5:8].copy()
            idx = 8
            if have_velocity:
                gt.v = row[idx:idx + 3].copy()
                idx += 3
            if have_bias:
                gt.bw = row[idx:idx + 3].copy()
                gt.ba = row[idx + 3:idx + 6].copy()
            recs.append(gt)

        recs.sort(key=lambda r: r.timestamp)
        print(f"[GT] Loaded {len(recs)} groundtruth samples "
              f"(velocity={have_velocity}, bias={have_bias})")
        return recs

    def _parse_images(self) -> List[Camera]:
        if len(self.image_titles) != 2:
            raise ValueError(f"Expected 2 image titles, got {len(self.image_titles)}")
        df = _read_table(self.image_file, self.delimiter, self.image_titles, "Image", as_str=True)
        t = _to_seconds(_numeric(df.iloc[:, [0]], "Image", self.image_file)[:, 0])

        recs = []
        for i, fname in enumerate(df.iloc[:, 1]):
            path = os.path.join(self.image_folder, str(fname).strip())
            image = cv2.imread(path)
            if image is None:
                raise FileNotFoundError(f"Cannot read image: {path}")
            mask = np.full(image.shape[:2], 255, dtype=np.uint8)
            recs.append(Camera(float(t[i]) + self.timeoffset, image, mask))

        recs.sort(key=lambda r: r.timestamp)
        print(f"[Images] Loaded {len(recs)} images | timeoffset={self.timeoffset:.6f}s")
        return recs

    def sensor_timestamps(self) -> np.ndarray:
        """Sorted timestamps of all pending IMU and camera readings."""
        ts = [r.timestamp for r in self.imu_data] + [r.timestamp for r in self.image_data]
        return np.sort(np.asarray(ts, dtype=float))

    def consume_reading_at(self, timestamp: float) -> Union[Imu, Camera]:
        """
        Pop the reading with exactly this timestamp; IMU readings go first.

        Raises:
            ValueError: if no pending reading has this timestamp
        """
        for data in (self.imu_data, self.image_data):
            for i, rec in enumerate(data):
                if rec.timestamp == timestamp:
                    return data.pop(i)
        raise ValueError(f"No sensor reading found at timestamp {timestamp}")

    def closest_groundtruth_at(self, timestamp: float) -> Groundtruth:
        """
        Groundtruth record nearest to timestamp, among the first record after
        it and the one before.

        Raises:
            ValueError: if no record lies after timestamp
        """
        times = np.array([gt.timestamp for gt in self.groundtruth_data])
        idx = int(np.searchsorted(times, timestamp, side='right'))
        if idx >= len(times):
            raise ValueError(f"No groundtruth data found at timestamp {timestamp}")
        if idx > 0 and abs(times[idx] - timestamp) > abs(times[idx - 1] - timestamp):
            return self.groundtruth_data[idx - 1]
        return self.groundtruth_data[idx]
