from __future__ import annotations

import math

import numpy as np
from scipy.spatial.transform import Rotation

from ..core.types import Transform


def quaternion_from_matrix(m: np.ndarray) -> np.ndarray:
    """3x3 rotation matrix -> unit quaternion [x, y, z, w]."""
    m = np.asarray(m, dtype=np.float64).reshape(3, 3)
    # All-zero or reflected matrices (no orientation confidence) map to identity
    if not np.all(np.isfinite(m)) or np.linalg.det(m) <= 1e-9:
        return np.array([0.0, 0.0, 0.0, 1.0])
    return Rotation.from_matrix(m).as_quat()


def quaternion_to_matrix(q: np.ndarray) -> np.ndarray:
    return Rotation.from_quat(np.asarray(q, dtype=np.float64)).as_matrix()


def compose(a: Transform, b: Transform) -> Transform:
    """a * b"""
    ra = Rotation.from_quat(a.rotation)
    t = np.asarray(a.translation, dtype=np.float64) + ra.apply(np.asarray(b.translation, dtype=np.float64))
    return Transform(translation=t, rotation=(ra * Rotation.from_quat(b.rotation)).as_quat())


# Sensor axes (X right, Y up, Z forward) -> robotics axes (X forward, Y left, Z up)
FRAME_CHANGE = Transform(
    translation=np.zeros(3, dtype=np.float64),
    rotation=Rotation.from_euler("ZYX", [math.pi / 2, 0.0, math.pi / 2]).as_quat(),
)


def joint_transform(position_mm: np.ndarray, rotation: np.ndarray) -> Transform:
    """Joint pose in the sensor frame, before the frame-convention change."""
    X, Y, Z = [float(v) for v in position_mm]
    qx, qy, qz, qw = quaternion_from_matrix(rotation)
    return Transform(
        translation=np.array([-X / 1000.0, Y / 1000.0, Z / 1000.0], dtype=np.float64),
        rotation=np.array([qx, -qy, -qz, qw], dtype=np.float64),
    )


def output_transform(position_mm: np.ndarray, rotation: np.ndarray) -> Transform:
    return compose(FRAME_CHANGE, joint_transform(position_mm, rotation))
