from dataclasses import dataclass
from enum import Enum
import numpy as np
from typing import Optional, Tuple


class Joint(Enum):
    """Skeleton joints as labelled by the middleware (not mirrored)"""
    HEAD = "head"
    NECK = "neck"
    TORSO = "torso"
    LEFT_SHOULDER = "left_shoulder"
    LEFT_ELBOW = "left_elbow"
    LEFT_HAND = "left_hand"
    RIGHT_SHOULDER = "right_shoulder"
    RIGHT_ELBOW = "right_elbow"
    RIGHT_HAND = "right_hand"
    LEFT_HIP = "left_hip"
    LEFT_KNEE = "left_knee"
    LEFT_FOOT = "left_foot"
    RIGHT_HIP = "right_hip"
    RIGHT_KNEE = "right_knee"
    RIGHT_FOOT = "right_foot"


class UserState(Enum):
    POSE_WAIT = "pose_wait"
    CALIBRATING = "calibrating"
    TRACKED = "tracked"
    LOST = "lost"


class MessageKind(Enum):
    USER_ID = "uint16"
    USER_ID_ARRAY = "uint16[]"


@dataclass
class JointReading:
    """Raw joint data as delivered by the middleware"""
    position_mm: np.ndarray    # [X, Y, Z] in millimetres, sensor axes
    rotation: np.ndarray       # 3x3 row-major rotation matrix


@dataclass
class Transform:
    translation: np.ndarray    # [x, y, z] in meters
    rotation: np.ndarray       # Quaternion [x, y, z, w]


@dataclass
class StampedTransform:
    transform: Transform
    stamp: float
    frame_id: str              # parent
    child_frame_id: str


@dataclass
class TrackerConfig:
    base_frame_id: str = "openni_depth_frame"
    tick_rate_hz: int = 30
    middleware_config_path: Optional[str] = None
    frame_timeout_ms: int = 2000
    continue_on_timeout: bool = False


@dataclass
class MiddlewareConfig:
    """Parsed OpenNI-style XML production node configuration"""
    path: str
    has_depth_node: bool
    has_user_node: bool
    depth_resolution: Optional[Tuple[int, int]] = None  # (xRes, yRes)
    depth_fps: Optional[int] = None
    mirror: Optional[bool] = None
    calibration_pose: Optional[str] = None  # e.g. "Psi"; None means no pose needed
    recording_file: Optional[str] = None
