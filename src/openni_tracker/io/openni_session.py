import logging
import sys
from typing import Dict, List, Optional, Set

import numpy as np
from primesense import _openni2 as c_api

# primesense's generated NiTE bindings import "_openni2" as a top-level module
sys.modules.setdefault("_openni2", c_api)

from primesense import _nite2, nite2, openni2  # noqa: E402
from primesense.utils import InitializationError, NiteError, OpenNIError

from ..algo.transforms import quaternion_to_matrix
from ..core.config_loader import load_middleware_config
from ..core.errors import (
    ConfigLoadError,
    NoDepthNodeError,
    NoSkeletonCapError,
    NoUserGeneratorError,
    PoseNotSupportedError,
    SensorError,
    WaitTimeoutError,
)
from ..core.interfaces import ISensorCallbacks, ISensorSession
from ..core.types import Joint, JointReading, MiddlewareConfig

logger = logging.getLogger(__name__)

_NITE_JOINTS = {
    Joint.HEAD: _nite2.NiteJointType.NITE_JOINT_HEAD,
    Joint.NECK: _nite2.NiteJointType.NITE_JOINT_NECK,
    Joint.TORSO: _nite2.NiteJointType.NITE_JOINT_TORSO,
    Joint.LEFT_SHOULDER: _nite2.NiteJointType.NITE_JOINT_LEFT_SHOULDER,
    Joint.LEFT_ELBOW: _nite2.NiteJointType.NITE_JOINT_LEFT_ELBOW,
    Joint.LEFT_HAND: _nite2.NiteJointType.NITE_JOINT_LEFT_HAND,
    Joint.RIGHT_SHOULDER: _nite2.NiteJointType.NITE_JOINT_RIGHT_SHOULDER,
    Joint.RIGHT_ELBOW: _nite2.NiteJointType.NITE_JOINT_RIGHT_ELBOW,
    Joint.RIGHT_HAND: _nite2.NiteJointType.NITE_JOINT_RIGHT_HAND,
    Joint.LEFT_HIP: _nite2.NiteJointType.NITE_JOINT_LEFT_HIP,
    Joint.LEFT_KNEE: _nite2.NiteJointType.NITE_JOINT_LEFT_KNEE,
    Joint.LEFT_FOOT: _nite2.NiteJointType.NITE_JOINT_LEFT_FOOT,
    Joint.RIGHT_HIP: _nite2.NiteJointType.NITE_JOINT_RIGHT_HIP,
    Joint.RIGHT_KNEE: _nite2.NiteJointType.NITE_JOINT_RIGHT_KNEE,
    Joint.RIGHT_FOOT: _nite2.NiteJointType.NITE_JOINT_RIGHT_FOOT,
}

_POSES = {
    "psi": _nite2.NitePoseType.NITE_POSE_PSI,
    "crossedhands": _nite2.NitePoseType.NITE_POSE_CROSSED_HANDS,
}

_SKEL = _nite2.NiteSkeletonState
_USER_NEW = _nite2.NiteUserState.NITE_USER_STATE_NEW
_USER_LOST = _nite2.NiteUserState.NITE_USER_STATE_LOST
_POSE_IN_POSE = _nite2.NitePoseState.NITE_POSE_STATE_IN_POSE


def _value(enum_member) -> int:
    return int(getattr(enum_member, "value", enum_member))


def _has(flags, bit) -> bool:
    return (_value(flags) & _value(bit)) != 0


def _status(e: Exception) -> int:
    code = getattr(e, "code", None)
    if code is None and e.args:
        code = e.args[0]
    try:
        return _value(code) or 1
    except (TypeError, ValueError):
        return 1


class OpenNISession(ISensorSession):
    """
    Depth sensor session on OpenNI2 + NiTE2.

    NiTE2 reports user and skeleton state by polling; ``wait_and_update``
    turns the changes seen in each new frame into the callback events of an
    ``ISensorCallbacks`` handler.
    """

    def __init__(self, config_path: str, frame_timeout_ms: int = 2000):
        self._config_path = config_path
        self._timeout_s = frame_timeout_ms / 1000.0
        self._config: Optional[MiddlewareConfig] = None
        self._device = None
        self._depth_stream = None
        self._user_tracker = None
        self._frame = None
        self._handler: Optional[ISensorCallbacks] = None
        self._pose_name = ""
        self._pose_type = None

        self._users: Dict[int, object] = {}          # id -> latest NiTE user data
        self._order: List[int] = []                  # ids in order of arrival
        self._skel_state: Dict[int, int] = {}
        self._pose_requested: Set[int] = set()
        self._tracking: Set[int] = set()
        self._openni_up = False
        self._nite_up = False

    # --- Session setup ---
    def open(self):
        logger.info(f"Setting up configuration from XML file '{self._config_path}'")
        self._config = load_middleware_config(self._config_path)
        try:
            openni2.initialize()
            self._openni_up = True
        except InitializationError as e:
            raise ConfigLoadError(f"InitFromXml failed: {e}")

        logger.info("Looking for existing depth generators ...")
        if not self._config.has_depth_node:
            raise NoDepthNodeError(f"Find depth generator failed: no depth node in '{self._config_path}'")
        try:
            if self._config.recording_file:
                self._device = openni2.Device.open_file(self._config.recording_file.encode())
            else:
                self._device = openni2.Device.open_any()
            if not self._device.has_sensor(openni2.SENSOR_DEPTH):
                raise NoDepthNodeError("Find depth generator failed: device has no depth sensor")
            self._depth_stream = self._device.create_depth_stream()
            self._configure_depth(self._depth_stream)
        except OpenNIError as e:
            raise NoDepthNodeError(f"Find depth generator failed: {e}", status=_status(e))

        logger.info("Looking for existing user generators ...")
        if not self._config.has_user_node:
            logger.info("No existing user generators found. Creating new one.")
        try:
            nite2.initialize()
            self._nite_up = True
            self._user_tracker = nite2.UserTracker(self._device)
        except (InitializationError, NiteError) as e:
            raise NoUserGeneratorError(f"Find user generator failed: {e}", status=_status(e))

        try:
            self._user_tracker.get_skeleton_smoothing_factor()
        except NiteError:
            raise NoSkeletonCapError()

        logger.info("Checking pose detection capability ...")
        if self._config.calibration_pose:
            self._pose_type = _POSES.get(self._config.calibration_pose.lower())
            if self._pose_type is None:
                raise PoseNotSupportedError(f"Pose required, but not supported: '{self._config.calibration_pose}'")
            self._pose_name = self._config.calibration_pose

    def _configure_depth(self, stream):
        if self._config.depth_resolution is not None:
            x_res, y_res = self._config.depth_resolution
            stream.set_video_mode(c_api.OniVideoMode(
                pixelFormat=c_api.OniPixelFormat.ONI_PIXEL_FORMAT_DEPTH_1_MM,
                resolutionX=x_res,
                resolutionY=y_res,
                fps=self._config.depth_fps or 30,
            ))
        if self._config.mirror is not None:
            stream.set_mirroring_enabled(self._config.mirror)

    def register_callbacks(self, handler: ISensorCallbacks):
        self._handler = handler

    def start(self):
        try:
            self._depth_stream.start()
        except OpenNIError as e:
            raise SensorError(f"StartGenerating failed: {e}", status=_status(e))

    def stop(self):
        if self._depth_stream is None:
            return
        try:
            self._depth_stream.stop()
        except OpenNIError as e:
            raise SensorError(f"StopGenerating failed: {e}", status=_status(e))

    def needs_pose(self) -> bool:
        return self._pose_type is not None

    def calibration_pose_name(self) -> str:
        return self._pose_name

    # --- Frame acquisition ---
    def wait_and_update(self):
        try:
            ready = openni2.wait_for_any_stream([self._depth_stream], self._timeout_s)
        except OpenNIError as e:
            raise WaitTimeoutError(f"{e}", status=_status(e))
        if ready is None:
            raise WaitTimeoutError(f"no frame within {self._timeout_s:.1f}s")

        try:
            frame = self._user_tracker.read_frame()
        except NiteError as e:
            raise SensorError(f"Reading user tracker frame failed: {e}", status=_status(e))
        if self._frame is not None:
            self._frame.close()
        self._frame = frame

        events = []
        for user in frame.users:
            uid = int(user.id)
            if _has(user.state, _USER_LOST):
                if uid in self._users:
                    self._forget(uid)
                    events.append(("lost", uid))
                continue
            if _has(user.state, _USER_NEW) or uid not in self._users:
                if uid not in self._order:
                    self._order.append(uid)
                self._skel_state[uid] = _value(_SKEL.NITE_SKELETON_NONE)
                events.append(("new", uid))
            self._users[uid] = user
            events.extend(self._skeleton_events(uid, user))
            if uid in self._pose_requested and _has(user.poses[_value(self._pose_type)].state, _POSE_IN_POSE):
                events.append(("pose", uid))

        if self._handler is None:
            return
        for kind, uid in events:
            if kind == "new":
                self._handler.on_new_user(uid)
            elif kind == "lost":
                self._handler.on_lost_user(uid)
            elif kind == "pose":
                self._handler.on_pose_detected(self._pose_name, uid)
            elif kind == "calib_start":
                self._handler.on_calibration_start(uid)
            elif kind == "calib_ok":
                self._handler.on_calibration_end(uid, True)
            elif kind == "calib_fail":
                self._handler.on_calibration_end(uid, False)

    def _skeleton_events(self, uid: int, user) -> list:
        """
        Calibration events implied by a change of skeleton state.

        Polling can skip the CALIBRATING frame entirely (NONE -> TRACKED, or
        an error state straight back to TRACKED); the missing start is then
        reported before the outcome.
        """
        previous = self._skel_state.get(uid, _value(_SKEL.NITE_SKELETON_NONE))
        current = _value(user.skeleton.state)
        self._skel_state[uid] = current
        if current == previous:
            return []
        calibrating = _value(_SKEL.NITE_SKELETON_CALIBRATING)
        tracked = _value(_SKEL.NITE_SKELETON_TRACKED)
        if current == calibrating:
            return [("calib_start", uid)]
        if previous == tracked or current == _value(_SKEL.NITE_SKELETON_NONE):
            return []
        events = [] if previous == calibrating else [("calib_start", uid)]
        events.append(("calib_ok", uid) if current == tracked else ("calib_fail", uid))
        return events

    def _forget(self, uid: int):
        if uid in self._skel_state and self._user_tracker is not None:
            try:
                self._user_tracker.stop_skeleton_tracking(uid)
            except NiteError as e:
                logger.debug(f"StopSkeletonTracking for lost user {uid}: {e}")
        self._users.pop(uid, None)
        self._skel_state.pop(uid, None)
        self._pose_requested.discard(uid)
        self._tracking.discard(uid)
        if uid in self._order:
            self._order.remove(uid)

    # --- Commands ---
    def start_pose_detection(self, pose: str, user_id: int):
        try:
            # A failed calibration leaves NiTE's skeleton request running
            self._user_tracker.stop_skeleton_tracking(user_id)
            self._user_tracker.start_pose_detection(user_id, self._pose_type)
        except NiteError as e:
            raise SensorError(f"StartPoseDetection failed: {e}", status=_status(e))
        self._tracking.discard(user_id)
        self._pose_requested.add(user_id)

    def stop_pose_detection(self, user_id: int):
        self._pose_requested.discard(user_id)
        try:
            self._user_tracker.stop_pose_detection(user_id, self._pose_type)
        except NiteError as e:
            raise SensorError(f"StopPoseDetection failed: {e}", status=_status(e))

    def request_calibration(self, user_id: int, force: bool):
        # NiTE2 calibrates as part of starting skeleton tracking
        try:
            self._user_tracker.start_skeleton_tracking(user_id)
        except NiteError as e:
            raise SensorError(f"RequestCalibration failed: {e}", status=_status(e))

    def start_tracking(self, user_id: int):
        if self._skel_state.get(user_id) != _value(_SKEL.NITE_SKELETON_TRACKED):
            raise SensorError(f"StartTracking failed: user {user_id} is not calibrated")
        self._tracking.add(user_id)

    def is_tracking(self, user_id: int) -> bool:
        return user_id in self._tracking and self._skel_state.get(user_id) == _value(_SKEL.NITE_SKELETON_TRACKED)

    def users(self) -> List[int]:
        return list(self._order)

    def joint(self, user_id: int, joint: Joint) -> JointReading:
        user = self._users.get(user_id)
        if user is None:
            raise SensorError(f"GetSkeletonJoint failed: unknown user {user_id}")
        j = user.skeleton.joints[_value(_NITE_JOINTS[joint])]
        q = np.array([j.orientation.x, j.orientation.y, j.orientation.z, j.orientation.w], dtype=np.float64)
        if j.orientationConfidence > 0 and np.linalg.norm(q) > 0:
            rotation = quaternion_to_matrix(q)
        else:
            rotation = np.eye(3, dtype=np.float64)
        return JointReading(
            position_mm=np.array([j.position.x, j.position.y, j.position.z], dtype=np.float64),
            rotation=rotation,
        )

    def close(self):
        if self._frame is not None:
            self._frame.close()
            self._frame = None
        if self._user_tracker is not None:
            self._user_tracker.close()
            self._user_tracker = None
        if self._depth_stream is not None:
            try:
                self._depth_stream.stop()
            except OpenNIError as e:
                logger.warning(f"Stopping depth stream failed: {e}")
            self._depth_stream.close()
            self._depth_stream = None
        if self._device is not None:
            self._device.close()
            self._device = None
        if self._nite_up:
            nite2.unload()
            self._nite_up = False
        if self._openni_up:
            openni2.unload()
            self._openni_up = False
