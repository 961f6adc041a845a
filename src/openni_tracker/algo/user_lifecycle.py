from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Tuple, Union

from ..core.types import UserState


# Events reported by the middleware for one user

@dataclass(frozen=True)
class NewUser:
    pass


@dataclass(frozen=True)
class LostUser:
    pass


@dataclass(frozen=True)
class CalibrationStart:
    pass


@dataclass(frozen=True)
class CalibrationEnd:
    success: bool


@dataclass(frozen=True)
class PoseDetected:
    pose: str


Event = Union[NewUser, LostUser, CalibrationStart, CalibrationEnd, PoseDetected]


# Commands issued back to the middleware (or to the roster service)

@dataclass(frozen=True)
class StartPoseDetection:
    pose: str


@dataclass(frozen=True)
class StopPoseDetection:
    pass


@dataclass(frozen=True)
class RequestCalibration:
    force: bool = True


@dataclass(frozen=True)
class StartTracking:
    pass


@dataclass(frozen=True)
class PublishRoster:
    pass


Action = Union[StartPoseDetection, StopPoseDetection, RequestCalibration, StartTracking, PublishRoster]


def _wait_for_calibration(needs_pose: bool, pose_name: str) -> Tuple[UserState, List[Action]]:
    if needs_pose:
        return UserState.POSE_WAIT, [StartPoseDetection(pose_name)]
    return UserState.CALIBRATING, [RequestCalibration(force=True)]


def transition(
    state: Optional[UserState],
    event: Event,
    needs_pose: bool,
    pose_name: str = "",
) -> Tuple[Optional[UserState], List[Action]]:
    """
    Per-user state machine.

    ``state`` is None for a user the controller has not seen. Returns the next
    state and the actions to run, in order. An event that does not apply to
    the current state leaves it unchanged with no actions, so a user never
    has more than one outstanding pose-detection or calibration request.
    """
    if isinstance(event, LostUser):
        if state is None:
            return None, [PublishRoster()]
        return UserState.LOST, [PublishRoster()]

    if isinstance(event, NewUser):
        # Ids may be reused after a loss; a new arrival always starts over
        return _wait_for_calibration(needs_pose, pose_name)

    if state == UserState.POSE_WAIT and isinstance(event, PoseDetected):
        return UserState.CALIBRATING, [StopPoseDetection(), RequestCalibration(force=True)]

    if state == UserState.CALIBRATING:
        if isinstance(event, CalibrationStart):
            return state, []
        if isinstance(event, CalibrationEnd):
            if event.success:
                return UserState.TRACKED, [StartTracking(), PublishRoster()]
            return _wait_for_calibration(needs_pose, pose_name)

    return state, []
