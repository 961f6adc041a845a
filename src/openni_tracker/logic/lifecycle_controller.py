import logging
from typing import Dict, List, Optional

from openni_tracker.algo.user_lifecycle import (
    CalibrationEnd,
    CalibrationStart,
    Event,
    LostUser,
    NewUser,
    PoseDetected,
    PublishRoster,
    RequestCalibration,
    StartPoseDetection,
    StartTracking,
    StopPoseDetection,
    transition,
)
from openni_tracker.core.errors import SensorError
from openni_tracker.core.interfaces import ISensorCallbacks, ISensorSession
from openni_tracker.core.types import UserState
from openni_tracker.logic.roster_service import RosterService

logger = logging.getLogger(__name__)


class LifecycleController(ISensorCallbacks):
    """
    Drives every user through pose detection, calibration and tracking.

    Registered as the session's callback handler, so all methods run inside
    ``session.wait_and_update()``. Middleware command failures are logged and
    leave the user in its previous state until the next event arrives.
    """

    def __init__(self, session: ISensorSession, roster: RosterService):
        self.session = session
        self.roster = roster
        self.states: Dict[int, UserState] = {}

    def state_of(self, user_id: int) -> Optional[UserState]:
        return self.states.get(int(user_id))

    def is_tracked(self, user_id: int) -> bool:
        return self.states.get(int(user_id)) == UserState.TRACKED

    def tracked_users(self) -> List[int]:
        return [u for u, s in self.states.items() if s == UserState.TRACKED]

    # --- Middleware callbacks ---
    def on_new_user(self, user_id: int):
        logger.info(f"New User {user_id}")
        self.handle(user_id, NewUser())

    def on_lost_user(self, user_id: int):
        logger.info(f"Lost user {user_id}.")
        self.handle(user_id, LostUser())

    def on_calibration_start(self, user_id: int):
        logger.info(f"Calibration started for user {user_id}")
        self.handle(user_id, CalibrationStart())

    def on_calibration_end(self, user_id: int, success: bool):
        if success:
            logger.info(f"Calibration complete, start tracking user {user_id}")
        else:
            logger.info(f"Calibration failed for user {user_id}")
        self.handle(user_id, CalibrationEnd(bool(success)))

    def on_pose_detected(self, pose: str, user_id: int):
        logger.info(f"Pose {pose} detected for user {user_id}")
        self.handle(user_id, PoseDetected(pose))

    # --- State machine ---
    def handle(self, user_id: int, event: Event):
        user_id = int(user_id)
        current = self.states.get(user_id)
        needs_pose = self.session.needs_pose()
        pose_name = self.session.calibration_pose_name() if needs_pose else ""
        new_state, actions = transition(current, event, needs_pose, pose_name)

        if new_state == current and not actions:
            logger.debug(f"No action for {type(event).__name__} for user {user_id} in state {current}")
            return

        if new_state == UserState.LOST or (new_state is None and isinstance(event, LostUser)):
            self.states.pop(user_id, None)
            self.roster.forget(user_id)
            self._run(user_id, actions)
            return

        if self._run(user_id, actions):
            self.states[user_id] = new_state

    def _run(self, user_id: int, actions) -> bool:
        for action in actions:
            try:
                if isinstance(action, StartPoseDetection):
                    self.session.start_pose_detection(action.pose, user_id)
                elif isinstance(action, StopPoseDetection):
                    self.session.stop_pose_detection(user_id)
                elif isinstance(action, RequestCalibration):
                    self.session.request_calibration(user_id, action.force)
                elif isinstance(action, StartTracking):
                    self.session.start_tracking(user_id)
                elif isinstance(action, PublishRoster):
                    self._publish_roster()
            except SensorError as e:
                logger.error(f"{type(action).__name__} failed for user {user_id}: {e}")
                return False
        return True

    def _publish_roster(self):
        try:
            self.roster.publish_roster()
        except SensorError as e:
            logger.error(f"Querying users failed, roster not published: {e}")
