import logging
from typing import Callable, List, Optional, Tuple

from openni_tracker.algo.transforms import output_transform
from openni_tracker.core.errors import SensorError
from openni_tracker.core.interfaces import IMessageBus, ISensorSession
from openni_tracker.core.types import Joint, StampedTransform

logger = logging.getLogger(__name__)

# (middleware joint, published role). Limbs are deliberately swapped: the
# middleware's LEFT side is published as right_* and vice versa.
OUTPUT_JOINTS: List[Tuple[Joint, str]] = [
    (Joint.HEAD, "head"),
    (Joint.NECK, "neck"),
    (Joint.TORSO, "torso"),
    (Joint.LEFT_SHOULDER, "right_shoulder"),
    (Joint.LEFT_ELBOW, "right_elbow"),
    (Joint.LEFT_HAND, "right_hand"),
    (Joint.RIGHT_SHOULDER, "left_shoulder"),
    (Joint.RIGHT_ELBOW, "left_elbow"),
    (Joint.RIGHT_HAND, "left_hand"),
    (Joint.LEFT_HIP, "right_hip"),
    (Joint.LEFT_KNEE, "right_knee"),
    (Joint.LEFT_FOOT, "right_foot"),
    (Joint.RIGHT_HIP, "left_hip"),
    (Joint.RIGHT_KNEE, "left_knee"),
    (Joint.RIGHT_FOOT, "left_foot"),
]


class JointTransformEmitter:
    def __init__(self, session: ISensorSession, bus: IMessageBus, base_frame_id: str,
                 is_tracked: Callable[[int], bool], default_user: Callable[[], Optional[int]]):
        self.session = session
        self.bus = bus
        self.base_frame_id = base_frame_id
        self.is_tracked = is_tracked
        self.default_user = default_user

    def emit(self, stamp: float) -> List[StampedTransform]:
        sent: List[StampedTransform] = []
        chosen = self.default_user()
        for user in self.session.users():
            if not self.is_tracked(user):
                continue
            try:
                transforms = self.user_transforms(user, stamp, duplicate=(user == chosen))
            except SensorError as e:
                logger.warning(f"Reading joints of user {user} failed: {e}")
                continue
            for st in transforms:
                self.bus.send_transform(st)
            sent.extend(transforms)
        return sent

    def user_transforms(self, user: int, stamp: float, duplicate: bool = False) -> List[StampedTransform]:
        out: List[StampedTransform] = []
        for joint, role in OUTPUT_JOINTS:
            reading = self.session.joint(user, joint)
            transform = output_transform(reading.position_mm, reading.rotation)
            out.append(StampedTransform(transform, stamp, self.base_frame_id, f"{role}_{user}"))
            if duplicate:
                out.append(StampedTransform(transform, stamp, self.base_frame_id, role))
        return out
