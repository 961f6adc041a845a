from typing import Any, Callable, Dict, List, Optional

import numpy as np
import pytest

from openni_tracker.core.errors import SensorError
from openni_tracker.core.interfaces import IMessageBus, IPublisher, ISensorCallbacks, ISensorSession
from openni_tracker.core.types import Joint, JointReading, MessageKind, StampedTransform


class FakeSession(ISensorSession):
    """In-memory middleware: tests feed events, the session records commands."""

    def __init__(self, needs_pose: bool = False, pose_name: str = "Psi"):
        self._needs_pose = needs_pose
        self._pose_name = pose_name
        self.handler: Optional[ISensorCallbacks] = None
        self.calls: List[tuple] = []
        self.known: List[int] = []
        self.tracking: set = set()
        self.joints: Dict[tuple, JointReading] = {}
        self.fail: Dict[str, int] = {}      # command name -> remaining failures
        self.open_error: Optional[SensorError] = None
        self.wait_errors: List[SensorError] = []
        self.pending: List[Callable[[], None]] = []
        self.opened = False
        self.closed = False

    # --- scripting helpers ---
    def new_user(self, uid: int):
        self.known.append(uid)
        self.handler.on_new_user(uid)

    def lost_user(self, uid: int):
        self.known.remove(uid)
        self.tracking.discard(uid)
        self.handler.on_lost_user(uid)

    def calibration_start(self, uid: int):
        self.handler.on_calibration_start(uid)

    def calibration_end(self, uid: int, success: bool):
        self.handler.on_calibration_end(uid, success)

    def pose_detected(self, uid: int, pose: Optional[str] = None):
        self.handler.on_pose_detected(pose or self._pose_name, uid)

    def track(self, uid: int):
        """Brings a user all the way to tracked."""
        self.new_user(uid)
        if self._needs_pose:
            self.pose_detected(uid)
        self.calibration_start(uid)
        self.calibration_end(uid, True)

    def set_joint(self, uid: int, joint: Joint, position_mm, rotation=None):
        rot = np.eye(3) if rotation is None else np.asarray(rotation, dtype=np.float64)
        self.joints[(uid, joint)] = JointReading(np.asarray(position_mm, dtype=np.float64), rot)

    def _cmd(self, name: str, *args):
        self.calls.append((name,) + args)
        if self.fail.get(name, 0) > 0:
            self.fail[name] -= 1
            raise SensorError(f"{name} failed", status=65565)

    def commands(self, name: str) -> List[tuple]:
        return [c for c in self.calls if c[0] == name]

    # --- ISensorSession ---
    def open(self):
        self.calls.append(("open",))
        if self.open_error is not None:
            raise self.open_error
        self.opened = True

    def register_callbacks(self, handler: ISensorCallbacks):
        self.handler = handler

    def start(self):
        self._cmd("start")

    def stop(self):
        self._cmd("stop")

    def wait_and_update(self):
        self.calls.append(("wait_and_update",))
        if self.wait_errors:
            raise self.wait_errors.pop(0)
        pending, self.pending = self.pending, []
        for fn in pending:
            fn()

    def needs_pose(self) -> bool:
        return self._needs_pose

    def calibration_pose_name(self) -> str:
        return self._pose_name

    def start_pose_detection(self, pose: str, user_id: int):
        self._cmd("start_pose_detection", pose, user_id)

    def stop_pose_detection(self, user_id: int):
        self._cmd("stop_pose_detection", user_id)

    def request_calibration(self, user_id: int, force: bool):
        self._cmd("request_calibration", user_id, force)

    def start_tracking(self, user_id: int):
        self._cmd("start_tracking", user_id)
        self.tracking.add(user_id)

    def is_tracking(self, user_id: int) -> bool:
        return user_id in self.tracking

    def users(self) -> List[int]:
        return list(self.known)

    def joint(self, user_id: int, joint: Joint) -> JointReading:
        return self.joints.get((user_id, joint), JointReading(np.zeros(3), np.eye(3)))

    def close(self):
        self.calls.append(("close",))
        self.closed = True


class FakePublisher(IPublisher):
    def __init__(self, topic: str, kind: MessageKind, latch: bool):
        self.topic = topic
        self.kind = kind
        self.latch = latch
        self.messages: List[Any] = []

    def publish(self, data: Any):
        self.messages.append(data)

    @property
    def latched(self):
        return self.messages[-1] if self.messages else None


class FakeBus(IMessageBus):
    def __init__(self):
        self.publishers: Dict[str, FakePublisher] = {}
        self.subscriptions: Dict[str, Callable[[Any], None]] = {}
        self.transforms: List[StampedTransform] = []
        self.inbox: List[tuple] = []
        self.clock = 100.0
        self.shutdown = False
        self.spins = 0

    def advertise(self, topic: str, kind: MessageKind, latch: bool = False) -> IPublisher:
        pub = FakePublisher(topic, kind, latch)
        self.publishers[topic] = pub
        return pub

    def subscribe(self, topic: str, kind: MessageKind, callback: Callable[[Any], None]):
        self.subscriptions[topic] = callback

    def deliver(self, topic: str, data: Any):
        """Queues an inbound message; it runs on the next spin_once."""
        self.inbox.append((topic, data))

    def send_transform(self, transform: StampedTransform):
        self.transforms.append(transform)

    def spin_once(self):
        self.spins += 1
        inbox, self.inbox = self.inbox, []
        for topic, data in inbox:
            self.subscriptions[topic](data)

    def now(self) -> float:
        return self.clock

    def is_shutdown(self) -> bool:
        return self.shutdown

    def frames(self) -> Dict[str, StampedTransform]:
        return {t.child_frame_id: t for t in self.transforms}


class NoSleepRate:
    def __init__(self):
        self.sleeps = 0

    def sleep(self):
        self.sleeps += 1


@pytest.fixture
def bus():
    return FakeBus()


@pytest.fixture
def session():
    return FakeSession(needs_pose=False)


@pytest.fixture
def pose_session():
    return FakeSession(needs_pose=True, pose_name="Psi")
