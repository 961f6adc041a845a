from abc import ABC, abstractmethod
from typing import Any, Callable, List
from .types import Joint, JointReading, MessageKind, StampedTransform


class ISensorCallbacks(ABC):
    """Receiver of middleware events. Called from inside ``wait_and_update``."""

    @abstractmethod
    def on_new_user(self, user_id: int):
        pass

    @abstractmethod
    def on_lost_user(self, user_id: int):
        pass

    @abstractmethod
    def on_calibration_start(self, user_id: int):
        pass

    @abstractmethod
    def on_calibration_end(self, user_id: int, success: bool):
        pass

    @abstractmethod
    def on_pose_detected(self, pose: str, user_id: int):
        pass


class ISensorSession(ABC):
    @abstractmethod
    def open(self):
        pass

    @abstractmethod
    def register_callbacks(self, handler: ISensorCallbacks):
        pass

    @abstractmethod
    def start(self):
        pass

    @abstractmethod
    def stop(self):
        pass

    @abstractmethod
    def wait_and_update(self):
        pass

    @abstractmethod
    def needs_pose(self) -> bool:
        pass

    @abstractmethod
    def calibration_pose_name(self) -> str:
        pass

    @abstractmethod
    def start_pose_detection(self, pose: str, user_id: int):
        pass

    @abstractmethod
    def stop_pose_detection(self, user_id: int):
        pass

    @abstractmethod
    def request_calibration(self, user_id: int, force: bool):
        pass

    @abstractmethod
    def start_tracking(self, user_id: int):
        pass

    @abstractmethod
    def is_tracking(self, user_id: int) -> bool:
        pass

    @abstractmethod
    def users(self) -> List[int]:
        pass

    @abstractmethod
    def joint(self, user_id: int, joint: Joint) -> JointReading:
        pass

    @abstractmethod
    def close(self):
        pass


class IPublisher(ABC):
    @abstractmethod
    def publish(self, data: Any):
        pass


class IMessageBus(ABC):
    @abstractmethod
    def advertise(self, topic: str, kind: MessageKind, latch: bool = False) -> IPublisher:
        pass

    @abstractmethod
    def subscribe(self, topic: str, kind: MessageKind, callback: Callable[[Any], None]):
        pass

    @abstractmethod
    def send_transform(self, transform: StampedTransform):
        pass

    @abstractmethod
    def spin_once(self):
        """Run pending inbound callbacks on the calling thread"""
        pass

    @abstractmethod
    def now(self) -> float:
        pass

    @abstractmethod
    def is_shutdown(self) -> bool:
        pass
