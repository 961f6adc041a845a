import logging
import queue
from typing import Any, Callable, Dict

import rospy
import tf
from std_msgs.msg import UInt16, UInt16MultiArray

from ..core.interfaces import IMessageBus, IPublisher
from ..core.types import MessageKind, StampedTransform

_MSG_TYPES = {
    MessageKind.USER_ID: UInt16,
    MessageKind.USER_ID_ARRAY: UInt16MultiArray,
}


class RosLogHandler(logging.Handler):
    """Forwards Python log records to rosout."""

    def emit(self, record: logging.LogRecord):
        msg = self.format(record)
        if record.levelno >= logging.ERROR:
            rospy.logerr(msg)
        elif record.levelno >= logging.WARNING:
            rospy.logwarn(msg)
        elif record.levelno >= logging.INFO:
            rospy.loginfo(msg)
        else:
            rospy.logdebug(msg)


class RosPublisher(IPublisher):
    def __init__(self, pub: rospy.Publisher, kind: MessageKind):
        self._pub = pub
        self._kind = kind

    def publish(self, data: Any):
        if self._kind == MessageKind.USER_ID_ARRAY:
            msg = UInt16MultiArray()
            msg.data = [int(v) for v in data]
        else:
            msg = UInt16()
            msg.data = int(data)
        self._pub.publish(msg)


class RosBus(IMessageBus):
    """
    ROS1 message bus in the node's private namespace.

    rospy runs subscriber callbacks on its own threads. They are queued here
    and only executed by ``spin_once`` on the tick thread.
    """

    def __init__(self, node_name: str = "openni_tracker", queue_size: int = 10):
        rospy.init_node(node_name)
        self._queue_size = queue_size
        self._pending: "queue.Queue[tuple]" = queue.Queue()
        self._subs: Dict[str, rospy.Subscriber] = {}
        self._br = tf.TransformBroadcaster()

    def get_param(self, name: str, default: Any) -> Any:
        return rospy.get_param(f"~{name}", default)

    def advertise(self, topic: str, kind: MessageKind, latch: bool = False) -> IPublisher:
        pub = rospy.Publisher(f"~{topic}", _MSG_TYPES[kind], queue_size=self._queue_size, latch=latch)
        return RosPublisher(pub, kind)

    def subscribe(self, topic: str, kind: MessageKind, callback: Callable[[Any], None]):
        def enqueue(msg):
            self._pending.put((callback, msg.data))
        self._subs[topic] = rospy.Subscriber(f"~{topic}", _MSG_TYPES[kind], enqueue, queue_size=self._queue_size)

    def send_transform(self, transform: StampedTransform):
        t = transform.transform
        self._br.sendTransform(
            tuple(float(v) for v in t.translation),
            tuple(float(v) for v in t.rotation),
            rospy.Time.from_sec(transform.stamp),
            transform.child_frame_id,
            transform.frame_id,
        )

    def spin_once(self):
        while True:
            try:
                callback, data = self._pending.get_nowait()
            except queue.Empty:
                return
            callback(data)

    def now(self) -> float:
        return rospy.Time.now().to_sec()

    def is_shutdown(self) -> bool:
        return rospy.is_shutdown()
