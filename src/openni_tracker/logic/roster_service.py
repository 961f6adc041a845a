import logging
from typing import List, Optional

from openni_tracker.core.interfaces import IMessageBus, ISensorSession
from openni_tracker.core.types import MessageKind

logger = logging.getLogger(__name__)

ROSTER_TOPIC = "available_tracked_users"
DEFAULT_USER_TOPIC = "default_user"
USER_CHOOSER_TOPIC = "user_chooser"


class RosterService:
    """
    Publishes the set of users known to the middleware and the chosen
    default user. Both topics are latched.
    """

    def __init__(self, bus: IMessageBus, session: ISensorSession):
        self.session = session
        self.roster: List[int] = []
        self.default_user: Optional[int] = None

        self._roster_pub = bus.advertise(ROSTER_TOPIC, MessageKind.USER_ID_ARRAY, latch=True)
        self._default_pub = bus.advertise(DEFAULT_USER_TOPIC, MessageKind.USER_ID, latch=True)
        bus.subscribe(USER_CHOOSER_TOPIC, MessageKind.USER_ID, self.set_default_user)

    def publish_roster(self):
        self.roster = [int(u) for u in self.session.users()]
        self._roster_pub.publish(list(self.roster))
        logger.debug(f"Available tracked users: {self.roster}")

    def set_default_user(self, user_id: int) -> bool:
        user_id = int(user_id)
        if not self.session.is_tracking(user_id):
            logger.warning(f"OpenNI tracker: There is currently no tracked user with number {user_id}.")
            return False
        self.default_user = user_id
        self.publish_default_user()
        logger.info(f"OpenNI tracker: Default user is now user {user_id}.")
        return True

    def publish_default_user(self):
        if self.default_user is None:
            return
        self._default_pub.publish(self.default_user)

    def forget(self, user_id: int):
        if self.default_user is not None and self.default_user == int(user_id):
            logger.info(f"Default user {user_id} lost, clearing default user")
            self.default_user = None
