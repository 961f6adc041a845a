import logging
from typing import Optional

from openni_tracker.core.errors import SensorError
from openni_tracker.core.interfaces import IMessageBus, ISensorSession
from openni_tracker.core.types import TrackerConfig
from openni_tracker.logic.joint_emitter import JointTransformEmitter
from openni_tracker.logic.lifecycle_controller import LifecycleController
from openni_tracker.logic.roster_service import RosterService
from openni_tracker.logic.tick_driver import Rate, TickDriver

logger = logging.getLogger(__name__)


class TrackerNode:
    """Wires session, bus and the tracking components together."""

    def __init__(self, session: ISensorSession, bus: IMessageBus, config: TrackerConfig,
                 rate: Optional[Rate] = None):
        self.session = session
        self.bus = bus
        self.config = config

        self.roster = RosterService(bus, session)
        self.controller = LifecycleController(session, self.roster)
        self.emitter = JointTransformEmitter(
            session, bus, config.base_frame_id,
            is_tracked=self.controller.is_tracked,
            default_user=lambda: self.roster.default_user,
        )
        self.driver = TickDriver(
            session, bus, self.emitter,
            rate if rate is not None else Rate(config.tick_rate_hz),
            continue_on_timeout=config.continue_on_timeout,
        )

    def bring_up(self) -> int:
        """Opens the session and starts generation. Returns 0 or the failing status."""
        try:
            self.session.open()
            self.session.register_callbacks(self.controller)
            logger.info("Starting to generate everything ...")
            self.session.start()
        except SensorError as e:
            logger.error(f"{e}")
            self.session.close()
            return e.status

        # start -> stop -> start: some driver stacks only deliver stable
        # frames after a restart
        try:
            logger.info("Stopping to generate everything ...")
            self.session.stop()
            logger.info("Starting to generate everything ...")
            self.session.start()
        except SensorError as e:
            logger.warning(f"Restarting generation: {e}")
        return 0

    def run(self) -> int:
        code = self.bring_up()
        if code != 0:
            return code
        logger.info(f"Publishing skeleton frames under '{self.config.base_frame_id}' at {self.config.tick_rate_hz} Hz")
        logger.info("And go!")
        return self.driver.run()

    def stop(self):
        self.driver.request_stop()
