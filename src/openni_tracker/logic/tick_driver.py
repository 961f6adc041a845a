import logging
import time
from typing import Callable

from openni_tracker.core.errors import SensorError, WaitTimeoutError
from openni_tracker.core.interfaces import IMessageBus, ISensorSession
from openni_tracker.logic.joint_emitter import JointTransformEmitter

logger = logging.getLogger(__name__)


class Rate:
    """Sleeps whatever is left of a fixed period since the previous call."""

    def __init__(self, hz: float, clock: Callable[[], float] = time.monotonic,
                 sleep: Callable[[float], None] = time.sleep):
        self.period = 1.0 / float(hz)
        self._clock = clock
        self._sleep = sleep
        self._last = clock()

    def sleep(self):
        now = self._clock()
        remaining = self._last + self.period - now
        if remaining > 0:
            self._sleep(remaining)
            self._last += self.period
        else:
            # Fell behind; don't try to catch up
            self._last = now


class TickDriver:
    def __init__(self, session: ISensorSession, bus: IMessageBus, emitter: JointTransformEmitter,
                 rate: Rate, continue_on_timeout: bool = False):
        self.session = session
        self.bus = bus
        self.emitter = emitter
        self.rate = rate
        self.continue_on_timeout = continue_on_timeout
        self.running = True
        self.ticks = 0

    def request_stop(self):
        self.running = False

    def tick(self):
        self.bus.spin_once()
        self.session.wait_and_update()
        self.emitter.emit(self.bus.now())
        self.ticks += 1

    def run(self) -> int:
        """Runs until shutdown. Returns the process exit code."""
        code = 0
        try:
            while self.running and not self.bus.is_shutdown():
                try:
                    self.tick()
                except WaitTimeoutError as e:
                    logger.error(f"WaitAndUpdateAll failed: {e}")
                    if not self.continue_on_timeout:
                        code = e.status
                        break
                except SensorError as e:
                    logger.error(f"WaitAndUpdateAll failed: {e}")
                    code = e.status
                    break
                self.rate.sleep()
        finally:
            self.shutdown()
        return code

    def shutdown(self):
        logger.info("Stopping generation and releasing the sensor session")
        try:
            self.session.stop()
        except SensorError as e:
            logger.warning(f"StopGeneratingAll failed: {e}")
        self.session.close()
