import argparse
import logging
import sys

import rospy

from openni_tracker.core.config_loader import configure_logging, load_config
from openni_tracker.io.openni_session import OpenNISession
from openni_tracker.io.ros_bus import RosBus, RosLogHandler
from openni_tracker.logic.tracker_node import TrackerNode


def parse_args(argv=None):
    ap = argparse.ArgumentParser(description="Publish OpenNI skeleton joints as tf frames")
    ap.add_argument("--config", default=None, help="tracker JSON config")
    ap.add_argument("--middleware-config", default=None, help="OpenNI XML config")
    ap.add_argument("--camera-frame-id", default=None)
    ap.add_argument("--rate", type=int, default=None, help="tick rate in Hz")
    # roslaunch appends __name:=... / __log:=... remappings
    return ap.parse_args(rospy.myargv(argv if argv is not None else sys.argv)[1:])


def main(argv=None) -> int:
    args = parse_args(argv)

    bus = RosBus("openni_tracker")
    configure_logging(logging.INFO, handler=RosLogHandler())
    logging.getLogger(__name__).info("Initialising OpenNI tracker ...")

    config = load_config(args.config)
    if args.middleware_config:
        config.middleware_config_path = args.middleware_config
    if args.rate:
        config.tick_rate_hz = args.rate

    config.base_frame_id = bus.get_param("camera_frame_id", config.base_frame_id)
    if args.camera_frame_id:
        config.base_frame_id = args.camera_frame_id

    session = OpenNISession(config.middleware_config_path, frame_timeout_ms=config.frame_timeout_ms)
    node = TrackerNode(session, bus, config)
    rospy.on_shutdown(node.stop)
    return node.run()


if __name__ == "__main__":
    sys.exit(main())
