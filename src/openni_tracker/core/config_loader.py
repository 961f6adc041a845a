import json
import logging
import os
import xml.etree.ElementTree as ET
from typing import Optional

from .errors import ConfigLoadError
from .types import MiddlewareConfig, TrackerConfig

logger = logging.getLogger(__name__)

MIDDLEWARE_CONFIG_NAME = "openni_tracker.xml"
PACKAGE_LOGGER = "openni_tracker"


def default_middleware_config_path() -> str:
    """Path of the middleware XML shipped inside the installed package."""
    return os.path.abspath(os.path.join(os.path.dirname(__file__), "..", "data", MIDDLEWARE_CONFIG_NAME))


def configure_logging(level: int = logging.INFO, handler: Optional[logging.Handler] = None):
    """
    Console logging for the process. Records of the package logger go to
    ``handler`` instead when one is given (e.g. the ROS log forwarder).
    """
    logging.basicConfig(level=level, format="%(levelname)s:%(name)s:%(message)s")
    pkg_logger = logging.getLogger(PACKAGE_LOGGER)
    pkg_logger.setLevel(level)
    if handler is not None:
        pkg_logger.addHandler(handler)
        pkg_logger.propagate = False
    return pkg_logger


def load_config(config_path: Optional[str] = None) -> TrackerConfig:
    """
    Loads the tracker configuration from a JSON file.
    If the file doesn't exist, returns default configuration.
    """
    defaults = {
        "tracker": {
            "camera_frame_id": "openni_depth_frame",
            "tick_rate_hz": 30,
            "frame_timeout_ms": 2000,
            "continue_on_timeout": False,
            "middleware_config": None,
        }
    }
    config = {k: dict(v) for k, v in defaults.items()}

    if config_path is None:
        config_path = "openni_tracker.json"

    if not os.path.exists(config_path):
        possible_paths = [
            os.path.join("..", config_path),
            os.path.join(os.path.dirname(__file__), "..", "..", "..", config_path),
        ]
        for p in possible_paths:
            if os.path.exists(p):
                config_path = p
                break
        else:
            logger.info(f"Config file {config_path} not found. Using defaults.")
            return _to_tracker_config(config)

    try:
        with open(config_path, "r") as f:
            user_config = json.load(f)
    except (OSError, ValueError) as e:
        logger.warning(f"Error loading config {config_path}: {e}. Using defaults.")
        return _to_tracker_config(config)

    # Shallow merge per top-level section
    for key, value in user_config.items():
        if isinstance(value, dict) and key in config:
            config[key].update(value)
        else:
            config[key] = value

    logger.info(f"Loaded config from {config_path}")
    return _to_tracker_config(config)


def _to_tracker_config(config: dict) -> TrackerConfig:
    t = config.get("tracker", {})
    rate = int(t.get("tick_rate_hz", 30))
    if rate <= 0:
        raise ValueError(f"tick_rate_hz must be positive, got {rate}")
    return TrackerConfig(
        base_frame_id=str(t.get("camera_frame_id", "openni_depth_frame")),
        tick_rate_hz=rate,
        middleware_config_path=t.get("middleware_config") or default_middleware_config_path(),
        frame_timeout_ms=int(t.get("frame_timeout_ms", 2000)),
        continue_on_timeout=bool(t.get("continue_on_timeout", False)),
    )


def load_middleware_config(path: str) -> MiddlewareConfig:
    """
    Parses an OpenNI-style XML configuration:

        <OpenNI>
          <ProductionNodes>
            <Recording file="capture.oni"/>
            <Node type="Depth" name="Depth1">
              <Configuration>
                <MapOutputMode xRes="640" yRes="480" FPS="30"/>
                <Mirror on="true"/>
              </Configuration>
            </Node>
            <Node type="User" name="User1" calibrationPose="Psi"/>
          </ProductionNodes>
        </OpenNI>
    """
    if not os.path.exists(path):
        raise ConfigLoadError(f"InitFromXml failed: file '{path}' does not exist")
    try:
        root = ET.parse(path).getroot()
    except ET.ParseError as e:
        raise ConfigLoadError(f"InitFromXml failed: {e}")

    nodes_el = root.find("ProductionNodes")
    if nodes_el is None:
        raise ConfigLoadError(f"InitFromXml failed: no <ProductionNodes> in '{path}'")

    cfg = MiddlewareConfig(path=path, has_depth_node=False, has_user_node=False)

    recording = nodes_el.find("Recording")
    if recording is not None:
        rec_file = recording.get("file")
        if rec_file and not os.path.isabs(rec_file):
            rec_file = os.path.join(os.path.dirname(os.path.abspath(path)), rec_file)
        cfg.recording_file = rec_file

    for node in nodes_el.findall("Node"):
        node_type = (node.get("type") or "").lower()
        if node_type == "depth":
            cfg.has_depth_node = True
            mode = node.find("Configuration/MapOutputMode")
            if mode is not None:
                try:
                    cfg.depth_resolution = (int(mode.get("xRes")), int(mode.get("yRes")))
                    cfg.depth_fps = int(mode.get("FPS"))
                except (TypeError, ValueError):
                    raise ConfigLoadError(f"InitFromXml failed: bad MapOutputMode in '{path}'")
            mirror = node.find("Configuration/Mirror")
            if mirror is not None:
                cfg.mirror = str(mirror.get("on", "false")).lower() == "true"
        elif node_type == "user":
            cfg.has_user_node = True
            pose = node.get("calibrationPose")
            if pose:
                cfg.calibration_pose = pose

    return cfg
