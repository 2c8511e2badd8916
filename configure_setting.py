# Configuration settings for posture monitoring application

import os
from dataclasses import dataclass, field, fields
from typing import Optional, get_args

import yaml

# Config file
CONFIG_DIR = "config"
DEFAULT_CONFIG_PATH = os.path.join(CONFIG_DIR, "config.yaml")

# Camera
CAMERA_DEVICE = 0
CAMERA_WIDTH = 640
CAMERA_HEIGHT = 480
CAMERA_FPS = 30
CAMERA_WARMUP = 2.0  # Seconds to let the sensor settle after opening

# Frame reading (fixed policy, not user configurable)
READ_RETRIES = 3
READ_RETRY_DELAY = 0.1  # 100ms between read attempts

# Camera fault recovery
MAX_CONSECUTIVE_FAILURES = 5  # Reopen camera after this many failed reads
FAILURE_DELAY = 0.5  # Pause after a failed read
RECONNECT_DELAY = 2.0  # Cool-down between close and reopen

# Diagnostics
REPORT_EVERY = 30  # Print a status line every N processed frames

# Cascade models (OpenCV ships these under cv2.data.haarcascades)
FRONTAL_MODEL = "haarcascade_frontalface_default.xml"
PROFILE_MODEL = "haarcascade_profileface.xml"

# Face detection
SCALE_FACTOR = 1.1
MIN_NEIGHBORS = 5
MIN_FACE_SIZE = 30
MAX_FACE_SIZE = 0  # 0 = no upper bound

# Posture thresholds
MIN_SIT_DISTANCE = 5  # % of frame area covered by face, below = too far
MAX_SIT_DISTANCE = 15  # above = too near
MIN_SIT_HEIGHT = 30  # % of frame height above the face, below = sitting too high
MAX_SIT_HEIGHT = 70  # above = sitting too low
MIN_FACE_ASPECT = 0.7  # width/height outside this range = head tilted
MAX_FACE_ASPECT = 1.3
LEAN_FORWARD_FACTOR = 1.5
LEAN_BACK_FACTOR = 0.5
EXPECTED_FACE_HEIGHT = 0.15  # Fraction of frame height at normal distance
HUNCH_HEIGHT_FACTOR = 0.8

# Side view
HUNCHBACK_ANGLE_THRESHOLD = 60.0  # degrees

# Alerts
ALERT_TITLE = "Posture Alert"
ALERT_INTERVAL = 30  # Seconds between notifications
ALERT_TIMEOUT = 5  # Seconds the desktop toast stays visible

# Display colors (BGR format)
COLOR_GOOD = (0, 255, 0)  # Green
COLOR_BAD = (0, 0, 255)  # Red
COLOR_GUIDE = (128, 128, 128)  # Grey
COLOR_TEXT = (255, 255, 255)  # White
WINDOW_NAME = "Posture Monitor"


class ConfigError(Exception):
    """Raised when the configuration file cannot be used."""


@dataclass
class DetectorSettings:
    scale_factor: float = SCALE_FACTOR
    min_neighbors: int = MIN_NEIGHBORS
    min_face_size: int = MIN_FACE_SIZE
    max_face_size: int = MAX_FACE_SIZE
    model_dir: str = ""  # empty = OpenCV's bundled cascades
    enable_side_view: bool = False
    enable_hunchback_detection: bool = False
    hunchback_angle_threshold: float = HUNCHBACK_ANGLE_THRESHOLD
    min_sit_distance: float = MIN_SIT_DISTANCE
    max_sit_distance: float = MAX_SIT_DISTANCE
    min_sit_height: float = MIN_SIT_HEIGHT
    max_sit_height: float = MAX_SIT_HEIGHT
    min_face_aspect: float = MIN_FACE_ASPECT
    max_face_aspect: float = MAX_FACE_ASPECT
    lean_forward_factor: float = LEAN_FORWARD_FACTOR
    lean_back_factor: float = LEAN_BACK_FACTOR
    expected_face_height: float = EXPECTED_FACE_HEIGHT
    hunch_height_factor: float = HUNCH_HEIGHT_FACTOR


@dataclass
class CameraSettings:
    device: int = CAMERA_DEVICE
    width: int = CAMERA_WIDTH
    height: int = CAMERA_HEIGHT
    fps: int = CAMERA_FPS
    autofocus: bool = True
    autoexposure: bool = True
    brightness: Optional[int] = None  # None = leave the driver default
    contrast: Optional[int] = None
    warmup: float = CAMERA_WARMUP


@dataclass
class NotificationSettings:
    enable: bool = True
    interval: float = ALERT_INTERVAL


@dataclass
class DisplaySettings:
    enable: bool = True


@dataclass
class Settings:
    """All runtime settings, built once at startup and handed to each component."""

    detector: DetectorSettings = field(default_factory=DetectorSettings)
    camera: CameraSettings = field(default_factory=CameraSettings)
    notification: NotificationSettings = field(default_factory=NotificationSettings)
    display: DisplaySettings = field(default_factory=DisplaySettings)


def _check_type(option, expected, value):
    """Reject YAML values that do not match the field type (ints are fine for floats)."""
    allowed = [t for t in get_args(expected) if t is not type(None)] or [expected]
    if value is None and len(allowed) < len(get_args(expected)):
        return

    kind = allowed[0]
    if kind is bool:
        ok = isinstance(value, bool)
    elif kind is float:
        ok = isinstance(value, (int, float)) and not isinstance(value, bool)
    else:
        ok = isinstance(value, kind) and not isinstance(value, bool)
    if not ok:
        raise ConfigError(f"Option '{option}' must be {kind.__name__}, got {value!r}")


def _apply_section(target, name, values):
    """Copy one YAML section onto a settings dataclass, rejecting unknown keys."""
    if values is None:
        return
    if not isinstance(values, dict):
        raise ConfigError(f"Section '{name}' must be a mapping")

    known = {f.name: f.type for f in fields(target)}
    for key, value in values.items():
        if key not in known:
            raise ConfigError(f"Unknown option '{name}.{key}'")
        _check_type(f"{name}.{key}", known[key], value)
        setattr(target, key, value)


def settings_from_dict(data):
    """
    Build Settings from a parsed config mapping.

    Args:
        data: dict with optional 'detector', 'camera', 'notification'
              and 'display' sections

    Returns:
        Settings: defaults overlaid with the given values
    """
    settings = Settings()
    if not data:
        return settings
    if not isinstance(data, dict):
        raise ConfigError("Config root must be a mapping")

    for name, values in data.items():
        target = getattr(settings, name, None)
        if target is None:
            raise ConfigError(f"Unknown section '{name}'")
        _apply_section(target, name, values)

    if settings.camera.fps <= 0:
        raise ConfigError("camera.fps must be positive")
    if settings.notification.interval < 0:
        raise ConfigError("notification.interval must not be negative")
    return settings


def load_settings(path=None):
    """
    Load settings from a YAML file.

    With no path, the default config/config.yaml is used if present and
    built-in defaults otherwise. An explicit path must exist.

    Args:
        path: Optional path to a YAML config file

    Returns:
        Settings: Parsed settings
    """
    if path is None:
        if not os.path.exists(DEFAULT_CONFIG_PATH):
            return Settings()
        path = DEFAULT_CONFIG_PATH

    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except FileNotFoundError:
        raise ConfigError(f"Config file not found: {path}")
    except yaml.YAMLError as e:
        raise ConfigError(f"Cannot parse {path}: {e}")

    return settings_from_dict(data)
