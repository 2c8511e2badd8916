# camera.py - Frame Source (camera access with read retries)

import time

import cv2

import configure_setting as config


class CameraError(Exception):
    """Base class for camera failures"""


class DeviceUnavailableError(CameraError):
    """Camera cannot be opened, or opened but is not streaming"""


class FrameReadError(CameraError):
    """No usable frame after all read attempts"""


class ReadTimeoutError(FrameReadError):
    """Camera did not deliver a frame"""


class EmptyFrameError(FrameReadError):
    """Camera delivered a frame with no pixels"""


def is_empty_frame(frame):
    """True for None or a zero-sized image"""
    return frame is None or getattr(frame, "size", 0) == 0


# ============================================================================
# FRAME SOURCE (Wraps cv2.VideoCapture)
# ============================================================================
class FrameSource:
    """
    Owns the camera device and hands out frames.

    Reads are retried a few times before giving up so that a single
    dropped frame does not reach the caller as an error.
    """

    def __init__(self, settings, sleep=time.sleep):
        """
        Args:
            settings: CameraSettings
            sleep: Delay function, replaced in tests
        """
        self.settings = settings
        self.sleep = sleep
        self.cap = None
        self.frame_size = None

    def open(self):
        """
        Open the camera, apply capture parameters and check it streams.

        Raises:
            DeviceUnavailableError: if the device cannot be opened or the
                validation read fails (e.g. camera busy in another app)
        """
        s = self.settings
        print(f"📹 Opening camera {s.device}...")

        cap = cv2.VideoCapture(s.device)
        if not cap.isOpened():
            cap.release()
            raise DeviceUnavailableError(f"Cannot open camera {s.device}")

        self._configure(cap)

        if s.warmup > 0:
            self.sleep(s.warmup)

        ret, frame = cap.read()
        if not ret or is_empty_frame(frame):
            cap.release()
            raise DeviceUnavailableError(
                "Camera opened but cannot read frames (in use by another app?)"
            )

        self.cap = cap
        self.frame_size = (frame.shape[1], frame.shape[0])
        print(f"✅ Camera ready: {self.frame_size[0]}x{self.frame_size[1]}")

    def _configure(self, cap):
        s = self.settings
        cap.set(cv2.CAP_PROP_FRAME_WIDTH, s.width)
        cap.set(cv2.CAP_PROP_FRAME_HEIGHT, s.height)
        cap.set(cv2.CAP_PROP_FPS, s.fps)
        cap.set(cv2.CAP_PROP_AUTOFOCUS, 1 if s.autofocus else 0)
        # V4L2 convention: 0.75 = auto, 0.25 = manual
        cap.set(cv2.CAP_PROP_AUTO_EXPOSURE, 0.75 if s.autoexposure else 0.25)
        if s.brightness is not None:
            cap.set(cv2.CAP_PROP_BRIGHTNESS, s.brightness)
        if s.contrast is not None:
            cap.set(cv2.CAP_PROP_CONTRAST, s.contrast)

    def read_frame(self):
        """
        Read one frame, retrying on dropped or empty frames.

        Returns:
            numpy.ndarray: BGR frame

        Raises:
            ReadTimeoutError: camera not open or no frame delivered
            EmptyFrameError: last attempt delivered an empty frame
        """
        if self.cap is None or not self.cap.isOpened():
            raise ReadTimeoutError("Camera is not open")

        got_empty = False
        for attempt in range(config.READ_RETRIES):
            ret, frame = self.cap.read()
            if ret and not is_empty_frame(frame):
                return frame

            got_empty = ret
            if attempt < config.READ_RETRIES - 1:
                self.sleep(config.READ_RETRY_DELAY)

        if got_empty:
            raise EmptyFrameError("Camera returned an empty frame")
        raise ReadTimeoutError("Cannot read camera frame, check the connection")

    def close(self):
        """Release the camera (safe to call more than once)"""
        if self.cap is not None:
            self.cap.release()
            self.cap = None

    def __enter__(self):
        self.open()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
