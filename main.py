# main.py - Posture Monitor (Main Application)

import argparse
import signal
import sys
import time

import cv2

import configure_setting as config
from camera import DeviceUnavailableError, FrameReadError, FrameSource
from features import AlertManager
from posture_core import (
    NORMAL,
    FaceLocator,
    HunchbackChecker,
    ModelLoadError,
    PostureAnalyzer,
    load_cascades,
)


def print_banner():
    """Print startup banner"""
    print("\n" + "="*60)
    print("🪑 POSTURE MONITOR")
    print("="*60)
    print("Sitting posture checks from face position (OpenCV cascades)")
    print("="*60 + "\n")


# ============================================================================
# DEBUG DISPLAY (Observational only, never feeds back into classification)
# ============================================================================
def draw_overlay(frame, result, fps):
    """
    Draw face box, reference lines and posture status on a frame.

    Args:
        frame: OpenCV image to draw on (modified in place)
        result: PostureResult for this frame
        fps: Current frames per second
    """
    height, width = frame.shape[:2]

    # Thirds guides used by the head position check
    for y in (height // 3, height * 2 // 3):
        cv2.line(frame, (0, y), (width, y), config.COLOR_GUIDE, 1)
    cv2.line(frame, (width // 2, 0), (width // 2, height), config.COLOR_GUIDE, 1)

    if result.has_person:
        color = config.COLOR_GOOD if result.is_correct else config.COLOR_BAD
        face = result.face
        cv2.rectangle(frame, (face.x, face.y),
                      (face.x + face.width, face.y + face.height), color, 2)

        lines = [f"{name}: {value}" for name, value in result.signals.items()]
        if result.side_view:
            lines.append(f"side_view: {result.side_view}")
        for i, text in enumerate(lines):
            cv2.putText(frame, text, (5, 50 + i * 20),
                        cv2.FONT_HERSHEY_PLAIN, 1.0, color, 1)
    else:
        cv2.putText(frame, 'No person detected', (5, 50),
                    cv2.FONT_HERSHEY_PLAIN, 1.2, config.COLOR_BAD, 1)

    cv2.putText(frame, f'FPS: {fps:.1f}', (5, 25),
                cv2.FONT_HERSHEY_PLAIN, 1.2, config.COLOR_TEXT, 1)
    cv2.putText(frame, "Press 'q' to quit", (width - 160, height - 10),
                cv2.FONT_HERSHEY_PLAIN, 1.0, config.COLOR_TEXT, 1)


class DebugDisplay:
    """Window showing the annotated camera feed"""

    def __init__(self, window_name=config.WINDOW_NAME):
        self.window_name = window_name

    def show(self, frame, result, fps):
        """
        Render a frame.

        Returns:
            bool: False once the user pressed 'q'
        """
        canvas = frame.copy()
        draw_overlay(canvas, result, fps)
        cv2.imshow(self.window_name, canvas)
        return cv2.waitKey(1) & 0xFF != ord('q')

    def close(self):
        cv2.destroyAllWindows()


# ============================================================================
# ACQUISITION LOOP (Read -> detect -> classify -> alert)
# ============================================================================
class AcquisitionLoop:
    """
    Single-threaded monitoring loop.

    Pulls frames from the camera, classifies posture and raises alerts.
    Repeated read failures trigger a camera reopen instead of a crash.
    """

    def __init__(self, source, locator, analyzer, alerts, settings,
                 hunchback=None, display=None, sleep=time.sleep, clock=time.time):
        self.source = source
        self.locator = locator
        self.analyzer = analyzer
        self.alerts = alerts
        self.settings = settings
        self.hunchback = hunchback
        self.display = display
        self.sleep = sleep
        self.clock = clock

        self.frame_interval = 1.0 / settings.camera.fps
        self.running = False
        self.consecutive_failures = 0
        self.reconnect_count = 0
        self.frame_count = 0
        self.fps = 0.0
        self._last_report = None

    def stop(self, *_):
        """Ask the loop to exit at the next iteration (signal-handler safe)"""
        self.running = False

    def run(self):
        """Process frames until stop() is called"""
        print("🚀 Monitoring started!")
        print("   - Sit naturally in front of camera")
        print("   - Press Ctrl+C to stop\n")

        self.running = True
        self._last_report = self.clock()
        try:
            while self.running:
                self.step()
        finally:
            self.source.close()
            if self.display is not None:
                self.display.close()

        print(f"\n👋 Stopped after {self.frame_count} frames")

    def step(self):
        """One loop iteration"""
        start = self.clock()
        try:
            frame = self.source.read_frame()
        except FrameReadError as e:
            self._handle_read_failure(e)
            return

        self.consecutive_failures = 0
        self.process(frame)

        # Pace to the configured frame rate
        delay = self.frame_interval - (self.clock() - start)
        if delay > 0:
            self.sleep(delay)

    def _handle_read_failure(self, error):
        self.consecutive_failures += 1
        print(f"❌ Frame read failed ({self.consecutive_failures}x): {error}")

        if self.consecutive_failures >= config.MAX_CONSECUTIVE_FAILURES:
            if not self.reconnect():
                return

        self.sleep(config.FAILURE_DELAY)

    def reconnect(self):
        """
        Close and reopen the camera.

        Returns:
            bool: True if the camera is streaming again
        """
        self.reconnect_count += 1
        print("🔄 Too many failed reads, reopening camera...")
        self.source.close()
        self.sleep(config.RECONNECT_DELAY)

        try:
            self.source.open()
        except DeviceUnavailableError as e:
            print(f"❌ Camera reopen failed: {e}")
            return False

        self.consecutive_failures = 0
        return True

    def process(self, frame):
        """
        Classify one frame and act on the result.

        Returns:
            PostureResult
        """
        height, width = frame.shape[:2]
        face, gray = self.locator.locate(frame)

        side_view = None
        if self.hunchback is not None:
            side_view = self.hunchback.check(frame, gray, self.locator)

        result = self.analyzer.classify(face, width, height, side_view)
        self.frame_count += 1

        if result.needs_alert and self.settings.notification.enable:
            self.alerts.notify(result.alert_message())

        if self.frame_count % config.REPORT_EVERY == 0:
            self._report(result)

        if self.display is not None and not self.display.show(frame, result, self.fps):
            print("\n👋 Stopping...")
            self.stop()

        return result

    def _report(self, result):
        now = self.clock()
        if self._last_report is not None and now > self._last_report:
            self.fps = config.REPORT_EVERY / (now - self._last_report)
        self._last_report = now

        if result.has_person:
            posture = "OK" if result.is_correct else "BAD"
            problems = [v for v in result.signals.values() if v != NORMAL]
            summary = f"person=yes posture={posture} {', '.join(problems)}".rstrip()
        else:
            summary = "person=no"
        print(f"📊 {self.frame_count} frames | {summary} | {self.fps:.1f} FPS")


# ============================================================================
# STARTUP
# ============================================================================
def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Face-based sitting posture monitor")
    parser.add_argument("--config", help="Path to YAML config (default: config/config.yaml)")
    parser.add_argument("--device", type=int, help="Camera index, overrides the config")
    parser.add_argument("--headless", action="store_true", help="Run without the debug window")
    return parser.parse_args(argv)


def initialize_system(settings):
    """
    Build every component from the loaded settings.

    Returns:
        AcquisitionLoop: Ready to run (camera already open)
    """
    print("🔧 Initializing system...")

    try:
        frontal, profile = load_cascades(settings.detector)
    except ModelLoadError as e:
        print(f"❌ {e}")
        sys.exit(1)

    source = FrameSource(settings.camera)
    try:
        source.open()
    except DeviceUnavailableError as e:
        print(f"❌ {e}")
        print("   Possible fixes:")
        print("   - Check camera is connected")
        print("   - Close other apps using camera")
        print("   - Allow camera access in system privacy settings")
        sys.exit(1)

    locator = FaceLocator(frontal, profile, settings.detector)
    analyzer = PostureAnalyzer(settings.detector)
    alerts = AlertManager(settings.notification.interval)
    hunchback = HunchbackChecker(settings.detector) if settings.detector.enable_side_view else None
    display = DebugDisplay() if settings.display.enable else None

    print("✅ All components initialized\n")
    return AcquisitionLoop(source, locator, analyzer, alerts, settings,
                           hunchback=hunchback, display=display)


def main(argv=None):
    """Main entry point"""
    args = parse_args(argv)
    print_banner()

    try:
        settings = config.load_settings(args.config)
    except config.ConfigError as e:
        print(f"❌ {e}")
        sys.exit(1)

    if args.device is not None:
        settings.camera.device = args.device
    if args.headless:
        settings.display.enable = False

    try:
        loop = initialize_system(settings)
    except KeyboardInterrupt:
        print("\n👋 Interrupted during startup")
        sys.exit(1)

    signal.signal(signal.SIGINT, loop.stop)
    signal.signal(signal.SIGTERM, loop.stop)

    loop.run()
    print("\n✅ Session complete.\n")


if __name__ == "__main__":
    main()
