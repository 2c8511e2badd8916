"""
Acquisition Loop tests
======================
Fake camera scripts drive the loop step by step. Sleeps are mocked so the
tests run instantly.
"""

from unittest.mock import MagicMock, call, patch

import numpy as np
import pytest

import configure_setting as config
from camera import DeviceUnavailableError, EmptyFrameError, ReadTimeoutError
from conftest import FakeCascade
import main
from main import AcquisitionLoop, DebugDisplay, draw_overlay, parse_args
from posture_core import (
    HUNCHBACK,
    NORMAL,
    TOO_FAR,
    FaceLocator,
    FaceRegion,
    ModelLoadError,
    PostureAnalyzer,
    PostureResult,
)

FRAME = np.zeros((480, 640, 3), dtype=np.uint8)
TOO_FAR_FACE = (280, 200, 80, 80)
GOOD_FACE = (250, 170, 140, 140)


class FakeSource:
    """Frame source that replays a script of frames and read errors."""

    def __init__(self, script, open_error=None):
        self.script = list(script)
        self.open_error = open_error
        self.open_calls = 0
        self.close_calls = 0

    def read_frame(self):
        item = self.script.pop(0) if self.script else FRAME
        if isinstance(item, Exception):
            raise item
        return item

    def open(self):
        self.open_calls += 1
        if self.open_error is not None:
            raise self.open_error

    def close(self):
        self.close_calls += 1


def _make_loop(source, faces=(), settings=None, **kwargs):
    settings = settings or config.Settings()
    locator = FaceLocator(FakeCascade(faces), FakeCascade(), settings.detector)
    analyzer = PostureAnalyzer(settings.detector)
    alerts = MagicMock()
    sleep = MagicMock()
    return AcquisitionLoop(source, locator, analyzer, alerts, settings,
                           sleep=sleep, **kwargs)


# ─── Camera fault recovery ────────────────────────────────────

def test_reconnect_after_five_failures():
    source = FakeSource([ReadTimeoutError("timeout")] * 5 + [FRAME])
    loop = _make_loop(source)

    for _ in range(4):
        loop.step()
    assert loop.consecutive_failures == 4
    assert loop.reconnect_count == 0

    loop.step()
    assert loop.reconnect_count == 1
    assert source.close_calls == 1
    assert source.open_calls == 1
    assert call(config.RECONNECT_DELAY) in loop.sleep.call_args_list

    loop.step()
    assert loop.consecutive_failures == 0
    assert loop.reconnect_count == 1
    assert loop.frame_count == 1


def test_failed_reopen_keeps_counting():
    source = FakeSource([EmptyFrameError("empty")] * 6,
                        open_error=DeviceUnavailableError("busy"))
    loop = _make_loop(source)

    for _ in range(5):
        loop.step()
    assert loop.reconnect_count == 1
    assert loop.consecutive_failures == 5

    loop.step()
    assert loop.reconnect_count == 2
    assert loop.consecutive_failures == 6


def test_success_resets_failure_counter():
    source = FakeSource([ReadTimeoutError("timeout")] * 4 + [FRAME])
    loop = _make_loop(source)

    for _ in range(5):
        loop.step()

    assert loop.consecutive_failures == 0
    assert loop.reconnect_count == 0
    assert loop.sleep.call_args_list[:4] == [call(config.FAILURE_DELAY)] * 4


def test_frame_pacing_sleeps_less_than_interval():
    clock = MagicMock(side_effect=[0.0, 0.01])
    loop = _make_loop(FakeSource([FRAME]), clock=clock)
    loop.step()

    loop.sleep.assert_called_once()
    delay = loop.sleep.call_args.args[0]
    assert delay == pytest.approx(1.0 / config.CAMERA_FPS - 0.01)


# ─── Alerts ───────────────────────────────────────────────────

def test_incorrect_posture_raises_alert():
    loop = _make_loop(FakeSource([FRAME]), faces=[TOO_FAR_FACE])
    loop.step()

    loop.alerts.notify.assert_called_once()
    message = loop.alerts.notify.call_args.args[0]
    assert "too far" in message


def test_end_to_end_result():
    loop = _make_loop(FakeSource([]), faces=[TOO_FAR_FACE])
    result = loop.process(FRAME)

    assert result.is_correct is False
    assert result.sit_distance == TOO_FAR
    assert [result.head_position, result.sit_height, result.lateral_posture] == [NORMAL] * 3


def test_no_alert_without_person():
    loop = _make_loop(FakeSource([FRAME]), faces=[])
    loop.step()
    loop.alerts.notify.assert_not_called()


def test_no_alert_for_good_posture():
    loop = _make_loop(FakeSource([FRAME]), faces=[GOOD_FACE])
    loop.step()
    loop.alerts.notify.assert_not_called()


def test_no_alert_when_notifications_disabled():
    settings = config.Settings()
    settings.notification.enable = False
    loop = _make_loop(FakeSource([FRAME]), faces=[TOO_FAR_FACE], settings=settings)
    loop.step()
    loop.alerts.notify.assert_not_called()


def test_hunchback_triggers_alert():
    hunchback = MagicMock()
    hunchback.check.return_value = HUNCHBACK
    loop = _make_loop(FakeSource([FRAME]), faces=[GOOD_FACE], hunchback=hunchback)

    result = loop.process(FRAME)

    assert result.is_correct is True
    assert result.side_view == HUNCHBACK
    loop.alerts.notify.assert_called_once()


# ─── Loop lifecycle ───────────────────────────────────────────

def test_report_every_30_frames(capsys):
    clock = MagicMock(return_value=3.0)
    loop = _make_loop(FakeSource([]), faces=[GOOD_FACE], clock=clock)
    loop._last_report = 0.0

    for _ in range(config.REPORT_EVERY):
        loop.process(FRAME)

    out = capsys.readouterr().out
    assert f"{config.REPORT_EVERY} frames" in out
    assert loop.fps > 0


def test_display_quit_stops_run():
    display = MagicMock()
    display.show.return_value = False
    source = FakeSource([FRAME])
    loop = _make_loop(source, faces=[GOOD_FACE], display=display)

    loop.run()

    assert loop.running is False
    assert loop.frame_count == 1
    assert source.close_calls == 1
    display.close.assert_called_once()


def test_stop_from_signal_handler():
    source = FakeSource([FRAME] * 3)
    loop = _make_loop(source, faces=[GOOD_FACE])

    original_step = loop.step

    def step_then_signal():
        original_step()
        if loop.frame_count == 3:
            loop.stop(2, None)  # signal handlers pass (signum, frame)

    loop.step = step_then_signal
    loop.run()

    assert loop.frame_count == 3
    assert source.close_calls == 1


# ─── Display & CLI ────────────────────────────────────────────

def test_draw_overlay_marks_face():
    canvas = FRAME.copy()
    result = PostureResult(has_person=True, head_position=NORMAL, sit_distance=TOO_FAR,
                           sit_height=NORMAL, lateral_posture=NORMAL, is_correct=False,
                           face=FaceRegion(280, 200, 80, 80))
    draw_overlay(canvas, result, 25.0)

    assert canvas.any()
    # Red box edge for incorrect posture
    assert tuple(canvas[200, 300]) == config.COLOR_BAD


def test_debug_display_shows_copy():
    with patch("main.cv2.imshow") as imshow, patch("main.cv2.waitKey", return_value=-1):
        keep_going = DebugDisplay().show(FRAME, PostureResult(has_person=False), 0.0)

    assert keep_going is True
    assert imshow.call_args.args[1] is not FRAME
    assert not FRAME.any(), "Source frame must not be drawn on"


def test_parse_args():
    args = parse_args(["--config", "my.yaml", "--headless", "--device", "1"])
    assert args.config == "my.yaml"
    assert args.headless is True
    assert args.device == 1

    defaults = parse_args([])
    assert defaults.config is None
    assert defaults.headless is False


# ─── Startup failures ─────────────────────────────────────────

def _headless_settings():
    settings = config.Settings()
    settings.display.enable = False
    return settings


def test_bad_config_exits(capsys):
    with patch("main.config.load_settings", side_effect=config.ConfigError("Unknown option 'camera.zoom'")):
        with pytest.raises(SystemExit) as exc:
            main.main([])

    assert exc.value.code == 1
    assert "❌ Unknown option 'camera.zoom'" in capsys.readouterr().out


def test_model_load_failure_exits(capsys):
    with patch("main.load_cascades", side_effect=ModelLoadError("Model file not found: x.xml")):
        with pytest.raises(SystemExit) as exc:
            main.initialize_system(_headless_settings())

    assert exc.value.code == 1
    assert "❌ Model file not found: x.xml" in capsys.readouterr().out


def test_camera_unavailable_exits(capsys):
    source = MagicMock()
    source.open.side_effect = DeviceUnavailableError("Cannot open camera 0")
    with patch("main.load_cascades", return_value=(FakeCascade(), FakeCascade())), \
            patch("main.FrameSource", return_value=source):
        with pytest.raises(SystemExit) as exc:
            main.initialize_system(_headless_settings())

    assert exc.value.code == 1
    assert "❌ Cannot open camera 0" in capsys.readouterr().out


def test_initialize_system_builds_loop():
    source = MagicMock()
    with patch("main.load_cascades", return_value=(FakeCascade(), FakeCascade())), \
            patch("main.FrameSource", return_value=source):
        loop = main.initialize_system(_headless_settings())

    source.open.assert_called_once()
    assert loop.source is source
    assert loop.display is None
    assert loop.hunchback is None


def test_ctrl_c_during_startup_exits_cleanly(capsys):
    with patch("main.config.load_settings", return_value=_headless_settings()), \
            patch("main.initialize_system", side_effect=KeyboardInterrupt):
        with pytest.raises(SystemExit) as exc:
            main.main([])

    assert exc.value.code == 1
    assert "Interrupted during startup" in capsys.readouterr().out
