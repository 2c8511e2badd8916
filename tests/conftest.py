"""Shared fixtures for the posture monitor tests."""

import sys
from pathlib import Path

import numpy as np
import pytest

# Add project root to path
_project_root = str(Path(__file__).resolve().parent.parent)
if _project_root not in sys.path:
    sys.path.insert(0, _project_root)

import configure_setting as config


class FakeCascade:
    """Stands in for cv2.CascadeClassifier, returns fixed rectangles."""

    def __init__(self, rects=()):
        self.rects = list(rects)
        self.calls = []

    def detectMultiScale(self, image, **params):
        self.calls.append(params)
        return list(self.rects)


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


@pytest.fixture
def settings():
    return config.Settings()


@pytest.fixture
def frame():
    """Blank 640x480 BGR frame"""
    return np.zeros((480, 640, 3), dtype=np.uint8)
