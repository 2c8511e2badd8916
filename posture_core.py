# posture_core.py - Detection + Analysis (Face Locator & Posture Classifier)

import math
import os
from dataclasses import dataclass
from typing import Optional

import cv2

import configure_setting as config

# Signal values
NORMAL = "normal"
TOO_HIGH = "too-high"
TOO_LOW = "too-low"
TILTED = "tilted"
TOO_FAR = "too-far"
TOO_NEAR = "too-near"
LEANING_FORWARD = "leaning-forward"
LEANING_BACK = "leaning-back"
POSSIBLE_HUNCH = "possible-hunch"
HUNCHBACK = "hunchback"

# Human-readable text for each non-normal signal, in report order
SIGNAL_MESSAGES = {
    "head_position": {
        TOO_HIGH: "Head too high",
        TOO_LOW: "Head too low",
        TILTED: "Head tilted",
    },
    "sit_distance": {
        TOO_FAR: "Sitting too far from the camera",
        TOO_NEAR: "Sitting too close to the camera",
    },
    "sit_height": {
        TOO_HIGH: "Sitting too high",
        TOO_LOW: "Sitting too low",
    },
    "lateral_posture": {
        LEANING_FORWARD: "Leaning forward",
        LEANING_BACK: "Leaning back",
        POSSIBLE_HUNCH: "Possible hunch, sit up straight",
    },
}
HUNCHBACK_MESSAGE = "Hunched back detected, keep a straight back"


class ModelLoadError(Exception):
    """A cascade model file is missing or unreadable"""


# ============================================================================
# DATA TYPES
# ============================================================================
@dataclass(frozen=True)
class FaceRegion:
    """Face bounding box in frame pixel coordinates"""

    x: int
    y: int
    width: int
    height: int

    @property
    def area(self):
        return self.width * self.height

    @property
    def center(self):
        return (self.x + self.width / 2, self.y + self.height / 2)


@dataclass(frozen=True)
class PostureResult:
    """
    Posture verdict for a single frame.

    The four signal fields are None when no person was found. `face` is the
    region the verdict was computed from, kept for drawing only.
    """

    has_person: bool
    head_position: Optional[str] = None
    sit_distance: Optional[str] = None
    sit_height: Optional[str] = None
    lateral_posture: Optional[str] = None
    side_view: Optional[str] = None
    is_correct: bool = True
    message: str = ""
    face: Optional[FaceRegion] = None

    @property
    def signals(self):
        return {
            "head_position": self.head_position,
            "sit_distance": self.sit_distance,
            "sit_height": self.sit_height,
            "lateral_posture": self.lateral_posture,
        }

    @property
    def needs_alert(self):
        """Incorrect posture or hunchback, and someone is actually there"""
        if not self.has_person:
            return False
        return not self.is_correct or self.side_view == HUNCHBACK

    def alert_message(self):
        parts = [self.message] if self.message else []
        if self.side_view == HUNCHBACK:
            parts.append(HUNCHBACK_MESSAGE)
        return "; ".join(parts)


# ============================================================================
# FACE LOCATOR (Wraps the frontal/profile cascades)
# ============================================================================
def load_cascades(settings):
    """
    Load the frontal and profile face cascades.

    Args:
        settings: DetectorSettings (model_dir may point at custom models)

    Returns:
        tuple: (frontal, profile) cv2.CascadeClassifier objects

    Raises:
        ModelLoadError: if either model is missing or fails to load
    """
    model_dir = settings.model_dir or cv2.data.haarcascades
    cascades = []
    for name in (config.FRONTAL_MODEL, config.PROFILE_MODEL):
        path = os.path.join(model_dir, name)
        if not os.path.exists(path):
            raise ModelLoadError(f"Model file not found: {path}")
        try:
            cascade = cv2.CascadeClassifier(path)
        except cv2.error as e:
            raise ModelLoadError(f"Failed to load model: {path} ({e})")
        if cascade.empty():
            raise ModelLoadError(f"Failed to load model: {path}")
        cascades.append(cascade)
    return tuple(cascades)


class FaceLocator:
    """Finds the largest face in a frame, falling back to profile detection"""

    def __init__(self, frontal, profile, settings):
        """
        Args:
            frontal: Frontal face detector with a detectMultiScale() method
            profile: Profile face detector with the same interface
            settings: DetectorSettings
        """
        self.frontal = frontal
        self.profile = profile
        self.settings = settings

    def _detect_params(self):
        s = self.settings
        params = {
            "scaleFactor": s.scale_factor,
            "minNeighbors": s.min_neighbors,
            "minSize": (s.min_face_size, s.min_face_size),
        }
        if s.max_face_size > 0:
            params["maxSize"] = (s.max_face_size, s.max_face_size)
        return params

    def _run(self, detector, gray):
        rects = detector.detectMultiScale(gray, **self._detect_params())
        return [FaceRegion(int(x), int(y), int(w), int(h)) for (x, y, w, h) in rects]

    @staticmethod
    def prepare(frame):
        """Grayscale + histogram equalization"""
        if frame.ndim == 3:
            gray = cv2.cvtColor(frame, cv2.COLOR_BGR2GRAY)
        else:
            gray = frame
        return cv2.equalizeHist(gray)

    def detect(self, gray):
        """
        Detect faces on an equalized grayscale image.

        Returns:
            list: FaceRegion candidates (empty if nobody is there)
        """
        faces = self._run(self.frontal, gray)
        if not faces:
            faces = self._run(self.profile, gray)
        return faces

    def detect_profile(self, gray):
        return self._run(self.profile, gray)

    @staticmethod
    def select_largest(faces):
        """Largest area wins, ties go to the first one seen"""
        best = None
        for face in faces:
            if best is None or face.area > best.area:
                best = face
        return best

    def locate(self, frame):
        """
        Takes a frame, returns the face to classify.

        Args:
            frame: OpenCV image (BGR or grayscale)

        Returns:
            tuple: (FaceRegion or None, equalized grayscale image)
        """
        gray = self.prepare(frame)
        return self.select_largest(self.detect(gray)), gray


# ============================================================================
# POSTURE ANALYZER (Face geometry -> posture signals)
# ============================================================================
class PostureAnalyzer:
    """Classifies posture from where the face sits in the frame"""

    def __init__(self, settings):
        """
        Args:
            settings: DetectorSettings with the posture thresholds
        """
        self.settings = settings

    def head_position(self, face, frame_height):
        aspect = face.width / face.height
        if aspect < self.settings.min_face_aspect or aspect > self.settings.max_face_aspect:
            return TILTED

        _, center_y = face.center
        if center_y < frame_height / 3:
            return TOO_HIGH
        if center_y > frame_height * 2 / 3:
            return TOO_LOW
        return NORMAL

    def sit_distance(self, face, frame_width, frame_height):
        # Bigger face = closer to the camera
        face_ratio = face.area / (frame_width * frame_height)
        if face_ratio < self.settings.min_sit_distance / 100:
            return TOO_FAR
        if face_ratio > self.settings.max_sit_distance / 100:
            return TOO_NEAR
        return NORMAL

    def sit_height(self, face, frame_height):
        height_ratio = face.y / frame_height
        if height_ratio < self.settings.min_sit_height / 100:
            return TOO_HIGH
        if height_ratio > self.settings.max_sit_height / 100:
            return TOO_LOW
        return NORMAL

    def lateral_posture(self, face, frame_width, frame_height):
        s = self.settings
        # Face shorter than expected at this distance suggests a hunched back
        if face.height < s.hunch_height_factor * s.expected_face_height * frame_height:
            return POSSIBLE_HUNCH

        center_x, center_y = face.center
        dx = abs(center_x - frame_width / 2)
        dy = abs(center_y - frame_height / 2)
        if dx > dy * s.lean_forward_factor:
            return LEANING_FORWARD
        if dx < dy * s.lean_back_factor:
            return LEANING_BACK
        return NORMAL

    def classify(self, face, frame_width, frame_height, side_view=None):
        """
        Build the posture verdict for one frame.

        Args:
            face: Selected FaceRegion, or None when no face was found
            frame_width, frame_height: Frame size in pixels
            side_view: Optional side-view verdict (NORMAL / HUNCHBACK)

        Returns:
            PostureResult
        """
        if face is None:
            return PostureResult(has_person=False)

        signals = {
            "head_position": self.head_position(face, frame_height),
            "sit_distance": self.sit_distance(face, frame_width, frame_height),
            "sit_height": self.sit_height(face, frame_height),
            "lateral_posture": self.lateral_posture(face, frame_width, frame_height),
        }
        problems = [
            SIGNAL_MESSAGES[name][value]
            for name, value in signals.items()
            if value != NORMAL
        ]

        return PostureResult(
            has_person=True,
            side_view=side_view,
            is_correct=not problems,
            message="; ".join(problems),
            face=face,
            **signals,
        )


# ============================================================================
# SIDE VIEW (Contour-angle hunchback heuristic, best effort)
# ============================================================================
MIN_CONTOUR_AREA = 100
CANNY_LOW = 50
CANNY_HIGH = 150


def contour_angle(contour):
    """
    Angle of a contour's centroid seen from the ROI origin.

    Args:
        contour: OpenCV contour (N x 1 x 2 points)

    Returns:
        float: Angle in degrees, in [0, 360)
    """
    points = contour.reshape(-1, 2)
    if len(points) < 2:
        return 0.0

    center_x, center_y = points.mean(axis=0)
    angle = math.degrees(math.atan2(center_y, center_x))
    if angle < 0:
        angle += 360
    return angle


class HunchbackChecker:
    """Rough hunchback check on a side-on face.

    Looks at the edge contours inside the profile face box and flags a
    hunch when one of them sits at a steep angle. This is a silhouette
    heuristic, not a real spine measurement.
    """

    def __init__(self, settings):
        self.settings = settings

    def is_hunchback(self, frame, face):
        roi = frame[face.y:face.y + face.height, face.x:face.x + face.width]
        if roi.size == 0:
            return False
        if roi.ndim == 3:
            roi = cv2.cvtColor(roi, cv2.COLOR_BGR2GRAY)

        edges = cv2.Canny(roi, CANNY_LOW, CANNY_HIGH)
        contours, _ = cv2.findContours(edges, cv2.RETR_EXTERNAL, cv2.CHAIN_APPROX_SIMPLE)

        for contour in contours:
            if cv2.contourArea(contour) < MIN_CONTOUR_AREA:
                continue
            if contour_angle(contour) > self.settings.hunchback_angle_threshold:
                return True
        return False

    def check(self, frame, gray, locator):
        """
        Side-view verdict for a frame.

        Returns:
            str: HUNCHBACK or NORMAL, or None when no profile face was found
                 or hunchback detection is off
        """
        if not self.settings.enable_hunchback_detection:
            return None

        face = locator.select_largest(locator.detect_profile(gray))
        if face is None:
            return None
        return HUNCHBACK if self.is_hunchback(frame, face) else NORMAL


# ============================================================================
# TESTING (Run this file directly to try detection on the live camera)
# ============================================================================
if __name__ == "__main__":
    import time

    print("🧪 Testing posture_core.py components...\n")

    settings = config.Settings()
    frontal, profile = load_cascades(settings.detector)
    print("✅ Cascades loaded\n")

    locator = FaceLocator(frontal, profile, settings.detector)
    analyzer = PostureAnalyzer(settings.detector)

    print("Camera detection (5 seconds), press 'q' to skip...")
    cap = cv2.VideoCapture(settings.camera.device)
    start = time.time()
    detected_count = 0

    while time.time() - start < 5:
        ret, frame = cap.read()
        if ret:
            face, _ = locator.locate(frame)
            result = analyzer.classify(face, frame.shape[1], frame.shape[0])
            if result.has_person:
                detected_count += 1
                text = "OK" if result.is_correct else result.message
                cv2.putText(frame, text, (10, 30),
                            cv2.FONT_HERSHEY_SIMPLEX, 0.6, config.COLOR_GOOD, 2)
            cv2.imshow("Test", frame)

        if cv2.waitKey(1) & 0xFF == ord("q"):
            break

    cap.release()
    cv2.destroyAllWindows()

    if detected_count > 0:
        print(f"✅ Detection working! Face found in {detected_count} frames\n")
    else:
        print("⚠️  No face detected. Check camera and lighting.\n")
