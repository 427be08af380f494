import json

import numpy as np
import pytest

from core.geo_filter import GeoSample
from core.liveness import ChallengeType, FaceFrame, StateTag
from database import AttendanceLogger, ChangeFeed, EmbeddingDB, RulesDB

NOW_MS = 1_700_000_000_000
ENROLLED = np.full(128, 0.1, dtype=np.float32)
STRANGER = np.full(128, 0.9, dtype=np.float32)

OFFICE = {"id": "1", "zone_name": "Head Office", "latitude": -6.2, "longitude": 106.8, "radius_meters": 100}
WAREHOUSE = {"id": "2", "zone_name": "Warehouse", "latitude": "-6,2001", "longitude": "106,8", "radius_meters": "150"}


class FakeClock:
    def __init__(self, now=0.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


class PassThroughDetector:
    """Frames pushed into the buffer are already FaceFrame objects"""

    def __init__(self):
        self.calls = 0

    def detect(self, image):
        self.calls += 1
        return image if isinstance(image, FaceFrame) else None


def face(x=320.0, y=240.0, width=100.0, descriptor=ENROLLED):
    return FaceFrame(nose_x=x, nose_y=y, face_width=width, descriptor=descriptor)


def moved(challenge, base):
    """A frame clearly past the move threshold for `challenge`"""
    dx = base.face_width * 0.3
    dy = base.face_width * 0.15
    if challenge == ChallengeType.TURN_LEFT:
        return face(base.nose_x + dx, base.nose_y, base.face_width, base.descriptor)
    if challenge == ChallengeType.TURN_RIGHT:
        return face(base.nose_x - dx, base.nose_y, base.face_width, base.descriptor)
    if challenge == ChallengeType.NOD_UP:
        return face(base.nose_x, base.nose_y - dy, base.face_width, base.descriptor)
    return face(base.nose_x, base.nose_y + dy, base.face_width, base.descriptor)


def complete_challenges(scanner, clock, base=None, frames=3):
    """Drive a started verify scanner through every challenge"""
    base = base or face()
    scanner.apply(base)
    for challenge in scanner.session.challenge_sequence:
        if scanner.session.state == StateTag.TRANSITIONING:
            clock.advance(1.0)
            scanner.apply(base)
        for _ in range(frames):
            scanner.apply(moved(challenge, base))
        for _ in range(frames):
            scanner.apply(base)


def fix(lat=-6.2, lng=106.8, accuracy=8.0, at=NOW_MS, mock=False):
    return GeoSample(latitude=lat, longitude=lng, accuracy_meters=accuracy,
                     captured_at_ms=at, is_mock_flagged=mock)


def clean_fixes(n, lat=-6.2, lng=106.8):
    """n trustworthy fixes with receiver-like jitter"""
    return [fix(lat + i * 1e-7, lng - i * 1e-7, 8.0 + i * 0.1) for i in range(n)]


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def feed():
    return ChangeFeed()


@pytest.fixture
def attendance(tmp_path, feed):
    return AttendanceLogger(str(tmp_path / "attendance.csv"), feed=feed)


@pytest.fixture
def faces(tmp_path, feed):
    return EmbeddingDB(str(tmp_path / "faces.json"), feed=feed)


@pytest.fixture
def rules_path(tmp_path):
    path = tmp_path / "geofence_rules.json"
    path.write_text(json.dumps([OFFICE]))
    return path


@pytest.fixture
def rules_db(rules_path):
    return RulesDB(str(rules_path))
