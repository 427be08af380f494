"""
Core modules for Geo-Liveness Attendance

The MediaPipe/FaceNet detection collaborator lives in core.detector and
core.embedder and is imported on demand by the server.
"""

from .geo_filter import GeoSample, GeoSampleFilter, FilterVerdict, SampleHistory
from .geofence import GeofenceRule, haversine_dist, is_within_radius, match_zones, normalize_rules
from .location_trust import LocationStatus, LocationTrustEngine, LocationTrustState
from .liveness import ChallengeType, FaceFrame, LivenessConfig, LivenessSession, ScanMode, StateTag
from .recognizer import FaceMatcher, MatchResult
from .scanner import LatestFrameBuffer, LivenessScanner
from .gate import ClockInRejected, GateError, GateSession, ZoneSelectionRequired

__all__ = [
    'GeoSample',
    'GeoSampleFilter',
    'FilterVerdict',
    'SampleHistory',
    'GeofenceRule',
    'haversine_dist',
    'is_within_radius',
    'match_zones',
    'normalize_rules',
    'LocationStatus',
    'LocationTrustEngine',
    'LocationTrustState',
    'ChallengeType',
    'FaceFrame',
    'LivenessConfig',
    'LivenessSession',
    'ScanMode',
    'StateTag',
    'FaceMatcher',
    'MatchResult',
    'LatestFrameBuffer',
    'LivenessScanner',
    'ClockInRejected',
    'GateError',
    'GateSession',
    'ZoneSelectionRequired',
]
