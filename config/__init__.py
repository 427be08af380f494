"""
Configuration package for Geo-Liveness Attendance
"""

from .settings import *
from .liveness import *
from .location import *

__all__ = [
    # Detection loop
    'DETECTION_INTERVAL',

    # Face Detection
    'DETECTION_CONFIDENCE',
    'OUTPUT_SIZE',
    'NOSE_TIP_INDEX',

    # Liveness
    'LIVENESS_TIMEOUT',
    'FACE_MATCH_DISTANCE',
    'UNKNOWN_LABEL_DISTANCE',
    'NUM_CHALLENGES',
    'REQUIRED_CONSECUTIVE_FRAMES',
    'TURN_THRESHOLD_PERCENT',
    'NOD_THRESHOLD_PERCENT',
    'RETURN_THRESHOLD_RATIO',
    'NO_FACE_RESET_THRESHOLD',
    'CHALLENGE_TRANSITION_DELAY',
    'CHALLENGE_SET',

    # Location
    'MIN_VALID_READINGS_REQUIRED',
    'STABILITY_THRESHOLD',
    'MIN_ACCURACY_METERS',
    'MAX_FIX_AGE_MS',
    'EARTH_RADIUS_M',
    'REJECT_MOCK_LOCATIONS',

    # Paths
    'DATA_DIR',
    'FACE_DB_PATH',
    'ATTENDANCE_LOG_FILE',
    'GEOFENCE_RULES_PATH',
    'EMPLOYEES_PATH',

    # Server
    'HOST',
    'PORT',
    'ENV_FILE',
    'load_env_config',
    'env_flag',

    # Logging
    'LOG_LEVEL',
    'LOG_FORMAT',
]
