"""
Global settings for Geo-Liveness Attendance
"""
import os

# ============================================================================
# DETECTION LOOP
# ============================================================================
DETECTION_INTERVAL = 0.15  # Seconds between detection ticks

# ============================================================================
# FACE DETECTION
# ============================================================================
DETECTION_CONFIDENCE = 0.5  # MediaPipe detection confidence
OUTPUT_SIZE = 160  # Face crop size (160 for FaceNet)
NOSE_TIP_INDEX = 1  # MediaPipe face mesh landmark for the nose tip

# ============================================================================
# DATABASE PATHS
# ============================================================================
DATA_DIR = 'data'
FACE_DB_PATH = 'data/faces.json'
ATTENDANCE_LOG_FILE = 'data/attendance.csv'
GEOFENCE_RULES_PATH = 'data/geofence_rules.json'
EMPLOYEES_PATH = 'data/employees.json'

# ============================================================================
# SERVER
# ============================================================================
HOST = "0.0.0.0"
PORT = 8000
ENV_FILE = '.env.local'

# ============================================================================
# LOGGING
# ============================================================================
LOG_LEVEL = 'INFO'
LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def load_env_config(env_path=ENV_FILE):
    config = {
        "ADMIN_PASSWORD": "admin123",
        "REJECT_MOCK_LOCATIONS": "true",
        "HOST": HOST,
        "PORT": str(PORT),
    }
    if os.path.exists(env_path):
        with open(env_path, 'r') as f:
            for line in f:
                line = line.strip()
                if not line or line.startswith('#'):
                    continue
                if '=' in line:
                    key, val = line.split('=', 1)
                    config[key.strip()] = val.strip().strip('"').strip("'")
    return config


def env_flag(value):
    """Interpret a .env.local value as a boolean"""
    return str(value).strip().lower() in ('1', 'true', 'yes', 'on')
