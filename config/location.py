"""
Location trust and geofence thresholds
"""

# Consecutive trusted fixes before the location can become 'allowed'
MIN_VALID_READINGS_REQUIRED = 3

# Identical consecutive readings that flag an emulated receiver
STABILITY_THRESHOLD = 10

# Real receivers never report sub-meter accuracy
MIN_ACCURACY_METERS = 1.0

# Fixes older than this are stale or replayed (milliseconds)
MAX_FIX_AGE_MS = 5000

# Mean Earth radius for haversine distance (meters)
EARTH_RADIUS_M = 6371000

# Reject fixes the platform flags as coming from a mock provider
REJECT_MOCK_LOCATIONS = True
