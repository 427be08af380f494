"""
Liveness challenge-response thresholds
"""

# Budget for completing every challenge (seconds)
LIVENESS_TIMEOUT = 25.0

# Euclidean descriptor distance below which the face matches enrollment
FACE_MATCH_DISTANCE = 0.45

# Comparator labels anything farther than this as 'unknown'
UNKNOWN_LABEL_DISTANCE = 0.6

# Number of distinct head-pose challenges drawn per session
NUM_CHALLENGES = 2

# Consecutive qualifying frames before a phase advances (debounce)
REQUIRED_CONSECUTIVE_FRAMES = 3

# Move thresholds as a fraction of detected face width
TURN_THRESHOLD_PERCENT = 0.16
NOD_THRESHOLD_PERCENT = 0.07

# Return phase passes once displacement drops under this share of the move threshold
RETURN_THRESHOLD_RATIO = 0.5

# Consecutive empty frames mid-challenge before the session restarts
NO_FACE_RESET_THRESHOLD = 10

# Pause between challenges before re-baselining (seconds)
CHALLENGE_TRANSITION_DELAY = 0.75

# 'three': turn_left, turn_right, nod
# 'four':  turn_left, turn_right, nod_up, nod_down
CHALLENGE_SET = 'three'
