"""
Liveness Challenge-Response State Machine

The whole session is an immutable LivenessSession value. step() maps
(session, frame, now) to the next session, so the machine runs the same
under the asyncio scanner and in tests without any timer.

Coordinates are raw (unmirrored) camera pixels: a subject turning to
their own right moves the nose tip toward smaller x, a nod moves it
toward larger y.
"""
import logging
import random
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Optional, Tuple

from config import liveness

logger = logging.getLogger(__name__)


class ChallengeType(str, Enum):
    TURN_LEFT = "turn_left"
    TURN_RIGHT = "turn_right"
    NOD = "nod"
    NOD_UP = "nod_up"
    NOD_DOWN = "nod_down"


CHALLENGE_SETS = {
    'three': (ChallengeType.TURN_LEFT, ChallengeType.TURN_RIGHT, ChallengeType.NOD),
    'four': (ChallengeType.TURN_LEFT, ChallengeType.TURN_RIGHT,
             ChallengeType.NOD_UP, ChallengeType.NOD_DOWN),
}

HORIZONTAL = (ChallengeType.TURN_LEFT, ChallengeType.TURN_RIGHT)


class StateTag(str, Enum):
    INITIALIZING = "initializing"
    AWAITING_STABLE_FACE = "awaiting_stable_face"
    AWAITING_MOVE = "awaiting_move"
    AWAITING_RETURN = "awaiting_return"
    TRANSITIONING = "transitioning"
    VERIFYING = "verifying"
    PASSED = "passed"
    FAILED = "failed"


TERMINAL_STATES = (StateTag.PASSED, StateTag.FAILED)
MID_CHALLENGE_STATES = (StateTag.AWAITING_MOVE, StateTag.AWAITING_RETURN)


class ScanMode(str, Enum):
    REGISTER = "register"
    VERIFY = "verify"


INSTRUCTIONS = {
    ChallengeType.TURN_LEFT: "Turn your head to the left.",
    ChallengeType.TURN_RIGHT: "Turn your head to the right.",
    ChallengeType.NOD: "Nod slowly.",
    ChallengeType.NOD_UP: "Tilt your head up.",
    ChallengeType.NOD_DOWN: "Tilt your head down.",
}


@dataclass(frozen=True)
class FaceFrame:
    """Detector output for one frame: nose tip, face box width, descriptor"""
    nose_x: float
    nose_y: float
    face_width: float
    descriptor: Any = field(default=None, compare=False, repr=False)


@dataclass(frozen=True)
class Baseline:
    nose_x: float
    nose_y: float
    face_width: float

    @classmethod
    def from_frame(cls, frame):
        return cls(frame.nose_x, frame.nose_y, frame.face_width)


@dataclass(frozen=True)
class LivenessConfig:
    num_challenges: int = liveness.NUM_CHALLENGES
    required_consecutive_frames: int = liveness.REQUIRED_CONSECUTIVE_FRAMES
    turn_threshold_percent: float = liveness.TURN_THRESHOLD_PERCENT
    nod_threshold_percent: float = liveness.NOD_THRESHOLD_PERCENT
    return_threshold_ratio: float = liveness.RETURN_THRESHOLD_RATIO
    no_face_reset_threshold: int = liveness.NO_FACE_RESET_THRESHOLD
    transition_delay: float = liveness.CHALLENGE_TRANSITION_DELAY
    timeout: float = liveness.LIVENESS_TIMEOUT
    face_match_distance: float = liveness.FACE_MATCH_DISTANCE
    challenge_set: str = liveness.CHALLENGE_SET

    @property
    def challenge_pool(self):
        try:
            pool = CHALLENGE_SETS[self.challenge_set]
        except KeyError:
            raise ValueError(f"Unknown challenge set: {self.challenge_set!r}")
        if self.num_challenges > len(pool):
            raise ValueError(
                f"Cannot draw {self.num_challenges} distinct challenges from {len(pool)}")
        return pool


@dataclass(frozen=True)
class LivenessSession:
    mode: ScanMode
    state: StateTag = StateTag.INITIALIZING
    challenge_sequence: Tuple[ChallengeType, ...] = ()
    current_step: int = 0
    baseline: Optional[Baseline] = None
    consecutive_action_frames: int = 0
    no_face_frame_count: int = 0
    started_at: Optional[float] = None
    deadline: Optional[float] = None
    resume_at: Optional[float] = None
    descriptor: Any = field(default=None, compare=False, repr=False)
    failure_reason: Optional[str] = None
    event: Optional[str] = None

    @property
    def phase(self):
        if self.state == StateTag.AWAITING_RETURN:
            return 'waiting_for_return'
        return 'waiting_for_move'

    @property
    def current_challenge(self):
        if self.current_step < len(self.challenge_sequence):
            return self.challenge_sequence[self.current_step]
        return None

    @property
    def is_terminal(self):
        return self.state in TERMINAL_STATES


# ============================================================================
# SESSION CONSTRUCTION
# ============================================================================
def new_session(mode):
    return LivenessSession(mode=ScanMode(mode))


def begin(session, now, config=None):
    """INITIALIZING -> AWAITING_STABLE_FACE once camera and models are ready"""
    config = config or LivenessConfig()
    if session.state != StateTag.INITIALIZING:
        return session
    deadline = now + config.timeout if session.mode == ScanMode.VERIFY else None
    return replace(session, state=StateTag.AWAITING_STABLE_FACE,
                   started_at=now, deadline=deadline, event=None)


def draw_challenges(rng, count, pool):
    """Draw `count` challenges from `pool` without replacement"""
    available = list(pool)
    if count > len(available):
        raise ValueError(f"Cannot draw {count} distinct challenges from {len(available)}")
    sequence = []
    for _ in range(count):
        index = rng.randrange(len(available))
        sequence.append(available.pop(index))
    return tuple(sequence)


def fail(session, reason):
    if session.is_terminal:
        return session
    return replace(session, state=StateTag.FAILED, failure_reason=reason, event=None)


def expire(session, now):
    """Watchdog: fail with 'timeout' unless verification was already reached"""
    if session.deadline is None or now < session.deadline:
        return session
    if session.state in (StateTag.VERIFYING, StateTag.PASSED, StateTag.FAILED):
        return session
    return fail(session, "timeout")


# ============================================================================
# DISPLACEMENT TESTS
# ============================================================================
def _thresholds(baseline, config):
    horizontal = baseline.face_width * config.turn_threshold_percent
    vertical = baseline.face_width * config.nod_threshold_percent
    return horizontal, vertical


def is_past_threshold(challenge, frame, baseline, config):
    horizontal, vertical = _thresholds(baseline, config)
    if challenge == ChallengeType.TURN_RIGHT:
        return frame.nose_x < baseline.nose_x - horizontal
    if challenge == ChallengeType.TURN_LEFT:
        return frame.nose_x > baseline.nose_x + horizontal
    if challenge in (ChallengeType.NOD, ChallengeType.NOD_DOWN):
        return frame.nose_y > baseline.nose_y + vertical
    if challenge == ChallengeType.NOD_UP:
        return frame.nose_y < baseline.nose_y - vertical
    return False


def is_near_baseline(challenge, frame, baseline, config):
    horizontal, vertical = _thresholds(baseline, config)
    if challenge in HORIZONTAL:
        return abs(frame.nose_x - baseline.nose_x) < horizontal * config.return_threshold_ratio
    return abs(frame.nose_y - baseline.nose_y) < vertical * config.return_threshold_ratio


# ============================================================================
# TRANSITION FUNCTION
# ============================================================================
def step(session, frame, now, config=None, rng=None):
    """
    Advance the session by one detection tick.

    Args:
        session: Current LivenessSession
        frame: FaceFrame, or None when no face was detected
        now: Monotonic time in seconds
        config: LivenessConfig (defaults from config.liveness)
        rng: random.Random used to draw the challenge sequence

    Returns:
        The next LivenessSession. `event` is set to 'challenge_passed',
        'reset' or 'face_captured' on the tick where that happened.
    """
    config = config or LivenessConfig()
    session = replace(session, event=None) if session.event else session

    if session.is_terminal or session.state in (StateTag.INITIALIZING, StateTag.VERIFYING):
        return session

    expired = expire(session, now)
    if expired.is_terminal:
        return expired

    if frame is None:
        return _on_no_face(session, config)

    session = replace(session, no_face_frame_count=0)

    if session.mode == ScanMode.REGISTER:
        # Enrollment has no identity to spoof yet: first face wins
        return replace(session, state=StateTag.PASSED, descriptor=frame.descriptor,
                       event='face_captured')

    if session.state == StateTag.AWAITING_STABLE_FACE:
        sequence = session.challenge_sequence
        if not sequence:
            sequence = draw_challenges(rng or random.Random(), config.num_challenges,
                                       config.challenge_pool)
            logger.debug("Challenge sequence: %s", [c.value for c in sequence])
        return replace(session, state=StateTag.AWAITING_MOVE,
                       baseline=Baseline.from_frame(frame),
                       challenge_sequence=sequence,
                       consecutive_action_frames=0)

    if session.state == StateTag.TRANSITIONING:
        if session.resume_at is not None and now < session.resume_at:
            return session
        # Re-baseline where the head actually is now
        return replace(session, state=StateTag.AWAITING_MOVE,
                       baseline=Baseline.from_frame(frame),
                       consecutive_action_frames=0, resume_at=None)

    baseline = session.baseline
    challenge = session.current_challenge
    if baseline is None or challenge is None:
        return _reset(session)

    if session.state == StateTag.AWAITING_MOVE:
        if is_past_threshold(challenge, frame, baseline, config):
            count = session.consecutive_action_frames + 1
        else:
            count = 0
        if count >= config.required_consecutive_frames:
            return replace(session, state=StateTag.AWAITING_RETURN, consecutive_action_frames=0)
        return replace(session, consecutive_action_frames=count)

    if session.state == StateTag.AWAITING_RETURN:
        if is_near_baseline(challenge, frame, baseline, config):
            count = session.consecutive_action_frames + 1
        else:
            count = 0
        if count < config.required_consecutive_frames:
            return replace(session, consecutive_action_frames=count)

        next_step = session.current_step + 1
        logger.debug("Challenge %s passed (%d/%d)", challenge.value, next_step,
                     len(session.challenge_sequence))
        if next_step >= len(session.challenge_sequence):
            return replace(session, state=StateTag.VERIFYING, current_step=next_step,
                           consecutive_action_frames=0, descriptor=frame.descriptor,
                           event='challenge_passed')
        return replace(session, state=StateTag.TRANSITIONING, current_step=next_step,
                       consecutive_action_frames=0,
                       resume_at=now + config.transition_delay,
                       event='challenge_passed')

    return session


def _on_no_face(session, config):
    count = session.no_face_frame_count + 1
    session = replace(session, no_face_frame_count=count)
    if count >= config.no_face_reset_threshold and session.state in MID_CHALLENGE_STATES:
        logger.debug("Face lost for %d frames, restarting challenges", count)
        return _reset(session)
    return session


def _reset(session):
    """Back to AWAITING_STABLE_FACE; the drawn sequence is kept for the session"""
    return replace(session, state=StateTag.AWAITING_STABLE_FACE, baseline=None,
                   current_step=0, consecutive_action_frames=0,
                   no_face_frame_count=0, resume_at=None, event='reset')


def resolve_verification(session, comparator, enrolled, config=None):
    """
    VERIFYING -> PASSED | FAILED by comparing the captured descriptor
    with the enrolled one.

    comparator.compare(descriptor, [enrolled]) must return an object with
    `label` and `distance`.
    """
    config = config or LivenessConfig()
    if session.state != StateTag.VERIFYING:
        return session
    if enrolled is None:
        return fail(session, "no enrolled face")
    if session.descriptor is None:
        return fail(session, "face mismatch")

    match = comparator.compare(session.descriptor, [enrolled])
    logger.debug("Verification distance %.3f (%s)", match.distance, match.label)
    if match.label != 'unknown' and match.distance < config.face_match_distance:
        return replace(session, state=StateTag.PASSED)
    return fail(session, "face mismatch")


# ============================================================================
# UI OUTPUTS
# ============================================================================
def instruction_text(session):
    state = session.state
    if session.mode == ScanMode.REGISTER:
        if state == StateTag.PASSED:
            return "Face detected, processing..."
        if state == StateTag.INITIALIZING:
            return "Starting camera..."
        return "Position your face in the center."
    if state == StateTag.INITIALIZING:
        return "Starting camera..."
    if state == StateTag.AWAITING_STABLE_FACE:
        if session.no_face_frame_count:
            return "Position your face in the center."
        return "Hold still, look straight ahead."
    if state in MID_CHALLENGE_STATES:
        return INSTRUCTIONS.get(session.current_challenge, "Hold still, look straight ahead.")
    if state == StateTag.TRANSITIONING:
        return "Good! Back to center..."
    if state in (StateTag.VERIFYING, StateTag.PASSED):
        return "Processing verification..."
    return "Verification failed."


def challenge_progress(session):
    """Completed challenges as a fraction of the sequence"""
    total = len(session.challenge_sequence)
    if total == 0:
        return 0.0
    return min(session.current_step, total) / total


def time_remaining_fraction(session, now):
    """Remaining share of the watchdog budget, 1.0 down to 0.0"""
    if session.deadline is None or session.started_at is None:
        return 1.0
    budget = session.deadline - session.started_at
    if budget <= 0:
        return 0.0
    return max(0.0, min(1.0, (session.deadline - now) / budget))
