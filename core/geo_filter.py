"""
Geo sample filter: static and behavioral checks against spoofed fixes
"""
import logging
from collections import deque
from dataclasses import dataclass
from typing import Optional

from config import location

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GeoSample:
    """One position fix from the platform sensor"""
    latitude: float
    longitude: float
    accuracy_meters: float
    captured_at_ms: int
    is_mock_flagged: bool = False


@dataclass(frozen=True)
class FilterVerdict:
    trusted: bool
    reason: Optional[str] = None


class SampleHistory:
    """Bounded history of fixes, newest first, with stagnation counters"""

    def __init__(self, capacity=location.STABILITY_THRESHOLD):
        self.capacity = max(2, int(capacity))
        self.samples = deque(maxlen=self.capacity)
        self.stagnant_coord_count = 0
        self.stagnant_accuracy_count = 0

    def push(self, sample):
        self.samples.appendleft(sample)

    @property
    def latest(self):
        return self.samples[0] if self.samples else None

    @property
    def previous(self):
        return self.samples[1] if len(self.samples) > 1 else None

    def clear(self):
        self.samples.clear()
        self.stagnant_coord_count = 0
        self.stagnant_accuracy_count = 0

    def __len__(self):
        return len(self.samples)


class GeoSampleFilter:
    """
    Classifies a fix as trusted or suspicious.

    Checks run in order and stop at the first failure:
        1. mock-provider flag (when the policy rejects mocks)
        2. accuracy below MIN_ACCURACY_METERS
        3. fix older than MAX_FIX_AGE_MS
        4. STABILITY_THRESHOLD bit-identical coordinates or accuracies in a row
    """

    def __init__(self,
                 reject_mock=location.REJECT_MOCK_LOCATIONS,
                 min_accuracy=location.MIN_ACCURACY_METERS,
                 max_age_ms=location.MAX_FIX_AGE_MS,
                 stability_threshold=location.STABILITY_THRESHOLD):
        self.reject_mock = reject_mock
        self.min_accuracy = min_accuracy
        self.max_age_ms = max_age_ms
        self.stability_threshold = stability_threshold

    def evaluate(self, history, now_ms):
        """
        Evaluate history.latest against history.previous.

        Args:
            history: SampleHistory whose newest entry is the sample under test
            now_ms: Current epoch time in milliseconds

        Returns:
            FilterVerdict
        """
        sample = history.latest
        if sample is None:
            return FilterVerdict(False, "no sample")

        if self.reject_mock and sample.is_mock_flagged:
            return FilterVerdict(False, "mock location")

        if sample.accuracy_meters < self.min_accuracy:
            return FilterVerdict(False, "implausible accuracy")

        if now_ms - sample.captured_at_ms > self.max_age_ms:
            return FilterVerdict(False, "stale fix")

        previous = history.previous
        if previous is not None:
            if (sample.latitude == previous.latitude and
                    sample.longitude == previous.longitude):
                history.stagnant_coord_count += 1
            else:
                history.stagnant_coord_count = 0

            if sample.accuracy_meters == previous.accuracy_meters:
                history.stagnant_accuracy_count += 1
            else:
                history.stagnant_accuracy_count = 0

        if (history.stagnant_coord_count >= self.stability_threshold or
                history.stagnant_accuracy_count >= self.stability_threshold):
            return FilterVerdict(False, "stagnant signal")

        return FilterVerdict(True)
