"""
Location Trust Engine
Combines the sample filter and geofence matcher into a session status
"""
import logging
import time
from enum import Enum

from config import location
from .geo_filter import GeoSample, GeoSampleFilter, SampleHistory
from .geofence import match_zones

logger = logging.getLogger(__name__)


class LocationStatus(str, Enum):
    CHECKING = "checking"
    ALLOWED = "allowed"
    DENIED = "denied"
    OUT_OF_RANGE = "out_of_range"


class LocationTrustState:
    """Per-session mutable trust state"""

    def __init__(self, capacity=location.STABILITY_THRESHOLD):
        self.consecutive_valid_readings = 0
        self.history = SampleHistory(capacity)
        self.status = LocationStatus.CHECKING
        self.position = None  # Last trusted GeoSample
        self.zones = []
        self.reason = None

    @property
    def stagnant_coord_count(self):
        return self.history.stagnant_coord_count

    @property
    def stagnant_accuracy_count(self):
        return self.history.stagnant_accuracy_count

    def reset(self):
        self.consecutive_valid_readings = 0
        self.history.clear()
        self.status = LocationStatus.CHECKING
        self.position = None
        self.zones = []
        self.reason = None


class LocationTrustEngine:
    """
    Stateful wrapper around GeoSampleFilter and the geofence matcher.

    The engine never reports 'allowed' before MIN_VALID_READINGS_REQUIRED
    trusted fixes in a row, even when the first fix lands inside a zone.
    """

    def __init__(self,
                 rules=None,
                 sample_filter=None,
                 min_valid_readings=location.MIN_VALID_READINGS_REQUIRED,
                 clock_ms=None,
                 on_change=None):
        self.rules = list(rules or [])
        self.sample_filter = sample_filter or GeoSampleFilter()
        self.min_valid_readings = min_valid_readings
        self.clock_ms = clock_ms or (lambda: int(time.time() * 1000))
        self.on_change = on_change

        self.state = LocationTrustState(self.sample_filter.stability_threshold)
        self.watching = False
        self.frozen = False

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    def start_watch(self):
        """Begin a new watch session from 'checking'"""
        self.state.reset()
        self.watching = True
        self.frozen = False
        logger.debug("Location watch started")
        self._notify()

    def stop_watch(self):
        self.watching = False
        self.state.reset()
        logger.debug("Location watch stopped")
        self._notify()

    def freeze_allowed(self):
        """Attendance already exists for today: stop evaluating, pin status"""
        self.watching = False
        self.frozen = True
        self.state.status = LocationStatus.ALLOWED
        self.state.reason = None
        self._notify()

    def set_rules(self, rules):
        self.rules = list(rules or [])

    # ------------------------------------------------------------------
    # Sensor input
    # ------------------------------------------------------------------
    def on_sample(self, sample: GeoSample):
        """Handle one pushed fix; returns the resulting status"""
        if not self.watching or self.frozen:
            return self.state.status

        state = self.state
        state.history.push(sample)
        verdict = self.sample_filter.evaluate(state.history, self.clock_ms())

        if not verdict.trusted:
            logger.info("Untrusted location fix: %s", verdict.reason)
            state.consecutive_valid_readings = 0
            state.status = LocationStatus.DENIED
            state.reason = verdict.reason
            state.position = None
            state.zones = []
            self._notify()
            return state.status

        state.consecutive_valid_readings += 1
        state.position = sample
        state.reason = None

        if state.consecutive_valid_readings < self.min_valid_readings:
            state.status = LocationStatus.CHECKING
            state.zones = []
        else:
            zones = match_zones(sample.latitude, sample.longitude, self.rules)
            state.zones = zones
            state.status = LocationStatus.ALLOWED if zones else LocationStatus.OUT_OF_RANGE

        self._notify()
        return state.status

    def on_sensor_error(self, reason="location unavailable"):
        """Permission denial or timeout from the platform sensor"""
        if self.frozen:
            return self.state.status
        logger.warning("Location sensor error: %s", reason)
        self.state.reset()
        self.state.status = LocationStatus.DENIED
        self.state.reason = reason
        self._notify()
        return self.state.status

    # ------------------------------------------------------------------
    # Outputs
    # ------------------------------------------------------------------
    @property
    def status(self):
        return self.state.status

    @property
    def zones(self):
        return list(self.state.zones)

    @property
    def position(self):
        return self.state.position

    def _notify(self):
        if self.on_change is not None:
            self.on_change(self.state.status)
