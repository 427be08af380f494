"""
Attendance Gate Orchestrator

One GateSession per logged-in employee. It owns the location trust
engine and at most one liveness scanner, and commits exactly one
attendance record when a verify scan passes.
"""
import logging
from datetime import datetime, timezone

from database.attendance_log import TABLE as ATTENDANCE_TABLE, DuplicateAttendance
from database.embedding_db import TABLE as FACES_TABLE
from .geofence import normalize_rules
from .liveness import ScanMode
from .location_trust import LocationStatus, LocationTrustEngine
from .recognizer import FaceMatcher
from .scanner import LatestFrameBuffer, LivenessScanner

logger = logging.getLogger(__name__)


class GateError(Exception):
    """Base error for gate refusals"""


class ClockInRejected(GateError):
    def __init__(self, reason):
        super().__init__(reason)
        self.reason = reason


class ZoneSelectionRequired(ClockInRejected):
    """More than one zone matches; the caller must pick one"""

    def __init__(self, zones):
        super().__init__("zone selection required")
        self.zones = zones


def utc_today():
    return datetime.now(timezone.utc).date()


class GateSession:
    """
    Args:
        employee_id: Logged-in employee
        faces: EmbeddingDB-like store (get, upsert)
        attendance: AttendanceLogger-like store (log, has_clocked_in_today)
        rules_db: RulesDB-like source of raw rule rows
        detector: detection collaborator handed to every scanner
        feed: ChangeFeed for attendance and face events (optional)
        comparator: descriptor comparator, FaceMatcher by default
        location_engine: LocationTrustEngine (built when omitted)
        scanner_options: extra keyword arguments for LivenessScanner
        today: callable returning the current UTC date
        on_update: called with the session after every observable change
    """

    def __init__(self, employee_id, faces, attendance, rules_db, detector,
                 feed=None,
                 comparator=None,
                 location_engine=None,
                 scanner_options=None,
                 today=utc_today,
                 on_update=None):
        self.employee_id = employee_id
        self.faces = faces
        self.attendance = attendance
        self.rules_db = rules_db
        self.detector = detector
        self.feed = feed
        self.comparator = comparator or FaceMatcher()
        self.location = location_engine or LocationTrustEngine()
        self.location.on_change = lambda status: self._notify()
        self.scanner_options = dict(scanner_options or {})
        self.today = today
        self.on_update = on_update

        self.enrolled = None
        self.has_clocked_in_today = False
        self.scanner = None
        self.selected_zone = None
        self.selected_position = None
        self.last_event = None
        self.is_open = False
        self._unsubscribe = []

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    def open(self):
        """Load reference data, subscribe to change feeds and arm the location watch"""
        self.location.set_rules(normalize_rules(self.rules_db.load_rows()))
        self.enrolled = self.faces.get(self.employee_id)
        self.has_clocked_in_today = self.attendance.has_clocked_in_today(
            self.employee_id, self.today())

        if self.feed is not None:
            self._unsubscribe = [
                self.feed.subscribe(ATTENDANCE_TABLE, self.employee_id, self._on_attendance_event),
                self.feed.subscribe(FACES_TABLE, self.employee_id, self._on_face_event),
            ]

        self.is_open = True
        if self.has_clocked_in_today:
            self.location.freeze_allowed()
        else:
            self.location.start_watch()
        logger.info("Gate session opened for %s", self.employee_id)
        return self

    def close(self):
        """Logout: stop scanning, tear down the watch, drop subscriptions"""
        self._close_scanner()
        self.location.stop_watch()
        for unsubscribe in self._unsubscribe:
            unsubscribe()
        self._unsubscribe = []
        self.is_open = False
        logger.info("Gate session closed for %s", self.employee_id)

    # ------------------------------------------------------------------
    # Sensor input
    # ------------------------------------------------------------------
    def on_position(self, sample):
        return self.location.on_sample(sample)

    def on_position_error(self, reason="location unavailable"):
        return self.location.on_sensor_error(reason)

    def push_frame(self, frame):
        if self.scanner is not None and not self.scanner.closed:
            self.scanner.frame_source.put(frame)

    # ------------------------------------------------------------------
    # Clock-in
    # ------------------------------------------------------------------
    @property
    def face_enrolled(self):
        return self.enrolled is not None

    @property
    def scan_pending(self):
        return (self.scanner is not None and not self.scanner.closed
                and not self.scanner.session.is_terminal)

    @property
    def can_clock_in(self):
        return (self.is_open and self.face_enrolled
                and self.location.status == LocationStatus.ALLOWED
                and not self.has_clocked_in_today
                and not self.scan_pending)

    def _check_clock_in(self, zone_id):
        if not self.is_open:
            raise ClockInRejected("session closed")
        if self.scan_pending:
            raise ClockInRejected("verification already in progress")
        if not self.face_enrolled:
            raise ClockInRejected("face not enrolled")
        if self.has_clocked_in_today:
            raise ClockInRejected("already clocked in today")
        if self.location.status != LocationStatus.ALLOWED:
            raise ClockInRejected("location not allowed")

        zones = self.location.zones
        if zone_id is None:
            if len(zones) > 1:
                raise ZoneSelectionRequired(zones)
            return zones[0]

        for zone in zones:
            if zone.id == str(zone_id):
                return zone
        raise ClockInRejected("zone not available")

    async def request_clock_in(self, zone_id=None):
        """
        Arm one verify scan. Raises ClockInRejected when not eligible,
        ZoneSelectionRequired when several zones match and none was chosen.
        """
        zone = self._check_clock_in(zone_id)
        self.selected_zone = zone
        self.selected_position = self.location.position
        self.last_event = None
        self.scanner = self._build_scanner(
            ScanMode.VERIFY,
            on_success=self._on_verify_success,
            on_failure=self._on_scan_failure,
        )
        logger.info("Clock-in armed for %s in zone %s", self.employee_id, zone.zone_name)
        await self.scanner.start()
        self._notify()
        return self.scanner

    async def start_registration(self):
        """Arm one register scan; the first detected face is enrolled"""
        if not self.is_open:
            raise ClockInRejected("session closed")
        if self.scan_pending:
            raise ClockInRejected("verification already in progress")
        self.last_event = None
        self.scanner = self._build_scanner(
            ScanMode.REGISTER,
            on_success=self._on_register_success,
            on_failure=self._on_scan_failure,
        )
        await self.scanner.start()
        self._notify()
        return self.scanner

    def cancel_scan(self):
        """User closed the scanner UI"""
        self._close_scanner()
        self._notify()

    def _build_scanner(self, mode, on_success, on_failure):
        return LivenessScanner(
            mode.value,
            self.detector,
            LatestFrameBuffer(),
            comparator=self.comparator,
            enrolled=self.enrolled,
            on_success=on_success,
            on_failure=on_failure,
            on_update=lambda scanner: self._notify(),
            **self.scanner_options
        )

    def _close_scanner(self):
        if self.scanner is not None:
            self.scanner.close()

    # ------------------------------------------------------------------
    # Scanner outcomes
    # ------------------------------------------------------------------
    def _on_verify_success(self, descriptor):
        zone = self.selected_zone
        # Position trusted when the scan was armed; later fixes may have cleared it
        position = self.selected_position
        try:
            self.attendance.log(
                self.employee_id,
                latitude=position.latitude if position else None,
                longitude=position.longitude if position else None,
                zone_name=zone.zone_name if zone else None,
            )
        except DuplicateAttendance:
            logger.warning("Attendance for %s already recorded today", self.employee_id)
        except Exception:
            logger.exception("Saving attendance for %s failed", self.employee_id)
            self._on_scan_failure("could not save attendance")
            return
        self._mark_clocked_in()
        self.last_event = {"type": "success"}
        self._notify()

    def _on_register_success(self, descriptor):
        try:
            self.faces.upsert(self.employee_id, descriptor)
        except Exception:
            logger.exception("Saving face for %s failed", self.employee_id)
            self._on_scan_failure("could not save face")
            return
        self.enrolled = self.faces.get(self.employee_id)
        self.last_event = {"type": "success"}
        self._notify()

    def _on_scan_failure(self, reason):
        self.last_event = {"type": "failure", "reason": reason}
        self._notify()

    def _mark_clocked_in(self):
        self.has_clocked_in_today = True
        self.location.freeze_allowed()

    # ------------------------------------------------------------------
    # Change feeds
    # ------------------------------------------------------------------
    def _on_attendance_event(self, event):
        today = self.today()
        if event.event_type == 'insert' and event.new is not None:
            if event.new.utc_day == today and not self.has_clocked_in_today:
                self._mark_clocked_in()
                self._notify()
        elif event.event_type == 'delete' and event.old is not None:
            if event.old.utc_day == today and self.has_clocked_in_today:
                self.has_clocked_in_today = self.attendance.has_clocked_in_today(
                    self.employee_id, today)
                if not self.has_clocked_in_today and self.is_open:
                    self.location.start_watch()
                self._notify()

    def _on_face_event(self, event):
        if event.event_type in ('insert', 'upsert'):
            self.enrolled = event.new
        elif event.event_type == 'delete':
            self.enrolled = None
        self._notify()

    # ------------------------------------------------------------------
    # Outputs
    # ------------------------------------------------------------------
    def status(self):
        scanner = self.scanner
        active = scanner is not None and not scanner.closed
        return {
            "employee_id": self.employee_id,
            "location_status": self.location.status.value,
            "location_reason": self.location.state.reason,
            "available_zones": [
                {"id": z.id, "zone_name": z.zone_name} for z in self.location.zones
            ],
            "has_clocked_in_today": self.has_clocked_in_today,
            "face_enrolled": self.face_enrolled,
            "can_clock_in": self.can_clock_in,
            "scan_mode": scanner.mode.value if active else None,
            "liveness_instruction_text": scanner.instruction_text if active else None,
            "liveness_progress_fraction": scanner.progress_fraction if active else None,
            "liveness_challenge_progress": scanner.challenge_progress if active else None,
            "scanner_error": scanner.error if scanner is not None else None,
            "last_event": self.last_event,
        }

    def _notify(self):
        if self.on_update is not None:
            self.on_update(self)
