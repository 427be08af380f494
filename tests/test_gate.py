import asyncio
import random

import pytest

from core.gate import ClockInRejected, GateSession, ZoneSelectionRequired
from core.liveness import StateTag
from core.location_trust import LocationStatus, LocationTrustEngine
from database import DuplicateAttendance, RulesDB
from tests.conftest import (
    ENROLLED, NOW_MS, OFFICE, STRANGER, WAREHOUSE,
    PassThroughDetector, clean_fixes, complete_challenges, face, fix, moved,
)


@pytest.fixture
def make_gate(faces, attendance, rules_db, feed, clock):
    def build(employee_id="E001", rules=None, store=None):
        return GateSession(
            employee_id,
            faces=faces,
            attendance=store or attendance,
            rules_db=rules or rules_db,
            detector=PassThroughDetector(),
            feed=feed,
            location_engine=LocationTrustEngine(clock_ms=lambda: NOW_MS),
            scanner_options={"clock": clock, "rng": random.Random(11)},
        )
    return build


def arrive(gate, lat=-6.2):
    for sample in clean_fixes(3, lat=lat):
        gate.on_position(sample)


def test_clock_in_records_one_attendance(make_gate, faces, attendance, clock):
    faces.upsert("E001", ENROLLED)

    async def scenario():
        gate = make_gate().open()
        arrive(gate)
        assert gate.can_clock_in

        scanner = await gate.request_clock_in()
        assert gate.status()["scan_mode"] == "verify"
        complete_challenges(scanner, clock)

        records = attendance.for_employee("E001")
        assert len(records) == 1
        assert records[0].zone_name == "Head Office"
        assert records[0].latitude == pytest.approx(-6.2 + 2e-7)
        assert gate.has_clocked_in_today
        assert gate.last_event == {"type": "success"}
        assert not gate.can_clock_in

        # location is pinned once attendance exists
        gate.on_position(fix(mock=True))
        assert gate.location.status == LocationStatus.ALLOWED
        gate.close()

    asyncio.run(scenario())


def test_mock_location_blocks_clock_in(make_gate, faces, attendance):
    faces.upsert("E001", ENROLLED)

    async def scenario():
        gate = make_gate().open()
        arrive(gate)
        gate.on_position(fix(mock=True))
        assert gate.status()["location_status"] == "denied"
        assert gate.status()["location_reason"] == "mock location"

        with pytest.raises(ClockInRejected) as exc:
            await gate.request_clock_in()
        assert exc.value.reason == "location not allowed"
        assert gate.scanner is None
        assert attendance.for_employee("E001") == []

    asyncio.run(scenario())


def test_failed_verification_writes_nothing(make_gate, faces, attendance, clock):
    faces.upsert("E001", ENROLLED)

    async def scenario():
        gate = make_gate().open()
        arrive(gate)
        scanner = await gate.request_clock_in()
        complete_challenges(scanner, clock, base=face(descriptor=STRANGER))

        assert scanner.session.state == StateTag.FAILED
        assert gate.last_event == {"type": "failure", "reason": "face mismatch"}
        assert attendance.for_employee("E001") == []
        assert not gate.has_clocked_in_today
        assert gate.can_clock_in
        gate.close()

    asyncio.run(scenario())


def test_second_request_while_scanning_is_rejected(make_gate, faces):
    faces.upsert("E001", ENROLLED)

    async def scenario():
        gate = make_gate().open()
        arrive(gate)
        scanner = await gate.request_clock_in()
        assert gate.scan_pending
        assert not gate.can_clock_in

        with pytest.raises(ClockInRejected) as exc:
            await gate.request_clock_in()
        assert exc.value.reason == "verification already in progress"
        assert gate.scanner is scanner
        gate.close()

    asyncio.run(scenario())


def test_overlapping_zones_need_a_choice(make_gate, faces, attendance, clock):
    faces.upsert("E001", ENROLLED)
    rules = RulesDB(rows=[OFFICE, WAREHOUSE])

    async def scenario():
        gate = make_gate(rules=rules).open()
        arrive(gate, lat=-6.20005)

        with pytest.raises(ZoneSelectionRequired) as exc:
            await gate.request_clock_in()
        assert [z.zone_name for z in exc.value.zones] == ["Head Office", "Warehouse"]

        with pytest.raises(ClockInRejected) as exc:
            await gate.request_clock_in(zone_id="9")
        assert exc.value.reason == "zone not available"

        scanner = await gate.request_clock_in(zone_id="2")
        complete_challenges(scanner, clock)
        assert attendance.for_employee("E001")[0].zone_name == "Warehouse"
        gate.close()

    asyncio.run(scenario())


def test_existing_record_pins_status(make_gate, faces, attendance):
    faces.upsert("E001", ENROLLED)
    attendance.log("E001", zone_name="Head Office")

    async def scenario():
        gate = make_gate().open()
        assert gate.has_clocked_in_today
        assert gate.location.status == LocationStatus.ALLOWED
        with pytest.raises(ClockInRejected) as exc:
            await gate.request_clock_in()
        assert exc.value.reason == "already clocked in today"

    asyncio.run(scenario())


def test_clock_in_requires_enrolled_face(make_gate):
    async def scenario():
        gate = make_gate().open()
        arrive(gate)
        with pytest.raises(ClockInRejected) as exc:
            await gate.request_clock_in()
        assert exc.value.reason == "face not enrolled"

    asyncio.run(scenario())


def test_registration_enrolls_first_face(make_gate, faces):
    async def scenario():
        gate = make_gate().open()
        assert not gate.face_enrolled
        scanner = await gate.start_registration()
        scanner.apply(face())

        assert gate.face_enrolled
        assert faces.get("E001") is not None
        assert gate.last_event == {"type": "success"}
        gate.close()

    asyncio.run(scenario())


class RacingStore:
    """Another device wrote today's record between the check and the write"""

    def has_clocked_in_today(self, employee_id, today=None):
        return False

    def log(self, employee_id, **fields):
        raise DuplicateAttendance(employee_id)


def test_duplicate_write_counts_as_success(make_gate, faces, clock):
    faces.upsert("E001", ENROLLED)

    async def scenario():
        gate = make_gate(store=RacingStore()).open()
        arrive(gate)
        scanner = await gate.request_clock_in()
        complete_challenges(scanner, clock)
        assert gate.has_clocked_in_today
        assert gate.last_event == {"type": "success"}

    asyncio.run(scenario())


def test_feed_keeps_status_in_sync(make_gate, faces, attendance):
    faces.upsert("E001", ENROLLED)
    gate = make_gate().open()
    arrive(gate)

    record = attendance.log("E001", zone_name="Head Office")
    assert gate.has_clocked_in_today
    assert gate.location.frozen

    attendance.delete(record.id)
    assert not gate.has_clocked_in_today
    assert gate.location.status == LocationStatus.CHECKING
    assert gate.location.watching

    faces.delete("E001")
    assert not gate.face_enrolled
    faces.upsert("E001", ENROLLED)
    assert gate.face_enrolled


def test_other_employees_do_not_affect_session(make_gate, attendance):
    gate = make_gate().open()
    attendance.log("E002")
    assert not gate.has_clocked_in_today


def test_close_drops_subscriptions_and_scanner(make_gate, faces, feed):
    faces.upsert("E001", ENROLLED)

    async def scenario():
        gate = make_gate().open()
        assert feed.subscriber_count(employee_id="E001") == 2
        arrive(gate)
        scanner = await gate.request_clock_in()
        gate.close()
        assert scanner.closed
        assert feed.subscriber_count() == 0
        assert not gate.location.watching
        with pytest.raises(ClockInRejected):
            await gate.request_clock_in()

    asyncio.run(scenario())


def test_cancel_scan_allows_retry(make_gate, faces):
    faces.upsert("E001", ENROLLED)

    async def scenario():
        gate = make_gate().open()
        arrive(gate)
        await gate.request_clock_in()
        gate.cancel_scan()
        assert gate.status()["scan_mode"] is None
        assert gate.can_clock_in
        gate.close()

    asyncio.run(scenario())


def test_record_keeps_position_trusted_at_arming(make_gate, faces, attendance, clock):
    faces.upsert("E001", ENROLLED)

    async def scenario():
        gate = make_gate().open()
        arrive(gate)
        scanner = await gate.request_clock_in()
        gate.on_position(fix(at=NOW_MS - 60000))
        assert gate.location.position is None

        complete_challenges(scanner, clock)
        record = attendance.for_employee("E001")[0]
        assert record.latitude == pytest.approx(-6.2 + 2e-7)
        assert record.longitude == pytest.approx(106.8 - 2e-7)
        gate.close()

    asyncio.run(scenario())


class FailingStore:
    def has_clocked_in_today(self, employee_id, today=None):
        return False

    def log(self, employee_id, **fields):
        raise OSError("disk full")


def test_attendance_write_error_reports_failure(make_gate, faces, clock):
    faces.upsert("E001", ENROLLED)

    async def scenario():
        gate = make_gate(store=FailingStore()).open()
        arrive(gate)
        scanner = await gate.request_clock_in()
        complete_challenges(scanner, clock)

        assert scanner.session.state == StateTag.PASSED
        assert gate.last_event == {"type": "failure", "reason": "could not save attendance"}
        assert not gate.has_clocked_in_today
        assert gate.can_clock_in
        gate.close()

    asyncio.run(scenario())


def test_face_write_error_reports_failure(make_gate, faces, monkeypatch):
    def broken_upsert(employee_id, descriptor):
        raise OSError("read-only filesystem")

    monkeypatch.setattr(faces, "upsert", broken_upsert)

    async def scenario():
        gate = make_gate().open()
        scanner = await gate.start_registration()
        scanner.apply(face())

        assert gate.last_event == {"type": "failure", "reason": "could not save face"}
        assert not gate.face_enrolled
        gate.close()

    asyncio.run(scenario())


def test_status_reports_challenge_progress(make_gate, faces, clock):
    faces.upsert("E001", ENROLLED)

    async def scenario():
        gate = make_gate().open()
        assert gate.status()["liveness_challenge_progress"] is None
        arrive(gate)
        scanner = await gate.request_clock_in()
        scanner.apply(face())
        assert gate.status()["liveness_challenge_progress"] == 0.0

        challenge = scanner.session.current_challenge
        for frame in [moved(challenge, face())] * 3 + [face()] * 3:
            scanner.apply(frame)
        assert gate.status()["liveness_challenge_progress"] == 0.5
        gate.close()

    asyncio.run(scenario())
