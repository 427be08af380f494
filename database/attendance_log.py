import csv
import os
import uuid
from dataclasses import dataclass, asdict
from datetime import datetime, timezone, date
from typing import Optional

from .feed import ChangeEvent

TABLE = 'attendance'
FIELDS = ['id', 'employee_id', 'timestamp_iso', 'latitude', 'longitude', 'zone_name']


class DuplicateAttendance(Exception):
    """A record for this employee already exists for the UTC day"""


@dataclass(frozen=True)
class AttendanceRecord:
    id: str
    employee_id: str
    timestamp_iso: str
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    zone_name: Optional[str] = None

    @property
    def utc_day(self):
        return utc_day_of(self.timestamp_iso)


def utc_day_of(timestamp_iso):
    ts = datetime.fromisoformat(timestamp_iso.replace('Z', '+00:00'))
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc).date()


def utc_now_iso():
    return datetime.now(timezone.utc).isoformat()


def _optional_float(value):
    if value in (None, ''):
        return None
    return float(value)


class AttendanceLogger:
    """
    CSV-backed, append-only attendance store.
    At most one record per employee per UTC calendar day.
    """

    def __init__(self, log_file='data/attendance.csv', feed=None):
        self.log_file = log_file
        self.feed = feed
        directory = os.path.dirname(log_file)
        if directory:
            os.makedirs(directory, exist_ok=True)

        if not os.path.exists(log_file):
            with open(log_file, 'w', newline='', encoding='utf-8') as f:
                writer = csv.writer(f)
                writer.writerow(FIELDS)

    def _read_all(self):
        if not os.path.exists(self.log_file):
            return []
        with open(self.log_file, 'r', newline='', encoding='utf-8') as f:
            reader = csv.DictReader(f)
            return [
                AttendanceRecord(
                    id=row['id'],
                    employee_id=row['employee_id'],
                    timestamp_iso=row['timestamp_iso'],
                    latitude=_optional_float(row.get('latitude')),
                    longitude=_optional_float(row.get('longitude')),
                    zone_name=row.get('zone_name') or None,
                )
                for row in reader
            ]

    def _write_all(self, records):
        with open(self.log_file, 'w', newline='', encoding='utf-8') as f:
            writer = csv.DictWriter(f, fieldnames=FIELDS)
            writer.writeheader()
            for record in records:
                writer.writerow(asdict(record))

    def log(self, employee_id, latitude=None, longitude=None, zone_name=None, timestamp_iso=None):
        """Append a record; raises DuplicateAttendance on a same-day repeat"""
        timestamp_iso = timestamp_iso or utc_now_iso()
        day = utc_day_of(timestamp_iso)
        if self.has_record_on(employee_id, day):
            raise DuplicateAttendance(f"{employee_id} already recorded on {day.isoformat()}")

        record = AttendanceRecord(
            id=uuid.uuid4().hex,
            employee_id=employee_id,
            timestamp_iso=timestamp_iso,
            latitude=latitude,
            longitude=longitude,
            zone_name=zone_name,
        )
        with open(self.log_file, 'a', newline='', encoding='utf-8') as f:
            writer = csv.DictWriter(f, fieldnames=FIELDS)
            writer.writerow(asdict(record))

        if self.feed is not None:
            self.feed.publish(ChangeEvent(TABLE, 'insert', employee_id, new=record))
        return record

    def delete(self, record_id):
        records = self._read_all()
        kept = [r for r in records if r.id != record_id]
        if len(kept) == len(records):
            return False
        removed = next(r for r in records if r.id == record_id)
        self._write_all(kept)
        if self.feed is not None:
            self.feed.publish(ChangeEvent(TABLE, 'delete', removed.employee_id, old=removed))
        return True

    def for_employee(self, employee_id):
        records = [r for r in self._read_all() if r.employee_id == employee_id]
        records.sort(key=lambda r: r.timestamp_iso, reverse=True)
        return records

    def recent(self, employee_id, n=5):
        return self.for_employee(employee_id)[:n]

    def history(self, employee_id, start: Optional[date] = None, end: Optional[date] = None):
        """Records between start and end UTC days inclusive, newest first"""
        result = []
        for record in self.for_employee(employee_id):
            day = record.utc_day
            if start is not None and day < start:
                continue
            if end is not None and day > end:
                continue
            result.append(record)
        return result

    def has_record_on(self, employee_id, day):
        return any(r.utc_day == day for r in self.for_employee(employee_id))

    def has_clocked_in_today(self, employee_id, today=None):
        today = today or datetime.now(timezone.utc).date()
        return self.has_record_on(employee_id, today)
