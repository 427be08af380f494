"""
Database modules for Geo-Liveness Attendance
"""

from .feed import ChangeFeed, ChangeEvent
from .embedding_db import EmbeddingDB
from .attendance_log import AttendanceLogger, AttendanceRecord, DuplicateAttendance
from .rules_db import RulesDB
from .employees import EmployeeRoster

__all__ = [
    'ChangeFeed',
    'ChangeEvent',
    'EmbeddingDB',
    'AttendanceLogger',
    'AttendanceRecord',
    'DuplicateAttendance',
    'RulesDB',
    'EmployeeRoster',
]
