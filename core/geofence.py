"""
Geofence matching with haversine distance
"""
import logging
import math
from dataclasses import dataclass
from math import radians, sin, cos, sqrt, atan2

from config import location

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GeofenceRule:
    """Named circular work zone"""
    id: str
    zone_name: str
    latitude: float
    longitude: float
    radius_meters: float


def coerce_number(value):
    """
    Convert a rule field to float, accepting comma-decimal strings ("-6,2088").
    Returns NaN when the value cannot be read as a number.
    """
    if isinstance(value, bool) or value is None:
        return math.nan
    if isinstance(value, (int, float)):
        return float(value)
    text = str(value).strip().replace(' ', '')
    if not text:
        return math.nan
    if ',' in text and '.' not in text:
        text = text.replace(',', '.')
    try:
        return float(text)
    except ValueError:
        return math.nan


def parse_rule(row):
    """
    Build a GeofenceRule from a raw row.
    Returns None for rows with a non-finite coordinate or radius.
    """
    lat = coerce_number(row.get('latitude'))
    lng = coerce_number(row.get('longitude'))
    radius = coerce_number(row.get('radius_meters', row.get('radius_meter')))

    if not all(math.isfinite(v) for v in (lat, lng, radius)):
        logger.warning("Skipping malformed geofence rule %r", row.get('id'))
        return None

    return GeofenceRule(
        id=str(row.get('id')),
        zone_name=str(row.get('zone_name', row.get('nama_divisi', ''))),
        latitude=lat,
        longitude=lng,
        radius_meters=radius,
    )


def normalize_rules(rows):
    """Parse raw rule rows, dropping the malformed ones"""
    rules = []
    for row in rows or []:
        if isinstance(row, GeofenceRule):
            rules.append(row)
            continue
        rule = parse_rule(row)
        if rule is not None:
            rules.append(rule)
    return rules


def haversine_dist(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    R = location.EARTH_RADIUS_M
    φ1, φ2 = radians(lat1), radians(lat2)
    Δφ = radians(lat2 - lat1)
    Δλ = radians(lng2 - lng1)

    a = sin(Δφ/2)**2 + cos(φ1) * cos(φ2) * sin(Δλ/2)**2
    c = 2 * atan2(sqrt(a), sqrt(1 - a))
    return R * c


def is_within_radius(
    lat: float,
    lng: float,
    center_lat: float,
    center_lng: float,
    radius_m: float
) -> bool:

    return haversine_dist(lat, lng, center_lat, center_lng) <= radius_m


def match_zones(latitude, longitude, rules):
    """
    Return the rules whose circle contains the position (boundary inclusive),
    in the order the rules were given.
    """
    matches = []
    for rule in rules:
        values = (rule.latitude, rule.longitude, rule.radius_meters)
        if not all(isinstance(v, (int, float)) and math.isfinite(v) for v in values):
            continue
        if is_within_radius(latitude, longitude, rule.latitude, rule.longitude, rule.radius_meters):
            matches.append(rule)
    return matches
