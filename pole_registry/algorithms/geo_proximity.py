#!/usr/bin/env python3
"""
Pole Registry — Geospatial Proximity

Great-circle distance between pole locations using the Haversine formula
over a spherical Earth.  At the radii this engine works with (5 m for
duplicate detection, 50 m for verification) the spherical error is far
below GPS accuracy, so no ellipsoidal correction is applied.

No external geo-libraries required — pure math with stdlib.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import TYPE_CHECKING, Iterable

if TYPE_CHECKING:
    from ..models import PoleRecord


# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

EARTH_RADIUS_M = 6_371_000.0
EARTH_RADIUS_KM = EARTH_RADIUS_M / 1000.0

DEFAULT_DEDUP_RADIUS_M = 5.0          # same physical pole?
DEFAULT_VERIFICATION_RADIUS_M = 50.0  # close enough to verify an existing pole


@dataclass(frozen=True)
class GeoPoint:
    """A WGS84 coordinate pair in decimal degrees."""
    latitude: float
    longitude: float

    def is_valid(self) -> bool:
        return -90.0 <= self.latitude <= 90.0 and -180.0 <= self.longitude <= 180.0


@dataclass(frozen=True)
class Candidate:
    """A pole record found near a location, with its distance in metres."""
    record: PoleRecord
    distance_m: float

    def to_dict(self) -> dict:
        return {
            "pole_id": self.record.id,
            "distance_m": round(self.distance_m, 2),
            "identifiers": sorted(i.canonical for i in self.record.identifiers),
        }


# ---------------------------------------------------------------------------
# Core distance calculation
# ---------------------------------------------------------------------------


def haversine_m(point_a: GeoPoint, point_b: GeoPoint) -> float:
    """
    Compute the great-circle distance in metres between two WGS84 points
    using the Haversine formula.
    """
    lat1 = math.radians(point_a.latitude)
    lat2 = math.radians(point_b.latitude)
    dlat = math.radians(point_b.latitude - point_a.latitude)
    dlon = math.radians(point_b.longitude - point_a.longitude)

    a = (
        math.sin(dlat / 2) ** 2
        + math.cos(lat1) * math.cos(lat2) * math.sin(dlon / 2) ** 2
    )
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))

    return EARTH_RADIUS_M * c


def haversine_km(point_a: GeoPoint, point_b: GeoPoint) -> float:
    return haversine_m(point_a, point_b) / 1000.0


def offset_point(origin: GeoPoint, north_m: float = 0.0, east_m: float = 0.0) -> GeoPoint:
    """
    Return the point displaced from *origin* by the given metres north/east.

    Small-distance approximation, used to build fixtures and search boxes.
    """
    dlat = math.degrees(north_m / EARTH_RADIUS_M)
    dlon = math.degrees(east_m / (EARTH_RADIUS_M * math.cos(math.radians(origin.latitude))))
    return GeoPoint(origin.latitude + dlat, origin.longitude + dlon)


# ---------------------------------------------------------------------------
# Candidate filtering
# ---------------------------------------------------------------------------


def bounding_box_filter(
    target: GeoPoint,
    radius_m: float,
) -> tuple[float, float, float, float]:
    """
    Return a lat/lon bounding box that encloses a circle of the given radius
    around the target point.

    Returns (min_lat, max_lat, min_lon, max_lon) in degrees.

    Used to pre-filter pole rows with a simple SQL WHERE clause before
    running the exact Haversine check.
    """
    lat_delta = math.degrees(radius_m / EARTH_RADIUS_M)
    cos_lat = max(math.cos(math.radians(target.latitude)), 1e-12)
    lon_delta = min(lat_delta / cos_lat, 180.0)

    return (
        target.latitude - lat_delta,
        target.latitude + lat_delta,
        target.longitude - lon_delta,
        target.longitude + lon_delta,
    )


def sort_candidates(candidates: Iterable[Candidate]) -> list[Candidate]:
    """Order by distance ascending, ties broken by lowest record id."""
    return sorted(candidates, key=lambda c: (c.distance_m, c.record.id))


def find_nearby_candidates(
    target: GeoPoint,
    records: Iterable[PoleRecord],
    radius_m: float = DEFAULT_DEDUP_RADIUS_M,
) -> list[Candidate]:
    """
    Filter pole records to those within radius_m of the target (inclusive).

    Uses a bounding-box pre-filter then exact Haversine check.  Returns
    candidates sorted by distance ascending with a stable tie-break on the
    record id, so repeated calls on unchanged data give identical lists.
    """
    min_lat, max_lat, min_lon, max_lon = bounding_box_filter(target, radius_m)

    nearby = []
    for rec in records:
        lat, lon = rec.location.latitude, rec.location.longitude
        # Bounding-box pre-filter
        if not (min_lat <= lat <= max_lat and min_lon <= lon <= max_lon):
            continue
        dist = haversine_m(target, rec.location)
        if dist <= radius_m:
            nearby.append(Candidate(record=rec, distance_m=dist))

    return sort_candidates(nearby)
