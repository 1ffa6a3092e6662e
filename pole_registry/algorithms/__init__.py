"""Pole Registry — Identifier and Geodistance Algorithms."""

from .normalizer import (
    normalize,
    identifiers_match,
    extract_area_prefix,
    extract_suffix_number,
    generate_next_number,
    generate_placeholder_identifier,
    is_placeholder_identifier,
    format_identifier,
)
from .geo_proximity import (
    GeoPoint,
    Candidate,
    haversine_m,
    haversine_km,
    bounding_box_filter,
    find_nearby_candidates,
)

__all__ = [
    "normalize",
    "identifiers_match",
    "extract_area_prefix",
    "extract_suffix_number",
    "generate_next_number",
    "generate_placeholder_identifier",
    "is_placeholder_identifier",
    "format_identifier",
    "GeoPoint",
    "Candidate",
    "haversine_m",
    "haversine_km",
    "bounding_box_filter",
    "find_nearby_candidates",
]
