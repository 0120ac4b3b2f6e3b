"""Geodesic helpers shared by the density, area and corridor stages.

Core functions:
  - haversine_km: great-circle distance between two (lat, lng) points
  - pairwise_distance_km: vectorised (N, N) haversine matrix
  - buffer_bounds / point_bounds: expand a bounding box by a margin in km
  - bounds_area_hectares: spherical-rectangle area of a bounding box
"""

from __future__ import annotations

from typing import Sequence

import numpy as np

from phylogeo.types import Bounds, Coordinates


# ═══════════════════════════════════════════════════════════════════════
# GEODESIC DISTANCE
# ═══════════════════════════════════════════════════════════════════════

EARTH_RADIUS_KM = 6371.0
KM_PER_DEGREE_LAT = 111.0


def haversine_km(lat1: float, lng1: float,
                 lat2: float, lng2: float) -> float:
    """Great-circle distance in km between two (lat, lng) points.

    Args:
        lat1, lng1, lat2, lng2: Decimal degrees.

    Returns:
        Distance in kilometres.
    """
    d2r = np.pi / 180.0
    rlat1 = lat1 * d2r
    rlat2 = lat2 * d2r
    dlat = (lat2 - lat1) * d2r
    dlng = (lng2 - lng1) * d2r
    a = (np.sin(dlat / 2.0) ** 2
         + np.cos(rlat1) * np.cos(rlat2) * np.sin(dlng / 2.0) ** 2)
    c = 2.0 * np.arctan2(np.sqrt(a), np.sqrt(1.0 - a))
    return float(EARTH_RADIUS_KM * c)


def coordinate_distance_km(a: Coordinates, b: Coordinates) -> float:
    return haversine_km(a.lat, a.lng, b.lat, b.lng)


def pairwise_distance_km(lats: np.ndarray, lngs: np.ndarray) -> np.ndarray:
    """Full symmetric (N, N) haversine distance matrix.

    O(N²) memory; fine for the few thousand occurrence records a single
    analysis handles.

    Args:
        lats: (N,) latitudes in decimal degrees.
        lngs: (N,) longitudes in decimal degrees.

    Returns:
        (N, N) float64 distances in km with an exact-zero diagonal.
    """
    lat = np.radians(np.asarray(lats, dtype=np.float64))
    lng = np.radians(np.asarray(lngs, dtype=np.float64))
    dlat = lat[:, None] - lat[None, :]
    dlng = lng[:, None] - lng[None, :]
    a = (np.sin(dlat / 2.0) ** 2
         + np.cos(lat)[:, None] * np.cos(lat)[None, :]
         * np.sin(dlng / 2.0) ** 2)
    a = np.clip(a, 0.0, 1.0)
    dist = EARTH_RADIUS_KM * 2.0 * np.arctan2(np.sqrt(a), np.sqrt(1.0 - a))
    # Force exact symmetry against floating-point drift
    dist = 0.5 * (dist + dist.T)
    np.fill_diagonal(dist, 0.0)
    return dist


def centroid(coords: Sequence[Coordinates]) -> Coordinates:
    """Arithmetic mean of lat/lng (adequate at regional scale)."""
    if not coords:
        raise ValueError("centroid() needs at least one coordinate")
    return Coordinates(
        lat=float(np.mean([c.lat for c in coords])),
        lng=float(np.mean([c.lng for c in coords])),
    )


# ═══════════════════════════════════════════════════════════════════════
# BOUNDING BOXES
# ═══════════════════════════════════════════════════════════════════════

def _lng_degrees(km: float, lat: float) -> float:
    cos_lat = max(np.cos(np.radians(lat)), 1e-6)
    return km / (KM_PER_DEGREE_LAT * cos_lat)


def bounding_box(coords: Sequence[Coordinates]) -> Bounds:
    if not coords:
        raise ValueError("bounding_box() needs at least one coordinate")
    lats = [c.lat for c in coords]
    lngs = [c.lng for c in coords]
    return Bounds(north=max(lats), south=min(lats),
                  east=max(lngs), west=min(lngs))


def buffer_bounds(bounds: Bounds, margin_km: float) -> Bounds:
    """Expand a bounding box by `margin_km` on every side.

    The longitude margin is computed at the poleward edge so the buffer
    is never narrower than `margin_km` anywhere in the box.
    """
    if margin_km < 0:
        raise ValueError(f"margin_km must be >= 0, got {margin_km}")
    lat_buffer = margin_km / KM_PER_DEGREE_LAT
    poleward = max(abs(bounds.north), abs(bounds.south))
    lng_buffer = _lng_degrees(margin_km, poleward)
    return Bounds(
        north=min(bounds.north + lat_buffer, 90.0),
        south=max(bounds.south - lat_buffer, -90.0),
        east=bounds.east + lng_buffer,
        west=bounds.west - lng_buffer,
    )


def point_bounds(point: Coordinates, radius_km: float) -> Bounds:
    return buffer_bounds(
        Bounds(north=point.lat, south=point.lat,
               east=point.lng, west=point.lng),
        radius_km,
    )


def bounds_area_hectares(bounds: Bounds) -> float:
    """Geodesic area of a lat/lng rectangle in hectares.

    A = R² · |sin φ_N − sin φ_S| · |Δλ|   (km²), × 100 for hectares.
    """
    phi_n = np.radians(bounds.north)
    phi_s = np.radians(bounds.south)
    dlam = np.radians(bounds.east - bounds.west)
    km2 = EARTH_RADIUS_KM ** 2 * abs(np.sin(phi_n) - np.sin(phi_s)) * abs(dlam)
    return float(km2 * 100.0)
