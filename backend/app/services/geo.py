"""
Geodesic helpers for geofences.

Haversine formula for great-circle distance between two lat/lng points.
"""
import math

EARTH_RADIUS_M = 6371000.0


def haversine_m(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """
    Calculate great-circle distance between two points in meters.
    """
    lat1_r = math.radians(lat1)
    lat2_r = math.radians(lat2)
    dlat = math.radians(lat2 - lat1)
    dlng = math.radians(lng2 - lng1)

    a = (math.sin(dlat / 2) ** 2 +
         math.cos(lat1_r) * math.cos(lat2_r) * math.sin(dlng / 2) ** 2)
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))

    return EARTH_RADIUS_M * c


def is_inside(lat: float, lng: float, center_lat: float, center_lng: float, radius_m: float) -> bool:
    """Inside a circular geofence, boundary included."""
    return haversine_m(lat, lng, center_lat, center_lng) <= radius_m
