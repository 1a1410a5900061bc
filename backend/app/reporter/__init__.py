"""Client-side location reporter."""

from backend.app.reporter.providers import (
    BatteryProvider,
    GeoPosition,
    LocationError,
    LocationPermissionError,
    LocationSinkError,
    LocationTimeoutError,
    LocationUnavailableError,
    PositionProvider,
)
from backend.app.reporter.sinks import HttpLocationSink, LocationSink, ServiceLocationSink
from backend.app.reporter.tracker import LocationReporter, ReporterState, TrackingOptions

__all__ = [
    "BatteryProvider",
    "GeoPosition",
    "HttpLocationSink",
    "LocationError",
    "LocationPermissionError",
    "LocationReporter",
    "LocationSink",
    "LocationSinkError",
    "LocationTimeoutError",
    "LocationUnavailableError",
    "PositionProvider",
    "ReporterState",
    "ServiceLocationSink",
    "TrackingOptions",
]
