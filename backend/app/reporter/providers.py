"""
Device abstractions for the location reporter.

The reporter never talks to hardware directly. A platform shell supplies a
``PositionProvider`` (geolocation) and optionally a ``BatteryProvider``;
tests supply fakes.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import AsyncIterator, Optional


class LocationError(Exception):
    """Base class for reporter failures."""


class LocationPermissionError(LocationError):
    """The user denied geolocation access."""


class LocationTimeoutError(LocationError):
    """No position fix arrived within the timeout."""


class LocationUnavailableError(LocationError):
    """The device could not determine a position."""


class LocationSinkError(LocationError):
    """Writing a sample to the backend failed."""


@dataclass
class GeoPosition:
    latitude: float
    longitude: float
    accuracy: Optional[float] = None
    heading: Optional[float] = None
    speed: Optional[float] = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class PositionProvider(ABC):
    """Geolocation source."""

    @abstractmethod
    async def get_current_position(self, high_accuracy: bool = True, max_age: float = 30.0) -> GeoPosition:
        """
        Return one fix no older than ``max_age`` seconds.

        Raises LocationPermissionError or LocationUnavailableError. The caller
        applies the timeout.
        """
        ...

    @abstractmethod
    def watch_position(self, high_accuracy: bool = True) -> AsyncIterator[GeoPosition]:
        """Yield a fix on every device-reported movement until closed."""
        ...


class BatteryProvider(ABC):
    """Battery level source."""

    @abstractmethod
    async def get_level(self) -> Optional[int]:
        """Battery percentage 0-100, or None when the platform does not expose it."""
        ...
