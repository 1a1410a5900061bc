"""
Location Reporter.

Samples device geolocation and keeps the user's single live-location row
current. While attached to an SOS incident it also appends incident-scoped
samples.

State machine::

    idle -> starting -> tracking -> stopping -> idle

``start_tracking`` from any state other than idle is a no-op, so a double tap
cannot open two watches. Both the continuous watch and the periodic fallback
timer converge on ``update_location``; the server's monotonic guard on
``sampled_at`` makes racing writes safe.
"""
import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Optional

from pydantic import ValidationError as PydanticValidationError

from backend.app.core.config import get_settings
from backend.app.core.exceptions import IncidentNotActiveError
from backend.app.reporter.providers import (
    BatteryProvider,
    GeoPosition,
    LocationError,
    LocationSinkError,
    LocationTimeoutError,
    LocationUnavailableError,
    PositionProvider,
)
from backend.app.reporter.sinks import LocationSink
from backend.app.schemas.incidents import LocationSampleIn
from backend.app.schemas.locations import LiveLocationUpdate

logger = logging.getLogger(__name__)


class ReporterState(str, Enum):
    IDLE = "idle"
    STARTING = "starting"
    TRACKING = "tracking"
    STOPPING = "stopping"


@dataclass
class TrackingOptions:
    """Timing knobs; ``from_settings`` fills them from configuration."""
    family_group_id: Optional[str] = None
    high_accuracy: bool = True
    fallback_interval: float = 15.0
    initial_timeout: float = 10.0
    initial_max_age: float = 30.0
    watch_timeout: float = 30.0
    success_debounce: float = 2.0

    @classmethod
    def from_settings(cls, **overrides) -> "TrackingOptions":
        settings = get_settings()
        values = {
            "fallback_interval": settings.reporter_fallback_interval_seconds,
            "initial_timeout": settings.reporter_initial_fix_timeout_seconds,
            "initial_max_age": settings.reporter_initial_fix_max_age_seconds,
            "watch_timeout": settings.reporter_watch_timeout_seconds,
            "success_debounce": settings.reporter_success_debounce_seconds,
        }
        values.update(overrides)
        return cls(**values)


@dataclass
class ReporterMetrics:
    """Diagnostics only; nothing in the reporter branches on these."""
    total_attempts: int = 0
    successful_updates: int = 0
    average_accuracy: Optional[float] = None
    last_success_at: Optional[datetime] = None
    _accuracy_samples: int = field(default=0, repr=False)

    @property
    def success_rate(self) -> float:
        if self.total_attempts == 0:
            return 100.0
        return round(self.successful_updates / self.total_attempts * 100, 2)

    def record_attempt(self) -> None:
        self.total_attempts += 1

    def record_success(self, accuracy: Optional[float]) -> None:
        self.successful_updates += 1
        self.last_success_at = datetime.now(timezone.utc)
        if accuracy is not None:
            self._accuracy_samples += 1
            previous = self.average_accuracy or 0.0
            self.average_accuracy = previous + (accuracy - previous) / self._accuracy_samples

    def as_dict(self) -> dict:
        return {
            "total_attempts": self.total_attempts,
            "successful_updates": self.successful_updates,
            "success_rate": self.success_rate,
            "average_accuracy": self.average_accuracy,
            "last_success_at": self.last_success_at,
        }


class LocationReporter:
    """Client-side tracker for one authenticated user."""

    def __init__(
        self,
        user_id: Optional[str],
        positions: PositionProvider,
        sink: LocationSink,
        battery: Optional[BatteryProvider] = None,
        options: Optional[TrackingOptions] = None,
        on_location_shared: Optional[Callable[[GeoPosition], None]] = None,
    ):
        self.user_id = user_id
        self.positions = positions
        self.sink = sink
        self.battery = battery
        self.options = options or TrackingOptions.from_settings()
        self.on_location_shared = on_location_shared

        self.state = ReporterState.IDLE
        self.incident_id: Optional[str] = None
        self.last_error: Optional[Exception] = None
        self._metrics = ReporterMetrics()
        self._watch_task: Optional[asyncio.Task] = None
        self._timer_task: Optional[asyncio.Task] = None
        self._debounce_handle: Optional[asyncio.TimerHandle] = None
        self._fix_task: Optional[asyncio.Future] = None
        self._start_done = asyncio.Event()
        self._stop_requested: Optional[bool] = None

    @property
    def metrics(self) -> dict:
        return self._metrics.as_dict()

    @property
    def is_tracking(self) -> bool:
        return self.state == ReporterState.TRACKING

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start_tracking(self, options: Optional[TrackingOptions] = None) -> bool:
        """
        Take one high-accuracy fix, write it, then open the watch and the fallback timer.

        Returns False when already starting/tracking/stopping, or when a stop
        arrived before the watch was opened. Permission denial or a timeout on
        the first fix is stored in ``last_error``, returns the reporter to idle
        and propagates.
        """
        if self.state != ReporterState.IDLE:
            logger.debug(f"start_tracking ignored in state {self.state.value}")
            return False
        if not self.user_id:
            self.last_error = LocationError("Tracking requires an authenticated user")
            raise self.last_error

        self.state = ReporterState.STARTING
        self._stop_requested = None
        self._start_done = asyncio.Event()
        opts = options or self.options
        try:
            self._fix_task = asyncio.ensure_future(self._get_fix(opts))
            try:
                position = await self._fix_task
            except asyncio.CancelledError:
                if self._stop_requested is None:
                    raise
                position = None
            except LocationError as e:
                self.last_error = e
                logger.warning(f"Tracking not started for {self.user_id}: {e}")
                raise
            finally:
                self._fix_task = None

            if position is not None:
                self.options = opts
                self.last_error = None
                try:
                    await self.update_location(position)
                except LocationError as e:
                    logger.warning(f"Initial location write failed, tracking continues: {e}")

            if self._stop_requested is not None:
                logger.info(f"Location tracking for {self.user_id} stopped before it started")
                return False

            self._watch_task = asyncio.create_task(self._watch_loop(opts))
            self._timer_task = asyncio.create_task(self._fallback_loop(opts))
            self.state = ReporterState.TRACKING
        finally:
            if self.state == ReporterState.STARTING:
                self.state = ReporterState.IDLE
            self._start_done.set()
        logger.info(f"Location tracking started for {self.user_id} (fallback every {opts.fallback_interval}s)")
        return True

    async def stop_tracking(self, explicit: bool = True) -> bool:
        """
        Tear down watch, timer and pending debounce before returning.

        ``explicit`` also writes status offline, once per tracking session.
        A non-explicit stop (view teardown) leaves the shared status alone.
        A stop while starting cancels the pending fix and waits until
        ``start_tracking`` has given up.
        """
        if self.state == ReporterState.STARTING:
            if self._stop_requested is not None:
                return False
            self._stop_requested = explicit
            if self._fix_task is not None:
                self._fix_task.cancel()
            await self._start_done.wait()
            if explicit:
                await self._mark_offline()
            logger.info(f"Location tracking start aborted for {self.user_id} (explicit={explicit})")
            return True
        if self.state != ReporterState.TRACKING:
            return False
        self.state = ReporterState.STOPPING
        try:
            await self._teardown()
            if explicit:
                await self._mark_offline()
        finally:
            self.state = ReporterState.IDLE
        logger.info(f"Location tracking stopped for {self.user_id} (explicit={explicit})")
        return True

    async def _mark_offline(self) -> None:
        try:
            await self.sink.mark_offline(self.user_id)
        except LocationError as e:
            self.last_error = e
            logger.error(f"Failed to mark {self.user_id} offline: {e}")

    async def _teardown(self) -> None:
        if self._debounce_handle is not None:
            self._debounce_handle.cancel()
            self._debounce_handle = None
        tasks = [t for t in (self._watch_task, self._timer_task) if t is not None]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._watch_task = None
        self._timer_task = None

    # ------------------------------------------------------------------
    # Incident scope
    # ------------------------------------------------------------------

    def attach_incident(self, incident_id: str) -> None:
        self.incident_id = incident_id
        logger.info(f"Reporter for {self.user_id} attached to incident {incident_id}")

    def detach_incident(self) -> None:
        if self.incident_id is not None:
            logger.info(f"Reporter for {self.user_id} detached from incident {self.incident_id}")
        self.incident_id = None

    # ------------------------------------------------------------------
    # Sampling
    # ------------------------------------------------------------------

    async def refresh_location(self) -> dict:
        """User-initiated fix and write; every failure propagates."""
        if not self.user_id:
            raise LocationError("Tracking requires an authenticated user")
        try:
            position = await self._get_fix(self.options)
        except LocationError as e:
            self._metrics.record_attempt()
            self.last_error = e
            raise
        return await self.update_location(position, is_manual=True)

    async def update_location(self, sample: GeoPosition, is_manual: bool = False) -> dict:
        """
        Write one sample: battery enrichment, live-row upsert, incident append.

        Raises LocationSinkError when the live row could not be written; an
        incident that is no longer open detaches the reporter silently.
        """
        self._metrics.record_attempt()
        battery_level = await self._battery_level()
        try:
            update = LiveLocationUpdate(
                family_group_id=self.options.family_group_id,
                latitude=sample.latitude,
                longitude=sample.longitude,
                accuracy=sample.accuracy,
                heading=sample.heading,
                speed=sample.speed,
                battery_level=battery_level,
                sampled_at=sample.timestamp,
            )
        except PydanticValidationError as e:
            self.last_error = LocationUnavailableError(f"Device returned an invalid sample: {e}")
            raise self.last_error from e

        try:
            stored = await self.sink.upsert_live_location(self.user_id, update)
        except LocationSinkError as e:
            self.last_error = e
            logger.warning(f"Live location write failed for {self.user_id}: {e}")
            raise

        incident_id = self.incident_id
        if incident_id:
            sample_in = LocationSampleIn(
                latitude=sample.latitude, longitude=sample.longitude, accuracy=sample.accuracy
            )
            try:
                await self.sink.append_incident_location(self.user_id, incident_id, sample_in)
            except IncidentNotActiveError:
                if self.incident_id == incident_id:
                    self.detach_incident()
            except LocationSinkError as e:
                logger.warning(f"Incident {incident_id} sample not written: {e}")

        self._metrics.record_success(sample.accuracy)
        self.last_error = None
        if is_manual:
            self._schedule_shared_notification(sample)
        return stored

    async def _get_fix(self, opts: TrackingOptions) -> GeoPosition:
        try:
            return await asyncio.wait_for(
                self.positions.get_current_position(high_accuracy=opts.high_accuracy, max_age=opts.initial_max_age),
                timeout=opts.initial_timeout,
            )
        except asyncio.TimeoutError as e:
            raise LocationTimeoutError(f"No position fix within {opts.initial_timeout}s") from e

    async def _battery_level(self) -> Optional[int]:
        if self.battery is None:
            return None
        try:
            level = await self.battery.get_level()
        except Exception as e:
            logger.debug(f"Battery level unavailable: {e}")
            return None
        if level is None:
            return None
        return max(0, min(100, int(level)))

    async def _fallback_loop(self, opts: TrackingOptions) -> None:
        while True:
            await asyncio.sleep(opts.fallback_interval)
            try:
                position = await self._get_fix(opts)
            except Exception as e:
                self._metrics.record_attempt()
                logger.warning(f"Periodic location fix failed: {e}")
                continue
            try:
                await self.update_location(position)
            except LocationError:
                # Already logged and counted by update_location.
                continue

    async def _watch_loop(self, opts: TrackingOptions) -> None:
        while True:
            stream = self.positions.watch_position(high_accuracy=opts.high_accuracy)
            try:
                while True:
                    try:
                        position = await asyncio.wait_for(stream.__anext__(), timeout=opts.watch_timeout)
                    except StopAsyncIteration:
                        break
                    try:
                        await self.update_location(position)
                    except LocationError:
                        continue
            except asyncio.TimeoutError:
                self._metrics.record_attempt()
                logger.warning(f"No watch update within {opts.watch_timeout}s, reopening watch")
            except Exception as e:
                self._metrics.record_attempt()
                logger.warning(f"Location watch error: {e}")
            finally:
                aclose = getattr(stream, "aclose", None)
                if aclose is not None:
                    await aclose()
            await asyncio.sleep(opts.fallback_interval)

    def _schedule_shared_notification(self, sample: GeoPosition) -> None:
        if self.on_location_shared is None:
            return
        if self._debounce_handle is not None:
            self._debounce_handle.cancel()
        loop = asyncio.get_running_loop()
        self._debounce_handle = loop.call_later(self.options.success_debounce, self._fire_shared, sample)

    def _fire_shared(self, sample: GeoPosition) -> None:
        self._debounce_handle = None
        try:
            self.on_location_shared(sample)
        except Exception as e:
            logger.error(f"Location shared callback failed: {e}", exc_info=True)
