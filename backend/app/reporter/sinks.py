"""
Destinations for reporter samples.

``HttpLocationSink`` is what a device uses: it calls the REST API with the
user's bearer token. ``ServiceLocationSink`` writes through the service layer
in-process (simulators, background jobs, tests).
"""
import logging
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, Optional

import httpx
from sqlalchemy.exc import SQLAlchemyError

from backend.app.core.database import get_db_context
from backend.app.core.exceptions import IncidentNotActiveError, SafeCircleError
from backend.app.core.security import Role, User
from backend.app.reporter.providers import LocationSinkError
from backend.app.schemas.incidents import LocationSampleIn
from backend.app.schemas.locations import LiveLocationUpdate
from backend.app.services import incident_service, location_service

logger = logging.getLogger(__name__)


class LocationSink(ABC):
    """Abstract base class for location sinks."""

    @abstractmethod
    async def upsert_live_location(self, user_id: str, update: LiveLocationUpdate) -> Dict[str, Any]:
        """Overwrite the user's current-position row."""
        ...

    @abstractmethod
    async def append_incident_location(self, user_id: str, incident_id: str, sample: LocationSampleIn) -> Dict[str, Any]:
        """
        Append an incident-scoped sample.

        Raises IncidentNotActiveError once the incident has left the open states.
        """
        ...

    @abstractmethod
    async def mark_offline(self, user_id: str) -> Dict[str, Any]:
        """Flip the user's row to status offline."""
        ...


class HttpLocationSink(LocationSink):
    """Talks to ``/api/v1`` as the token's subject; ``user_id`` arguments are informational."""

    def __init__(
        self,
        base_url: str,
        token: str,
        api_prefix: str = "/api/v1",
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.api_prefix = api_prefix.rstrip("/")
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(base_url=base_url, timeout=timeout)
        self.headers = {"Authorization": f"Bearer {token}"}

    async def _request(self, method: str, path: str, payload: Optional[Dict[str, Any]] = None) -> httpx.Response:
        try:
            return await self.client.request(
                method, f"{self.api_prefix}{path}", json=payload, headers=self.headers
            )
        except httpx.HTTPError as e:
            raise LocationSinkError(f"{method} {path} failed: {e}") from e

    @staticmethod
    def _check(resp: httpx.Response) -> Dict[str, Any]:
        if resp.status_code >= 400:
            raise LocationSinkError(f"{resp.request.method} {resp.request.url.path} returned {resp.status_code}: {resp.text}")
        try:
            return resp.json()
        except ValueError as e:
            raise LocationSinkError(f"{resp.request.method} {resp.request.url.path} returned a non-JSON body") from e

    async def upsert_live_location(self, user_id: str, update: LiveLocationUpdate) -> Dict[str, Any]:
        resp = await self._request("PUT", "/locations/me", update.model_dump(mode="json", exclude_none=True))
        return self._check(resp)

    async def append_incident_location(self, user_id: str, incident_id: str, sample: LocationSampleIn) -> Dict[str, Any]:
        resp = await self._request("POST", f"/incidents/{incident_id}/locations", sample.model_dump(mode="json"))
        if resp.status_code == 409:
            try:
                body = resp.json()
            except ValueError:
                body = {}
            if body.get("code") == IncidentNotActiveError.default_code:
                current = body.get("details", {}).get("current_status", "unknown")
                raise IncidentNotActiveError(incident_id, current)
        return self._check(resp)

    async def mark_offline(self, user_id: str) -> Dict[str, Any]:
        resp = await self._request("POST", "/locations/me/offline")
        return self._check(resp)

    async def aclose(self) -> None:
        if self._owns_client:
            await self.client.aclose()


class ServiceLocationSink(LocationSink):
    """Writes through the service layer, one committed transaction per call."""

    def __init__(self, session_context: Callable = get_db_context):
        self.session_context = session_context

    async def upsert_live_location(self, user_id: str, update: LiveLocationUpdate) -> Dict[str, Any]:
        try:
            async with self.session_context() as session:
                row = await location_service.upsert_live_location(session, user_id, update)
                return location_service.to_response(row)
        except (SafeCircleError, SQLAlchemyError) as e:
            raise LocationSinkError(f"Live location write failed: {e}") from e

    async def append_incident_location(self, user_id: str, incident_id: str, sample: LocationSampleIn) -> Dict[str, Any]:
        user = User(id=user_id, role=Role.MEMBER)
        try:
            async with self.session_context() as session:
                row = await incident_service.append_location(session, incident_id, sample, user)
                return {
                    "id": row.id,
                    "incident_id": row.incident_id,
                    "latitude": row.latitude,
                    "longitude": row.longitude,
                    "accuracy": row.accuracy,
                    "created_at": row.created_at,
                }
        except IncidentNotActiveError:
            raise
        except (SafeCircleError, SQLAlchemyError) as e:
            raise LocationSinkError(f"Incident location write failed: {e}") from e

    async def mark_offline(self, user_id: str) -> Dict[str, Any]:
        try:
            async with self.session_context() as session:
                row = await location_service.mark_offline(session, user_id)
                return location_service.to_response(row)
        except (SafeCircleError, SQLAlchemyError) as e:
            raise LocationSinkError(f"Offline write failed: {e}") from e
