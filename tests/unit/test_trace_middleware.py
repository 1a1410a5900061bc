"""
Unit tests for request tracing: correlation ids, family-group hints and
context cleanup.
"""
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from backend.app.core.logging import correlation_id_ctx, event_id_ctx, family_group_id_ctx
from backend.app.middleware.trace import TracingMiddleware


def _traced_app() -> FastAPI:
    app = FastAPI()
    app.add_middleware(TracingMiddleware)

    @app.get("/api/v1/families/{family_group_id}/members")
    async def members(family_group_id: str):
        return {"correlation_id": correlation_id_ctx.get(), "family_group_id": family_group_id_ctx.get()}

    @app.get("/api/v1/places/")
    async def places():
        return {"family_group_id": family_group_id_ctx.get()}

    return app


async def _get(path: str, **kwargs):
    async with AsyncClient(transport=ASGITransport(app=_traced_app()), base_url="http://test") as client:
        return await client.get(path, **kwargs)


async def test_incoming_correlation_id_is_echoed():
    resp = await _get("/api/v1/families/fam-1/members", headers={"X-Correlation-ID": "req-42"})
    assert resp.headers["X-Correlation-ID"] == "req-42"
    assert resp.headers["X-Event-ID"]
    assert resp.json() == {"correlation_id": "req-42", "family_group_id": "fam-1"}


async def test_trace_header_and_generated_ids():
    resp = await _get("/api/v1/places/", headers={"X-Trace-ID": "trace-7"})
    assert resp.headers["X-Correlation-ID"] == "trace-7"

    first = await _get("/api/v1/places/")
    second = await _get("/api/v1/places/")
    assert first.headers["X-Correlation-ID"] != second.headers["X-Correlation-ID"]
    assert first.json() == {"family_group_id": None}


async def test_family_hint_from_query_or_header():
    resp = await _get("/api/v1/places/", params={"family_group_id": "fam-2"})
    assert resp.json() == {"family_group_id": "fam-2"}

    resp = await _get("/api/v1/places/", headers={"X-Family-Group-ID": "fam-3"})
    assert resp.json() == {"family_group_id": "fam-3"}


async def test_context_is_reset_after_request():
    await _get("/api/v1/families/fam-1/members", headers={"X-Correlation-ID": "req-1"})
    assert correlation_id_ctx.get() is None
    assert event_id_ctx.get() is None
    assert family_group_id_ctx.get() is None
