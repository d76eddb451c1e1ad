"""Liveness and readiness probes.

``GET /health`` answers 200 whenever the process can serve a request.
``GET /ready`` answers 200 only when the database responds and both external
clients (model and delivery) were built; otherwise 503 with one entry per
check.
"""

from __future__ import annotations

import asyncio
from typing import Any

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse


async def _database_check(store: Any) -> str:
    if store is None:
        return "fail"
    try:
        answered = await asyncio.to_thread(store.ping)
    except Exception:
        return "fail"
    return "ok" if answered else "fail"


def register_health_routes(app: FastAPI) -> None:
    """Attach ``/health`` and ``/ready`` to *app*."""

    @app.get("/health")
    async def health() -> dict[str, str]:
        return {"status": "healthy"}

    @app.get("/ready")
    async def ready(request: Request) -> JSONResponse:
        services: dict[str, Any] = request.app.state.services
        checks = {
            "database": await _database_check(services.get("store")),
            "llm": "ok" if services.get("generator") is not None else "fail",
            "sender": "ok" if services.get("sender") is not None else "fail",
        }
        if all(result == "ok" for result in checks.values()):
            return JSONResponse(content={"status": "ready", "checks": checks})
        return JSONResponse(
            status_code=503, content={"status": "not_ready", "checks": checks}
        )
