"""Health endpoint for the apiproxy host application.

  GET /health: 503 before ``app.state.ready`` is set, 200 with the upstream
                base URL once the lifespan has built the API client.
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, HTTPException, Request

router = APIRouter(tags=["health"])


@router.get("/health")
async def health(request: Request) -> dict[str, Any]:
    """Primary health check endpoint.

    Response body (200):
        {"status": "ok", "proxy": "running", "base_url": "https://api.example.com/v2"}

    Response body (503):
        {"error": {"status": "starting", "message": "..."}}
    """
    if not getattr(request.app.state, "ready", False):
        raise HTTPException(
            status_code=503,
            detail={"status": "starting", "message": "apiproxy is starting up."},
        )

    client = request.app.state.api_client
    return {
        "status": "ok",
        "proxy": "running",
        "base_url": str(client.base_url),
        "request_timeout": client.request_timeout,
    }
