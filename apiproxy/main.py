"""apiproxy FastAPI application factory + lifespan lifecycle.

This module implements:
  - create_app(): testable application factory
  - lifespan: @asynccontextmanager startup/shutdown sequence
  - /health router: delegated to apiproxy/health.py
  - /{path:path}: catch-all transparent proxy to the configured API
  - app = create_app(): module-level instance for uvicorn

Startup sequence:
  1. load_config()             → app.state.config (unless passed to create_app)
  2. create_http_client()      → shared httpx transport
  3. APIClient                 → app.state.api_client
  4. ProxySettings.to_options()→ app.state.proxy_options
  5. app.state.ready = True

Shutdown: app.state.ready = False → close the API client (and its transport).

Every APIClientError raised by a handler becomes a JSON error body
``{"error": {"message", "code"}}`` with the error's ``http_status``.
"""

from __future__ import annotations

import os
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse, Response
from fastapi.routing import APIRouter

from apiproxy.client import APIClient, create_http_client
from apiproxy.config import Config, load_config
from apiproxy.errors import APIClientError
from apiproxy.health import router as health_router
from apiproxy.proxy.body import classify_body
from apiproxy.proxy.pipeline import proxy_api
from apiproxy.utils.logger import configure_logging, get_logger

# ─── Logging Setup ────────────────────────────────────────────────────────────
DEBUG = os.getenv("DEBUG", "false").lower() == "true"
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO" if not DEBUG else "DEBUG")
JSON_LOGS = os.getenv("JSON_LOGS", "true").lower() == "true"

configure_logging(log_level=LOG_LEVEL, json_output=JSON_LOGS)
logger = get_logger(__name__)

PROXY_METHODS = ["GET", "POST", "PUT", "DELETE", "PATCH", "OPTIONS", "HEAD"]


# ─── Dependencies ─────────────────────────────────────────────────────────────


async def require_ready(request: Request) -> None:
    """FastAPI dependency: raises HTTP 503 until the lifespan has finished startup."""
    if not getattr(request.app.state, "ready", False):
        raise HTTPException(
            status_code=503,
            detail={"status": "starting", "message": "apiproxy is starting up."},
        )


# ─── Proxy route ──────────────────────────────────────────────────────────────

proxy_router = APIRouter(tags=["proxy"])


@proxy_router.api_route("/{path:path}", methods=PROXY_METHODS)
async def proxy_handler(request: Request, path: str) -> Response:
    """Forward any request to the configured API, body classified from its headers."""
    return await proxy_api(
        request.app.state.api_client,
        request,
        classify_body(request),
        options=request.app.state.proxy_options,
    )


# ─── Lifespan ─────────────────────────────────────────────────────────────────


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Build the shared API client at startup and close it at shutdown."""
    logger.info("apiproxy_starting")

    # load_config() raises SystemExit on invalid config, before ready is set
    config: Config = app.state.config or load_config()
    app.state.config = config

    api_client = APIClient(
        create_http_client(timeout=config.client.request_timeout),
        config.client.base_url,
        request_timeout=config.client.request_timeout,
        owns_transport=True,
    )
    app.state.api_client = api_client
    app.state.proxy_options = config.proxy.to_options()

    app.state.ready = True
    logger.info(
        "apiproxy_ready",
        base_url=str(api_client.base_url),
        request_timeout=api_client.request_timeout,
        max_upload_size=config.proxy.max_upload_size,
    )

    yield

    logger.info("apiproxy_shutting_down")
    app.state.ready = False

    try:
        await api_client.aclose()
    except Exception as exc:
        logger.warning("api_client_close_failed", error=str(exc))

    logger.info("apiproxy_shutdown_complete")


# ─── Application Factory ──────────────────────────────────────────────────────


def create_app(config: Optional[Config] = None) -> FastAPI:
    """Create and configure the apiproxy FastAPI application.

    Args:
        config: Configuration to use; None loads it from disk at startup.

    Returns:
        FastAPI application with lifespan, routers and exception handlers.
    """
    application = FastAPI(
        title="apiproxy",
        description="HTTP API proxy with request/response interceptors",
        version="1.0.0",
        lifespan=lifespan,
        docs_url="/docs" if DEBUG else None,
        redoc_url="/redoc" if DEBUG else None,
        openapi_url="/openapi.json" if DEBUG else None,
    )

    application.state.ready = False
    application.state.config = config

    # health before the catch-all so /health is never proxied
    application.include_router(health_router)
    application.include_router(proxy_router, dependencies=[Depends(require_ready)])

    @application.exception_handler(APIClientError)
    async def api_client_error_handler(
        request: Request, exc: APIClientError
    ) -> JSONResponse:
        logger.warning(
            "proxy_error",
            status_code=exc.http_status,
            code=exc.code,
            error=str(exc),
            path=str(request.url.path),
        )
        return JSONResponse(status_code=exc.http_status, content=exc.to_dict())

    @application.exception_handler(HTTPException)
    async def http_exception_handler(
        request: Request, exc: HTTPException
    ) -> JSONResponse:
        return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})

    return application


# ─── Module-Level App (for uvicorn) ───────────────────────────────────────────

app = create_app()
