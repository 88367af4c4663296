"""Programmatic uvicorn entry point for the apiproxy host application.

Reads host and port from the loaded config (127.0.0.1:8000 by default).

Usage:
    python -m apiproxy.run     # reads .apiproxy/config.yaml
    apiproxy                   # via pyproject.toml [project.scripts]
"""

from __future__ import annotations

import uvicorn

from apiproxy.config import load_config
from apiproxy.utils.logger import get_logger

logger = get_logger(__name__)

# Every in-flight multipart call buffers up to proxy.max_upload_size bytes
# (32 MiB by default), so worst-case upload memory is this limit times that
# size, about 2 GiB. Connections past the limit get 503 from uvicorn.
UVICORN_LIMIT_CONCURRENCY: int = 64

# Pending TCP connections queued by the OS while all slots above are busy.
UVICORN_BACKLOG: int = 64

# Idle inbound connections close after this many seconds (half the default
# upstream request timeout).
UVICORN_TIMEOUT_KEEP_ALIVE: int = 5


def main() -> None:
    """Start the proxy server.

    Raises:
        SystemExit: Propagated from load_config() on config errors.
    """
    config = load_config()
    logger.info(
        "apiproxy_serving",
        host=config.server.host,
        port=config.server.port,
        base_url=config.client.base_url,
        limit_concurrency=UVICORN_LIMIT_CONCURRENCY,
    )

    uvicorn.run(
        "apiproxy.main:app",
        host=config.server.host,
        port=config.server.port,
        limit_concurrency=UVICORN_LIMIT_CONCURRENCY,
        backlog=UVICORN_BACKLOG,
        timeout_keep_alive=UVICORN_TIMEOUT_KEEP_ALIVE,
    )


if __name__ == "__main__":
    main()
