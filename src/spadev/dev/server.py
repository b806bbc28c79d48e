"""Standalone host app: the dev server behind a FastAPI front door.

Used by `spadev serve`. The app starts the dev server eagerly in its
lifespan, gates every request on it (redirecting `/`), proxies everything
else to it, and stops the dev server's process tree on shutdown.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from starlette.responses import Response

from spadev import __version__
from spadev.dev.logging import DevLogComponent, configure_dev_logging, get_logger
from spadev.dev.middleware import use_dev_server
from spadev.dev.proxy import DevServerProxy
from spadev.models import DevServerConfig

logger = get_logger(DevLogComponent.SERVER)

PROXIED_METHODS = ["GET", "POST", "PUT", "PATCH", "DELETE", "HEAD", "OPTIONS"]


def create_host_app(config: DevServerConfig) -> FastAPI:
    """Create the host FastAPI app for a dev server configuration.

    Raises:
        InvalidConfigurationError: The configuration can't start a dev server
    """

    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncGenerator[None, None]:
        # Don't wait for the first request to start compiling.
        startup.start()
        try:
            yield
        finally:
            await proxy.shutdown()
            await startup.aclose()

    app = FastAPI(
        title="spadev",
        description="Front-end dev server host",
        version=__version__,
        lifespan=lifespan,
    )
    startup = use_dev_server(app, config)
    proxy = DevServerProxy(startup, config.request_timeout)

    @app.api_route("/{path:path}", methods=PROXIED_METHODS, include_in_schema=False)
    async def proxy_to_dev_server(request: Request) -> Response:
        return await proxy.proxy_http(request)

    return app


def run_host_server(config: DevServerConfig, *, host: str, port: int) -> None:
    """Serve the host app with uvicorn until interrupted."""
    import uvicorn

    configure_dev_logging()
    if config.host_url is None:
        config = config.model_copy(update={"host_url": f"http://{host}:{port}"})
    app = create_host_app(config)

    logger.info(f"Host app listening on http://{host}:{port}")
    server = uvicorn.Server(
        uvicorn.Config(
            app=app,
            host=host,
            port=port,
            log_level="info",
            log_config=None,  # Keep the routing set up by configure_dev_logging
        )
    )
    asyncio.run(server.serve())
