"""Request gating middleware: hold requests until the dev server is up.

Every request waits (with its own timeout) for the shared startup task. Once
the dev server listens, requests for `/` are redirected to it and all other
requests continue down the host app untouched.
"""

from __future__ import annotations

import logging

from starlette.applications import Starlette
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import RedirectResponse, Response
from starlette.types import ASGIApp
from typing_extensions import override

from spadev.dev.logging import DevLogComponent, get_logger
from spadev.dev.startup import DevServerStartup
from spadev.errors import DevServerError, RequestTimeoutError
from spadev.models import DevServerConfig

logger = get_logger(DevLogComponent.MIDDLEWARE)


class DevServerMiddleware(BaseHTTPMiddleware):
    """Waits for the dev server on every request, then redirects or passes through."""

    def __init__(
        self,
        app: ASGIApp,
        *,
        startup: DevServerStartup,
        request_timeout: float,
    ) -> None:
        super().__init__(app)
        self.startup: DevServerStartup = startup
        self.request_timeout: float = request_timeout

    @override
    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        # Each request gets its own timeout. That way, even if the first
        # request times out, later requests can still see the server come up.
        # The first request also tells the dev server where the host app lives.
        host_url = str(request.base_url).rstrip("/")
        try:
            result = await self.startup.wait(self.request_timeout, host_url=host_url)
        except RequestTimeoutError as e:
            logger.warning(f"{request.method} {request.url.path}: {e}")
            return Response(content=str(e), status_code=504, media_type="text/plain")
        except DevServerError as e:
            return Response(
                content=(
                    f"The dev server failed to start: {e}\n\n"
                    "Check the log output for error information."
                ),
                status_code=502,
                media_type="text/plain",
            )

        if request.url.path == "/":
            return RedirectResponse(result.uri, status_code=302)
        return await call_next(request)


def use_dev_server(
    app: Starlette,
    config: DevServerConfig,
    *,
    output_logger: logging.Logger | None = None,
) -> DevServerStartup:
    """Attach the dev server to a Starlette/FastAPI app.

    `output_logger` receives the script's output (the UI logger by default).
    Validates `config` right away (raising InvalidConfigurationError), then
    adds `DevServerMiddleware` backed by a single startup task. The dev server
    is started by the first request, or earlier by calling `start()` on the
    returned object (e.g. from the app's lifespan).

    Returns:
        The startup cell shared by every request of this attachment
    """
    startup = DevServerStartup.from_config(config, logger=output_logger)
    app.add_middleware(
        DevServerMiddleware,
        startup=startup,
        request_timeout=config.request_timeout,
    )
    return startup
