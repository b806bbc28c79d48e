"""HTTP reverse proxy from the host app to the dev server.

Mounted as the host app's catch-all route, it lets the browser load the
dev server's assets through the host's origin. Like the middleware it waits
for the shared startup task before forwarding anything.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import httpx
from starlette.requests import Request
from starlette.responses import Response, StreamingResponse

from spadev.constants import SPADEV_PROXY_HEADER
from spadev.dev.logging import DevLogComponent, get_logger
from spadev.dev.startup import DevServerStartup
from spadev.errors import DevServerError, RequestTimeoutError

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

logger = get_logger(DevLogComponent.PROXY)

HOP_BY_HOP_HEADERS = frozenset(
    {
        "connection",
        "keep-alive",
        "proxy-authenticate",
        "proxy-authorization",
        "te",
        "trailers",
        "transfer-encoding",
        "upgrade",
    }
)


class DevServerProxy:
    """Forwards HTTP requests to the dev server once it is listening.

    Attributes:
        startup: Shared startup cell resolving to the dev server address
        request_timeout: Seconds each request may wait for the startup
    """

    def __init__(self, startup: DevServerStartup, request_timeout: float) -> None:
        self.startup: DevServerStartup = startup
        self.request_timeout: float = request_timeout

        # HTTP client with connection pooling
        self._http_client: httpx.AsyncClient | None = None

    async def _get_http_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._http_client is None or self._http_client.is_closed:
            self._http_client = httpx.AsyncClient(
                timeout=httpx.Timeout(60.0, connect=10.0),
                follow_redirects=False,
                limits=httpx.Limits(max_connections=100, max_keepalive_connections=20),
            )
        return self._http_client

    @staticmethod
    def _forward_headers(request: Request) -> dict[str, str]:
        headers = {
            k: v
            for k, v in request.headers.items()
            if k.lower() not in HOP_BY_HOP_HEADERS and k.lower() != "host"
        }
        client_host = request.client.host if request.client else "unknown"
        headers["x-forwarded-for"] = client_host
        headers["x-forwarded-proto"] = request.url.scheme
        headers["x-forwarded-host"] = request.headers.get("host", "")
        headers[SPADEV_PROXY_HEADER] = "true"
        return headers

    async def proxy_http(self, request: Request) -> Response:
        """Proxy an HTTP request to the dev server, streaming the response back.

        Args:
            request: The incoming Starlette request

        Returns:
            Response from the dev server, or a plain-text error response
        """
        try:
            result = await self.startup.wait(self.request_timeout)
        except RequestTimeoutError as e:
            return Response(content=str(e), status_code=504, media_type="text/plain")
        except DevServerError as e:
            return Response(
                content=f"The dev server failed to start: {e}",
                status_code=502,
                media_type="text/plain",
            )

        target_url = f"{result.uri}{request.url.path}"
        if request.url.query:
            target_url = f"{target_url}?{request.url.query}"

        try:
            client = await self._get_http_client()
            body = await request.body()
            upstream = client.build_request(
                method=request.method,
                url=target_url,
                headers=self._forward_headers(request),
                content=body,
            )
            response = await client.send(upstream, stream=True)
        except httpx.ConnectError as e:
            logger.warning(f"Failed to connect to the dev server: {e}")
            return Response(
                content="Failed to connect to the dev server",
                status_code=502,
                media_type="text/plain",
            )
        except httpx.TimeoutException:
            return Response(
                content="Request to the dev server timed out",
                status_code=504,
                media_type="text/plain",
            )
        except httpx.HTTPError as e:
            logger.error(f"Proxy error: {e}")
            return Response(
                content=f"Proxy error: {e}",
                status_code=500,
                media_type="text/plain",
            )

        response_headers = {
            key: value
            for key, value in response.headers.multi_items()
            if key.lower() not in HOP_BY_HOP_HEADERS
        }

        async def stream_response() -> AsyncIterator[bytes]:
            try:
                async for chunk in response.aiter_raw():
                    yield chunk
            finally:
                await response.aclose()

        return StreamingResponse(
            content=stream_response(),
            status_code=response.status_code,
            headers=response_headers,
        )

    async def shutdown(self) -> None:
        """Close the HTTP client."""
        if self._http_client and not self._http_client.is_closed:
            await self._http_client.aclose()
        self._http_client = None
