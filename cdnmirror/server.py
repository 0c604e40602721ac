# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""HTTP service exposing synchronization, metrics and library lookup.

A WSGI application (werkzeug) with permissive CORS for a browser front
end.  Each request runs its core operation to completion on a fresh
event loop; the request thread blocks until the outcome is known.

Routes:

- ``POST /api/sync``: ``{"name", "version", "key"}`` -> sync outcome
- ``GET|POST /api/num?act=request|flow``: analytics rows
- ``GET|POST /api/libraries``: cdnjs metadata (``name``, ``version``)
- ``GET /api/test``: liveness text
- ``GET /health``: JSON health status
"""

import asyncio
import json
import logging
from collections.abc import Awaitable, Callable, Iterable
from typing import TYPE_CHECKING, Any, TypeVar


if TYPE_CHECKING:
    from werkzeug.wrappers.response import StartResponse

import httpx
from werkzeug.exceptions import MethodNotAllowed, NotFound
from werkzeug.routing import Map, Rule
from werkzeug.serving import make_server
from werkzeug.wrappers import Request, Response

from cdnmirror.config import ServerConfig
from cdnmirror.errors import CdnMirrorError, InputValidationError
from cdnmirror.libraries import fetch_library
from cdnmirror.metrics import MetricsQuery
from cdnmirror.mirror import AssetCoordinate, MirrorSynchronizer


logger = logging.getLogger(__name__)

T = TypeVar("T")

_JSON = "application/json; charset=utf-8"

#: Preflight answers per endpoint: (allowed methods, allowed headers).
_CORS_RULES: dict[str, tuple[str, str]] = {
    "sync": ("POST, OPTIONS", "Content-Type, Authorization"),
    "num": ("GET, POST, OPTIONS", "Content-Type"),
    "libraries": ("GET, POST, OPTIONS", "Content-Type"),
    "test": ("GET, OPTIONS", "Content-Type"),
    "health": ("GET, OPTIONS", "Content-Type"),
}


def _json_response(payload: Any, status: int = 200) -> Response:
    return Response(
        json.dumps(payload, ensure_ascii=False),
        status=status,
        content_type=_JSON,
    )


def _error_response(error: CdnMirrorError) -> Response:
    return _json_response(error.to_dict(), status=error.status)


class MirrorServer:
    """WSGI server for the mirror API.

    Attributes:
        config: Service configuration.
        host: Address to bind to.
        port: Port to bind to.
    """

    def __init__(
        self,
        config: ServerConfig,
        host: str | None = None,
        port: int | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the server.

        Args:
            config: Service configuration.
            host: Bind address, overriding ``config.host``.
            port: Bind port, overriding ``config.port``.
            transport: HTTP transport for outbound calls (tests inject a
                mock transport).  None uses the default network transport.
        """
        self.config = config
        self.host = host or config.host
        self.port = port or config.port
        self._transport = transport

        self._url_map = Map(
            [
                Rule("/api/sync", endpoint="sync", methods=["POST", "OPTIONS"]),
                Rule(
                    "/api/num",
                    endpoint="num",
                    methods=["GET", "POST", "OPTIONS"],
                ),
                Rule(
                    "/api/libraries",
                    endpoint="libraries",
                    methods=["GET", "POST", "OPTIONS"],
                ),
                Rule("/api/test", endpoint="test", methods=["GET", "OPTIONS"]),
                Rule("/health", endpoint="health", methods=["GET", "OPTIONS"]),
            ]
        )

        self._endpoint_handlers: dict[str, Callable[[Request], Response]] = {
            "sync": self.handle_sync,
            "num": self.handle_num,
            "libraries": self.handle_libraries,
            "test": self.handle_test,
            "health": self.handle_health,
        }

    def serve_forever(self) -> None:
        """Run the server in the foreground until interrupted."""
        server = make_server(
            self.host, self.port, self._wsgi_app, threaded=True
        )
        logger.info(
            "Mirror API listening on http://%s:%d/", self.host, self.port
        )
        try:
            server.serve_forever()
        finally:
            server.server_close()
            logger.info("Mirror API stopped")

    def _wsgi_app(
        self,
        environ: dict[str, Any],
        start_response: "StartResponse",
    ) -> Iterable[bytes]:
        """WSGI application entry point."""
        request = Request(environ)
        response = self._dispatch(request)
        response.headers["Access-Control-Allow-Origin"] = "*"
        return response(environ, start_response)

    def _dispatch(self, request: Request) -> Response:
        adapter = self._url_map.bind_to_environ(request.environ)
        try:
            endpoint, _ = adapter.match()
            if request.method == "OPTIONS":
                return self._preflight(endpoint)
            return self._endpoint_handlers[endpoint](request)
        except NotFound:
            return _json_response({"error": "Not Found"}, status=404)
        except MethodNotAllowed:
            return _json_response(
                {"code": 405, "error": "Method Not Allowed"}, status=405
            )
        except CdnMirrorError as e:
            logger.warning("%s %s failed: %s", request.method, request.path, e)
            return _error_response(e)
        except Exception:
            logger.exception("Error handling request %s", request.path)
            return _json_response(
                {"code": 500, "error": "Internal Server Error"}, status=500
            )

    def _preflight(self, endpoint: str) -> Response:
        methods, headers = _CORS_RULES[endpoint]
        response = Response(status=204)
        response.headers["Access-Control-Allow-Methods"] = methods
        response.headers["Access-Control-Allow-Headers"] = headers
        response.headers["Access-Control-Max-Age"] = "86400"
        return response

    def _run(
        self, operation: Callable[[httpx.AsyncClient], Awaitable[T]]
    ) -> T:
        """Run *operation* with a fresh client on a fresh event loop."""

        async def runner() -> T:
            async with httpx.AsyncClient(
                transport=self._transport, follow_redirects=True
            ) as client:
                return await operation(client)

        return asyncio.run(runner())

    # ── Handlers ────────────────────────────────────────────────────

    def handle_sync(self, request: Request) -> Response:
        """Mirror one asset into the bucket.

        Args:
            request: POST with a JSON ``{name, version, key}`` body.

        Returns:
            JSON outcome; 200 when mirrored or uploaded, 400 on bad
            input, 500 on configuration or upstream failures.
        """
        cos = self.config.require_cos()
        coordinate = AssetCoordinate.from_mapping(_read_json(request))

        outcome = self._run(
            lambda client: MirrorSynchronizer(
                cos, cdnjs_base_url=self.config.cdnjs.base_url, client=client
            ).sync(coordinate)
        )
        return _json_response(outcome.to_dict(), status=outcome.http_status)

    def handle_num(self, request: Request) -> Response:
        """Return the top URLs of the last 30 days.

        Args:
            request: GET or POST with an optional ``act`` query parameter.

        Returns:
            The cleaned analytics envelope as JSON.
        """
        kind = request.args.get("act")
        cloud = self.config.require_cloud()
        domain = self.config.metrics_domain

        data = self._run(
            lambda client: MetricsQuery(
                cloud, self.config.metrics, domain, client=client
            ).query(kind)
        )
        return _json_response(data)

    def handle_libraries(self, request: Request) -> Response:
        """Proxy a cdnjs library metadata lookup.

        Args:
            request: GET with ``name``/``version`` query parameters, or
                POST with a JSON body carrying the same fields.

        Returns:
            The upstream JSON with the upstream status.
        """
        if request.method == "POST":
            if "application/json" not in (request.content_type or ""):
                raise InputValidationError("Unsupported POST content type")
            body = _read_json(request)
            if not isinstance(body, dict):
                raise InputValidationError("Request body must be a JSON object")
            name, version = body.get("name"), body.get("version")
        else:
            name = request.args.get("name")
            version = request.args.get("version")

        status, data = self._run(
            lambda client: fetch_library(
                name,
                version,
                api_url=self.config.cdnjs.api_url,
                client=client,
            )
        )
        return _json_response(data, status=status)

    def handle_test(self, request: Request) -> Response:
        """Plain-text liveness endpoint."""
        return Response("hello world", content_type="text/plain; charset=utf-8")

    def handle_health(self, request: Request) -> Response:
        """Report which integrations are configured."""
        return _json_response(
            {
                "status": "ok",
                "cos": self.config.cos is not None,
                "cloud": self.config.cloud is not None,
            }
        )


def _read_json(request: Request) -> Any:
    """Decode a JSON request body.

    Raises:
        InputValidationError: If the body is not valid JSON.
    """
    try:
        return json.loads(request.get_data(as_text=True))
    except ValueError as e:
        raise InputValidationError("Invalid JSON request body") from e
