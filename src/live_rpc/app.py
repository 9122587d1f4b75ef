"""Starlette binding for LiveRPC.

Routes:
- GET  /health                          Health check
- POST {base_path}/query                Run a query
- POST {base_path}/mutation             Run a mutation
- GET  {base_path}/events/{channel}     SSE stream of updates (in-memory transport only)

Any other POST under {base_path} answers 404.
"""

from __future__ import annotations

import contextlib
import json
import logging
from collections.abc import AsyncIterator

from starlette.applications import Starlette
from starlette.middleware import Middleware
from starlette.middleware.cors import CORSMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, StreamingResponse
from starlette.routing import Route

from .dispatcher import error_response
from .errors import ValidationError
from .server import LiveRPC
from .transport import InMemoryTransport

logger = logging.getLogger(__name__)


async def health_check(request: Request) -> JSONResponse:
    """Health check endpoint."""
    return JSONResponse({"status": "ok"})


async def rpc_endpoint(request: Request) -> JSONResponse:
    """Query/mutation endpoint.

    The request object is passed as context to authorization predicates
    and handlers.
    """
    rpc: LiveRPC = request.app.state.rpc
    try:
        body = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        response = error_response(ValidationError("Request body must be valid JSON"))
        return JSONResponse(response.body, status_code=response.status_code)

    response = await rpc.handle(request.url.path, body, request)
    return JSONResponse(response.body, status_code=response.status_code)


async def events_endpoint(request: Request) -> StreamingResponse | JSONResponse:
    """SSE endpoint - streams updates for one channel."""
    rpc: LiveRPC = request.app.state.rpc
    transport = rpc.transport
    if not isinstance(transport, InMemoryTransport):
        return JSONResponse(
            {"error": "Event streaming requires the in-memory transport", "code": "NOT_AVAILABLE"},
            status_code=404,
        )

    channel = request.path_params["channel"]
    event_name = rpc.config.event_name

    async def event_stream() -> AsyncIterator[str]:
        yield f"event: connected\ndata: {json.dumps({'channel': channel})}\n\n"
        try:
            async for payload in transport.stream(channel, event_name):
                if await request.is_disconnected():
                    break
                yield f"event: {event_name}\ndata: {json.dumps(payload, default=str)}\n\n"
        except GeneratorExit:
            pass

    return StreamingResponse(
        event_stream(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",  # Disable nginx buffering
        },
    )


def create_app(
    rpc: LiveRPC,
    *,
    base_path: str | None = None,
    cors_origins: list[str] | None = None,
) -> Starlette:
    """Create the ASGI application serving ``rpc``.

    Args:
        rpc: The LiveRPC server
        base_path: Route prefix; defaults to ``rpc.config.base_path``
        cors_origins: Allowed CORS origins (defaults to localhost)

    Returns:
        Configured Starlette application
    """
    prefix = rpc.config.base_path if base_path is None else "/" + base_path.strip("/")
    prefix = prefix.rstrip("/")

    routes = [
        Route("/health", health_check, methods=["GET"]),
        Route(f"{prefix}/events/{{channel}}", events_endpoint, methods=["GET"]),
        Route(f"{prefix}/{{operation}}", rpc_endpoint, methods=["POST"]),
    ]

    middleware = [
        Middleware(
            CORSMiddleware,
            allow_origins=cors_origins or ["http://localhost:*", "http://127.0.0.1:*"],
            allow_methods=["*"],
            allow_headers=["*"],
        ),
    ]

    @contextlib.asynccontextmanager
    async def lifespan(app: Starlette) -> AsyncIterator[None]:
        yield
        # Let in-flight invalidations publish before the process exits
        await rpc.aclose()

    app = Starlette(routes=routes, middleware=middleware, lifespan=lifespan)
    app.state.rpc = rpc
    return app
