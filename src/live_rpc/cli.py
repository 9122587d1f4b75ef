"""LiveRPC command line.

Usage:
    live-rpc channel getPost '{"id": 1}'      # Channel name for a query + params
    live-rpc canonical '{"b": 1, "a": 2}'     # Canonical params text
    live-rpc serve myapp.rpc:rpc              # Serve a LiveRPC (or ASGI app) with uvicorn
    live-rpc serve myapp.rpc:build --port 9000
    live-rpc health --url http://localhost:8000
"""

from __future__ import annotations

import asyncio
import importlib
import inspect
import json
import logging
import sys
from typing import Any

import click
import httpx

from .channel import canonicalize, channel_name
from .config import LiveRPCConfig


def _parse_params(raw: str | None) -> Any:
    if raw is None:
        return None
    try:
        return json.loads(raw)
    except json.JSONDecodeError as e:
        raise click.BadParameter(f"not valid JSON: {e}", param_hint="PARAMS") from e


def _is_factory(obj: Any) -> bool:
    """True for callables that can be called without arguments.

    Starlette apps and plain ASGI callables take arguments, so they are
    served as they are.
    """
    if not callable(obj) or hasattr(obj, "router"):
        return False
    try:
        signature = inspect.signature(obj)
    except (TypeError, ValueError):
        return False
    return all(
        p.default is not p.empty or p.kind in (p.VAR_POSITIONAL, p.VAR_KEYWORD)
        for p in signature.parameters.values()
    )


def load_app(target: str) -> Any:
    """Resolve ``module:attr`` to an ASGI application.

    ``attr`` may be an ASGI app, a LiveRPC instance, or a zero-argument
    factory returning either.
    """
    from .app import create_app
    from .server import LiveRPC

    module_name, _, attr = target.partition(":")
    if not module_name or not attr:
        raise click.BadParameter("expected 'module:attribute'", param_hint="APP")

    try:
        module = importlib.import_module(module_name)
    except ImportError as e:
        raise click.BadParameter(f"cannot import {module_name}: {e}", param_hint="APP") from e

    try:
        obj = getattr(module, attr)
    except AttributeError:
        raise click.BadParameter(
            f"{module_name} has no attribute {attr}", param_hint="APP"
        ) from None

    if not isinstance(obj, LiveRPC) and _is_factory(obj):
        obj = obj()
    if isinstance(obj, LiveRPC):
        obj = create_app(obj)
    return obj


@click.group()
@click.option(
    "--log-level",
    default=None,
    help="Logging level (default: LIVE_RPC_LOG_LEVEL or INFO)",
)
@click.pass_context
def main(ctx: click.Context, log_level: str | None) -> None:
    """LiveRPC - queries, mutations and live invalidation."""
    try:
        config = LiveRPCConfig.from_env()
    except ValueError as e:
        raise click.UsageError(str(e)) from e

    level = getattr(logging, (log_level or config.log_level).upper(), None)
    if not isinstance(level, int):
        level = logging.INFO
    config.log_level = logging.getLevelName(level)
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    ctx.obj = config


@main.command()
@click.argument("query")
@click.argument("params", required=False)
def channel(query: str, params: str | None) -> None:
    """Print the channel name for QUERY with JSON PARAMS."""
    click.echo(channel_name(query, _parse_params(params)))


@main.command()
@click.argument("params", required=False)
def canonical(params: str | None) -> None:
    """Print the canonical form of JSON PARAMS."""
    click.echo(canonicalize(_parse_params(params)))


@main.command()
@click.argument("app")
@click.option("--host", default="127.0.0.1", help="Host to bind to")
@click.option("--port", default=8000, help="Port to bind to")
@click.option("--reload", is_flag=True, help="Enable auto-reload (APP must be an ASGI app)")
@click.pass_obj
def serve(config: LiveRPCConfig, app: str, host: str, port: int, reload: bool) -> None:
    """Serve APP (module:attribute) over HTTP.

    Uvicorn logs at the level chosen with the group's --log-level.
    """
    import uvicorn

    click.echo(f"Starting LiveRPC on http://{host}:{port}", err=True)
    click.echo("Press Ctrl+C to stop", err=True)
    log_level = config.log_level.lower()

    if reload:
        uvicorn.run(app, host=host, port=port, reload=True, log_level=log_level)
    else:
        uvicorn.run(load_app(app), host=host, port=port, log_level=log_level)


@main.command()
@click.option("--url", default="http://localhost:8000", help="Server URL")
def health(url: str) -> None:
    """Check server health."""

    async def check() -> None:
        try:
            async with httpx.AsyncClient() as client:
                response = await client.get(f"{url.rstrip('/')}/health")
        except httpx.ConnectError:
            click.echo(f"Cannot connect to server at {url}", err=True)
            sys.exit(1)
        if response.status_code == 200:
            click.echo(f"Server is healthy: {response.json()}")
        else:
            click.echo(f"Server returned {response.status_code}", err=True)
            sys.exit(1)

    asyncio.run(check())


if __name__ == "__main__":
    main()
