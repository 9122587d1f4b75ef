"""HTTP client for a LiveRPC server.

Usage:
    async with LiveRPCClient("http://localhost:8000") as client:
        post = await client.mutate("createPost", {"title": "A", "content": "B"})
        posts = await client.query("getPosts")

        # Keep a query fresh: initial fetch plus channel subscription
        unsubscribe = await client.live_query(
            "getPost", {"id": post["id"]},
            subscribe=pusher_subscribe,
            on_data=render,
        )

The channel is computed locally with the same canonicalization the server
uses; the ``channel`` returned by the server is only used to detect a
mismatch.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

import httpx

from .channel import channel_name
from .executor import maybe_await
from .transport import UPDATE_EVENT

logger = logging.getLogger(__name__)

# subscribe(channel, event, on_payload) -> unsubscribe
SubscribeFn = Callable[
    [str, str, Callable[[Any], Any]],
    Callable[[], Any] | Awaitable[Callable[[], Any]],
]


class RPCClientError(Exception):
    """The server answered a call with an error."""

    def __init__(self, message: str, status_code: int, code: str | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.code = code


@dataclass(frozen=True)
class QueryResult:
    """Query data plus the channel the server says it publishes on."""

    data: Any
    channel: str


class LiveRPCClient:
    """Async client for the query/mutation endpoints."""

    def __init__(
        self,
        base_url: str,
        *,
        base_path: str = "/rpc",
        client: httpx.AsyncClient | None = None,
        timeout: float = 30.0,
    ) -> None:
        self.base_path = "/" + base_path.strip("/") if base_path.strip("/") else ""
        self._client = client or httpx.AsyncClient(base_url=base_url, timeout=timeout)
        self._owns_client = client is None

    async def __aenter__(self) -> LiveRPCClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def _call(self, kind: str, key: str, params: Any) -> dict[str, Any]:
        response = await self._client.post(
            f"{self.base_path}/{kind}",
            json={"key": key, "params": params},
            headers={"Cache-Control": "no-cache, no-store, must-revalidate"},
        )
        try:
            body = response.json()
        except ValueError:
            raise RPCClientError(
                f"{kind} failed with status {response.status_code}", response.status_code
            ) from None

        if response.is_error or body.get("error"):
            raise RPCClientError(
                body.get("error") or f"{kind} failed",
                response.status_code,
                body.get("code"),
            )
        return body

    async def query_with_channel(self, key: str, params: Any = None) -> QueryResult:
        """Run a query and return data with the server-reported channel."""
        body = await self._call("query", key, params)
        return QueryResult(data=body.get("data"), channel=body.get("channel", ""))

    async def query(self, key: str, params: Any = None) -> Any:
        """Run a query and return its data."""
        return (await self.query_with_channel(key, params)).data

    async def mutate(self, key: str, params: Any = None) -> Any:
        """Run a mutation and return its data."""
        body = await self._call("mutation", key, params)
        if not body.get("success"):
            raise RPCClientError(body.get("error") or "An error occurred", 200, body.get("code"))
        return body.get("data")

    async def live_query(
        self,
        key: str,
        params: Any,
        *,
        subscribe: SubscribeFn,
        on_data: Callable[[Any], Any],
        event: str = UPDATE_EVENT,
    ) -> Callable[[], Any]:
        """Fetch a query and keep receiving its updates.

        Subscribes before the initial fetch so no update published in
        between is lost.

        Args:
            key: Query name
            params: Query parameters
            subscribe: Transport subscription function
            on_data: Called with the initial data and every update
            event: Event name to listen for

        Returns:
            Unsubscribe function
        """
        channel = channel_name(key, params)
        unsubscribe = await maybe_await(subscribe(channel, event, on_data))
        try:
            result = await self.query_with_channel(key, params)
        except Exception:
            await maybe_await(unsubscribe())
            raise

        if result.channel and result.channel != channel:
            logger.warning(
                f"Channel mismatch for {key}: client computed {channel}, "
                f"server sent {result.channel}"
            )
        await maybe_await(on_data(result.data))
        return unsubscribe
