"""Pusher Channels transport.

Publishes updates through the Pusher HTTP API:
- broadcast       -> POST /apps/{app_id}/events
- batch_broadcast -> POST /apps/{app_id}/batch_events (max 10 events per call)

Requests are signed as described by Pusher: the string
``"POST\\n{path}\\n{sorted query}"`` is signed with HMAC-SHA256 using the
app secret, and the body's MD5 is part of the query.
"""

from __future__ import annotations

import hashlib
import hmac
import json
import logging
import os
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any

import httpx
from pydantic import TypeAdapter

from .transport import DEFAULT_MAX_BATCH_SIZE, BroadcastItem

logger = logging.getLogger(__name__)

# Pusher rejects batch_events calls with more than 10 events
PUSHER_MAX_BATCH_SIZE = 10

_JSON: TypeAdapter[Any] = TypeAdapter(Any)


@dataclass
class PusherConfig:
    """Pusher application credentials."""

    app_id: str
    key: str
    secret: str
    cluster: str = "mt1"
    host: str | None = None
    timeout: float = 10.0

    @property
    def base_url(self) -> str:
        return f"https://{self.host or f'api-{self.cluster}.pusher.com'}"

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None) -> PusherConfig:
        """Load credentials from PUSHER_APP_ID, PUSHER_KEY, PUSHER_SECRET, PUSHER_CLUSTER.

        Raises:
            ValueError: If a required variable is missing
        """
        env = os.environ if env is None else env
        missing = [n for n in ("PUSHER_APP_ID", "PUSHER_KEY", "PUSHER_SECRET") if not env.get(n)]
        if missing:
            raise ValueError(f"Missing Pusher configuration: {', '.join(missing)}")
        return cls(
            app_id=env["PUSHER_APP_ID"],
            key=env["PUSHER_KEY"],
            secret=env["PUSHER_SECRET"],
            cluster=env.get("PUSHER_CLUSTER", "mt1"),
            host=env.get("PUSHER_HOST") or None,
        )


def sign_request(
    secret: str,
    method: str,
    path: str,
    params: Mapping[str, str],
) -> str:
    """HMAC-SHA256 signature of a Pusher API request."""
    query = "&".join(f"{k}={params[k]}" for k in sorted(params))
    to_sign = f"{method.upper()}\n{path}\n{query}"
    return hmac.new(secret.encode(), to_sign.encode(), hashlib.sha256).hexdigest()


def _encode_data(data: Any) -> str:
    """Pusher expects event data as a JSON string."""
    return json.dumps(_JSON.dump_python(data, mode="json"), separators=(",", ":"))


class PusherTransport:
    """Transport publishing to Pusher Channels over httpx."""

    def __init__(
        self,
        config: PusherConfig,
        *,
        client: httpx.AsyncClient | None = None,
        max_batch_size: int = DEFAULT_MAX_BATCH_SIZE,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if not 1 <= max_batch_size <= PUSHER_MAX_BATCH_SIZE:
            raise ValueError(f"max_batch_size must be between 1 and {PUSHER_MAX_BATCH_SIZE}")
        self.config = config
        self.max_batch_size = max_batch_size
        self._client = client or httpx.AsyncClient(
            base_url=config.base_url, timeout=httpx.Timeout(config.timeout)
        )
        self._owns_client = client is None
        self._clock = clock

    async def _post(self, path: str, payload: dict[str, Any]) -> None:
        body = json.dumps(payload, separators=(",", ":")).encode()
        params = {
            "auth_key": self.config.key,
            "auth_timestamp": str(int(self._clock())),
            "auth_version": "1.0",
            "body_md5": hashlib.md5(body).hexdigest(),
        }
        params["auth_signature"] = sign_request(self.config.secret, "POST", path, params)

        response = await self._client.post(
            path,
            params=params,
            content=body,
            headers={"Content-Type": "application/json"},
        )
        response.raise_for_status()

    async def broadcast(self, channel: str, event: str, data: Any) -> None:
        await self._post(
            f"/apps/{self.config.app_id}/events",
            {"name": event, "channels": [channel], "data": _encode_data(data)},
        )
        logger.debug(f"Pusher event {event} sent to {channel}")

    async def batch_broadcast(self, items: list[BroadcastItem]) -> None:
        if len(items) > self.max_batch_size:
            raise ValueError(
                f"Batch of {len(items)} exceeds max_batch_size {self.max_batch_size}"
            )
        batch = [
            {"channel": item.channel, "name": item.name, "data": _encode_data(item.data)}
            for item in items
        ]
        await self._post(f"/apps/{self.config.app_id}/batch_events", {"batch": batch})
        logger.debug(f"Pusher batch of {len(items)} event(s) sent")

    async def aclose(self) -> None:
        """Close the HTTP client if this transport created it."""
        if self._owns_client:
            await self._client.aclose()
