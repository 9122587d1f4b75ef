"""LiveRPC server object.

Wires a registry, a transport and an observability sink into the query
executor, mutation executor, fan-out engine and dispatcher.

Usage:
    rpc = LiveRPC(
        LiveRPCBuilder()
        .add_query("getUsers", params=None, query=list_users)
        .add_mutation(
            "createUser",
            params=CreateUserParams,
            mutation=create_user,
            invalidate_queries={"getUsers": lambda params, result: None},
        ),
        transport=InMemoryTransport(),
    )

    app = create_app(rpc)
"""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from typing import Any

from .config import LiveRPCConfig
from .definitions import LiveRPCBuilder, Registry
from .dispatcher import RequestDispatcher, RPCResponse
from .executor import MutationExecutor, QueryExecutor
from .fanout import InvalidationFanout, ScalarPolicy
from .observability import FanoutSink
from .pusher import PusherConfig, PusherTransport
from .transport import InMemoryTransport, Transport

logger = logging.getLogger(__name__)


def create_transport(
    config: LiveRPCConfig, env: Mapping[str, str] | None = None
) -> Transport:
    """Build the transport described by the environment.

    Pusher is used when ``PUSHER_APP_ID`` is set, otherwise the in-memory
    transport. Both use ``config.max_batch_size``.

    Raises:
        ValueError: Incomplete Pusher settings or a batch size Pusher rejects
    """
    env = os.environ if env is None else env
    if env.get("PUSHER_APP_ID"):
        return PusherTransport(PusherConfig.from_env(env), max_batch_size=config.max_batch_size)
    return InMemoryTransport(max_batch_size=config.max_batch_size)


class LiveRPC:
    """Queries, mutations and live invalidation over one transport."""

    def __init__(
        self,
        definitions: Registry | LiveRPCBuilder,
        transport: Transport | None = None,
        *,
        sink: FanoutSink | None = None,
        config: LiveRPCConfig | None = None,
        scalar_policy: ScalarPolicy | None = None,
    ) -> None:
        """Initialize the server.

        Args:
            definitions: A built registry, or a builder to build now
            transport: Pub/sub transport for updates; built by
                ``create_transport`` from the config when omitted
            sink: Receives fan-out reports (defaults to logging)
            config: Settings; defaults to ``LiveRPCConfig.from_env()``
            scalar_policy: Overrides ``config.scalar_policy``
        """
        self.config = config or LiveRPCConfig.from_env()
        if isinstance(definitions, LiveRPCBuilder):
            definitions = definitions.build()
        self.registry = definitions
        self._owns_transport = transport is None
        if transport is None:
            transport = create_transport(self.config)
        self.transport = transport

        self.queries = QueryExecutor(self.registry, transport, event_name=self.config.event_name)
        self.fanout = InvalidationFanout(
            self.queries,
            transport,
            sink=sink,
            scalar_policy=scalar_policy or self.config.scalar_policy,
        )
        self.mutations = MutationExecutor(self.registry, self.fanout)
        self.dispatcher = RequestDispatcher(self.queries, self.mutations)

        logger.debug(
            f"LiveRPC ready with {len(self.registry.queries)} queries and "
            f"{len(self.registry.mutations)} mutations"
        )

    async def query(self, name: str, params: Any = None, context: Any = None) -> Any:
        """Run a query with authorization."""
        return await self.queries.execute(name, params, context, with_auth=True)

    async def mutate(self, name: str, params: Any = None, context: Any = None) -> Any:
        """Run a mutation; invalidation continues in the background."""
        return await self.mutations.execute(name, params, context)

    async def handle(self, path: str, body: Any, context: Any = None) -> RPCResponse:
        """Handle a decoded request body posted to ``path``."""
        return await self.dispatcher.handle(path, body, context)

    async def drain(self) -> None:
        """Wait for background invalidations to finish."""
        await self.fanout.drain()

    async def aclose(self) -> None:
        """Drain invalidations and close a transport this server created."""
        await self.drain()
        close = getattr(self.transport, "aclose", None)
        if self._owns_transport and close is not None:
            await close()
