"""Query and mutation execution pipeline.

Every call runs the same steps:

    lookup -> validate -> authorize (optional) -> handler

Queries additionally offer two recompute paths used by invalidation:
- invalidate: recompute and publish one update right away
- batch_invalidate: recompute and hand back channel + result so the
  fan-out engine can publish many of them in one batched call

Mutations hand their invalidation map to the fan-out engine as detached
work and return the handler result without waiting for it.
"""

from __future__ import annotations

import inspect
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from .channel import channel_name
from .errors import (
    AuthorizationError,
    BroadcastError,
    HandlerError,
    UnknownDefinitionError,
    ValidationError,
)
from .transport import UPDATE_EVENT, Transport

if TYPE_CHECKING:
    from .definitions import MutationDefinition, QueryDefinition, Registry
    from .fanout import InvalidationFanout

logger = logging.getLogger(__name__)


async def maybe_await(value: Any) -> Any:
    """Await ``value`` if it is awaitable, otherwise return it."""
    if inspect.isawaitable(value):
        return await value
    return value


@dataclass(frozen=True)
class InvalidationOutcome:
    """Result of recomputing one query for a batched broadcast."""

    success: bool
    channel: str | None = None
    result: Any = None
    error: BaseException | None = None


def _validate(definition: QueryDefinition | MutationDefinition, raw_params: Any) -> Any:
    parsed = definition.params.safe_parse(raw_params)
    if not parsed.success:
        raise ValidationError(parsed.error or "Invalid params")
    return parsed.data


async def _authorize(
    definition: QueryDefinition | MutationDefinition, params: Any, context: Any
) -> None:
    if definition.authorization is None:
        return
    try:
        allowed = await maybe_await(definition.authorization(params, context))
    except Exception as e:
        logger.warning(f"Authorization check for {definition.name} raised: {e}")
        raise AuthorizationError() from e
    if not allowed:
        logger.warning(f"Authorization denied for {definition.name}")
        raise AuthorizationError()


def _channel_for(definition: QueryDefinition, params: Any) -> str:
    dump = getattr(definition.params, "dump", None)
    return channel_name(definition.name, params if dump is None else dump(params))


async def _run_handler(
    definition: QueryDefinition | MutationDefinition, params: Any, context: Any
) -> Any:
    try:
        return await maybe_await(definition.handler(params, context))
    except Exception as e:
        raise HandlerError(definition.name, e) from e


class QueryExecutor:
    """Runs queries and recomputes them for live subscribers."""

    def __init__(
        self,
        registry: Registry,
        transport: Transport,
        event_name: str = UPDATE_EVENT,
    ) -> None:
        self._registry = registry
        self._transport = transport
        self.event_name = event_name

    def _lookup(self, name: str) -> QueryDefinition:
        definition = self._registry.get_query(name)
        if definition is None:
            raise UnknownDefinitionError("query", name)
        return definition

    async def _recompute(self, name: str, raw_params: Any, context: Any) -> tuple[str, Any]:
        definition = self._lookup(name)
        params = _validate(definition, raw_params)
        result = await _run_handler(definition, params, context)
        return _channel_for(definition, params), result

    async def execute(
        self,
        name: str,
        raw_params: Any,
        context: Any = None,
        with_auth: bool = True,
    ) -> Any:
        """Run a query.

        Args:
            name: Registered query name
            raw_params: Unvalidated parameters
            context: Request context passed to authorization and handler
            with_auth: Whether to evaluate the authorization predicate

        Returns:
            The handler's result

        Raises:
            UnknownDefinitionError: No such query
            ValidationError: Params rejected by the schema
            AuthorizationError: Predicate denied or raised
            HandlerError: Handler raised
        """
        definition = self._lookup(name)
        params = _validate(definition, raw_params)
        if with_auth:
            await _authorize(definition, params, context)
        return await _run_handler(definition, params, context)

    async def invalidate(self, name: str, raw_params: Any, context: Any = None) -> Any:
        """Recompute a query and publish the result on its channel.

        Authorization is skipped: the recompute is triggered by the server,
        not requested by a client.

        Raises:
            BroadcastError: The transport failed to publish
        """
        channel, result = await self._recompute(name, raw_params, context)
        try:
            await self._transport.broadcast(channel, self.event_name, result)
        except Exception as e:
            raise BroadcastError(channel) from e
        logger.debug(f"Invalidated {name} on {channel}")
        return result

    async def batch_invalidate(
        self, name: str, raw_params: Any, context: Any = None
    ) -> InvalidationOutcome:
        """Recompute a query without publishing.

        The caller collects outcomes and publishes them with
        ``Transport.batch_broadcast``.
        """
        channel, result = await self._recompute(name, raw_params, context)
        return InvalidationOutcome(success=True, channel=channel, result=result)


class MutationExecutor:
    """Runs mutations and triggers invalidation of dependent queries."""

    def __init__(self, registry: Registry, fanout: InvalidationFanout) -> None:
        self._registry = registry
        self._fanout = fanout

    async def execute(self, name: str, raw_params: Any, context: Any = None) -> Any:
        """Run a mutation.

        The invalidation fan-out is started as a detached task; its outcome
        goes to the fan-out sink and never changes the returned value.

        Raises:
            UnknownDefinitionError: No such mutation
            ValidationError: Params rejected by the schema
            AuthorizationError: Predicate denied or raised
            HandlerError: Handler raised
        """
        definition = self._registry.get_mutation(name)
        if definition is None:
            raise UnknownDefinitionError("mutation", name)
        params = _validate(definition, raw_params)
        await _authorize(definition, params, context)
        result = await _run_handler(definition, params, context)

        if definition.invalidate_queries:
            self._fanout.spawn(name, definition.invalidate_queries, params, result, context)

        return result
