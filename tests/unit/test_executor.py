"""Unit tests for the query and mutation executors."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest
from pydantic import BaseModel, Field

from live_rpc.channel import channel_name
from live_rpc.definitions import LiveRPCBuilder
from live_rpc.errors import (
    AuthorizationError,
    BroadcastError,
    HandlerError,
    UnknownDefinitionError,
    ValidationError,
)
from live_rpc.executor import InvalidationOutcome, MutationExecutor, QueryExecutor
from live_rpc.transport import InMemoryTransport


class ItemParams(BaseModel):
    id: int


class AliasedItemParams(BaseModel):
    item_id: int = Field(alias="itemId")


@dataclass
class DataclassItemParams:
    id: int


def make_queries(
    handler: Any,
    authorization: Any = None,
    transport: Any = None,
) -> tuple[QueryExecutor, Any]:
    registry = (
        LiveRPCBuilder()
        .add_query("getItem", params=ItemParams, query=handler, authorization=authorization)
        .build()
    )
    transport = transport or InMemoryTransport()
    return QueryExecutor(registry, transport), transport


# =============================================================================
# QueryExecutor.execute
# =============================================================================


class TestQueryExecute:
    @pytest.mark.asyncio
    async def test_returns_handler_result(self) -> None:
        handler = AsyncMock(return_value={"id": 1})
        queries, _ = make_queries(handler)

        result = await queries.execute("getItem", {"id": 1}, context="ctx")

        assert result == {"id": 1}
        handler.assert_awaited_once_with(ItemParams(id=1), "ctx")

    @pytest.mark.asyncio
    async def test_sync_handler_supported(self) -> None:
        queries, _ = make_queries(lambda params, ctx: params.id * 2)
        assert await queries.execute("getItem", {"id": 4}) == 8

    @pytest.mark.asyncio
    async def test_unknown_query(self) -> None:
        queries, _ = make_queries(AsyncMock())
        with pytest.raises(UnknownDefinitionError, match="Unknown query: nope"):
            await queries.execute("nope", {})

    @pytest.mark.asyncio
    async def test_invalid_params_never_reach_handler(self) -> None:
        handler = AsyncMock()
        queries, _ = make_queries(handler)

        with pytest.raises(ValidationError) as exc_info:
            await queries.execute("getItem", {"id": "not-a-number"})

        assert "id" in exc_info.value.message
        handler.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_denied_authorization_never_reaches_handler(self) -> None:
        handler = AsyncMock()
        authorization = AsyncMock(return_value=False)
        queries, _ = make_queries(handler, authorization)

        with pytest.raises(AuthorizationError):
            await queries.execute("getItem", {"id": 1}, context="ctx")

        authorization.assert_awaited_once_with(ItemParams(id=1), "ctx")
        handler.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_raising_authorization_is_authorization_error(self) -> None:
        handler = AsyncMock()
        authorization = AsyncMock(side_effect=PermissionError("no session"))
        queries, _ = make_queries(handler, authorization)

        with pytest.raises(AuthorizationError) as exc_info:
            await queries.execute("getItem", {"id": 1})

        assert isinstance(exc_info.value.__cause__, PermissionError)
        handler.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_without_auth_skips_predicate(self) -> None:
        authorization = AsyncMock(return_value=False)
        queries, _ = make_queries(AsyncMock(return_value="ok"), authorization)

        assert await queries.execute("getItem", {"id": 1}, with_auth=False) == "ok"
        authorization.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_handler_failure_wrapped(self) -> None:
        cause = RuntimeError("db down")
        queries, _ = make_queries(AsyncMock(side_effect=cause))

        with pytest.raises(HandlerError) as exc_info:
            await queries.execute("getItem", {"id": 1})

        assert exc_info.value.cause is cause
        assert exc_info.value.__cause__ is cause
        assert exc_info.value.status_code == 500


# =============================================================================
# QueryExecutor.invalidate / batch_invalidate
# =============================================================================


class TestQueryInvalidate:
    @pytest.mark.asyncio
    async def test_invalidate_broadcasts_on_channel(self) -> None:
        queries, transport = make_queries(AsyncMock(return_value={"id": 7}))

        result = await queries.invalidate("getItem", {"id": 7})

        assert result == {"id": 7}
        assert len(transport.published) == 1
        item = transport.published[0]
        assert item.channel == channel_name("getItem", {"id": 7})
        assert item.name == "update"
        assert item.data == {"id": 7}

    @pytest.mark.asyncio
    async def test_invalidate_skips_authorization(self) -> None:
        authorization = AsyncMock(return_value=False)
        queries, transport = make_queries(AsyncMock(return_value=1), authorization)

        await queries.invalidate("getItem", {"id": 1})

        authorization.assert_not_awaited()
        assert len(transport.published) == 1

    @pytest.mark.asyncio
    async def test_invalidate_broadcast_failure(self) -> None:
        transport = MagicMock()
        transport.broadcast = AsyncMock(side_effect=ConnectionError("gone"))
        queries, _ = make_queries(AsyncMock(return_value=1), transport=transport)

        with pytest.raises(BroadcastError) as exc_info:
            await queries.invalidate("getItem", {"id": 1})

        assert exc_info.value.channel == channel_name("getItem", {"id": 1})
        assert isinstance(exc_info.value.__cause__, ConnectionError)

    @pytest.mark.asyncio
    async def test_batch_invalidate_does_not_publish(self) -> None:
        transport = MagicMock()
        transport.broadcast = AsyncMock()
        transport.batch_broadcast = AsyncMock()
        queries, _ = make_queries(AsyncMock(return_value={"id": 2}), transport=transport)

        outcome = await queries.batch_invalidate("getItem", {"id": 2})

        assert outcome == InvalidationOutcome(
            success=True, channel=channel_name("getItem", {"id": 2}), result={"id": 2}
        )
        transport.broadcast.assert_not_awaited()
        transport.batch_broadcast.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_invalidate_channel_uses_aliases(self) -> None:
        registry = (
            LiveRPCBuilder()
            .add_query("getItem", params=AliasedItemParams, query=AsyncMock(return_value=1))
            .build()
        )
        transport = InMemoryTransport()

        await QueryExecutor(registry, transport).invalidate("getItem", {"itemId": 5})

        assert transport.published[0].channel == channel_name("getItem", {"itemId": 5})

    @pytest.mark.asyncio
    async def test_batch_invalidate_dataclass_params(self) -> None:
        registry = (
            LiveRPCBuilder()
            .add_query("getItem", params=DataclassItemParams, query=AsyncMock(return_value=1))
            .build()
        )

        outcome = await QueryExecutor(registry, InMemoryTransport()).batch_invalidate(
            "getItem", {"id": 5}
        )

        assert outcome.channel == channel_name("getItem", {"id": 5})

    @pytest.mark.asyncio
    async def test_batch_invalidate_validation_error(self) -> None:
        queries, _ = make_queries(AsyncMock())
        with pytest.raises(ValidationError):
            await queries.batch_invalidate("getItem", {"id": "x"})


# =============================================================================
# MutationExecutor
# =============================================================================


def make_mutations(
    handler: Any,
    invalidate_queries: dict[str, Any] | None = None,
    authorization: Any = None,
) -> tuple[MutationExecutor, MagicMock]:
    registry = (
        LiveRPCBuilder()
        .add_query("getItem", params=ItemParams, query=AsyncMock())
        .add_mutation(
            "setItem",
            params=ItemParams,
            mutation=handler,
            authorization=authorization,
            invalidate_queries=invalidate_queries,
        )
        .build()
    )
    fanout = MagicMock()
    return MutationExecutor(registry, fanout), fanout


class TestMutationExecute:
    @pytest.mark.asyncio
    async def test_returns_result_and_spawns_fanout(self) -> None:
        params_fn = lambda params, result: {"id": params.id}  # noqa: E731
        mutations, fanout = make_mutations(
            AsyncMock(return_value={"id": 3}), {"getItem": params_fn}
        )

        result = await mutations.execute("setItem", {"id": 3}, context="ctx")

        assert result == {"id": 3}
        fanout.spawn.assert_called_once()
        name, invalidation_map, params, mutation_result, context = fanout.spawn.call_args.args
        assert name == "setItem"
        assert dict(invalidation_map) == {"getItem": params_fn}
        assert params == ItemParams(id=3)
        assert mutation_result == {"id": 3}
        assert context == "ctx"

    @pytest.mark.asyncio
    async def test_no_invalidation_map_skips_fanout(self) -> None:
        mutations, fanout = make_mutations(AsyncMock(return_value=None))

        await mutations.execute("setItem", {"id": 1})

        fanout.spawn.assert_not_called()

    @pytest.mark.asyncio
    async def test_unknown_mutation(self) -> None:
        mutations, _ = make_mutations(AsyncMock())
        with pytest.raises(UnknownDefinitionError, match="Unknown mutation: nope"):
            await mutations.execute("nope", {})

    @pytest.mark.asyncio
    async def test_validation_failure_aborts(self) -> None:
        handler = AsyncMock()
        mutations, fanout = make_mutations(handler, {"getItem": lambda p, r: None})

        with pytest.raises(ValidationError):
            await mutations.execute("setItem", {})

        handler.assert_not_awaited()
        fanout.spawn.assert_not_called()

    @pytest.mark.asyncio
    async def test_authorization_failure_aborts(self) -> None:
        handler = AsyncMock()
        mutations, fanout = make_mutations(
            handler, {"getItem": lambda p, r: None}, authorization=lambda p, c: False
        )

        with pytest.raises(AuthorizationError):
            await mutations.execute("setItem", {"id": 1})

        handler.assert_not_awaited()
        fanout.spawn.assert_not_called()

    @pytest.mark.asyncio
    async def test_handler_failure_skips_fanout(self) -> None:
        mutations, fanout = make_mutations(
            AsyncMock(side_effect=ValueError("duplicate")), {"getItem": lambda p, r: None}
        )

        with pytest.raises(HandlerError):
            await mutations.execute("setItem", {"id": 1})

        fanout.spawn.assert_not_called()
