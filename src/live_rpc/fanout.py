"""Invalidation fan-out engine.

Turns one mutation's invalidation map into recomputed query updates:

    for each (target query, params fn) concurrently:
        params = params_fn(mutation_params, mutation_result)
        single value -> QueryExecutor.invalidate (one broadcast)
        list         -> QueryExecutor.batch_invalidate per element,
                        successes chunked by transport.max_batch_size,
                        one batch_broadcast per chunk (chunks concurrent)

Failures stay scoped to the target (or element, or chunk) they happen in
and end up in the FanoutReport handed to the sink. Nothing is raised to
the mutation caller.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping, Sequence
from enum import Enum
from typing import TYPE_CHECKING, Any, TypeVar

from .errors import BroadcastError, InvalidationComputeError, PartialInvalidationFailure
from .executor import InvalidationOutcome, maybe_await
from .observability import FanoutReport, FanoutSink, LoggingSink, TargetReport, TargetStatus
from .transport import BroadcastItem, Transport, effective_batch_size

if TYPE_CHECKING:
    from .definitions import InvalidationParamsFn
    from .executor import QueryExecutor

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ScalarPolicy(str, Enum):
    """How a target returning a single parameter set is published."""

    # One broadcast per target, as soon as it is recomputed
    IMMEDIATE = "immediate"
    # Treated as a one-element list and sent through batch_broadcast
    BATCHED = "batched"


def chunked(items: Sequence[T], size: int) -> list[list[T]]:
    """Split ``items`` into consecutive chunks of at most ``size``."""
    if size < 1:
        raise ValueError("size must be at least 1")
    return [list(items[i : i + size]) for i in range(0, len(items), size)]


class InvalidationFanout:
    """Recomputes and publishes the queries a mutation invalidated."""

    def __init__(
        self,
        queries: QueryExecutor,
        transport: Transport,
        sink: FanoutSink | None = None,
        scalar_policy: ScalarPolicy = ScalarPolicy.IMMEDIATE,
    ) -> None:
        self._queries = queries
        self._transport = transport
        self._sink = sink or LoggingSink()
        self.scalar_policy = ScalarPolicy(scalar_policy)
        self._tasks: set[asyncio.Task[FanoutReport]] = set()

    @property
    def pending(self) -> int:
        """Number of fan-outs still running."""
        return len(self._tasks)

    def spawn(
        self,
        mutation: str,
        invalidation_map: Mapping[str, InvalidationParamsFn | None],
        mutation_params: Any,
        mutation_result: Any,
        context: Any = None,
    ) -> asyncio.Task[FanoutReport]:
        """Start a fan-out without waiting for it.

        The task is referenced until it finishes so it cannot be garbage
        collected mid-flight.
        """
        task = asyncio.create_task(
            self.run(mutation, invalidation_map, mutation_params, mutation_result, context),
            name=f"invalidate:{mutation}",
        )
        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        return task

    def _on_done(self, task: asyncio.Task[FanoutReport]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            logger.warning(f"Fan-out task {task.get_name()} was cancelled")
            return
        exc = task.exception()
        if exc is not None:
            logger.error(f"Fan-out task {task.get_name()} crashed", exc_info=exc)

    async def drain(self) -> None:
        """Wait for every in-flight fan-out to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def run(
        self,
        mutation: str,
        invalidation_map: Mapping[str, InvalidationParamsFn | None],
        mutation_params: Any,
        mutation_result: Any,
        context: Any = None,
    ) -> FanoutReport:
        """Invalidate every target in the map and report the outcome."""
        targets = await asyncio.gather(
            *[
                self._invalidate_target(query, params_fn, mutation_params, mutation_result, context)
                for query, params_fn in invalidation_map.items()
            ]
        )
        report = FanoutReport(mutation=mutation, targets=list(targets))
        try:
            await self._sink.report(report)
        except Exception:
            logger.exception(f"Fan-out sink failed for {mutation}")
        return report

    async def _invalidate_target(
        self,
        query: str,
        params_fn: InvalidationParamsFn | None,
        mutation_params: Any,
        mutation_result: Any,
        context: Any,
    ) -> TargetReport:
        if params_fn is None:
            return TargetReport(query=query, status=TargetStatus.SKIPPED)

        try:
            target_params = await maybe_await(params_fn(mutation_params, mutation_result))
        except Exception as e:
            error = InvalidationComputeError(query, e)
            error.__cause__ = e
            return TargetReport(query=query, status=TargetStatus.FAILED, error=error)

        if isinstance(target_params, (list, tuple)):
            return await self._invalidate_many(query, list(target_params), context)
        if self.scalar_policy is ScalarPolicy.BATCHED:
            return await self._invalidate_many(query, [target_params], context)
        return await self._invalidate_one(query, target_params, context)

    async def _invalidate_one(self, query: str, params: Any, context: Any) -> TargetReport:
        try:
            await self._queries.invalidate(query, params, context)
        except BroadcastError as e:
            return TargetReport(query=query, status=TargetStatus.FAILED, recomputed=1, error=e)
        except Exception as e:
            return TargetReport(query=query, status=TargetStatus.FAILED, error=e)
        return TargetReport(query=query, recomputed=1, published=1)

    async def _recompute(self, query: str, params: Any, context: Any) -> InvalidationOutcome:
        try:
            return await self._queries.batch_invalidate(query, params, context)
        except Exception as e:
            return InvalidationOutcome(success=False, error=e)

    async def _dispatch(self, batch: list[BroadcastItem]) -> BaseException | None:
        try:
            await self._transport.batch_broadcast(batch)
        except Exception as e:
            logger.debug(f"Batch broadcast of {len(batch)} item(s) failed: {e}")
            return e
        return None

    async def _invalidate_many(
        self, query: str, params_list: list[Any], context: Any
    ) -> TargetReport:
        outcomes = await asyncio.gather(*[self._recompute(query, p, context) for p in params_list])
        succeeded = [o for o in outcomes if o.success]
        errors: list[BaseException] = [o.error for o in outcomes if o.error is not None]

        items = [
            BroadcastItem(channel=o.channel, name=self._queries.event_name, data=o.result)
            for o in succeeded
        ]
        batches = chunked(items, effective_batch_size(self._transport))
        dispatch_errors = await asyncio.gather(*[self._dispatch(batch) for batch in batches])

        published = 0
        failed_batches = 0
        for batch, error in zip(batches, dispatch_errors):
            if error is None:
                published += len(batch)
            else:
                failed_batches += 1
                errors.append(error)

        report = TargetReport(
            query=query,
            recomputed=len(succeeded),
            published=published,
            failed=len(outcomes) - len(succeeded),
            batches=len(batches),
            failed_batches=failed_batches,
        )
        if report.failed or failed_batches:
            report.status = TargetStatus.PARTIAL if published else TargetStatus.FAILED
            report.error = PartialInvalidationFailure(query, report.failed, failed_batches, errors)
        return report
