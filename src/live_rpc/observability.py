"""Fan-out outcome reporting.

A mutation's invalidation fan-out runs after the mutation has already
returned, so its failures cannot reach the caller. Instead every fan-out
produces a ``FanoutReport`` that is handed to a ``FanoutSink``.

Sinks:
- LoggingSink: default, logs a summary line per fan-out
- CollectingSink: keeps reports in memory and lets callers await them
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Protocol, runtime_checkable

logger = logging.getLogger(__name__)


class TargetStatus(str, Enum):
    """How one invalidation target ended."""

    SUCCESS = "success"
    PARTIAL = "partial"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass
class TargetReport:
    """Outcome of invalidating one target query."""

    query: str
    status: TargetStatus = TargetStatus.SUCCESS
    recomputed: int = 0
    published: int = 0
    failed: int = 0
    batches: int = 0
    failed_batches: int = 0
    error: BaseException | None = None

    @property
    def ok(self) -> bool:
        return self.status in (TargetStatus.SUCCESS, TargetStatus.SKIPPED)


@dataclass
class FanoutReport:
    """Outcome of one mutation's whole invalidation map."""

    mutation: str
    targets: list[TargetReport] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return all(t.ok for t in self.targets)

    @property
    def errors(self) -> list[BaseException]:
        return [t.error for t in self.targets if t.error is not None]

    @property
    def published(self) -> int:
        return sum(t.published for t in self.targets)

    def target(self, query: str) -> TargetReport | None:
        for report in self.targets:
            if report.query == query:
                return report
        return None


@runtime_checkable
class FanoutSink(Protocol):
    """Receives a report after each fan-out completes."""

    async def report(self, report: FanoutReport) -> None: ...


class LoggingSink:
    """Log fan-out outcomes."""

    def __init__(self, log: logging.Logger | None = None) -> None:
        self._log = log or logger

    async def report(self, report: FanoutReport) -> None:
        if report.ok:
            self._log.info(
                f"Invalidation for {report.mutation} published {report.published} "
                f"update(s) across {len(report.targets)} target(s)"
            )
            return
        for target in report.targets:
            if not target.ok:
                self._log.warning(
                    f"Invalidation of {target.query} after {report.mutation} "
                    f"{target.status.value}: {target.error}"
                )


class CollectingSink:
    """Keep reports in memory.

    Usage:
        sink = CollectingSink()
        rpc = LiveRPC(registry, transport, sink=sink)
        await rpc.mutations.execute("createPost", {...}, ctx)
        report = await sink.wait_for(1)
    """

    def __init__(self) -> None:
        self.reports: list[FanoutReport] = []
        self._changed: asyncio.Condition | None = None

    def _get_condition(self) -> asyncio.Condition:
        if self._changed is None:
            self._changed = asyncio.Condition()
        return self._changed

    async def report(self, report: FanoutReport) -> None:
        condition = self._get_condition()
        async with condition:
            self.reports.append(report)
            condition.notify_all()

    async def wait_for(self, count: int = 1, timeout: float = 5.0) -> FanoutReport:
        """Wait until ``count`` reports arrived and return the latest one."""
        condition = self._get_condition()

        async def _wait() -> None:
            async with condition:
                await condition.wait_for(lambda: len(self.reports) >= count)

        await asyncio.wait_for(_wait(), timeout)
        return self.reports[-1]
