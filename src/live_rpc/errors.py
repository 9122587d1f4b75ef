"""Error kinds raised by the RPC pipeline.

Every error carries the HTTP status and a stable code so the dispatcher
can translate it into a response without inspecting messages.

Surfaced to callers:
- UnknownDefinitionError (400)
- ValidationError (400)
- AuthorizationError (401)
- UnsupportedOperationError (404)
- HandlerError (500)
- BroadcastError (500)

Internal to the invalidation fan-out, never surfaced to a mutation caller:
- InvalidationComputeError
- PartialInvalidationFailure
"""

from __future__ import annotations


class LiveRPCError(Exception):
    """Base class for all RPC errors."""

    status_code: int = 500
    code: str = "INTERNAL_ERROR"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict[str, str]:
        """Serialize for a response body."""
        return {"error": self.message, "code": self.code}


class UnknownDefinitionError(LiveRPCError):
    """No query or mutation is registered under the requested name."""

    status_code = 400
    code = "UNKNOWN_DEFINITION"

    def __init__(self, kind: str, name: str) -> None:
        super().__init__(f"Unknown {kind}: {name}")
        self.kind = kind
        self.name = name


class ValidationError(LiveRPCError):
    """Raw parameters were rejected by the definition's schema."""

    status_code = 400
    code = "VALIDATION_ERROR"


class AuthorizationError(LiveRPCError):
    """The authorization predicate denied the call or failed."""

    status_code = 401
    code = "UNAUTHORIZED"

    def __init__(self, message: str = "Unauthorized") -> None:
        super().__init__(message)


class UnsupportedOperationError(LiveRPCError):
    """Request path names neither a query nor a mutation."""

    status_code = 404
    code = "UNSUPPORTED_OPERATION"


class HandlerError(LiveRPCError):
    """The query or mutation handler raised.

    The original exception is kept as ``cause`` and chained as ``__cause__``.
    """

    status_code = 500
    code = "HANDLER_ERROR"

    def __init__(self, name: str, cause: BaseException) -> None:
        super().__init__(f"Handler for '{name}' failed: {cause}")
        self.name = name
        self.cause = cause


class BroadcastError(LiveRPCError):
    """The transport failed to publish a single update."""

    status_code = 500
    code = "BROADCAST_ERROR"

    def __init__(self, channel: str, message: str = "Failed to broadcast update") -> None:
        super().__init__(message)
        self.channel = channel


class InvalidationComputeError(LiveRPCError):
    """A target's parameter function raised during fan-out."""

    code = "INVALIDATION_COMPUTE_ERROR"

    def __init__(self, target: str, cause: BaseException) -> None:
        super().__init__(f"Failed to compute invalidation params for '{target}': {cause}")
        self.target = target
        self.cause = cause


class PartialInvalidationFailure(LiveRPCError):
    """Some recomputations or batch dispatches of one target failed."""

    code = "PARTIAL_INVALIDATION_FAILURE"

    def __init__(
        self,
        target: str,
        failed_items: int,
        failed_batches: int,
        errors: list[BaseException] | None = None,
    ) -> None:
        parts = []
        if failed_items:
            parts.append(f"{failed_items} recomputation(s) failed")
        if failed_batches:
            parts.append(f"{failed_batches} batch broadcast(s) failed")
        super().__init__(f"Partial invalidation failure for '{target}': {', '.join(parts)}")
        self.target = target
        self.failed_items = failed_items
        self.failed_batches = failed_batches
        self.errors = errors or []
