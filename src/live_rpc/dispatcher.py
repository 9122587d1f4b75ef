"""Request dispatcher - transport-agnostic request handling.

Turns an inbound envelope into an executor call and the executor's
outcome into a response envelope plus HTTP status. The Starlette routes
(and any other binding) delegate here, so error mapping is identical
regardless of how requests arrive.

Wire format:
    POST .../query     {"key": "getPost", "params": {"id": 1}}
    -> 200 {"data": {...}, "channel": "query_getPost_<hash>", "error": null}

    POST .../mutation  {"key": "createPost", "params": {...}}
    -> 200 {"success": true, "data": {...}, "error": null}

Errors:
    UnknownDefinitionError / ValidationError -> 400
    AuthorizationError                       -> 401
    UnsupportedOperationError                -> 404
    HandlerError / BroadcastError            -> 500
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from .channel import channel_name
from .errors import HandlerError, LiveRPCError, UnsupportedOperationError, ValidationError
from .executor import MutationExecutor, QueryExecutor

logger = logging.getLogger(__name__)

_JSON: TypeAdapter[Any] = TypeAdapter(Any)


def _jsonable(name: str, value: Any) -> Any:
    """Encode a handler result as JSON data.

    A result that cannot be encoded is reported like a handler failure.
    """
    try:
        return _JSON.dump_python(value, mode="json")
    except (TypeError, ValueError) as e:
        raise HandlerError(name, e) from e


class OperationKind(str, Enum):
    """Operation selected by the request path suffix."""

    QUERY = "query"
    MUTATION = "mutation"


class RPCEnvelope(BaseModel):
    """Parsed inbound request."""

    model_config = ConfigDict(frozen=True)

    kind: OperationKind
    key: str
    params: Any = None


class _RequestBody(BaseModel):
    key: str
    params: Any = None


@dataclass(frozen=True)
class RPCResponse:
    """Response envelope plus HTTP status."""

    status_code: int
    body: dict[str, Any]


def operation_kind(path: str) -> OperationKind:
    """Infer the operation kind from a request path.

    Raises:
        UnsupportedOperationError: Path ends in neither /query nor /mutation
    """
    stripped = path.rstrip("/")
    for kind in OperationKind:
        if stripped.endswith(f"/{kind.value}"):
            return kind
    raise UnsupportedOperationError(f"Unsupported RPC path: {path}")


def parse_envelope(path: str, body: Any) -> RPCEnvelope:
    """Build an envelope from a request path and decoded JSON body.

    Raises:
        UnsupportedOperationError: Unknown path suffix
        ValidationError: Body is not ``{"key": str, "params": any}``
    """
    kind = operation_kind(path)
    try:
        parsed = _RequestBody.model_validate(body)
    except PydanticValidationError as e:
        raise ValidationError(f"Invalid request body: {e.error_count()} error(s)") from e
    return RPCEnvelope(kind=kind, key=parsed.key, params=parsed.params)


def _error_body(kind: OperationKind | None, error: LiveRPCError) -> dict[str, Any]:
    message = "Internal error" if isinstance(error, HandlerError) else error.message
    if kind is OperationKind.MUTATION:
        return {"success": False, "data": None, "error": message, "code": error.code}
    return {"data": None, "error": message, "code": error.code}


def error_response(error: LiveRPCError, kind: OperationKind | None = None) -> RPCResponse:
    """Map an error to its response envelope."""
    if isinstance(error, HandlerError):
        logger.error(f"Handler failure: {error.message}", exc_info=error.cause)
    return RPCResponse(status_code=error.status_code, body=_error_body(kind, error))


class RequestDispatcher:
    """Routes envelopes to the query or mutation executor."""

    def __init__(self, queries: QueryExecutor, mutations: MutationExecutor) -> None:
        self._queries = queries
        self._mutations = mutations

    async def dispatch(self, envelope: RPCEnvelope, context: Any = None) -> RPCResponse:
        """Execute an envelope and build the response.

        Never raises for RPC errors; they become error responses.
        """
        logger.debug(f"Dispatching {envelope.kind.value} {envelope.key}")
        try:
            match envelope.kind:
                case OperationKind.QUERY:
                    result = await self._queries.execute(
                        envelope.key, envelope.params, context, with_auth=True
                    )
                    body = {
                        "data": _jsonable(envelope.key, result),
                        "channel": channel_name(envelope.key, envelope.params),
                        "error": None,
                    }
                case OperationKind.MUTATION:
                    result = await self._mutations.execute(envelope.key, envelope.params, context)
                    body = {
                        "success": True,
                        "data": _jsonable(envelope.key, result),
                        "error": None,
                    }
        except LiveRPCError as e:
            return error_response(e, envelope.kind)
        return RPCResponse(status_code=200, body=body)

    async def handle(self, path: str, body: Any, context: Any = None) -> RPCResponse:
        """Parse and dispatch in one step."""
        try:
            envelope = parse_envelope(path, body)
        except LiveRPCError as e:
            return error_response(e)
        return await self.dispatch(envelope, context)
