"""LiveRPC - request/response RPC with live query invalidation.

Queries are plain reads; mutations are writes that declare which queries
they make stale. After a mutation succeeds, the affected queries are
recomputed in the background and pushed to subscribers over a pub/sub
transport, on a channel name both server and client derive from the
query name and its parameters.

Key pieces:
- channel_name / canonicalize: the channel naming contract
- LiveRPCBuilder: register queries and mutations
- LiveRPC: executors, fan-out engine and dispatcher over one transport
- create_app: Starlette binding
"""

from .app import create_app
from .channel import canonicalize, channel_name
from .client import LiveRPCClient, RPCClientError
from .config import LiveRPCConfig
from .definitions import LiveRPCBuilder, MutationDefinition, QueryDefinition, Registry
from .dispatcher import OperationKind, RequestDispatcher, RPCEnvelope, RPCResponse
from .errors import (
    AuthorizationError,
    BroadcastError,
    HandlerError,
    InvalidationComputeError,
    LiveRPCError,
    PartialInvalidationFailure,
    UnknownDefinitionError,
    UnsupportedOperationError,
    ValidationError,
)
from .executor import InvalidationOutcome, MutationExecutor, QueryExecutor
from .fanout import InvalidationFanout, ScalarPolicy
from .observability import CollectingSink, FanoutReport, FanoutSink, LoggingSink, TargetReport
from .schema import ParseResult, PydanticSchema, Schema, as_schema
from .pusher import PusherConfig, PusherTransport
from .server import LiveRPC, create_transport
from .transport import BroadcastItem, InMemoryTransport, Transport

__all__ = [
    # Channel naming
    "canonicalize",
    "channel_name",
    # Definitions
    "LiveRPCBuilder",
    "QueryDefinition",
    "MutationDefinition",
    "Registry",
    # Schemas
    "Schema",
    "ParseResult",
    "PydanticSchema",
    "as_schema",
    # Execution
    "QueryExecutor",
    "MutationExecutor",
    "InvalidationOutcome",
    "InvalidationFanout",
    "ScalarPolicy",
    "RequestDispatcher",
    "RPCEnvelope",
    "RPCResponse",
    "OperationKind",
    "LiveRPC",
    "LiveRPCConfig",
    # Transports
    "Transport",
    "BroadcastItem",
    "InMemoryTransport",
    "PusherConfig",
    "PusherTransport",
    "create_transport",
    # Observability
    "FanoutSink",
    "FanoutReport",
    "TargetReport",
    "LoggingSink",
    "CollectingSink",
    # HTTP
    "create_app",
    "LiveRPCClient",
    "RPCClientError",
    # Errors
    "LiveRPCError",
    "UnknownDefinitionError",
    "ValidationError",
    "AuthorizationError",
    "UnsupportedOperationError",
    "HandlerError",
    "BroadcastError",
    "InvalidationComputeError",
    "PartialInvalidationFailure",
]
