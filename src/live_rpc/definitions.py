"""Query and mutation definitions and the registry that holds them.

Definitions are collected with ``LiveRPCBuilder`` and frozen into a
``Registry`` once at startup. The registry is never mutated afterwards,
so request handling reads it without locking.

Usage:
    registry = (
        LiveRPCBuilder()
        .add_query("getPost", params=GetPostParams, query=get_post)
        .add_mutation(
            "createPost",
            params=CreatePostParams,
            mutation=create_post,
            invalidate_queries={
                "getPosts": lambda params, result: None,
                "getPost": lambda params, result: {"id": result["id"]},
            },
        )
        .build()
    )
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any

from .schema import Schema, as_schema

# Handlers and predicates may be sync or async; the executors await when needed.
Handler = Callable[[Any, Any], Any | Awaitable[Any]]
AuthorizationPredicate = Callable[[Any, Any], bool | Awaitable[bool]]
InvalidationParamsFn = Callable[[Any, Any], Any | Awaitable[Any]]


@dataclass(frozen=True)
class QueryDefinition:
    """A named, side-effect-free read."""

    name: str
    params: Schema
    handler: Handler
    authorization: AuthorizationPredicate | None = None


@dataclass(frozen=True)
class MutationDefinition:
    """A named write with an optional invalidation map.

    ``invalidate_queries`` maps a target query name to a function of
    ``(mutation_params, mutation_result)`` returning one parameter set or a
    list of parameter sets for that query.
    """

    name: str
    params: Schema
    handler: Handler
    authorization: AuthorizationPredicate | None = None
    invalidate_queries: Mapping[str, InvalidationParamsFn | None] = field(
        default_factory=lambda: MappingProxyType({})
    )


@dataclass(frozen=True)
class Registry:
    """Read-only collection of definitions, keyed by name in registration order."""

    queries: Mapping[str, QueryDefinition]
    mutations: Mapping[str, MutationDefinition]

    def get_query(self, name: str) -> QueryDefinition | None:
        return self.queries.get(name)

    def get_mutation(self, name: str) -> MutationDefinition | None:
        return self.mutations.get(name)


class LiveRPCBuilder:
    """Immutable builder for a ``Registry``.

    Each ``add_*`` call returns a new builder, so partial builders can be
    shared and merged without affecting each other.
    """

    def __init__(
        self,
        queries: Mapping[str, QueryDefinition] | None = None,
        mutations: Mapping[str, MutationDefinition] | None = None,
    ) -> None:
        self._queries: dict[str, QueryDefinition] = dict(queries or {})
        self._mutations: dict[str, MutationDefinition] = dict(mutations or {})

    @property
    def queries(self) -> Mapping[str, QueryDefinition]:
        return MappingProxyType(self._queries)

    @property
    def mutations(self) -> Mapping[str, MutationDefinition]:
        return MappingProxyType(self._mutations)

    def add_query(
        self,
        name: str,
        *,
        params: Any,
        query: Handler,
        authorization: AuthorizationPredicate | None = None,
    ) -> LiveRPCBuilder:
        """Register a query.

        Args:
            name: Unique query name (also part of the channel name)
            params: Schema, or a type pydantic can validate (None for no params)
            query: Handler called with ``(params, context)``
            authorization: Optional predicate called with ``(params, context)``

        Returns:
            A new builder including the query
        """
        if name in self._queries:
            raise ValueError(f"Query already registered: {name}")
        definition = QueryDefinition(
            name=name,
            params=as_schema(params),
            handler=query,
            authorization=authorization,
        )
        return LiveRPCBuilder({**self._queries, name: definition}, self._mutations)

    def add_mutation(
        self,
        name: str,
        *,
        params: Any,
        mutation: Handler,
        authorization: AuthorizationPredicate | None = None,
        invalidate_queries: Mapping[str, InvalidationParamsFn | None] | None = None,
    ) -> LiveRPCBuilder:
        """Register a mutation.

        Args:
            name: Unique mutation name
            params: Schema, or a type pydantic can validate
            mutation: Handler called with ``(params, context)``
            authorization: Optional predicate called with ``(params, context)``
            invalidate_queries: Target query name -> params function

        Returns:
            A new builder including the mutation
        """
        if name in self._mutations:
            raise ValueError(f"Mutation already registered: {name}")
        definition = MutationDefinition(
            name=name,
            params=as_schema(params),
            handler=mutation,
            authorization=authorization,
            invalidate_queries=MappingProxyType(dict(invalidate_queries or {})),
        )
        return LiveRPCBuilder(self._queries, {**self._mutations, name: definition})

    def merge(self, other: LiveRPCBuilder) -> LiveRPCBuilder:
        """Combine two builders. Names must not overlap."""
        overlap = self._queries.keys() & other._queries.keys()
        overlap |= self._mutations.keys() & other._mutations.keys()
        if overlap:
            raise ValueError(f"Duplicate definitions in merge: {', '.join(sorted(overlap))}")
        return LiveRPCBuilder(
            {**self._queries, **other._queries},
            {**self._mutations, **other._mutations},
        )

    def build(self) -> Registry:
        """Freeze the definitions into a registry.

        Raises:
            ValueError: If a mutation invalidates a query that is not registered
        """
        for mutation in self._mutations.values():
            missing = [q for q in mutation.invalidate_queries if q not in self._queries]
            if missing:
                raise ValueError(
                    f"Mutation '{mutation.name}' invalidates unknown queries: {', '.join(missing)}"
                )
        return Registry(
            queries=MappingProxyType(dict(self._queries)),
            mutations=MappingProxyType(dict(self._mutations)),
        )
