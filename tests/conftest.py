"""Pytest configuration and shared fixtures.

Most tests run against a small blog: ``getPosts``/``getPost`` queries and
``createPost``/``touchPosts`` mutations backed by an in-memory store.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

import pytest
from pydantic import BaseModel

from live_rpc import CollectingSink, InMemoryTransport, LiveRPC, LiveRPCBuilder


class GetPostParams(BaseModel):
    id: int


class CreatePostParams(BaseModel):
    title: str
    content: str


class TouchPostsParams(BaseModel):
    ids: list[int]


class PostStore:
    """In-memory posts with call counters."""

    def __init__(self) -> None:
        self.posts: dict[int, dict[str, Any]] = {}
        self.calls: dict[str, int] = {}
        self.failing_ids: set[int] = set()

    def _count(self, name: str) -> None:
        self.calls[name] = self.calls.get(name, 0) + 1

    async def get_posts(self, params: None, context: Any) -> list[dict[str, Any]]:
        self._count("getPosts")
        return list(self.posts.values())

    async def get_post(self, params: GetPostParams, context: Any) -> dict[str, Any] | None:
        self._count("getPost")
        if params.id in self.failing_ids:
            raise RuntimeError(f"post {params.id} unavailable")
        return self.posts.get(params.id)

    async def create_post(self, params: CreatePostParams, context: Any) -> dict[str, Any]:
        self._count("createPost")
        post_id = len(self.posts) + 1
        post = {"id": post_id, "title": params.title, "content": params.content}
        self.posts[post_id] = post
        return post

    async def touch_posts(self, params: TouchPostsParams, context: Any) -> list[int]:
        self._count("touchPosts")
        return params.ids


def blog_builder(store: PostStore) -> LiveRPCBuilder:
    return (
        LiveRPCBuilder()
        .add_query("getPosts", params=None, query=store.get_posts)
        .add_query("getPost", params=GetPostParams, query=store.get_post)
        .add_mutation(
            "createPost",
            params=CreatePostParams,
            mutation=store.create_post,
            invalidate_queries={
                "getPosts": lambda params, result: None,
                "getPost": lambda params, result: {"id": result["id"]},
            },
        )
        .add_mutation(
            "touchPosts",
            params=TouchPostsParams,
            mutation=store.touch_posts,
            invalidate_queries={
                "getPost": lambda params, result: [{"id": i} for i in result],
            },
        )
    )


@pytest.fixture
def store() -> PostStore:
    return PostStore()


@pytest.fixture
def transport() -> InMemoryTransport:
    return InMemoryTransport(max_batch_size=10)


@pytest.fixture
def sink() -> CollectingSink:
    return CollectingSink()


@pytest.fixture
def make_rpc(
    store: PostStore, transport: InMemoryTransport, sink: CollectingSink
) -> Callable[..., LiveRPC]:
    """Factory for a blog LiveRPC; keyword arguments go to LiveRPC."""

    def _make(**kwargs: Any) -> LiveRPC:
        kwargs.setdefault("sink", sink)
        return LiveRPC(blog_builder(store), kwargs.pop("transport", transport), **kwargs)

    return _make


@pytest.fixture
def rpc(make_rpc: Callable[..., LiveRPC]) -> LiveRPC:
    return make_rpc()
