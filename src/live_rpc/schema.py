"""Parameter schemas.

The pipeline only needs one capability from a schema: ``safe_parse(raw)``
returning either the parsed value or an error. Any object with that method
works; ``PydanticSchema`` adapts anything pydantic can validate.
A schema may also offer ``dump(parsed)``; channel names for recomputed
queries are derived from it so they match what the client sent.

Usage:
    schema = as_schema(CreatePostParams)      # pydantic model
    schema = as_schema(dict[str, int])        # plain type
    schema = as_schema(None)                  # query takes no params

    result = schema.safe_parse({"title": "A"})
    if result.success:
        params = result.data
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable

from pydantic import TypeAdapter
from pydantic import ValidationError as PydanticValidationError


@dataclass(frozen=True)
class ParseResult:
    """Outcome of ``Schema.safe_parse``."""

    success: bool
    data: Any = None
    error: str | None = None

    @classmethod
    def ok(cls, data: Any) -> ParseResult:
        return cls(success=True, data=data)

    @classmethod
    def fail(cls, error: str) -> ParseResult:
        return cls(success=False, error=error)


@runtime_checkable
class Schema(Protocol):
    """Validation capability attached to every definition."""

    def safe_parse(self, raw: Any) -> ParseResult:
        """Parse raw input without raising."""
        ...


def _format_errors(exc: PydanticValidationError) -> str:
    messages = []
    for err in exc.errors():
        loc = ".".join(str(part) for part in err.get("loc", ()))
        msg = err.get("msg", "Invalid value")
        messages.append(f"{loc}: {msg}" if loc else msg)
    return "; ".join(messages) or "Invalid params"


class PydanticSchema:
    """Schema backed by a pydantic ``TypeAdapter``."""

    def __init__(self, tp: Any) -> None:
        self.type = tp
        self._adapter = TypeAdapter(tp)

    def safe_parse(self, raw: Any) -> ParseResult:
        try:
            return ParseResult.ok(self._adapter.validate_python(raw))
        except PydanticValidationError as e:
            return ParseResult.fail(_format_errors(e))

    def dump(self, value: Any) -> Any:
        """JSON data for a parsed value, keyed the way clients send it.

        Fields are emitted under their aliases and only when they were
        explicitly set, so dumping a value parsed from ``raw`` gives back
        the shape of ``raw``.
        """
        return self._adapter.dump_python(value, mode="json", by_alias=True, exclude_unset=True)

    def __repr__(self) -> str:
        return f"PydanticSchema({self.type!r})"


def as_schema(obj: Any) -> Schema:
    """Return ``obj`` if it already is a schema, otherwise wrap it for pydantic.

    ``None`` means the operation takes no parameters and only accepts None.
    """
    if isinstance(obj, Schema) and not isinstance(obj, type):
        return obj
    return PydanticSchema(type(None) if obj is None else obj)
