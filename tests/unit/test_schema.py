"""Unit tests for schema adapters."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel, Field

from live_rpc.schema import ParseResult, PydanticSchema, Schema, as_schema


class Params(BaseModel):
    id: int


class AliasedParams(BaseModel):
    post_id: int = Field(alias="postId")
    draft: bool = False


@dataclass
class DataclassParams:
    id: int


class UpperSchema:
    """Hand-written schema accepting strings only."""

    def safe_parse(self, raw: Any) -> ParseResult:
        if isinstance(raw, str):
            return ParseResult.ok(raw.upper())
        return ParseResult.fail("expected a string")


class TestPydanticSchema:
    def test_parses_model(self) -> None:
        result = PydanticSchema(Params).safe_parse({"id": "3"})
        assert result.success is True
        assert result.data == Params(id=3)

    def test_reports_error_with_location(self) -> None:
        result = PydanticSchema(Params).safe_parse({"id": "nope"})
        assert result.success is False
        assert result.data is None
        assert result.error is not None
        assert result.error.startswith("id:")

    def test_missing_field(self) -> None:
        result = PydanticSchema(Params).safe_parse({})
        assert result.success is False
        assert "id" in (result.error or "")

    def test_plain_type(self) -> None:
        schema = PydanticSchema(dict[str, int])
        assert schema.safe_parse({"a": 1}).data == {"a": 1}
        assert schema.safe_parse({"a": "x"}).success is False

    def test_dump_uses_aliases_and_set_fields(self) -> None:
        schema = PydanticSchema(AliasedParams)
        parsed = schema.safe_parse({"postId": 1}).data
        assert schema.dump(parsed) == {"postId": 1}

    def test_dump_dataclass(self) -> None:
        schema = PydanticSchema(DataclassParams)
        parsed = schema.safe_parse({"id": "4"}).data
        assert parsed == DataclassParams(id=4)
        assert schema.dump(parsed) == {"id": 4}

    def test_dump_none(self) -> None:
        assert as_schema(None).dump(None) is None


class TestAsSchema:
    def test_none_accepts_only_none(self) -> None:
        schema = as_schema(None)
        assert schema.safe_parse(None).success is True
        assert schema.safe_parse({"a": 1}).success is False

    def test_custom_schema_returned_as_is(self) -> None:
        custom = UpperSchema()
        assert as_schema(custom) is custom
        assert as_schema(custom).safe_parse("a").data == "A"

    def test_model_class_wrapped(self) -> None:
        schema = as_schema(Params)
        assert isinstance(schema, PydanticSchema)
        assert isinstance(schema, Schema)
