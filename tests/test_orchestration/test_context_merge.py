"""
Tests for Context and the fan-in merge rule.
"""

import pytest
from pydantic import BaseModel

from devicepulse.exceptions import ContextSchemaError, TelemetryValidationError
from devicepulse.orchestration.context import Context, merge_contexts


class _Needs(BaseModel):
    device_id: str
    value: int


class TestContext:
    def test_clone_is_deep(self):
        ctx = Context({"readings": {"temperature": 20.0}, "tags": ["a"]})
        clone = ctx.clone()
        clone["readings"]["temperature"] = 99.0
        clone["tags"].append("b")
        assert ctx["readings"]["temperature"] == 20.0
        assert ctx["tags"] == ["a"]

    def test_clone_drops_join_provenance(self):
        merged = merge_contexts([("a", Context({"x": 1})), ("b", Context({"y": 2}))])
        assert len(merged.joined) == 2
        assert merged.clone().joined == ()

    def test_preserves_insertion_order(self):
        ctx = Context()
        ctx["b"] = 1
        ctx["a"] = 2
        assert list(ctx) == ["b", "a"]

    def test_validate_returns_model(self):
        ctx = Context({"device_id": "device-1", "value": 3, "extra": True})
        model = ctx.validate(_Needs, "SomeTask")
        assert model.value == 3

    def test_validate_failure_is_validation_error(self):
        ctx = Context({"device_id": "device-1"})
        with pytest.raises(ContextSchemaError) as exc:
            ctx.validate(_Needs, "SomeTask")
        assert isinstance(exc.value, TelemetryValidationError)
        assert "SomeTask" in str(exc.value)
        assert any("value" in e for e in exc.value.errors)


class TestMerge:
    def test_first_non_null_by_source_name(self):
        late = Context({"score": 0.9, "only_b": "b"})
        early = Context({"score": None, "only_a": "a"})
        merged = merge_contexts([("B", late), ("A", early)])
        assert merged["score"] == 0.9
        assert merged["only_a"] == "a"
        assert merged["only_b"] == "b"

    def test_order_independent(self):
        a = Context({"shared": "from-a"})
        b = Context({"shared": "from-b"})
        first = merge_contexts([("A", a), ("B", b)])
        second = merge_contexts([("B", b), ("A", a)])
        assert first["shared"] == second["shared"] == "from-a"

    def test_owner_overrides_sort_order(self):
        a = Context({"weather": {"condition": "stale"}})
        b = Context({"weather": {"condition": "rain"}})
        merged = merge_contexts([("A", a), ("B", b)], owners={"weather": "B"})
        assert merged["weather"]["condition"] == "rain"

    def test_owner_with_null_falls_back(self):
        a = Context({"weather": {"condition": "clear"}})
        b = Context({"weather": None})
        merged = merge_contexts([("A", a), ("B", b)], owners={"weather": "B"})
        assert merged["weather"]["condition"] == "clear"

    def test_joined_sorted_by_source(self):
        b = Context({"k": "b"})
        a = Context({"k": "a"})
        merged = merge_contexts([("B", b), ("A", a)])
        assert [c["k"] for c in merged.joined] == ["a", "b"]

    def test_merged_values_are_copies(self):
        a = Context({"items": [1]})
        merged = merge_contexts([("A", a)])
        merged["items"].append(2)
        assert a["items"] == [1]
