"""
Mongo Lens Test Suite — Schema Inference
"""

import asyncio
import dataclasses
from datetime import datetime, timezone

import pytest
from bson import Decimal128, Int64, ObjectId, Timestamp
from pymongo.errors import OperationFailure

from mongolens.core.cache import CacheNamespace
from mongolens.core.exceptions import (
    CollectionNotFoundError,
    EmptyCollectionError,
    PermissionDeniedError,
    QueryError,
)
from mongolens.core.schema import (
    MISSING,
    TypeTag,
    build_schema_report,
    collect_field_paths,
    get_nested_value,
    percent,
    type_tag,
)


class TestTypeTag:
    @pytest.mark.parametrize(
        "value,expected",
        [
            (None, TypeTag.NULL),
            (MISSING, TypeTag.UNDEFINED),
            (True, TypeTag.BOOLEAN),
            (0, TypeTag.NUMBER),
            (1.5, TypeTag.NUMBER),
            (Int64(7), TypeTag.NUMBER),
            (Decimal128("1.10"), TypeTag.NUMBER),
            ("x", TypeTag.STRING),
            ([1, 2], TypeTag.ARRAY),
            ({"a": 1}, TypeTag.OBJECT),
            (ObjectId(), TypeTag.OBJECT_ID),
            (datetime(2024, 1, 1, tzinfo=timezone.utc), TypeTag.DATE),
            (Timestamp(1700000000, 1), TypeTag.DATE),
            (b"raw", TypeTag.OBJECT),
        ],
    )
    def test_tags(self, value, expected):
        assert type_tag(value) is expected

    def test_bool_is_not_number(self):
        assert type_tag(False) is TypeTag.BOOLEAN


class TestFieldPaths:
    def test_discovery_example(self):
        doc = {"a": 1, "b": {"c": 2}, "d": [{"e": 3}], "f": [1, 2, 3]}
        assert collect_field_paths(doc) == {"a", "b", "b.c", "d[]", "d[].e", "f"}

    def test_array_of_objects_uses_suffix(self):
        doc = {"d": [{"e": 3}]}
        paths = collect_field_paths(doc)
        assert "d[].e" in paths
        assert "d.e" not in paths
        assert "d" not in paths

    def test_only_first_array_element_is_expanded(self):
        doc = {"items": [{"sku": 1}, {"price": 2}]}
        assert collect_field_paths(doc) == {"items[]", "items[].sku"}

    def test_special_types_are_leaves(self):
        doc = {"_id": ObjectId(), "at": datetime(2024, 1, 1)}
        assert collect_field_paths(doc) == {"_id", "at"}

    def test_array_of_arrays_not_descended(self):
        assert collect_field_paths({"m": [[{"x": 1}]]}) == {"m"}

    def test_nested_value_lookup(self):
        doc = {"b": {"c": 2}, "d": [{"e": 3}], "n": None}
        assert get_nested_value(doc, "b.c") == 2
        assert get_nested_value(doc, "d[].e") == 3
        assert get_nested_value(doc, "n") is None
        assert get_nested_value(doc, "b.x") is MISSING
        assert get_nested_value(doc, "n.deep") is MISSING
        assert get_nested_value(doc, "d[]") == [{"e": 3}]
        assert get_nested_value({"d": []}, "d[].e") is MISSING
        assert get_nested_value({"d": "scalar"}, "d[]") is MISSING


class TestBuildReport:
    def test_coverage_and_types(self):
        docs = [{"n": 1}, {"n": 2.5}, {"n": 3}, {"other": "x"}]
        report = build_schema_report("c", docs)

        assert report.sample_size == 4
        assert report.fields["n"].count == 3
        assert report.fields["n"].coverage == 75
        assert report.fields["n"].types == ("number",)
        assert report.fields["other"].coverage == 25

    def test_late_field_counts_against_full_sample(self):
        docs = [{"a": 1}] * 9 + [{"a": 1, "late": True}]
        report = build_schema_report("c", docs)
        assert report.fields["late"].coverage == 10

    def test_null_counts_but_is_not_sample(self):
        docs = [{"v": None}, {"v": "x"}]
        info = build_schema_report("c", docs).fields["v"]
        assert info.count == 2
        assert info.sample == "x"
        assert info.types == ("null", "string")

    def test_array_suffix_fields_measured(self):
        docs = [{"d": [{"e": 3}]}, {"d": [{"e": "x"}]}, {"d": []}]
        report = build_schema_report("c", docs)
        assert report.fields["d[].e"].count == 2
        assert report.fields["d[].e"].types == ("number", "string")
        assert report.fields["d[]"].count == 3
        assert report.fields["d[]"].types == ("array",)
        assert report.fields["d"].types == ("array",)

    def test_report_is_read_only(self):
        report = build_schema_report("c", [{"a": 1}])

        with pytest.raises(TypeError):
            report.fields["b"] = report.fields["a"]
        with pytest.raises(dataclasses.FrozenInstanceError):
            report.fields["a"].coverage = 0
        with pytest.raises(dataclasses.FrozenInstanceError):
            report.sample_size = 99

    def test_empty_sample_raises(self):
        with pytest.raises(EmptyCollectionError):
            build_schema_report("c", [])

    def test_percent_rounds_half_up(self):
        assert percent(1, 8) == 13
        assert percent(1, 3) == 33
        assert percent(3, 4) == 75

    def test_to_dict(self):
        report = build_schema_report("c", [{"a": 1}])
        data = report.to_dict()
        assert data["collection_name"] == "c"
        assert data["fields"]["a"] == {
            "path": "a", "types": ["number"], "count": 1, "sample": 1, "coverage": 100,
        }


class TestSchemaInferenceEngine:
    @pytest.mark.asyncio
    async def test_infer_orders(self, container):
        report = await container.schema_engine.infer_schema("orders")

        assert report.collection_name == "orders"
        assert report.sample_size == 4
        assert report.fields["sku"].coverage == 100
        assert report.fields["customer.email"].coverage == 25
        assert report.fields["items[].price"].types == ("number",)
        assert report.fields["tags"].types == ("array",)

    @pytest.mark.asyncio
    async def test_sampling_pipeline(self, container, mongo_server):
        await container.schema_engine.infer_schema("orders", 50)

        call = mongo_server.database("shop").collections["orders"].aggregate_calls[0]
        assert call["pipeline"] == [{"$sample": {"size": 50}}]
        assert call["allowDiskUse"] is True
        assert call["batchSize"] == 50

    @pytest.mark.asyncio
    async def test_second_call_served_from_cache(self, container, mongo_server):
        orders = mongo_server.database("shop").collections["orders"]

        first = await container.schema_engine.infer_schema("orders", 50)
        second = await container.schema_engine.infer_schema("orders", 50)

        sample_calls = [c for c in orders.aggregate_calls if "$sample" in c["pipeline"][0]]
        assert len(sample_calls) == 1
        assert first.to_dict() == second.to_dict()

    @pytest.mark.asyncio
    async def test_concurrent_misses_share_one_sample(self, container, mongo_server):
        orders = mongo_server.database("shop").collections["orders"]

        a, b = await asyncio.gather(
            container.schema_engine.infer_schema("orders", 20),
            container.schema_engine.infer_schema("orders", 20),
        )

        assert len(orders.aggregate_calls) == 1
        assert a is b

    @pytest.mark.asyncio
    async def test_sample_size_is_part_of_cache_key(self, container, mongo_server):
        orders = mongo_server.database("shop").collections["orders"]
        await container.schema_engine.infer_schema("orders", 10)
        await container.schema_engine.infer_schema("orders", 20)
        assert len(orders.aggregate_calls) == 2

    @pytest.mark.asyncio
    async def test_populates_schema_and_fields_cache(self, container):
        report = await container.schema_engine.infer_schema("orders", 50)

        assert container.cache.get(CacheNamespace.SCHEMAS, "shop.orders.50") is report
        assert container.cache.get(CacheNamespace.FIELDS, "shop.orders") == report.field_names()

    @pytest.mark.asyncio
    async def test_missing_collection_raises_before_sampling(self, container, mongo_server):
        with pytest.raises(CollectionNotFoundError) as exc_info:
            await container.schema_engine.infer_schema("ghosts")
        assert "does not exist" in str(exc_info.value)
        assert all(not c.aggregate_calls for c in mongo_server.database("shop").collections.values())

    @pytest.mark.asyncio
    async def test_existence_checked_even_when_cached(self, container, mongo_server):
        await container.schema_engine.infer_schema("orders", 5)
        del mongo_server.database("shop").collections["orders"]

        with pytest.raises(CollectionNotFoundError):
            await container.schema_engine.infer_schema("orders", 5)

    @pytest.mark.asyncio
    async def test_empty_collection(self, container, mongo_server):
        mongo_server.database("shop").add_collection("empty")
        with pytest.raises(EmptyCollectionError):
            await container.schema_engine.infer_schema("empty")

    @pytest.mark.asyncio
    async def test_driver_error_becomes_query_error(self, container, mongo_server):
        orders = mongo_server.database("shop").collections["orders"]
        orders.aggregate_error = OperationFailure("$sample stage failed", code=28799)

        with pytest.raises(QueryError) as exc_info:
            await container.schema_engine.infer_schema("orders")

        assert not isinstance(exc_info.value, PermissionDeniedError)
        assert "$sample stage failed" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_permission_error_is_distinguishable(self, container, mongo_server):
        orders = mongo_server.database("shop").collections["orders"]
        orders.aggregate_error = OperationFailure("not authorized on shop", code=13)

        with pytest.raises(PermissionDeniedError):
            await container.schema_engine.infer_schema("orders")

    @pytest.mark.asyncio
    async def test_get_fields_uses_cache(self, container, mongo_server):
        container.cache.set(CacheNamespace.FIELDS, "shop.orders", ["cached"])
        assert await container.schema_engine.get_fields("orders") == ["cached"]
        assert not mongo_server.database("shop").collections["orders"].aggregate_calls

    @pytest.mark.asyncio
    async def test_get_fields_falls_back_to_small_sample(self, container, mongo_server):
        fields = await container.schema_engine.get_fields("orders")

        assert "sku" in fields
        call = mongo_server.database("shop").collections["orders"].aggregate_calls[0]
        assert call["pipeline"] == [{"$sample": {"size": 5}}]

    @pytest.mark.asyncio
    async def test_get_fields_missing_collection_is_empty(self, container):
        assert await container.schema_engine.get_fields("ghosts") == []
