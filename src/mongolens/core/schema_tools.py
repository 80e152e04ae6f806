"""
Schema-derived helpers: diffing, validator synthesis and query-pattern
analysis. All pure transforms over SchemaReport values.
"""

from typing import Any, Dict, List, Mapping, Optional

from bson import json_util

from mongolens.core.exceptions import ValidationError
from mongolens.core.schema import ARRAY_SUFFIX, SchemaReport, TypeTag, percent

STRICTNESS_THRESHOLDS = {
    "strict": 90,
    "moderate": 75,
    "relaxed": 60,
}

BSON_TYPES = {
    TypeTag.STRING.value: ["string"],
    TypeTag.NUMBER.value: ["number", "double", "int"],
    TypeTag.BOOLEAN.value: ["bool"],
    TypeTag.ARRAY.value: ["array"],
    TypeTag.OBJECT.value: ["object"],
    TypeTag.NULL.value: ["null"],
    TypeTag.DATE.value: ["date"],
    TypeTag.OBJECT_ID.value: ["objectId"],
}

SLOW_QUERY_MILLIS = 10
LARGE_ARRAY_ITEMS = 50

_QUERY_NAME_FRAGMENTS = ("id", "key", "date", "time")
_QUERY_NAMES = ("email", "name", "status")


def compare_schemas(source: SchemaReport, target: SchemaReport) -> Dict[str, Any]:
    """Field-level diff of two reports. Type lists are compared as sets."""
    result: Dict[str, Any] = {
        "source": source.collection_name,
        "target": target.collection_name,
        "common_fields": [],
        "source_only_fields": [],
        "target_only_fields": [],
        "type_differences": [],
    }

    for name, info in source.fields.items():
        other = target.fields.get(name)
        if other is None:
            result["source_only_fields"].append({"name": name, "types": list(info.types)})
            continue

        types_match = sorted(info.types) == sorted(other.types)
        result["common_fields"].append({
            "name": name,
            "source_types": list(info.types),
            "target_types": list(other.types),
            "types_match": types_match,
        })
        if not types_match:
            result["type_differences"].append({
                "field": name,
                "source_types": list(info.types),
                "target_types": list(other.types),
            })

    for name, info in target.fields.items():
        if name not in source.fields:
            result["target_only_fields"].append({"name": name, "types": list(info.types)})

    result["stats"] = {
        "source_field_count": len(source.fields),
        "target_field_count": len(target.fields),
        "common_field_count": len(result["common_fields"]),
        "mismatch_count": len(result["type_differences"]),
    }
    return result


def generate_json_schema_validator(report: SchemaReport, strictness: str = "moderate") -> Dict[str, Any]:
    """
    Build a ``$jsonSchema`` validator from top-level fields.

    A field is required when its coverage reaches the strictness threshold
    and it was never observed as null. Strict mode also forbids unknown
    properties.
    """
    if strictness not in STRICTNESS_THRESHOLDS:
        raise ValidationError(
            field="strictness",
            reason=f"must be one of {', '.join(STRICTNESS_THRESHOLDS)}",
            value=strictness,
        )
    threshold = STRICTNESS_THRESHOLDS[strictness]

    properties: Dict[str, Any] = {}
    required: List[str] = []

    for path, info in report.fields.items():
        if "." in path:
            continue
        name = path.replace(ARRAY_SUFFIX, "")

        bson_types: List[str] = []
        for tag in info.types:
            bson_types.extend(BSON_TYPES.get(tag, []))
        properties[name] = {"bsonType": bson_types[0] if len(bson_types) == 1 else bson_types}

        coverage = info.coverage or percent(info.count, report.sample_size)
        if coverage >= threshold and TypeTag.NULL.value not in info.types:
            required.append(name)

    schema: Dict[str, Any] = {
        "bsonType": "object",
        "required": required,
        "properties": properties,
    }
    if strictness == "strict":
        schema["additionalProperties"] = False
    return {"$jsonSchema": schema}


def _index_fields(index: Mapping[str, Any]) -> List[str]:
    return list((index.get("key") or {}).keys())


def analyze_query_patterns(
    collection: str,
    report: SchemaReport,
    indexes: List[Mapping[str, Any]],
    query_stats: Optional[List[Mapping[str, Any]]] = None,
) -> Dict[str, Any]:
    """
    Cross-reference indexes, profiled queries and the inferred schema.

    Args:
        collection: Collection name, echoed in the result.
        report: Inferred schema.
        indexes: Index definitions, optionally carrying ``usage`` from $indexStats.
        query_stats: Profiler entries (``command.filter``, ``millis``, ``planSummary``).
    """
    analysis: Dict[str, Any] = {
        "collection": collection,
        "index_recommendations": [],
        "unused_indexes": [],
        "schema_issues": [],
        "query_stats": [],
    }

    index_names = {index.get("name") for index in indexes}
    for index in indexes:
        name = index.get("name")
        usage = index.get("usage") or {}
        if name != "_id_" and not usage.get("ops"):
            analysis["unused_indexes"].append({
                "name": name,
                "fields": _index_fields(index),
                "properties": "unique" if index.get("unique") else "",
            })

    for stat in query_stats or []:
        command = stat.get("command") or {}
        query_filter = command.get("filter")
        if not query_filter:
            continue
        fields = list(query_filter.keys())
        millis = stat.get("millis") or 0
        rendered = json_util.dumps(query_filter)

        analysis["query_stats"].append({
            "filter": rendered,
            "fields": fields,
            "millis": millis,
            "scan_type": stat.get("planSummary", "Unknown"),
            "timestamp": stat.get("ts"),
        })

        covered = any(
            all(field in _index_fields(index) for field in fields) for index in indexes
        )
        if not covered and fields and millis > SLOW_QUERY_MILLIS:
            analysis["index_recommendations"].append({
                "fields": fields,
                "filter": rendered,
                "millis": millis,
            })

    for path, info in report.fields.items():
        sample = info.sample
        if TypeTag.ARRAY.value in info.types and isinstance(sample, (list, tuple)) and len(sample) > LARGE_ARRAY_ITEMS:
            analysis["schema_issues"].append({
                "field": path,
                "issue": "Large array",
                "description": (
                    f"Field contains arrays with {len(sample)}+ items, "
                    "which can cause performance issues."
                ),
            })

    # Fields already leading an index are covered
    leading = {fields[0] for fields in map(_index_fields, indexes) if fields}
    likely = []
    for path in report.fields:
        lowered = path.lower()
        looks_queried = any(f in lowered for f in _QUERY_NAME_FRAGMENTS) or lowered in _QUERY_NAMES
        if not looks_queried or path == "_id":
            continue
        if path not in leading and f"{path}_1" not in index_names:
            likely.append(path)
    if likely:
        analysis["index_recommendations"].append({
            "fields": likely,
            "filter": "Common query field pattern",
            "automatic": True,
        })

    return analysis


def generate_example_filter(report: SchemaReport) -> Dict[str, Any]:
    """A plausible filter over the first string, number or boolean field; {} if none."""
    for path, info in report.fields.items():
        if TypeTag.STRING.value in info.types:
            return {path: {"$regex": "example"}}
        if TypeTag.NUMBER.value in info.types:
            return {path: {"$gt": 0}}
        if TypeTag.BOOLEAN.value in info.types:
            return {path: True}
    return {}

