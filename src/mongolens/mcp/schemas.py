from typing import Any, Dict, List, Literal, Optional

from bson import json_util
from pydantic import BaseModel, Field, field_validator

from mongolens.core.exceptions import ValidationError

Operation = Literal["insert", "update", "delete", "replace"]
Verbosity = Literal["queryPlanner", "executionStats", "allPlansExecution"]


def parse_json(field: str, value: Any, expected: type) -> Any:
    """Decode Extended JSON text ('{"_id": {"$oid": ...}}') into BSON-ready values."""
    if isinstance(value, str):
        try:
            value = json_util.loads(value)
        except ValueError as exc:
            raise ValidationError(field=field, reason=f"invalid JSON: {exc}", value=value) from exc
    if not isinstance(value, expected):
        raise ValidationError(
            field=field,
            reason=f"expected a JSON {'array' if expected is list else 'object'}",
            value=value,
        )
    return value


class CollectionInput(BaseModel):
    collection: str = Field(..., min_length=1, max_length=255)

    @field_validator("collection")
    @classmethod
    def validate_collection(cls, value: str) -> str:
        if value.startswith("$") or "\x00" in value:
            raise ValidationError(
                field="collection",
                reason="collection names cannot start with '$' or contain NUL",
                value=value,
            )
        return value


class DatabaseInput(BaseModel):
    database: str = Field(..., min_length=1, max_length=64)

    @field_validator("database")
    @classmethod
    def validate_database(cls, value: str) -> str:
        bad = set('/\\. "$') & set(value)
        if bad:
            raise ValidationError(
                field="database",
                reason=f"database names cannot contain {''.join(sorted(bad))!r}",
                value=value,
            )
        return value


class SchemaToolInput(CollectionInput):
    sample_size: int = Field(default=100, ge=1, le=10_000)


class CompareSchemasInput(BaseModel):
    source_collection: str = Field(..., min_length=1, max_length=255)
    target_collection: str = Field(..., min_length=1, max_length=255)
    sample_size: int = Field(default=100, ge=1, le=10_000)


class ValidatorToolInput(CollectionInput):
    strictness: Literal["strict", "moderate", "relaxed"] = "moderate"
    sample_size: int = Field(default=100, ge=1, le=10_000)


class QueryPatternsInput(CollectionInput):
    sample_size: int = Field(default=100, ge=1, le=10_000)
    profile_limit: int = Field(default=100, ge=1, le=1000)


class WatchChangesInput(CollectionInput):
    """Input for the watch_changes tool; the window is capped at one minute."""
    operations: List[Operation] = Field(default_factory=lambda: ["insert", "update", "delete"], min_length=1)
    duration: int = Field(default=10, ge=1, le=60, description="Seconds to watch")
    full_document: bool = Field(default=False, description="Include full document in update events")


class FilterInput(CollectionInput):
    filter: Dict[str, Any] = Field(default_factory=dict, description="MongoDB query filter as JSON")

    @field_validator("filter", mode="before")
    @classmethod
    def validate_filter(cls, value: Any) -> Dict[str, Any]:
        return parse_json("filter", value, dict)


class FindDocumentsInput(FilterInput):
    projection: Optional[Dict[str, Any]] = None
    limit: int = Field(default=10, ge=1, le=1000)
    skip: int = Field(default=0, ge=0)
    sort: Optional[Dict[str, Any]] = None

    @field_validator("projection", "sort", mode="before")
    @classmethod
    def validate_document(cls, value: Any, info) -> Optional[Dict[str, Any]]:
        if value is None or value == "":
            return None
        return parse_json(info.field_name, value, dict)


class CountDocumentsInput(FilterInput):
    pass


class DistinctValuesInput(FilterInput):
    field: str = Field(..., min_length=1)


class ExplainQueryInput(FilterInput):
    verbosity: Verbosity = "executionStats"


class AggregateInput(CollectionInput):
    pipeline: List[Dict[str, Any]]

    @field_validator("pipeline", mode="before")
    @classmethod
    def validate_pipeline(cls, value: Any) -> List[Dict[str, Any]]:
        stages = parse_json("pipeline", value, list)
        if not all(isinstance(stage, dict) for stage in stages):
            raise ValidationError(field="pipeline", reason="every stage must be a JSON object", value=value)
        return stages


class ToolResult(BaseModel):
    ok: bool
    data: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    code: Optional[int] = None

    @field_validator("error")
    @classmethod
    def validate_error(cls, value: Optional[str], info):
        if info.data.get("ok") and value:
            raise ValidationError(
                field="error",
                reason="error must be empty when ok is true",
                value=value
            )
        return value
