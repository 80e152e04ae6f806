"""
Text Formatters

Renders helper results as the plain-text summaries returned to agents.
Tables use tabulate; BSON values go through bson.json_util so ObjectIds
and datetimes stay readable.
"""

import json
from typing import Any, Dict, List, Mapping, Optional

from bson import json_util
from bson.json_util import RELAXED_JSON_OPTIONS
from tabulate import tabulate

from mongolens.core.schema import SchemaReport

TABLE_FORMAT = "github"
MEMBER_STATES = {1: "PRIMARY", 2: "SECONDARY"}


def to_jsonable(value: Any) -> Any:
    """Convert BSON-bearing data into plain JSON types."""
    return json.loads(json_util.dumps(value, json_options=RELAXED_JSON_OPTIONS))


def dumps(value: Any, indent: int = 2) -> str:
    return json_util.dumps(value, json_options=RELAXED_JSON_OPTIONS, indent=indent)


def truncate(text: str, max_length: int = 60, suffix: str = "...") -> str:
    if len(text) <= max_length:
        return text
    return text[: max_length - len(suffix)] + suffix


def format_bytes(size: Optional[float]) -> str:
    """Human readable size; 'N/A' when unknown."""
    if size is None:
        return "N/A"
    size = float(size)
    for unit in ("bytes", "KB", "MB", "GB", "TB"):
        if abs(size) < 1024 or unit == "TB":
            return f"{size:.0f} {unit}" if unit == "bytes" else f"{size:.2f} {unit}"
        size /= 1024
    return f"{size:.2f} TB"


def format_databases(databases: List[Mapping[str, Any]]) -> str:
    if not databases:
        return "No databases found."
    rows = [
        [db.get("name"), format_bytes(db.get("sizeOnDisk")), "yes" if db.get("empty") else "no"]
        for db in databases
    ]
    return f"Databases ({len(databases)}):\n" + tabulate(rows, headers=["Name", "Size", "Empty"], tablefmt=TABLE_FORMAT)


def format_collections(collections: List[Mapping[str, Any]], database: Optional[str] = None) -> str:
    where = f" in '{database}'" if database else ""
    if not collections:
        return f"No collections found{where}."
    rows = [[c.get("name"), c.get("type", "collection")] for c in collections]
    return (
        f"Collections{where} ({len(collections)}):\n"
        + tabulate(rows, headers=["Name", "Type"], tablefmt=TABLE_FORMAT)
    )


def format_schema(report: SchemaReport) -> str:
    header = (
        f"Schema for '{report.collection_name}' "
        f"(sampled {report.sample_size} documents at {report.timestamp}):"
    )
    if not report.fields:
        return header + "\nNo fields found."
    rows = [
        [path, ", ".join(info.types), f"{info.coverage}%", truncate(dumps(info.sample, indent=None))]
        for path, info in report.fields.items()
    ]
    return header + "\n" + tabulate(rows, headers=["Field", "Types", "Coverage", "Sample"], tablefmt=TABLE_FORMAT)


def format_schema_comparison(result: Dict[str, Any]) -> str:
    stats = result["stats"]
    lines = [
        f"Schema comparison: '{result['source']}' vs '{result['target']}'",
        f"  Source fields: {stats['source_field_count']}",
        f"  Target fields: {stats['target_field_count']}",
        f"  Common fields: {stats['common_field_count']}",
        f"  Type mismatches: {stats['mismatch_count']}",
    ]
    if result["source_only_fields"]:
        lines.append("\nOnly in source:")
        lines.extend(f"  - {f['name']} ({', '.join(f['types'])})" for f in result["source_only_fields"])
    if result["target_only_fields"]:
        lines.append("\nOnly in target:")
        lines.extend(f"  - {f['name']} ({', '.join(f['types'])})" for f in result["target_only_fields"])
    if result["type_differences"]:
        rows = [
            [d["field"], ", ".join(d["source_types"]), ", ".join(d["target_types"])]
            for d in result["type_differences"]
        ]
        lines.append("\nType differences:")
        lines.append(tabulate(rows, headers=["Field", "Source", "Target"], tablefmt=TABLE_FORMAT))
    return "\n".join(lines)


def format_validator(collection: str, strictness: str, validator: Dict[str, Any]) -> str:
    required = validator["$jsonSchema"].get("required", [])
    return (
        f"Generated {strictness} validator for '{collection}' "
        f"({len(required)} required fields):\n{dumps(validator)}\n\n"
        f"Apply with: db.runCommand({{collMod: \"{collection}\", validator: <above>}})"
    )


def format_query_analysis(analysis: Dict[str, Any]) -> str:
    lines = [f"Query pattern analysis for '{analysis['collection']}':"]

    if analysis["unused_indexes"]:
        lines.append("\nUnused indexes:")
        rows = [[i["name"], ", ".join(i["fields"]), i["properties"]] for i in analysis["unused_indexes"]]
        lines.append(tabulate(rows, headers=["Name", "Fields", "Properties"], tablefmt=TABLE_FORMAT))
    else:
        lines.append("\nNo unused indexes detected.")

    if analysis["index_recommendations"]:
        lines.append("\nIndex recommendations:")
        for rec in analysis["index_recommendations"]:
            reason = "common query field pattern" if rec.get("automatic") else f"{rec['millis']}ms on {rec['filter']}"
            lines.append(f"  - {{{', '.join(f'{f}: 1' for f in rec['fields'])}}} ({reason})")

    if analysis["schema_issues"]:
        lines.append("\nSchema issues:")
        lines.extend(f"  - {i['field']}: {i['issue']}. {i['description']}" for i in analysis["schema_issues"])

    if analysis["query_stats"]:
        rows = [[truncate(q["filter"]), q["millis"], q["scan_type"]] for q in analysis["query_stats"]]
        lines.append(f"\nProfiled queries ({len(rows)}):")
        lines.append(tabulate(rows, headers=["Filter", "ms", "Plan"], tablefmt=TABLE_FORMAT))
    else:
        lines.append("\nNo profiled queries found (enable the profiler for query-level analysis).")

    return "\n".join(lines)


def format_collection_stats(name: str, stats: Mapping[str, Any]) -> str:
    rows = [
        ["Documents", stats.get("count", 0)],
        ["Data size", format_bytes(stats.get("size"))],
        ["Storage size", format_bytes(stats.get("storageSize"))],
        ["Average document size", format_bytes(stats.get("avgObjSize"))],
        ["Indexes", stats.get("nindexes", 0)],
        ["Total index size", format_bytes(stats.get("totalIndexSize"))],
        ["Capped", "yes" if stats.get("capped") else "no"],
    ]
    return f"Statistics for collection '{name}':\n" + tabulate(rows, tablefmt=TABLE_FORMAT)


def format_indexes(name: str, indexes: List[Mapping[str, Any]]) -> str:
    if not indexes:
        return f"No indexes found on '{name}'."
    rows = []
    for index in indexes:
        usage = index.get("usage") or {}
        flags = [flag for flag in ("unique", "sparse") if index.get(flag)]
        rows.append([
            index.get("name"),
            dumps(index.get("key", {}), indent=None),
            ", ".join(flags),
            usage.get("ops", "N/A"),
        ])
    return (
        f"Indexes on '{name}' ({len(indexes)}):\n"
        + tabulate(rows, headers=["Name", "Key", "Properties", "Ops"], tablefmt=TABLE_FORMAT)
    )


def format_validation(name: str, info: Mapping[str, Any]) -> str:
    if not info.get("has_validation"):
        return f"Collection '{name}' has no validation rules."
    return (
        f"Validation for '{name}' "
        f"(level: {info['validation_level']}, action: {info['validation_action']}):\n"
        f"{dumps(info['validator'])}"
    )


def format_server_status(status: Mapping[str, Any]) -> str:
    if "error" in status:
        return (
            f"Server status unavailable for {status.get('host', 'unknown')}: {status['error']}"
        )
    connections = status.get("connections") or {}
    mem = status.get("mem") or {}
    rows = [
        ["Host", status.get("host", "unknown")],
        ["Version", status.get("version", "unknown")],
        ["Process", status.get("process", "unknown")],
        ["Uptime (s)", status.get("uptime", "N/A")],
        ["Connections", f"{connections.get('current', 'N/A')} current, {connections.get('available', 'N/A')} available"],
        ["Resident memory (MB)", mem.get("resident", "N/A")],
    ]
    return "Server status:\n" + tabulate(rows, tablefmt=TABLE_FORMAT)


def format_users(result: Mapping[str, Any]) -> str:
    if "error" in result:
        return f"{result.get('info', 'Could not retrieve users.')}\nError: {result['error']}"
    users = result.get("users") or []
    if not users:
        return "No users defined for this database."
    rows = [
        [u.get("user"), u.get("db"), ", ".join(f"{r.get('role')}@{r.get('db')}" for r in u.get("roles", []))]
        for u in users
    ]
    return f"Users ({len(users)}):\n" + tabulate(rows, headers=["User", "Database", "Roles"], tablefmt=TABLE_FORMAT)


def format_changes(changes: List[Mapping[str, Any]], duration: float) -> str:
    if not changes:
        return f"No changes detected during {duration:g} second window."
    lines = [f"Detected {len(changes)} changes during {duration:g} second window:"]
    for change in changes:
        op = change.get("operationType", "unknown")
        key = (change.get("documentKey") or {}).get("_id")
        lines.append(f"  - {op} {dumps(key, indent=None)}")
        if change.get("fullDocument") is not None:
            lines.append(f"    {truncate(dumps(change['fullDocument'], indent=None), 200)}")
    return "\n".join(lines)


def format_documents(documents: List[Mapping[str, Any]], limit: Optional[int] = None) -> str:
    if not documents:
        return "No documents found."
    limit_note = f" (limit: {limit})" if limit is not None else ""
    return f"{len(documents)} document(s){limit_note}:\n" + "\n".join(dumps(doc) for doc in documents)


def format_distinct_values(field: str, values: List[Any]) -> str:
    if not values:
        return f"No distinct values found for field '{field}'."
    lines = [f"Distinct values for field '{field}' ({len(values)}):"]
    lines.extend(f"  - {dumps(value, indent=None)}" for value in values)
    return "\n".join(lines)


def format_explanation(explanation: Mapping[str, Any]) -> str:
    lines = ["Query explanation:"]
    planner = explanation.get("queryPlanner")
    if planner:
        lines.append("\nQuery planner:")
        lines.append(f"  Namespace: {planner.get('namespace')}")
        lines.append(f"  Index filter set: {'yes' if planner.get('indexFilterSet') else 'no'}")
        lines.append(f"  Winning plan:\n{dumps(planner.get('winningPlan', {}))}")
    stats = explanation.get("executionStats")
    if stats:
        rows = [
            ["Execution success", stats.get("executionSuccess")],
            ["Documents returned", stats.get("nReturned", "N/A")],
            ["Documents examined", stats.get("totalDocsExamined")],
            ["Keys examined", stats.get("totalKeysExamined")],
            ["Execution time (ms)", stats.get("executionTimeMillis")],
        ]
        lines.append("\nExecution stats:")
        lines.append(tabulate(rows, tablefmt=TABLE_FORMAT))
    return "\n".join(lines)


def format_replica_status(status: Mapping[str, Any]) -> str:
    if "error" in status:
        return f"Replica set status not available: {status.get('info')}\nError: {status['error']}"
    lines = [
        f"Replica set: {status.get('set', 'unknown')}",
        f"State: {MEMBER_STATES.get(status.get('myState'), 'OTHER')}",
        f"Current time: {status.get('date', 'unknown')}",
    ]
    members = status.get("members") or []
    if members:
        rows = [
            [m.get("name"), m.get("stateStr"), m.get("health"), m.get("uptime", "N/A"), m.get("syncSourceHost") or ""]
            for m in members
        ]
        lines.append(f"\nMembers ({len(members)}):")
        lines.append(
            tabulate(rows, headers=["Name", "State", "Health", "Uptime (s)", "Syncing to"], tablefmt=TABLE_FORMAT)
        )
    return "\n".join(lines)


def format_performance_metrics(metrics: Mapping[str, Any]) -> str:
    if "error" in metrics:
        return f"Error retrieving metrics: {metrics['error']}"

    server = metrics.get("server_status") or {}
    lines = ["Performance metrics:"]
    connections = server.get("connections") or {}
    if connections:
        lines.append(
            f"\nConnections: {connections.get('current', 'N/A')} current, "
            f"{connections.get('available', 'N/A')} available"
        )
    opcounters = server.get("opcounters") or {}
    if opcounters:
        lines.append("\nOperation counters (since server start):")
        lines.append(tabulate(list(opcounters.items()), headers=["Operation", "Count"], tablefmt=TABLE_FORMAT))
    cache = server.get("wired_tiger") or {}
    if cache:
        rows = [
            ["Pages read", cache.get("pages read into cache", "N/A")],
            ["Configured maximum", format_bytes(cache.get("maximum bytes configured"))],
            ["In cache", format_bytes(cache.get("bytes currently in the cache"))],
            ["Dirty", format_bytes(cache.get("tracked dirty bytes in the cache"))],
        ]
        lines.append("\nWiredTiger cache:")
        lines.append(tabulate(rows, tablefmt=TABLE_FORMAT))

    profile = metrics.get("profile_settings") or {}
    lines.append(
        f"\nProfiling level: {profile.get('was', 'N/A')} "
        f"(slow query threshold: {profile.get('slowms', 'N/A')}ms)"
    )

    operations = metrics.get("current_operations") or []
    if operations:
        lines.append(f"\nLong-running operations ({len(operations)}):")
        for op in operations:
            lines.append(f"  - {op.get('op')} on {op.get('ns')} running for {op.get('secs_running')}s")
            detail = op.get("command") or op.get("query")
            if detail:
                lines.append(f"    {truncate(dumps(detail, indent=None), 200)}")
    else:
        lines.append("\nNo long-running operations.")
    return "\n".join(lines)
