"""
Mongo Lens MCP Server
=====================
Tools, resources and prompts exposing the database to agent clients.
"""

from contextlib import asynccontextmanager
from typing import Any, Awaitable, Callable, Dict, List

from loguru import logger
from pydantic import ValidationError as PydanticValidationError

from mongolens.core.config import LensConfig, SUPPORTED_TRANSPORTS, get_config
from mongolens.core.container import Container, build_container
from mongolens.core.database import AGGREGATE_RESULT_LIMIT
from mongolens.core.exceptions import (
    DependencyMissingError,
    ErrorCode,
    MongoLensError,
    UnsupportedTransportError,
    is_debug_mode,
)
from mongolens.core.schema_tools import (
    analyze_query_patterns as build_query_analysis,
    compare_schemas as build_schema_comparison,
    generate_example_filter,
    generate_json_schema_validator,
)
from mongolens.mcp import formatters as fmt
from mongolens.mcp.schemas import (
    AggregateInput,
    CollectionInput,
    CompareSchemasInput,
    CountDocumentsInput,
    DatabaseInput,
    DistinctValuesInput,
    ExplainQueryInput,
    FindDocumentsInput,
    QueryPatternsInput,
    SchemaToolInput,
    ToolResult,
    ValidatorToolInput,
    WatchChangesInput,
)

HEALTH_CHECK_INDEX_COLLECTIONS = 5
HEALTH_CHECK_SCHEMA_COLLECTIONS = 3


def _result_ok(data: Dict[str, Any]) -> Dict[str, Any]:
    return ToolResult(ok=True, data=data).model_dump(exclude={"error", "code"})


def _result_error(message: str, code: int = ErrorCode.SERVER_ERROR) -> Dict[str, Any]:
    return ToolResult(ok=False, error=message, code=int(code)).model_dump(exclude={"data"})


async def with_error_handling(call: Callable[[], Awaitable[Dict[str, Any]]]) -> Dict[str, Any]:
    try:
        return _result_ok(await call())
    except MongoLensError as exc:
        logger.warning(f"Tool failed [{exc.category.value}]: {exc.message}")
        if is_debug_mode():
            logger.debug(f"Tool error detail: {exc.to_dict(include_traceback=True)}")
        return _result_error(exc.message, exc.rpc_code)
    except PydanticValidationError as exc:
        return _result_error(f"Invalid arguments: {exc}")
    except Exception as exc:
        logger.exception("Unexpected tool failure")
        return _result_error(f"Unexpected error: {exc}")


async def resource_text(call: Callable[[], Awaitable[str]]) -> str:
    try:
        return await call()
    except MongoLensError as exc:
        return f"Error: {exc.message}"


def build_server(config: LensConfig | None = None, container: Container | None = None):
    cfg = config or get_config()

    try:
        from mcp.server.fastmcp import FastMCP
    except ImportError as exc:
        raise DependencyMissingError(
            dependency="mcp",
            message="Install package 'mcp' to run the MCP server."
        ) from exc

    app = container or build_container(cfg)

    @asynccontextmanager
    async def lifespan(_server):
        await app.startup(cfg.mongo.uri)
        try:
            yield app
        finally:
            await app.shutdown()

    server = FastMCP("Mongo Lens", lifespan=lifespan, host=cfg.mcp.host, port=cfg.mcp.port)
    allow_tools = set(cfg.mcp.allow_tools)

    def register_tool(name: str, fn: Callable[[], None]) -> None:
        if name in allow_tools:
            fn()
        else:
            logger.info(f"Skipping disabled MCP tool: {name}")

    # --- Databases ---

    def register_list_databases() -> None:
        @server.tool()
        async def list_databases() -> Dict[str, Any]:
            """List all databases on the server."""
            async def call():
                databases = await app.database.list_databases()
                return {"databases": fmt.to_jsonable(databases), "text": fmt.format_databases(databases)}
            return await with_error_handling(call)

    def register_current_database() -> None:
        @server.tool()
        async def current_database() -> Dict[str, Any]:
            """Show the database currently in use."""
            async def call():
                name = app.connection.current_database_name
                return {"database": name, "text": f"Current database: {name}"}
            return await with_error_handling(call)

    def register_use_database() -> None:
        @server.tool()
        async def use_database(database: str) -> Dict[str, Any]:
            """Switch to another existing database."""
            async def call():
                data = DatabaseInput(database=database)
                await app.connection.switch_database(data.database)
                return {"database": data.database, "text": f"Switched to database: {data.database}"}
            return await with_error_handling(call)

    def register_list_collections() -> None:
        @server.tool()
        async def list_collections() -> Dict[str, Any]:
            """List collections in the current database."""
            async def call():
                collections = await app.database.list_collections()
                return {
                    "collections": fmt.to_jsonable(collections),
                    "text": fmt.format_collections(collections, app.connection.current_database_name),
                }
            return await with_error_handling(call)

    # --- Schema ---

    def register_analyze_schema() -> None:
        @server.tool()
        async def analyze_schema(collection: str, sample_size: int = 100) -> Dict[str, Any]:
            """Infer a collection's schema from a random sample of documents."""
            async def call():
                data = SchemaToolInput(collection=collection, sample_size=sample_size)
                report = await app.schema_engine.infer_schema(data.collection, data.sample_size)
                return {
                    "schema": fmt.to_jsonable(report.to_dict()),
                    "example_filter": fmt.to_jsonable(generate_example_filter(report)),
                    "text": fmt.format_schema(report),
                }
            return await with_error_handling(call)

    def register_compare_schemas() -> None:
        @server.tool()
        async def compare_schemas(
            source_collection: str,
            target_collection: str,
            sample_size: int = 100,
        ) -> Dict[str, Any]:
            """Compare the inferred schemas of two collections."""
            async def call():
                data = CompareSchemasInput(
                    source_collection=source_collection,
                    target_collection=target_collection,
                    sample_size=sample_size,
                )
                source = await app.schema_engine.infer_schema(data.source_collection, data.sample_size)
                target = await app.schema_engine.infer_schema(data.target_collection, data.sample_size)
                comparison = build_schema_comparison(source, target)
                return {"comparison": comparison, "text": fmt.format_schema_comparison(comparison)}
            return await with_error_handling(call)

    def register_generate_schema_validator() -> None:
        @server.tool()
        async def generate_schema_validator(
            collection: str,
            strictness: str = "moderate",
            sample_size: int = 100,
        ) -> Dict[str, Any]:
            """Generate a $jsonSchema validator from the inferred schema."""
            async def call():
                data = ValidatorToolInput(collection=collection, strictness=strictness, sample_size=sample_size)
                report = await app.schema_engine.infer_schema(data.collection, data.sample_size)
                validator = generate_json_schema_validator(report, data.strictness)
                return {
                    "validator": validator,
                    "text": fmt.format_validator(data.collection, data.strictness, validator),
                }
            return await with_error_handling(call)

    def register_analyze_query_patterns() -> None:
        @server.tool()
        async def analyze_query_patterns(
            collection: str,
            sample_size: int = 100,
            profile_limit: int = 100,
        ) -> Dict[str, Any]:
            """Find unused indexes, missing indexes and schema issues."""
            async def call():
                data = QueryPatternsInput(
                    collection=collection, sample_size=sample_size, profile_limit=profile_limit
                )
                report = await app.schema_engine.infer_schema(data.collection, data.sample_size)
                indexes = await app.database.get_collection_indexes(data.collection)
                profiled = await app.database.get_profiled_queries(data.collection, data.profile_limit)
                analysis = build_query_analysis(data.collection, report, indexes, profiled)
                return {"analysis": fmt.to_jsonable(analysis), "text": fmt.format_query_analysis(analysis)}
            return await with_error_handling(call)

    # --- Collections ---

    def register_collection_stats() -> None:
        @server.tool()
        async def collection_stats(collection: str) -> Dict[str, Any]:
            """Storage statistics for a collection."""
            async def call():
                data = CollectionInput(collection=collection)
                stats = await app.database.get_collection_stats(data.collection)
                return {"stats": fmt.to_jsonable(stats), "text": fmt.format_collection_stats(data.collection, stats)}
            return await with_error_handling(call)

    def register_collection_indexes() -> None:
        @server.tool()
        async def collection_indexes(collection: str) -> Dict[str, Any]:
            """Indexes on a collection with usage counters where available."""
            async def call():
                data = CollectionInput(collection=collection)
                indexes = await app.database.get_collection_indexes(data.collection)
                return {"indexes": fmt.to_jsonable(indexes), "text": fmt.format_indexes(data.collection, indexes)}
            return await with_error_handling(call)

    def register_collection_validation() -> None:
        @server.tool()
        async def collection_validation(collection: str) -> Dict[str, Any]:
            """Validation rules configured on a collection."""
            async def call():
                data = CollectionInput(collection=collection)
                info = await app.database.get_collection_validation(data.collection)
                return {"validation": fmt.to_jsonable(info), "text": fmt.format_validation(data.collection, info)}
            return await with_error_handling(call)

    # --- Documents ---

    def register_find_documents() -> None:
        @server.tool()
        async def find_documents(
            collection: str,
            filter: str = "{}",
            projection: str | None = None,
            limit: int = 10,
            skip: int = 0,
            sort: str | None = None,
        ) -> Dict[str, Any]:
            """Run a find query. filter, projection and sort are Extended JSON strings."""
            async def call():
                data = FindDocumentsInput(
                    collection=collection, filter=filter, projection=projection,
                    limit=limit, skip=skip, sort=sort,
                )
                documents = await app.database.find_documents(
                    data.collection, data.filter, data.projection, data.limit, data.skip, data.sort
                )
                return {"documents": fmt.to_jsonable(documents), "text": fmt.format_documents(documents, data.limit)}
            return await with_error_handling(call)

    def register_count_documents() -> None:
        @server.tool()
        async def count_documents(collection: str, filter: str = "{}") -> Dict[str, Any]:
            """Count documents matching a filter."""
            async def call():
                data = CountDocumentsInput(collection=collection, filter=filter)
                count = await app.database.count_documents(data.collection, data.filter)
                return {"count": count, "text": f"Count: {count} document(s)"}
            return await with_error_handling(call)

    def register_aggregate_data() -> None:
        @server.tool()
        async def aggregate_data(collection: str, pipeline: str) -> Dict[str, Any]:
            """Run an aggregation pipeline given as a JSON array of stages."""
            async def call():
                data = AggregateInput(collection=collection, pipeline=pipeline)
                results = await app.database.aggregate(data.collection, data.pipeline)
                return {
                    "results": fmt.to_jsonable(results),
                    "text": fmt.format_documents(results, AGGREGATE_RESULT_LIMIT),
                }
            return await with_error_handling(call)

    def register_distinct_values() -> None:
        @server.tool()
        async def distinct_values(collection: str, field: str, filter: str = "{}") -> Dict[str, Any]:
            """Distinct values of a field, optionally restricted by a filter."""
            async def call():
                data = DistinctValuesInput(collection=collection, field=field, filter=filter)
                values = await app.database.get_distinct_values(data.collection, data.field, data.filter)
                return {"values": fmt.to_jsonable(values), "text": fmt.format_distinct_values(data.field, values)}
            return await with_error_handling(call)

    def register_explain_query() -> None:
        @server.tool()
        async def explain_query(
            collection: str,
            filter: str = "{}",
            verbosity: str = "executionStats",
        ) -> Dict[str, Any]:
            """Show the execution plan for a find filter."""
            async def call():
                data = ExplainQueryInput(collection=collection, filter=filter, verbosity=verbosity)
                explanation = await app.database.explain_query(data.collection, data.filter, data.verbosity)
                return {"explanation": fmt.to_jsonable(explanation), "text": fmt.format_explanation(explanation)}
            return await with_error_handling(call)

    # --- Server ---

    def register_server_status() -> None:
        @server.tool()
        async def server_status() -> Dict[str, Any]:
            """Server status plus the build info captured at connect time."""
            async def call():
                status = await app.database.get_server_status()
                return {
                    "status": fmt.to_jsonable(status),
                    "build_info": fmt.to_jsonable(app.database.get_server_info()),
                    "text": fmt.format_server_status(status),
                }
            return await with_error_handling(call)

    def register_database_users() -> None:
        @server.tool()
        async def database_users() -> Dict[str, Any]:
            """Users of the current database. Degrades when not permitted."""
            async def call():
                result = await app.database.get_database_users()
                return {"users": fmt.to_jsonable(result), "text": fmt.format_users(result)}
            return await with_error_handling(call)

    def register_watch_changes() -> None:
        @server.tool()
        async def watch_changes(
            collection: str,
            operations: List[str] | None = None,
            duration: int = 10,
            full_document: bool = False,
        ) -> Dict[str, Any]:
            """Collect change events on a collection for a bounded number of seconds."""
            async def call():
                kwargs: Dict[str, Any] = {
                    "collection": collection,
                    "duration": duration,
                    "full_document": full_document,
                }
                if operations is not None:
                    kwargs["operations"] = operations
                data = WatchChangesInput(**kwargs)
                changes = await app.database.watch_changes(
                    data.collection,
                    operations=list(data.operations),
                    duration_seconds=data.duration,
                    full_document=data.full_document,
                )
                return {"changes": fmt.to_jsonable(changes), "text": fmt.format_changes(changes, data.duration)}
            return await with_error_handling(call)

    def register_clear_cache() -> None:
        @server.tool()
        async def clear_cache() -> Dict[str, Any]:
            """Drop every cached schema, listing and statistic."""
            async def call():
                dropped = app.cache.size()
                app.cache.clear()
                return {"cleared": dropped, "text": f"Cache cleared ({dropped} entries)."}
            return await with_error_handling(call)

    register_tool("list_databases", register_list_databases)
    register_tool("current_database", register_current_database)
    register_tool("use_database", register_use_database)
    register_tool("list_collections", register_list_collections)
    register_tool("analyze_schema", register_analyze_schema)
    register_tool("compare_schemas", register_compare_schemas)
    register_tool("generate_schema_validator", register_generate_schema_validator)
    register_tool("analyze_query_patterns", register_analyze_query_patterns)
    register_tool("collection_stats", register_collection_stats)
    register_tool("collection_indexes", register_collection_indexes)
    register_tool("collection_validation", register_collection_validation)
    register_tool("find_documents", register_find_documents)
    register_tool("count_documents", register_count_documents)
    register_tool("aggregate_data", register_aggregate_data)
    register_tool("distinct_values", register_distinct_values)
    register_tool("explain_query", register_explain_query)
    register_tool("server_status", register_server_status)
    register_tool("database_users", register_database_users)
    register_tool("watch_changes", register_watch_changes)
    register_tool("clear_cache", register_clear_cache)

    # --- Resources ---

    @server.resource("mongodb://databases")
    async def databases_resource() -> str:
        async def call():
            return fmt.format_databases(await app.database.list_databases())
        return await resource_text(call)

    @server.resource("mongodb://collections")
    async def collections_resource() -> str:
        async def call():
            collections = await app.database.list_collections()
            return fmt.format_collections(collections, app.connection.current_database_name)
        return await resource_text(call)

    @server.resource("mongodb://collection/{name}/schema")
    async def collection_schema_resource(name: str) -> str:
        async def call():
            return fmt.format_schema(await app.schema_engine.infer_schema(name))
        return await resource_text(call)

    @server.resource("mongodb://collection/{name}/indexes")
    async def collection_indexes_resource(name: str) -> str:
        async def call():
            return fmt.format_indexes(name, await app.database.get_collection_indexes(name))
        return await resource_text(call)

    @server.resource("mongodb://collection/{name}/stats")
    async def collection_stats_resource(name: str) -> str:
        async def call():
            return fmt.format_collection_stats(name, await app.database.get_collection_stats(name))
        return await resource_text(call)

    @server.resource("mongodb://collection/{name}/validation")
    async def collection_validation_resource(name: str) -> str:
        async def call():
            return fmt.format_validation(name, await app.database.get_collection_validation(name))
        return await resource_text(call)

    @server.resource("mongodb://database/users")
    async def database_users_resource() -> str:
        async def call():
            return fmt.format_users(await app.database.get_database_users())
        return await resource_text(call)

    @server.resource("mongodb://server/status")
    async def server_status_resource() -> str:
        async def call():
            return fmt.format_server_status(await app.database.get_server_status())
        return await resource_text(call)

    @server.resource("mongodb://server/replica")
    async def replica_status_resource() -> str:
        async def call():
            return fmt.format_replica_status(await app.database.get_replica_status())
        return await resource_text(call)

    @server.resource("mongodb://server/metrics")
    async def performance_metrics_resource() -> str:
        async def call():
            return fmt.format_performance_metrics(await app.database.get_performance_metrics())
        return await resource_text(call)

    # --- Prompts ---

    @server.prompt()
    async def schema_analysis(collection: str) -> str:
        """Analyze collection schema and recommend improvements."""
        report = await app.schema_engine.infer_schema(collection)
        logger.debug(f"Prompt: Retrieved schema for '{collection}' with {len(report.fields)} fields.")
        return (
            f"Please analyze the schema of the '{collection}' collection and provide recommendations:\n\n"
            f"Here's the current schema:\n{fmt.format_schema(report)}\n\n"
            "Could you help with:\n"
            "1. Identifying any schema design issues or inconsistencies\n"
            "2. Suggesting schema improvements for better performance\n"
            "3. Recommending appropriate indexes based on the data structure\n"
            "4. Best practices for this type of data model\n"
            "5. Any potential MongoDB-specific optimizations"
        )


    @server.prompt()
    async def query_builder(collection: str, condition: str) -> str:
        """Help construct MongoDB query filters."""
        logger.debug(f"Prompt: Building query for '{collection}' with condition: \"{condition}\".")
        return (
            f"Please help me create a MongoDB query for the '{collection}' collection "
            f"based on this condition: \"{condition}\".\n\n"
            "I need both the filter object and a complete example showing how to use it "
            "with the find_documents tool.\n\n"
            "Guidelines:\n"
            "1. Create a valid MongoDB query filter as a JSON object\n"
            "2. Show how special MongoDB operators work if needed (like $gt, $in, etc.)\n"
            "3. Provide a complete example of calling find_documents with this filter\n"
            "4. Suggest any relevant projections or sort options\n\n"
            f"Remember: I'm working with the {app.connection.current_database_name} database "
            f"and the {collection} collection."
        )

    @server.prompt()
    async def index_recommendation(collection: str, query_pattern: str) -> str:
        """Get index recommendations for a query pattern."""
        logger.debug(f"Prompt: Index recommendation for '{collection}' with pattern: \"{query_pattern}\".")
        indexes = await app.database.get_collection_indexes(collection)
        return (
            f"I need index recommendations for the '{collection}' collection to optimize "
            f"this query pattern: \"{query_pattern}\".\n\n"
            f"Current indexes:\n{fmt.format_indexes(collection, indexes)}\n\n"
            "Please provide:\n"
            "1. Recommended index(es) with proper key specification\n"
            "2. Explanation of why this index would help\n"
            "3. The exact createIndex command for each recommendation\n"
            "4. How to verify the index is being used (for example with the explain_query tool)\n"
            "5. Any potential trade-offs or considerations for this index\n\n"
            f"Remember: I'm working with the {app.connection.current_database_name} database "
            f"and the {collection} collection."
        )

    @server.prompt()
    async def query_optimizer(collection: str, query: str, performance: str | None = None) -> str:
        """Get optimization advice for a slow query."""
        logger.debug(f"Prompt: Query optimizer for '{collection}' with query: {query}.")
        stats = await app.database.get_collection_stats(collection)
        indexes = await app.database.get_collection_indexes(collection)
        measured = f"Current performance: {performance}\n\n" if performance else ""
        return (
            f"I have a slow MongoDB query on the '{collection}' collection and need help optimizing it.\n\n"
            f"Query filter: {query}\n\n"
            f"{measured}"
            f"{fmt.format_collection_stats(collection, stats)}\n\n"
            f"{fmt.format_indexes(collection, indexes)}\n\n"
            "Please provide:\n"
            "1. Analysis of why this query might be slow\n"
            "2. Recommended index changes (additions or modifications)\n"
            "3. Suggested query structure improvements\n"
            "4. How to verify performance improvements\n"
            "5. Other optimization techniques I should consider"
        )

    @server.prompt()
    async def database_health_check(
        include_performance: bool = True,
        include_schema: bool = True,
        include_security: bool = True,
    ) -> str:
        """Comprehensive database health assessment."""
        logger.debug("Prompt: Running database health check.")
        db_stats = await app.database.get_database_stats()
        collections = await app.database.list_collections()
        names = [c["name"] for c in collections]
        sections = [
            "Please perform a comprehensive health check on my MongoDB database "
            "and provide recommendations for improvements.",
            f"Database statistics:\n{fmt.dumps(db_stats)}",
            f"Collections ({len(names)}):\n" + "\n".join(f"- {name}" for name in names),
        ]

        status: Dict[str, Any] = {}
        if include_performance:
            status = await app.database.get_server_status()
            index_lines = []
            for name in names[:HEALTH_CHECK_INDEX_COLLECTIONS]:
                indexes = await app.database.get_collection_indexes(name)
                index_lines.append(f"- {name}: {len(indexes)} indexes")
            sections.append(f"Performance:\n{fmt.format_server_status(status)}")
            sections.append("Indexes:\n" + "\n".join(index_lines))

        if include_schema:
            sampled = []
            for name in names[:HEALTH_CHECK_SCHEMA_COLLECTIONS]:
                try:
                    report = await app.schema_engine.infer_schema(name, 10)
                except MongoLensError as exc:
                    logger.warning(f"Prompt: Skipping schema sample for '{name}': {exc.message}")
                    continue
                sampled.append(f"- {name}: {len(report.fields)} fields")
            sections.append("Schema samples:\n" + ("\n".join(sampled) or "- none"))

        if include_security:
            users = await app.database.get_database_users()
            user_count = "N/A" if "error" in users else len(users.get("users") or [])
            auth = (status.get("security") or {}).get("authentication")
            mechanisms = fmt.dumps(auth.get("mechanisms", auth), indent=None) if auth else "N/A"
            sections.append(f"Security:\n- Users: {user_count}\n- Authentication: {mechanisms}")

        sections.append(
            "Please provide:\n"
            "1. Overall health assessment\n"
            "2. Urgent issues that need addressing\n"
            "3. Performance optimization recommendations\n"
            "4. Schema design suggestions and improvements\n"
            "5. Security best practices and concerns\n"
            "6. Monitoring and maintenance recommendations\n"
            "7. Specific Mongo Lens tools to use for implementing your recommendations"
        )
        return "\n\n".join(sections)

    return server


def main(config: LensConfig | None = None) -> None:
    cfg = config or get_config()

    if cfg.mcp.transport not in SUPPORTED_TRANSPORTS:
        raise UnsupportedTransportError(
            transport=cfg.mcp.transport,
            supported_transports=SUPPORTED_TRANSPORTS,
        )

    server = build_server(cfg)
    logger.info(f"Starting Mongo Lens MCP server ({cfg.mcp.transport})")
    server.run(transport=cfg.mcp.transport)


if __name__ == "__main__":
    main()
