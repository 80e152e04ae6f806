"""
Mongo Lens MCP (Model Context Protocol) Module
==============================================
FastMCP server exposing the database to agent clients.

Available Tools:
    - list_databases / current_database / use_database
    - list_collections / collection_stats / collection_indexes / collection_validation
    - analyze_schema / compare_schemas / generate_schema_validator / analyze_query_patterns
    - find_documents / count_documents / aggregate_data / distinct_values / explain_query
    - server_status / database_users / watch_changes / clear_cache

Resources:
    - mongodb://databases
    - mongodb://collections
    - mongodb://collection/{name}/schema | indexes | stats | validation
    - mongodb://database/users
    - mongodb://server/status | replica | metrics

Prompts:
    - schema_analysis / query_builder / index_recommendation
    - query_optimizer / database_health_check

Configuration:
    MCP settings live under the 'mcp' section of mongolens.yaml:
    - transport: "stdio", "sse" or "streamable-http"
    - host/port: HTTP binding (non-stdio transports)
    - allow_tools: List of permitted tools

Usage:
    from mongolens.mcp.server import build_server

    server = build_server(config)
    server.run(transport="stdio")
"""
