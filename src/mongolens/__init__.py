"""
Mongo Lens - MongoDB Inspection for Agents
==========================================

Exposes a MongoDB deployment to agent clients over the Model Context
Protocol: schema inference by sampling, cached collection/index/stat
lookups, and a self-healing connection.

Main Packages:
    - core: Cache, schema inference, connection manager, watchdog, helpers
    - mcp: FastMCP tools, resources and prompts
    - cli: Command-line interface
    - utils: Process memory helpers

Quick Start:
    from mongolens.core import build_container, load_config

    container = build_container(load_config())
    await container.startup("mongodb://localhost:27017/shop")
    report = await container.schema_engine.infer_schema("orders", 50)

Version: 1.0.0
"""

__version__ = "1.0.0"
