"""
Mongo Lens CLI - Command Line Interface

Provides terminal commands for:
- Running the MCP server
- One-off schema inference
- Resolving the database name of a connection string
"""

from .main import cli

__all__ = ["cli"]
