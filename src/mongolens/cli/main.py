"""
Mongo Lens CLI - Main Entry Point

Usage:
    mongolens serve mongodb://localhost:27017/shop     # Run the MCP server
    mongolens schema mongodb://host/shop orders --json # One-off schema inference
    mongolens dbname mongodb://host:27017/shop?x=1     # Print the working database
"""

import asyncio
import dataclasses
import json
import sys
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Optional

import click
from loguru import logger

from mongolens.core.config import SUPPORTED_TRANSPORTS, LensConfig, load_config
from mongolens.core.connection import extract_db_name
from mongolens.core.container import build_container
from mongolens.core.exceptions import MongoConnectionError, MongoLensError
from mongolens.core.logging_config import configure_logging


def _load(ctx: click.Context) -> LensConfig:
    config_path = ctx.obj.get("config_path")
    config = load_config(Path(config_path) if config_path else None)
    if not ctx.obj.get("verbose"):
        configure_logging(config.observability.log_level, config.observability.json_logs)
    return config


@asynccontextmanager
async def lens_context(config: LensConfig, uri: Optional[str] = None):
    """
    Connected container for one-off commands. No watchdog is started.

    Usage:
        async with lens_context(config, uri) as container:
            report = await container.schema_engine.infer_schema("orders")
    """
    container = build_container(config)
    try:
        await container.connection.connect(uri)
        yield container
    finally:
        await container.shutdown()


# ============================================================================
# CLI Group and Main Entry
# ============================================================================

@click.group()
@click.option(
    "--config",
    "-c",
    type=click.Path(exists=True),
    help="Path to mongolens.yaml file",
)
@click.option(
    "--verbose",
    "-v",
    is_flag=True,
    help="Enable verbose output",
)
@click.pass_context
def cli(ctx, config: Optional[str], verbose: bool):
    """
    Mongo Lens - MongoDB schema inspection for agents.
    """
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["config_path"] = config

    configure_logging(level="DEBUG" if verbose else None)


@cli.command()
@click.argument("uri", required=False)
@click.option(
    "--transport",
    "-t",
    type=click.Choice(SUPPORTED_TRANSPORTS),
    help="Protocol transport (defaults to config)",
)
@click.pass_context
def serve(ctx, uri: Optional[str], transport: Optional[str]):
    """
    Run the MCP server.

    Example:
        mongolens serve mongodb://localhost:27017/shop
    """
    from mongolens.mcp.server import main as run_server

    config = _load(ctx)
    if uri:
        config = dataclasses.replace(config, mongo=dataclasses.replace(config.mongo, uri=uri))
    if transport:
        config = dataclasses.replace(config, mcp=dataclasses.replace(config.mcp, transport=transport))

    try:
        run_server(config)
    except MongoLensError as e:
        logger.error(f"Failed to start server: {e.message}")
        sys.exit(1)
    except Exception as e:
        logger.error(f"Server terminated: {e}")
        sys.exit(1)


@cli.command()
@click.argument("uri", required=True)
@click.argument("collection", required=True)
@click.option(
    "--sample-size",
    "-n",
    type=click.IntRange(min=1),
    default=None,
    help="Documents to sample (defaults to config)",
)
@click.option(
    "--json",
    "output_json",
    is_flag=True,
    help="Output as JSON",
)
@click.pass_context
def schema(ctx, uri: str, collection: str, sample_size: Optional[int], output_json: bool):
    """
    Infer and print the schema of a collection.

    Example:
        mongolens schema mongodb://localhost:27017/shop orders
    """
    from mongolens.mcp import formatters as fmt

    config = _load(ctx)

    async def _schema():
        async with lens_context(config, uri) as container:
            return await container.schema_engine.infer_schema(collection, sample_size)

    try:
        report = asyncio.run(_schema())
    except MongoConnectionError as e:
        click.echo(f"Error: {e.message}", err=True)
        sys.exit(1)
    except MongoLensError as e:
        click.echo(f"Error: {e.message}", err=True)
        sys.exit(2)

    if output_json:
        click.echo(json.dumps(fmt.to_jsonable(report.to_dict()), indent=2))
    else:
        click.echo(fmt.format_schema(report))


@cli.command()
@click.argument("uri", required=True)
def dbname(uri: str):
    """
    Print the database name a connection string resolves to.

    Example:
        mongolens dbname mongodb://localhost:27017/shop?retryWrites=true
    """
    click.echo(extract_db_name(uri))


if __name__ == "__main__":
    cli()
