"""
Tests for Mongo Lens CLI
"""

import json
from unittest.mock import MagicMock, patch

import pytest
import yaml
from click.testing import CliRunner

from mongolens.cli import main as cli_main
from mongolens.cli.main import cli
from mongolens.core.container import build_container
from mongolens.core.exceptions import MongoConnectionError


@pytest.fixture
def runner():
    """CLI test runner."""
    return CliRunner()


@pytest.fixture(autouse=True)
def isolated_config(tmp_path, monkeypatch):
    """Keep config discovery away from the developer's own files."""
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("HOME", str(tmp_path))
    monkeypatch.delenv("MONGOLENS_CONFIG_PATH", raising=False)


@pytest.fixture
def logging_mock(monkeypatch):
    mock = MagicMock()
    monkeypatch.setattr(cli_main, "configure_logging", mock)
    return mock


@pytest.fixture
def fake_containers(monkeypatch, client_factory, logging_mock):
    """Route the CLI's container construction through the in-memory server."""
    monkeypatch.setattr(
        cli_main,
        "build_container",
        lambda config: build_container(config, client_factory=client_factory),
    )
    return client_factory


@pytest.fixture
def single_attempt_config(tmp_path):
    path = tmp_path / "single.yaml"
    with open(path, "w") as f:
        yaml.dump({"lens": {"retry": {"connect_max_attempts": 1}}}, f)
    return str(path)


class TestDbName:
    @pytest.mark.parametrize(
        "uri,expected",
        [
            ("mongodb://localhost:27017/shop", "shop"),
            ("mongodb://localhost:27017", "admin"),
            ("mongodb://localhost:27017/shop?retryWrites=true", "shop"),
        ],
    )
    def test_dbname(self, runner, logging_mock, uri, expected):
        result = runner.invoke(cli, ["dbname", uri])
        assert result.exit_code == 0
        assert result.output.strip() == expected


class TestSchemaCommand:
    def test_schema_table(self, runner, fake_containers):
        result = runner.invoke(cli, ["schema", "mongodb://localhost:27017/shop", "orders"])

        assert result.exit_code == 0
        assert "Schema for 'orders'" in result.output
        assert "customer.email" in result.output
        assert fake_containers.clients[0].closed is True

    def test_schema_json(self, runner, fake_containers, mongo_server):
        result = runner.invoke(
            cli, ["schema", "mongodb://localhost:27017/shop", "orders", "-n", "2", "--json"]
        )

        assert result.exit_code == 0
        data = json.loads(result.output)
        assert data["collection_name"] == "orders"
        assert data["sample_size"] == 2
        call = mongo_server.database("shop").collections["orders"].aggregate_calls[0]
        assert call["pipeline"] == [{"$sample": {"size": 2}}]

    def test_schema_missing_collection(self, runner, fake_containers):
        result = runner.invoke(cli, ["schema", "mongodb://localhost:27017/shop", "ghosts"])

        assert result.exit_code == 2
        assert "Collection 'ghosts' does not exist" in result.output

    def test_schema_connection_failure(self, runner, fake_containers, mongo_server, single_attempt_config):
        mongo_server.up = False

        result = runner.invoke(
            cli, ["-c", single_attempt_config, "schema", "mongodb://localhost:27017/shop", "orders"]
        )

        assert result.exit_code == 1
        assert "Unable to connect after 1 attempts" in result.output

    def test_rejects_zero_sample_size(self, runner, fake_containers):
        result = runner.invoke(cli, ["schema", "mongodb://localhost:27017/shop", "orders", "-n", "0"])
        assert result.exit_code != 0


class TestServeCommand:
    def test_serve_overrides_uri_and_transport(self, runner, logging_mock):
        with patch("mongolens.mcp.server.main") as run_server:
            result = runner.invoke(cli, ["serve", "mongodb://db:27017/shop", "--transport", "sse"])

        assert result.exit_code == 0
        config = run_server.call_args.args[0]
        assert config.mongo.uri == "mongodb://db:27017/shop"
        assert config.mcp.transport == "sse"

    def test_serve_defaults_to_config(self, runner, logging_mock):
        with patch("mongolens.mcp.server.main") as run_server:
            result = runner.invoke(cli, ["serve"])

        assert result.exit_code == 0
        config = run_server.call_args.args[0]
        assert config.mongo.uri == "mongodb://localhost:27017"
        assert config.mcp.transport == "stdio"

    def test_serve_startup_failure_exits_1(self, runner, logging_mock):
        error = MongoConnectionError("mongodb://db", "Unable to connect after 5 attempts")
        with patch("mongolens.mcp.server.main", side_effect=error):
            result = runner.invoke(cli, ["serve", "mongodb://db"])

        assert result.exit_code == 1

    def test_unknown_transport_rejected_by_click(self, runner, logging_mock):
        result = runner.invoke(cli, ["serve", "--transport", "ws"])
        assert result.exit_code == 2


class TestLogging:
    def test_verbose_enables_debug(self, runner, logging_mock):
        runner.invoke(cli, ["-v", "dbname", "mongodb://h/shop"])
        logging_mock.assert_called_once_with(level="DEBUG")

    def test_config_level_applied(self, runner, logging_mock, tmp_path):
        path = tmp_path / "debug.yaml"
        with open(path, "w") as f:
            yaml.dump({"lens": {"observability": {"log_level": "WARNING", "json_logs": True}}}, f)

        with patch("mongolens.mcp.server.main"):
            runner.invoke(cli, ["-c", str(path), "serve"])

        logging_mock.assert_called_with("WARNING", True)
