import json
import logging

import pytest
from loguru import logger

from mongolens.core.logging_config import configure_logging, is_configured


@pytest.fixture(autouse=True)
def restore_loguru():
    yield
    logger.remove()
    logger.add(lambda message: None, level="INFO")


def test_plain_sink(tmp_path):
    log_file = tmp_path / "lens.log"
    configure_logging("INFO", json_format=False, sink=str(log_file))

    logger.info("connected to shop")
    logger.debug("hidden")
    logger.complete()

    text = log_file.read_text()
    assert "connected to shop" in text
    assert "hidden" not in text
    assert is_configured() is True


def test_json_sink(tmp_path):
    log_file = tmp_path / "lens.json"
    configure_logging("DEBUG", json_format=True, sink=str(log_file))

    logger.warning("heartbeat failed")

    record = json.loads(log_file.read_text().splitlines()[-1])
    assert record["record"]["message"] == "heartbeat failed"
    assert record["record"]["level"]["name"] == "WARNING"


def test_env_format_and_level(tmp_path, monkeypatch):
    monkeypatch.setenv("MONGOLENS_LOG_FORMAT", "json")
    monkeypatch.setenv("MONGOLENS_LOG_LEVEL", "ERROR")
    log_file = tmp_path / "env.json"

    configure_logging(level=None, sink=str(log_file))
    logger.warning("quiet")
    logger.error("loud")

    lines = log_file.read_text().splitlines()
    assert len(lines) == 1
    assert json.loads(lines[0])["record"]["message"] == "loud"


def test_driver_logs_are_intercepted(tmp_path):
    log_file = tmp_path / "driver.log"
    configure_logging("INFO", json_format=False, sink=str(log_file))

    logging.getLogger("pymongo.topology").warning("server selection slow")
    logging.getLogger("pymongo.topology").info("heartbeat ok")

    text = log_file.read_text()
    assert "server selection slow" in text
    assert "heartbeat ok" not in text
