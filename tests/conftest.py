import sys
from pathlib import Path

import pytest
import pytest_asyncio


# Ensure local src/ package imports work without editable install.
ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))


# =============================================================================
# Pytest Configuration
# =============================================================================

def pytest_configure(config):
    """
    Configure custom pytest markers.

    This function is called by pytest at startup to register custom markers.
    """
    config.addinivalue_line(
        "markers",
        "integration: mark test as integration test (requires a running MongoDB)"
    )
    config.addinivalue_line(
        "markers",
        "slow: mark test as slow-running (use pytest -m 'not slow' to skip)"
    )


def pytest_collection_modifyitems(config, items):
    """
    Skip integration tests unless --run-integration is passed and slow
    tests unless --run-slow is passed.
    """
    run_integration = config.getoption("--run-integration", default=False)
    run_slow = config.getoption("--run-slow", default=False)

    skip_integration = pytest.mark.skip(
        reason="Integration test skipped. Use --run-integration to run."
    )
    skip_slow = pytest.mark.skip(
        reason="Slow test skipped. Use --run-slow to run."
    )

    for item in items:
        if "integration" in item.keywords and not run_integration:
            item.add_marker(skip_integration)
        if "slow" in item.keywords and not run_slow:
            item.add_marker(skip_slow)


def pytest_addoption(parser):
    """Add custom command-line options for pytest."""
    parser.addoption(
        "--run-integration",
        action="store_true",
        default=False,
        help="Run integration tests (requires MONGOLENS_TEST_URI or a local mongod)"
    )
    parser.addoption(
        "--run-slow",
        action="store_true",
        default=False,
        help="Run slow tests"
    )


# =============================================================================
# Fixtures
# =============================================================================

ORDERS = [
    {"_id": 1, "sku": "A-1", "qty": 2, "customer": {"name": "Ada", "email": "ada@example.com"}},
    {"_id": 2, "sku": "B-7", "qty": 1, "customer": {"name": "Bo"}},
    {"_id": 3, "sku": "C-3", "qty": None, "tags": ["rush", "gift"]},
    {"_id": 4, "sku": "D-9", "qty": 5, "items": [{"code": "x", "price": 9.5}]},
]


@pytest.fixture(autouse=True)
def clean_config():
    """Reset config state between tests."""
    from mongolens.core.config import reset_config
    reset_config()
    yield
    reset_config()


@pytest.fixture
def lens_config():
    from mongolens.core.config import LensConfig
    return LensConfig()


@pytest.fixture
def mongo_server():
    """
    Fixture providing an in-memory server with a 'shop' database holding
    an 'orders' collection.
    """
    from tests.mocks import FakeMongoServer

    server = FakeMongoServer()
    server.database("shop").add_collection("orders", ORDERS)
    return server


@pytest.fixture
def client_factory(mongo_server):
    from tests.mocks import FakeClientFactory
    return FakeClientFactory(mongo_server)


@pytest_asyncio.fixture
async def container(lens_config, client_factory):
    """
    Fixture providing a container connected to the fake server's 'shop'
    database. The watchdog is not started.

    Usage:
        async def test_x(container):
            report = await container.schema_engine.infer_schema("orders")
    """
    from mongolens.core.container import build_container

    app = build_container(lens_config, client_factory=client_factory)
    await app.connection.connect("mongodb://localhost:27017/shop")
    yield app
    await app.shutdown()
