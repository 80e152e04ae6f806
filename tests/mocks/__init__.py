"""
Mock Infrastructure for Mongo Lens Tests
========================================
In-memory stand-ins for the pymongo async client, for offline testing
without a running MongoDB.

Usage:
    from tests.mocks import FakeClientFactory, FakeMongoServer
"""

from .mock_mongo import (
    FakeAsyncMongoClient,
    FakeChangeStream,
    FakeClientFactory,
    FakeCollection,
    FakeCursor,
    FakeDatabase,
    FakeMongoServer,
)

__all__ = [
    "FakeAsyncMongoClient",
    "FakeChangeStream",
    "FakeClientFactory",
    "FakeCollection",
    "FakeCursor",
    "FakeDatabase",
    "FakeMongoServer",
]
