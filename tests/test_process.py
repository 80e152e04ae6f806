"""
Tests for Process Utilities
============================
Memory readings and forced collection used by the cache pressure check.
"""

from unittest.mock import MagicMock, patch

from mongolens.utils.process import read_memory_usage, request_garbage_collection


class TestReadMemoryUsage:
    def test_reads_rss_and_host_total(self):
        process = MagicMock()
        process.memory_info.return_value.rss = 300 * 1024 * 1024
        with patch("mongolens.utils.process.psutil") as psutil_mock:
            psutil_mock.Process.return_value = process
            psutil_mock.virtual_memory.return_value.total = 8 * 1024 ** 3

            used, total = read_memory_usage()

        assert used == 300 * 1024 * 1024
        assert total == 8 * 1024 ** 3

    def test_real_process_reading(self):
        used, total = read_memory_usage()
        assert 0 < used < total


class TestRequestGarbageCollection:
    def test_returns_freed_count(self):
        with patch("mongolens.utils.process.gc.collect", return_value=7):
            assert request_garbage_collection() == 7

    def test_failure_returns_zero(self):
        with patch("mongolens.utils.process.gc.collect", side_effect=RuntimeError("boom")):
            assert request_garbage_collection() == 0
