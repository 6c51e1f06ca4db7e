"""
Shared fixtures for sweep engine tests.
"""

import pytest

from studyvault.core.health import HealthChecker, ProbeResult
from studyvault.core.store import MemoryStore


class FakeHealthChecker(HealthChecker):
    """Returns canned probe results per function name; records every call."""

    def __init__(self, results=None, default=None, raises=None):
        self.results = results or {}
        self.default = default or ProbeResult(ok=True, status=200, latency_ms=12)
        self.raises = raises or {}
        self.calls = []

    def probe(self, function, payload):
        self.calls.append((function, payload))
        if function in self.raises:
            raise self.raises[function]
        return self.results.get(function, self.default)


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def online_checker():
    return FakeHealthChecker()
