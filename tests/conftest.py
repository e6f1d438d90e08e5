"""
Shared fixtures: a controllable clock and an in-memory stand-in for the API client.
"""
import threading

import pytest

from portal_cache.api_client import ApiError
from portal_cache.cache import CachedApiService, TierRegistry


class FakeClock:
    """Monotonic clock advanced by hand."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeApiClient:
    """
    Records every call. GET responses come from ``responses`` (a value or a
    callable taking the URL); URLs listed in ``failures`` raise ApiError.
    """

    def __init__(self):
        self.responses = {}
        self.failures = set()
        self.calls = []
        self.closed = False
        self._lock = threading.Lock()

    def _record(self, method, url, *args):
        with self._lock:
            self.calls.append((method, url) + args)
        if url in self.failures:
            raise ApiError(f"{method} {url} failed with status 500", method, url, 500)

    def count(self, method, url=None):
        return sum(
            1 for call in self.calls
            if call[0] == method and (url is None or call[1] == url)
        )

    def get(self, url, config=None):
        self._record("GET", url, config)
        response = self.responses.get(url, {"url": url})
        return response(url) if callable(response) else response

    def post(self, url, body=None, config=None):
        self._record("POST", url, body, config)
        return {"created": True, "body": body}

    def put(self, url, body=None, config=None):
        self._record("PUT", url, body, config)
        return {"updated": True, "body": body}

    def patch(self, url, body=None, config=None):
        self._record("PATCH", url, body, config)
        return {"patched": True, "body": body}

    def delete(self, url, config=None):
        self._record("DELETE", url, config)
        return {"deleted": True}

    def upload(self, url, files, data=None, config=None):
        self._record("UPLOAD", url, files, data, config)
        return {"uploaded": True}

    def close(self):
        self.closed = True


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def fake_client():
    return FakeApiClient()


@pytest.fixture
def registry(clock):
    registry = TierRegistry(clock=clock, start_sweep=False)
    yield registry
    registry.destroy()


@pytest.fixture
def cached_api(fake_client, registry):
    return CachedApiService(fake_client, registry)
