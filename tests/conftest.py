import threading
import time
from datetime import datetime, timedelta, timezone

import pytest

from modupdatepy.exceptions import FetchError
from modupdatepy.types_models import RawRelease, VersionInfo
from modupdatepy.update_keys import ModSource


class FakeClock:
    def __init__(self, start=None):
        self.now = start or datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


class FakeAdapter:
    """Stands in for a source adapter: serves canned versions per identifier and counts calls."""

    def __init__(self, source, responses=None, delay=0.0):
        self.source = source
        self.responses = dict(responses or {})
        self.delay = delay
        self.calls = []
        self._lock = threading.Lock()

    def fetch(self, identifier):
        with self._lock:
            self.calls.append(identifier)
        if self.delay:
            time.sleep(self.delay)
        response = self.responses.get(identifier)
        if isinstance(response, FetchError):
            raise response
        if isinstance(response, VersionInfo):
            return response
        if response is None:
            return VersionInfo()
        if isinstance(response, str):
            response = [response]
        url = f"https://{self.source.value.lower()}.example/{identifier}"
        releases = []
        for item in response:
            if isinstance(item, RawRelease):
                releases.append(item)
            else:
                releases.append(RawRelease(version=item, url=url))
        return VersionInfo(releases=tuple(releases), url=url)

    @property
    def call_count(self):
        return len(self.calls)


class FakeResponse:
    def __init__(self, status_code=200, text="", headers=None):
        self.status_code = status_code
        self.text = text
        self.headers = headers or {}


class FakeSession:
    """Records requests and replays queued responses (or raises queued exceptions)."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.requests = []

    def request(self, method, url, **kwargs):
        self.requests.append((method, url, kwargs))
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def make_adapters():
    def _make(**by_source):
        adapters = {}
        for name, responses in by_source.items():
            source = ModSource.from_name(name)
            adapters[source] = FakeAdapter(source, responses)
        return adapters
    return _make
