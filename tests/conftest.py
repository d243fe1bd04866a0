import sys, pathlib
sys.path.append(str(pathlib.Path(__file__).resolve().parents[1]))

import pytest

from core.header import RawMessageHeader
from datasources.msgstore import MessageStoreAPIError, StatusResponse, StorageStatus


class FakeClock:
    def __init__(self, now=1000):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


class FakeNode:
    """Stands in for MessageStoreClient; serves ``headers`` filtered by arrival."""

    def __init__(self, clock, headers=()):
        self.clock = clock
        self.headers = list(headers)
        self.time_calls = 0
        self.since_calls = []
        self.fail_status = False
        self.fail_time = False
        self.fail_headers = False
        self.ignore_since = False
        self.time_delay = 0.0

    def get_status(self):
        if self.fail_status:
            raise MessageStoreAPIError("API request failed: connection refused")
        return StatusResponse(
            pubkey="03" + "ab" * 32,
            storage=StorageStatus(messages=len(self.headers), max_file_size=268435456,
                                  capacity=137438953472, used=17828492),
        )

    def get_time(self):
        self.time_calls += 1
        if self.time_delay:
            import time
            time.sleep(self.time_delay)
        if self.fail_time:
            raise MessageStoreAPIError("API request failed: timeout")
        return int(self.clock())

    def get_headers_since(self, since):
        self.since_calls.append(since)
        if self.fail_headers:
            raise MessageStoreAPIError("API request failed: 502")
        if self.ignore_since:
            return list(self.headers)
        return [h for h in self.headers if h.time >= since]


def _make_header(n, time, expire):
    return RawMessageHeader(I=f"02{n:064x}", time=time, expire=expire)


@pytest.fixture
def make_header():
    return _make_header


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def node(clock):
    return FakeNode(clock)


@pytest.fixture
def open_cache(tmp_path, node, clock):
    from core.header_cache import HeaderCache

    opened = []

    def _open(path=None, **kwargs):
        kwargs.setdefault("client", node)
        kwargs.setdefault("clock", clock)
        cache = HeaderCache.open("http://node.test:7754/", str(path or tmp_path / "cache"), **kwargs)
        opened.append(cache)
        return cache

    yield _open
    for cache in opened:
        cache.close()
