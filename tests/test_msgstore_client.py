import types

import pytest
import requests

from core.header import RawMessageHeader
from datasources.msgstore import MessageStoreClient, MessageStoreAPIError
from core.errors import RemoteError

_BAD_JSON = object()


class DummyResp:
    def __init__(self, status, data=None):
        self.status_code = status
        self._data = data

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error")

    def json(self):
        if self._data is _BAD_JSON:
            raise ValueError("Expecting value: line 1 column 1 (char 0)")
        return self._data


def _client(responses, seen=None):
    def fake_get(url, timeout=None):
        if seen is not None:
            seen.append((url, timeout))
        resp = responses.pop(0)
        if isinstance(resp, Exception):
            raise resp
        return resp

    return MessageStoreClient("http://node.test:7754", session=types.SimpleNamespace(get=fake_get), timeout=5)


def test_status_decoded():
    seen = []
    payload = {
        "pubkey": "030b5a7b432ec22920e20063cb16eb70dcb62dfef28d15eb19c1efeec35400b34b",
        "storage": {"max_file_size": 268435456, "capacity": 137438953472, "messages": 6252, "used": 17828492},
    }
    status = _client([DummyResp(200, payload)], seen).get_status()
    assert seen == [("http://node.test:7754/api/status/", 5)]
    assert status.pubkey.startswith("030b5a")
    assert status.storage.messages == 6252
    assert status.storage.capacity == 137438953472


def test_status_missing_fields():
    with pytest.raises(MessageStoreAPIError):
        _client([DummyResp(200, {"pubkey": "03"})]).get_status()


def test_time():
    seen = []
    assert _client([DummyResp(200, {"time": 1500000000})], seen).get_time() == 1500000000
    assert seen[0][0] == "http://node.test:7754/api/time/"


@pytest.mark.parametrize("resp", [
    DummyResp(500),
    DummyResp(200, _BAD_JSON),
    DummyResp(200, {"time": "soon"}),
    DummyResp(200, [1, 2, 3]),
    requests.ConnectionError("connection refused"),
    requests.Timeout("read timed out"),
])
def test_time_failures_raise_api_error(resp):
    with pytest.raises(MessageStoreAPIError) as exc:
        _client([resp]).get_time()
    assert isinstance(exc.value, RemoteError)


def test_headers_since_url_and_parse():
    h1 = RawMessageHeader(I="02" + "11" * 32, time=100, expire=200)
    h2 = RawMessageHeader(I="03" + "22" * 32, time=150, expire=300)
    seen = []
    client = _client([DummyResp(200, {"header_list": [h1.serialize(), h2.serialize()]})], seen)
    assert client.get_headers_since(1234) == [h1, h2]
    assert seen[0][0] == "http://node.test:7754/api/header/list/since/1234"


def test_headers_since_empty_or_null_list():
    assert _client([DummyResp(200, {"header_list": []})]).get_headers_since(0) == []
    assert _client([DummyResp(200, {"header_list": None})]).get_headers_since(0) == []


def test_one_bad_header_fails_listing():
    good = RawMessageHeader(I="02" + "11" * 32, time=100, expire=200).serialize()
    with pytest.raises(MessageStoreAPIError):
        _client([DummyResp(200, {"header_list": [good, "garbage"]})]).get_headers_since(0)
