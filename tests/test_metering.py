import io
import json

import pytest

from brokerhub.logs import StderrLogger, set_logger
from brokerhub.metering import HttpMetering, NoopMetering
from brokerhub.transport import HttpClient, HttpError


class FakeClient:
    def __init__(self, fail=None):
        self.posts = []
        self.fail = fail

    def post(self, url, body, headers=None):
        self.posts.append((url, body, dict(headers or {})))
        if self.fail is not None:
            raise self.fail
        return b""

    def get(self, url, headers=None):
        return b""


def test_noop_name_and_configure():
    storage = NoopMetering()
    assert storage.configure(None) is None
    assert storage.name() == "noop"


def test_noop_get():
    assert NoopMetering().get(123).contract == 123


def test_http_name():
    assert HttpMetering().name() == "http"


def test_http_configure_errors():
    storage = HttpMetering()
    with pytest.raises(ValueError, match="Configuration was not provided"):
        storage.configure(None)
    with pytest.raises(ValueError, match="url"):
        storage.configure({})


def test_http_configure():
    storage = HttpMetering()
    storage.configure(
        {"interval": 1000.0, "url": "http://localhost/test", "authorization": "Bearer token"}
    )
    try:
        assert storage.url == "http://localhost/test"
        assert isinstance(storage.client, HttpClient)
        assert storage.client.timeout == 30
        assert storage.headers == {
            "Accept": "application/binary",
            "Authorization": "Bearer token",
        }
    finally:
        storage.close()


def test_http_get_returns_same_meter():
    storage = HttpMetering()
    assert storage.get(1) is storage.get(1)
    assert storage.get(2).contract == 2


def test_http_store():
    client = FakeClient()
    storage = HttpMetering(client)
    storage.configure({"interval": 600000.0, "url": "http://127.0.0.1"})
    try:
        meter = storage.get(1)
        meter.add_egress(100)
        meter.add_ingress(200)

        assert meter.message_in == 1
        assert meter.traffic_in == 200
        assert meter.message_eg == 1
        assert meter.traffic_eg == 100
        assert meter.contract == 1

        storage.store()

        assert meter.message_in == 0
        assert meter.traffic_in == 0
        assert meter.message_eg == 0
        assert meter.traffic_eg == 0
        assert meter.contract == 1
    finally:
        storage.close()

    url, body, headers = client.posts[0]
    assert url == "http://127.0.0.1"
    assert headers["Accept"] == "application/binary"
    (entry,) = json.loads(body)
    assert entry["contract"] == 1
    assert entry["traffic_in"] == 200
    assert entry["traffic_eg"] == 100


def test_http_store_logs_failures():
    stream = io.StringIO()
    previous = set_logger(StderrLogger(stream, timestamps=False))
    storage = HttpMetering(FakeClient(fail=HttpError("boom")))
    storage.configure({"interval": 600000.0, "url": "http://127.0.0.1"})
    try:
        storage.get(1).add_ingress(5)
        storage.store()
    finally:
        storage.close()
        set_logger(previous)
    assert stream.getvalue() == "[http metering] error during reporting counters (boom)\n"