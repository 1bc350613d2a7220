import json
import socket

import pytest

from brokerhub.monitor.statsd import StatsdClient, StatsdMonitor


class _Reader:
    def __init__(self, data: bytes) -> None:
        self.data = data

    def snapshot(self) -> bytes:
        return self.data


@pytest.fixture
def receiver():
    sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    sock.bind(("127.0.0.1", 0))
    sock.settimeout(3)
    yield sock
    sock.close()


def _collect(sock, count):
    lines, packets = [], []
    while len(lines) < count:
        data = sock.recv(65535)
        packets.append(data)
        lines.extend(data.decode("utf-8").split("\n"))
    return lines, packets


def test_client_formats_lines(receiver):
    port = receiver.getsockname()[1]
    with StatsdClient(f"127.0.0.1:{port}", "emitter", [("broker", "n1")]) as client:
        assert client.prefix == "emitter"
        client.gauge("a", 3)
        client.histogram("b", 4)
        client.flush()
        data = receiver.recv(65535)
    assert data == b"emitter.a:3|g|#broker:n1\nemitter.b:4|h|#broker:n1"


def test_client_without_prefix_or_tags(receiver):
    port = receiver.getsockname()[1]
    with StatsdClient(f"127.0.0.1:{port}", "", None) as client:
        assert not client.prefix
        client.gauge("x", 2.5)
        client.flush()
        assert receiver.recv(65535) == b"x:2.5|g"


def test_client_splits_packets(receiver):
    port = receiver.getsockname()[1]
    with StatsdClient(f"127.0.0.1:{port}", "emitter", {"broker": "n1"}) as client:
        assert client.prefix == "emitter"
        for i in range(100):
            client.histogram("rcv.test", i)
        client.flush()
        lines, packets = _collect(receiver, 100)
    assert len(lines) == 100
    assert len(packets) > 1
    assert all(len(p) <= 1440 for p in packets)
    assert lines[0] == "emitter.rcv.test:0|h|#broker:n1"
    assert lines[-1] == "emitter.rcv.test:99|h|#broker:n1"


def test_client_rejects_bad_address():
    with pytest.raises(ValueError):
        StatsdClient("nope", "emitter", None)


def test_statsd_happy_path(receiver):
    port = receiver.getsockname()[1]
    metrics = {
        "proc.test": list(range(100)),
        "node.test": list(range(100)),
        "rcv.test": [i // 10 for i in range(100)],
        "node.peers": [2] * 100,
        "node.conns": list(range(100)),
        "node.subs": list(range(100)),
    }
    s = StatsdMonitor(_Reader(json.dumps(metrics).encode()), "node1")
    s.configure({"interval": 1000000.0, "url": f"127.0.0.1:{port}"})
    try:
        assert s.client.prefix == "emitter"
        s.write()
        lines, _ = _collect(receiver, 104)
    finally:
        s.close()
    assert s.client is None

    assert len(lines) == 104
    assert "emitter.node.peers:2|g|#broker:node1" in lines
    assert "emitter.node.subs:99|g|#broker:node1" in lines
    assert "emitter.node.conns:99|g|#broker:node1" in lines
    assert "emitter.proc.test:99|g|#broker:node1" in lines
    assert lines.count("emitter.rcv.test:0|h|#broker:node1") == 10
    assert sum(1 for line in lines if line.startswith("emitter.rcv.test:")) == 100
    assert not any(line.startswith("emitter.node.test") for line in lines)


def test_statsd_bad_snapshot_sends_nothing(receiver):
    port = receiver.getsockname()[1]
    receiver.settimeout(0.3)
    s = StatsdMonitor(_Reader(b"test"), "")
    s.configure({"interval": 1000000.0, "url": f"127.0.0.1:{port}"})
    try:
        assert s.client.prefix == "emitter"
        s.write()
        with pytest.raises(socket.timeout):
            receiver.recv(65535)
    finally:
        s.close()
    assert s.client is None


@pytest.mark.parametrize(
    "config",
    [None, {}, {"interval": 100.0, "url": ":8125"}],
)
def test_statsd_configure(config):
    s = StatsdMonitor(None, "")
    assert s.name() == "statsd"
    s.configure(config)
    try:
        assert s.client.prefix == "emitter"
    finally:
        s.close()
    assert s.client is None


def test_statsd_configure_bad_url():
    s = StatsdMonitor(None, "")
    with pytest.raises(ValueError):
        s.configure({"url": "localhost:notaport"})
    assert s.client is None